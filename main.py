"""
入口转发

包名: ips_logger
CLI: ips-logger

此文件仅用于兼容 `python main.py` 的运行方式，会转发到 `ips_logger.cli:main`。
"""

import sys

from ips_logger.cli import main as _cli_main
from ips_logger.cli import setup_logging as _setup_logging


def main():
    # 确保直接运行也有全局日志输出
    _setup_logging()
    return _cli_main()


if __name__ == "__main__":  # pragma: no cover
    sys.exit(main())
