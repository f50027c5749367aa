from __future__ import annotations

import argparse
import asyncio
import logging
import signal
import sys

from .config_manager import ConfigManager
from .exceptions import AdapterError, ChannelError, ConfigError
from .pipeline import Pipeline


logger = logging.getLogger(__name__)

LOG_FORMAT = "%(asctime)s [%(levelname)s] %(name)s: %(message)s"


def setup_logging(verbose: bool = False) -> None:
    root = logging.getLogger()
    level = logging.DEBUG if verbose else logging.INFO
    if not root.handlers:
        logging.basicConfig(level=level, format=LOG_FORMAT)
    root.setLevel(level)


async def _serve(pipeline: Pipeline) -> None:
    loop = asyncio.get_running_loop()
    for sig in (signal.SIGINT, signal.SIGTERM):
        try:
            loop.add_signal_handler(sig, pipeline.request_shutdown)
        except NotImplementedError:  # pragma: no cover - Windows
            pass
    await pipeline.run()


def run_logger(args) -> int:
    try:
        config = ConfigManager(args.config)
        config.apply_overrides(
            host=args.host,
            port=args.port,
            topic=args.topic,
            period=args.period,
            output=args.output,
            verbose=args.verbose,
        )
    except ConfigError as e:
        logger.error("配置错误: %s", e)
        return 2

    setup_logging(config.is_verbose())
    mqtt_config = config.get_mqtt_config()
    logger.info("Host: %s", mqtt_config["host"])
    logger.info("Port: %s", mqtt_config["port"])
    logger.info("Topic: %s", mqtt_config["topic"])
    logger.info("Verbose: %s", config.is_verbose())
    logger.info("Scan Period: %s", config.get_scan_period())
    logger.info("Output: %s", config.get_output_path())

    pipeline = Pipeline(config)
    try:
        asyncio.run(_serve(pipeline))
    except (AdapterError, ChannelError) as e:
        logger.error("启动失败: %s", e)
        print(f"启动失败: {e}", file=sys.stderr)
        return 1
    except KeyboardInterrupt:
        pass
    return 0


def main(argv=None):
    parser = argparse.ArgumentParser(prog="ips-logger", description="BLE beacon / calibration logger")
    parser.add_argument("--config", default=None, help="配置文件路径，默认读取 ./config/config.yaml 或环境变量 IPS_LOGGER_CONFIG")
    parser.add_argument("--host", default=None, help="MQTT 服务器地址")
    parser.add_argument("-p", "--port", type=int, default=None, help="MQTT 端口")
    parser.add_argument("-t", "--topic", default=None, help="订阅的校准主题")
    parser.add_argument("--period", type=float, default=None, help="扫描周期（秒）")
    parser.add_argument("-v", "--verbose", action="store_true", help="输出调试日志")
    parser.add_argument("-o", "--output", default=None, help="输出文件名，校准日志为 mqtt_<output>")
    sub = parser.add_subparsers(dest="cmd")

    p_run = sub.add_parser("run", help="运行扫描与记录")
    p_run.set_defaults(func=run_logger)

    args = parser.parse_args(argv)
    # 无子命令时默认启动
    if not hasattr(args, "func"):
        return run_logger(args)
    return args.func(args)


if __name__ == "__main__":
    sys.exit(main())
