from __future__ import annotations

import logging
import os
from typing import Any, Dict, List, Mapping, Optional, Sequence

import pandas as pd

from .exceptions import FlushError, WriteError
from .models import CALIBRATION_COLUMNS, PRIMARY_COLUMNS


logger = logging.getLogger(__name__)


def calibration_log_path(output_path: str) -> str:
    """校准日志与原始日志同目录，文件名加 mqtt_ 前缀"""
    directory, name = os.path.split(output_path)
    return os.path.join(directory, "mqtt_" + name)


class CsvLogSink:
    """追加写入的 CSV 日志（pandas），append_row 先缓存，flush 时落盘"""

    def __init__(
        self,
        path: str,
        columns: Sequence[str],
        int_columns: Sequence[str] = (),
        max_pending: int = 100_000,
    ):
        self.path = path
        self.columns = tuple(columns)
        self.int_columns = tuple(int_columns)
        self.max_pending = max_pending
        self.dropped = 0
        self._buffer: List[Dict[str, Any]] = []

    @classmethod
    def primary(cls, path: str) -> "CsvLogSink":
        return cls(path, PRIMARY_COLUMNS, int_columns=("rssi",))

    @classmethod
    def calibration(cls, path: str) -> "CsvLogSink":
        return cls(path, CALIBRATION_COLUMNS, int_columns=("rssi", "diff"))

    @property
    def pending(self) -> int:
        return len(self._buffer)

    # ---- Utils ----
    def _needs_header(self) -> bool:
        return not os.path.exists(self.path) or os.path.getsize(self.path) == 0

    def _current_size(self) -> Optional[int]:
        if os.path.isfile(self.path):
            return os.path.getsize(self.path)
        return None

    def _rollback(self, size_before: Optional[int]) -> None:
        """截断本次 flush 写入的部分内容，避免重试时重复写入"""
        try:
            if size_before is None:
                if os.path.isfile(self.path):
                    os.remove(self.path)
            elif os.path.getsize(self.path) > size_before:
                os.truncate(self.path, size_before)
        except OSError as e:
            logger.error("回滚 %s 失败: %s", self.path, e)

    def _validate(self, row: Mapping[str, Any]) -> Dict[str, Any]:
        missing = [c for c in self.columns if c not in row]
        if missing:
            raise WriteError(f"缺少列: {', '.join(missing)}", row=row)
        for col in self.int_columns:
            value = row[col]
            if isinstance(value, bool) or not isinstance(value, int):
                raise WriteError(f"列 {col} 必须为整数: {value!r}", row=row)
        return {c: row[c] for c in self.columns}

    # ---- Write ----
    def append_row(self, row: Mapping[str, Any]) -> None:
        validated = self._validate(row)
        # 持续 flush 失败时缓存有上限，丢弃最早的行
        if self.max_pending > 0 and len(self._buffer) >= self.max_pending:
            self._buffer.pop(0)
            self.dropped += 1
            logger.warning("%s 缓存已满，丢弃最早的一行", self.path)
        self._buffer.append(validated)

    def flush(self) -> int:
        """写出缓存的行，返回写出的行数；失败时保留缓存以便下次重试"""
        if not self._buffer:
            return 0
        rows = self._buffer
        size_before = self._current_size()
        try:
            os.makedirs(os.path.dirname(self.path) or ".", exist_ok=True)
            df = pd.DataFrame(rows, columns=list(self.columns))
            df.to_csv(
                self.path,
                mode="a",
                header=self._needs_header(),
                index=False,
                encoding="utf-8",
            )
        except OSError as e:
            self._rollback(size_before)
            raise FlushError(f"写入 {self.path} 失败: {e}", path=self.path) from e
        self._buffer = []
        logger.debug("已写入 %s 行到 %s", len(rows), self.path)
        return len(rows)
