from __future__ import annotations

import asyncio
import logging
from contextlib import asynccontextmanager
from typing import AsyncIterator, Dict, List, Optional

from .models import CalibrationRecord, normalize_identity


logger = logging.getLogger(__name__)


class AsyncRWLock:
    """asyncio 读写锁：多读或单写，等待中的写者会阻止新的读者"""

    def __init__(self) -> None:
        self._cond = asyncio.Condition()
        self._readers = 0
        self._writer = False
        self._writers_waiting = 0

    @property
    def readers(self) -> int:
        return self._readers

    @property
    def writing(self) -> bool:
        return self._writer

    @asynccontextmanager
    async def read(self) -> AsyncIterator[None]:
        async with self._cond:
            while self._writer or self._writers_waiting:
                await self._cond.wait()
            self._readers += 1
        try:
            yield
        finally:
            async with self._cond:
                self._readers -= 1
                if self._readers == 0:
                    self._cond.notify_all()

    @asynccontextmanager
    async def write(self) -> AsyncIterator[None]:
        async with self._cond:
            self._writers_waiting += 1
            try:
                while self._writer or self._readers:
                    await self._cond.wait()
            finally:
                self._writers_waiting -= 1
                # 写者取消等待时唤醒被它挡住的读者
                self._cond.notify_all()
            self._writer = True
        try:
            yield
        finally:
            async with self._cond:
                self._writer = False
                self._cond.notify_all()


class CalibrationStore:
    """管理校准数据：信标地址(大写) -> 参考设备ID -> 最新 CalibrationRecord"""

    def __init__(self) -> None:
        self._data: Dict[str, Dict[str, CalibrationRecord]] = {}
        self._lock = AsyncRWLock()

    @property
    def lock(self) -> AsyncRWLock:
        return self._lock

    # ---- Write ----
    async def upsert(self, record: CalibrationRecord) -> CalibrationRecord:
        """新增或覆盖 (identity, device_identifier) 对应的记录"""
        # 仅键做大写归一化，记录本身保持发布时的地址写入日志
        identity = record.identity
        async with self._lock.write():
            by_device = self._data.setdefault(identity, {})
            replaced = record.device_identifier in by_device
            by_device[record.device_identifier] = record
        logger.debug(
            "校准数据%s: %s / %s diff=%s",
            "已更新" if replaced else "已新增",
            identity,
            record.device_identifier,
            record.diff,
        )
        return record

    # ---- Read ----
    async def lookup(self, mac_address: str) -> List[CalibrationRecord]:
        """返回该信标下所有参考设备的校准记录快照，顺序不保证"""
        identity = normalize_identity(mac_address)
        async with self._lock.read():
            by_device = self._data.get(identity)
            return list(by_device.values()) if by_device else []

    async def get(self, mac_address: str, device_identifier: str) -> Optional[CalibrationRecord]:
        identity = normalize_identity(mac_address)
        async with self._lock.read():
            return self._data.get(identity, {}).get(device_identifier)

    # ---- Accessors (不加锁，仅用于诊断) ----
    def has(self, mac_address: str) -> bool:
        return normalize_identity(mac_address) in self._data

    def __len__(self) -> int:
        return len(self._data)

    def record_count(self) -> int:
        return sum(len(v) for v in self._data.values())

    def snapshot(self) -> Dict[str, Dict[str, CalibrationRecord]]:
        return {mac: dict(by_device) for mac, by_device in self._data.items()}
