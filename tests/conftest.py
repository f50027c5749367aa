from __future__ import annotations

import asyncio
from typing import Any, Callable, Dict, List, Optional

import pytest

from ips_logger.exceptions import FlushError, WriteError
from ips_logger.models import DeviceReading


class FakeAdapter:
    """Returns scripted device lists; blocks forever once the script runs out."""

    def __init__(self, script: Optional[List[Any]] = None, start_error: Optional[Exception] = None) -> None:
        self.script = list(script or [])
        self.start_error = start_error
        self.calls = 0
        self.started = False
        self.stopped = False

    async def start(self) -> None:
        if self.start_error is not None:
            raise self.start_error
        self.started = True

    async def stop(self) -> None:
        self.stopped = True

    async def list_visible_devices(self) -> List[DeviceReading]:
        self.calls += 1
        if not self.script:
            await asyncio.Event().wait()
        item = self.script.pop(0)
        if isinstance(item, Exception):
            raise item
        if callable(item):
            return await item()
        return item


class FakeChannel:
    """In-memory messaging channel; queue bytes or exceptions with push()."""

    def __init__(self, connect_error: Optional[Exception] = None) -> None:
        self._inbox: asyncio.Queue = asyncio.Queue()
        self.connect_error = connect_error
        self.connected = False
        self.disconnected = False

    def connect(self, loop=None) -> None:
        if self.connect_error is not None:
            raise self.connect_error
        self.connected = True

    def disconnect(self) -> None:
        self.disconnected = True

    def push(self, item: Any) -> None:
        self._inbox.put_nowait(item)

    async def receive_next(self) -> bytes:
        item = await self._inbox.get()
        if isinstance(item, Exception):
            raise item
        return item


class MemorySink:
    def __init__(
        self,
        path: str = "memory.csv",
        fail_row: Optional[Callable[[Dict[str, Any]], bool]] = None,
        fail_flushes: int = 0,
    ) -> None:
        self.path = path
        self.fail_row = fail_row
        self.fail_flushes = fail_flushes
        self.pending_rows: List[Dict[str, Any]] = []
        self.rows: List[Dict[str, Any]] = []
        self.flush_calls = 0

    @property
    def pending(self) -> int:
        return len(self.pending_rows)

    def append_row(self, row: Dict[str, Any]) -> None:
        if self.fail_row is not None and self.fail_row(row):
            raise WriteError("boom", row=row)
        self.pending_rows.append(dict(row))

    def flush(self) -> int:
        self.flush_calls += 1
        if self.fail_flushes > 0:
            self.fail_flushes -= 1
            raise FlushError("disk full", path=self.path)
        n = len(self.pending_rows)
        self.rows.extend(self.pending_rows)
        self.pending_rows = []
        return n


async def wait_until(predicate: Callable[[], bool], timeout: float = 2.0) -> None:
    async def _poll() -> None:
        while not predicate():
            await asyncio.sleep(0.01)

    await asyncio.wait_for(_poll(), timeout)


@pytest.fixture
def memory_sinks():
    return MemorySink("primary.csv"), MemorySink("mqtt_primary.csv")

