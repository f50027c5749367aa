from __future__ import annotations

import asyncio

import pytest

from conftest import FakeAdapter, wait_until
from ips_logger.batch_queue import BatchQueue
from ips_logger.exceptions import AdapterError
from ips_logger.models import DeviceReading
from ips_logger.scanner import ScannerTask


@pytest.mark.asyncio
async def test_scan_once_skips_devices_without_rssi() -> None:
    adapter = FakeAdapter(
        [[DeviceReading("AA:AA", -60), DeviceReading("BB:BB", None), DeviceReading("CC:CC", -71)]]
    )
    scanner = ScannerTask(adapter, BatchQueue())

    batch = await scanner.scan_once()

    assert batch is not None
    assert [(o.mac_address, o.rssi) for o in batch] == [("AA:AA", -60), ("CC:CC", -71)]


@pytest.mark.asyncio
async def test_scan_once_emits_empty_batch_when_every_device_fails() -> None:
    adapter = FakeAdapter([[DeviceReading("AA:AA", None), DeviceReading("BB:BB", None)]])
    batch = await ScannerTask(adapter, BatchQueue()).scan_once()

    assert batch is not None
    assert batch.is_empty


@pytest.mark.asyncio
async def test_scan_once_returns_none_on_adapter_failure() -> None:
    adapter = FakeAdapter([AdapterError("adapter gone")])
    assert await ScannerTask(adapter, BatchQueue()).scan_once() is None


@pytest.mark.asyncio
async def test_failed_tick_emits_nothing_and_next_tick_emits_one_batch() -> None:
    adapter = FakeAdapter([AdapterError("busy"), [DeviceReading("AA:AA", -60)]])
    queue = BatchQueue()
    scanner = ScannerTask(adapter, queue, period=0)

    task = asyncio.create_task(scanner.run())
    try:
        batch = await asyncio.wait_for(queue.get(), 2.0)
        # 第三个周期阻塞在适配器查询上
        await wait_until(lambda: adapter.calls == 3)
    finally:
        task.cancel()
        await asyncio.gather(task, return_exceptions=True)

    assert [(o.mac_address, o.rssi) for o in batch] == [("AA:AA", -60)]
    assert queue.qsize() == 0


@pytest.mark.asyncio
async def test_closed_queue_does_not_stop_scanning() -> None:
    adapter = FakeAdapter([[DeviceReading("AA:AA", -60)], [DeviceReading("AA:AA", -61)]])
    queue = BatchQueue()
    queue.close()
    scanner = ScannerTask(adapter, queue, period=0)

    task = asyncio.create_task(scanner.run())
    try:
        await wait_until(lambda: adapter.calls == 3)
        assert not task.done()
    finally:
        task.cancel()
        await asyncio.gather(task, return_exceptions=True)
