from __future__ import annotations

import asyncio
import logging
from typing import List, Optional

from .batch_queue import BatchQueue
from .exceptions import AdapterError, QueueClosed
from .models import Observation, ObservationBatch


logger = logging.getLogger(__name__)


class ScannerTask:
    """
    周期扫描任务

    每 period 秒向适配器查询一次可见设备，生成一个 ObservationBatch 放入队列。
    适配器整体查询失败时跳过本周期，下个周期重试；单个设备读不到 RSSI 只跳过该设备。
    adapter 需提供 `async list_visible_devices() -> list[DeviceReading]`。
    """

    def __init__(self, adapter, queue: BatchQueue, period: float = 2.0):
        self.adapter = adapter
        self.queue = queue
        self.period = period
        self.cycles = 0

    async def scan_once(self) -> Optional[ObservationBatch]:
        try:
            devices = await self.adapter.list_visible_devices()
        except AdapterError as e:
            logger.error("获取扫描结果失败: %s", e)
            return None

        observations: List[Observation] = []
        for device in devices:
            if device.rssi is None:
                logger.warning("无法获取 RSSI: %s", device.address)
                continue
            obs = Observation(mac_address=device.address, rssi=device.rssi)
            logger.debug("Discovered: %s rssi: %s", obs.mac_address, obs.rssi)
            observations.append(obs)
        return ObservationBatch.from_readings(observations)

    async def run(self) -> None:
        while True:
            await asyncio.sleep(self.period)
            self.cycles += 1
            batch = await self.scan_once()
            if batch is None:
                continue
            try:
                await self.queue.put(batch)
            except QueueClosed as e:
                logger.error("扫描结果无法传递到写入任务: %s", e)
