from __future__ import annotations

import asyncio
import logging
from enum import Enum
from typing import List

from .exceptions import QueueClosed
from .models import ObservationBatch


logger = logging.getLogger(__name__)


class OverflowPolicy(Enum):
    BLOCK = "block"
    DROP_OLDEST = "drop_oldest"


class BatchQueue:
    """扫描任务与写入任务之间的异步 FIFO（单生产者、单消费者）"""

    def __init__(self, maxsize: int = 0, overflow: OverflowPolicy = OverflowPolicy.BLOCK):
        if maxsize < 0:
            raise ValueError("maxsize 不能为负数")
        self._queue: asyncio.Queue[ObservationBatch] = asyncio.Queue(maxsize)
        self.overflow = overflow
        self.dropped = 0
        self._closed = False

    @property
    def maxsize(self) -> int:
        return self._queue.maxsize

    @property
    def closed(self) -> bool:
        return self._closed

    def qsize(self) -> int:
        return self._queue.qsize()

    def close(self) -> None:
        self._closed = True

    async def put(self, batch: ObservationBatch) -> None:
        if self._closed:
            raise QueueClosed("队列已关闭")
        if self.overflow is OverflowPolicy.DROP_OLDEST:
            while self._queue.full():
                old = self._queue.get_nowait()
                self._queue.task_done()
                self.dropped += 1
                logger.warning("队列已满，丢弃最早的批次: %s (%s 个信标)", old.timestamp, len(old))
            self._queue.put_nowait(batch)
            return
        await self._queue.put(batch)

    async def get(self) -> ObservationBatch:
        batch = await self._queue.get()
        self._queue.task_done()
        return batch

    def drain(self) -> List[ObservationBatch]:
        """取出所有尚未处理的批次（停止时使用）"""
        batches: List[ObservationBatch] = []
        while not self._queue.empty():
            batches.append(self._queue.get_nowait())
            self._queue.task_done()
        return batches
