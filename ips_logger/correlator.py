from __future__ import annotations

import logging
from dataclasses import dataclass

from .batch_queue import BatchQueue
from .calibration_store import CalibrationStore
from .exceptions import FlushError, WriteError
from .log_sink import CsvLogSink
from .models import ObservationBatch


logger = logging.getLogger(__name__)


@dataclass
class BatchStats:
    primary_rows: int = 0
    calibration_rows: int = 0
    failed_rows: int = 0
    flush_failures: int = 0


class CorrelatorTask:
    """
    关联写入任务

    逐条读取批次中的信标，在 CalibrationStore 中查找同地址的所有校准记录：
    每条校准记录写一行到校准日志，信标本身写一行到原始日志。
    单行写入失败或 flush 失败只记录日志，不中断任务。
    """

    def __init__(
        self,
        queue: BatchQueue,
        store: CalibrationStore,
        primary_sink: CsvLogSink,
        calibration_sink: CsvLogSink,
    ):
        self.queue = queue
        self.store = store
        self.primary_sink = primary_sink
        self.calibration_sink = calibration_sink
        self.batches = 0

    def _append(self, sink: CsvLogSink, row, stats: BatchStats) -> bool:
        try:
            sink.append_row(row)
            return True
        except WriteError as e:
            stats.failed_rows += 1
            logger.error("Failed to write beacon: %s", e)
            return False

    def _flush(self, sink: CsvLogSink, stats: BatchStats) -> None:
        try:
            sink.flush()
        except FlushError as e:
            stats.flush_failures += 1
            logger.error("Failed to write to file: %s", e)

    async def process_batch(self, batch: ObservationBatch) -> BatchStats:
        stats = BatchStats()
        for obs in batch:
            # 每次查询各自加读锁，批次内不保证一致性
            records = await self.store.lookup(obs.mac_address)
            logger.debug("Querying at: %s", obs.mac_address)
            if not records:
                logger.debug("无校准数据: %s", obs.mac_address)
            for record in records:
                if self._append(self.calibration_sink, record.to_row(), stats):
                    stats.calibration_rows += 1

            if self._append(self.primary_sink, obs.to_row(), stats):
                stats.primary_rows += 1

        self._flush(self.primary_sink, stats)
        self._flush(self.calibration_sink, stats)
        self.batches += 1
        logger.info(
            "批次 %s 已记录: 信标 %s 行, 校准 %s 行",
            batch.timestamp,
            stats.primary_rows,
            stats.calibration_rows,
        )
        return stats

    async def run(self) -> None:
        while True:
            batch = await self.queue.get()
            await self.process_batch(batch)
