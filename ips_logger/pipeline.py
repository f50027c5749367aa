from __future__ import annotations

import asyncio
import logging
from typing import List, Optional

from .adapter import BleakAdapter
from .batch_queue import BatchQueue
from .calibration_store import CalibrationStore
from .config_manager import ConfigManager
from .correlator import CorrelatorTask
from .exceptions import ChannelError, FlushError
from .log_sink import CsvLogSink, calibration_log_path
from .mqtt_ingest import CalibrationIngestTask, MQTTChannel
from .scanner import ScannerTask


logger = logging.getLogger(__name__)


class Pipeline:
    """组装扫描、校准接收、关联写入三个任务并管理其生命周期"""

    def __init__(
        self,
        config_manager: ConfigManager,
        adapter=None,
        channel=None,
        primary_sink: Optional[CsvLogSink] = None,
        calibration_sink: Optional[CsvLogSink] = None,
    ):
        self.config_manager = config_manager
        scan_config = config_manager.get_scan_config()
        mqtt_config = config_manager.get_mqtt_config()
        output = config_manager.get_output_path()

        # 校准存储显式注入两个任务，没有全局状态
        self.store = CalibrationStore()
        self.queue = BatchQueue(
            config_manager.get_queue_maxsize(), config_manager.get_overflow_policy()
        )
        self.primary_sink = primary_sink or CsvLogSink.primary(output)
        self.calibration_sink = calibration_sink or CsvLogSink.calibration(
            calibration_log_path(output)
        )
        self.adapter = adapter or BleakAdapter(
            service_uuid=scan_config.get("service_uuid"),
            adapter=scan_config.get("adapter"),
        )
        self.channel = channel or MQTTChannel(
            host=mqtt_config["host"],
            port=int(mqtt_config["port"]),
            topic=mqtt_config["topic"],
            client_id=mqtt_config.get("client_id", "beacon_logger"),
            keepalive=int(mqtt_config.get("keepalive", 5)),
        )

        self.scanner = ScannerTask(self.adapter, self.queue, config_manager.get_scan_period())
        self.ingest = CalibrationIngestTask(self.channel, self.store)
        self.correlator = CorrelatorTask(
            self.queue, self.store, self.primary_sink, self.calibration_sink
        )

        self._tasks: List[asyncio.Task] = []
        self._shutdown: Optional[asyncio.Event] = None

    @property
    def tasks(self) -> List[asyncio.Task]:
        return list(self._tasks)

    async def start(self) -> None:
        """启动适配器与 MQTT 连接，失败直接抛出（致命错误）"""
        await self.adapter.start()
        try:
            self.channel.connect(asyncio.get_running_loop())
        except ChannelError:
            await self.adapter.stop()
            raise
        logger.info(
            "日志输出: %s, %s", self.primary_sink.path, self.calibration_sink.path
        )

    def _on_task_done(self, task: asyncio.Task) -> None:
        if task.cancelled():
            return
        exc = task.exception()
        if exc is not None:
            # 没有监督重启，流水线降级运行
            logger.error("任务 %s 异常退出: %r", task.get_name(), exc)

    async def run(self) -> None:
        self._shutdown = asyncio.Event()
        await self.start()
        self._tasks = [
            asyncio.create_task(self.scanner.run(), name="scanner"),
            asyncio.create_task(self.ingest.run(), name="calibration-ingest"),
            asyncio.create_task(self.correlator.run(), name="correlator"),
        ]
        for task in self._tasks:
            task.add_done_callback(self._on_task_done)
        try:
            await self._shutdown.wait()
        finally:
            await self.stop()

    def request_shutdown(self) -> None:
        logger.info("收到停止请求")
        if self._shutdown is not None:
            self._shutdown.set()

    async def stop(self) -> None:
        tasks, self._tasks = self._tasks, []
        for task in tasks:
            task.cancel()
        await asyncio.gather(*tasks, return_exceptions=True)

        self.queue.close()
        await self.adapter.stop()
        self.channel.disconnect()

        # 处理停止前已扫描但尚未写入的批次
        for batch in self.queue.drain():
            await self.correlator.process_batch(batch)

        for sink in (self.primary_sink, self.calibration_sink):
            try:
                sink.flush()
            except FlushError as e:
                logger.error("Failed to write to file: %s", e)
        logger.info("已停止")
