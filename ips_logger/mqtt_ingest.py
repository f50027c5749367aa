from __future__ import annotations

import asyncio
import logging
from typing import Any, Optional

import paho.mqtt.client as mqtt
from paho.mqtt.client import MQTTMessage

from .calibration_store import CalibrationStore
from .exceptions import ChannelError, DecodeError
from .models import CalibrationRecord


logger = logging.getLogger(__name__)


class MQTTChannel:
    """paho-mqtt 网络线程收到的消息通过 call_soon_threadsafe 交给事件循环"""

    def __init__(
        self,
        host: str,
        port: int,
        topic: str,
        client_id: str = "beacon_logger",
        keepalive: int = 5,
    ):
        self.host = host
        self.port = port
        self.topic = topic
        self.client_id = client_id
        self.keepalive = keepalive
        self.client: Optional[mqtt.Client] = None
        self._loop: Optional[asyncio.AbstractEventLoop] = None
        self._inbox: "asyncio.Queue[Optional[bytes]]" = asyncio.Queue()
        self._closed = False

    @property
    def is_connected(self) -> bool:
        return self.client is not None and not self._closed

    # ---------- MQTT ----------
    def connect(self, loop: Optional[asyncio.AbstractEventLoop] = None) -> None:
        self._loop = loop or asyncio.get_running_loop()
        client = mqtt.Client(
            callback_api_version=mqtt.CallbackAPIVersion.VERSION2,
            client_id=self.client_id,
        )
        client.enable_logger(logger)
        client.on_connect = self.on_connect
        client.on_message = self.on_message
        client.on_disconnect = self.on_disconnect
        try:
            client.connect(self.host, self.port, self.keepalive)
        except (OSError, ValueError) as e:
            raise ChannelError(f"MQTT连接错误 {self.host}:{self.port}: {e}") from e
        client.loop_start()
        self.client = client
        self._closed = False
        logger.info("连接到MQTT服务器 %s:%s", self.host, self.port)

    def disconnect(self) -> None:
        client = self.client
        self.client = None
        self._closed = True
        # 唤醒仍在等待消息的任务
        self._inbox.put_nowait(None)
        if client is None:
            return
        try:
            client.disconnect()
        finally:
            client.loop_stop()
            logger.info("MQTT连接已断开")

    async def receive_next(self) -> bytes:
        """等待下一条消息的原始负载"""
        if self._closed and self._inbox.empty():
            raise ChannelError("MQTT通道已关闭")
        payload = await self._inbox.get()
        if payload is None:
            raise ChannelError("MQTT通道已关闭")
        return payload

    def _deliver(self, payload: bytes) -> None:
        self._inbox.put_nowait(payload)

    # ---------- MQTT handlers (网络线程) ----------
    def on_connect(self, client: mqtt.Client, userdata: Any, flags: Any, reason_code: Any, properties: Any = None):
        if reason_code.value != 0:
            logger.error("连接失败，返回码: %s", reason_code)
            return
        logger.info("成功连接到MQTT服务器")
        # 重连后需要重新订阅
        client.subscribe(self.topic, qos=0)
        logger.info("已订阅主题: %s", self.topic)

    def on_message(self, client: mqtt.Client, userdata: Any, msg: MQTTMessage):
        if self._loop is None or self._loop.is_closed():
            return
        try:
            self._loop.call_soon_threadsafe(self._deliver, bytes(msg.payload))
        except RuntimeError:
            # 事件循环已关闭，丢弃消息
            logger.debug("事件循环已关闭，丢弃MQTT消息: %s", msg.topic)

    def on_disconnect(self, client: mqtt.Client, userdata: Any, flags: Any, reason_code: Any, properties: Any = None):
        if not self._closed:
            logger.warning("MQTT连接断开: %s，等待自动重连", reason_code)


class CalibrationIngestTask:
    """接收校准消息，解码后写入 CalibrationStore（唯一写者）"""

    def __init__(self, channel, store: CalibrationStore, retry_delay: float = 1.0):
        self.channel = channel
        self.store = store
        self.retry_delay = retry_delay
        self.accepted = 0
        self.rejected = 0

    async def handle_payload(self, payload: bytes) -> Optional[CalibrationRecord]:
        try:
            record = CalibrationRecord.parse(payload)
        except DecodeError as e:
            self.rejected += 1
            logger.warning("Invalid Format: %s", e)
            return None
        stored = await self.store.upsert(record)
        self.accepted += 1
        return stored

    async def run(self) -> None:
        while True:
            try:
                payload = await self.channel.receive_next()
            except ChannelError as e:
                logger.warning("接收MQTT消息失败: %s", e)
                await asyncio.sleep(self.retry_delay)
                continue
            try:
                await self.handle_payload(payload)
            except Exception as e:
                self.rejected += 1
                logger.exception("处理校准消息时出错: %s", e)
