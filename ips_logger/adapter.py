from __future__ import annotations

import logging
from typing import List, Optional

from bleak import BleakScanner
from bleak.exc import BleakError

from .exceptions import AdapterError
from .models import DeviceReading


logger = logging.getLogger(__name__)

# 定位信标广播的服务 UUID
BLE_BEACON_UUID = "422da7fb-7d15-425e-a65f-e0dbcc6f4c6a"


class BleakAdapter:
    """基于 bleak 的蓝牙适配器：后台持续扫描，按需返回当前可见设备"""

    def __init__(self, service_uuid: Optional[str] = BLE_BEACON_UUID, adapter: Optional[str] = None):
        self.service_uuid = service_uuid
        self.adapter = adapter
        self._scanner: Optional[BleakScanner] = None

    @property
    def is_running(self) -> bool:
        return self._scanner is not None

    async def start(self) -> None:
        kwargs = {}
        if self.adapter:
            kwargs["adapter"] = self.adapter
        service_uuids = [self.service_uuid] if self.service_uuid else None
        try:
            scanner = BleakScanner(service_uuids=service_uuids, **kwargs)
            await scanner.start()
        except (BleakError, OSError) as e:
            raise AdapterError(f"蓝牙适配器启动失败: {e}") from e
        self._scanner = scanner
        logger.info("蓝牙扫描已启动，过滤服务: %s", self.service_uuid or "无")

    async def stop(self) -> None:
        scanner = self._scanner
        self._scanner = None
        if scanner is None:
            return
        try:
            await scanner.stop()
            logger.info("蓝牙扫描已停止")
        except (BleakError, OSError) as e:
            logger.error("停止蓝牙扫描时出错: %s", e)

    async def list_visible_devices(self) -> List[DeviceReading]:
        if self._scanner is None:
            raise AdapterError("蓝牙适配器未启动")
        try:
            discovered = self._scanner.discovered_devices_and_advertisement_data
        except (BleakError, OSError) as e:
            raise AdapterError(f"获取扫描结果失败: {e}") from e

        readings: List[DeviceReading] = []
        for address, (device, advertisement) in discovered.items():
            rssi = getattr(advertisement, "rssi", None)
            readings.append(
                DeviceReading(
                    address=str(getattr(device, "address", None) or address),
                    rssi=int(rssi) if rssi is not None else None,
                )
            )
        return readings
