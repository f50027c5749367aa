from __future__ import annotations

import json
from dataclasses import asdict, dataclass, field
from datetime import datetime
from typing import Any, Dict, Iterator, Optional, Sequence, Tuple, Union

from .exceptions import DecodeError


def normalize_identity(mac_address: str) -> str:
    """信标地址统一为大写，用于不区分大小写的匹配"""
    return mac_address.strip().upper()


def _now_str() -> str:
    return datetime.now().strftime("%Y-%m-%d %H:%M:%S")


@dataclass(frozen=True)
class DeviceReading:
    """适配器返回的单个可见设备，rssi 可能缺失"""

    address: str
    rssi: Optional[int] = None


@dataclass(frozen=True)
class Observation:
    """一次扫描中的单个信标读数"""

    mac_address: str
    rssi: int

    @property
    def identity(self) -> str:
        return normalize_identity(self.mac_address)

    def to_row(self) -> Dict[str, Any]:
        return {"mac_address": self.mac_address, "rssi": self.rssi}


@dataclass(frozen=True)
class ObservationBatch:
    """
    一个扫描周期产生的读数批次（按扫描顺序）
    """

    observations: Tuple[Observation, ...] = ()
    timestamp: str = field(default_factory=_now_str)

    def __len__(self) -> int:
        return len(self.observations)

    def __getitem__(self, index: int) -> Observation:
        return self.observations[index]

    def __iter__(self) -> Iterator[Observation]:
        return iter(self.observations)

    @property
    def is_empty(self) -> bool:
        return len(self) == 0

    @classmethod
    def from_readings(cls, readings: Sequence[Observation]) -> "ObservationBatch":
        return cls(observations=tuple(readings))


PRIMARY_COLUMNS = ("mac_address", "rssi")
CALIBRATION_COLUMNS = ("device_identifier", "mac_address", "rssi", "diff")


def _require_int(data: Dict[str, Any], key: str) -> int:
    value = data.get(key)
    # bool 是 int 的子类，需单独排除
    if isinstance(value, bool) or not isinstance(value, int):
        raise DecodeError(f"字段 {key} 必须为整数: {value!r}")
    return value


def _require_str(data: Dict[str, Any], key: str) -> str:
    value = data.get(key)
    if not isinstance(value, str) or not value.strip():
        raise DecodeError(f"字段 {key} 必须为非空字符串: {value!r}")
    return value


@dataclass(frozen=True)
class CalibrationRecord:
    """
    参考设备发布的校准数据

    device_identifier: 发布校准的参考设备ID
    mac_address: 被校准的信标地址
    rssi: 参考设备自身观测到的信号强度
    diff: 期望值与观测值之差（校准偏移）
    """

    device_identifier: str
    mac_address: str
    rssi: int
    diff: int

    @property
    def identity(self) -> str:
        return normalize_identity(self.mac_address)

    @property
    def key(self) -> Tuple[str, str]:
        return (self.identity, self.device_identifier)

    def to_row(self) -> Dict[str, Any]:
        return asdict(self)

    @classmethod
    def parse(cls, payload: Union[bytes, bytearray, str]) -> "CalibrationRecord":
        """解析 MQTT 消息（ASCII JSON 对象），失败抛出 DecodeError"""
        if isinstance(payload, (bytes, bytearray)):
            try:
                text = bytes(payload).decode("ascii")
            except UnicodeDecodeError as e:
                raise DecodeError("消息不是 ASCII 文本") from e
        else:
            text = payload
            if not text.isascii():
                raise DecodeError("消息不是 ASCII 文本")

        try:
            data = json.loads(text)
        except (ValueError, RecursionError) as e:
            raise DecodeError(f"JSON 格式错误: {e}") from e
        if not isinstance(data, dict):
            raise DecodeError("消息不是 JSON 对象")

        return cls(
            device_identifier=_require_str(data, "device_identifier"),
            mac_address=_require_str(data, "mac_address"),
            rssi=_require_int(data, "rssi"),
            diff=_require_int(data, "diff"),
        )
