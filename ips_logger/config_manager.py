from __future__ import annotations

import copy
import logging
import os
import yaml

from typing import Callable, Any

from .adapter import BLE_BEACON_UUID
from .batch_queue import OverflowPolicy
from .exceptions import ConfigError


logger = logging.getLogger(__name__)


def _env_or_default(env_key: str, default: Any, cast: Callable[[str], Any] = str) -> Any:
    v = os.environ.get(env_key)
    if v is not None:
        try:
            return cast(v)
        except ValueError:
            return v
    return default


def _as_bool(v: str) -> bool:
    return v.lower() in ("1", "true", "yes")


def default_config_path() -> str:
    return _env_or_default(
        "IPS_LOGGER_CONFIG",
        os.path.join(".", "config", "config.yaml"),
    )


class ConfigManager:
    """配置管理类，负责读写YAML配置文件"""

    def __init__(self, config_file: str | None = None):
        self.config_file = config_file or default_config_path()
        self.default_config = {
            "mqtt": {
                "host": _env_or_default("IPS_MQTT_HOST", "localhost"),
                "port": _env_or_default("IPS_MQTT_PORT", 1883, int),
                "topic": _env_or_default("IPS_MQTT_TOPIC", "beacon/calibration"),
                "client_id": _env_or_default("IPS_MQTT_CLIENT_ID", "beacon_logger"),
                "keepalive": _env_or_default("IPS_MQTT_KEEPALIVE", 5, int),
            },
            "scan": {
                "period": _env_or_default("IPS_SCAN_PERIOD", 2.0, float),
                "service_uuid": _env_or_default("IPS_SCAN_SERVICE_UUID", BLE_BEACON_UUID),
                "adapter": _env_or_default("IPS_SCAN_ADAPTER", None),
            },
            "queue": {
                "maxsize": _env_or_default("IPS_QUEUE_MAXSIZE", 64, int),
                "overflow": _env_or_default("IPS_QUEUE_OVERFLOW", OverflowPolicy.BLOCK.value),
            },
            "output": {
                "path": _env_or_default("IPS_OUTPUT_PATH", "output.csv"),
            },
            "logging": {
                "verbose": _env_or_default("IPS_VERBOSE", False, _as_bool),
            },
        }
        self.load_config()

    def load_config(self) -> None:
        """加载配置文件，如果不存在则创建默认配置"""
        if os.path.exists(self.config_file):
            try:
                with open(self.config_file, "r", encoding="utf-8") as f:
                    loaded = yaml.safe_load(f) or {}
            except yaml.YAMLError as e:
                raise ConfigError(f"配置文件格式错误 {self.config_file}: {e}") from e
            if not isinstance(loaded, dict):
                raise ConfigError(f"配置文件顶层必须是映射: {self.config_file}")
            self.config = loaded
            self._merge_default_config()
        else:
            self.config = copy.deepcopy(self.default_config)
            self.save_config()
        self.validate()

    def _merge_default_config(self) -> None:
        def merge_dict(default, current):
            for key, value in default.items():
                if key not in current:
                    current[key] = copy.deepcopy(value)
                elif isinstance(value, dict) and isinstance(current[key], dict):
                    merge_dict(value, current[key])

        merge_dict(self.default_config, self.config)

    def save_config(self) -> None:
        try:
            os.makedirs(os.path.dirname(self.config_file) or ".", exist_ok=True)
            with open(self.config_file, "w", encoding="utf-8") as f:
                yaml.dump(
                    self.config,
                    f,
                    default_flow_style=False,
                    allow_unicode=True,
                    indent=2,
                )
        except OSError as e:
            # 无法写出默认配置时继续使用内存中的配置
            logger.warning("保存配置文件失败 %s: %s", self.config_file, e)

    def validate(self) -> None:
        for section in self.default_config:
            if not isinstance(self.config.get(section), dict):
                raise ConfigError(f"配置项 {section} 必须是映射")
        mqtt = self.get_mqtt_config()
        if not str(mqtt.get("host") or "").strip():
            raise ConfigError("mqtt.host 不能为空")
        if not str(mqtt.get("topic") or "").strip():
            raise ConfigError("mqtt.topic 不能为空")
        port = mqtt.get("port")
        if isinstance(port, bool) or not isinstance(port, int) or not 1 <= port <= 65535:
            raise ConfigError(f"mqtt.port 无效: {port!r}")
        keepalive = mqtt.get("keepalive")
        if isinstance(keepalive, bool) or not isinstance(keepalive, int) or keepalive <= 0:
            raise ConfigError(f"mqtt.keepalive 必须为正整数: {keepalive!r}")
        client_id = mqtt.get("client_id")
        if not isinstance(client_id, str) or not client_id.strip():
            raise ConfigError(f"mqtt.client_id 无效: {client_id!r}")

        period = self.get_scan_period()
        if period <= 0:
            raise ConfigError(f"scan.period 必须大于 0: {period!r}")

        maxsize = self.get_queue_maxsize()
        if maxsize < 0:
            raise ConfigError(f"queue.maxsize 不能为负数: {maxsize!r}")
        self.get_overflow_policy()

    # ---------- Accessors ----------
    def get_mqtt_config(self):
        return self.config["mqtt"]

    def get_scan_config(self):
        return self.config["scan"]

    def get_scan_period(self) -> float:
        try:
            return float(self.config["scan"]["period"])
        except (TypeError, ValueError) as e:
            raise ConfigError(f"scan.period 无效: {self.config['scan']['period']!r}") from e

    def get_queue_maxsize(self) -> int:
        try:
            return int(self.config["queue"]["maxsize"])
        except (TypeError, ValueError) as e:
            raise ConfigError(f"queue.maxsize 无效: {self.config['queue']['maxsize']!r}") from e

    def get_overflow_policy(self) -> OverflowPolicy:
        value = self.config["queue"]["overflow"]
        try:
            return OverflowPolicy(value)
        except ValueError as e:
            raise ConfigError(f"queue.overflow 无效: {value!r}") from e

    def get_output_path(self) -> str:
        return self.config["output"]["path"]

    def is_verbose(self) -> bool:
        return bool(self.config["logging"]["verbose"])

    def apply_overrides(self, host=None, port=None, topic=None, period=None, output=None, verbose=None):
        """命令行参数覆盖（仅内存，不写回文件）"""
        if host is not None:
            self.config["mqtt"]["host"] = host
        if port is not None:
            self.config["mqtt"]["port"] = port
        if topic is not None:
            self.config["mqtt"]["topic"] = topic
        if period is not None:
            self.config["scan"]["period"] = period
        if output is not None:
            self.config["output"]["path"] = output
        if verbose:
            self.config["logging"]["verbose"] = True
        self.validate()
