"""IPS Logger package.

This package provides:
- CalibrationStore: per-beacon calibration records behind an asyncio RW lock
- ScannerTask: periodic BLE scanning (bleak) into observation batches
- CalibrationIngestTask: MQTT calibration ingestion (paho-mqtt)
- CorrelatorTask: joins observations with calibration and writes CSV logs
- Pipeline: wires the three tasks together
"""

from .calibration_store import CalibrationStore
from .config_manager import ConfigManager
from .correlator import CorrelatorTask
from .mqtt_ingest import CalibrationIngestTask, MQTTChannel
from .pipeline import Pipeline
from .scanner import ScannerTask

__all__ = [
    "CalibrationStore",
    "ConfigManager",
    "CorrelatorTask",
    "CalibrationIngestTask",
    "MQTTChannel",
    "Pipeline",
    "ScannerTask",
]
