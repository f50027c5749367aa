"""Exception hierarchy for ips_logger."""

from __future__ import annotations


class IpsLoggerError(Exception):
    """Base exception for all ips_logger errors."""


class ConfigError(IpsLoggerError):
    """Invalid configuration value."""


class AdapterError(IpsLoggerError):
    """BLE adapter failure (startup or whole-scan query)."""


class ChannelError(IpsLoggerError):
    """MQTT connection or receive failure."""


class DecodeError(IpsLoggerError):
    """Calibration payload is not valid text or not a calibration record."""


class WriteError(IpsLoggerError):
    """A row could not be serialized into a log sink."""

    def __init__(self, message: str, *, row: object = None) -> None:
        self.row = row
        super().__init__(message)


class FlushError(IpsLoggerError):
    """Buffered rows could not be written to durable storage."""

    def __init__(self, message: str, *, path: str = "") -> None:
        self.path = path
        super().__init__(message)


class QueueClosed(IpsLoggerError):
    """The batch queue no longer accepts batches."""
