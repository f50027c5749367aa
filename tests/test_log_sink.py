from __future__ import annotations

import os

import pandas as pd
import pytest

from ips_logger.exceptions import FlushError, WriteError
from ips_logger.log_sink import CsvLogSink, calibration_log_path


def _lines(path) -> list[str]:
    with open(path, encoding="utf-8") as f:
        return f.read().splitlines()


def test_header_written_once_across_flushes(tmp_path) -> None:
    path = tmp_path / "output.csv"
    sink = CsvLogSink.primary(str(path))

    sink.append_row({"mac_address": "AA:AA", "rssi": -60})
    assert sink.flush() == 1
    sink.append_row({"mac_address": "BB:BB", "rssi": -61})
    sink.append_row({"mac_address": "CC:CC", "rssi": -62})
    assert sink.flush() == 2

    assert _lines(path) == ["mac_address,rssi", "AA:AA,-60", "BB:BB,-61", "CC:CC,-62"]


def test_appends_to_existing_log_without_new_header(tmp_path) -> None:
    path = tmp_path / "output.csv"
    path.write_text("mac_address,rssi\nAA:AA,-60\n", encoding="utf-8")
    sink = CsvLogSink.primary(str(path))

    sink.append_row({"mac_address": "BB:BB", "rssi": -61})
    sink.flush()

    assert _lines(path) == ["mac_address,rssi", "AA:AA,-60", "BB:BB,-61"]


def test_flush_without_rows_creates_nothing(tmp_path) -> None:
    path = tmp_path / "output.csv"
    assert CsvLogSink.primary(str(path)).flush() == 0
    assert not path.exists()


def test_columns_are_written_in_schema_order(tmp_path) -> None:
    path = tmp_path / "mqtt_output.csv"
    sink = CsvLogSink.calibration(str(path))
    sink.append_row({"diff": 5, "rssi": -58, "mac_address": "AA:AA", "device_identifier": "dev1"})
    sink.flush()

    assert _lines(path) == ["device_identifier,mac_address,rssi,diff", "dev1,AA:AA,-58,5"]


@pytest.mark.parametrize(
    "row",
    [
        {"mac_address": "AA:AA"},
        {"mac_address": "AA:AA", "rssi": "-60"},
        {"mac_address": "AA:AA", "rssi": True},
    ],
)
def test_invalid_rows_raise_write_error(tmp_path, row) -> None:
    sink = CsvLogSink.primary(str(tmp_path / "output.csv"))
    with pytest.raises(WriteError):
        sink.append_row(row)
    assert sink.pending == 0


def test_flush_failure_keeps_rows_buffered(tmp_path) -> None:
    target = tmp_path / "output.csv"
    os.mkdir(target)
    sink = CsvLogSink.primary(str(target))
    sink.append_row({"mac_address": "AA:AA", "rssi": -60})

    with pytest.raises(FlushError):
        sink.flush()
    assert sink.pending == 1


def test_calibration_log_path_prefixes_file_name() -> None:
    assert calibration_log_path("output.csv") == "mqtt_output.csv"
    assert calibration_log_path(os.path.join("logs", "run.csv")) == os.path.join("logs", "mqtt_run.csv")


def _partial_write(self, path, *args, **kwargs):
    with open(path, "a", encoding="utf-8") as f:
        f.write("BB:BB,-6")
    raise OSError("No space left on device")


def test_partial_write_is_rolled_back_before_retry(tmp_path, monkeypatch) -> None:
    path = tmp_path / "output.csv"
    path.write_text("mac_address,rssi\nAA:AA,-60\n", encoding="utf-8")
    sink = CsvLogSink.primary(str(path))
    sink.append_row({"mac_address": "BB:BB", "rssi": -61})

    monkeypatch.setattr(pd.DataFrame, "to_csv", _partial_write)
    with pytest.raises(FlushError):
        sink.flush()
    assert _lines(path) == ["mac_address,rssi", "AA:AA,-60"]

    monkeypatch.undo()
    assert sink.flush() == 1
    assert _lines(path) == ["mac_address,rssi", "AA:AA,-60", "BB:BB,-61"]


def test_failed_first_flush_leaves_no_headerless_file(tmp_path, monkeypatch) -> None:
    path = tmp_path / "output.csv"
    sink = CsvLogSink.primary(str(path))
    sink.append_row({"mac_address": "BB:BB", "rssi": -61})

    monkeypatch.setattr(pd.DataFrame, "to_csv", _partial_write)
    with pytest.raises(FlushError):
        sink.flush()
    assert not path.exists()

    monkeypatch.undo()
    sink.flush()
    assert _lines(path) == ["mac_address,rssi", "BB:BB,-61"]


def test_pending_rows_are_capped_oldest_dropped(tmp_path) -> None:
    sink = CsvLogSink(str(tmp_path / "output.csv"), ("mac_address", "rssi"), int_columns=("rssi",), max_pending=2)
    for i, mac in enumerate(("AA:AA", "BB:BB", "CC:CC")):
        sink.append_row({"mac_address": mac, "rssi": -60 - i})

    assert sink.pending == 2
    assert sink.dropped == 1
    sink.flush()
    assert _lines(tmp_path / "output.csv") == ["mac_address,rssi", "BB:BB,-61", "CC:CC,-62"]
