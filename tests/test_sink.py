"""Tests for the CSV sink."""

import csv

import pytest

from collector.errors import PersistenceError
from collector.models import BatchReadResult, DataType, DecodedValue
from collector.sink import FAILED_FIELD, CsvSink, header_columns
from tests.doubles.factories import make_range

TS = "2025-01-01T12:00:00.000+00:00"


def _read_rows(path):
    with open(path, newline="", encoding="utf-8") as f:
        return list(csv.reader(f))


@pytest.fixture
def columns():
    return header_columns(
        [make_range(100, 4, DataType.FLOAT32, name="flow"), make_range(200, 2, DataType.INT16, name="temp")]
    )


def test_header_columns(columns):
    assert columns == [(100, "100_flow"), (102, "102_flow"), (200, "200_temp"), (201, "201_temp")]


def test_header_columns_without_name():
    assert header_columns([make_range(7, 1)]) == [(7, "7_")]


def test_initialize_writes_header(tmp_path, columns):
    path = tmp_path / "nested" / "out.csv"
    sink = CsvSink()
    sink.initialize(str(path), columns)
    try:
        assert sink.is_open
        assert sink.addresses == [100, 102, 200, 201]
    finally:
        sink.close()
    assert _read_rows(path) == [["timestamp", "100_flow", "102_flow", "200_temp", "201_temp"]]


def test_append_writes_display_values_and_err(tmp_path, columns):
    path = tmp_path / "out.csv"
    batch = BatchReadResult.from_values(
        [
            DecodedValue(100, 0x40490FD0, 3.14159, "3.14", "float32"),
            DecodedValue(102, 0, 0, "Error", "float32", success=False, error="timeout"),
            DecodedValue(200, 0xFFFF, -1, "-1", "int16"),
            DecodedValue(201, 16, 16, "16", "int16"),
        ],
        TS,
        15,
    )
    sink = CsvSink()
    sink.initialize(str(path), columns)
    sink.append(batch)
    sink.close()

    rows = _read_rows(path)
    assert rows[1] == [TS, "3.14", FAILED_FIELD, "-1", "16"]
    assert sink.rows_written == 1
    assert not sink.is_open


def test_append_follows_original_header(tmp_path, columns):
    path = tmp_path / "out.csv"
    batch = BatchReadResult.from_values(
        [DecodedValue(200, 5, 5, "5", "int16"), DecodedValue(999, 1, 1, "1", "uint16")],
        TS,
        3,
    )
    sink = CsvSink()
    sink.initialize(str(path), columns)
    assert "missing=[100, 102, 201], extra=[999]" in sink.mismatch(batch)
    sink.append(batch)
    sink.close()
    assert _read_rows(path)[1] == [TS, "", "", "5", ""]


def test_matching_batch_has_no_mismatch(columns):
    sink = CsvSink()
    sink._addresses = [a for a, _ in columns]
    batch = BatchReadResult.from_values(
        [DecodedValue(a, 0, 0, "0", "uint16") for a, _ in columns], TS, 1
    )
    assert sink.mismatch(batch) is None


def test_append_before_initialize():
    with pytest.raises(PersistenceError, match="not initialized"):
        CsvSink().append(BatchReadResult.from_values([], TS, 0))


def test_initialize_unwritable_path(tmp_path, columns):
    blocker = tmp_path / "blocker"
    blocker.write_text("not a folder")
    with pytest.raises(PersistenceError, match="Could not create output file"):
        CsvSink().initialize(str(blocker / "out.csv"), columns)


def test_initialize_truncates_previous_file(tmp_path, columns):
    path = tmp_path / "out.csv"
    path.write_text("old,content\n1,2\n")
    sink = CsvSink()
    sink.initialize(str(path), columns)
    sink.close()
    assert len(_read_rows(path)) == 1
