"""Tests for range configuration import and export."""

import json

import pytest

from collector.errors import ConfigurationError
from collector.models import DataType
from collector.range_file import (
    load_range_file,
    parse_entry,
    parse_range_config,
    save_range_file,
)
from tests.doubles.factories import make_range


def _config(*ranges, version="1.0"):
    return json.dumps({"version": version, "ranges": list(ranges)})


def test_camel_and_snake_case_entries():
    result = parse_range_config(
        _config(
            {"id": "a", "startAddress": 100, "length": 4, "dataType": "float32", "name": "flow"},
            {"id": "b", "start_address": 200, "length": 2, "data_type": "int16"},
        )
    )
    assert result.ok
    assert result.version == "1.0"
    assert [(r.id, r.start_address, r.data_type) for r in result.ranges] == [
        ("a", 100, DataType.FLOAT32),
        ("b", 200, DataType.INT16),
    ]


def test_defaults():
    rng = parse_range_config(_config({"startAddress": 10, "length": 1})).ranges[0]
    assert rng.data_type is DataType.UINT16
    assert rng.enabled is True
    assert rng.id.startswith("range_")


def test_bad_entries_are_skipped():
    result = parse_range_config(
        _config(
            {"id": "ok", "startAddress": 10, "length": 2},
            {"id": "type", "startAddress": 20, "length": 2, "dataType": "float64"},
            {"id": "bounds", "startAddress": "ten", "length": 2},
            {"id": "zero", "startAddress": 0, "length": 2},
            "not an object",
        )
    )
    assert [r.id for r in result.ranges] == ["ok"]
    assert [e.index for e in result.errors] == [1, 2, 3, 4]
    assert "Start address must not be less than 1" in result.errors[2].message
    assert result.errors[3].message == "Entry is not an object"


def test_duplicate_ids_keep_first():
    result = parse_range_config(
        _config(
            {"id": "a", "startAddress": 10, "length": 2},
            {"id": "a", "startAddress": 50, "length": 2},
        )
    )
    assert [r.start_address for r in result.ranges] == [10]
    assert "Duplicate range id" in result.errors[0].message


def test_parse_entry_missing_length():
    err = parse_entry(3, {"startAddress": 10})
    assert err.index == 3
    assert "length" in err.message


@pytest.mark.parametrize("text", ["{not json", json.dumps([1, 2]), json.dumps({"ranges": "x"})])
def test_unusable_files_raise(text):
    with pytest.raises(ConfigurationError):
        parse_range_config(text)


def test_save_and_load(tmp_path):
    ranges = [make_range(100, 4, DataType.FLOAT32, name="flow"), make_range(300, 2, enabled=False)]
    path = save_range_file(tmp_path / "cfg" / "ranges.json", ranges)

    data = json.loads(path.read_text())
    assert data["version"] == "1.0"
    assert data["totalAddresses"] == 4
    assert data["ranges"][0]["startAddress"] == 100
    assert "exportTime" in data

    loaded = load_range_file(path)
    assert [(r.id, r.enabled) for r in loaded.ranges] == [("r100", True), ("r300", False)]


def test_missing_file(tmp_path):
    with pytest.raises(ConfigurationError, match="Could not read range file"):
        load_range_file(tmp_path / "absent.json")
