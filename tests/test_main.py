"""Tests for the command line entry point."""

import csv
import json
from pathlib import Path

import pytest

import main
from collector.errors import ConfigurationError
from collector.models import DataType
from collector.range_file import save_range_file
from tests.doubles.factories import make_range
from tests.doubles.fake_transport import FakeTransport

REGISTERS = {100: 0x4049, 101: 0x0FD0, 200: 0xFFFF, 201: 0x0010}


class DeviceStub(FakeTransport):
    def __init__(self, host, port, unit, timeout):
        super().__init__(REGISTERS)
        self.host = host

    def __enter__(self):
        return self

    def __exit__(self, *exc):
        self.close()


@pytest.fixture
def range_file(tmp_path):
    return save_range_file(
        tmp_path / "ranges.json",
        [
            make_range(100, 4, DataType.FLOAT32, name="flow"),
            make_range(200, 2, DataType.INT16, name="temp"),
            make_range(300, 2, enabled=False),
        ],
    )


def test_parse_args_defaults():
    args = main._parse_args(["--host", "10.0.0.5", "--ranges", "r.json"])
    assert args.port == 502
    assert args.unit == 1
    assert args.interval_ms == 1000
    assert args.ranges == Path("r.json")
    assert args.output is None
    assert args.format == "dec"
    assert not args.stop_on_error


def test_parse_args_requires_host():
    with pytest.raises(SystemExit):
        main._parse_args(["--ranges", "r.json"])


def test_load_registry(range_file):
    registry = main._load_registry(range_file)
    assert len(registry) == 3
    assert registry.address_count() == 6


def test_load_registry_without_usable_ranges(tmp_path):
    path = tmp_path / "empty.json"
    path.write_text('{"version": "1.0", "ranges": [{"startAddress": 0, "length": 1}]}')
    with pytest.raises(ConfigurationError, match="No usable ranges"):
        main._load_registry(path)


def test_main_reports_configuration_errors(monkeypatch, tmp_path):
    monkeypatch.setattr(main, "setup_logging", lambda **kwargs: None)
    code = main.main(["--host", "10.0.0.5", "--ranges", str(tmp_path / "absent.json")])
    assert code == 2


def test_run_writes_csv(monkeypatch, tmp_path, range_file):
    monkeypatch.setattr(main, "ModbusTcpTransport", DeviceStub)
    output = tmp_path / "out" / "data.csv"
    args = main._parse_args(
        [
            "--host", "10.0.0.5",
            "--ranges", str(range_file),
            "--output", str(output),
            "--interval-ms", "100",
            "--cycles", "2",
        ]
    )
    assert main.run(args) == 0

    with open(output, newline="", encoding="utf-8") as f:
        rows = list(csv.reader(f))
    assert rows[0] == ["timestamp", "100_flow", "102_flow", "200_temp", "201_temp"]
    assert len(rows) >= 3
    assert rows[1][1:] == ["3.14", "0.00", "-1", "16"]


def test_run_exports_loaded_ranges(monkeypatch, tmp_path, range_file):
    monkeypatch.setattr(main, "ModbusTcpTransport", DeviceStub)
    exported = tmp_path / "export" / "ranges.json"
    args = main._parse_args(
        [
            "--host", "10.0.0.5",
            "--ranges", str(range_file),
            "--output", str(tmp_path / "data.csv"),
            "--export-ranges", str(exported),
            "--cycles", "1",
        ]
    )
    assert main.run(args) == 0

    data = json.loads(exported.read_text())
    assert [r["id"] for r in data["ranges"]] == ["r100", "r200", "r300"]
    assert data["totalAddresses"] == 6
