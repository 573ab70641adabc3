"""Shared fixtures."""

import pytest

from collector.models import DataType
from collector.ranges import AddressRangeRegistry
from tests.doubles.factories import make_range
from tests.doubles.fake_sink import MemorySink
from tests.doubles.fake_transport import FakeTransport


@pytest.fixture
def registry():
    return AddressRangeRegistry(
        [
            make_range(100, 4, DataType.FLOAT32, name="flow"),
            make_range(200, 2, DataType.INT16, name="temp"),
        ]
    )


@pytest.fixture
def transport():
    return FakeTransport(
        {
            100: 0x4049, 101: 0x0FD0, 102: 0x0000, 103: 0x0000,
            200: 0xFFFF, 201: 0x0010,
        }
    )


@pytest.fixture
def sink():
    return MemorySink()
