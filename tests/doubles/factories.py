"""Builders for domain objects used across tests."""

from collector.models import AddressRange, DataType


def make_range(start, length, data_type=DataType.UINT16, name=None, enabled=True, range_id=None):
    return AddressRange(
        id=range_id or f"r{start}",
        start_address=start,
        length=length,
        data_type=data_type,
        name=name,
        enabled=enabled,
    )
