from __future__ import annotations

import datetime as dt

from sqlalchemy import Boolean, Column, DateTime, Integer, String, Text
from sqlalchemy.orm import declarative_base

from collector.models import AddressRange, DataType

Base = declarative_base()


class RangeRecord(Base):
    __tablename__ = "address_ranges"

    id = Column(String, primary_key=True)
    name = Column(String, nullable=True)
    start_address = Column(Integer, nullable=False)
    length = Column(Integer, nullable=False)
    data_type = Column(String, nullable=False, default=DataType.UINT16.value)
    description = Column(Text, nullable=True)
    enabled = Column(Boolean, default=True)
    position = Column(Integer, default=0)

    created = Column(DateTime, default=dt.datetime.utcnow)
    updated = Column(DateTime, default=dt.datetime.utcnow, onupdate=dt.datetime.utcnow)

    def to_range(self) -> AddressRange:
        try:
            data_type = DataType.parse(self.data_type)
        except ValueError:
            data_type = self.data_type
        return AddressRange(
            id=self.id,
            name=self.name,
            start_address=self.start_address,
            length=self.length,
            data_type=data_type,
            description=self.description,
            enabled=bool(self.enabled),
        )

    def apply(self, rng: AddressRange) -> None:
        self.name = rng.name
        self.start_address = rng.start_address
        self.length = rng.length
        self.data_type = rng.data_type.value if isinstance(rng.data_type, DataType) else str(rng.data_type)
        self.description = rng.description
        self.enabled = rng.enabled
