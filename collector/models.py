# collector/models.py

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import List, Optional, Union

from .config import DEFAULT_INTERVAL_MS


class DataType(str, Enum):
    UINT16 = "uint16"
    INT16 = "int16"
    UINT32 = "uint32"
    INT32 = "int32"
    FLOAT32 = "float32"

    @property
    def word_count(self) -> int:
        """Registers consumed per value."""
        return 1 if self in (DataType.UINT16, DataType.INT16) else 2

    @classmethod
    def parse(cls, value) -> "DataType":
        """Accept a DataType or its string name; raises ValueError otherwise."""
        if isinstance(value, cls):
            return value
        return cls(str(value).strip().lower())


DATA_TYPE_LABELS = {
    DataType.UINT16: "Unsigned 16-bit integer",
    DataType.INT16: "Signed 16-bit integer",
    DataType.UINT32: "Unsigned 32-bit integer",
    DataType.INT32: "Signed 32-bit integer",
    DataType.FLOAT32: "32-bit float",
}


class DisplayFormat(str, Enum):
    DEC = "dec"
    HEX = "hex"
    BIN = "bin"


class SessionState(str, Enum):
    IDLE = "idle"
    RUNNING = "running"


@dataclass
class AddressRange:
    """
    One user-defined block of holding registers.

    ``data_type`` is normally a DataType; a plain string survives here so the
    decoder can report unsupported types instead of failing at load time.
    """
    id: str
    start_address: int
    length: int
    data_type: Union[DataType, str] = DataType.UINT16
    name: Optional[str] = None
    description: Optional[str] = None
    enabled: bool = True

    @property
    def end_address(self) -> int:
        return self.start_address + self.length - 1

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "name": self.name,
            "startAddress": self.start_address,
            "length": self.length,
            "dataType": _type_name(self.data_type),
            "description": self.description,
            "enabled": self.enabled,
        }


@dataclass(frozen=True)
class OverlapConflict:
    range_a: AddressRange
    range_b: AddressRange
    overlap_start: int
    overlap_end: int

    def describe(self) -> str:
        return (
            f"{self.range_a.name or self.range_a.id} overlaps "
            f"{self.range_b.name or self.range_b.id} "
            f"at {self.overlap_start}-{self.overlap_end}"
        )


@dataclass(frozen=True)
class DecodedValue:
    address: int
    raw_value: int
    parsed_value: Union[int, float]
    display_value: str
    data_type: str
    success: bool = True
    error: Optional[str] = None

    def to_dict(self) -> dict:
        return {
            "address": self.address,
            "raw_value": self.raw_value,
            "parsed_value": self.parsed_value,
            "display_value": self.display_value,
            "data_type": self.data_type,
            "success": self.success,
            "error": self.error,
        }


@dataclass
class BatchReadResult:
    results: List[DecodedValue]
    total_count: int
    success_count: int
    failed_count: int
    timestamp: str
    duration_ms: int

    @classmethod
    def from_values(cls, values: List[DecodedValue], timestamp: str, duration_ms: int) -> "BatchReadResult":
        ok = sum(1 for v in values if v.success)
        return cls(
            results=list(values),
            total_count=len(values),
            success_count=ok,
            failed_count=len(values) - ok,
            timestamp=timestamp,
            duration_ms=duration_ms,
        )

    def to_dict(self) -> dict:
        return {
            "results": [v.to_dict() for v in self.results],
            "total_count": self.total_count,
            "success_count": self.success_count,
            "failed_count": self.failed_count,
            "timestamp": self.timestamp,
            "duration_ms": self.duration_ms,
        }


@dataclass
class ValidationReport:
    is_valid: bool
    errors: List[str] = field(default_factory=list)
    warnings: List[str] = field(default_factory=list)
    summary: str = ""

    def to_dict(self) -> dict:
        return {
            "is_valid": self.is_valid,
            "errors": list(self.errors),
            "warnings": list(self.warnings),
            "summary": self.summary,
        }


@dataclass(frozen=True)
class ReadRequest:
    start: int
    count: int
    data_type: Union[DataType, str] = DataType.UINT16


@dataclass
class RangeRead:
    """Transport answer for one ReadRequest: words on success, error text otherwise."""
    request: ReadRequest
    words: List[int] = field(default_factory=list)
    error: Optional[str] = None

    @property
    def success(self) -> bool:
        return self.error is None


@dataclass
class CollectionStats:
    total_collections: int = 0
    successful_reads: int = 0
    failed_reads: int = 0
    average_duration_ms: float = 0.0
    skipped_ticks: int = 0

    def record(self, batch: BatchReadResult) -> None:
        n = self.total_collections
        self.average_duration_ms = (self.average_duration_ms * n + batch.duration_ms) / (n + 1)
        self.total_collections = n + 1
        self.successful_reads += batch.success_count
        self.failed_reads += batch.failed_count

    def to_dict(self) -> dict:
        return {
            "total_collections": self.total_collections,
            "successful_reads": self.successful_reads,
            "failed_reads": self.failed_reads,
            "average_duration_ms": round(self.average_duration_ms, 2),
            "skipped_ticks": self.skipped_ticks,
        }


@dataclass
class CollectionConfig:
    output_path: Optional[str]
    interval_ms: int = DEFAULT_INTERVAL_MS
    stop_on_error: bool = False
    display_format: DisplayFormat = DisplayFormat.DEC


def _type_name(data_type) -> str:
    return data_type.value if isinstance(data_type, DataType) else str(data_type)
