# collector/range_file.py
#
# Range configuration files:
#
#   {
#     "version": "1.0",
#     "exportTime": "2025-01-01T12:00:00+00:00",
#     "ranges": [ {"id": ..., "startAddress": 100, "length": 4, "dataType": "float32", ...} ],
#     "totalAddresses": 4
#   }
#
# Import checks every entry on its own; a bad entry is reported and skipped,
# the rest still load.

from __future__ import annotations

import json
import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, List, Optional, Union

from pydantic import BaseModel, ConfigDict, Field
from pydantic import ValidationError as SchemaError

from utils import now_iso

from .config import RANGE_FILE_VERSION
from .errors import ConfigurationError
from .models import AddressRange, DataType
from .ranges import generate_range_id, total_addresses, validate

log = logging.getLogger(__name__)


class RangeEntry(BaseModel):
    """One range as it appears in a file or API body (camelCase or snake_case)."""

    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    id: Optional[str] = None
    name: Optional[str] = None
    start_address: int = Field(alias="startAddress")
    length: int
    data_type: DataType = Field(default=DataType.UINT16, alias="dataType")
    description: Optional[str] = None
    enabled: bool = True

    def to_range(self) -> AddressRange:
        return AddressRange(
            id=self.id or generate_range_id(),
            name=self.name,
            start_address=self.start_address,
            length=self.length,
            data_type=self.data_type,
            description=self.description,
            enabled=self.enabled,
        )


@dataclass
class EntryError:
    index: int
    message: str
    entry: Any = None


@dataclass
class ImportResult:
    ranges: List[AddressRange] = field(default_factory=list)
    errors: List[EntryError] = field(default_factory=list)
    version: Optional[str] = None

    @property
    def ok(self) -> bool:
        return not self.errors


def parse_entry(index: int, raw: Any) -> Union[AddressRange, EntryError]:
    """Either a checked AddressRange or the reason the entry was rejected."""
    if not isinstance(raw, dict):
        return EntryError(index, "Entry is not an object", raw)
    try:
        entry = RangeEntry.model_validate(raw)
    except SchemaError as e:
        problems = "; ".join(
            f"{'.'.join(str(p) for p in err['loc'])}: {err['msg']}" for err in e.errors()
        )
        return EntryError(index, problems, raw)

    rng = entry.to_range()
    report = validate(rng)
    if not report.is_valid:
        return EntryError(index, "; ".join(report.errors), raw)
    return rng


def parse_range_config(text: str) -> ImportResult:
    try:
        data = json.loads(text)
    except json.JSONDecodeError as e:
        raise ConfigurationError(f"Range file is not valid JSON: {e}") from e

    if not isinstance(data, dict) or not isinstance(data.get("ranges"), list):
        raise ConfigurationError("Range file has no 'ranges' array")

    result = ImportResult(version=str(data.get("version")) if data.get("version") is not None else None)
    seen = set()
    for index, raw in enumerate(data["ranges"]):
        parsed = parse_entry(index, raw)
        if isinstance(parsed, EntryError):
            log.warning("Skipping range entry %d: %s", index, parsed.message)
            result.errors.append(parsed)
            continue
        if parsed.id in seen:
            msg = f"Duplicate range id {parsed.id!r}"
            log.warning("Skipping range entry %d: %s", index, msg)
            result.errors.append(EntryError(index, msg, raw))
            continue
        seen.add(parsed.id)
        result.ranges.append(parsed)

    if result.version and result.version != RANGE_FILE_VERSION:
        log.warning("Range file version %s differs from %s", result.version, RANGE_FILE_VERSION)
    return result


def load_range_file(path: Union[str, Path]) -> ImportResult:
    path = Path(path)
    try:
        text = path.read_text(encoding="utf-8")
    except OSError as e:
        raise ConfigurationError(f"Could not read range file {path}: {e}") from e
    return parse_range_config(text)


def export_range_config(ranges: List[AddressRange]) -> str:
    config = {
        "version": RANGE_FILE_VERSION,
        "exportTime": now_iso(),
        "ranges": [r.to_dict() for r in ranges],
        "totalAddresses": total_addresses(ranges),
    }
    return json.dumps(config, indent=2)


def save_range_file(path: Union[str, Path], ranges: List[AddressRange]) -> Path:
    path = Path(path)
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(export_range_config(ranges), encoding="utf-8")
    log.info("Range file written: %s (%d ranges)", path, len(ranges))
    return path
