# collector/ranges.py
#
# Address range bookkeeping:
#   - validate() for bounds/length of a single range
#   - detect_overlaps() across enabled ranges (advisory only)
#   - AddressRangeRegistry: the owned, thread-safe list the scheduler
#     snapshots at the start of every cycle

from __future__ import annotations

import copy
import logging
import random
import string
import threading
import time
from dataclasses import replace
from typing import Iterable, List, Optional

from .config import LARGE_RANGE_WARNING, MAX_ADDRESS, MAX_RANGE_LENGTH, MIN_ADDRESS
from .errors import ConfigurationError
from .models import AddressRange, DataType, OverlapConflict, ValidationReport

log = logging.getLogger(__name__)


def end_address(rng: AddressRange) -> int:
    return rng.start_address + rng.length - 1


def format_range(rng: AddressRange) -> str:
    return f"{rng.start_address}-{end_address(rng)}"


def generate_range_id() -> str:
    suffix = "".join(random.choices(string.ascii_lowercase + string.digits, k=9))
    return f"range_{int(time.time() * 1000)}_{suffix}"


def validate(rng: AddressRange) -> ValidationReport:
    """
    Check one range against the holding register address space.

    Errors block the range; warnings (blank name, long range) are advisory.
    """
    errors: List[str] = []
    warnings: List[str] = []

    if rng.start_address < MIN_ADDRESS:
        errors.append(f"Start address must not be less than {MIN_ADDRESS}")
    if rng.start_address > MAX_ADDRESS:
        errors.append(f"Start address must not be greater than {MAX_ADDRESS}")

    if rng.length <= 0:
        errors.append("Range length must be greater than 0")
    if rng.length > MAX_RANGE_LENGTH:
        errors.append(f"Range length must not exceed {MAX_RANGE_LENGTH}")

    end = end_address(rng)
    if end > MAX_ADDRESS:
        errors.append(f"End address ({end}) exceeds the maximum address ({MAX_ADDRESS})")

    if rng.name is not None and not rng.name.strip():
        warnings.append("Range name should not be an empty string")

    if rng.length > LARGE_RANGE_WARNING:
        warnings.append("Range is long and may slow down reads")

    is_valid = not errors
    summary = f"Range {format_range(rng)} is valid" if is_valid else f"Range has {len(errors)} error(s)"
    return ValidationReport(is_valid=is_valid, errors=errors, warnings=warnings, summary=summary)


def detect_overlaps(ranges: Iterable[AddressRange]) -> List[OverlapConflict]:
    """
    Pairwise scan over enabled ranges. Two ranges conflict when
    max(startA, startB) <= min(endA, endB).
    """
    enabled = [r for r in ranges if r.enabled]
    conflicts: List[OverlapConflict] = []

    for i, first in enumerate(enabled):
        for second in enabled[i + 1:]:
            overlap_start = max(first.start_address, second.start_address)
            overlap_end = min(end_address(first), end_address(second))
            if overlap_start <= overlap_end:
                conflicts.append(
                    OverlapConflict(
                        range_a=first,
                        range_b=second,
                        overlap_start=overlap_start,
                        overlap_end=overlap_end,
                    )
                )
    return conflicts


def total_addresses(ranges: Iterable[AddressRange]) -> int:
    return sum(r.length for r in ranges if r.enabled)


def decoded_addresses(rng: AddressRange) -> List[int]:
    """
    Addresses that yield a value when the range decodes: every register for
    16-bit types, the first register of every complete pair for 32-bit types.
    Unknown types produce a single (failed) value at the start address.
    """
    try:
        words = DataType.parse(rng.data_type).word_count
    except ValueError:
        return [rng.start_address]
    usable = rng.length - (rng.length % words)
    return list(range(rng.start_address, rng.start_address + usable, words))


class AddressRangeRegistry:
    """
    The set of configured ranges for one collector.

    All reads hand out copies so a running cycle is never affected by edits
    made while it is in flight.
    """

    def __init__(self, ranges: Optional[Iterable[AddressRange]] = None):
        self._lock = threading.RLock()
        self._ranges: List[AddressRange] = []
        if ranges:
            self.replace_all(ranges)

    # ------------- static helpers -------------

    validate = staticmethod(validate)
    detect_overlaps = staticmethod(detect_overlaps)
    total_addresses = staticmethod(total_addresses)

    # ------------- queries -------------

    def list(self) -> List[AddressRange]:
        with self._lock:
            return copy.deepcopy(self._ranges)

    def enabled_snapshot(self) -> List[AddressRange]:
        with self._lock:
            return [copy.deepcopy(r) for r in self._ranges if r.enabled]

    def get(self, range_id: str) -> Optional[AddressRange]:
        with self._lock:
            for r in self._ranges:
                if r.id == range_id:
                    return copy.deepcopy(r)
        return None

    def overlaps(self) -> List[OverlapConflict]:
        return detect_overlaps(self.list())

    def address_count(self) -> int:
        return total_addresses(self.list())

    def __len__(self) -> int:
        with self._lock:
            return len(self._ranges)

    # ------------- mutations -------------

    def add(self, rng: AddressRange) -> AddressRange:
        new = replace(rng, id=rng.id or generate_range_id())
        self._check(new)
        with self._lock:
            if any(r.id == new.id for r in self._ranges):
                raise ConfigurationError(f"Range id {new.id!r} already exists")
            self._ranges.append(new)
        log.info("Added range %s (%s, %s)", new.id, format_range(new), _type_label(new))
        return copy.deepcopy(new)

    def update(self, range_id: str, **changes) -> AddressRange:
        changes.pop("id", None)
        with self._lock:
            for idx, current in enumerate(self._ranges):
                if current.id == range_id:
                    updated = replace(current, **changes)
                    self._check(updated)
                    self._ranges[idx] = updated
                    log.info("Updated range %s -> %s", range_id, format_range(updated))
                    return copy.deepcopy(updated)
        raise ConfigurationError(f"Unknown range id {range_id!r}")

    def remove(self, range_id: str) -> bool:
        with self._lock:
            before = len(self._ranges)
            self._ranges = [r for r in self._ranges if r.id != range_id]
            removed = len(self._ranges) != before
        if removed:
            log.info("Removed range %s", range_id)
        return removed

    def clear(self) -> None:
        with self._lock:
            self._ranges = []

    def replace_all(self, ranges: Iterable[AddressRange]) -> None:
        fresh = []
        for r in ranges:
            r = replace(r, id=r.id or generate_range_id())
            self._check(r)
            fresh.append(r)
        with self._lock:
            self._ranges = fresh

    @staticmethod
    def _check(rng: AddressRange) -> None:
        report = validate(rng)
        if not report.is_valid:
            raise ConfigurationError("; ".join(report.errors))
        for warning in report.warnings:
            log.warning("Range %s: %s", rng.id, warning)


def _type_label(rng: AddressRange) -> str:
    return rng.data_type.value if isinstance(rng.data_type, DataType) else str(rng.data_type)
