# collector/sink.py
#
# Append-only CSV output for a collection session.
#
#   header : timestamp,<address>_<name>,...   (written once by initialize)
#   rows   : <ISO-8601>,<display value>,...   (one per cycle, ERR on failure)

from __future__ import annotations

import csv
import logging
import os
from typing import Dict, Iterable, List, Optional, Tuple

from .errors import PersistenceError
from .models import AddressRange, BatchReadResult
from .ranges import decoded_addresses

log = logging.getLogger(__name__)

FAILED_FIELD = "ERR"


def header_columns(ranges: Iterable[AddressRange]) -> List[Tuple[int, str]]:
    """(address, column name) for every decoded address of the given ranges."""
    columns = []
    for rng in ranges:
        name = (rng.name or "").strip()
        for address in decoded_addresses(rng):
            columns.append((address, f"{address}_{name}"))
    return columns


class CsvSink:
    """
    Owns the open output file for one session.

    Rows are always laid out against the header established by
    ``initialize``; values for addresses outside it are dropped and header
    addresses missing from a batch are left blank.
    """

    def __init__(self) -> None:
        self.path: Optional[str] = None
        self._file = None
        self._writer = None
        self._addresses: List[int] = []
        self.rows_written = 0

    @property
    def addresses(self) -> List[int]:
        return list(self._addresses)

    @property
    def is_open(self) -> bool:
        return self._file is not None

    def initialize(self, path: str, columns: List[Tuple[int, str]]) -> None:
        self.close()
        try:
            folder = os.path.dirname(os.path.abspath(path))
            os.makedirs(folder, exist_ok=True)
            f = open(path, "w", newline="", encoding="utf-8")
        except OSError as e:
            raise PersistenceError(f"Could not create output file {path}: {e}") from e

        try:
            writer = csv.writer(f)
            writer.writerow(["timestamp"] + [name for _, name in columns])
            f.flush()
        except OSError as e:
            f.close()
            raise PersistenceError(f"Could not write CSV header to {path}: {e}") from e

        self.path = path
        self._file = f
        self._writer = writer
        self._addresses = [address for address, _ in columns]
        self.rows_written = 0
        log.info("CSV initialized: %s (%d value columns)", path, len(columns))

    def append(self, batch: BatchReadResult) -> None:
        if self._file is None:
            raise PersistenceError("CSV sink is not initialized")

        by_address: Dict[int, str] = {}
        for item in batch.results:
            by_address[item.address] = item.display_value if item.success else FAILED_FIELD

        row = [batch.timestamp] + [by_address.get(a, "") for a in self._addresses]
        try:
            self._writer.writerow(row)
            self._file.flush()
        except (OSError, ValueError) as e:
            raise PersistenceError(f"Could not append to {self.path}: {e}") from e

        self.rows_written += 1
        log.debug(
            "Row appended to %s: ok=%d failed=%d",
            self.path, batch.success_count, batch.failed_count,
        )

    def mismatch(self, batch: BatchReadResult) -> Optional[str]:
        """Describe how a batch's addresses differ from the header, or None."""
        got = [item.address for item in batch.results]
        if got == self._addresses:
            return None
        missing = sorted(set(self._addresses) - set(got))
        extra = sorted(set(got) - set(self._addresses))
        return (
            f"Batch columns differ from the CSV header "
            f"(missing={missing[:10]}, extra={extra[:10]}); writing against the original header"
        )

    def close(self) -> None:
        if self._file is not None:
            try:
                self._file.close()
            finally:
                self._file = None
                self._writer = None
            log.info("CSV closed: %s (%d rows)", self.path, self.rows_written)
