# utils.py

from __future__ import annotations

import logging
import os
from datetime import datetime
from typing import Optional

LOG_FORMAT = "[%(asctime)s] %(levelname)s %(name)s: %(message)s"
LOG_DATEFMT = "%Y-%m-%dT%H:%M:%S"


def setup_logging(verbose: bool = False, log_file: Optional[str] = None) -> None:
    """
    Timestamped console logging used across the project.

    With ``log_file`` the same lines are also appended to a diagnostics file
    (parent folder is created if needed).
    """
    handlers: list[logging.Handler] = [logging.StreamHandler()]
    if log_file:
        folder = os.path.dirname(log_file)
        if folder:
            os.makedirs(folder, exist_ok=True)
        handlers.append(logging.FileHandler(log_file, encoding="utf-8"))

    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.INFO,
        format=LOG_FORMAT,
        datefmt=LOG_DATEFMT,
        handlers=handlers,
        force=True,
    )
    # pymodbus is chatty at DEBUG
    logging.getLogger("pymodbus").setLevel(logging.WARNING)


def now_iso() -> str:
    """Current local time as ISO-8601 with milliseconds."""
    return datetime.now().astimezone().isoformat(timespec="milliseconds")


def parse_timestamp(text) -> Optional[datetime]:
    """
    Parse an ISO-8601 timestamp; returns None when it is missing or invalid.
    A trailing ``Z`` is accepted as UTC.
    """
    if not isinstance(text, str) or not text.strip():
        return None
    value = text.strip()
    if value.endswith("Z"):
        value = value[:-1] + "+00:00"
    try:
        return datetime.fromisoformat(value)
    except ValueError:
        return None


def default_output_filename(prefix: str = "modbus_collection") -> str:
    """
    Generate filename: PREFIX_YYYYMMDD-HHMMSS.csv
    """
    stamp = datetime.now().strftime("%Y%m%d-%H%M%S")
    return f"{prefix}_{stamp}.csv"
