# collector/validator.py
#
# Sanity checks on an assembled batch before it is written out.
# Errors mean "do not persist this batch"; warnings are informational.

from __future__ import annotations

import numbers
from typing import List

from utils import parse_timestamp

from .errors import ValidationError
from .models import ValidationReport

FATAL_SUCCESS_RATE = 50.0
WARN_SUCCESS_RATE = 80.0
SLOW_READ_MS = 5000


def validate_read_result(batch) -> ValidationReport:
    errors: List[str] = []
    warnings: List[str] = []

    if batch is None:
        errors.append("Read result is empty")
        return ValidationReport(False, errors, warnings, "Validation failed")

    results = getattr(batch, "results", None)
    if not isinstance(results, (list, tuple)):
        errors.append("Read result data has an invalid format")
        return ValidationReport(False, errors, warnings, "Validation failed")

    # Declared vs. actual tallies
    actual_total = len(results)
    if batch.total_count != actual_total:
        warnings.append(
            f"Inconsistent totals: declared {batch.total_count}, actual {actual_total}"
        )

    actual_success = sum(1 for r in results if r.success)
    if batch.success_count != actual_success:
        warnings.append(
            f"Inconsistent success count: declared {batch.success_count}, actual {actual_success}"
        )

    actual_failed = actual_total - actual_success
    if batch.failed_count != actual_failed:
        warnings.append(
            f"Inconsistent failure count: declared {batch.failed_count}, actual {actual_failed}"
        )

    # Per-entry quality
    for idx, item in enumerate(results, start=1):
        address = item.address
        if not isinstance(address, numbers.Integral) or address < 0:
            errors.append(f"Entry {idx} has an invalid address: {address}")
        if not item.success and not item.error:
            warnings.append(f"Entry {idx} failed without an error message")

    success_rate = (actual_success / actual_total) * 100 if actual_total > 0 else 0.0
    if success_rate < FATAL_SUCCESS_RATE:
        errors.append(f"Success rate too low: {success_rate:.1f}%")
    elif success_rate < WARN_SUCCESS_RATE:
        warnings.append(f"Success rate is low: {success_rate:.1f}%")

    if not batch.timestamp:
        warnings.append("Timestamp is missing")
    elif parse_timestamp(batch.timestamp) is None:
        warnings.append(f"Timestamp is not a valid ISO-8601 instant: {batch.timestamp!r}")

    if batch.duration_ms > SLOW_READ_MS:
        warnings.append(f"Read took too long: {batch.duration_ms}ms")

    is_valid = not errors
    if is_valid:
        summary = (
            f"Validation passed: {actual_success}/{actual_total} values read "
            f"in {batch.duration_ms}ms"
        )
    else:
        summary = f"Validation failed: {len(errors)} error(s), {len(warnings)} warning(s)"

    return ValidationReport(is_valid, errors, warnings, summary)


def ensure_valid(report: ValidationReport) -> ValidationReport:
    """Raise ValidationError for a report with fatal errors."""
    if not report.is_valid:
        raise ValidationError(report.summary, report.errors)
    return report
