# collector/formatter.py

from __future__ import annotations

import math
from dataclasses import dataclass
from typing import List, Optional, Union

from .models import BatchReadResult, DisplayFormat


def format_value(
    value: Union[int, float, str],
    fmt: Union[DisplayFormat, str] = DisplayFormat.DEC,
    precision: int = 2,
    pad_zeros: bool = False,
) -> str:
    """
    Render a decoded value as decimal, hex or binary text.

    Strings, NaN and infinities come back as their literal text.
    """
    if isinstance(value, str) or isinstance(value, bool):
        return str(value)
    if isinstance(value, float) and not math.isfinite(value):
        return str(value)

    try:
        fmt = DisplayFormat(fmt)
    except ValueError:
        return str(value)

    if fmt is DisplayFormat.DEC:
        if float(value).is_integer():
            return str(int(value))
        return f"{value:.{precision}f}"

    magnitude = abs(math.floor(value))
    negative = value < 0

    if fmt is DisplayFormat.HEX:
        digits = f"{magnitude:X}"
        if pad_zeros:
            digits = digits.rjust(4, "0")
        return ("-0x" if negative else "0x") + digits

    digits = f"{magnitude:b}"
    if pad_zeros:
        digits = digits.rjust(16, "0")
    return ("-0b" if negative else "0b") + digits


@dataclass
class ParsedData:
    """One display row handed to a UI."""
    address: int
    raw_value: int
    parsed_value: Union[int, float, str]
    display_value: str
    data_type: str
    success: bool
    error: Optional[str] = None

    def to_dict(self) -> dict:
        return {
            "address": self.address,
            "raw_value": self.raw_value,
            "parsed_value": _json_safe(self.parsed_value),
            "display_value": self.display_value,
            "data_type": self.data_type,
            "success": self.success,
            "error": self.error,
        }


def to_parsed_data(batch: BatchReadResult, display_format=DisplayFormat.DEC) -> List[ParsedData]:
    """Display rows for a batch; failed entries show ``Error``."""
    rows = []
    for item in batch.results:
        if item.success:
            text = format_value(item.parsed_value, display_format)
            parsed = item.parsed_value
        else:
            text = parsed = "Error"
        rows.append(
            ParsedData(
                address=item.address,
                raw_value=item.raw_value,
                parsed_value=parsed,
                display_value=text,
                data_type=item.data_type,
                success=item.success,
                error=item.error,
            )
        )
    return rows


def assess_quality(success_count: int, total_count: int, avg_response_ms: float):
    """
    Score a run: success rate weighs 70, response time 30.
    Returns (quality, score, description).
    """
    rate = success_count / total_count if total_count > 0 else 0.0
    score = rate * 70

    if avg_response_ms <= 50:
        score += 30
    elif avg_response_ms <= 100:
        score += 25
    elif avg_response_ms <= 200:
        score += 20
    elif avg_response_ms <= 500:
        score += 15
    else:
        score += 10

    if score >= 90:
        quality, description = "excellent", "Data quality is excellent"
    elif score >= 75:
        quality, description = "good", "Data quality is good"
    elif score >= 60:
        quality, description = "fair", "Data quality is fair"
    else:
        quality, description = "poor", "Data quality is poor"

    return quality, round(score), description


def _json_safe(value):
    if isinstance(value, float) and not math.isfinite(value):
        return str(value)
    return value
