"""Parse repeat intervals such as ``3d`` or ``2w`` and apply them to datetimes."""

from __future__ import annotations

import calendar
import re
from dataclasses import dataclass
from datetime import datetime, timedelta


_INTERVAL_RE = re.compile(r"^(\d+)([dwmy])$")

_UNIT_NAMES = {"d": "day", "w": "week", "m": "month", "y": "year"}


@dataclass(frozen=True)
class Interval:
    value: int
    unit: str  # one of d, w, m, y


def parse_interval(text: str) -> Interval:
    """Parse ``<count><unit>`` where unit is d, w, m or y.

    Raises:
        ValueError: If *text* is not a valid interval.
    """
    match = _INTERVAL_RE.match(str(text or "").strip())
    if not match:
        raise ValueError(f"Invalid interval format: {text!r}")
    return Interval(value=int(match.group(1)), unit=match.group(2))


def _add_months(dt: datetime, months: int) -> datetime:
    month_index = dt.month - 1 + months
    year = dt.year + month_index // 12
    month = month_index % 12 + 1
    # Clamp to the last day of the target month (Jan 31 + 1m -> Feb 28/29).
    day = min(dt.day, calendar.monthrange(year, month)[1])
    return dt.replace(year=year, month=month, day=day)


def add_interval(dt: datetime, interval: Interval) -> datetime:
    if interval.unit == "d":
        return dt + timedelta(days=interval.value)
    if interval.unit == "w":
        return dt + timedelta(weeks=interval.value)
    if interval.unit == "m":
        return _add_months(dt, interval.value)
    return _add_months(dt, interval.value * 12)


def format_interval(interval: Interval) -> str:
    unit = _UNIT_NAMES[interval.unit]
    return f"{interval.value} {unit}{'s' if interval.value > 1 else ''}"
