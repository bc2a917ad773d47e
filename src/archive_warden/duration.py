from __future__ import annotations

import re
from datetime import timedelta

from .errors import InvalidDuration

DUR_RE = re.compile(r"^(?P<num>\d+)(?P<unit>[hdwmy])$")

# Months and years are fixed spans, not calendar-aware.
_UNIT_SECONDS = {
    "h": 3600,
    "d": 86400,
    "w": 7 * 86400,
    "m": 30 * 86400,
    "y": 365 * 86400,
}


def parse_duration_seconds(s: str) -> int:
    """Parse a duration such as ``30d`` or ``6m`` into whole seconds."""
    if not isinstance(s, str) or not s.strip():
        raise InvalidDuration("duration must be a non-empty string")
    m = DUR_RE.match(s.strip())
    if not m:
        raise InvalidDuration(f"Invalid time duration format: {s!r} (expected e.g. 12h, 30d, 4w, 6m, 1y)")
    return int(m.group("num")) * _UNIT_SECONDS[m.group("unit")]


def parse_duration(s: str) -> timedelta:
    return timedelta(seconds=parse_duration_seconds(s))


__all__ = ["parse_duration", "parse_duration_seconds"]
