from __future__ import annotations

import fnmatch
import os
import re
from datetime import datetime, timezone
from typing import Sequence

_UNSAFE_RE = re.compile(r"[^A-Za-z0-9._-]")


def utc_now() -> datetime:
    return datetime.now(tz=timezone.utc)


def as_utc(dt: datetime) -> datetime:
    """Return an aware UTC datetime; naive values are taken as local time."""
    if dt.tzinfo is None:
        dt = dt.astimezone()
    return dt.astimezone(timezone.utc)


def parse_timestamp(s: str) -> datetime:
    """Parse the ISO-8601 timestamps Borg prints (naive local or with offset)."""
    s = s.strip()
    if s.endswith("Z"):
        s = s[:-1] + "+00:00"
    return as_utc(datetime.fromisoformat(s))


def sanitize_label(text: str) -> str:
    return _UNSAFE_RE.sub("-", (text or "").strip())


def is_excluded(path: str, patterns: Sequence[str]) -> bool:
    """Match a pattern against the full path or just the filename."""
    name = os.path.basename(path)
    return any(fnmatch.fnmatchcase(path, pat) or fnmatch.fnmatchcase(name, pat) for pat in patterns)
