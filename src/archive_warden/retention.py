"""
Retention evaluation for one group of archives.

A record is kept when any configured rule selects it. When
``keep_files_modified_within`` is configured it replaces the count and
time rules for the group: only the contained file's modification time
decides, and archives whose file listing cannot be read are kept.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Callable, Dict, List, Optional, Set, Tuple, Union

from .config import COUNT_RULES, RetentionPolicy
from .duration import parse_duration
from .errors import ArchiveNotFound, ArchiveReadFailure, EmptyRetentionPolicy
from .logger import get_logger
from .models import ArchiveRecord
from .store import ArchiveStore
from .utils import as_utc, utc_now

log = get_logger(__name__)

HourlyKey = Tuple[int, int, int, int]
DailyKey = Tuple[int, int, int]
WeekKey = Tuple[int, int]
MonthKey = Tuple[int, int]
YearKey = int
BucketKey = Union[HourlyKey, DailyKey, WeekKey, MonthKey, YearKey]


def _floor_hour(dt: datetime) -> HourlyKey:
    return dt.year, dt.month, dt.day, dt.hour


def _floor_day(dt: datetime) -> DailyKey:
    return dt.year, dt.month, dt.day


def _week_key(dt: datetime) -> WeekKey:
    iso = dt.isocalendar()
    return iso[0], iso[1]  # iso_year, iso_week


def _month_key(dt: datetime) -> MonthKey:
    return dt.year, dt.month


def _year_key(dt: datetime) -> YearKey:
    return dt.year


BUCKETS: Dict[str, Callable[[datetime], BucketKey]] = {
    "keep_hourly": _floor_hour,
    "keep_daily": _floor_day,
    "keep_weekly": _week_key,
    "keep_monthly": _month_key,
    "keep_yearly": _year_key,
}


@dataclass
class RetentionDecision:
    keep: List[ArchiveRecord] = field(default_factory=list)
    delete: List[ArchiveRecord] = field(default_factory=list)
    reasons: Dict[str, Set[str]] = field(default_factory=dict)
    unreadable: List[str] = field(default_factory=list)

    @property
    def keep_names(self) -> List[str]:
        return [r.name for r in self.keep]

    @property
    def delete_names(self) -> List[str]:
        return [r.name for r in self.delete]


def _newest_first(records: List[ArchiveRecord]) -> List[ArchiveRecord]:
    return sorted(records, key=lambda r: as_utc(r.created_at), reverse=True)


def _bucket_keep(records: List[ArchiveRecord], count: int, key_fn: Callable[[datetime], BucketKey]) -> List[str]:
    """Newest record of each of the first ``count`` distinct buckets."""
    keep: List[str] = []
    if count <= 0:
        return keep
    seen: Set[BucketKey] = set()
    for record in _newest_first(records):
        key = key_fn(as_utc(record.created_at))
        if key in seen:
            continue
        seen.add(key)
        keep.append(record.name)
        if len(seen) >= count:
            break
    return keep


def _age(now: datetime, then: datetime) -> timedelta:
    return as_utc(now) - as_utc(then)


def _standard_rules(records: List[ArchiveRecord], policy: RetentionPolicy, now: datetime) -> Dict[str, Set[str]]:
    keep: Dict[str, Set[str]] = {}

    if policy.keep_within is not None:
        window = parse_duration(policy.keep_within)
        for record in records:
            if _age(now, record.created_at) <= window:
                keep.setdefault(record.name, set()).add("within")

    if policy.keep_last is not None and records:
        window = parse_duration(policy.keep_last)
        newest = _newest_first(records)[0]
        if _age(now, newest.created_at) <= window:
            keep.setdefault(newest.name, set()).add("last")

    for rule in COUNT_RULES:
        count = getattr(policy, rule)
        if count is None:
            continue
        label = rule[len("keep_"):]
        for name in _bucket_keep(records, count, BUCKETS[rule]):
            keep.setdefault(name, set()).add(label)

    return keep


def _file_metadata_rule(
    records: List[ArchiveRecord],
    policy: RetentionPolicy,
    now: datetime,
    store: Optional[ArchiveStore],
    unreadable: List[str],
) -> Dict[str, Set[str]]:
    keep: Dict[str, Set[str]] = {}
    window = parse_duration(policy.keep_files_modified_within or "")
    for record in records:
        try:
            if record.file_mtime is None and store is None:
                raise ArchiveReadFailure("no archive store available to read file metadata")
            mtime = record.file_mtime if store is None else record.load_file_mtime(store)
        except (ArchiveReadFailure, ArchiveNotFound) as e:
            log.warning("Could not read file metadata for archive %s, keeping it: %s", record.name, e)
            unreadable.append(record.name)
            keep.setdefault(record.name, set()).add("unreadable")
            continue
        if _age(now, mtime) <= window:
            keep.setdefault(record.name, set()).add("files_modified_within")
    return keep


def evaluate(
    records: List[ArchiveRecord],
    policy: RetentionPolicy,
    now: Optional[datetime] = None,
    store: Optional[ArchiveStore] = None,
) -> RetentionDecision:
    """Split one group's records into keep and delete sets."""
    if policy.is_empty:
        raise EmptyRetentionPolicy("No retention policy specified; configure at least one keep_* rule")
    now = now or utc_now()

    decision = RetentionDecision()
    if policy.uses_file_metadata:
        reasons = _file_metadata_rule(records, policy, now, store, decision.unreadable)
    else:
        reasons = _standard_rules(records, policy, now)

    for record in records:
        if record.name in reasons:
            decision.keep.append(record)
        else:
            decision.delete.append(record)
            log.debug("Archive %s marked for deletion", record.name)
    decision.reasons = reasons
    return decision


__all__ = ["BUCKETS", "RetentionDecision", "evaluate"]
