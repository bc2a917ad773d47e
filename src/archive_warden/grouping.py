from __future__ import annotations

from dataclasses import dataclass
from typing import Dict, Iterable, List, Optional

from .models import ArchiveRecord


@dataclass(frozen=True)
class GroupKey:
    """Retention group identity: a source directory, or the legacy bucket.

    The legacy bucket never equals a directory key, including ``""``.
    """

    source_dir: Optional[str] = None
    legacy: bool = False

    @classmethod
    def for_dir(cls, source_dir: str) -> GroupKey:
        return cls(source_dir=source_dir)

    @classmethod
    def legacy_bucket(cls) -> GroupKey:
        return cls(source_dir=None, legacy=True)

    @property
    def label(self) -> str:
        if self.legacy:
            return "<legacy>"
        return self.source_dir or "<empty>"


LEGACY_GROUP = GroupKey.legacy_bucket()


def group_key(record: ArchiveRecord) -> GroupKey:
    source_dir = record.metadata.source_dir
    if source_dir is None:
        return LEGACY_GROUP
    # "" is a directory key of its own, never the legacy bucket
    return GroupKey.for_dir(source_dir)


def group_records(records: Iterable[ArchiveRecord]) -> Dict[GroupKey, List[ArchiveRecord]]:
    """Partition records by source directory; records without one go to LEGACY_GROUP."""
    groups: Dict[GroupKey, List[ArchiveRecord]] = {}
    for record in records:
        groups.setdefault(group_key(record), []).append(record)
    return groups


__all__ = ["GroupKey", "LEGACY_GROUP", "group_key", "group_records"]
