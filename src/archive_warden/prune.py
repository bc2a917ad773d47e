from __future__ import annotations

from datetime import datetime
from typing import Dict, List, Optional, Tuple, TypedDict

from .config import RetentionMode, RetentionPolicy
from .errors import (
    ArchiveNotFound,
    ArchiveReadFailure,
    ArchiveStoreError,
    ArchiveStoreUnavailable,
    EmptyRetentionPolicy,
)
from .grouping import GroupKey, group_records
from .logger import get_logger, log_extra
from .metadata import decode
from .models import ArchiveRecord
from .retention import RetentionDecision, evaluate
from .store import ArchiveStore
from .utils import utc_now

log = get_logger(__name__)

WHOLE_REPOSITORY = "<repository>"


class GroupSummary(TypedDict):
    group: str
    archives: int
    kept: int
    deleted: int


class PruneResult(TypedDict):
    ok: bool
    dry_run: bool
    mode: str
    evaluated: int
    groups: list[GroupSummary]
    planned_remove: list[str]
    removed: list[str]
    kept: list[str]
    deleted_count: int
    unreadable: list[str]
    errors: list[dict[str, str]]


def load_records(store: ArchiveStore) -> Tuple[List[ArchiveRecord], List[str]]:
    """Build records from the store; archives whose comment cannot be read are returned separately."""
    records: List[ArchiveRecord] = []
    unreadable: List[str] = []
    for name, created_at in store.list_names_with_timestamps():
        try:
            comment = store.read_comment(name)
        except (ArchiveReadFailure, ArchiveNotFound) as e:
            log.warning("Skipping archive %s, comment unreadable: %s", name, e)
            unreadable.append(name)
            continue
        records.append(ArchiveRecord(name=name, created_at=created_at, metadata=decode(comment)))
    return records, unreadable


class Pruner:
    """Evaluate retention per group and delete what no rule keeps."""

    def __init__(self, store: ArchiveStore):
        self.store = store

    def plan(
        self,
        records: List[ArchiveRecord],
        policy: RetentionPolicy,
        mode: RetentionMode,
        now: datetime,
    ) -> List[Tuple[str, RetentionDecision]]:
        if mode == RetentionMode.PER_FILE and not policy.uses_file_metadata:
            log.info("No file metadata retention specified, using standard pruning")
            return [(WHOLE_REPOSITORY, evaluate(records, policy, now, self.store))]

        if policy.uses_file_metadata:
            log.info("Pruning per-file archives based on file modification time")
        groups: Dict[GroupKey, List[ArchiveRecord]] = group_records(records)
        log.info("Found %d archive(s) in %d group(s) to evaluate for pruning", len(records), len(groups))
        return [(key.label, evaluate(group, policy, now, self.store)) for key, group in groups.items()]

    def prune(
        self,
        records: List[ArchiveRecord],
        policy: RetentionPolicy,
        mode: RetentionMode = RetentionMode.PER_FILE,
        now: Optional[datetime] = None,
        dry_run: bool = False,
    ) -> PruneResult:
        if policy.is_empty:
            raise EmptyRetentionPolicy("No retention policy specified; configure at least one keep_* rule")
        now = now or utc_now()

        plans = self.plan(records, policy, mode, now)

        to_remove: List[str] = []
        kept: List[str] = []
        unreadable: List[str] = []
        summaries: List[GroupSummary] = []
        for label, decision in plans:
            to_remove.extend(decision.delete_names)
            kept.extend(decision.keep_names)
            unreadable.extend(decision.unreadable)
            summaries.append(
                {
                    "group": label,
                    "archives": len(decision.keep) + len(decision.delete),
                    "kept": len(decision.keep),
                    "deleted": len(decision.delete),
                }
            )
            log.debug("Group %s: keep %d, delete %d", label, len(decision.keep), len(decision.delete))

        removed: List[str] = []
        errors: List[dict[str, str]] = []
        if to_remove:
            log.info("Deleting %d archive(s)%s", len(to_remove), " [dry-run]" if dry_run else "")
        for name in to_remove:
            if dry_run:
                continue
            log.debug("Deleting archive: %s", name)
            try:
                self.store.delete(name)
            except ArchiveStoreUnavailable:
                raise
            except ArchiveStoreError as e:
                log.error("Failed to delete archive %s: %s", name, e, extra=log_extra(archive=name))
                errors.append({"name": name, "error": str(e)})
                continue
            removed.append(name)

        if not dry_run:
            log.info("Pruned %d archive(s)", len(removed))

        return {
            "ok": not errors,
            "dry_run": dry_run,
            "mode": mode.value,
            "evaluated": len(records),
            "groups": summaries,
            "planned_remove": to_remove,
            "removed": removed,
            "kept": kept,
            "deleted_count": len(removed),
            "unreadable": unreadable,
            "errors": errors,
        }


def prune_repository(
    store: ArchiveStore,
    policy: Optional[RetentionPolicy],
    mode: RetentionMode = RetentionMode.PER_FILE,
    now: Optional[datetime] = None,
    dry_run: bool = False,
) -> PruneResult:
    """Load every archive from the store and prune it under ``policy``."""
    if policy is None or policy.is_empty:
        raise EmptyRetentionPolicy("No retention policy specified; configure at least one keep_* rule")
    records, unreadable = load_records(store)
    result = Pruner(store).prune(records, policy, mode=mode, now=now, dry_run=dry_run)
    result["unreadable"] = unreadable + result["unreadable"]
    return result


__all__ = ["GroupSummary", "PruneResult", "Pruner", "load_records", "prune_repository"]
