"""
Backup runs.

In ``per_file`` mode every regular file under the configured sources gets
its own archive. Existing archives are loaded once per run and indexed by
the source path stored in their comment; the ``FingerprintStore`` then
decides per file whether a new archive is needed.

In ``standard`` mode one archive named ``<repo>-<timestamp>`` holds all
configured paths, with exclude patterns passed through to the store.

Usage:
    from archive_warden.backup import PerFileBackup
    from archive_warden.store import BorgArchiveStore

    store = BorgArchiveStore("/srv/borg/documents", passphrase=...)
    result = PerFileBackup(store, repo_label="documents", paranoid=True).run(["/home/me/docs"])
"""

from __future__ import annotations

import os
from dataclasses import dataclass, field
from datetime import datetime
from typing import Callable, Dict, List, Optional, Sequence, Tuple

from .errors import NoFilesToBackup
from .fingerprint import TIMESTAMP_FORMAT, BackupDecision, DecisionAction, FingerprintStore
from .logger import get_logger, log_extra
from .metadata import ArchiveMetadata, encode
from .models import ArchiveRecord, FileCandidate
from .prune import load_records
from .store import ArchiveStore
from .utils import as_utc, is_excluded, sanitize_label, utc_now

log = get_logger(__name__)


def collect_files(paths: Sequence[str], exclude_patterns: Sequence[str] = ()) -> List[Tuple[str, str]]:
    """Return ``(file_path, source_dir)`` pairs for every regular file under ``paths``.

    A path naming a single file uses its parent directory as source_dir.
    """
    files: List[Tuple[str, str]] = []
    seen: set[str] = set()
    for base_path in paths:
        base = os.path.abspath(os.path.expanduser(base_path))
        if os.path.isfile(base):
            if base not in seen and not is_excluded(base, exclude_patterns):
                seen.add(base)
                files.append((base, os.path.dirname(base)))
            continue
        if not os.path.isdir(base):
            log.warning("Backup path does not exist, skipping: %s", base)
            continue
        for root, dirs, names in os.walk(base):
            dirs.sort()
            for name in sorted(names):
                fp = os.path.join(root, name)
                if not os.path.isfile(fp) or os.path.islink(fp):
                    continue
                if fp in seen or is_excluded(fp, exclude_patterns):
                    continue
                seen.add(fp)
                files.append((fp, base))
    return files


@dataclass
class BackupResult:
    created: List[str] = field(default_factory=list)
    versioned: List[str] = field(default_factory=list)
    skipped: List[str] = field(default_factory=list)
    failed: Dict[str, str] = field(default_factory=dict)
    decisions: Dict[str, BackupDecision] = field(default_factory=dict)

    @property
    def archives_created(self) -> int:
        return len(self.created) + len(self.versioned)

    @property
    def ok(self) -> bool:
        return not self.failed


class PerFileBackup:
    """Create one archive per changed or new file."""

    def __init__(self, store: ArchiveStore, repo_label: str, paranoid: bool = False):
        self.store = store
        self.repo_label = repo_label
        self.paranoid = paranoid
        self.fingerprints = FingerprintStore(store, repo_label, paranoid=paranoid)

    def _index(self) -> Dict[str, List[ArchiveRecord]]:
        records, unreadable = load_records(self.store)
        if unreadable:
            log.warning("%d archive(s) have unreadable comments and cannot be matched", len(unreadable))
        index: Dict[str, List[ArchiveRecord]] = {}
        for record in records:
            if not record.metadata.is_empty:
                index.setdefault(record.metadata.source_path, []).append(record)
        return index

    def backup_file(
        self,
        candidate: FileCandidate,
        index: Dict[str, List[ArchiveRecord]],
    ) -> BackupDecision:
        existing = index.get(candidate.path, [])
        decision = self.fingerprints.decide(candidate, existing)
        if decision.action is DecisionAction.SKIP:
            log.debug("[%s] Unchanged, skipping %s (%s)", self.repo_label, candidate.path, decision.reason)
            return decision

        metadata = ArchiveMetadata(
            source_path=candidate.path,
            size=candidate.size,
            content_hash=candidate.content_hash,
            source_dir=candidate.source_dir or os.path.dirname(candidate.path),
        )
        name = decision.archive_name or ""
        self.store.create(candidate.path, name, encode(metadata))
        log.info("[%s] Archived %s in archive %s (%s)", self.repo_label, candidate.path, name, decision.reason)
        index.setdefault(candidate.path, []).append(
            ArchiveRecord(name=name, created_at=utc_now(), metadata=metadata, file_mtime=candidate.mtime)
        )
        return decision

    def run(self, paths: Sequence[str], exclude_patterns: Sequence[str] = ()) -> BackupResult:
        files = collect_files(paths, exclude_patterns)
        if not files:
            raise NoFilesToBackup("No files found to backup")

        index = self._index()
        result = BackupResult()
        total = len(files)
        for position, (path, source_dir) in enumerate(files, start=1):
            log.debug("[%d/%d] Backing up: %s", position, total, path)
            try:
                candidate = FileCandidate.from_path(path, source_dir=source_dir, paranoid=self.paranoid)
            except OSError as e:
                # vanished or unreadable since collection
                log.error("[%s] Cannot read %s: %s", self.repo_label, path, e, extra=log_extra(path=path))
                result.failed[path] = str(e)
                continue
            decision = self.backup_file(candidate, index)
            result.decisions[path] = decision
            if decision.action is DecisionAction.SKIP:
                result.skipped.append(path)
            elif decision.action is DecisionAction.CREATE_VERSIONED:
                result.versioned.append(decision.archive_name or "")
            else:
                result.created.append(decision.archive_name or "")

        log.info(
            "Per-file backup completed: %d created, %d versioned, %d skipped, %d failed",
            len(result.created),
            len(result.versioned),
            len(result.skipped),
            len(result.failed),
        )
        return result


class StandardBackup:
    """Create a single archive holding every configured path."""

    def __init__(
        self,
        store: ArchiveStore,
        repo_label: str,
        clock: Optional[Callable[[], datetime]] = None,
    ):
        self.store = store
        self.repo_label = repo_label
        self._clock = clock or utc_now

    def archive_name(self) -> str:
        stamp = as_utc(self._clock()).astimezone().strftime(TIMESTAMP_FORMAT)
        return f"{sanitize_label(self.repo_label)}-{stamp}"

    def run(self, paths: Sequence[str], exclude_patterns: Sequence[str] = ()) -> BackupResult:
        if not paths:
            raise NoFilesToBackup("No backup paths specified")
        resolved: List[str] = []
        for path in paths:
            if not path or not path.strip():
                raise NoFilesToBackup("Empty backup path specified")
            resolved.append(os.path.abspath(os.path.expanduser(path)))

        name = self.archive_name()
        self.store.create_from_paths(resolved, name, exclude_patterns)
        log.info("[%s] Created archive %s from %d path(s)", self.repo_label, name, len(resolved))
        return BackupResult(created=[name])


def run_repository_backup(
    store: ArchiveStore,
    repo_label: str,
    paths: Sequence[str],
    exclude_patterns: Sequence[str] = (),
    paranoid: bool = False,
) -> BackupResult:
    return PerFileBackup(store, repo_label, paranoid=paranoid).run(paths, exclude_patterns)


__all__ = [
    "BackupResult",
    "PerFileBackup",
    "StandardBackup",
    "collect_files",
    "is_excluded",
    "run_repository_backup",
]
