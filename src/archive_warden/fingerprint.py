"""
Deduplication decisions for per-file archives.

For each candidate file the ``FingerprintStore`` looks at the archives that
already hold the same source path and decides whether to skip the file,
create a first archive for it, or create a new ``-vN`` version.
Whenever the existing archive cannot be verified the decision is to create,
never to skip.
"""

from __future__ import annotations

import hashlib
import os
import re
from dataclasses import dataclass
from enum import Enum
from typing import Iterable, List, Optional

from .errors import ArchiveNotFound, ArchiveReadFailure
from .logger import get_logger
from .models import ArchiveRecord, FileCandidate, sha256_file
from .store import ArchiveStore
from .utils import as_utc, sanitize_label

log = get_logger(__name__)

MAX_ARCHIVE_NAME = 255
TIMESTAMP_FORMAT = "%Y-%m-%d_%H-%M-%S"
_VERSION_RE = re.compile(r"-v(\d+)$")


class DecisionAction(str, Enum):
    SKIP = "skip"
    CREATE_NEW = "create_new"
    CREATE_VERSIONED = "create_versioned"


@dataclass(frozen=True)
class BackupDecision:
    action: DecisionAction
    archive_name: Optional[str] = None
    version: Optional[int] = None
    reason: str = ""

    @property
    def creates_archive(self) -> bool:
        return self.action is not DecisionAction.SKIP


def path_hash(path: str) -> str:
    """First 12 hex characters of the SHA-256 of the path string."""
    return hashlib.sha256(path.encode("utf-8")).hexdigest()[:12]


def truncate_with_extension(filename: str, max_length: int) -> str:
    """Shorten a filename to max_length, keeping its extension when it fits."""
    if max_length <= 0:
        return ""
    if len(filename) <= max_length:
        return filename
    base, ext = os.path.splitext(filename)
    # ".gitignore" has no extension for our purposes
    if not base or not ext or len(ext) >= max_length:
        return filename[:max_length]
    return base[: max_length - len(ext)] + ext


def build_archive_name(
    repo_label: str,
    filename: str,
    hash_fragment: str,
    timestamp: str,
    suffix: str = "",
) -> str:
    """Assemble ``label-filename-hash-timestamp[suffix]`` within 255 characters.

    The filename is shortened first; the label is cut only when it alone
    would overflow. Hash, timestamp and suffix are always kept.
    """
    label = sanitize_label(repo_label)
    reserved = len(hash_fragment) + len(timestamp) + len(suffix) + 3
    # an oversized label is cut so at least one filename character fits
    label = label[: max(0, MAX_ARCHIVE_NAME - reserved - 1)]
    available = MAX_ARCHIVE_NAME - reserved - len(label)
    name_part = truncate_with_extension(filename, available)
    return f"{label}-{name_part}-{hash_fragment}-{timestamp}{suffix}"


def archive_version(name: str) -> int:
    """Version encoded in an archive name; unsuffixed names are version 1."""
    m = _VERSION_RE.search(name)
    return int(m.group(1)) if m else 1


def next_version(existing_names: Iterable[str]) -> int:
    """Smallest version strictly above every version already used, at least 2."""
    highest = max((archive_version(name) for name in existing_names), default=1)
    return max(2, highest + 1)


class FingerprintStore:
    """Decide skip / create / create-versioned for candidate files."""

    def __init__(self, store: Optional[ArchiveStore], repo_label: str, paranoid: bool = False):
        self.store = store
        self.repo_label = repo_label
        self.paranoid = paranoid

    def base_name(self, candidate: FileCandidate, suffix: str = "") -> str:
        return build_archive_name(
            self.repo_label,
            os.path.basename(candidate.path),
            path_hash(candidate.path),
            as_utc(candidate.mtime).astimezone().strftime(TIMESTAMP_FORMAT),
            suffix=suffix,
        )

    def decide(self, candidate: FileCandidate, existing: List[ArchiveRecord]) -> BackupDecision:
        matches = [r for r in existing if r.metadata.source_path == candidate.path]
        if not matches:
            return BackupDecision(DecisionAction.CREATE_NEW, self.base_name(candidate), reason="new file")

        baseline = max(matches, key=lambda r: as_utc(r.created_at))
        unchanged, reason = self._compare(candidate, baseline)
        if unchanged:
            return BackupDecision(DecisionAction.SKIP, baseline.name, reason=reason)

        names = {r.name for r in matches}
        version = next_version(names)
        name = self.base_name(candidate, suffix=f"-v{version}")
        while name in names:
            version += 1
            name = self.base_name(candidate, suffix=f"-v{version}")
        return BackupDecision(DecisionAction.CREATE_VERSIONED, name, version=version, reason=reason)

    def _compare(self, candidate: FileCandidate, record: ArchiveRecord) -> tuple[bool, str]:
        meta = record.metadata
        if meta.is_empty or meta.size is None:
            return False, "existing archive has legacy metadata"
        if meta.size != candidate.size:
            return False, "size changed"

        stored_mtime = record.file_mtime
        if stored_mtime is None:
            if self.store is None:
                return False, "no archive store to verify modification time"
            try:
                stored_mtime = record.load_file_mtime(self.store)
            except (ArchiveReadFailure, ArchiveNotFound) as e:
                log.warning("Cannot verify %s against %s: %s", candidate.path, record.name, e)
                return False, "existing archive unreadable"
        if int(as_utc(stored_mtime).timestamp()) != int(as_utc(candidate.mtime).timestamp()):
            return False, "modification time changed"

        if not self.paranoid:
            return True, "size and modification time unchanged"

        if not meta.content_hash:
            return False, "existing archive has no content hash"
        current = candidate.content_hash or sha256_file(candidate.path)
        if current != meta.content_hash:
            return False, "content hash changed"
        return True, "size, modification time and content hash unchanged"


__all__ = [
    "BackupDecision",
    "DecisionAction",
    "FingerprintStore",
    "archive_version",
    "build_archive_name",
    "next_version",
    "path_hash",
    "truncate_with_extension",
]
