"""Dataclasses shared by the backup and retention modules."""
from __future__ import annotations

import hashlib
import os
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import TYPE_CHECKING, Optional

from .errors import ArchiveReadFailure
from .metadata import ArchiveMetadata
from .utils import as_utc

if TYPE_CHECKING:
    from .store import ArchiveStore


def sha256_file(path: str) -> str:
    """Calculate SHA256 checksum of a file."""
    sha256 = hashlib.sha256()
    with open(path, "rb") as f:
        for chunk in iter(lambda: f.read(65536), b""):
            sha256.update(chunk)
    return sha256.hexdigest()


@dataclass(frozen=True)
class FileCandidate:
    """A file considered for backup during one run."""

    path: str
    size: int
    mtime: datetime
    content_hash: Optional[str] = None
    source_dir: Optional[str] = None

    @classmethod
    def from_path(cls, path: str, source_dir: Optional[str] = None, paranoid: bool = False) -> FileCandidate:
        abs_path = os.path.abspath(path)
        st = os.stat(abs_path)
        return cls(
            path=abs_path,
            size=int(st.st_size),
            mtime=datetime.fromtimestamp(st.st_mtime, tz=timezone.utc),
            content_hash=sha256_file(abs_path) if paranoid else None,
            source_dir=source_dir,
        )


@dataclass(frozen=True)
class FileEntry:
    """One file inside an archive, as listed by the archive store."""

    path: str
    size: int
    mtime: datetime


@dataclass
class ArchiveRecord:
    """The archive store's view of one archive."""

    name: str
    created_at: datetime
    metadata: ArchiveMetadata = field(default_factory=ArchiveMetadata)
    file_mtime: Optional[datetime] = None

    def load_file_mtime(self, store: ArchiveStore) -> datetime:
        """Fetch the mtime of the contained file once and cache it.

        Raises ArchiveReadFailure when the archive cannot be listed or is empty.
        """
        if self.file_mtime is not None:
            return self.file_mtime
        entries = store.list_file_entries(self.name)
        if not entries:
            raise ArchiveReadFailure(f"Archive {self.name} contains no files")
        entry = entries[0]
        if self.metadata.source_path:
            for candidate in entries:
                if candidate.path.lstrip("/") == self.metadata.source_path.lstrip("/"):
                    entry = candidate
                    break
        self.file_mtime = as_utc(entry.mtime)
        return self.file_mtime


__all__ = ["ArchiveRecord", "FileCandidate", "FileEntry", "sha256_file"]
