from __future__ import annotations

from datetime import datetime, timedelta, timezone
from pathlib import Path
from typing import Callable, Optional

import pytest

from archive_warden.metadata import ArchiveMetadata, encode
from archive_warden.models import ArchiveRecord, FileEntry
from archive_warden.store import InMemoryArchiveStore

NOW = datetime(2025, 6, 15, 12, 0, 0, tzinfo=timezone.utc)


@pytest.fixture()
def now() -> datetime:
    return NOW


@pytest.fixture()
def store() -> InMemoryArchiveStore:
    """In-memory archive store whose clock is pinned to NOW."""
    return InMemoryArchiveStore(clock=lambda: NOW)


@pytest.fixture()
def make_record() -> Callable[..., ArchiveRecord]:
    def _make(
        name: str,
        age: timedelta,
        source_dir: Optional[str] = None,
        source_path: Optional[str] = None,
        file_mtime: Optional[datetime] = None,
    ) -> ArchiveRecord:
        meta = ArchiveMetadata(
            source_path=source_path or f"/data/{name}",
            size=10,
            content_hash="ab" * 32,
            source_dir=source_dir,
        )
        return ArchiveRecord(name=name, created_at=NOW - age, metadata=meta, file_mtime=file_mtime)

    return _make


@pytest.fixture()
def add_archive(store: InMemoryArchiveStore) -> Callable[..., None]:
    """Register an archive in the in-memory store with a single file entry."""

    def _add(
        name: str,
        age: timedelta,
        source_path: str,
        source_dir: Optional[str] = None,
        file_age: Optional[timedelta] = None,
        size: int = 10,
    ) -> None:
        meta = ArchiveMetadata(source_path=source_path, size=size, content_hash="cd" * 32, source_dir=source_dir)
        entry = FileEntry(path=source_path.lstrip("/"), size=size, mtime=NOW - (file_age or age))
        store.add_archive(name, NOW - age, encode(meta), [entry])

    return _add


@pytest.fixture()
def settings_path(tmp_path: Path) -> Path:
    """Create an isolated archive-warden.yaml for tests."""
    path = tmp_path / "archive-warden.yaml"
    path.write_text(
        f"""
borg_path: borg
compression: zstd
paranoid: false
repositories:
  - name: documents
    path: "{tmp_path / 'repo-documents'}"
    retention_mode: per_file
    paranoid: true
    retention:
      keep_daily: 7
      keep_files_modified_within: 30d
    sources:
      - name: docs
        paths: ["{tmp_path / 'docs'}"]
        exclude: ["*.tmp"]
    exclude: ["*.swp"]
  - name: databases
    path: "{tmp_path / 'repo-databases'}"
    retention:
      keep_within: 7d
      keep_weekly: 4
    sources:
      - paths: ["{tmp_path / 'db'}"]
""".strip(),
        encoding="utf-8",
    )
    return path
