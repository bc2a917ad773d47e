"""
Per-file backup runs against the in-memory archive store.

Covers first runs, unchanged reruns, same-size-same-mtime content changes,
files that vanish mid-run, exclusion patterns, file collection and
single-archive standard runs.
"""

from __future__ import annotations

import os
from datetime import timedelta
from pathlib import Path

import pytest

from archive_warden.backup import PerFileBackup, StandardBackup, collect_files, is_excluded, run_repository_backup
from archive_warden.errors import NoFilesToBackup
from archive_warden.fingerprint import TIMESTAMP_FORMAT, DecisionAction
from archive_warden.metadata import decode
from archive_warden.models import FileCandidate, sha256_file


@pytest.fixture()
def docs(tmp_path: Path) -> Path:
    root = tmp_path / "docs"
    (root / "sub").mkdir(parents=True)
    (root / "a.txt").write_text("alpha", encoding="utf-8")
    (root / "sub" / "b.txt").write_text("bravo", encoding="utf-8")
    return root


def _rewrite_keeping_mtime(path: Path, content: str) -> None:
    st = path.stat()
    path.write_text(content, encoding="utf-8")
    os.utime(path, ns=(st.st_atime_ns, st.st_mtime_ns))


class TestPerFileBackup:
    def test_first_run_creates_one_archive_per_file(self, store, docs):
        result = PerFileBackup(store, "documents", paranoid=True).run([str(docs)])

        assert len(result.created) == 2
        assert result.versioned == [] and result.skipped == []
        assert sorted(store.list_names()) == sorted(result.created)

        meta = decode(store.read_comment(result.decisions[str(docs / "a.txt")].archive_name))
        assert meta.source_path == str(docs / "a.txt")
        assert meta.size == 5
        assert meta.content_hash == sha256_file(str(docs / "a.txt"))
        assert meta.source_dir == str(docs)

    def test_unchanged_rerun_skips_everything(self, store, docs):
        PerFileBackup(store, "documents").run([str(docs)])
        store.calls.clear()

        result = PerFileBackup(store, "documents").run([str(docs)])

        assert result.archives_created == 0
        assert sorted(result.skipped) == sorted([str(docs / "a.txt"), str(docs / "sub" / "b.txt")])
        assert not [call for call in store.calls if call[0] == "create"]

    def test_same_size_same_mtime_change_is_versioned_in_paranoid_mode(self, store, docs):
        first = PerFileBackup(store, "documents", paranoid=True).run([str(docs)])
        original = first.decisions[str(docs / "a.txt")].archive_name
        _rewrite_keeping_mtime(docs / "a.txt", "ALPHA")

        result = PerFileBackup(store, "documents", paranoid=True).run([str(docs)])

        assert result.versioned == [f"{original}-v2"]
        assert result.skipped == [str(docs / "sub" / "b.txt")]
        assert decode(store.read_comment(f"{original}-v2")).content_hash == sha256_file(str(docs / "a.txt"))

    def test_same_size_same_mtime_change_is_missed_without_paranoid(self, store, docs):
        PerFileBackup(store, "documents").run([str(docs)])
        _rewrite_keeping_mtime(docs / "a.txt", "ALPHA")

        result = PerFileBackup(store, "documents").run([str(docs)])

        assert result.archives_created == 0

    def test_new_file_added_between_runs(self, store, docs):
        PerFileBackup(store, "documents").run([str(docs)])
        (docs / "c.txt").write_text("charlie", encoding="utf-8")

        result = PerFileBackup(store, "documents").run([str(docs)])

        assert len(result.created) == 1
        assert result.decisions[str(docs / "c.txt")].action is DecisionAction.CREATE_NEW

    def test_index_updated_within_a_run(self, store, docs):
        runner = PerFileBackup(store, "documents")
        candidate = FileCandidate.from_path(str(docs / "a.txt"), source_dir=str(docs))
        index = {}

        assert runner.backup_file(candidate, index).action is DecisionAction.CREATE_NEW
        assert runner.backup_file(candidate, index).action is DecisionAction.SKIP
        assert len(store.list_names()) == 1

    def test_legacy_archive_for_same_path_forces_new_version(self, store, docs, now):
        store.add_archive("documents-legacy", now - timedelta(days=3), str(docs / "a.txt"))

        result = PerFileBackup(store, "documents").run([str(docs / "a.txt")])

        decision = result.decisions[str(docs / "a.txt")]
        assert decision.action is DecisionAction.CREATE_VERSIONED
        assert decision.version == 2

    def test_excluded_files_are_not_archived(self, store, docs):
        (docs / "scratch.tmp").write_text("tmp", encoding="utf-8")

        result = run_repository_backup(store, "documents", [str(docs)], exclude_patterns=["*.tmp"])

        assert str(docs / "scratch.tmp") not in result.decisions
        assert len(result.created) == 2

    def test_nothing_to_back_up(self, store, tmp_path):
        empty = tmp_path / "empty"
        empty.mkdir()
        with pytest.raises(NoFilesToBackup, match="No files found to backup"):
            PerFileBackup(store, "documents").run([str(empty)])

    def test_vanished_file_is_recorded_and_run_continues(self, store, docs, monkeypatch):
        gone = docs / "gone.txt"
        files = [(str(gone), str(docs)), (str(docs / "a.txt"), str(docs))]
        monkeypatch.setattr("archive_warden.backup.collect_files", lambda paths, exclude: files)

        result = PerFileBackup(store, "documents").run([str(docs)])

        assert not result.ok
        assert list(result.failed) == [str(gone)]
        assert "No such file" in result.failed[str(gone)]
        assert len(result.created) == 1
        assert decode(store.read_comment(result.created[0])).source_path == str(docs / "a.txt")

    def test_unreadable_file_in_paranoid_mode(self, store, docs, monkeypatch):
        def deny(path):
            raise PermissionError(13, "Permission denied", path)

        monkeypatch.setattr("archive_warden.models.sha256_file", deny)

        result = PerFileBackup(store, "documents", paranoid=True).run([str(docs)])

        assert sorted(result.failed) == sorted([str(docs / "a.txt"), str(docs / "sub" / "b.txt")])
        assert result.archives_created == 0
        assert store.list_names() == []


class TestStandardBackup:
    def test_single_archive_named_after_repository(self, store, docs, now):
        result = StandardBackup(store, "documents", clock=lambda: now).run([str(docs)])

        expected = "documents-" + now.astimezone().strftime(TIMESTAMP_FORMAT)
        assert result.created == [expected]
        assert store.list_names() == [expected]
        assert store.read_comment(expected) == ""
        paths = [entry.path for entry in store.list_file_entries(expected)]
        assert paths == [str(docs / "a.txt").lstrip("/"), str(docs / "sub" / "b.txt").lstrip("/")]

    def test_exclude_patterns_are_honoured(self, store, docs, now):
        (docs / "scratch.tmp").write_text("tmp", encoding="utf-8")

        result = StandardBackup(store, "documents", clock=lambda: now).run([str(docs)], ["*.tmp"])

        paths = [entry.path for entry in store.list_file_entries(result.created[0])]
        assert str(docs / "scratch.tmp").lstrip("/") not in paths
        assert len(paths) == 2

    def test_label_is_sanitised(self, store, docs, now):
        result = StandardBackup(store, "my repo", clock=lambda: now).run([str(docs)])
        assert result.created[0].startswith("my-repo-")

    @pytest.mark.parametrize(
        "paths,message",
        [([], "No backup paths specified"), (["  "], "Empty backup path specified")],
    )
    def test_invalid_paths(self, store, paths, message):
        with pytest.raises(NoFilesToBackup, match=message):
            StandardBackup(store, "documents").run(paths)
        assert store.list_names() == []


class TestCollectFiles:
    def test_directory_walk_is_sorted_and_tagged_with_source(self, docs):
        files = collect_files([str(docs)])
        assert files == [
            (str(docs / "a.txt"), str(docs)),
            (str(docs / "sub" / "b.txt"), str(docs)),
        ]

    def test_single_file_uses_parent_directory(self, docs):
        assert collect_files([str(docs / "sub" / "b.txt")]) == [(str(docs / "sub" / "b.txt"), str(docs / "sub"))]

    def test_missing_path_is_skipped(self, docs, tmp_path):
        files = collect_files([str(tmp_path / "nope"), str(docs / "a.txt")])
        assert [f for f, _ in files] == [str(docs / "a.txt")]

    def test_symlinks_are_skipped(self, docs):
        (docs / "link.txt").symlink_to(docs / "a.txt")
        assert str(docs / "link.txt") not in [f for f, _ in collect_files([str(docs)])]

    def test_overlapping_sources_do_not_duplicate(self, docs):
        files = collect_files([str(docs), str(docs / "sub")])
        assert len(files) == 2

    def test_is_excluded_matches_basename_or_full_path(self):
        assert is_excluded("/srv/data/cache.tmp", ["*.tmp"])
        assert is_excluded("/srv/data/cache/x.bin", ["/srv/data/cache/*"])
        assert not is_excluded("/srv/data/keep.txt", ["*.tmp", "*.swp"])
