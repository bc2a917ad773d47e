from __future__ import annotations

from datetime import timedelta

import pytest

from archive_warden.config import RetentionMode, RetentionPolicy
from archive_warden.errors import ArchiveStoreUnavailable, EmptyRetentionPolicy
from archive_warden.metadata import ArchiveMetadata, encode
from archive_warden.prune import WHOLE_REPOSITORY, Pruner, load_records, prune_repository


@pytest.fixture()
def two_directories(add_archive):
    """20 daily archives under /var/log and 5 under /home/user."""
    for i in range(20):
        add_archive(f"log-{i:02d}", timedelta(days=i), f"/var/log/app-{i}.log", source_dir="/var/log")
    for i in range(5):
        add_archive(f"home-{i:02d}", timedelta(days=i, minutes=5), f"/home/user/n-{i}.txt", source_dir="/home/user")


def test_each_directory_keeps_its_own_daily_archives(store, two_directories, now):
    result = prune_repository(store, RetentionPolicy(keep_daily=7), mode=RetentionMode.STANDARD, now=now)

    assert result["ok"]
    assert len(result["kept"]) == 12
    assert result["deleted_count"] == 13
    assert sorted(store.deleted) == [f"log-{i:02d}" for i in range(7, 20)]
    groups = {g["group"]: g for g in result["groups"]}
    assert groups["/var/log"]["kept"] == 7
    assert groups["/home/user"]["kept"] == 5
    assert groups["/home/user"]["deleted"] == 0


def test_per_file_mode_without_file_rule_prunes_whole_repository(store, two_directories, now):
    result = prune_repository(store, RetentionPolicy(keep_daily=7), mode=RetentionMode.PER_FILE, now=now, dry_run=True)

    assert [g["group"] for g in result["groups"]] == [WHOLE_REPOSITORY]
    assert len(result["kept"]) == 7
    assert len(result["planned_remove"]) == 18


def test_per_file_mode_with_file_rule_groups_by_directory(store, add_archive, now):
    add_archive("a", timedelta(days=1), "/srv/a/x.txt", source_dir="/srv/a", file_age=timedelta(days=3))
    add_archive("b", timedelta(days=1), "/srv/b/y.txt", source_dir="/srv/b", file_age=timedelta(days=40))

    result = prune_repository(
        store,
        RetentionPolicy(keep_files_modified_within="30d"),
        mode=RetentionMode.PER_FILE,
        now=now,
    )

    assert {g["group"] for g in result["groups"]} == {"/srv/a", "/srv/b"}
    assert result["kept"] == ["a"]
    assert result["removed"] == ["b"]


def test_legacy_archives_form_their_own_group(store, add_archive, now):
    add_archive("modern", timedelta(days=1), "/srv/a/x.txt", source_dir="/srv/a")
    store.add_archive("old", now - timedelta(days=1), encode(ArchiveMetadata(source_path="/srv/a/x.txt")))

    result = prune_repository(store, RetentionPolicy(keep_daily=1), mode=RetentionMode.STANDARD, now=now)

    assert {g["group"] for g in result["groups"]} == {"/srv/a", "<legacy>"}
    assert sorted(result["kept"]) == ["modern", "old"]


def test_dry_run_deletes_nothing(store, two_directories, now):
    result = prune_repository(store, RetentionPolicy(keep_daily=7), mode=RetentionMode.STANDARD, now=now, dry_run=True)

    assert result["dry_run"]
    assert len(result["planned_remove"]) == 13
    assert result["removed"] == []
    assert result["deleted_count"] == 0
    assert store.deleted == []
    assert not [call for call in store.calls if call[0] == "delete"]


def test_delete_failure_is_collected_and_pruning_continues(store, two_directories, now):
    store.undeletable.add("log-10")

    result = prune_repository(store, RetentionPolicy(keep_daily=7), mode=RetentionMode.STANDARD, now=now)

    assert not result["ok"]
    assert [e["name"] for e in result["errors"]] == ["log-10"]
    assert result["deleted_count"] == 12
    assert "log-10" not in store.deleted


def test_unavailable_store_aborts(store, two_directories, now):
    records, _ = load_records(store)
    store.available = False

    with pytest.raises(ArchiveStoreUnavailable):
        Pruner(store).prune(records, RetentionPolicy(keep_daily=7), mode=RetentionMode.STANDARD, now=now)


def test_archive_with_unreadable_comment_is_reported_not_deleted(store, two_directories, now):
    store.unreadable.add("log-19")

    result = prune_repository(store, RetentionPolicy(keep_daily=7), mode=RetentionMode.STANDARD, now=now)

    assert result["unreadable"] == ["log-19"]
    assert "log-19" not in result["planned_remove"]
    assert result["evaluated"] == 24


@pytest.mark.parametrize("policy", [None, RetentionPolicy()])
def test_empty_policy_rejected(store, policy):
    with pytest.raises(EmptyRetentionPolicy):
        prune_repository(store, policy)
