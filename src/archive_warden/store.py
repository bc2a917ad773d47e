"""
Archive store boundary.

The lifecycle logic talks to the archive store only through the
``ArchiveStore`` protocol below. ``BorgArchiveStore`` implements it by
shelling out to BorgBackup; ``InMemoryArchiveStore`` keeps everything in a
dict and is used for dry runs and tests.
"""

from __future__ import annotations

import configparser
import json
import os
import re
import subprocess
from dataclasses import dataclass, field
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Callable, Dict, List, Optional, Protocol, Sequence, Set, Tuple, Type

from .errors import (
    ArchiveNotFound,
    ArchiveReadFailure,
    ArchiveStoreError,
    ArchiveStoreUnavailable,
    InvalidDestination,
)
from .logger import get_logger
from .models import FileEntry
from .utils import as_utc, is_excluded, parse_timestamp, utc_now

log = get_logger(__name__)

VERSION_RE = re.compile(r"borg\S*\s+(?P<version>\d+\.\d+\.\d+\S*)")
FORBIDDEN_DESTINATIONS = ("/", "/bin", "/sbin", "/usr", "/etc", "/sys", "/proc", "/boot")


class ArchiveStore(Protocol):
    def create(self, file_path: str, archive_name: str, comment: str) -> None: ...

    def create_from_paths(self, paths: Sequence[str], archive_name: str, exclude_patterns: Sequence[str] = ()) -> None: ...

    def list_names(self) -> List[str]: ...

    def list_names_with_timestamps(self) -> List[Tuple[str, datetime]]: ...

    def read_comment(self, archive_name: str) -> str: ...

    def list_file_entries(self, archive_name: str) -> List[FileEntry]: ...

    def delete(self, archive_name: str) -> None: ...

    def version(self) -> str: ...


def _require_name(archive_name: str) -> str:
    if not archive_name or not archive_name.strip():
        raise ArchiveStoreError("Archive name cannot be empty")
    return archive_name


def _execute_version_command(borg_path: str) -> Tuple[str, int]:
    try:
        proc = subprocess.run(
            [borg_path, "--version"],
            capture_output=True,
            text=True,
            stdin=subprocess.DEVNULL,
            check=False,
        )
    except FileNotFoundError:
        return "", 127
    return proc.stdout.strip(), proc.returncode


def borg_version(borg_path: str = "borg") -> str:
    """Return the installed Borg version, e.g. ``1.2.8``."""
    output, returncode = _execute_version_command(borg_path)
    if returncode != 0 or not output:
        raise ArchiveStoreUnavailable(f"Borg is not installed or not executable: {borg_path}")
    m = VERSION_RE.search(output)
    if not m:
        raise ArchiveStoreError(f"Could not parse Borg version from output: {output!r}")
    return m.group("version")


def validate_destination(destination: str) -> str:
    """Normalise a restore destination, refusing system directories."""
    normalized = os.path.abspath(os.path.expanduser(destination))
    for forbidden in FORBIDDEN_DESTINATIONS:
        # "/" itself is refused; paths below it are not
        if normalized == forbidden or (forbidden != "/" and normalized.startswith(forbidden + "/")):
            raise InvalidDestination(f"Invalid destination: refusing to extract to system directory {normalized}")
    return normalized


class BorgArchiveStore:
    """Archive store backed by a BorgBackup repository."""

    def __init__(
        self,
        repo_path: str,
        passphrase: Optional[str] = None,
        borg_path: str = "borg",
        compression: str = "lz4",
        timeout: Optional[float] = None,
    ):
        self.repo_path = repo_path
        if not self._is_remote():
            # restore runs borg from the destination directory
            self.repo_path = os.path.abspath(os.path.expanduser(repo_path))
        self.borg_path = borg_path
        self.compression = compression
        self.timeout = timeout
        self._passphrase = passphrase

    # ------------------------------------------------------------------
    def _is_remote(self) -> bool:
        return "://" in self.repo_path or re.match(r"^[^/]+@[^:]+:", self.repo_path) is not None

    def exists(self) -> bool:
        if self._is_remote():
            return True
        return os.path.isdir(self.repo_path) and os.path.exists(os.path.join(self.repo_path, "config"))

    def _require_repository(self) -> None:
        if not self.exists():
            raise ArchiveStoreUnavailable(f"Repository does not exist at {self.repo_path}")

    def _env(self) -> Dict[str, str]:
        env = dict(os.environ)
        if self._passphrase:
            env["BORG_PASSPHRASE"] = self._passphrase
        env["BORG_RELOCATED_REPO_ACCESS_IS_OK"] = "yes"
        env["BORG_UNKNOWN_UNENCRYPTED_REPO_ACCESS_IS_OK"] = "yes"
        return env

    def _target(self, archive_name: str) -> str:
        return f"{self.repo_path}::{_require_name(archive_name)}"

    def _run(
        self,
        args: Sequence[str],
        error_cls: Type[ArchiveStoreError] = ArchiveStoreError,
        cwd: Optional[str] = None,
    ) -> str:
        cmd = [self.borg_path, *args]
        log.debug("Running: %s", " ".join(cmd))
        try:
            proc = subprocess.run(
                cmd,
                capture_output=True,
                text=True,
                stdin=subprocess.DEVNULL,
                env=self._env(),
                cwd=cwd,
                timeout=self.timeout,
                check=False,
            )
        except FileNotFoundError as e:
            raise ArchiveStoreUnavailable(f"Borg executable not found: {self.borg_path}") from e
        except subprocess.TimeoutExpired as e:
            raise ArchiveStoreUnavailable(f"Borg command timed out after {self.timeout}s: {' '.join(cmd)}") from e

        # rc 1 is a Borg warning; the command still completed
        if proc.returncode == 1:
            log.warning("Borg reported warnings for %s: %s", args[0], proc.stderr.strip())
        elif proc.returncode != 0:
            detail = proc.stderr.strip() or proc.stdout.strip()
            raise error_cls(f"Borg command failed: {' '.join(cmd)}: {detail}")
        return proc.stdout

    def _run_json(self, args: Sequence[str], error_cls: Type[ArchiveStoreError] = ArchiveStoreError) -> Dict[str, Any]:
        out = self._run(args, error_cls)
        try:
            return json.loads(out)
        except json.JSONDecodeError as e:
            raise error_cls(f"Unexpected output from borg {args[0]}: {e}") from e

    # ------------------------------------------------------------------
    def init(self, encryption: str = "repokey") -> None:
        if not self._is_remote() and self.exists():
            raise ArchiveStoreError(f"Repository already exists at {self.repo_path}")
        log.info("Creating Borg repository at %s with %s encryption", self.repo_path, encryption)
        self._run(["init", f"--encryption={encryption}", self.repo_path])
        log.info("Repository created successfully at %s", self.repo_path)

    def create(self, file_path: str, archive_name: str, comment: str) -> None:
        self._require_repository()
        self._run(
            [
                "create",
                "--compression",
                self.compression,
                "--comment",
                comment,
                self._target(archive_name),
                file_path,
            ]
        )

    def create_from_paths(self, paths: Sequence[str], archive_name: str, exclude_patterns: Sequence[str] = ()) -> None:
        self._require_repository()
        args = ["create", "--compression", self.compression]
        for pattern in exclude_patterns:
            args += ["--exclude", pattern]
        args.append(self._target(archive_name))
        args.extend(paths)
        self._run(args)

    def list_names(self) -> List[str]:
        self._require_repository()
        out = self._run(["list", "--short", self.repo_path])
        return [line.strip() for line in out.splitlines() if line.strip()]

    def list_names_with_timestamps(self) -> List[Tuple[str, datetime]]:
        self._require_repository()
        data = self._run_json(["list", "--json", self.repo_path])
        result: List[Tuple[str, datetime]] = []
        for item in data.get("archives", []):
            stamp = item.get("start") or item.get("time")
            result.append((str(item["name"]), parse_timestamp(str(stamp))))
        return result

    def archive_info(self, archive_name: str) -> Dict[str, Any]:
        """Return the raw ``borg info --json`` document for one archive."""
        self._require_repository()
        return self._run_json(["info", "--json", self._target(archive_name)], ArchiveReadFailure)

    def read_comment(self, archive_name: str) -> str:
        archives = self.archive_info(archive_name).get("archives") or []
        if not archives:
            raise ArchiveNotFound(f"Archive {archive_name} not found")
        return str(archives[0].get("comment") or "")

    def list_file_entries(self, archive_name: str) -> List[FileEntry]:
        self._require_repository()
        out = self._run(["list", "--json-lines", self._target(archive_name)], ArchiveReadFailure)
        entries: List[FileEntry] = []
        for line in out.splitlines():
            if not line.strip():
                continue
            try:
                item = json.loads(line)
                if item.get("type", "-") != "-":
                    continue
                entries.append(
                    FileEntry(
                        path=str(item["path"]),
                        size=int(item.get("size") or 0),
                        mtime=parse_timestamp(str(item["mtime"])),
                    )
                )
            except (json.JSONDecodeError, KeyError, ValueError) as e:
                raise ArchiveReadFailure(f"Unreadable file listing for {archive_name}: {e}") from e
        return entries

    def file_metadata(self, archive_name: str, file_path: str) -> FileEntry:
        wanted = file_path.lstrip("/")
        for entry in self.list_file_entries(archive_name):
            if entry.path.lstrip("/") == wanted:
                return entry
        raise ArchiveNotFound(f"File {file_path} not found in archive {archive_name}")

    def delete(self, archive_name: str) -> None:
        self._require_repository()
        self._run(["delete", self._target(archive_name)])

    def extract(self, archive_name: str, destination: str = ".", path: Optional[str] = None) -> str:
        """Restore an archive (or one path inside it) into ``destination``."""
        self._require_repository()
        target = validate_destination(destination)
        os.makedirs(target, exist_ok=True)
        args = ["extract", self._target(archive_name)]
        if path:
            args.append(path.lstrip("/"))
        log.info("Restoring %s to %s", f"{path} from {archive_name}" if path else archive_name, target)
        self._run(args, ArchiveReadFailure, cwd=target)
        return target

    def repository_info(self) -> Dict[str, Any]:
        """Return the raw ``borg info --json`` document for the repository."""
        self._require_repository()
        return self._run_json(["info", "--json", self.repo_path])

    def version(self) -> str:
        return borg_version(self.borg_path)

    def repository_version(self) -> int:
        self._require_repository()
        if self._is_remote():
            raise ArchiveStoreError("Repository version can only be read for local repositories")
        parser = configparser.ConfigParser()
        parser.read(os.path.join(self.repo_path, "config"), encoding="utf-8")
        try:
            return parser.getint("repository", "version")
        except (configparser.Error, ValueError) as e:
            raise ArchiveStoreError(f"Cannot read repository version at {self.repo_path}: {e}") from e

    def check_compatibility(self) -> Dict[str, Any]:
        """Compare the Borg major version against the repository format version."""
        version = self.version()
        repo_version = self.repository_version()
        major = int(version.split(".", 1)[0])
        compatible = not ((major == 1 and repo_version >= 2) or (major >= 2 and repo_version < 2))
        return {
            "borg_version": version,
            "repository_version": repo_version,
            "compatible": compatible,
        }


@dataclass
class _MemoryArchive:
    created_at: datetime
    comment: str
    entries: List[FileEntry] = field(default_factory=list)


class InMemoryArchiveStore:
    """Dict-backed archive store with failure injection for tests and dry runs."""

    def __init__(self, clock: Optional[Callable[[], datetime]] = None, store_version: str = "1.2.8"):
        self._archives: Dict[str, _MemoryArchive] = {}
        self._clock = clock or utc_now
        self._version = store_version
        self.available = True
        self.unreadable: Set[str] = set()
        self.undeletable: Set[str] = set()
        self.deleted: List[str] = []
        self.calls: List[Tuple[str, str]] = []

    def _check(self, op: str, arg: str = "") -> None:
        self.calls.append((op, arg))
        if not self.available:
            raise ArchiveStoreUnavailable("In-memory store marked unavailable")

    def add_archive(
        self,
        name: str,
        created_at: datetime,
        comment: str = "",
        entries: Optional[List[FileEntry]] = None,
    ) -> None:
        self._archives[name] = _MemoryArchive(created_at=created_at, comment=comment, entries=list(entries or []))

    def create(self, file_path: str, archive_name: str, comment: str) -> None:
        self._check("create", archive_name)
        _require_name(archive_name)
        if archive_name in self._archives:
            raise ArchiveStoreError(f"Archive {archive_name} already exists")
        try:
            st = Path(file_path).stat()
        except OSError as e:
            raise ArchiveStoreError(f"Cannot archive {file_path}: {e}") from e
        entry = FileEntry(
            path=file_path.lstrip("/"),
            size=int(st.st_size),
            mtime=datetime.fromtimestamp(st.st_mtime, tz=timezone.utc),
        )
        self._archives[archive_name] = _MemoryArchive(created_at=self._clock(), comment=comment, entries=[entry])

    def create_from_paths(self, paths: Sequence[str], archive_name: str, exclude_patterns: Sequence[str] = ()) -> None:
        self._check("create_from_paths", archive_name)
        _require_name(archive_name)
        if archive_name in self._archives:
            raise ArchiveStoreError(f"Archive {archive_name} already exists")
        entries: List[FileEntry] = []
        for base in paths:
            candidates = [base]
            if os.path.isdir(base):
                candidates = sorted(os.path.join(root, n) for root, _, names in os.walk(base) for n in names)
            for fp in candidates:
                if not os.path.isfile(fp) or is_excluded(fp, exclude_patterns):
                    continue
                st = os.stat(fp)
                entries.append(
                    FileEntry(
                        path=fp.lstrip("/"),
                        size=int(st.st_size),
                        mtime=datetime.fromtimestamp(st.st_mtime, tz=timezone.utc),
                    )
                )
        self._archives[archive_name] = _MemoryArchive(created_at=self._clock(), comment="", entries=entries)

    def list_names(self) -> List[str]:
        self._check("list_names")
        return [name for name, _ in self._ordered()]

    def list_names_with_timestamps(self) -> List[Tuple[str, datetime]]:
        self._check("list_names_with_timestamps")
        return [(name, archive.created_at) for name, archive in self._ordered()]

    def _ordered(self) -> List[Tuple[str, _MemoryArchive]]:
        return sorted(self._archives.items(), key=lambda item: as_utc(item[1].created_at))

    def _get(self, archive_name: str) -> _MemoryArchive:
        _require_name(archive_name)
        if archive_name in self.unreadable:
            raise ArchiveReadFailure(f"Archive {archive_name} is unreadable")
        try:
            return self._archives[archive_name]
        except KeyError:
            raise ArchiveNotFound(f"Archive {archive_name} not found") from None

    def read_comment(self, archive_name: str) -> str:
        self._check("read_comment", archive_name)
        return self._get(archive_name).comment

    def list_file_entries(self, archive_name: str) -> List[FileEntry]:
        self._check("list_file_entries", archive_name)
        return list(self._get(archive_name).entries)

    def delete(self, archive_name: str) -> None:
        self._check("delete", archive_name)
        _require_name(archive_name)
        if archive_name in self.undeletable:
            raise ArchiveStoreError(f"Failed to delete {archive_name}")
        if archive_name not in self._archives:
            raise ArchiveNotFound(f"Archive {archive_name} not found")
        del self._archives[archive_name]
        self.deleted.append(archive_name)

    def version(self) -> str:
        self._check("version")
        return self._version


__all__ = [
    "ArchiveStore",
    "BorgArchiveStore",
    "InMemoryArchiveStore",
    "borg_version",
    "validate_destination",
]
