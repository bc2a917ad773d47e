from __future__ import annotations

import os
from enum import Enum
from pathlib import Path
from typing import Any, Dict, List, Optional

import yaml
from pydantic import BaseModel, Field, ValidationError, field_validator

from .duration import parse_duration
from .errors import ConfigError
from .logger import get_logger

log = get_logger(__name__)

COUNT_RULES = ("keep_hourly", "keep_daily", "keep_weekly", "keep_monthly", "keep_yearly")
DURATION_RULES = ("keep_within", "keep_last", "keep_files_modified_within")


class RetentionMode(str, Enum):
    """How archives in a repository were produced and are pruned."""
    STANDARD = "standard"
    PER_FILE = "per_file"


class RetentionPolicy(BaseModel):
    """Declarative retention rules. A rule is present when it is not None."""
    keep_hourly: Optional[int] = Field(default=None, ge=0)
    keep_daily: Optional[int] = Field(default=None, ge=0)
    keep_weekly: Optional[int] = Field(default=None, ge=0)
    keep_monthly: Optional[int] = Field(default=None, ge=0)
    keep_yearly: Optional[int] = Field(default=None, ge=0)
    keep_within: Optional[str] = None
    keep_last: Optional[str] = None
    keep_files_modified_within: Optional[str] = None

    @field_validator(*DURATION_RULES)
    @classmethod
    def _valid_duration(cls, v: Optional[str]) -> Optional[str]:
        if v is not None:
            parse_duration(v)
        return v

    def present_rules(self) -> List[str]:
        return [name for name in (*COUNT_RULES, *DURATION_RULES) if getattr(self, name) is not None]

    @property
    def is_empty(self) -> bool:
        return not self.present_rules()

    @property
    def uses_file_metadata(self) -> bool:
        return self.keep_files_modified_within is not None


class SourceConfig(BaseModel):
    name: str = "default"
    paths: List[str] = Field(default_factory=list)
    exclude: List[str] = Field(default_factory=list)


class RepositoryConfig(BaseModel):
    name: str
    path: str
    retention_mode: RetentionMode = RetentionMode.STANDARD
    retention: Optional[RetentionPolicy] = None
    sources: List[SourceConfig] = Field(default_factory=list)
    exclude: List[str] = Field(default_factory=list)
    paranoid: Optional[bool] = None
    compression: Optional[str] = None
    passphrase_env: Optional[str] = None

    def backup_paths(self) -> List[str]:
        return [p for source in self.sources for p in source.paths]

    def exclude_patterns(self) -> List[str]:
        patterns: List[str] = []
        for source in self.sources:
            patterns.extend(source.exclude)
        patterns.extend(self.exclude)
        # keep order, drop duplicates
        return list(dict.fromkeys(patterns))

    def passphrase(self) -> Optional[str]:
        if self.passphrase_env:
            return os.getenv(self.passphrase_env)
        return os.getenv("BORG_PASSPHRASE")


class Settings(BaseModel):
    borg_path: str = "borg"
    compression: str = "lz4"
    paranoid: bool = False
    log_file: Optional[str] = None
    log_level: Optional[str] = None
    repositories: List[RepositoryConfig] = Field(default_factory=list)

    def get_repository(self, name: str) -> Optional[RepositoryConfig]:
        for repo in self.repositories:
            if repo.name == name:
                return repo
        return None

    def repository_names(self) -> List[str]:
        return [repo.name for repo in self.repositories]

    def paranoid_for(self, repo: RepositoryConfig) -> bool:
        return self.paranoid if repo.paranoid is None else repo.paranoid

    def compression_for(self, repo: RepositoryConfig) -> str:
        return repo.compression or self.compression


def _normalize_legacy(raw: Dict[str, Any]) -> Dict[str, Any]:
    """Fold a single-repository file (``repository:`` + ``backup_paths:``) into ``repositories``."""
    if "repositories" in raw or "repository" not in raw:
        return raw
    data = dict(raw)
    repo: Dict[str, Any] = {
        "name": "default",
        "path": data.pop("repository"),
        "sources": [{"name": "default", "paths": data.pop("backup_paths", []) or []}],
        "exclude": data.pop("exclude_patterns", []) or [],
    }
    for key in ("retention", "retention_mode", "passphrase_env"):
        if key in data:
            repo[key] = data.pop(key)
    data["repositories"] = [repo]
    return data


def _find_settings_path(explicit: Optional[str]) -> Optional[Path]:
    if explicit:
        return Path(explicit)
    candidates = [
        Path(os.getenv("ARCHIVE_WARDEN_CONFIG", "")) if os.getenv("ARCHIVE_WARDEN_CONFIG") else None,
        Path("archive-warden.yaml"),
        Path.home() / ".config" / "archive-warden" / "config.yaml",
    ]
    for p in candidates:
        if p and p.exists() and p.is_file():
            return p
    return None


def _truthy(value: str) -> bool:
    return value.strip().lower() in ("1", "true", "yes", "on")


def load_settings(path: Optional[str] = None) -> Settings:
    p = _find_settings_path(path)
    if not p or not p.exists():
        raise ConfigError(f"Configuration file not found: {p or path or 'archive-warden.yaml'}")

    try:
        with open(p, "r", encoding="utf-8") as f:
            raw = yaml.safe_load(f) or {}
    except yaml.YAMLError as e:
        raise ConfigError(f"Invalid YAML syntax in {p}: {e}") from e
    if not isinstance(raw, dict):
        raise ConfigError(f"Configuration root must be a mapping: {p}")

    try:
        s = Settings(**_normalize_legacy(raw))
    except ValidationError as e:
        log.error("Settings validation failed: %s", e)
        raise

    # Env overrides
    if borg_path := os.getenv("ARCHIVE_WARDEN_BORG_PATH"):
        s.borg_path = borg_path
    if log_level := os.getenv("ARCHIVE_WARDEN_LOG_LEVEL"):
        s.log_level = log_level
    if paranoid := os.getenv("ARCHIVE_WARDEN_PARANOID"):
        s.paranoid = _truthy(paranoid)
    return s


__all__ = [
    "RepositoryConfig",
    "RetentionMode",
    "RetentionPolicy",
    "Settings",
    "SourceConfig",
    "load_settings",
]
