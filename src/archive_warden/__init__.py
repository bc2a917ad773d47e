"""Lifecycle management for per-file backup archives: deduplication, naming and retention."""
from __future__ import annotations

from .config import RetentionMode, RetentionPolicy
from .errors import ArchiveWardenError
from .fingerprint import BackupDecision, DecisionAction, FingerprintStore
from .metadata import ArchiveMetadata, decode, encode
from .models import ArchiveRecord, FileCandidate
from .prune import Pruner, prune_repository
from .retention import evaluate

__version__ = "0.4.0"

__all__ = [
    "ArchiveMetadata",
    "ArchiveRecord",
    "ArchiveWardenError",
    "BackupDecision",
    "DecisionAction",
    "FileCandidate",
    "FingerprintStore",
    "Pruner",
    "RetentionMode",
    "RetentionPolicy",
    "decode",
    "encode",
    "evaluate",
    "prune_repository",
]
