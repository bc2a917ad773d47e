"""Error hierarchy for archive lifecycle operations."""
from __future__ import annotations


class ArchiveWardenError(RuntimeError):
    """Base exception for archive-warden failures."""


class ConfigError(ArchiveWardenError):
    """Raised when the configuration file is missing or malformed."""


class InvalidDuration(ArchiveWardenError, ValueError):
    """Raised for duration strings that are not of the form ``<int><h|d|w|m|y>``."""


class EmptyRetentionPolicy(ArchiveWardenError):
    """Raised when pruning is requested without any retention rule."""


class NoFilesToBackup(ArchiveWardenError):
    """Raised when the configured sources yield no regular files."""


class MetadataDecodeAmbiguous(ArchiveWardenError):
    """Internal signal that a comment does not match a known format.

    The codec always recovers from it, so callers never see it.
    """


class InvalidDestination(ArchiveWardenError, ValueError):
    """Raised when a restore would write into a system directory."""


class ArchiveStoreError(ArchiveWardenError):
    """A call through the archive store boundary failed."""


class ArchiveStoreUnavailable(ArchiveStoreError):
    """The archive store could not be reached at all."""


class ArchiveReadFailure(ArchiveStoreError):
    """A single archive could not be read (corrupted or inaccessible)."""


class ArchiveNotFound(ArchiveStoreError):
    """The named archive (or a file inside it) does not exist."""


__all__ = [
    "ArchiveNotFound",
    "ArchiveReadFailure",
    "ArchiveStoreError",
    "ArchiveStoreUnavailable",
    "ArchiveWardenError",
    "ConfigError",
    "EmptyRetentionPolicy",
    "InvalidDestination",
    "InvalidDuration",
    "MetadataDecodeAmbiguous",
    "NoFilesToBackup",
]
