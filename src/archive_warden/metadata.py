"""
Codec for the metadata stored in an archive's comment field.

Comments are written as ``source_path|||size|||content_hash|||source_dir``.
Archives written by earlier releases carry shorter shapes, so decoding
dispatches on the number of fields:

    1 field   bare path                     (BARE_PATH)
    2 fields  path|||hash                   (PATH_HASH)
    3 fields  path|||size|||hash            (PATH_SIZE_HASH)
    4 fields  path|||size|||hash|||dir      (FULL)

Anything else falls back to treating the whole comment as the path.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import List, Optional, Tuple

from .errors import MetadataDecodeAmbiguous
from .logger import get_logger

log = get_logger(__name__)

DELIMITER = "|||"


class CommentFormat(str, Enum):
    """Shape of a decoded comment."""
    EMPTY = "empty"
    BARE_PATH = "bare_path"
    PATH_HASH = "path_hash"
    PATH_SIZE_HASH = "path_size_hash"
    FULL = "full"
    FALLBACK = "fallback"


@dataclass(frozen=True)
class ArchiveMetadata:
    """Decoded archive comment. Unset fields are None, never zero."""
    source_path: str = ""
    size: Optional[int] = None
    content_hash: Optional[str] = None
    source_dir: Optional[str] = None

    @property
    def is_empty(self) -> bool:
        return not self.source_path

    @property
    def is_legacy(self) -> bool:
        """True when the record predates the source_dir field."""
        return self.source_dir is None


def encode(metadata: ArchiveMetadata) -> str:
    fields: List[Optional[str]] = [
        metadata.source_path,
        None if metadata.size is None else str(int(metadata.size)),
        metadata.content_hash or None,
        metadata.source_dir,
    ]
    while len(fields) > 1 and fields[-1] is None:
        fields.pop()
    # Two fields would read back as path|||hash
    if len(fields) == 2:
        fields.append(None)
    return DELIMITER.join(f or "" for f in fields)


def _parse_size(raw: str) -> Optional[int]:
    if raw == "":
        return None
    try:
        size = int(raw)
    except ValueError as e:
        raise MetadataDecodeAmbiguous(f"size field is not an integer: {raw!r}") from e
    if size < 0:
        raise MetadataDecodeAmbiguous(f"size field is negative: {raw!r}")
    return size


def _split(text: str) -> Tuple[ArchiveMetadata, CommentFormat]:
    parts = text.split(DELIMITER)
    if len(parts) == 1:
        return ArchiveMetadata(source_path=text), CommentFormat.BARE_PATH
    if len(parts) == 2:
        path, digest = parts
        return ArchiveMetadata(source_path=path, content_hash=digest or None), CommentFormat.PATH_HASH
    if len(parts) == 3:
        path, size, digest = parts
        return (
            ArchiveMetadata(source_path=path, size=_parse_size(size), content_hash=digest or None),
            CommentFormat.PATH_SIZE_HASH,
        )
    if len(parts) == 4:
        path, size, digest, source_dir = parts
        return (
            ArchiveMetadata(
                source_path=path,
                size=_parse_size(size),
                content_hash=digest or None,
                source_dir=source_dir,
            ),
            CommentFormat.FULL,
        )
    raise MetadataDecodeAmbiguous(f"unexpected field count {len(parts)}")


def decode_with_format(text: Optional[str]) -> Tuple[ArchiveMetadata, CommentFormat]:
    """Decode a comment and report which format it was written in. Never raises."""
    if not text:
        return ArchiveMetadata(), CommentFormat.EMPTY
    try:
        metadata, fmt = _split(text)
    except MetadataDecodeAmbiguous as e:
        log.debug("Comment %r decoded as bare path: %s", text, e)
        return ArchiveMetadata(source_path=text), CommentFormat.FALLBACK
    if not metadata.source_path:
        log.debug("Comment %r has an empty path field, decoded as bare path", text)
        return ArchiveMetadata(source_path=text), CommentFormat.FALLBACK
    return metadata, fmt


def decode(text: Optional[str]) -> ArchiveMetadata:
    return decode_with_format(text)[0]


__all__ = ["ArchiveMetadata", "CommentFormat", "DELIMITER", "decode", "decode_with_format", "encode"]
