"""
File listing and thumbnail domain models.
"""

import base64
from collections.abc import Iterable
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import StrEnum


class MediaKind(StrEnum):
    """Coarse media category used by the gallery UI."""

    IMAGE = "image"
    VIDEO = "video"
    OTHER = "other"


def media_kind_of(mime_type: str | None) -> MediaKind:
    """Map a full MIME string to its MediaKind."""
    if mime_type is None:
        return MediaKind.OTHER
    if mime_type.startswith("image/"):
        return MediaKind.IMAGE
    if mime_type.startswith("video/"):
        return MediaKind.VIDEO
    return MediaKind.OTHER


@dataclass(frozen=True, kw_only=True)
class FileEntry:
    """
    A single directory entry as presented to the caller.

    Entries are produced fresh on every listing and carry no identity
    beyond their canonical path.
    """

    name: str
    path: str  # Canonical absolute path within the session
    is_dir: bool
    size: int | None = 0  # None when unknown (dangling symlink)
    modified_at: datetime | None = None
    mime_type: str | None = None

    @property
    def is_file(self) -> bool:
        return not self.is_dir

    @property
    def media_kind(self) -> MediaKind:
        if self.is_dir:
            return MediaKind.OTHER
        return media_kind_of(self.mime_type)

    @property
    def is_media(self) -> bool:
        """True for image and video files."""
        return self.media_kind is not MediaKind.OTHER

    def to_dict(self) -> dict[str, object]:
        """Convert to dictionary representation."""
        return {
            "name": self.name,
            "path": self.path,
            "size": self.size,
            "is_dir": self.is_dir,
            "modified": int(self.modified_at.timestamp()) if self.modified_at else None,
            "mime_type": self.mime_type,
            "media_kind": str(self.media_kind),
        }


def sort_key(entry: FileEntry) -> tuple[bool, str, bytes]:
    """Directories first, then case-insensitive name, then raw bytes."""
    return (not entry.is_dir, entry.name.casefold(), entry.name.encode("utf-8", "surrogateescape"))


def sort_entries(entries: Iterable[FileEntry]) -> list[FileEntry]:
    return sorted(entries, key=sort_key)


def filter_media(entries: Iterable[FileEntry]) -> list[FileEntry]:
    """Keep directories plus image and video files."""
    return [entry for entry in entries if entry.is_dir or entry.is_media]


def timestamp_to_datetime(value: float | int | None) -> datetime | None:
    if value is None:
        return None
    return datetime.fromtimestamp(value, tz=timezone.utc)


@dataclass(frozen=True, kw_only=True)
class Thumbnail:
    """An encoded, size-bounded preview image."""

    data: bytes
    mime_type: str
    width: int
    height: int
    generated_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))

    @property
    def size(self) -> int:
        return len(self.data)

    @property
    def data_uri(self) -> str:
        """Inline ``data:`` URI for direct use in an image element."""
        return f"data:{self.mime_type};base64,{base64.b64encode(self.data).decode('ascii')}"
