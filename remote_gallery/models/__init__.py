"""
Domain models for the remote gallery engine.

These are immutable (frozen) dataclasses representing the core domain concepts.
"""

from remote_gallery.models.connection import (
    BackendKind,
    ConnectionDescriptor,
    RemoteFilesystemDescriptor,
    RepositoryMirrorDescriptor,
    RepositoryUrl,
    SessionHandle,
    descriptor_from_dict,
)
from remote_gallery.models.files import (
    FileEntry,
    MediaKind,
    Thumbnail,
    filter_media,
    media_kind_of,
    sort_entries,
)
from remote_gallery.models.lfs import LfsPointer

__all__ = [
    # Connection
    "BackendKind",
    "ConnectionDescriptor",
    "RemoteFilesystemDescriptor",
    "RepositoryMirrorDescriptor",
    "RepositoryUrl",
    "SessionHandle",
    "descriptor_from_dict",
    # Files
    "FileEntry",
    "MediaKind",
    "Thumbnail",
    "filter_media",
    "media_kind_of",
    "sort_entries",
    # LFS
    "LfsPointer",
]
