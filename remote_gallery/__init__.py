"""
Remote Gallery Python engine.

Browse files on a remote host over SSH/SFTP, or the working tree of a Git
repository with LFS content, as a photo/file gallery.

Example:
    ```python
    from remote_gallery import GalleryClient

    async with GalleryClient() as client:
        await client.connect_remote_filesystem("203.0.113.7", "ubuntu", key_text)

        # List media in the home directory
        for entry in await client.list(media_only=True):
            print(entry.name, entry.media_kind)

        # Preview an image
        thumb = await client.thumbnail("Pictures/cat.jpg", max_dimension=200)
    ```
"""

from remote_gallery.client import GalleryClient
from remote_gallery.config import GalleryConfig
from remote_gallery.crypto.credentials import Credential
from remote_gallery.exceptions import (
    AuthenticationError,
    CloneError,
    CredentialError,
    DecodeError,
    FileTooLargeError,
    HandshakeError,
    InvalidKeyError,
    InvalidPathError,
    MaterializationError,
    NoActiveSessionError,
    NotAFileError,
    NotThumbnailableError,
    PathError,
    PathNotFoundError,
    RemoteGalleryError,
    RemoteListError,
    ResourceError,
    SessionError,
    TransferError,
    TransportError,
    UnreachableError,
)
from remote_gallery.models.connection import (
    BackendKind,
    RemoteFilesystemDescriptor,
    RepositoryMirrorDescriptor,
    SessionHandle,
    descriptor_from_dict,
)
from remote_gallery.models.files import FileEntry, MediaKind, Thumbnail

__version__ = "0.1.0"

__all__ = [
    # Main client
    "GalleryClient",
    "GalleryConfig",
    "Credential",
    # Models
    "BackendKind",
    "FileEntry",
    "MediaKind",
    "RemoteFilesystemDescriptor",
    "RepositoryMirrorDescriptor",
    "SessionHandle",
    "Thumbnail",
    "descriptor_from_dict",
    # Exceptions
    "RemoteGalleryError",
    "CredentialError",
    "InvalidKeyError",
    "AuthenticationError",
    "TransportError",
    "UnreachableError",
    "HandshakeError",
    "CloneError",
    "RemoteListError",
    "TransferError",
    "MaterializationError",
    "SessionError",
    "NoActiveSessionError",
    "PathError",
    "InvalidPathError",
    "PathNotFoundError",
    "NotAFileError",
    "ResourceError",
    "FileTooLargeError",
    "NotThumbnailableError",
    "DecodeError",
]
