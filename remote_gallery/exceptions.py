"""
Remote gallery exception hierarchy.

All exceptions inherit from RemoteGalleryError for easy catching. Every error
carries a stable ``kind`` string and a human-readable ``detail``; presentation
is left to the caller.
"""

from typing import Any, ClassVar


class RemoteGalleryError(Exception):
    """Base exception for all remote_gallery errors."""

    kind: ClassVar[str] = "Error"

    def __init__(self, message: str, **context: Any) -> None:
        super().__init__(message)
        self.message = message
        self.context = context

    @property
    def detail(self) -> str:
        """Human-readable description of the failure."""
        return self.message

    def __str__(self) -> str:
        if self.context:
            ctx = ", ".join(f"{k}={v!r}" for k, v in self.context.items())
            return f"{self.message} ({ctx})"
        return self.message


# Credential errors: never retried.


class CredentialError(RemoteGalleryError):
    """Key material could not be used."""


class InvalidKeyError(CredentialError):
    """Private key is malformed, unsupported, or the passphrase is wrong."""

    kind = "InvalidKey"


class AuthenticationError(CredentialError):
    """Remote rejected the supplied key."""

    kind = "AuthFailed"


# Transport errors: surfaced immediately, session left consistent.


class TransportError(RemoteGalleryError):
    """Network or protocol level failure."""


class UnreachableError(TransportError):
    """Host could not be reached (DNS, refused, timeout)."""

    kind = "Unreachable"


class HandshakeError(TransportError):
    """Transport or file-transfer channel negotiation failed."""

    kind = "HandshakeFailed"


class CloneError(TransportError):
    """Repository mirror could not be cloned or synchronized."""

    kind = "CloneFailed"

    def __init__(self, message: str, *, stderr: str | None = None) -> None:
        super().__init__(message, stderr=stderr)
        self.stderr = stderr


class RemoteListError(TransportError):
    """Directory listing failed on the backend."""

    kind = "RemoteListFailed"

    def __init__(self, message: str, *, path: str) -> None:
        super().__init__(message, path=path)
        self.path = path


class TransferError(TransportError):
    """File content transfer failed mid-way."""

    kind = "TransferFailed"

    def __init__(self, message: str, *, path: str) -> None:
        super().__init__(message, path=path)
        self.path = path


class MaterializationError(TransferError):
    """Large-object content could not be fetched from the LFS server."""

    kind = "MaterializationFailed"

    def __init__(self, message: str, *, path: str, oid: str | None = None) -> None:
        super().__init__(message, path=path)
        self.context["oid"] = oid
        self.oid = oid


# Session errors.


class SessionError(RemoteGalleryError):
    """Session state does not allow the operation."""


class NoActiveSessionError(SessionError):
    """No backend is connected."""

    kind = "NoActiveSession"

    def __init__(self, message: str = "Not connected to any storage") -> None:
        super().__init__(message)


# Path errors: always local, never touch the network.


class PathError(RemoteGalleryError):
    """Path-related error."""

    def __init__(self, message: str, *, path: str) -> None:
        super().__init__(message, path=path)
        self.path = path


class InvalidPathError(PathError):
    """Path is malformed or escapes the session root."""

    kind = "InvalidPath"


class PathNotFoundError(PathError):
    """Path does not exist on the backend."""

    kind = "NotFound"


class NotAFileError(PathError):
    """Expected a file but got a directory."""

    kind = "NotAFile"


# Resource errors: scoped to one operation, session stays valid.


class ResourceError(RemoteGalleryError):
    """Operation exceeded a resource bound or could not process content."""


class FileTooLargeError(ResourceError):
    """File exceeds the configured transfer limit."""

    kind = "FileTooLarge"

    def __init__(self, message: str, *, path: str, size: int, limit: int) -> None:
        super().__init__(message, path=path, size=size, limit=limit)
        self.path = path
        self.size = size
        self.limit = limit


class NotThumbnailableError(ResourceError):
    """Path is not a raster image."""

    kind = "NotThumbnailable"

    def __init__(self, message: str, *, path: str, mime_type: str | None = None) -> None:
        super().__init__(message, path=path, mime_type=mime_type)
        self.path = path
        self.mime_type = mime_type


class DecodeError(ResourceError):
    """Image bytes could not be decoded or re-encoded."""

    kind = "DecodeFailed"

    def __init__(self, message: str, *, path: str) -> None:
        super().__init__(message, path=path)
        self.path = path
