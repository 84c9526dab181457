"""
Storage backend protocol definition.

The two backends share no implementation; they are separate variants tagged
by ``BackendKind`` and satisfy this structural interface so the session
manager can drive either one without knowing its transport.
"""

from typing import Protocol, runtime_checkable

from remote_gallery.models.connection import BackendKind
from remote_gallery.models.files import FileEntry


@runtime_checkable
class StorageBackend(Protocol):
    """
    Interface every storage backend implements.

    Backends are not safe for concurrent use; the session manager serializes
    all calls. Paths passed in are already canonical (see ``PathResolver``).
    """

    @property
    def kind(self) -> BackendKind:
        """Variant tag."""
        ...

    @property
    def root_path(self) -> str:
        """Canonical absolute root the session browses from."""
        ...

    @property
    def is_alive(self) -> bool:
        """Whether the underlying transport is still usable."""
        ...

    async def list(self, path: str) -> list[FileEntry]:
        """
        List a directory.

        Args:
            path: Canonical directory path.

        Returns:
            Entries sorted directories first, then by name.

        Raises:
            RemoteListError: If the directory cannot be read.
        """
        ...

    async def read(self, path: str, max_size: int) -> bytes:
        """
        Read a whole file into memory.

        Args:
            path: Canonical file path.
            max_size: Refuse files larger than this many bytes.

        Returns:
            File content.

        Raises:
            PathNotFoundError: If the file does not exist.
            NotAFileError: If the path is a directory.
            FileTooLargeError: If the file exceeds ``max_size``.
            TransferError: If the transfer fails.
        """
        ...

    async def close(self) -> None:
        """Release the transport. Idempotent; never raises."""
        ...
