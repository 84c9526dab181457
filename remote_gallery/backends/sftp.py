"""
Remote filesystem backend over SSH/SFTP (paramiko).

paramiko is blocking, so every transport call runs in a worker thread via
``run_abortable``. Reads are chunked and poll the abort flag between chunks,
which lets a cancelled caller release the session promptly without leaving
the SFTP channel in the middle of a request.
"""

import asyncio
import stat
from collections.abc import Callable
from typing import Self

import paramiko
import structlog

from remote_gallery.config import GalleryConfig
from remote_gallery.core.blocking import AbortFlag, run_abortable
from remote_gallery.core.classifier import type_from_name
from remote_gallery.core.paths import PathResolver
from remote_gallery.crypto.credentials import Credential
from remote_gallery.exceptions import (
    AuthenticationError,
    FileTooLargeError,
    HandshakeError,
    InvalidPathError,
    NotAFileError,
    PathNotFoundError,
    RemoteListError,
    TransferError,
    UnreachableError,
)
from remote_gallery.models.connection import BackendKind, RemoteFilesystemDescriptor
from remote_gallery.models.files import FileEntry, sort_entries, timestamp_to_datetime

logger = structlog.get_logger(__name__)

_CHANNEL_ERRORS = (OSError, EOFError, paramiko.SSHException)


def default_home(username: str) -> str:
    """Home directory guess used when the server does not report one."""
    return "/root" if username == "root" else f"/home/{username}"


class RemoteFilesystemBackend:
    """
    Browses a single host over SFTP.

    Example:
        ```python
        backend = await RemoteFilesystemBackend.open(descriptor, credential, GalleryConfig())
        entries = await backend.list(backend.root_path)
        await backend.close()
        ```

    Args:
        descriptor: Host, port and username.
        credential: Parsed private key.
        config: Engine configuration.
        client_factory: SSHClient factory, replaceable in tests.
    """

    def __init__(
        self,
        descriptor: RemoteFilesystemDescriptor,
        credential: Credential,
        config: GalleryConfig,
        *,
        client_factory: Callable[[], paramiko.SSHClient] = paramiko.SSHClient,
    ) -> None:
        self._descriptor = descriptor
        self._credential = credential
        self._config = config
        self._client_factory = client_factory

        self._client: paramiko.SSHClient | None = None
        self._sftp: paramiko.SFTPClient | None = None
        self._root: str | None = None

    @classmethod
    async def open(
        cls,
        descriptor: RemoteFilesystemDescriptor,
        credential: Credential,
        config: GalleryConfig,
        *,
        client_factory: Callable[[], paramiko.SSHClient] = paramiko.SSHClient,
    ) -> Self:
        """
        Connect, authenticate and open the SFTP channel.

        Raises:
            UnreachableError: If the host cannot be reached.
            AuthenticationError: If the key is rejected.
            HandshakeError: If SSH or SFTP negotiation fails.
        """
        backend = cls(descriptor, credential, config, client_factory=client_factory)
        try:
            await run_abortable(backend._connect_blocking)
        except BaseException:
            await backend.close()
            raise
        return backend

    @property
    def kind(self) -> BackendKind:
        return BackendKind.REMOTE_FILESYSTEM

    @property
    def root_path(self) -> str:
        if self._root is None:
            msg = "Backend is not connected"
            raise RuntimeError(msg)
        return self._root

    @property
    def is_alive(self) -> bool:
        if self._client is None or self._sftp is None:
            return False
        transport = self._client.get_transport()
        return transport is not None and transport.is_active()

    async def read(self, path: str, max_size: int) -> bytes:
        return await run_abortable(self._read_blocking, path, max_size)

    async def close(self) -> None:
        await asyncio.to_thread(self._close_blocking)

    def _connect_blocking(self, *, abort: AbortFlag) -> None:
        descriptor = self._descriptor
        client = self._client_factory()
        self._client = client
        if self._config.strict_host_keys:
            client.load_system_host_keys()
            client.set_missing_host_key_policy(paramiko.RejectPolicy())
        else:
            client.set_missing_host_key_policy(paramiko.AutoAddPolicy())

        logger.info("SSH connecting", address=descriptor.address, key=self._credential.fingerprint)
        try:
            client.connect(
                hostname=descriptor.host,
                port=descriptor.port,
                username=descriptor.username,
                pkey=self._credential.to_paramiko_key(),
                timeout=self._config.connect_timeout,
                banner_timeout=self._config.connect_timeout,
                auth_timeout=self._config.connect_timeout,
                look_for_keys=False,
                allow_agent=False,
            )
        except paramiko.AuthenticationException as e:
            msg = f"Authentication rejected for {descriptor.username}@{descriptor.host}"
            raise AuthenticationError(msg, fingerprint=self._credential.fingerprint) from e
        except paramiko.BadHostKeyException as e:
            msg = f"Host key mismatch for {descriptor.host}"
            raise HandshakeError(msg) from e
        except paramiko.SSHException as e:
            msg = f"SSH negotiation with {descriptor.host} failed: {e}"
            raise HandshakeError(msg) from e
        except OSError as e:
            msg = f"Cannot reach {descriptor.host}:{descriptor.port}: {e}"
            raise UnreachableError(msg) from e

        abort.check()
        transport = client.get_transport()
        if transport is not None and self._config.keepalive_interval:
            transport.set_keepalive(self._config.keepalive_interval)

        try:
            self._sftp = client.open_sftp()
        except _CHANNEL_ERRORS as e:
            msg = f"File transfer channel negotiation failed: {e}"
            raise HandshakeError(msg) from e

        abort.check()
        self._root = self._resolve_home()
        logger.info("SSH connected", address=descriptor.address, root=self._root)

    def _resolve_home(self) -> str:
        try:
            home = self._sftp.normalize(".")
        except _CHANNEL_ERRORS as e:
            logger.debug("Server did not report a home directory", error=str(e))
            home = None
        if not home or not home.startswith("/"):
            return default_home(self._descriptor.username)
        try:
            return PathResolver(home).root
        except InvalidPathError:
            return default_home(self._descriptor.username)

    def _require_sftp(self) -> paramiko.SFTPClient:
        if self._sftp is None:
            msg = "SFTP channel is closed"
            raise RuntimeError(msg)
        return self._sftp

    def _list_blocking(self, path: str, *, abort: AbortFlag) -> list[FileEntry]:
        sftp = self._require_sftp()
        try:
            attrs = sftp.listdir_attr(path)
        except FileNotFoundError as e:
            msg = f"Directory not found: {path}"
            raise RemoteListError(msg, path=path) from e
        except PermissionError as e:
            msg = f"Permission denied: {path}"
            raise RemoteListError(msg, path=path) from e
        except _CHANNEL_ERRORS as e:
            msg = f"Failed to list directory: {e}"
            raise RemoteListError(msg, path=path) from e

        entries = []
        for attr in attrs:
            abort.check()
            if (entry := self._to_entry(sftp, path, attr)) is not None:
                entries.append(entry)
        return sort_entries(entries)

    @staticmethod
    def _to_entry(
        sftp: paramiko.SFTPClient, parent: str, attr: paramiko.SFTPAttributes
    ) -> FileEntry | None:
        name = attr.filename
        try:
            entry_path = PathResolver.child(parent, name)
        except InvalidPathError:
            return None

        mode = attr.st_mode or 0
        size: int | None = attr.st_size
        mtime = attr.st_mtime
        if stat.S_ISLNK(mode):
            try:
                target = sftp.stat(entry_path)
            except _CHANNEL_ERRORS:
                logger.debug("Dangling symlink", path=entry_path)
                mode, size = 0, None
            else:
                mode, size, mtime = target.st_mode or 0, target.st_size, target.st_mtime

        is_dir = stat.S_ISDIR(mode)
        return FileEntry(
            name=name,
            path=entry_path,
            is_dir=is_dir,
            size=size,
            modified_at=timestamp_to_datetime(mtime),
            mime_type=None if is_dir else type_from_name(name),
        )

    # Defined after the helpers so their annotations still see the builtin list.
    async def list(self, path: str) -> list[FileEntry]:
        return await run_abortable(self._list_blocking, path)

    def _read_blocking(self, path: str, max_size: int, *, abort: AbortFlag) -> bytes:
        sftp = self._require_sftp()
        try:
            attrs = sftp.stat(path)
        except FileNotFoundError as e:
            msg = f"File not found: {path}"
            raise PathNotFoundError(msg, path=path) from e
        except _CHANNEL_ERRORS as e:
            msg = f"Failed to stat file: {e}"
            raise TransferError(msg, path=path) from e

        if stat.S_ISDIR(attrs.st_mode or 0):
            msg = f"Path is a directory: {path}"
            raise NotAFileError(msg, path=path)
        if attrs.st_size is not None and attrs.st_size > max_size:
            msg = f"File is {attrs.st_size} bytes, above the {max_size} byte limit"
            raise FileTooLargeError(msg, path=path, size=attrs.st_size, limit=max_size)

        buffer = bytearray()
        chunk_size = self._config.read_chunk_size
        try:
            with sftp.open(path, "rb") as remote:
                while chunk := remote.read(chunk_size):
                    abort.check()
                    buffer += chunk
                    if len(buffer) > max_size:
                        msg = f"File grew past the {max_size} byte limit while reading"
                        raise FileTooLargeError(
                            msg, path=path, size=len(buffer), limit=max_size
                        )
        except FileNotFoundError as e:
            msg = f"File not found: {path}"
            raise PathNotFoundError(msg, path=path) from e
        except _CHANNEL_ERRORS as e:
            msg = f"Transfer failed: {e}"
            raise TransferError(msg, path=path) from e

        logger.debug("File read", path=path, size=len(buffer))
        return bytes(buffer)

    def _close_blocking(self) -> None:
        sftp, client = self._sftp, self._client
        self._sftp, self._client = None, None
        if sftp is not None:
            try:
                sftp.close()
            except _CHANNEL_ERRORS as e:
                logger.debug("SFTP close failed", error=str(e))
        if client is not None:
            try:
                client.close()
            except _CHANNEL_ERRORS as e:
                logger.debug("SSH close failed", error=str(e))
            logger.info("SSH disconnected", address=self._descriptor.address)
