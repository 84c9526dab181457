"""
Remote gallery client facade.

This is the main entry point for users of the library. It owns the single
live session and routes browsing calls to whichever backend is connected.
"""

import asyncio
import dataclasses
from collections.abc import Awaitable, Callable
from pathlib import Path
from typing import Self, TypeVar

import httpx
import structlog

from remote_gallery.backends.mirror import RepositoryMirrorBackend
from remote_gallery.backends.protocol import StorageBackend
from remote_gallery.backends.sftp import RemoteFilesystemBackend
from remote_gallery.config import GalleryConfig
from remote_gallery.core.classifier import PROBE_SIZE, is_thumbnailable
from remote_gallery.core.thumbnails import render_thumbnail
from remote_gallery.crypto.credentials import Credential
from remote_gallery.exceptions import (
    NoActiveSessionError,
    NotThumbnailableError,
    TransportError,
)
from remote_gallery.models.connection import (
    DEFAULT_BRANCH,
    DEFAULT_GIT_USERNAME,
    DEFAULT_SSH_PORT,
    DEFAULT_STAGING_PATH,
    BackendKind,
    ConnectionDescriptor,
    RemoteFilesystemDescriptor,
    RepositoryMirrorDescriptor,
    SessionHandle,
)
from remote_gallery.models.files import FileEntry, Thumbnail, filter_media
from remote_gallery.session import Session

logger = structlog.get_logger(__name__)

T = TypeVar("T")

BackendFactory = Callable[
    [ConnectionDescriptor, Credential, GalleryConfig], Awaitable[StorageBackend]
]


class GalleryClient:
    """
    Async session manager for remote galleries.

    At most one session is live at a time; connecting again replaces it.
    Backend calls are serialized, and thumbnails are cached per session and
    coalesced so concurrent requests for one path cost a single read.

    Example:
        ```python
        async with GalleryClient() as client:
            await client.connect_remote_filesystem("203.0.113.7", "ubuntu", key_text)

            for entry in await client.list(media_only=True):
                print(entry.name, entry.media_kind)

            thumb = await client.thumbnail("Pictures/cat.jpg", max_dimension=200)
        ```

    Args:
        config: Engine configuration. Uses defaults if not provided.
        transport: Optional httpx transport for LFS requests (mock transport).
        backend_factory: Optional backend constructor replacing the built-in
            dispatch (used by tests).
    """

    def __init__(
        self,
        config: GalleryConfig | None = None,
        *,
        transport: httpx.AsyncBaseTransport | None = None,
        backend_factory: BackendFactory | None = None,
    ) -> None:
        self._config = config or GalleryConfig()
        self._transport = transport
        self._backend_factory = backend_factory

        self._session: Session | None = None
        self._lock = asyncio.Lock()
        self._settled = asyncio.Event()
        self._settled.set()
        self._pending_swaps = 0

    async def __aenter__(self) -> Self:
        return self

    async def __aexit__(
        self, exc_type: type | None, exc_val: BaseException | None, exc_tb: object
    ) -> None:
        await self.disconnect()

    @property
    def config(self) -> GalleryConfig:
        return self._config

    @property
    def is_connected(self) -> bool:
        return self._session is not None

    @property
    def backend_kind(self) -> BackendKind | None:
        """Kind of the connected backend, or None."""
        return self._session.kind if self._session is not None else None

    @property
    def root_path(self) -> str | None:
        return self._session.root_path if self._session is not None else None

    @property
    def session(self) -> SessionHandle | None:
        return self._session.handle if self._session is not None else None

    # Session lifecycle

    async def connect(
        self, descriptor: ConnectionDescriptor, credential: Credential
    ) -> SessionHandle:
        """
        Open a session, replacing any existing one.

        The previous session is closed first. On failure nothing is left
        connected.

        Args:
            descriptor: Which backend to connect and where.
            credential: Parsed private key; owned by the session on success.

        Returns:
            Handle with the backend kind and resolved root.

        Raises:
            AuthenticationError: If the remote rejects the key.
            UnreachableError: If the remote cannot be reached.
            HandshakeError: If transport negotiation fails.
            CloneError: If the repository mirror cannot be prepared.
        """
        async with self._swapping():
            await self._teardown()
            log = logger.bind(kind=str(descriptor.kind), address=descriptor.address)
            log.info("Connecting")

            backend = await self._open_backend(descriptor, credential)
            try:
                session = Session.start(backend, descriptor, credential, self._config)
            except BaseException:
                await backend.close()
                raise

            self._session = session
            log.info("Session connected", root=session.root_path)
            return session.handle

    async def connect_remote_filesystem(
        self,
        host: str,
        username: str,
        key_material: str | bytes,
        *,
        port: int = DEFAULT_SSH_PORT,
        passphrase: str | None = None,
    ) -> SessionHandle:
        """
        Parse a key and connect to a host over SSH/SFTP.

        Raises:
            InvalidKeyError: If the key cannot be parsed.
            ValueError: If the address is malformed.
        """
        descriptor = RemoteFilesystemDescriptor(host=host, username=username, port=port)
        return await self._connect_with_key(descriptor, key_material, passphrase)

    async def connect_repository_mirror(
        self,
        repo_url: str,
        key_material: str | bytes,
        *,
        username: str = DEFAULT_GIT_USERNAME,
        branch: str = DEFAULT_BRANCH,
        staging_path: Path | str = DEFAULT_STAGING_PATH,
        lfs_endpoint: str | None = None,
        passphrase: str | None = None,
    ) -> SessionHandle:
        """
        Parse a key and mirror a Git repository.

        Raises:
            InvalidKeyError: If the key cannot be parsed.
            ValueError: If the URL or branch is malformed.
        """
        descriptor = RepositoryMirrorDescriptor(
            repo_url=repo_url,
            username=username,
            branch=branch,
            staging_path=Path(staging_path),
            lfs_endpoint=lfs_endpoint,
        )
        return await self._connect_with_key(descriptor, key_material, passphrase)

    async def disconnect(self) -> None:
        """Close the session if any. Idempotent; never raises."""
        async with self._swapping():
            await self._teardown()

    async def close(self) -> None:
        """Alias of ``disconnect``."""
        await self.disconnect()

    # Browsing

    async def list(self, path: str | None = None, *, media_only: bool = False) -> list[FileEntry]:
        """
        List a directory.

        Args:
            path: Directory under the session root; the root when omitted.
            media_only: Keep only directories, images and videos.

        Returns:
            Entries sorted directories first, then by name.

        Raises:
            NoActiveSessionError: If not connected.
            InvalidPathError: If the path escapes the root.
            RemoteListError: If the backend cannot list the directory.
        """
        session = self._require_session()
        canonical = session.resolver.resolve(path)
        async with self._lock:
            self._recheck(session)
            entries = await self._call(session, lambda: session.backend.list(canonical))

        entries = [self._refine(session, entry) for entry in entries]
        return filter_media(entries) if media_only else entries

    async def read(self, path: str) -> bytes:
        """
        Read a whole file.

        Raises:
            NoActiveSessionError: If not connected.
            InvalidPathError: If the path escapes the root.
            PathNotFoundError: If the file does not exist.
            NotAFileError: If the path is a directory.
            FileTooLargeError: If the file exceeds ``max_transfer_size``.
            TransferError: If the transfer fails.
            MaterializationError: If LFS content cannot be fetched.
        """
        session = self._require_session()
        canonical = session.resolver.resolve(path)
        return await self._read(session, canonical)

    async def thumbnail(self, path: str, max_dimension: int | None = None) -> Thumbnail:
        """
        Get a size-bounded preview of an image.

        Served from the session cache when possible; concurrent requests for
        the same path and size share one read and one decode.

        Args:
            path: Image path under the session root.
            max_dimension: Long-edge bound; defaults to ``thumbnail_max_dimension``.

        Raises:
            NoActiveSessionError: If not connected.
            InvalidPathError: If the path escapes the root.
            NotThumbnailableError: If the path is not a raster image.
            DecodeError: If the image cannot be decoded.
        """
        dimension = max_dimension if max_dimension is not None else self._config.thumbnail_max_dimension
        if dimension <= 0:
            msg = "max_dimension must be positive"
            raise ValueError(msg)

        await self._settled.wait()
        session = self._require_session()
        canonical = session.resolver.resolve(path)
        mime_type = session.classifier.classify(canonical)
        if not is_thumbnailable(mime_type):
            msg = f"Not an image: {canonical}"
            raise NotThumbnailableError(msg, path=canonical, mime_type=mime_type)

        key = (canonical, dimension)
        if (cached := session.thumbnails.get(key)) is not None:
            return cached
        return await session.flights.do(
            key, lambda: self._produce_thumbnail(session, canonical, dimension)
        )

    # Internals

    async def _connect_with_key(
        self,
        descriptor: ConnectionDescriptor,
        key_material: str | bytes,
        passphrase: str | None,
    ) -> SessionHandle:
        credential = Credential.parse(key_material, passphrase)
        try:
            return await self.connect(descriptor, credential)
        except BaseException:
            credential.clear()
            raise

    async def _open_backend(
        self, descriptor: ConnectionDescriptor, credential: Credential
    ) -> StorageBackend:
        if self._backend_factory is not None:
            return await self._backend_factory(descriptor, credential, self._config)

        match descriptor.kind:
            case BackendKind.REMOTE_FILESYSTEM:
                return await RemoteFilesystemBackend.open(descriptor, credential, self._config)
            case BackendKind.REPOSITORY_MIRROR:
                return await RepositoryMirrorBackend.open(
                    descriptor, credential, self._config, transport=self._transport
                )
            case _:
                msg = f"Unsupported backend kind: {descriptor.kind}"
                raise ValueError(msg)

    def _swapping(self) -> "_SessionSwap":
        return _SessionSwap(self)

    async def _teardown(self) -> None:
        session, self._session = self._session, None
        if session is None:
            return
        # The shielded close runs in its own task; capture the caller first.
        await asyncio.shield(session.close(keep=asyncio.current_task()))
        logger.info("Session closed", kind=str(session.kind), root=session.root_path)

    def _require_session(self) -> Session:
        if self._session is None:
            raise NoActiveSessionError()
        return self._session

    def _recheck(self, session: Session) -> None:
        if self._session is not session:
            raise NoActiveSessionError()

    async def _call(self, session: Session, operation: Callable[[], Awaitable[T]]) -> T:
        try:
            return await operation()
        except TransportError as e:
            if self._session is session and not session.backend.is_alive:
                logger.warning("Transport lost, tearing down session", kind=e.kind)
                await self._teardown()
            raise

    async def _read(self, session: Session, canonical: str) -> bytes:
        async with self._lock:
            self._recheck(session)
            data = await self._call(
                session,
                lambda: session.backend.read(canonical, self._config.max_transfer_size),
            )
        session.classifier.record_probe(canonical, data[:PROBE_SIZE])
        return data

    async def _produce_thumbnail(
        self, session: Session, canonical: str, dimension: int
    ) -> Thumbnail:
        data = await self._read(session, canonical)

        mime_type = session.classifier.classify(canonical, data[:PROBE_SIZE])
        if not is_thumbnailable(mime_type):
            msg = f"Content is not an image: {canonical}"
            raise NotThumbnailableError(msg, path=canonical, mime_type=mime_type)

        thumbnail = await asyncio.to_thread(
            render_thumbnail,
            data,
            dimension,
            path=canonical,
            max_pixels=self._config.max_image_pixels,
            jpeg_quality=self._config.thumbnail_jpeg_quality,
        )
        if self._session is session:
            session.thumbnails.put((canonical, dimension), thumbnail)
        return thumbnail

    @staticmethod
    def _refine(session: Session, entry: FileEntry) -> FileEntry:
        if entry.is_dir:
            return entry
        mime_type = session.classifier.classify(entry.path)
        if mime_type == entry.mime_type:
            return entry
        return dataclasses.replace(entry, mime_type=mime_type)


class _SessionSwap:
    """Holds the client lock and marks the session unsettled while it is replaced."""

    def __init__(self, client: GalleryClient) -> None:
        self._client = client

    async def __aenter__(self) -> None:
        client = self._client
        client._pending_swaps += 1
        client._settled.clear()
        try:
            await client._lock.acquire()
        except BaseException:
            self._settle()
            raise

    async def __aexit__(self, *args: object) -> None:
        self._client._lock.release()
        self._settle()

    def _settle(self) -> None:
        client = self._client
        client._pending_swaps -= 1
        if client._pending_swaps == 0:
            client._settled.set()
