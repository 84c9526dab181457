"""
The live session: one backend plus everything scoped to it.
"""

import asyncio
from dataclasses import dataclass, field
from typing import Self

import structlog

from remote_gallery.backends.protocol import StorageBackend
from remote_gallery.config import GalleryConfig
from remote_gallery.core.cache import ThumbnailCache
from remote_gallery.core.classifier import ContentClassifier
from remote_gallery.core.paths import PathResolver
from remote_gallery.core.single_flight import SingleFlight
from remote_gallery.crypto.credentials import Credential
from remote_gallery.models.connection import BackendKind, ConnectionDescriptor, SessionHandle
from remote_gallery.models.files import Thumbnail

logger = structlog.get_logger(__name__)


@dataclass(eq=False, kw_only=True)
class Session:
    """
    Owns the backend, credential, resolver, classifier and thumbnail cache.

    Nothing here outlives ``close()``: cached thumbnails, signature probes
    and key material all go with the session.
    """

    backend: StorageBackend
    descriptor: ConnectionDescriptor
    credential: Credential
    resolver: PathResolver
    classifier: ContentClassifier = field(default_factory=ContentClassifier)
    thumbnails: ThumbnailCache
    flights: SingleFlight[Thumbnail] = field(default_factory=SingleFlight)
    closed: bool = False

    @classmethod
    def start(
        cls,
        backend: StorageBackend,
        descriptor: ConnectionDescriptor,
        credential: Credential,
        config: GalleryConfig,
    ) -> Self:
        """Wrap a connected backend; validates its root."""
        return cls(
            backend=backend,
            descriptor=descriptor,
            credential=credential,
            resolver=PathResolver(backend.root_path),
            thumbnails=ThumbnailCache(config.thumbnail_cache_bytes),
        )

    @property
    def kind(self) -> BackendKind:
        return self.backend.kind

    @property
    def root_path(self) -> str:
        return self.resolver.root

    @property
    def handle(self) -> SessionHandle:
        return SessionHandle(kind=self.kind, root_path=self.root_path, descriptor=self.descriptor)

    async def close(self, *, keep: asyncio.Future | None = None) -> None:
        """
        Release everything. Idempotent and never raises.

        ``keep`` is an in-flight thumbnail task that must not be cancelled,
        because it is the one closing the session.
        """
        if self.closed:
            return
        self.closed = True
        self.flights.cancel_all(keep=keep)
        try:
            await self.backend.close()
        except Exception as e:
            logger.warning("Backend close failed", kind=str(self.kind), error=str(e))
        self.thumbnails.clear()
        self.classifier.clear()
        self.credential.clear()
