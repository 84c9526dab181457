"""Byte-budgeted thumbnail cache."""

from collections import OrderedDict
from collections.abc import Hashable

import structlog

from remote_gallery.models.files import Thumbnail

logger = structlog.get_logger(__name__)


class ThumbnailCache:
    """
    Thumbnail cache bounded by total encoded bytes.

    Eviction is least-recently-produced first: lookups do not refresh an
    entry's position, only a new ``put`` does. Single event loop use only;
    every method is synchronous and therefore atomic between awaits.
    """

    def __init__(self, max_bytes: int) -> None:
        """
        Args:
            max_bytes: Total encoded-byte budget.
        """
        if max_bytes <= 0:
            msg = "max_bytes must be positive"
            raise ValueError(msg)
        self._max_bytes = max_bytes
        self._total = 0
        self._entries: OrderedDict[Hashable, Thumbnail] = OrderedDict()

    @property
    def max_bytes(self) -> int:
        return self._max_bytes

    @property
    def total_bytes(self) -> int:
        return self._total

    def get(self, key: Hashable) -> Thumbnail | None:
        """
        Args:
            key: Cache key.

        Returns:
            Cached thumbnail or None.
        """
        return self._entries.get(key)

    def put(self, key: Hashable, thumbnail: Thumbnail) -> bool:
        """
        Store a thumbnail, evicting the oldest entries until it fits.

        Args:
            key: Cache key.
            thumbnail: Thumbnail to store.

        Returns:
            False if the thumbnail alone exceeds the budget and was not stored.
        """
        if thumbnail.size > self._max_bytes:
            logger.debug("Thumbnail exceeds cache budget", key=key, size=thumbnail.size)
            return False

        self.remove(key)
        while self._entries and self._total + thumbnail.size > self._max_bytes:
            evicted_key, evicted = self._entries.popitem(last=False)
            self._total -= evicted.size
            logger.debug("Thumbnail evicted", key=evicted_key, size=evicted.size)

        self._entries[key] = thumbnail
        self._total += thumbnail.size
        return True

    def remove(self, key: Hashable) -> Thumbnail | None:
        """
        Args:
            key: Cache key.

        Returns:
            Removed thumbnail or None.
        """
        removed = self._entries.pop(key, None)
        if removed is not None:
            self._total -= removed.size
        return removed

    def clear(self) -> None:
        """Drop every entry."""
        self._entries.clear()
        self._total = 0

    def __len__(self) -> int:
        return len(self._entries)

    def __contains__(self, key: Hashable) -> bool:
        return key in self._entries

    def keys(self) -> list[Hashable]:
        """Keys in production order, oldest first."""
        return list(self._entries.keys())
