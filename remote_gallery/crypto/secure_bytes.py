"""Zeroable in-memory buffer for key material and passphrases."""

import ctypes
import ctypes.util
import platform
from typing import Self

import structlog

logger = structlog.get_logger(__name__)

_libc: ctypes.CDLL | None = None

if platform.system() in ("Linux", "Darwin"):
    try:
        _libc = ctypes.CDLL(ctypes.util.find_library("c") or "libc.so.6", use_errno=True)
    except OSError:
        _libc = None


def _address_of(buffer: bytearray) -> int:
    return ctypes.addressof((ctypes.c_char * len(buffer)).from_buffer(buffer))


def wipe(buffer: bytearray) -> None:
    """Overwrite a bytearray with zeros in place."""
    if not buffer:
        return
    try:
        ctypes.memset(_address_of(buffer), 0, len(buffer))
    except (TypeError, ValueError, BufferError) as e:
        logger.debug("memset unavailable, zeroing bytewise", error=str(e))
        buffer[:] = bytes(len(buffer))


def _set_pinned(buffer: bytearray, pinned: bool) -> bool:
    # mlock keeps private key pages out of swap; munlock undoes it on clear.
    if _libc is None or not buffer:
        return False
    call = _libc.mlock if pinned else _libc.munlock
    try:
        return call(ctypes.c_void_p(_address_of(buffer)), ctypes.c_size_t(len(buffer))) == 0
    except (TypeError, ValueError, BufferError, AttributeError):
        return False


class SecureBytes:
    """
    Owned copy of secret bytes, zeroed on ``clear()`` and on collection.

    With ``lock=True`` the pages are pinned in RAM where the platform allows.
    """

    __slots__ = ("_buffer", "_cleared", "_pinned")

    def __init__(self, data: bytes | bytearray, *, lock: bool = False) -> None:
        self._buffer = bytearray(data)
        self._cleared = False
        self._pinned = lock and _set_pinned(self._buffer, True)

    @classmethod
    def from_string(cls, s: str, *, lock: bool = False) -> Self:
        """Encode as UTF-8, wiping the intermediate buffer."""
        encoded = bytearray(s, "utf-8")
        try:
            return cls(encoded, lock=lock)
        finally:
            wipe(encoded)

    def __del__(self) -> None:
        self.clear()

    def clear(self) -> None:
        """Zero the buffer and release the page lock. Idempotent."""
        if self._cleared:
            return
        wipe(self._buffer)
        if self._pinned:
            _set_pinned(self._buffer, False)
            self._pinned = False
        self._cleared = True

    @property
    def is_cleared(self) -> bool:
        return self._cleared

    def __bytes__(self) -> bytes:
        # The returned copy is outside this container and is not zeroed.
        if self._cleared:
            msg = "SecureBytes has been cleared"
            raise RuntimeError(msg)
        return bytes(self._buffer)

    def __bool__(self) -> bool:
        return not self._cleared and bool(self._buffer)

    def __repr__(self) -> str:
        if self._cleared:
            return "SecureBytes(<cleared>)"
        return f"SecureBytes(<{len(self._buffer)} bytes>)"
