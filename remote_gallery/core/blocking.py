"""
Running blocking transport calls off the event loop with cooperative abort.
"""

import asyncio
import threading
from collections.abc import Callable
from typing import ParamSpec, TypeVar

import structlog

logger = structlog.get_logger(__name__)

P = ParamSpec("P")
T = TypeVar("T")


class Aborted(Exception):
    """Raised inside a worker that noticed its abort flag."""


class AbortFlag:
    """Thread-safe flag a blocking worker polls between chunks."""

    def __init__(self) -> None:
        self._event = threading.Event()

    def set(self) -> None:
        self._event.set()

    @property
    def is_set(self) -> bool:
        return self._event.is_set()

    def check(self) -> None:
        """Raise Aborted if the caller has gone away."""
        if self._event.is_set():
            raise Aborted


async def run_abortable(fn: Callable[..., T], *args: object) -> T:
    """
    Run ``fn(*args, abort=flag)`` in a worker thread.

    If the awaiting task is cancelled, the flag is set and the worker is
    awaited until it stops, so a shared transport is never left mid-request
    while another operation starts on it. The cancellation then propagates.

    Args:
        fn: Blocking callable accepting an ``abort`` keyword.
        *args: Positional arguments for ``fn``.

    Returns:
        Whatever ``fn`` returns.
    """
    flag = AbortFlag()
    worker = asyncio.ensure_future(asyncio.to_thread(fn, *args, abort=flag))
    try:
        return await asyncio.shield(worker)
    except asyncio.CancelledError:
        flag.set()
        logger.debug("Aborting blocking call", fn=getattr(fn, "__name__", repr(fn)))
        await asyncio.wait([worker])
        if not worker.cancelled() and worker.exception() is not None:
            logger.debug("Aborted call finished with error", error=str(worker.exception()))
        raise
