"""
Request coalescing: at most one in-flight computation per key.
"""

import asyncio
from collections.abc import Awaitable, Callable, Hashable
from dataclasses import dataclass, field
from typing import Generic, TypeVar

import structlog

logger = structlog.get_logger(__name__)

T = TypeVar("T")


@dataclass
class _Flight(Generic[T]):
    task: asyncio.Task[T]
    waiters: int = 0
    abandoned: bool = field(default=False)


class SingleFlight(Generic[T]):
    """
    Coalesces concurrent calls for the same key into one task.

    The first caller starts the computation; later callers await the same
    task and receive the same result or exception. A caller that is
    cancelled only stops waiting; the computation itself is cancelled once
    its last waiter is gone, so an abandoned transfer does not run to
    completion into a discarded result.

    Example:
        ```python
        flights: SingleFlight[bytes] = SingleFlight()
        data = await flights.do("/photos/a.jpg", lambda: backend.read("/photos/a.jpg"))
        ```
    """

    def __init__(self) -> None:
        self._flights: dict[Hashable, _Flight[T]] = {}

    async def do(self, key: Hashable, fn: Callable[[], Awaitable[T]]) -> T:
        """
        Run ``fn`` for ``key`` unless a run is already in flight.

        Args:
            key: Coalescing key.
            fn: Zero-argument coroutine factory.

        Returns:
            The result of the (possibly shared) computation.
        """
        flight = self._flights.get(key)
        if flight is None or flight.abandoned:
            flight = _Flight(task=asyncio.ensure_future(fn()))
            self._flights[key] = flight
            flight.task.add_done_callback(lambda _, f=flight: self._forget(key, f))
        else:
            logger.debug("Joining in-flight request", key=key, waiters=flight.waiters)

        flight.waiters += 1
        try:
            return await asyncio.shield(flight.task)
        finally:
            flight.waiters -= 1
            if flight.waiters == 0 and not flight.task.done():
                flight.abandoned = True
                flight.task.cancel()

    def cancel_all(self, *, keep: asyncio.Future | None = None) -> None:
        """
        Cancel every in-flight computation.

        Args:
            keep: Task to forget without cancelling. A computation that tears
                down its own owner passes itself here and finishes normally.
        """
        for flight in list(self._flights.values()):
            flight.abandoned = True
            if flight.task is not keep:
                flight.task.cancel()
        self._flights.clear()

    def __len__(self) -> int:
        return len(self._flights)

    def _forget(self, key: Hashable, flight: _Flight[T]) -> None:
        if self._flights.get(key) is flight:
            del self._flights[key]
        # Retrieve the exception so an unobserved failure is not reported
        # as "Task exception was never retrieved".
        if not flight.task.cancelled():
            flight.task.exception()
