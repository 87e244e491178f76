"""Request coalescer — concurrent callers with the same key share one execution."""

from __future__ import annotations

import asyncio
import threading
from typing import Any, Awaitable, Callable, TypeVar

import structlog

from llm_resilience.shared.observability.metrics import COALESCED_REQUESTS

logger = structlog.get_logger(__name__)

T = TypeVar("T")


class RequestCoalescer:
    """Deduplicates in-flight async work by key.

    The first caller for a key starts ``factory()`` as a task; later callers
    await the same task without invoking ``factory``.  The slot is released
    by a done-callback registered before any waiter, so it is already gone
    when callers resume, whatever the outcome.  Waiters are shielded: one
    cancelled caller does not cancel the shared execution.
    """

    def __init__(self) -> None:
        self._in_flight: dict[str, asyncio.Future[Any]] = {}
        self._lock = threading.Lock()

    @property
    def in_flight(self) -> int:
        with self._lock:
            return len(self._in_flight)

    async def coalesce(self, key: str | None, factory: Callable[[], Awaitable[T]]) -> T:
        if key is None:
            return await factory()

        with self._lock:
            task = self._in_flight.get(key)
            joined = task is not None
            if task is None:
                task = asyncio.ensure_future(factory())
                self._in_flight[key] = task
                task.add_done_callback(lambda t, k=key: self._release(k, t))

        if joined:
            COALESCED_REQUESTS.inc()
            logger.debug("request_coalesced", key=key)
        return await asyncio.shield(task)

    def clear(self) -> None:
        """Forget all slots; running tasks keep serving their current waiters."""
        with self._lock:
            self._in_flight.clear()

    def _release(self, key: str, task: asyncio.Future[Any]) -> None:
        with self._lock:
            if self._in_flight.get(key) is task:
                del self._in_flight[key]
        if not task.cancelled():
            # Mark retrieved; waiters re-raise it themselves
            task.exception()
