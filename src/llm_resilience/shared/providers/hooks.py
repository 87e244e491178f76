"""Fire-and-forget notification hooks for UI / telemetry collaborators."""

from __future__ import annotations

import asyncio
import inspect
from dataclasses import dataclass, field
from typing import Any, Callable

import structlog

logger = structlog.get_logger(__name__)


@dataclass
class ResilienceHooks:
    """Optional observers of the resilience layer.

    Attributes:
        on_retry_attempt:   ``(attempt, error)`` before each backoff sleep.
        on_provider_switch: ``(from_candidate, to_candidate, error)`` when the
                            gateway moves to a fallback candidate.
        on_service_down:    ``(name)`` when a provider or service becomes
                            unavailable.
        on_service_up:      ``(name)`` when it becomes available again.

    Hooks may be plain callables or coroutine functions.  A failing hook is
    logged and otherwise ignored.
    """

    on_retry_attempt: Callable[..., Any] | None = None
    on_provider_switch: Callable[..., Any] | None = None
    on_service_down: Callable[..., Any] | None = None
    on_service_up: Callable[..., Any] | None = None

    _pending: set[asyncio.Future[Any]] = field(
        default_factory=set, init=False, repr=False, compare=False
    )

    def emit(self, event: str, *args: Any) -> None:
        hook = getattr(self, event, None)
        if hook is None:
            return
        try:
            result = hook(*args)
        except Exception:
            logger.exception("resilience_hook_failed", hook=event)
            return

        if not inspect.isawaitable(result):
            return
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            if inspect.iscoroutine(result):
                result.close()
            logger.warning("resilience_hook_not_scheduled", hook=event)
            return
        task = asyncio.ensure_future(result, loop=loop)
        self._pending.add(task)
        task.add_done_callback(lambda t: self._settle(event, t))

    def _settle(self, event: str, task: asyncio.Future[Any]) -> None:
        self._pending.discard(task)
        if task.cancelled():
            return
        exc = task.exception()
        if exc is not None:
            logger.error("resilience_hook_failed", hook=event, error=str(exc))
