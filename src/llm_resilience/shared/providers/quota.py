"""Client-side rate limiter — fixed-window request counter per caller key.

The first request for a key (or the first after its window has reset)
opens a new window of ``window_seconds``; every further request in that
window increments the counter and is allowed while ``count <= max_requests``.
Expired windows are dropped by ``sweep()``, either on demand or from the
background sweeper started with ``start()``.
"""

from __future__ import annotations

import asyncio
import contextlib
import threading
import time
from typing import Callable

import structlog

from llm_resilience.domain.exceptions import RateLimitExceededError
from llm_resilience.shared.observability.metrics import RATE_LIMIT_DECISIONS
from llm_resilience.shared.providers.types import RateLimitDecision, RateWindow

logger = structlog.get_logger(__name__)


def rate_limit_key(*parts: object, max_part_len: int = 50) -> str:
    """Build a limiter key such as ``chat:10.0.0.1:Mozilla/5.0``.

    Empty parts become ``unknown``; each part is truncated so a hostile
    header cannot blow up the key map.
    """
    return ":".join(
        (str(p) if p not in (None, "") else "unknown")[:max_part_len] for p in parts
    )


def client_ip(forwarded_for: str | None) -> str:
    """First hop of an ``X-Forwarded-For`` header."""
    if not forwarded_for:
        return "unknown"
    return forwarded_for.split(",")[0].strip() or "unknown"


class RateLimiter:
    """Thread-safe fixed-window limiter."""

    def __init__(
        self,
        *,
        max_requests: int = 30,
        window_seconds: float = 60.0,
        sweep_interval: float = 60.0,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        if max_requests < 1:
            raise ValueError("max_requests must be >= 1")
        if window_seconds <= 0:
            raise ValueError("window_seconds must be > 0")
        self._max_requests = max_requests
        self._window = window_seconds
        self._sweep_interval = sweep_interval
        self._clock = clock

        self._windows: dict[str, RateWindow] = {}
        self._lock = threading.Lock()
        self._sweeper: asyncio.Task[None] | None = None

    @property
    def max_requests(self) -> int:
        return self._max_requests

    def check_limit(self, key: str) -> RateLimitDecision:
        """Count one request against ``key`` and decide whether it may proceed."""
        now = self._clock()
        with self._lock:
            window = self._windows.get(key)
            if window is None or window.reset_at <= now:
                window = RateWindow(key=key, count=1, reset_at=now + self._window)
                self._windows[key] = window
            else:
                window.count += 1
            decision = RateLimitDecision(
                allowed=window.count <= self._max_requests,
                remaining=max(0, self._max_requests - window.count),
                reset_at=window.reset_at,
                count=window.count,
            )

        RATE_LIMIT_DECISIONS.labels(allowed=str(decision.allowed).lower()).inc()
        if decision.allowed:
            logger.debug(
                "rate_limit_checked",
                key=key,
                count=decision.count,
                max_requests=self._max_requests,
            )
        else:
            logger.warning(
                "rate_limit_exceeded",
                key=key,
                count=decision.count,
                retry_after_s=round(decision.retry_after(now), 1),
            )
        return decision

    def enforce(self, key: str) -> RateLimitDecision:
        """``check_limit`` that raises ``RateLimitExceededError`` when rejected."""
        decision = self.check_limit(key)
        if not decision.allowed:
            raise RateLimitExceededError(
                key,
                reset_at=decision.reset_at,
                retry_after=decision.retry_after(self._clock()),
            )
        return decision

    def remaining_time(self, key: str) -> float:
        """Seconds until ``key``'s window resets (0 when it has none)."""
        now = self._clock()
        with self._lock:
            window = self._windows.get(key)
            if window is None:
                return 0.0
            return max(0.0, window.reset_at - now)

    def sweep(self) -> int:
        """Drop expired windows; returns how many were removed."""
        now = self._clock()
        with self._lock:
            expired = [k for k, w in self._windows.items() if w.reset_at <= now]
            for k in expired:
                del self._windows[k]
        if expired:
            logger.debug("rate_limit_windows_swept", removed=len(expired))
        return len(expired)

    def __len__(self) -> int:
        with self._lock:
            return len(self._windows)

    # ── Background sweeper ───────────────────────────────────
    def start(self) -> None:
        """Start the periodic sweeper on the running event loop."""
        if self._sweeper is not None and not self._sweeper.done():
            return
        self._sweeper = asyncio.get_running_loop().create_task(self._sweep_loop())

    async def stop(self) -> None:
        if self._sweeper is None:
            return
        self._sweeper.cancel()
        with contextlib.suppress(asyncio.CancelledError):
            await self._sweeper
        self._sweeper = None

    async def _sweep_loop(self) -> None:
        while True:
            await asyncio.sleep(self._sweep_interval)
            self.sweep()
