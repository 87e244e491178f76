"""Graceful degradation — the outermost boundary of a resilient call.

If the service is healthy the primary operation runs; otherwise, or when it
fails, the chain below is walked and the first success wins:

    cache entry  →  fallback operation  →  cached default  →  primary error
"""

from __future__ import annotations

from typing import Any, Awaitable, Callable, TypeVar

import structlog

from llm_resilience.domain.exceptions import ServiceUnavailableError
from llm_resilience.shared.observability.metrics import DEGRADED_RESPONSES
from llm_resilience.shared.providers.cache import TTLCache
from llm_resilience.shared.providers.health import HealthMonitor
from llm_resilience.shared.providers.types import MISSING, Resolution, ResultSource

logger = structlog.get_logger(__name__)

T = TypeVar("T")


class DegradationOrchestrator:
    """Runs an operation for a named service with a cache/fallback/default chain."""

    def __init__(
        self,
        health: HealthMonitor,
        cache: TTLCache | None = None,
    ) -> None:
        self._health = health
        self._cache = cache or TTLCache()

    @property
    def cache(self) -> TTLCache:
        return self._cache

    @property
    def health(self) -> HealthMonitor:
        return self._health

    async def execute(
        self,
        service_name: str,
        primary_op: Callable[[], Awaitable[T]],
        *,
        fallback_op: Callable[[], Awaitable[T]] | None = None,
        cached_default: Any = MISSING,
        cache_key: str | None = None,
        cache_ttl: float | None = None,
    ) -> T:
        resolution = await self.resolve(
            service_name,
            primary_op,
            fallback_op=fallback_op,
            cached_default=cached_default,
            cache_key=cache_key,
            cache_ttl=cache_ttl,
        )
        return resolution.value

    async def resolve(
        self,
        service_name: str,
        primary_op: Callable[[], Awaitable[T]],
        *,
        fallback_op: Callable[[], Awaitable[T]] | None = None,
        cached_default: Any = MISSING,
        cache_key: str | None = None,
        cache_ttl: float | None = None,
    ) -> Resolution[T]:
        """Like ``execute`` but reports where the value came from."""
        error: BaseException | None = None

        if self._health.is_available(service_name):
            try:
                value = await primary_op()
            except Exception as exc:
                error = exc
                self._health.record_failure(service_name, exc)
                logger.warning(
                    "primary_operation_failed",
                    service=service_name,
                    error=str(exc),
                )
            else:
                self._health.record_success(service_name)
                if cache_key is not None:
                    self._cache.set(cache_key, value, cache_ttl)
                return Resolution(value=value, source=ResultSource.PRIMARY)
        else:
            logger.info("service_unavailable_skipping_primary", service=service_name)

        return await self._fall_back(service_name, error, fallback_op, cached_default, cache_key)

    async def _fall_back(
        self,
        service_name: str,
        error: BaseException | None,
        fallback_op: Callable[[], Awaitable[T]] | None,
        cached_default: Any,
        cache_key: str | None,
    ) -> Resolution[T]:
        if cache_key is not None:
            cached = self._cache.get(cache_key)
            if cached is not MISSING:
                return self._degraded(service_name, cached, ResultSource.CACHE, error)

        if fallback_op is not None:
            try:
                value = await fallback_op()
            except Exception as exc:
                logger.warning(
                    "fallback_operation_failed",
                    service=service_name,
                    error=str(exc),
                )
            else:
                return self._degraded(service_name, value, ResultSource.FALLBACK_OPERATION, error)

        if cached_default is not MISSING:
            return self._degraded(service_name, cached_default, ResultSource.DEFAULT, error)

        logger.error("degradation_chain_exhausted", service=service_name)
        raise error if error is not None else ServiceUnavailableError(service_name)

    @staticmethod
    def _degraded(
        service_name: str,
        value: Any,
        source: ResultSource,
        error: BaseException | None,
    ) -> Resolution[Any]:
        DEGRADED_RESPONSES.labels(service=service_name, source=source.value).inc()
        logger.info("degraded_response_served", service=service_name, source=source.value)
        return Resolution(value=value, source=source, error=error)
