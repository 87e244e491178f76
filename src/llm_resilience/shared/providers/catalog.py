"""Model catalog — which models each provider can serve.

Static listings are checked first; providers with a registered
``ModelLister`` are then asked for their live listing, which is cached for
``list_ttl`` seconds.  A provider with neither is treated as serving any
model, since there is nothing to check against.
"""

from __future__ import annotations

import threading
import time
from typing import Callable, Iterable, Mapping

import structlog

from llm_resilience.ports.outbound import ModelLister
from llm_resilience.shared.providers.classification import describe_error
from llm_resilience.shared.providers.coalescer import RequestCoalescer

logger = structlog.get_logger(__name__)


class ModelCatalog:
    def __init__(
        self,
        static_models: Mapping[str, Iterable[str]] | None = None,
        listers: Mapping[str, ModelLister] | None = None,
        *,
        list_ttl: float = 300.0,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._static: dict[str, frozenset[str]] = {
            provider: frozenset(models) for provider, models in (static_models or {}).items()
        }
        self._listers: dict[str, ModelLister] = dict(listers or {})
        self._list_ttl = list_ttl
        self._clock = clock

        self._dynamic: dict[str, tuple[float, frozenset[str]]] = {}
        self._lock = threading.Lock()
        self._fetches = RequestCoalescer()

    def register_lister(self, provider: str, lister: ModelLister) -> None:
        self._listers[provider] = lister
        with self._lock:
            self._dynamic.pop(provider, None)

    def static_models(self, provider: str) -> frozenset[str]:
        return self._static.get(provider, frozenset())

    async def is_model_available(self, provider: str, model: str) -> bool:
        if model in self.static_models(provider):
            return True

        lister = self._listers.get(provider)
        if lister is None:
            return provider not in self._static

        try:
            models = await self._dynamic_models(provider, lister)
        except Exception as exc:
            logger.debug(
                "model_listing_failed",
                provider=provider,
                model=model,
                error=describe_error(exc),
            )
            return False
        return model in models

    async def _dynamic_models(self, provider: str, lister: ModelLister) -> frozenset[str]:
        now = self._clock()
        with self._lock:
            cached = self._dynamic.get(provider)
            if cached is not None and now - cached[0] < self._list_ttl:
                return cached[1]

        async def _fetch() -> frozenset[str]:
            models = frozenset(await lister.list_models())
            with self._lock:
                self._dynamic[provider] = (self._clock(), models)
            logger.debug("model_listing_refreshed", provider=provider, count=len(models))
            return models

        return await self._fetches.coalesce(provider, _fetch)

    def invalidate(self, provider: str | None = None) -> None:
        with self._lock:
            if provider is None:
                self._dynamic.clear()
            else:
                self._dynamic.pop(provider, None)
