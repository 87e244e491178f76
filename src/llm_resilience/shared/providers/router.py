"""Fallback selector — picks the next (model, provider) pair to try.

Candidates are ordered once by ascending priority (stable for ties).  A
candidate is eligible when its provider passes the health check and its
model appears in the provider's listing.  When no candidate qualifies, the
designated default pair is offered if it passes the health check on its own.
"""

from __future__ import annotations

from typing import Collection, Iterable

import structlog

from llm_resilience.shared.providers.catalog import ModelCatalog
from llm_resilience.shared.providers.health import HealthMonitor
from llm_resilience.shared.providers.types import ProviderCandidate

logger = structlog.get_logger(__name__)

CandidateKey = tuple[str, str]  # (model, provider)


class FallbackSelector:
    """Deterministic, priority-ordered candidate selection."""

    def __init__(
        self,
        candidates: Iterable[ProviderCandidate],
        health: HealthMonitor,
        catalog: ModelCatalog | None = None,
        *,
        default: ProviderCandidate | None = None,
    ) -> None:
        self._candidates = sorted(candidates, key=lambda c: c.priority)
        if not self._candidates and default is None:
            raise ValueError("at least one candidate or a default is required")
        self._health = health
        self._catalog = catalog or ModelCatalog()
        self._default = default
        health.register_candidates(self._candidates)
        if default is not None:
            health.register_candidates([default])

    @property
    def candidates(self) -> list[ProviderCandidate]:
        return list(self._candidates)

    @property
    def default(self) -> ProviderCandidate | None:
        return self._default

    def find(self, model: str | None, provider: str | None) -> ProviderCandidate | None:
        """First configured candidate matching the given model and/or provider."""
        for c in self._candidates:
            if (model is None or c.model == model) and (provider is None or c.provider == provider):
                return c
        if self._default is not None:
            d = self._default
            if (model is None or d.model == model) and (provider is None or d.provider == provider):
                return d
        return None

    async def next_candidate(
        self,
        failed_model: str,
        failed_provider: str,
        exclude: Collection[CandidateKey] | None = None,
    ) -> ProviderCandidate | None:
        """Next viable candidate after ``(failed_model, failed_provider)`` failed."""
        skip = {(failed_model, failed_provider), *(exclude or ())}
        logger.info(
            "fallback_search_started",
            failed_model=failed_model,
            failed_provider=failed_provider,
            excluded=len(skip),
        )
        return await self._select(skip)

    async def first_candidate(
        self, exclude: Collection[CandidateKey] | None = None
    ) -> ProviderCandidate | None:
        """Initial target for a request: the best currently viable candidate."""
        return await self._select(set(exclude or ()))

    # ── Internals ────────────────────────────────────────────
    async def _select(self, skip: set[CandidateKey]) -> ProviderCandidate | None:
        healthy: dict[str, bool] = {}

        async def provider_ok(provider: str) -> bool:
            if provider not in healthy:
                healthy[provider] = await self._health.check_available(provider)
            return healthy[provider]

        for candidate in self._candidates:
            if candidate.key in skip:
                continue
            if not await provider_ok(candidate.provider):
                logger.debug("fallback_candidate_unhealthy", candidate=str(candidate))
                continue
            if not await self._catalog.is_model_available(candidate.provider, candidate.model):
                logger.debug("fallback_model_not_listed", candidate=str(candidate))
                continue
            logger.info("fallback_candidate_selected", candidate=str(candidate))
            return candidate

        default = self._default
        if default is not None and default.key not in skip and await provider_ok(default.provider):
            logger.warning("fallback_using_default", candidate=str(default))
            return default

        logger.error("no_healthy_candidates", excluded=len(skip))
        return None
