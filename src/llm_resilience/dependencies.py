"""Dependency wiring — builds the resilience component graph from settings.

There are no module-level singletons: ``create_gateway`` returns a fully
wired ``ResilientProviderGateway`` and the host decides where to keep it
(the REST adapter stores it on ``app.state``).
"""

from __future__ import annotations

from typing import Mapping

import httpx
import structlog
from fastapi import Request

from llm_resilience.adapters.outbound.probes import build_default_endpoints
from llm_resilience.config import ResilienceSettings, get_settings
from llm_resilience.ports.outbound import ModelLister, Prober
from llm_resilience.shared.providers.cache import TTLCache
from llm_resilience.shared.providers.catalog import ModelCatalog
from llm_resilience.shared.providers.coalescer import RequestCoalescer
from llm_resilience.shared.providers.degradation import DegradationOrchestrator
from llm_resilience.shared.providers.gateway import ResilientProviderGateway
from llm_resilience.shared.providers.health import HealthMonitor, ProberRegistry
from llm_resilience.shared.providers.hooks import ResilienceHooks
from llm_resilience.shared.providers.quota import RateLimiter
from llm_resilience.shared.providers.retry import RetryExecutor
from llm_resilience.shared.providers.router import FallbackSelector
from llm_resilience.shared.providers.types import ProviderCandidate, RetryPolicy

logger = structlog.get_logger(__name__)

# Ordered fallback chain (lower priority = tried first)
DEFAULT_CANDIDATES: tuple[ProviderCandidate, ...] = (
    # Primary fallbacks
    ProviderCandidate("Anthropic", "claude-3-5-sonnet-latest", priority=1),
    ProviderCandidate("OpenRouter", "anthropic/claude-3.5-sonnet", priority=2),
    ProviderCandidate("OpenRouter", "anthropic/claude-3-haiku", priority=3),
    # Secondary fallbacks
    ProviderCandidate("OpenRouter", "google/gemini-flash-1.5", priority=4),
    ProviderCandidate("OpenRouter", "deepseek/deepseek-coder", priority=5),
    ProviderCandidate("OpenRouter", "mistralai/mistral-nemo", priority=6),
    ProviderCandidate("OpenRouter", "cohere/command", priority=7),
    # Local runtimes, useful offline
    ProviderCandidate("Ollama", "llama3.2:latest", priority=8),
    ProviderCandidate("Ollama", "qwen2.5:latest", priority=9),
    ProviderCandidate("Ollama", "mistral:latest", priority=10),
    ProviderCandidate("Ollama", "codellama:latest", priority=11),
    ProviderCandidate("LMStudio", "local-model", priority=12),
    # Backup
    ProviderCandidate("OpenAI", "gpt-4o-mini", priority=13),
    ProviderCandidate("OpenAI", "gpt-3.5-turbo", priority=14),
)

LOCAL_PROVIDERS = frozenset({"Ollama", "LMStudio"})


def build_candidates(settings: ResilienceSettings) -> list[ProviderCandidate]:
    """Default chain, re-ranked by ``provider_priority`` when it is set.

    Listed providers come first in the given order (keeping their internal
    order); unlisted ones follow in their default order.
    """
    threshold = settings.circuit_failure_threshold
    order = {name: idx for idx, name in enumerate(settings.priority_order)}
    rank_base = len(DEFAULT_CANDIDATES) + 1

    candidates: list[ProviderCandidate] = []
    for c in DEFAULT_CANDIDATES:
        rank = order.get(c.provider.lower(), len(order))
        priority = rank * rank_base + c.priority if order else c.priority
        candidates.append(
            ProviderCandidate(
                c.provider,
                c.model,
                priority=priority,
                max_consecutive_failures=threshold,
            )
        )
    return sorted(candidates, key=lambda c: c.priority)


def default_candidate(
    settings: ResilienceSettings, candidates: list[ProviderCandidate]
) -> ProviderCandidate:
    for c in candidates:
        if c.provider == settings.default_provider and c.model == settings.default_model:
            return c
    return ProviderCandidate(
        settings.default_provider,
        settings.default_model,
        priority=max((c.priority for c in candidates), default=0) + 1,
        max_consecutive_failures=settings.circuit_failure_threshold,
    )


def static_model_listing(candidates: list[ProviderCandidate]) -> dict[str, set[str]]:
    """Cloud providers' known models; local runtimes are listed dynamically."""
    listing: dict[str, set[str]] = {}
    for c in candidates:
        if c.provider not in LOCAL_PROVIDERS:
            listing.setdefault(c.provider, set()).add(c.model)
    return listing


def create_gateway(
    settings: ResilienceSettings | None = None,
    *,
    hooks: ResilienceHooks | None = None,
    probers: Mapping[str, Prober] | None = None,
    listers: Mapping[str, ModelLister] | None = None,
    http_client: httpx.AsyncClient | None = None,
) -> ResilientProviderGateway:
    """Wire every resilience component from ``settings``.

    When ``probers``/``listers`` are omitted the HTTP adapters are built on
    ``http_client`` (or a client owned by the gateway, closed by
    ``gateway.aclose()``).
    """
    s = settings or get_settings()
    hooks = hooks or ResilienceHooks()

    owned_client: httpx.AsyncClient | None = None
    if probers is None or listers is None:
        if http_client is None:
            owned_client = httpx.AsyncClient(timeout=s.probe_timeout_s)
            http_client = owned_client
        endpoints = build_default_endpoints(s, http_client)
        if probers is None:
            probers = endpoints
        if listers is None:
            listers = endpoints

    candidates = build_candidates(s)

    health = HealthMonitor(
        failure_threshold=s.circuit_failure_threshold,
        cooldown=s.circuit_cooldown_s,
        probe_timeout=s.probe_timeout_s,
        probe_cache_ttl=s.probe_cache_ttl_s,
        active_probing=s.active_probing,
        probers=ProberRegistry(probers),
        hooks=hooks,
    )
    catalog = ModelCatalog(
        static_model_listing(candidates),
        listers,
        list_ttl=s.model_list_ttl_s,
    )
    selector = FallbackSelector(
        candidates,
        health,
        catalog,
        default=default_candidate(s, candidates),
    )

    retry = RetryExecutor(
        RetryPolicy(
            max_attempts=s.retry_max_attempts,
            base_delay=s.retry_base_delay_s,
            max_delay=s.retry_max_delay_s,
            backoff_multiplier=s.retry_backoff_multiplier,
            jitter_ratio=s.retry_jitter_ratio,
        ),
        hooks=hooks,
        excluded_status_codes=s.excluded_status_codes,
    )
    service_health = HealthMonitor(
        failure_threshold=s.service_failure_threshold,
        cooldown=s.circuit_cooldown_s,
        active_probing=False,
        hooks=hooks,
    )
    degradation = DegradationOrchestrator(
        service_health,
        TTLCache(max_entries=s.cache_max_entries, default_ttl=s.cache_default_ttl_s),
    )
    limiter = RateLimiter(
        max_requests=s.rate_limit_max_requests,
        window_seconds=s.rate_limit_window_s,
        sweep_interval=s.rate_limit_sweep_interval_s,
    )

    gateway = ResilientProviderGateway(
        selector,
        health,
        retry=retry,
        limiter=limiter,
        degradation=degradation,
        coalescer=RequestCoalescer(),
        hooks=hooks,
        max_fallback_attempts=s.max_fallback_attempts,
        request_timeout=s.request_timeout_s,
        fallback_on_exhausted_retries=s.fallback_on_exhausted_retries,
    )
    if owned_client is not None:
        gateway.add_closer(owned_client.aclose)

    logger.info(
        "resilience_gateway_created",
        candidates=len(candidates),
        providers=sorted({c.provider for c in candidates}),
        active_probing=s.active_probing,
    )
    return gateway


# ── FastAPI dependency ───────────────────────────────────────
def get_gateway(request: Request) -> ResilientProviderGateway:
    return request.app.state.gateway
