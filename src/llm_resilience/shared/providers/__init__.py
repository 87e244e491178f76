"""Multi-provider resilience framework.

Provides retry with backoff, circuit breaking and health probing, ordered
fallback selection, rate limiting, graceful degradation and request
coalescing for any outbound completion provider.
"""

from llm_resilience.shared.providers.types import (
    MISSING,
    CircuitState,
    ErrorKind,
    ExecutionResult,
    HealthRecord,
    ProbeResult,
    ProviderCandidate,
    ProviderStatus,
    RateLimitDecision,
    RequestContext,
    Resolution,
    ResultSource,
    RetryOutcome,
    RetryPolicy,
)
from llm_resilience.shared.providers.cache import TTLCache
from llm_resilience.shared.providers.catalog import ModelCatalog
from llm_resilience.shared.providers.circuit_breaker import derive_circuit_state
from llm_resilience.shared.providers.classification import classify_error, should_fallback
from llm_resilience.shared.providers.coalescer import RequestCoalescer
from llm_resilience.shared.providers.degradation import DegradationOrchestrator
from llm_resilience.shared.providers.gateway import ResilientProviderGateway
from llm_resilience.shared.providers.health import HealthMonitor, ProberRegistry
from llm_resilience.shared.providers.hooks import ResilienceHooks
from llm_resilience.shared.providers.quota import RateLimiter, rate_limit_key
from llm_resilience.shared.providers.retry import RetryExecutor, compute_backoff
from llm_resilience.shared.providers.router import FallbackSelector

__all__ = [
    "MISSING",
    "CircuitState",
    "DegradationOrchestrator",
    "ErrorKind",
    "ExecutionResult",
    "FallbackSelector",
    "HealthMonitor",
    "HealthRecord",
    "ModelCatalog",
    "ProbeResult",
    "ProberRegistry",
    "ProviderCandidate",
    "ProviderStatus",
    "RateLimitDecision",
    "RateLimiter",
    "RequestCoalescer",
    "RequestContext",
    "ResilienceHooks",
    "ResilientProviderGateway",
    "Resolution",
    "ResultSource",
    "RetryExecutor",
    "RetryOutcome",
    "RetryPolicy",
    "TTLCache",
    "classify_error",
    "compute_backoff",
    "derive_circuit_state",
    "rate_limit_key",
    "should_fallback",
]
