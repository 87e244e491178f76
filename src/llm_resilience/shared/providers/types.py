"""Core types for the provider resilience framework."""

from __future__ import annotations

import enum
from dataclasses import dataclass, field, replace
from typing import Any, Awaitable, Callable, Generic, TypeVar

T = TypeVar("T")

RetryPredicate = Callable[[int | None, str], bool]


class _Missing:
    """Marker for 'no default supplied' (``None`` is a legitimate default)."""

    _instance: _Missing | None = None

    def __new__(cls) -> _Missing:
        if cls._instance is None:
            cls._instance = super().__new__(cls)
        return cls._instance

    def __repr__(self) -> str:
        return "MISSING"

    def __bool__(self) -> bool:
        return False


MISSING: Any = _Missing()


class CircuitState(str, enum.Enum):
    CLOSED = "closed"
    OPEN = "open"
    HALF_OPEN = "half_open"


class ErrorKind(str, enum.Enum):
    """Failure categories used by the retry and fallback policies."""

    NETWORK = "network"
    TIMEOUT = "timeout"
    RATE_LIMITED = "rate_limited"
    QUOTA_EXCEEDED = "quota_exceeded"
    AUTHENTICATION = "authentication"
    SERVER = "server"
    TEMPORARILY_UNAVAILABLE = "temporarily_unavailable"
    MODEL_UNAVAILABLE = "model_unavailable"
    PROVIDER_UNAVAILABLE = "provider_unavailable"
    CLIENT = "client"
    UNKNOWN = "unknown"


class ResultSource(str, enum.Enum):
    """Where the value handed back to the caller came from."""

    PRIMARY = "primary"
    CACHE = "cache"
    FALLBACK_OPERATION = "fallback_operation"
    DEFAULT = "default"


@dataclass(frozen=True)
class RetryPolicy:
    """Bounded exponential backoff with multiplicative jitter.

    Attributes:
        max_attempts:       Total attempts including the first one (>= 1).
        base_delay:         Delay before the first retry, in seconds.
        max_delay:          Cap applied before jitter, in seconds.
        backoff_multiplier: Growth factor per attempt.
        jitter_ratio:       Delay is scaled by U[1 - ratio, 1 + ratio].
        retryable:          Predicate over (status_code, message); ``None``
                            means the default classification.
    """

    max_attempts: int = 3
    base_delay: float = 1.0
    max_delay: float = 30.0
    backoff_multiplier: float = 2.0
    jitter_ratio: float = 0.5
    retryable: RetryPredicate | None = None

    def __post_init__(self) -> None:
        if self.max_attempts < 1:
            raise ValueError("max_attempts must be >= 1")
        if self.base_delay < 0 or self.max_delay < 0:
            raise ValueError("delays must be non-negative")
        if self.backoff_multiplier < 1:
            raise ValueError("backoff_multiplier must be >= 1")
        if not 0.0 <= self.jitter_ratio <= 1.0:
            raise ValueError("jitter_ratio must be within [0, 1]")

    def with_overrides(self, **changes: Any) -> RetryPolicy:
        """Per-call copy with some fields replaced."""
        return replace(self, **changes)

    # Common call profiles
    @classmethod
    def fast(cls) -> RetryPolicy:
        return cls(max_attempts=2, base_delay=0.5, max_delay=2.0)

    @classmethod
    def slow(cls) -> RetryPolicy:
        return cls(max_attempts=5, base_delay=2.0, max_delay=30.0)

    @classmethod
    def critical(cls) -> RetryPolicy:
        return cls(max_attempts=10, base_delay=1.0, max_delay=60.0, backoff_multiplier=1.5)

    @classmethod
    def rate_limit(cls) -> RetryPolicy:
        return cls(max_attempts=5, base_delay=5.0, max_delay=120.0, backoff_multiplier=2.5)


@dataclass
class RetryOutcome(Generic[T]):
    """Result of one ``RetryExecutor.execute`` call."""

    success: bool
    attempts: int
    result: T | None = None
    error: BaseException | None = None
    total_delay: float = 0.0
    elapsed: float = 0.0


@dataclass(frozen=True)
class ProviderCandidate:
    """A (model, provider) pair in the fallback chain.

    Attributes:
        provider:  Provider name (e.g. "Anthropic", "OpenRouter").
        model:     Model identifier served by that provider.
        priority:  Lower = tried first.
        max_consecutive_failures: Failures before the provider circuit opens.
        credential_scope: Candidates sharing a scope share credentials, so an
            authentication failure rules all of them out. Defaults to the
            provider name.
    """

    provider: str
    model: str
    priority: int = 10
    max_consecutive_failures: int = 3
    credential_scope: str | None = None

    @property
    def key(self) -> tuple[str, str]:
        return (self.model, self.provider)

    @property
    def scope(self) -> str:
        return self.credential_scope or self.provider

    def __str__(self) -> str:
        return f"{self.model} ({self.provider})"


@dataclass
class HealthRecord:
    """Mutable per-provider health state, owned by ``HealthMonitor``."""

    provider: str
    is_available: bool = True
    last_checked_at: float | None = None
    last_response_time_ms: float | None = None
    last_error: str | None = None
    consecutive_failures: int = 0
    last_failure_at: float | None = None
    probe_failed_at: float | None = None
    forced_unavailable: bool = False

    def copy(self) -> HealthRecord:
        return replace(self)


@dataclass(frozen=True)
class ProviderStatus:
    """Read-only snapshot of a provider's availability."""

    provider: str
    is_available: bool
    consecutive_failures: int
    last_failure: float | None
    circuit_state: CircuitState
    last_error: str | None = None
    last_response_time_ms: float | None = None
    last_checked_at: float | None = None

    def as_dict(self) -> dict[str, Any]:
        return {
            "provider": self.provider,
            "is_available": self.is_available,
            "consecutive_failures": self.consecutive_failures,
            "last_failure": self.last_failure,
            "circuit_state": self.circuit_state.value,
            "last_error": self.last_error,
            "last_response_time_ms": self.last_response_time_ms,
            "last_checked_at": self.last_checked_at,
        }


@dataclass(frozen=True)
class ProbeResult:
    success: bool
    response_time_ms: float
    error: str | None = None


@dataclass
class RateWindow:
    key: str
    count: int
    reset_at: float


@dataclass(frozen=True)
class RateLimitDecision:
    allowed: bool
    remaining: int
    reset_at: float
    count: int

    def retry_after(self, now: float) -> float:
        """Seconds until the window resets (never negative)."""
        return max(0.0, self.reset_at - now)


@dataclass
class CacheEntry:
    key: str
    value: Any
    stored_at: float
    ttl: float

    def is_expired(self, now: float) -> bool:
        return self.stored_at + self.ttl < now


@dataclass
class Resolution(Generic[T]):
    """Value produced by the degradation chain plus its provenance."""

    value: T
    source: ResultSource
    error: BaseException | None = None

    @property
    def degraded(self) -> bool:
        return self.source is not ResultSource.PRIMARY


@dataclass
class RequestContext:
    """Per-request knobs for ``ResilientProviderGateway``.

    Attributes:
        service_name:   Service tracked by the degradation layer.
        model/provider: Preferred first target; selector picks when omitted.
        rate_limit_key: Admission key (``None`` skips rate limiting).
        coalesce_key:   Logical key for deduplication (``None`` disables it).
        cache_key:      Store successful results under this key.
        cache_ttl:      Seconds a cached result stays fresh.
        fallback_op:    Alternative operation for the degradation chain.
        default:        Literal served when everything else failed.
        label:          Human-readable label used in logs.
    """

    service_name: str = "completions"
    model: str | None = None
    provider: str | None = None
    rate_limit_key: str | None = None
    coalesce_key: str | None = None
    cache_key: str | None = None
    cache_ttl: float | None = None
    fallback_op: Callable[[], Awaitable[Any]] | None = None
    default: Any = field(default=MISSING)
    label: str = "completion"


@dataclass
class ExecutionResult(Generic[T]):
    """Outcome of ``execute_with_resilience``; never raises on its own."""

    success: bool
    value: T | None = None
    error: BaseException | None = None
    attempts: int = 0
    provider: str | None = None
    model: str | None = None
    source: ResultSource | None = None

    @property
    def degraded(self) -> bool:
        return self.source is not None and self.source is not ResultSource.PRIMARY

    def unwrap(self) -> T:
        if not self.success:
            if self.error is None:
                raise RuntimeError("failed result carries no error")
            raise self.error
        return self.value  # type: ignore[return-value]
