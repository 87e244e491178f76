"""Resilient provider gateway — the main entry-point for provider calls.

Composes RateLimiter, RequestCoalescer, DegradationOrchestrator,
FallbackSelector, HealthMonitor and RetryExecutor into one call::

    admission (rate limit)
      └─ coalescing (one in-flight chain per key)
           └─ degradation (cache → fallback op → default)
                └─ provider chain: retry on a candidate, then switch

Callers hand in ``operation(candidate)`` and get an ``ExecutionResult``;
the gateway handles retries, backoff, failover and health recording.
"""

from __future__ import annotations

import asyncio
import time
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, TypeVar

import structlog

from llm_resilience.domain.exceptions import (
    AllProvidersExhaustedError,
    ProviderTimeoutError,
    ProviderUnavailableError,
    RateLimitExceededError,
)
from llm_resilience.shared.observability.metrics import EXECUTIONS_TOTAL, PROVIDER_SWITCHES
from llm_resilience.shared.providers.classification import (
    classify_error,
    describe_error,
    should_fallback,
)
from llm_resilience.shared.providers.coalescer import RequestCoalescer
from llm_resilience.shared.providers.degradation import DegradationOrchestrator
from llm_resilience.shared.providers.health import HealthMonitor
from llm_resilience.shared.providers.hooks import ResilienceHooks
from llm_resilience.shared.providers.quota import RateLimiter
from llm_resilience.shared.providers.retry import RetryExecutor
from llm_resilience.shared.providers.router import FallbackSelector
from llm_resilience.shared.providers.types import (
    ErrorKind,
    ExecutionResult,
    ProbeResult,
    ProviderCandidate,
    ProviderStatus,
    RequestContext,
    ResultSource,
    RetryPolicy,
)

logger = structlog.get_logger(__name__)

T = TypeVar("T")

Operation = Callable[[ProviderCandidate], Awaitable[T]]


@dataclass
class _ChainState:
    """Bookkeeping for one provider-chain run."""

    attempts: int = 0
    candidate: ProviderCandidate | None = None
    last_error: BaseException | None = None
    errors: dict[str, str] = field(default_factory=dict)


class ResilientProviderGateway:
    """Autonomous resilience layer that wraps any async provider call.

    Usage::

        gateway = create_gateway(get_settings())

        result = await gateway.execute_with_resilience(
            lambda candidate: client.complete(candidate.provider, candidate.model, prompt),
            context=RequestContext(rate_limit_key="llm:10.0.0.1", coalesce_key=prompt_hash),
        )

    ``result.success`` tells whether a value was produced; ``result.degraded``
    whether it came from the cache, the fallback operation or the default.
    """

    def __init__(
        self,
        selector: FallbackSelector,
        health: HealthMonitor,
        *,
        retry: RetryExecutor | None = None,
        limiter: RateLimiter | None = None,
        degradation: DegradationOrchestrator | None = None,
        coalescer: RequestCoalescer | None = None,
        hooks: ResilienceHooks | None = None,
        max_fallback_attempts: int = 3,
        request_timeout: float | None = 30.0,
        fallback_on_exhausted_retries: bool = True,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._selector = selector
        self._health = health
        self._hooks = hooks or ResilienceHooks()
        self._retry = retry or RetryExecutor(hooks=self._hooks)
        self._limiter = limiter
        self._degradation = degradation or DegradationOrchestrator(
            HealthMonitor(failure_threshold=1, hooks=self._hooks, clock=clock)
        )
        self._coalescer = coalescer or RequestCoalescer()
        self._max_fallback_attempts = max_fallback_attempts
        self._request_timeout = request_timeout
        self._fallback_on_exhausted = fallback_on_exhausted_retries
        self._clock = clock
        self._closers: list[Callable[[], Awaitable[Any]]] = []

    # ── Components ───────────────────────────────────────────
    @property
    def health(self) -> HealthMonitor:
        return self._health

    @property
    def selector(self) -> FallbackSelector:
        return self._selector

    @property
    def limiter(self) -> RateLimiter | None:
        return self._limiter

    @property
    def degradation(self) -> DegradationOrchestrator:
        return self._degradation

    @property
    def coalescer(self) -> RequestCoalescer:
        return self._coalescer

    # ── Main entry-point ─────────────────────────────────────
    async def execute_with_resilience(
        self,
        operation: Operation[T],
        policy: RetryPolicy | None = None,
        context: RequestContext | None = None,
    ) -> ExecutionResult[T]:
        """Run ``operation`` with admission, coalescing, degradation, fallback and retry.

        Never raises for provider failures; the terminal error is carried in
        the returned ``ExecutionResult`` as ``AllProvidersExhaustedError``
        (or ``RateLimitExceededError`` when admission was refused).
        """
        ctx = context or RequestContext()

        if self._limiter is not None and ctx.rate_limit_key is not None:
            decision = self._limiter.check_limit(ctx.rate_limit_key)
            if not decision.allowed:
                EXECUTIONS_TOTAL.labels(service=ctx.service_name, outcome="rate_limited").inc()
                return ExecutionResult(
                    success=False,
                    error=RateLimitExceededError(
                        ctx.rate_limit_key,
                        reset_at=decision.reset_at,
                        retry_after=decision.retry_after(self._clock()),
                    ),
                )

        return await self._coalescer.coalesce(
            ctx.coalesce_key,
            lambda: self._run(operation, policy, ctx),
        )

    async def execute(
        self,
        operation: Operation[T],
        policy: RetryPolicy | None = None,
        context: RequestContext | None = None,
    ) -> T:
        """Raising variant of ``execute_with_resilience``."""
        result = await self.execute_with_resilience(operation, policy, context)
        return result.unwrap()

    # ── Status / admin ───────────────────────────────────────
    def get_provider_status(self) -> dict[str, ProviderStatus]:
        return self._health.get_provider_status()

    def set_provider_availability(self, provider: str, is_available: bool) -> None:
        self._health.set_provider_availability(provider, is_available)

    async def probe_provider(self, provider: str) -> ProbeResult | None:
        return await self._health.probe(provider, force=True)

    # ── Lifecycle ────────────────────────────────────────────
    def add_closer(self, closer: Callable[[], Awaitable[Any]]) -> None:
        self._closers.append(closer)

    def start(self) -> None:
        if self._limiter is not None:
            self._limiter.start()

    async def aclose(self) -> None:
        if self._limiter is not None:
            await self._limiter.stop()
        for closer in reversed(self._closers):
            await closer()
        self._closers.clear()

    # ── Degradation wrapper ──────────────────────────────────
    async def _run(
        self,
        operation: Operation[T],
        policy: RetryPolicy | None,
        ctx: RequestContext,
    ) -> ExecutionResult[T]:
        state = _ChainState()

        try:
            resolution = await self._degradation.resolve(
                ctx.service_name,
                lambda: self._run_chain(operation, policy, ctx, state),
                fallback_op=ctx.fallback_op,
                cached_default=ctx.default,
                cache_key=ctx.cache_key,
                cache_ttl=ctx.cache_ttl,
            )
        except Exception as exc:
            error = exc
            if not isinstance(exc, AllProvidersExhaustedError):
                error = AllProvidersExhaustedError(
                    attempts=state.attempts,
                    last_error=exc,
                    errors=dict(state.errors),
                )
            EXECUTIONS_TOTAL.labels(service=ctx.service_name, outcome="failed").inc()
            logger.error(
                "resilient_execution_failed",
                label=ctx.label,
                attempts=state.attempts,
                error=str(error),
            )
            return ExecutionResult(success=False, error=error, attempts=state.attempts)

        primary = resolution.source is ResultSource.PRIMARY
        EXECUTIONS_TOTAL.labels(
            service=ctx.service_name, outcome="success" if primary else "degraded"
        ).inc()
        return ExecutionResult(
            success=True,
            value=resolution.value,
            error=resolution.error,
            attempts=state.attempts,
            provider=state.candidate.provider if primary and state.candidate else None,
            model=state.candidate.model if primary and state.candidate else None,
            source=resolution.source,
        )

    # ── Provider chain ───────────────────────────────────────
    async def _run_chain(
        self,
        operation: Operation[T],
        policy: RetryPolicy | None,
        ctx: RequestContext,
        state: _ChainState,
    ) -> T:
        candidate = await self._initial_candidate(ctx)
        tried: set[tuple[str, str]] = set()
        switches = 0

        while candidate is not None:
            tried.add(candidate.key)
            state.candidate = candidate

            outcome = await self._retry.execute(
                lambda c=candidate: self._attempt(operation, c, state),
                policy,
                context_label=f"{ctx.label}:{candidate.provider}",
            )
            if outcome.success:
                if switches:
                    logger.info(
                        "provider_failover_success",
                        provider=candidate.provider,
                        model=candidate.model,
                        switches=switches,
                        attempts=state.attempts,
                    )
                return outcome.result  # type: ignore[return-value]

            error = outcome.error
            if error is None:
                raise RuntimeError("retry outcome carried neither a result nor an error")
            state.last_error = error
            state.errors[str(candidate)] = describe_error(error)

            if not self._should_switch(error):
                logger.info("fallback_not_triggered", provider=candidate.provider, error=str(error))
                break
            if switches >= self._max_fallback_attempts:
                logger.warning("fallback_limit_reached", switches=switches)
                break

            nxt = await self._selector.next_candidate(
                candidate.model,
                candidate.provider,
                self._exclusions(tried, candidate, error),
            )
            if nxt is None:
                break

            switches += 1
            PROVIDER_SWITCHES.labels(from_provider=candidate.provider, to_provider=nxt.provider).inc()
            logger.warning(
                "provider_switched",
                from_candidate=str(candidate),
                to_candidate=str(nxt),
                error=str(error),
            )
            self._hooks.emit("on_provider_switch", candidate, nxt, error)
            candidate = nxt

        raise AllProvidersExhaustedError(
            attempts=state.attempts,
            last_error=state.last_error,
            errors=dict(state.errors),
        )

    async def _attempt(
        self,
        operation: Operation[T],
        candidate: ProviderCandidate,
        state: _ChainState,
    ) -> T:
        state.attempts += 1
        provider = candidate.provider
        if not self._health.is_available(provider):
            raise ProviderUnavailableError(provider)

        started = self._clock()
        try:
            result = await asyncio.wait_for(operation(candidate), timeout=self._request_timeout)
        except asyncio.TimeoutError as exc:
            timeout_error = ProviderTimeoutError(self._request_timeout or 0.0, provider=provider)
            self._health.record_failure(provider, timeout_error)
            raise timeout_error from exc
        except Exception as exc:
            self._health.record_failure(provider, exc)
            raise

        self._health.record_success(provider, (self._clock() - started) * 1000)
        return result

    async def _initial_candidate(self, ctx: RequestContext) -> ProviderCandidate | None:
        if ctx.model is not None or ctx.provider is not None:
            preferred = self._selector.find(ctx.model, ctx.provider)
            if preferred is None and ctx.model is not None and ctx.provider is not None:
                preferred = ProviderCandidate(provider=ctx.provider, model=ctx.model, priority=0)
            if preferred is not None:
                return preferred
        return await self._selector.first_candidate()

    def _should_switch(self, error: BaseException) -> bool:
        """Fallback-triggering errors always switch; anything else once retries ran out."""
        return should_fallback(error) or self._fallback_on_exhausted

    def _exclusions(
        self,
        tried: set[tuple[str, str]],
        failed: ProviderCandidate,
        error: BaseException,
    ) -> set[tuple[str, str]]:
        exclude = set(tried)
        if classify_error(error) is ErrorKind.AUTHENTICATION:
            pool = self._selector.candidates
            if self._selector.default is not None:
                pool.append(self._selector.default)
            exclude.update(c.key for c in pool if c.scope == failed.scope)
        return exclude
