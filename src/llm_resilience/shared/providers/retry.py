"""Retry executor — bounded exponential backoff with jitter on top of tenacity.

Attempt 1 is the initial call; attempts 2..N are retries.  A failure stops
the loop when the attempt budget is spent or the error is not retryable
under the policy's predicate.  The outcome is reported as a ``RetryOutcome``
instead of raised, so callers can decide whether to fall back.
"""

from __future__ import annotations

import asyncio
import functools
import random
import time
from typing import Any, Awaitable, Callable, TypeVar

import structlog
from tenacity import (
    AsyncRetrying,
    RetryCallState,
    retry_if_exception,
    stop_after_attempt,
)
from tenacity.wait import wait_base

from llm_resilience.shared.observability.metrics import RETRY_ATTEMPTS, RETRY_OUTCOMES
from llm_resilience.shared.providers.classification import (
    error_message,
    error_status,
    make_retry_predicate,
)
from llm_resilience.shared.providers.hooks import ResilienceHooks
from llm_resilience.shared.providers.types import RetryOutcome, RetryPolicy

logger = structlog.get_logger(__name__)

T = TypeVar("T")

SleepFn = Callable[[float], Awaitable[Any]]


def compute_backoff(policy: RetryPolicy, attempt: int, rng: random.Random | None = None) -> float:
    """Delay (seconds) before retrying after failed attempt ``attempt`` (1-based).

    ``min(base * multiplier ** (attempt - 1), max_delay)`` scaled by a factor
    drawn from ``[1 - jitter_ratio, 1 + jitter_ratio]``; the jittered value
    is clamped to ``max_delay`` again.
    """
    delay = min(
        policy.base_delay * policy.backoff_multiplier ** (attempt - 1),
        policy.max_delay,
    )
    if policy.jitter_ratio:
        r = (rng or random).random()
        delay *= 1 - policy.jitter_ratio + 2 * policy.jitter_ratio * r
    return min(max(0.0, delay), policy.max_delay)


class wait_policy_backoff(wait_base):
    """tenacity wait strategy driven by a ``RetryPolicy``."""

    def __init__(self, policy: RetryPolicy, rng: random.Random | None = None) -> None:
        self._policy = policy
        self._rng = rng

    def __call__(self, retry_state: RetryCallState) -> float:
        return compute_backoff(self._policy, retry_state.attempt_number, self._rng)


class RetryExecutor:
    """Runs async operations under a ``RetryPolicy``."""

    def __init__(
        self,
        default_policy: RetryPolicy | None = None,
        *,
        hooks: ResilienceHooks | None = None,
        sleep: SleepFn = asyncio.sleep,
        rng: random.Random | None = None,
        clock: Callable[[], float] = time.monotonic,
        excluded_status_codes: tuple[int, ...] = (),
    ) -> None:
        self._default_policy = default_policy or RetryPolicy()
        self._hooks = hooks or ResilienceHooks()
        self._sleep = sleep
        self._rng = rng
        self._clock = clock
        self._default_predicate = make_retry_predicate(excluded_status_codes)

    @property
    def default_policy(self) -> RetryPolicy:
        return self._default_policy

    def is_retryable(self, exc: BaseException, policy: RetryPolicy | None = None) -> bool:
        if not isinstance(exc, Exception):
            return False
        predicate = (policy or self._default_policy).retryable or self._default_predicate
        return predicate(error_status(exc), error_message(exc))

    async def execute(
        self,
        operation: Callable[[], Awaitable[T]],
        policy: RetryPolicy | None = None,
        context_label: str = "operation",
    ) -> RetryOutcome[T]:
        """Run ``operation`` until it succeeds, the error is final, or attempts run out."""
        policy = policy or self._default_policy
        started = self._clock()
        attempts = 0
        total_delay = 0.0

        def _before_sleep(retry_state: RetryCallState) -> None:
            nonlocal total_delay
            delay = retry_state.next_action.sleep if retry_state.next_action else 0.0
            total_delay += delay
            error = retry_state.outcome.exception() if retry_state.outcome else None
            logger.warning(
                "retry_scheduled",
                context=context_label,
                attempt=retry_state.attempt_number,
                max_attempts=policy.max_attempts,
                delay_s=round(delay, 3),
                error=str(error),
            )
            RETRY_ATTEMPTS.labels(context=context_label).inc()
            self._hooks.emit("on_retry_attempt", retry_state.attempt_number, error)

        retrying = AsyncRetrying(
            stop=stop_after_attempt(policy.max_attempts),
            wait=wait_policy_backoff(policy, self._rng),
            retry=retry_if_exception(lambda exc: self.is_retryable(exc, policy)),
            before_sleep=_before_sleep,
            sleep=self._sleep,
            reraise=True,
        )

        try:
            async for attempt in retrying:
                with attempt:
                    attempts = attempt.retry_state.attempt_number
                    result = await operation()
        except Exception as exc:
            exhausted = attempts >= policy.max_attempts and self.is_retryable(exc, policy)
            RETRY_OUTCOMES.labels(outcome="exhausted" if exhausted else "not_retryable").inc()
            logger.warning(
                "retry_failed",
                context=context_label,
                attempts=attempts,
                exhausted=exhausted,
                error=str(exc),
            )
            return RetryOutcome(
                success=False,
                attempts=attempts,
                error=exc,
                total_delay=total_delay,
                elapsed=self._clock() - started,
            )

        RETRY_OUTCOMES.labels(outcome="success").inc()
        if attempts > 1:
            logger.info("retry_succeeded", context=context_label, attempts=attempts)
        return RetryOutcome(
            success=True,
            attempts=attempts,
            result=result,
            total_delay=total_delay,
            elapsed=self._clock() - started,
        )

    def wrap(
        self, policy: RetryPolicy | None = None
    ) -> Callable[[Callable[..., Awaitable[T]]], Callable[..., Awaitable[T]]]:
        """Decorator form: retries the coroutine function, raising the last error."""

        def decorator(fn: Callable[..., Awaitable[T]]) -> Callable[..., Awaitable[T]]:
            @functools.wraps(fn)
            async def wrapper(*args: Any, **kwargs: Any) -> T:
                outcome = await self.execute(
                    lambda: fn(*args, **kwargs),
                    policy,
                    context_label=fn.__qualname__,
                )
                if not outcome.success:
                    if outcome.error is None:
                        raise RuntimeError(f"{fn.__qualname__} failed without an error")
                    raise outcome.error
                return outcome.result  # type: ignore[return-value]

            return wrapper

        return decorator
