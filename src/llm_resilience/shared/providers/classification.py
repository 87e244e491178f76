"""Error classification — decides what is retried and what switches provider.

Retry decisions are made from ``(status_code, message)`` so that a
``RetryPolicy`` can carry its own predicate.  ``should_fallback`` names the
failures that switch provider even when the gateway keeps transient errors
in place: quota breach, model gone, open circuit, hard 5xx and bad
credentials.
"""

from __future__ import annotations

import asyncio
from typing import Iterable

import httpx

from llm_resilience.domain.exceptions import (
    AuthenticationError,
    ModelUnavailableError,
    NetworkError,
    ProviderError,
    ProviderTimeoutError,
    ProviderUnavailableError,
    RateLimitedError,
    TemporarilyUnavailableError,
)
from llm_resilience.shared.observability.redaction import redact_secrets
from llm_resilience.shared.providers.types import ErrorKind, RetryPredicate

QUOTA_PATTERNS = ("quota exceeded",)

AUTH_PATTERNS = ("unauthorized", "invalid api key", "authentication", "forbidden")

MODEL_GONE_PATTERNS = (
    "model unavailable",
    "model not supported",
    "model discontinued",
    "model removed",
)

CIRCUIT_PATTERNS = ("circuit open",)

TRANSIENT_PATTERNS = (
    "network",
    "timeout",
    "timed out",
    "connect",
    "reset by peer",
    "rate limit",
    "rate-limited",
    "too many requests",
    "service unavailable",
    "gateway timeout",
    "bad gateway",
    "temporar",
)

HARD_SERVER_PATTERNS = ("internal server error", "bad gateway", "gateway timeout")


def error_status(exc: BaseException) -> int | None:
    """Best-effort HTTP status for any exception."""
    if isinstance(exc, ProviderError):
        return exc.status_code
    if isinstance(exc, httpx.HTTPStatusError):
        return exc.response.status_code
    for attr in ("status_code", "status"):
        value = getattr(exc, attr, None)
        if isinstance(value, int):
            return value
    response = getattr(exc, "response", None)
    value = getattr(response, "status_code", None)
    return value if isinstance(value, int) else None


def error_message(exc: BaseException) -> str:
    """Lower-cased ``"<TypeName>: <message>"`` used for pattern matching."""
    return f"{type(exc).__name__}: {exc}".lower()


def describe_error(exc: BaseException) -> str:
    """Log-safe ``"<TypeName>: <detail>"``; HTTP status errors keep only the status."""
    if isinstance(exc, httpx.HTTPStatusError):
        return f"{type(exc).__name__}: status {exc.response.status_code}"
    return f"{type(exc).__name__}: {redact_secrets(str(exc))}"


def _matches(message: str, patterns: Iterable[str]) -> bool:
    return any(p in message for p in patterns)


def default_retryable(
    status_code: int | None,
    message: str,
    *,
    excluded_status_codes: frozenset[int] = frozenset(),
) -> bool:
    """Default retry predicate over ``(status_code, message)``."""
    message = message.lower()
    if _matches(message, QUOTA_PATTERNS):
        return False
    if _matches(message, MODEL_GONE_PATTERNS) or _matches(message, CIRCUIT_PATTERNS):
        return False
    if status_code in (401, 403) or _matches(message, AUTH_PATTERNS):
        return False
    if status_code is not None:
        if status_code in excluded_status_codes:
            return False
        if status_code == 429 or status_code == 408:
            return True
        if status_code >= 500:
            return True
        if status_code >= 400:
            return False
    return _matches(message, TRANSIENT_PATTERNS)


def make_retry_predicate(excluded_status_codes: Iterable[int] = ()) -> RetryPredicate:
    """Bind a set of never-retried 5xx codes into the default predicate."""
    excluded = frozenset(excluded_status_codes)

    def _predicate(status_code: int | None, message: str) -> bool:
        return default_retryable(status_code, message, excluded_status_codes=excluded)

    return _predicate


def classify_error(exc: BaseException) -> ErrorKind:
    """Map any exception onto the resilience error taxonomy."""
    message = error_message(exc)

    if isinstance(exc, ModelUnavailableError) or _matches(message, MODEL_GONE_PATTERNS):
        return ErrorKind.MODEL_UNAVAILABLE
    if isinstance(exc, ProviderUnavailableError):
        return ErrorKind.PROVIDER_UNAVAILABLE
    if _matches(message, QUOTA_PATTERNS):
        return ErrorKind.QUOTA_EXCEEDED
    if isinstance(exc, AuthenticationError):
        return ErrorKind.AUTHENTICATION
    if isinstance(exc, RateLimitedError):
        return ErrorKind.RATE_LIMITED
    if isinstance(exc, TemporarilyUnavailableError):
        return ErrorKind.TEMPORARILY_UNAVAILABLE
    if isinstance(exc, (ProviderTimeoutError, asyncio.TimeoutError, httpx.TimeoutException)):
        return ErrorKind.TIMEOUT
    if isinstance(exc, (NetworkError, httpx.TransportError, ConnectionError)):
        return ErrorKind.NETWORK

    status = error_status(exc)
    if status is not None:
        if status in (401, 403):
            return ErrorKind.AUTHENTICATION
        if status == 429:
            return ErrorKind.RATE_LIMITED
        if status == 503:
            return ErrorKind.TEMPORARILY_UNAVAILABLE
        if status == 408:
            return ErrorKind.TIMEOUT
        if status >= 500:
            return ErrorKind.SERVER
        if status >= 400:
            return ErrorKind.CLIENT

    if _matches(message, AUTH_PATTERNS):
        return ErrorKind.AUTHENTICATION
    if _matches(message, HARD_SERVER_PATTERNS):
        return ErrorKind.SERVER
    if "timeout" in message or "timed out" in message:
        return ErrorKind.TIMEOUT
    if _matches(message, ("network", "connect")):
        return ErrorKind.NETWORK
    return ErrorKind.UNKNOWN


_FALLBACK_KINDS = frozenset(
    {
        ErrorKind.QUOTA_EXCEEDED,
        ErrorKind.MODEL_UNAVAILABLE,
        ErrorKind.PROVIDER_UNAVAILABLE,
        ErrorKind.SERVER,
        ErrorKind.AUTHENTICATION,
    }
)


def should_fallback(exc: BaseException | None) -> bool:
    """True when the failure justifies switching to another candidate.

    Temporary conditions (plain 429, 503, network blips, timeouts) are not
    fallback triggers on their own; they move on only once retries run out.
    """
    if exc is None:
        return False
    return classify_error(exc) in _FALLBACK_KINDS
