"""Resilience exception hierarchy.

All exceptions inherit from ``ResilienceError`` so callers can catch the
entire family in one clause while still discriminating on subclass.
Provider-side failures derive from ``ProviderError`` and carry the HTTP
status (when one exists) so the retry and fallback policies can classify
them without string-matching on type names.
"""

from __future__ import annotations

from typing import Any


class ResilienceError(Exception):
    """Base class for all resilience-layer errors."""

    def __init__(self, message: str, *, code: str = "RESILIENCE_ERROR") -> None:
        self.message = message
        self.code = code
        super().__init__(message)


# ── Provider failures ───────────────────────────────────────
class ProviderError(ResilienceError):
    """A completion provider call failed."""

    default_code = "PROVIDER_ERROR"

    def __init__(
        self,
        message: str,
        *,
        status_code: int | None = None,
        provider: str | None = None,
        code: str | None = None,
    ) -> None:
        self.status_code = status_code
        self.provider = provider
        super().__init__(message, code=code or self.default_code)


class NetworkError(ProviderError):
    """Connection refused, reset, DNS failure and the like."""

    default_code = "NETWORK_ERROR"


class ProviderTimeoutError(ProviderError):
    """The provider did not answer within the per-attempt timeout."""

    default_code = "TIMEOUT"

    def __init__(self, timeout_s: float, *, provider: str | None = None) -> None:
        self.timeout_s = timeout_s
        super().__init__(
            f"Request timeout after {timeout_s}s",
            status_code=408,
            provider=provider,
        )


class RateLimitedError(ProviderError):
    """Provider answered 429.

    A message mentioning ``quota exceeded`` marks a persistent quota breach,
    which is not retried on the same provider.
    """

    default_code = "RATE_LIMITED"

    def __init__(
        self,
        message: str = "Too many requests",
        *,
        provider: str | None = None,
        retry_after: float | None = None,
    ) -> None:
        self.retry_after = retry_after
        super().__init__(message, status_code=429, provider=provider)


class AuthenticationError(ProviderError):
    """Invalid or missing credentials (401/403)."""

    default_code = "AUTHENTICATION_ERROR"

    def __init__(
        self,
        message: str = "Authentication failed",
        *,
        status_code: int = 401,
        provider: str | None = None,
    ) -> None:
        super().__init__(message, status_code=status_code, provider=provider)


class ServerError(ProviderError):
    """Provider answered with a 5xx status."""

    default_code = "SERVER_ERROR"

    def __init__(
        self,
        message: str = "Internal server error",
        *,
        status_code: int = 500,
        provider: str | None = None,
    ) -> None:
        super().__init__(message, status_code=status_code, provider=provider)


class TemporarilyUnavailableError(ServerError):
    """503: retried in place, never a reason to switch provider."""

    default_code = "SERVICE_UNAVAILABLE"

    def __init__(
        self,
        message: str = "Service unavailable",
        *,
        provider: str | None = None,
    ) -> None:
        super().__init__(message, status_code=503, provider=provider)


class ModelUnavailableError(ProviderError):
    """The requested model is not served by the provider."""

    default_code = "MODEL_UNAVAILABLE"

    def __init__(self, model: str, *, provider: str | None = None) -> None:
        self.model = model
        where = f" by {provider}" if provider else ""
        super().__init__(
            f"Model unavailable: {model!r} is not served{where}",
            status_code=404,
            provider=provider,
        )


class ProviderUnavailableError(ProviderError):
    """The health monitor refused traffic to the provider (circuit open)."""

    default_code = "PROVIDER_UNAVAILABLE"

    def __init__(self, provider: str) -> None:
        super().__init__(
            f"Provider {provider!r} unavailable: circuit open",
            provider=provider,
        )


# ── Terminal / admission errors ──────────────────────────────
class AllProvidersExhaustedError(ResilienceError):
    """Raised when retries, fallback candidates and degradation are all spent."""

    def __init__(
        self,
        *,
        attempts: int,
        last_error: BaseException | None,
        errors: dict[str, str] | None = None,
    ) -> None:
        self.attempts = attempts
        self.last_error = last_error
        self.errors = errors or {}
        last = str(last_error) if last_error is not None else "no provider attempted"
        super().__init__(
            f"All providers exhausted after {attempts} attempts. Last error: {last}",
            code="ALL_PROVIDERS_EXHAUSTED",
        )


class RateLimitExceededError(ResilienceError):
    """Client-side admission check rejected the request."""

    def __init__(self, key: str, *, reset_at: float, retry_after: float) -> None:
        self.key = key
        self.reset_at = reset_at
        self.retry_after = retry_after
        super().__init__(
            f"Too Many Requests: retry after {retry_after:.0f}s",
            code="RATE_LIMITED",
        )


class ServiceUnavailableError(ResilienceError):
    """Synthesised when a degraded service has no fallback left."""

    def __init__(self, service: str) -> None:
        self.service = service
        super().__init__(
            f"Service {service} is unavailable",
            code="SERVICE_UNAVAILABLE",
        )


def error_details(exc: BaseException) -> dict[str, Any]:
    """Flatten an exception into log-safe fields."""
    details: dict[str, Any] = {
        "error_type": type(exc).__name__,
        "error": str(exc),
    }
    if isinstance(exc, ResilienceError):
        details["code"] = exc.code
    if isinstance(exc, ProviderError):
        details["status_code"] = exc.status_code
        details["provider"] = exc.provider
    return details
