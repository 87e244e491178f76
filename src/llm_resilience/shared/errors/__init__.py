"""Global exception handlers — map resilience errors to HTTP responses."""

from __future__ import annotations

import math
from datetime import datetime, timedelta, timezone

import structlog
from fastapi import FastAPI, Request
from fastapi.responses import ORJSONResponse

from llm_resilience.domain.exceptions import (
    AllProvidersExhaustedError,
    AuthenticationError,
    RateLimitExceededError,
    ResilienceError,
    ServiceUnavailableError,
)

logger = structlog.get_logger(__name__)


def rate_limit_headers(retry_after: float) -> dict[str, str]:
    """``Retry-After`` (whole seconds) and ``X-RateLimit-Reset`` (ISO-8601, UTC)."""
    reset = datetime.now(timezone.utc) + timedelta(seconds=retry_after)
    return {
        "Retry-After": str(math.ceil(retry_after)),
        "X-RateLimit-Reset": reset.isoformat(timespec="seconds"),
    }


def rate_limited_response(exc: RateLimitExceededError) -> ORJSONResponse:
    return ORJSONResponse(
        status_code=429,
        content={
            "code": exc.code,
            "message": "Too Many Requests",
            "retryable": True,
            "retry_after": math.ceil(exc.retry_after),
        },
        headers=rate_limit_headers(exc.retry_after),
    )


def register_exception_handlers(app: FastAPI) -> None:
    """Register all resilience→HTTP exception mappings."""

    @app.exception_handler(RateLimitExceededError)
    async def handle_rate_limited(request: Request, exc: RateLimitExceededError) -> ORJSONResponse:
        return rate_limited_response(exc)

    @app.exception_handler(AllProvidersExhaustedError)
    async def handle_exhausted(request: Request, exc: AllProvidersExhaustedError) -> ORJSONResponse:
        logger.error("providers_exhausted_http", attempts=exc.attempts, message=exc.message)
        return ORJSONResponse(
            status_code=503,
            content={
                "code": exc.code,
                "message": exc.message,
                "attempts": exc.attempts,
                "errors": exc.errors,
            },
        )

    @app.exception_handler(ServiceUnavailableError)
    async def handle_unavailable(request: Request, exc: ServiceUnavailableError) -> ORJSONResponse:
        return ORJSONResponse(
            status_code=503,
            content={"code": exc.code, "message": exc.message},
        )

    @app.exception_handler(AuthenticationError)
    async def handle_authn(request: Request, exc: AuthenticationError) -> ORJSONResponse:
        return ORJSONResponse(
            status_code=401,
            content={"code": exc.code, "message": exc.message},
        )

    @app.exception_handler(ResilienceError)
    async def handle_resilience(request: Request, exc: ResilienceError) -> ORJSONResponse:
        logger.error("provider_error_http", code=exc.code, message=exc.message)
        return ORJSONResponse(
            status_code=502,
            content={"code": exc.code, "message": exc.message},
        )

    @app.exception_handler(Exception)
    async def handle_unexpected(request: Request, exc: Exception) -> ORJSONResponse:
        logger.exception("unhandled_exception", error=str(exc))
        return ORJSONResponse(
            status_code=500,
            content={
                "code": "INTERNAL_ERROR",
                "message": "An unexpected error occurred",
            },
        )
