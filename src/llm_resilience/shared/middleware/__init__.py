"""FastAPI middleware stack — request ID, logging, rate limiting."""

from __future__ import annotations

import time
import uuid
from collections.abc import Awaitable, Callable

import structlog
from starlette.middleware.base import BaseHTTPMiddleware
from starlette.requests import Request
from starlette.responses import Response

from llm_resilience.domain.exceptions import RateLimitExceededError
from llm_resilience.shared.errors import rate_limited_response
from llm_resilience.shared.providers.quota import RateLimiter, client_ip, rate_limit_key

logger = structlog.get_logger(__name__)


class RequestIdMiddleware(BaseHTTPMiddleware):
    """Injects a unique X-Request-ID header into every request/response."""

    async def dispatch(
        self,
        request: Request,
        call_next: Callable[[Request], Awaitable[Response]],
    ) -> Response:
        request_id = request.headers.get("X-Request-ID", uuid.uuid4().hex)
        structlog.contextvars.bind_contextvars(request_id=request_id)

        response = await call_next(request)
        response.headers["X-Request-ID"] = request_id

        structlog.contextvars.unbind_contextvars("request_id")
        return response


class LoggingMiddleware(BaseHTTPMiddleware):
    """Logs every request with method, path, status, and duration."""

    async def dispatch(
        self,
        request: Request,
        call_next: Callable[[Request], Awaitable[Response]],
    ) -> Response:
        start = time.monotonic()
        response = await call_next(request)
        duration = time.monotonic() - start

        logger.info(
            "http_request",
            method=request.method,
            path=request.url.path,
            status=response.status_code,
            duration_ms=round(float(duration * 1000), 2),
        )
        return response


class RateLimitMiddleware(BaseHTTPMiddleware):
    """Per-client fixed-window limiter keyed by forwarded IP and user agent."""

    def __init__(self, app: object, limiter: RateLimiter, prefix: str = "http") -> None:  # type: ignore[override]
        super().__init__(app)  # type: ignore[arg-type]
        self._limiter = limiter
        self._prefix = prefix

    async def dispatch(
        self,
        request: Request,
        call_next: Callable[[Request], Awaitable[Response]],
    ) -> Response:
        forwarded = request.headers.get("x-forwarded-for")
        ip = client_ip(forwarded) if forwarded else (request.client.host if request.client else None)
        key = rate_limit_key(self._prefix, ip, request.headers.get("user-agent"))

        try:
            self._limiter.enforce(key)
        except RateLimitExceededError as exc:
            return rate_limited_response(exc)
        return await call_next(request)
