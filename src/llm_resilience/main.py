"""FastAPI application entry-point for the provider admin API.

Assembles routers, middleware, exception handlers, and lifecycle hooks.
"""

from __future__ import annotations

from collections.abc import AsyncIterator
from contextlib import asynccontextmanager

import structlog
from fastapi import FastAPI
from fastapi.responses import ORJSONResponse

from llm_resilience import __version__
from llm_resilience.adapters.inbound.rest.routers import health_router, providers_router
from llm_resilience.config import ResilienceSettings, get_settings
from llm_resilience.dependencies import create_gateway
from llm_resilience.shared.errors import register_exception_handlers
from llm_resilience.shared.middleware import (
    LoggingMiddleware,
    RateLimitMiddleware,
    RequestIdMiddleware,
)
from llm_resilience.shared.observability import configure_logging
from llm_resilience.shared.providers.gateway import ResilientProviderGateway
from llm_resilience.shared.providers.quota import RateLimiter

logger = structlog.get_logger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[None]:
    """Application lifecycle — startup & shutdown hooks."""
    settings: ResilienceSettings = app.state.settings
    gateway: ResilientProviderGateway = app.state.gateway
    configure_logging(log_level=settings.log_level, json_logs=settings.json_logs)

    gateway.start()
    app.state.http_limiter.start()
    logger.info("application_starting", providers=len(gateway.selector.candidates))

    yield

    await app.state.http_limiter.stop()
    await gateway.aclose()
    logger.info("application_shutdown")


def create_app(
    settings: ResilienceSettings | None = None,
    *,
    gateway: ResilientProviderGateway | None = None,
) -> FastAPI:
    """Application factory — creates a fully configured FastAPI instance."""
    settings = settings or get_settings()

    app = FastAPI(
        title="LLM Resilience",
        description="Provider health, circuit state and admin overrides.",
        version=__version__,
        default_response_class=ORJSONResponse,
        lifespan=lifespan,
    )

    app.state.settings = settings
    app.state.gateway = gateway or create_gateway(settings)
    app.state.http_limiter = RateLimiter(
        max_requests=settings.rate_limit_max_requests,
        window_seconds=settings.rate_limit_window_s,
        sweep_interval=settings.rate_limit_sweep_interval_s,
    )

    # ── Middleware (first added = innermost) ─────────────────
    app.add_middleware(RateLimitMiddleware, limiter=app.state.http_limiter)
    app.add_middleware(LoggingMiddleware)
    app.add_middleware(RequestIdMiddleware)

    register_exception_handlers(app)

    app.include_router(health_router)
    app.include_router(providers_router)

    return app
