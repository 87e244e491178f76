"""Health, Providers — REST routers."""

from __future__ import annotations

from fastapi import APIRouter, Depends, HTTPException, status
from prometheus_client import CONTENT_TYPE_LATEST, generate_latest
from starlette.responses import Response

from llm_resilience import __version__
from llm_resilience.application.dtos import (
    AvailabilityUpdateRequest,
    HealthResponse,
    ProbeResponse,
    ProviderStatusResponse,
)
from llm_resilience.dependencies import get_gateway
from llm_resilience.shared.providers.gateway import ResilientProviderGateway


# ═══════════════════════════════════════════════════════════════
#  Health
# ═══════════════════════════════════════════════════════════════
health_router = APIRouter(tags=["Health"])


@health_router.get("/health", response_model=HealthResponse)
async def health_check(
    gateway: ResilientProviderGateway = Depends(get_gateway),
) -> HealthResponse:
    """Liveness plus the passive availability of every tracked provider."""
    providers = {name: s.is_available for name, s in gateway.get_provider_status().items()}
    overall = "ok" if any(providers.values()) or not providers else "degraded"
    return HealthResponse(status=overall, version=__version__, providers=providers)


@health_router.get("/metrics")
async def prometheus_metrics() -> Response:
    return Response(
        content=generate_latest(),
        media_type=CONTENT_TYPE_LATEST,
    )


# ═══════════════════════════════════════════════════════════════
#  Provider Health
# ═══════════════════════════════════════════════════════════════
providers_router = APIRouter(prefix="/providers", tags=["Provider Health"])


@providers_router.get("/status", response_model=list[ProviderStatusResponse])
async def provider_status(
    gateway: ResilientProviderGateway = Depends(get_gateway),
) -> list[ProviderStatusResponse]:
    """Availability snapshots for all tracked providers."""
    statuses = gateway.get_provider_status()
    return [ProviderStatusResponse.from_status(statuses[name]) for name in sorted(statuses)]


@providers_router.put("/{provider}/availability", response_model=ProviderStatusResponse)
async def set_availability(
    provider: str,
    body: AvailabilityUpdateRequest,
    gateway: ResilientProviderGateway = Depends(get_gateway),
) -> ProviderStatusResponse:
    """Admin: force a provider down, or lift the override and clear its failures."""
    gateway.set_provider_availability(provider, body.is_available)
    return ProviderStatusResponse.from_status(gateway.get_provider_status()[provider])


@providers_router.post("/{provider}/probe", response_model=ProbeResponse)
async def probe_provider(
    provider: str,
    gateway: ResilientProviderGateway = Depends(get_gateway),
) -> ProbeResponse:
    """Run the provider's health probe now, bypassing the cached verdict."""
    result = await gateway.probe_provider(provider)
    if result is None:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail=f"No health probe registered for provider '{provider}'",
        )
    return ProbeResponse.from_result(provider, result, gateway.health.is_available(provider))
