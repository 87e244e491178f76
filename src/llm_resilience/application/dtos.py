"""Data Transfer Objects — Pydantic models for API boundaries.

DTOs handle serialisation and validation for the REST adapter; the
resilience core itself works with plain dataclasses.
"""

from __future__ import annotations

from pydantic import BaseModel, Field

from llm_resilience.shared.providers.types import ProbeResult, ProviderStatus


# ═══════════════════════════════════════════════════════════════
#  Common
# ═══════════════════════════════════════════════════════════════
class ErrorResponse(BaseModel):
    code: str
    message: str
    details: dict | None = None  # type: ignore[type-arg]


class HealthResponse(BaseModel):
    status: str = "ok"
    version: str = "0.1.0"
    providers: dict[str, bool] = Field(default_factory=dict)


# ═══════════════════════════════════════════════════════════════
#  Providers
# ═══════════════════════════════════════════════════════════════
class ProviderStatusResponse(BaseModel):
    provider: str
    is_available: bool
    consecutive_failures: int
    circuit_state: str
    last_failure: float | None = None
    last_error: str | None = None
    last_response_time_ms: float | None = None
    last_checked_at: float | None = None

    @classmethod
    def from_status(cls, status: ProviderStatus) -> ProviderStatusResponse:
        return cls(**status.as_dict())


class AvailabilityUpdateRequest(BaseModel):
    is_available: bool


class ProbeResponse(BaseModel):
    provider: str
    success: bool
    response_time_ms: float
    error: str | None = None
    is_available: bool

    @classmethod
    def from_result(cls, provider: str, result: ProbeResult, is_available: bool) -> ProbeResponse:
        return cls(
            provider=provider,
            success=result.success,
            response_time_ms=round(result.response_time_ms, 2),
            error=result.error,
            is_available=is_available,
        )
