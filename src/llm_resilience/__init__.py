"""Resilience layer for interchangeable LLM completion providers."""

from __future__ import annotations

__version__ = "0.1.0"

from llm_resilience.config import ResilienceSettings, get_settings
from llm_resilience.dependencies import build_candidates, create_gateway
from llm_resilience.shared.providers import (
    ExecutionResult,
    ProviderCandidate,
    RequestContext,
    ResilienceHooks,
    ResilientProviderGateway,
    RetryPolicy,
)

__all__ = [
    "ExecutionResult",
    "ProviderCandidate",
    "RequestContext",
    "ResilienceHooks",
    "ResilienceSettings",
    "ResilientProviderGateway",
    "RetryPolicy",
    "__version__",
    "build_candidates",
    "create_gateway",
    "get_settings",
]
