"""HTTP health probes and model listers for the supported provider families.

Each adapter hits the provider's cheapest authenticated endpoint (its model
listing) with a shared ``httpx.AsyncClient``.  A 2xx answer means healthy;
the same response doubles as the dynamic model listing.
"""

from __future__ import annotations

import time
from abc import abstractmethod
from typing import Any, Callable

import httpx
import structlog

from llm_resilience.config import ResilienceSettings
from llm_resilience.domain.exceptions import AuthenticationError
from llm_resilience.ports.outbound import ModelLister, Prober
from llm_resilience.shared.providers.classification import describe_error
from llm_resilience.shared.providers.types import ProbeResult

logger = structlog.get_logger(__name__)

ANTHROPIC_VERSION = "2023-06-01"


class HttpModelEndpoint(Prober, ModelLister):
    """Base adapter: one GET against a model-listing endpoint."""

    requires_key = True

    def __init__(
        self,
        client: httpx.AsyncClient,
        *,
        provider: str,
        base_url: str,
        api_key: str = "",
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._client = client
        self._provider = provider
        self._base_url = base_url.rstrip("/")
        self._api_key = api_key
        self._clock = clock

    @property
    def provider(self) -> str:
        return self._provider

    @abstractmethod
    async def _fetch(self) -> httpx.Response: ...

    @abstractmethod
    def _parse_models(self, payload: Any) -> list[str]: ...

    # ── Prober ───────────────────────────────────────────────
    async def probe(self) -> ProbeResult:
        if self.requires_key and not self._api_key:
            return ProbeResult(success=False, response_time_ms=0.0, error="API key not configured")

        started = self._clock()
        error: str | None = None
        try:
            response = await self._fetch()
            response.raise_for_status()
        except httpx.HTTPStatusError as exc:
            error = f"{self._provider} responded with status {exc.response.status_code}"
        except httpx.HTTPError as exc:
            error = describe_error(exc)
        elapsed_ms = (self._clock() - started) * 1000

        if error is None:
            logger.debug("probe_ok", provider=self._provider, response_time_ms=round(elapsed_ms, 1))
        return ProbeResult(success=error is None, response_time_ms=elapsed_ms, error=error)

    # ── ModelLister ──────────────────────────────────────────
    async def list_models(self) -> list[str]:
        if self.requires_key and not self._api_key:
            raise AuthenticationError("API key not configured", provider=self._provider)
        response = await self._fetch()
        response.raise_for_status()
        return self._parse_models(response.json())


class OpenAICompatibleProber(HttpModelEndpoint):
    """``GET {base}/models`` with a Bearer token (OpenAI, OpenRouter, LM Studio)."""

    def __init__(self, client: httpx.AsyncClient, *, requires_key: bool = True, **kwargs: Any) -> None:
        super().__init__(client, **kwargs)
        self.requires_key = requires_key

    async def _fetch(self) -> httpx.Response:
        headers = {"Authorization": f"Bearer {self._api_key}"} if self._api_key else {}
        return await self._client.get(f"{self._base_url}/models", headers=headers)

    def _parse_models(self, payload: Any) -> list[str]:
        return [item["id"] for item in payload.get("data", []) if "id" in item]


class AnthropicProber(HttpModelEndpoint):
    """``GET {base}/models`` with ``x-api-key`` + ``anthropic-version``."""

    async def _fetch(self) -> httpx.Response:
        return await self._client.get(
            f"{self._base_url}/models",
            headers={"x-api-key": self._api_key, "anthropic-version": ANTHROPIC_VERSION},
        )

    def _parse_models(self, payload: Any) -> list[str]:
        return [item["id"] for item in payload.get("data", []) if "id" in item]


class GoogleProber(HttpModelEndpoint):
    """``GET {base}/models`` with ``x-goog-api-key`` on the Generative Language API."""

    async def _fetch(self) -> httpx.Response:
        return await self._client.get(
            f"{self._base_url}/models", headers={"x-goog-api-key": self._api_key}
        )

    def _parse_models(self, payload: Any) -> list[str]:
        names = (item.get("name", "") for item in payload.get("models", []))
        return [name.removeprefix("models/") for name in names if name]


class OllamaProber(HttpModelEndpoint):
    """``GET {base}/api/tags`` on a local Ollama daemon."""

    requires_key = False

    async def _fetch(self) -> httpx.Response:
        return await self._client.get(f"{self._base_url}/api/tags")

    def _parse_models(self, payload: Any) -> list[str]:
        return [item["name"] for item in payload.get("models", []) if "name" in item]


def build_default_endpoints(
    settings: ResilienceSettings, client: httpx.AsyncClient
) -> dict[str, HttpModelEndpoint]:
    """One probe/lister per provider family, keyed by provider name."""
    return {
        "Anthropic": AnthropicProber(
            client,
            provider="Anthropic",
            base_url=settings.anthropic_base_url,
            api_key=settings.anthropic_api_key,
        ),
        "OpenAI": OpenAICompatibleProber(
            client,
            provider="OpenAI",
            base_url=settings.openai_base_url,
            api_key=settings.openai_api_key,
        ),
        "OpenRouter": OpenAICompatibleProber(
            client,
            provider="OpenRouter",
            base_url=settings.openrouter_base_url,
            api_key=settings.openrouter_api_key,
        ),
        "Google": GoogleProber(
            client,
            provider="Google",
            base_url=settings.google_base_url,
            api_key=settings.google_api_key,
        ),
        "Ollama": OllamaProber(
            client,
            provider="Ollama",
            base_url=settings.ollama_base_url,
        ),
        "LMStudio": OpenAICompatibleProber(
            client,
            provider="LMStudio",
            base_url=settings.lmstudio_base_url,
            requires_key=False,
        ),
    }


__all__ = [
    "AnthropicProber",
    "GoogleProber",
    "HttpModelEndpoint",
    "OllamaProber",
    "OpenAICompatibleProber",
    "build_default_endpoints",
]
