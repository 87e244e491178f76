"""Tests for settings validation and gateway wiring."""

from __future__ import annotations

import pytest
from pydantic import ValidationError

from llm_resilience.config import get_settings
from llm_resilience.dependencies import (
    DEFAULT_CANDIDATES,
    build_candidates,
    create_gateway,
    default_candidate,
    static_model_listing,
)


class TestSettings:
    def test_defaults(self) -> None:
        s = get_settings()
        assert s.retry_max_attempts == 3
        assert s.circuit_failure_threshold == 3
        assert s.max_fallback_attempts == 3
        assert s.fallback_on_exhausted_retries is True
        assert s.excluded_status_codes == ()
        assert s.priority_order == []

    def test_env_override(self, monkeypatch) -> None:
        monkeypatch.setenv("LLM_RESILIENCE_MAX_FALLBACK_ATTEMPTS", "5")
        monkeypatch.setenv("LLM_RESILIENCE_PROVIDER_PRIORITY", "Ollama, OpenRouter")
        s = get_settings()
        assert s.max_fallback_attempts == 5
        assert s.priority_order == ["ollama", "openrouter"]

    def test_parsed_helpers(self) -> None:
        s = get_settings(retry_excluded_status_codes="501, 505", log_level="debug")
        assert s.excluded_status_codes == (501, 505)
        assert s.log_level == "DEBUG"

    @pytest.mark.parametrize(
        "overrides",
        [
            {"retry_jitter_ratio": 1.5},
            {"retry_excluded_status_codes": "501,abc"},
            {"retry_max_attempts": 0},
            {"circuit_failure_threshold": 0},
            {"retry_base_delay_s": 10.0, "retry_max_delay_s": 5.0},
        ],
    )
    def test_invalid_values_rejected(self, overrides: dict) -> None:
        with pytest.raises(ValidationError):
            get_settings(**overrides)


class TestCandidates:
    def test_default_order(self) -> None:
        candidates = build_candidates(get_settings())
        assert [c.key for c in candidates] == [c.key for c in DEFAULT_CANDIDATES]
        assert candidates[0].provider == "Anthropic"

    def test_threshold_applied(self) -> None:
        candidates = build_candidates(get_settings(circuit_failure_threshold=7))
        assert {c.max_consecutive_failures for c in candidates} == {7}

    def test_priority_override_moves_providers_first(self) -> None:
        candidates = build_candidates(get_settings(provider_priority="ollama,openrouter"))
        providers = [c.provider for c in candidates]

        assert providers[:4] == ["Ollama"] * 4
        assert providers[4:10] == ["OpenRouter"] * 6
        # Unlisted providers keep their relative order
        assert providers[10:] == ["Anthropic", "LMStudio", "OpenAI", "OpenAI"]
        assert [c.model for c in candidates[:2]] == ["llama3.2:latest", "qwen2.5:latest"]

    def test_default_candidate_reuses_configured_entry(self) -> None:
        s = get_settings()
        candidates = build_candidates(s)
        assert default_candidate(s, candidates) is candidates[0]

    def test_default_candidate_outside_chain(self) -> None:
        s = get_settings(default_provider="Google", default_model="gemini-1.5-pro")
        candidates = build_candidates(s)
        default = default_candidate(s, candidates)
        assert default.key == ("gemini-1.5-pro", "Google")
        assert default.priority > max(c.priority for c in candidates)

    def test_static_listing_excludes_local_runtimes(self) -> None:
        listing = static_model_listing(build_candidates(get_settings()))
        assert "Ollama" not in listing
        assert "LMStudio" not in listing
        assert "anthropic/claude-3-haiku" in listing["OpenRouter"]


class TestCreateGateway:
    @pytest.mark.asyncio
    async def test_wires_components_from_settings(self) -> None:
        s = get_settings(max_fallback_attempts=2, rate_limit_max_requests=4)
        gateway = create_gateway(s, probers={}, listers={})

        assert gateway.selector.default is not None
        assert gateway.selector.default.provider == "Anthropic"
        assert len(gateway.selector.candidates) == len(DEFAULT_CANDIDATES)
        assert gateway.limiter is not None
        assert gateway.limiter.max_requests == 4
        assert "OpenRouter" in gateway.get_provider_status()
        await gateway.aclose()

    @pytest.mark.asyncio
    async def test_builds_http_probes_when_not_injected(self) -> None:
        gateway = create_gateway(get_settings())
        try:
            assert "Anthropic" in gateway.health.probers
            assert "Ollama" in gateway.health.probers
        finally:
            await gateway.aclose()
