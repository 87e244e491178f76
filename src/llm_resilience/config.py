"""LLM resilience — configuration."""

from __future__ import annotations

from typing import Any

from pydantic import field_validator, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class ResilienceSettings(BaseSettings):
    """Validated configuration loaded from ``LLM_RESILIENCE_*`` env vars / .env file.

    All durations are in seconds.
    """

    model_config = SettingsConfigDict(
        env_prefix="LLM_RESILIENCE_",
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # ── Logging ──────────────────────────────────────────────
    log_level: str = "INFO"
    json_logs: bool = False

    # ── Retry ────────────────────────────────────────────────
    retry_max_attempts: int = 3
    retry_base_delay_s: float = 1.0
    retry_max_delay_s: float = 30.0
    retry_backoff_multiplier: float = 2.0
    retry_jitter_ratio: float = 0.5
    # 5xx codes never retried (comma-separated), e.g. "501,505"
    retry_excluded_status_codes: str = ""

    # ── Health / circuit breaker ─────────────────────────────
    circuit_failure_threshold: int = 3
    circuit_cooldown_s: float = 60.0
    probe_timeout_s: float = 10.0
    probe_cache_ttl_s: float = 300.0
    active_probing: bool = True
    # Failures of the whole provider chain before a service is marked down
    service_failure_threshold: int = 1

    # ── Fallback ─────────────────────────────────────────────
    max_fallback_attempts: int = 3
    fallback_on_exhausted_retries: bool = True
    default_provider: str = "Anthropic"
    default_model: str = "claude-3-5-sonnet-latest"
    # Provider order override, e.g. "ollama,openrouter,anthropic"
    provider_priority: str = ""

    # ── Rate limiting ────────────────────────────────────────
    rate_limit_max_requests: int = 20
    rate_limit_window_s: float = 60.0
    rate_limit_sweep_interval_s: float = 60.0

    # ── Degradation cache ────────────────────────────────────
    cache_max_entries: int = 1000
    cache_default_ttl_s: float = 300.0

    # ── Gateway ──────────────────────────────────────────────
    request_timeout_s: float = 30.0
    model_list_ttl_s: float = 300.0

    # ── Provider endpoints / credentials ─────────────────────
    anthropic_api_key: str = ""
    anthropic_base_url: str = "https://api.anthropic.com/v1"
    openai_api_key: str = ""
    openai_base_url: str = "https://api.openai.com/v1"
    openrouter_api_key: str = ""
    openrouter_base_url: str = "https://openrouter.ai/api/v1"
    google_api_key: str = ""
    google_base_url: str = "https://generativelanguage.googleapis.com/v1beta"
    ollama_base_url: str = "http://localhost:11434"
    lmstudio_base_url: str = "http://localhost:1234/v1"

    # ── Derived helpers ──────────────────────────────────────
    @property
    def excluded_status_codes(self) -> tuple[int, ...]:
        return tuple(
            int(code) for code in self.retry_excluded_status_codes.split(",") if code.strip()
        )

    @property
    def priority_order(self) -> list[str]:
        return [p.strip().lower() for p in self.provider_priority.split(",") if p.strip()]

    @field_validator("log_level")
    @classmethod
    def _upper_log_level(cls, v: str) -> str:
        return v.upper()

    @field_validator("retry_jitter_ratio")
    @classmethod
    def _validate_jitter(cls, v: float) -> float:
        if not 0.0 <= v <= 1.0:
            raise ValueError("retry_jitter_ratio must be within [0, 1]")
        return v

    @field_validator("retry_excluded_status_codes")
    @classmethod
    def _validate_status_codes(cls, v: str) -> str:
        for code in v.split(","):
            if code.strip() and not code.strip().isdigit():
                raise ValueError(f"invalid status code: {code!r}")
        return v

    @field_validator(
        "retry_max_attempts",
        "circuit_failure_threshold",
        "service_failure_threshold",
        "rate_limit_max_requests",
        "cache_max_entries",
    )
    @classmethod
    def _at_least_one(cls, v: int) -> int:
        if v < 1:
            raise ValueError("must be >= 1")
        return v

    @model_validator(mode="after")
    def _check_delays(self) -> ResilienceSettings:
        if self.retry_base_delay_s > self.retry_max_delay_s:
            raise ValueError("retry_base_delay_s must not exceed retry_max_delay_s")
        return self


def get_settings(**overrides: Any) -> ResilienceSettings:
    """Factory that allows test-time overrides."""
    return ResilienceSettings(**overrides)
