"""Prometheus metrics for the resilience layer."""

from __future__ import annotations

from prometheus_client import Counter, Gauge, Histogram


# ── Retry metrics ────────────────────────────────────────────
RETRY_ATTEMPTS = Counter(
    "llm_resilience_retry_attempts_total",
    "Retries scheduled after a failed attempt",
    ["context"],
)

RETRY_OUTCOMES = Counter(
    "llm_resilience_retry_outcomes_total",
    "Completed retry loops by outcome",
    ["outcome"],  # success / exhausted / not_retryable
)

# ── Provider health metrics ──────────────────────────────────
PROVIDER_AVAILABLE = Gauge(
    "llm_resilience_provider_available",
    "1 when the provider is considered available, 0 otherwise",
    ["provider"],
)

CIRCUIT_TRANSITIONS = Counter(
    "llm_resilience_circuit_transitions_total",
    "Provider availability transitions",
    ["provider", "state"],
)

PROBE_LATENCY = Histogram(
    "llm_resilience_probe_latency_seconds",
    "Active health probe latency",
    ["provider", "result"],
    buckets=(0.05, 0.1, 0.25, 0.5, 1.0, 2.5, 5.0, 10.0),
)

# ── Fallback / gateway metrics ───────────────────────────────
PROVIDER_SWITCHES = Counter(
    "llm_resilience_provider_switches_total",
    "Fallback switches from one provider to another",
    ["from_provider", "to_provider"],
)

EXECUTIONS_TOTAL = Counter(
    "llm_resilience_executions_total",
    "Resilient executions by final outcome",
    ["service", "outcome"],
)

# ── Admission / degradation metrics ──────────────────────────
RATE_LIMIT_DECISIONS = Counter(
    "llm_resilience_rate_limit_decisions_total",
    "Client-side rate limit decisions",
    ["allowed"],
)

DEGRADED_RESPONSES = Counter(
    "llm_resilience_degraded_responses_total",
    "Responses served by the degradation chain",
    ["service", "source"],
)

COALESCED_REQUESTS = Counter(
    "llm_resilience_coalesced_requests_total",
    "Callers that joined an in-flight request instead of starting one",
)
