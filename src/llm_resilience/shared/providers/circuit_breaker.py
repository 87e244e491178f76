"""Circuit breaker — derives a provider's circuit state from its health record.

State machine (time-driven, evaluated lazily on every query):
    CLOSED    → (N consecutive failures, or failed probe) → OPEN
    OPEN      → (cooldown / probe TTL elapsed)            → HALF_OPEN
    HALF_OPEN → (next attempt or probe succeeds)          → CLOSED
    HALF_OPEN → (next attempt or probe fails)             → OPEN

There are no timers: the state is a pure function of the record and the
current time, so every reader sees the same verdict for the same instant.
"""

from __future__ import annotations

from llm_resilience.shared.providers.types import CircuitState, HealthRecord


def derive_circuit_state(
    record: HealthRecord,
    now: float,
    threshold: int,
    cooldown: float,
    probe_ttl: float,
) -> CircuitState:
    """Compute the circuit state of ``record`` at monotonic time ``now``.

    Args:
        record:    Health record of the provider.
        now:       Current monotonic time (seconds).
        threshold: Consecutive failures that open the circuit.
        cooldown:  Seconds after the last failure before a trial is allowed.
        probe_ttl: Seconds a failed probe verdict keeps the circuit open.
    """
    if record.forced_unavailable:
        return CircuitState.OPEN

    if record.probe_failed_at is not None and now - record.probe_failed_at < probe_ttl:
        return CircuitState.OPEN

    if record.consecutive_failures >= threshold:
        if record.last_failure_at is None or now - record.last_failure_at < cooldown:
            return CircuitState.OPEN
        return CircuitState.HALF_OPEN

    # An expired failed probe still needs one good call or probe to close
    if record.probe_failed_at is not None:
        return CircuitState.HALF_OPEN

    return CircuitState.CLOSED


def allows_traffic(state: CircuitState) -> bool:
    """A half-open circuit lets the next trial request through."""
    return state is not CircuitState.OPEN
