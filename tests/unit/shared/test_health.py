"""Tests for circuit-state derivation and the HealthMonitor."""

from __future__ import annotations

import asyncio

import pytest

from llm_resilience.domain.exceptions import ServerError
from llm_resilience.shared.providers.circuit_breaker import derive_circuit_state
from llm_resilience.shared.providers.health import HealthMonitor, ProberRegistry
from llm_resilience.shared.providers.hooks import ResilienceHooks
from llm_resilience.shared.providers.types import (
    CircuitState,
    HealthRecord,
    ProbeResult,
    ProviderCandidate,
)


# ═══════════════════════════════════════════════════════════════
#  derive_circuit_state
# ═══════════════════════════════════════════════════════════════
class TestDeriveCircuitState:
    def test_closed_below_threshold(self) -> None:
        rec = HealthRecord("p", consecutive_failures=2, last_failure_at=100.0)
        assert derive_circuit_state(rec, 100.0, 3, 30.0, 300.0) is CircuitState.CLOSED

    def test_open_at_threshold_within_cooldown(self) -> None:
        rec = HealthRecord("p", consecutive_failures=3, last_failure_at=100.0)
        assert derive_circuit_state(rec, 129.9, 3, 30.0, 300.0) is CircuitState.OPEN

    def test_half_open_after_cooldown(self) -> None:
        rec = HealthRecord("p", consecutive_failures=3, last_failure_at=100.0)
        assert derive_circuit_state(rec, 130.0, 3, 30.0, 300.0) is CircuitState.HALF_OPEN

    def test_failed_probe_open_within_ttl(self) -> None:
        rec = HealthRecord("p", probe_failed_at=100.0)
        assert derive_circuit_state(rec, 399.0, 3, 30.0, 300.0) is CircuitState.OPEN
        assert derive_circuit_state(rec, 400.0, 3, 30.0, 300.0) is CircuitState.HALF_OPEN

    def test_expired_probe_does_not_mask_passive_failures(self) -> None:
        rec = HealthRecord("p", consecutive_failures=3, last_failure_at=500.0, probe_failed_at=100.0)
        assert derive_circuit_state(rec, 510.0, 3, 30.0, 300.0) is CircuitState.OPEN
        assert derive_circuit_state(rec, 530.0, 3, 30.0, 300.0) is CircuitState.HALF_OPEN

    def test_forced_unavailable_always_open(self) -> None:
        rec = HealthRecord("p", forced_unavailable=True)
        assert derive_circuit_state(rec, 1e9, 3, 30.0, 300.0) is CircuitState.OPEN

    def test_pure_function_does_not_mutate(self) -> None:
        rec = HealthRecord("p", consecutive_failures=5, last_failure_at=0.0)
        before = rec.copy()
        derive_circuit_state(rec, 1000.0, 3, 30.0, 300.0)
        assert rec == before


# ═══════════════════════════════════════════════════════════════
#  HealthMonitor: passive
# ═══════════════════════════════════════════════════════════════
class TestHealthMonitorPassive:
    def test_unknown_provider_available(self, clock) -> None:
        monitor = HealthMonitor(clock=clock)
        assert monitor.is_available("never-seen")
        assert "never-seen" in monitor.get_provider_status()

    def test_opens_after_threshold_and_stays_open_until_cooldown(self, clock) -> None:
        monitor = HealthMonitor(failure_threshold=3, cooldown=60.0, clock=clock)
        for _ in range(3):
            monitor.record_failure("alpha", ServerError())

        status = monitor.get_provider_status()["alpha"]
        assert not status.is_available
        assert status.consecutive_failures == 3
        assert status.circuit_state is CircuitState.OPEN
        assert status.last_failure == clock.now

        clock.advance(59.9)
        assert not monitor.is_available("alpha")

        clock.advance(0.1)
        assert monitor.is_available("alpha")
        assert monitor.circuit_state("alpha") is CircuitState.HALF_OPEN
        # Failures are kept until a success is recorded
        assert monitor.get_record("alpha").consecutive_failures == 3

    def test_failure_in_half_open_reopens(self, clock) -> None:
        monitor = HealthMonitor(failure_threshold=2, cooldown=10.0, clock=clock)
        monitor.record_failure("alpha")
        monitor.record_failure("alpha")
        clock.advance(10.0)
        assert monitor.circuit_state("alpha") is CircuitState.HALF_OPEN

        monitor.record_failure("alpha")
        assert monitor.circuit_state("alpha") is CircuitState.OPEN

    def test_success_resets_immediately(self, clock) -> None:
        monitor = HealthMonitor(failure_threshold=2, cooldown=60.0, clock=clock)
        monitor.record_failure("alpha")
        monitor.record_failure("alpha")
        assert not monitor.is_available("alpha")

        monitor.record_success("alpha", latency_ms=42.0)
        status = monitor.get_provider_status()["alpha"]
        assert status.is_available
        assert status.consecutive_failures == 0
        assert status.last_response_time_ms == 42.0

    def test_per_provider_threshold_from_candidates(self, clock) -> None:
        monitor = HealthMonitor(failure_threshold=5, clock=clock)
        monitor.register_candidates(
            [
                ProviderCandidate("alpha", "a1", max_consecutive_failures=4),
                ProviderCandidate("alpha", "a2", max_consecutive_failures=2),
            ]
        )
        monitor.record_failure("alpha")
        monitor.record_failure("alpha")
        assert not monitor.is_available("alpha")

    def test_snapshots_are_copies(self, clock) -> None:
        monitor = HealthMonitor(clock=clock)
        rec = monitor.get_record("alpha")
        rec.consecutive_failures = 99
        assert monitor.get_record("alpha").consecutive_failures == 0

    def test_records_last_error(self, clock) -> None:
        monitor = HealthMonitor(clock=clock)
        monitor.record_failure("alpha", ServerError("upstream exploded"))
        assert monitor.get_provider_status()["alpha"].last_error == "upstream exploded"


# ═══════════════════════════════════════════════════════════════
#  HealthMonitor: manual override and notifications
# ═══════════════════════════════════════════════════════════════
class TestHealthMonitorOverride:
    def test_forced_unavailable_persists_past_cooldown(self, clock) -> None:
        monitor = HealthMonitor(cooldown=1.0, clock=clock)
        monitor.set_provider_availability("alpha", False)
        clock.advance(10_000)
        assert not monitor.is_available("alpha")

        monitor.record_success("alpha")
        assert not monitor.is_available("alpha")

        monitor.set_provider_availability("alpha", True)
        assert monitor.is_available("alpha")

    def test_setting_available_resets_failures(self, clock) -> None:
        monitor = HealthMonitor(failure_threshold=1, clock=clock)
        monitor.record_failure("alpha")
        monitor.set_provider_availability("alpha", True)
        status = monitor.get_provider_status()["alpha"]
        assert status.is_available
        assert status.consecutive_failures == 0

    def test_notifications_on_confirmed_transitions_only(self, clock) -> None:
        events: list[tuple[str, str]] = []
        hooks = ResilienceHooks(
            on_service_down=lambda name: events.append(("down", name)),
            on_service_up=lambda name: events.append(("up", name)),
        )
        monitor = HealthMonitor(failure_threshold=2, cooldown=5.0, hooks=hooks, clock=clock)

        monitor.record_failure("alpha")
        assert events == []
        monitor.record_failure("alpha")
        monitor.record_failure("alpha")
        assert events == [("down", "alpha")]

        clock.advance(5.0)
        assert monitor.is_available("alpha")
        assert events == [("down", "alpha")]

        monitor.record_success("alpha")
        monitor.record_success("alpha")
        assert events == [("down", "alpha"), ("up", "alpha")]

    @pytest.mark.asyncio
    async def test_coroutine_hooks_are_scheduled(self, clock) -> None:
        seen: list[str] = []

        async def on_down(name: str) -> None:
            seen.append(name)

        monitor = HealthMonitor(failure_threshold=1, hooks=ResilienceHooks(on_service_down=on_down), clock=clock)
        monitor.record_failure("alpha")
        await asyncio.sleep(0)
        assert seen == ["alpha"]


# ═══════════════════════════════════════════════════════════════
#  HealthMonitor: active probing
# ═══════════════════════════════════════════════════════════════
class TestHealthMonitorProbing:
    @pytest.mark.asyncio
    async def test_probe_result_is_cached(self, clock, make_prober) -> None:
        prober = make_prober(ProbeResult(success=True, response_time_ms=12.0))
        monitor = HealthMonitor(probers={"alpha": prober}, probe_cache_ttl=300.0, clock=clock)

        assert await monitor.check_available("alpha")
        assert await monitor.check_available("alpha")
        assert prober.calls == 1

        clock.advance(300.0)
        assert await monitor.check_available("alpha")
        assert prober.calls == 2

    @pytest.mark.asyncio
    async def test_failed_probe_marks_unavailable_for_ttl(self, clock, make_prober) -> None:
        prober = make_prober(
            ProbeResult(success=False, response_time_ms=3.0, error="HTTP 500"),
            ProbeResult(success=True, response_time_ms=3.0),
        )
        monitor = HealthMonitor(probers={"alpha": prober}, probe_cache_ttl=120.0, clock=clock)

        assert not await monitor.check_available("alpha")
        assert not monitor.is_available("alpha")
        assert monitor.get_provider_status()["alpha"].last_error == "HTTP 500"

        clock.advance(60.0)
        assert not await monitor.check_available("alpha")
        assert prober.calls == 1

        clock.advance(60.0)
        assert await monitor.check_available("alpha")
        assert prober.calls == 2

    @pytest.mark.asyncio
    async def test_passive_failures_reopen_after_stale_failed_probe(self, clock, make_prober) -> None:
        prober = make_prober(ProbeResult(success=False, response_time_ms=2.0, error="HTTP 502"))
        monitor = HealthMonitor(failure_threshold=3, cooldown=60.0, probers={"alpha": prober}, clock=clock)
        await monitor.probe("alpha")
        clock.advance(301.0)
        assert monitor.is_available("alpha")

        for _ in range(5):
            monitor.record_failure("alpha", ServerError())

        status = monitor.get_provider_status()["alpha"]
        assert not status.is_available
        assert status.consecutive_failures == 5
        assert status.circuit_state is CircuitState.OPEN

        clock.advance(60.0)
        assert monitor.is_available("alpha")

    @pytest.mark.asyncio
    async def test_probe_exception_counts_as_failure(self, clock, make_prober) -> None:
        monitor = HealthMonitor(probers={"alpha": make_prober(RuntimeError("dns failure"))}, clock=clock)
        result = await monitor.probe("alpha")
        assert result is not None
        assert not result.success
        assert "dns failure" in (result.error or "")
        assert not monitor.is_available("alpha")

    @pytest.mark.asyncio
    async def test_probe_timeout(self, clock) -> None:
        class HangingProber:
            async def probe(self) -> ProbeResult:
                await asyncio.sleep(10)
                return ProbeResult(success=True, response_time_ms=0.0)

        monitor = HealthMonitor(probers={"alpha": HangingProber()}, probe_timeout=0.01, clock=clock)
        result = await monitor.probe("alpha")
        assert result is not None
        assert not result.success
        assert "timeout" in (result.error or "").lower()

    @pytest.mark.asyncio
    async def test_force_bypasses_cache(self, clock, make_prober) -> None:
        prober = make_prober()
        monitor = HealthMonitor(probers=ProberRegistry({"alpha": prober}), clock=clock)
        await monitor.probe("alpha")
        await monitor.probe("alpha", force=True)
        assert prober.calls == 2

    @pytest.mark.asyncio
    async def test_no_prober_returns_none(self, clock) -> None:
        monitor = HealthMonitor(clock=clock)
        assert await monitor.probe("alpha") is None
        assert await monitor.check_available("alpha")

    @pytest.mark.asyncio
    async def test_passive_probing_disabled(self, clock, make_prober) -> None:
        prober = make_prober(ProbeResult(success=False, response_time_ms=1.0))
        monitor = HealthMonitor(probers={"alpha": prober}, active_probing=False, clock=clock)
        assert await monitor.check_available("alpha")
        assert prober.calls == 0

    @pytest.mark.asyncio
    async def test_good_probe_within_cooldown_keeps_circuit_open(self, clock, make_prober) -> None:
        monitor = HealthMonitor(
            failure_threshold=1, cooldown=60.0, probers={"alpha": make_prober()}, clock=clock
        )
        monitor.record_failure("alpha")
        await monitor.probe("alpha", force=True)
        assert not monitor.is_available("alpha")

        clock.advance(60.0)
        await monitor.probe("alpha", force=True)
        assert monitor.is_available("alpha")
        assert monitor.get_record("alpha").consecutive_failures == 0

    @pytest.mark.asyncio
    async def test_concurrent_checks_share_one_probe(self, clock) -> None:
        calls = 0

        class SlowProber:
            async def probe(self) -> ProbeResult:
                nonlocal calls
                calls += 1
                await asyncio.sleep(0.01)
                return ProbeResult(success=True, response_time_ms=10.0)

        monitor = HealthMonitor(probers={"alpha": SlowProber()}, clock=clock)
        results = await asyncio.gather(*(monitor.check_available("alpha") for _ in range(5)))
        assert all(results)
        assert calls == 1
