"""Health monitor — per-provider availability from passive failure counting
and cached active probes.

Passive: every failed call increments ``consecutive_failures``; at the
provider's threshold the circuit opens until the cooldown elapses.
Active: a registered ``Prober`` is run under a timeout and its verdict is
cached for ``probe_cache_ttl`` seconds so bursts of traffic never cause
probe storms.  Both feed the same ``HealthRecord``; the circuit state is
re-derived from it lazily on every query (see ``circuit_breaker``).
"""

from __future__ import annotations

import asyncio
import threading
import time
from typing import Callable, Iterable, Mapping

import structlog

from llm_resilience.ports.outbound import Prober
from llm_resilience.shared.observability.metrics import (
    CIRCUIT_TRANSITIONS,
    PROBE_LATENCY,
    PROVIDER_AVAILABLE,
)
from llm_resilience.shared.providers.circuit_breaker import allows_traffic, derive_circuit_state
from llm_resilience.shared.providers.classification import describe_error
from llm_resilience.shared.providers.coalescer import RequestCoalescer
from llm_resilience.shared.providers.hooks import ResilienceHooks
from llm_resilience.shared.providers.types import (
    CircuitState,
    HealthRecord,
    ProbeResult,
    ProviderCandidate,
    ProviderStatus,
)

logger = structlog.get_logger(__name__)


class ProberRegistry:
    """Maps provider names to their ``Prober`` implementation."""

    def __init__(self, probers: Mapping[str, Prober] | None = None) -> None:
        self._probers: dict[str, Prober] = dict(probers or {})

    def register(self, provider: str, prober: Prober) -> None:
        self._probers[provider] = prober

    def get(self, provider: str) -> Prober | None:
        return self._probers.get(provider)

    def __contains__(self, provider: object) -> bool:
        return provider in self._probers

    def __len__(self) -> int:
        return len(self._probers)


class HealthMonitor:
    """Thread-safe availability tracker for a set of named providers or services."""

    def __init__(
        self,
        *,
        failure_threshold: int = 3,
        cooldown: float = 60.0,
        probe_timeout: float = 10.0,
        probe_cache_ttl: float = 300.0,
        active_probing: bool = True,
        probers: ProberRegistry | Mapping[str, Prober] | None = None,
        hooks: ResilienceHooks | None = None,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        if failure_threshold < 1:
            raise ValueError("failure_threshold must be >= 1")
        self._default_threshold = failure_threshold
        self._cooldown = cooldown
        self._probe_timeout = probe_timeout
        self._probe_ttl = probe_cache_ttl
        self._active_probing = active_probing
        if isinstance(probers, ProberRegistry):
            self._probers = probers
        else:
            self._probers = ProberRegistry(probers)
        self._hooks = hooks or ResilienceHooks()
        self._clock = clock

        self._records: dict[str, HealthRecord] = {}
        self._thresholds: dict[str, int] = {}
        self._lock = threading.Lock()
        self._probe_flights = RequestCoalescer()

    # ── Registration ─────────────────────────────────────────
    def register(self, name: str, *, failure_threshold: int | None = None) -> None:
        with self._lock:
            self._ensure(name)
            if failure_threshold is not None:
                self._thresholds[name] = failure_threshold

    def register_candidates(self, candidates: Iterable[ProviderCandidate]) -> None:
        """Track every candidate's provider, using the strictest threshold seen."""
        for c in candidates:
            with self._lock:
                self._ensure(c.provider)
                current = self._thresholds.get(c.provider)
                if current is None or c.max_consecutive_failures < current:
                    self._thresholds[c.provider] = c.max_consecutive_failures

    @property
    def probers(self) -> ProberRegistry:
        return self._probers

    # ── Passive recording ────────────────────────────────────
    def record_failure(self, name: str, error: BaseException | str | None = None) -> None:
        now = self._clock()
        with self._lock:
            rec = self._ensure(name)
            rec.consecutive_failures += 1
            rec.last_failure_at = now
            if error is not None:
                rec.last_error = str(error)
            state = self._state(name, rec, now)
            went_down = self._confirm(rec, allows_traffic(state))

        logger.debug(
            "health_failure_recorded",
            name=name,
            consecutive_failures=rec.consecutive_failures,
            circuit_state=state.value,
        )
        if went_down is False:
            self._announce(name, available=False, state=state)

    def record_success(self, name: str, latency_ms: float | None = None) -> None:
        with self._lock:
            rec = self._ensure(name)
            rec.consecutive_failures = 0
            rec.probe_failed_at = None
            if latency_ms is not None:
                rec.last_response_time_ms = latency_ms
            changed = self._confirm(rec, not rec.forced_unavailable)

        if changed is True:
            self._announce(name, available=True, state=CircuitState.CLOSED)

    # ── Queries ──────────────────────────────────────────────
    def circuit_state(self, name: str) -> CircuitState:
        now = self._clock()
        with self._lock:
            rec = self._ensure(name)
            return self._state(name, rec, now)

    def is_available(self, name: str) -> bool:
        """Passive verdict plus the cached probe verdict; never performs I/O."""
        return allows_traffic(self.circuit_state(name))

    async def check_available(self, name: str) -> bool:
        """Like ``is_available`` but refreshes the probe verdict when it is stale."""
        if not self.is_available(name):
            return False
        if self._active_probing and name in self._probers:
            await self.probe(name)
        return self.is_available(name)

    def get_record(self, name: str) -> HealthRecord:
        with self._lock:
            return self._ensure(name).copy()

    def get_provider_status(self) -> dict[str, ProviderStatus]:
        now = self._clock()
        with self._lock:
            snapshot = {
                name: (rec.copy(), self._state(name, rec, now))
                for name, rec in self._records.items()
            }
        return {
            name: ProviderStatus(
                provider=name,
                is_available=allows_traffic(state),
                consecutive_failures=rec.consecutive_failures,
                last_failure=rec.last_failure_at,
                circuit_state=state,
                last_error=rec.last_error,
                last_response_time_ms=rec.last_response_time_ms,
                last_checked_at=rec.last_checked_at,
            )
            for name, (rec, state) in snapshot.items()
        }

    # ── Admin override ───────────────────────────────────────
    def set_provider_availability(self, name: str, is_available: bool) -> None:
        """Force a provider down, or lift the override and clear its failures."""
        with self._lock:
            rec = self._ensure(name)
            if is_available:
                rec.forced_unavailable = False
                rec.consecutive_failures = 0
                rec.probe_failed_at = None
            else:
                rec.forced_unavailable = True
            changed = self._confirm(rec, is_available)

        logger.info("provider_availability_overridden", name=name, is_available=is_available)
        if changed is not None:
            state = CircuitState.CLOSED if is_available else CircuitState.OPEN
            self._announce(name, available=is_available, state=state)

    # ── Active probing ───────────────────────────────────────
    async def probe(self, name: str, force: bool = False) -> ProbeResult | None:
        """Run (or reuse the cached result of) the provider's probe.

        Returns ``None`` when no prober is registered for ``name``.
        Concurrent callers share one in-flight probe.
        """
        prober = self._probers.get(name)
        if prober is None:
            return None

        if not force:
            cached = self._cached_probe(name)
            if cached is not None:
                return cached

        return await self._probe_flights.coalesce(name, lambda: self._run_probe(name, prober))

    def _cached_probe(self, name: str) -> ProbeResult | None:
        now = self._clock()
        with self._lock:
            rec = self._ensure(name)
            if rec.last_checked_at is None or now - rec.last_checked_at >= self._probe_ttl:
                return None
            failed = rec.probe_failed_at is not None
            return ProbeResult(
                success=not failed,
                response_time_ms=rec.last_response_time_ms or 0.0,
                error=rec.last_error if failed else None,
            )

    async def _run_probe(self, name: str, prober: Prober) -> ProbeResult:
        started = self._clock()
        try:
            result = await asyncio.wait_for(prober.probe(), timeout=self._probe_timeout)
        except asyncio.TimeoutError:
            result = ProbeResult(
                success=False,
                response_time_ms=(self._clock() - started) * 1000,
                error=f"Health check timeout after {self._probe_timeout}s",
            )
        except Exception as exc:
            result = ProbeResult(
                success=False,
                response_time_ms=(self._clock() - started) * 1000,
                error=describe_error(exc),
            )

        PROBE_LATENCY.labels(
            provider=name, result="success" if result.success else "failure"
        ).observe(result.response_time_ms / 1000)
        self._apply_probe(name, result)
        return result

    def _apply_probe(self, name: str, result: ProbeResult) -> None:
        now = self._clock()
        with self._lock:
            rec = self._ensure(name)
            rec.last_checked_at = now
            rec.last_response_time_ms = result.response_time_ms
            if result.success:
                rec.probe_failed_at = None
                # Inside the cooldown a good probe does not close a passively opened circuit
                if self._state(name, rec, now) is not CircuitState.OPEN:
                    rec.consecutive_failures = 0
            else:
                rec.probe_failed_at = now
                rec.last_error = result.error
            state = self._state(name, rec, now)
            changed = self._confirm(rec, allows_traffic(state))

        if result.success:
            logger.debug("health_probe_passed", name=name, response_time_ms=round(result.response_time_ms, 1))
        else:
            logger.warning("health_probe_failed", name=name, error=result.error)
        if changed is not None:
            self._announce(name, available=changed, state=state)

    # ── Internals ────────────────────────────────────────────
    def _ensure(self, name: str) -> HealthRecord:
        """Caller holds lock."""
        rec = self._records.get(name)
        if rec is None:
            rec = HealthRecord(provider=name)
            self._records[name] = rec
            PROVIDER_AVAILABLE.labels(provider=name).set(1)
        return rec

    def _state(self, name: str, rec: HealthRecord, now: float) -> CircuitState:
        """Caller holds lock."""
        return derive_circuit_state(
            rec,
            now,
            self._thresholds.get(name, self._default_threshold),
            self._cooldown,
            self._probe_ttl,
        )

    @staticmethod
    def _confirm(rec: HealthRecord, available: bool) -> bool | None:
        """Store a confirmed verdict; returns it if it changed, else ``None``.

        Caller holds lock.
        """
        if rec.is_available == available:
            return None
        rec.is_available = available
        return available

    def _announce(self, name: str, *, available: bool, state: CircuitState) -> None:
        PROVIDER_AVAILABLE.labels(provider=name).set(1 if available else 0)
        CIRCUIT_TRANSITIONS.labels(provider=name, state=state.value).inc()
        if available:
            logger.info("provider_available", name=name)
            self._hooks.emit("on_service_up", name)
        else:
            logger.warning("provider_unavailable", name=name, circuit_state=state.value)
            self._hooks.emit("on_service_down", name)
