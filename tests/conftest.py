"""Shared test fixtures."""

from __future__ import annotations

import random

import pytest
import structlog

from llm_resilience.ports.outbound import ModelLister, Prober
from llm_resilience.shared.providers.types import ProbeResult, ProviderCandidate


class FakeClock:
    """Manually advanced monotonic clock."""

    def __init__(self, start: float = 1000.0) -> None:
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


class SleepRecorder:
    """Async sleep replacement that records delays and advances a clock."""

    def __init__(self, clock: FakeClock | None = None) -> None:
        self.delays: list[float] = []
        self._clock = clock

    async def sleep(self, seconds: float) -> None:
        self.delays.append(seconds)
        if self._clock is not None:
            self._clock.advance(seconds)


class StubProber(Prober):
    def __init__(self, *results: ProbeResult | BaseException) -> None:
        self._results = list(results) or [ProbeResult(success=True, response_time_ms=5.0)]
        self.calls = 0

    async def probe(self) -> ProbeResult:
        self.calls += 1
        result = self._results[min(self.calls, len(self._results)) - 1]
        if isinstance(result, BaseException):
            raise result
        return result


class StubLister(ModelLister):
    def __init__(self, models: list[str] | BaseException) -> None:
        self._models = models
        self.calls = 0

    async def list_models(self) -> list[str]:
        self.calls += 1
        if isinstance(self._models, BaseException):
            raise self._models
        return list(self._models)


@pytest.fixture(autouse=True)
def reset_structlog():
    """Undo any ``configure_logging`` an app fixture applied."""
    yield
    structlog.reset_defaults()


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def sleeper(clock: FakeClock) -> SleepRecorder:
    return SleepRecorder(clock)


@pytest.fixture
def rng() -> random.Random:
    return random.Random(1234)


@pytest.fixture
def candidates() -> list[ProviderCandidate]:
    return [
        ProviderCandidate("alpha", "alpha-large", priority=1),
        ProviderCandidate("beta", "beta-chat", priority=2),
        ProviderCandidate("beta", "beta-mini", priority=3),
        ProviderCandidate("gamma", "gamma-1", priority=4),
    ]


@pytest.fixture
def make_prober() -> type[StubProber]:
    return StubProber


@pytest.fixture
def make_lister() -> type[StubLister]:
    return StubLister
