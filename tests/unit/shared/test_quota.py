"""Tests for the fixed-window RateLimiter and key helpers."""

from __future__ import annotations

import asyncio

import pytest

from llm_resilience.domain.exceptions import RateLimitExceededError
from llm_resilience.shared.providers.quota import RateLimiter, client_ip, rate_limit_key


class TestRateLimitKey:
    def test_joins_parts(self) -> None:
        assert rate_limit_key("chat", "10.0.0.1", "curl/8.0") == "chat:10.0.0.1:curl/8.0"

    def test_missing_parts_become_unknown(self) -> None:
        assert rate_limit_key("chat", None, "") == "chat:unknown:unknown"

    def test_parts_truncated(self) -> None:
        key = rate_limit_key("chat", "x" * 500)
        assert key == "chat:" + "x" * 50

    @pytest.mark.parametrize(
        ("header", "expected"),
        [
            ("203.0.113.7, 10.0.0.1", "203.0.113.7"),
            ("  198.51.100.2 ", "198.51.100.2"),
            ("", "unknown"),
            (None, "unknown"),
        ],
    )
    def test_client_ip(self, header: str | None, expected: str) -> None:
        assert client_ip(header) == expected


# ═══════════════════════════════════════════════════════════════
#  RateLimiter
# ═══════════════════════════════════════════════════════════════
class TestRateLimiter:
    def test_rejects_invalid_config(self) -> None:
        with pytest.raises(ValueError):
            RateLimiter(max_requests=0)
        with pytest.raises(ValueError):
            RateLimiter(window_seconds=0)

    def test_allows_up_to_max_then_rejects(self, clock) -> None:
        limiter = RateLimiter(max_requests=5, window_seconds=60.0, clock=clock)

        decisions = [limiter.check_limit("user") for _ in range(5)]
        assert all(d.allowed for d in decisions)
        assert [d.remaining for d in decisions] == [4, 3, 2, 1, 0]

        sixth = limiter.check_limit("user")
        assert not sixth.allowed
        assert sixth.count == 6
        assert sixth.reset_at == clock.now + 60.0

    def test_window_resets(self, clock) -> None:
        limiter = RateLimiter(max_requests=5, window_seconds=60.0, clock=clock)
        for _ in range(6):
            limiter.check_limit("user")

        clock.advance(60.0)
        decision = limiter.check_limit("user")
        assert decision.allowed
        assert decision.count == 1

    def test_keys_are_independent(self, clock) -> None:
        limiter = RateLimiter(max_requests=1, clock=clock)
        assert limiter.check_limit("a").allowed
        assert not limiter.check_limit("a").allowed
        assert limiter.check_limit("b").allowed

    def test_enforce_raises_with_retry_after(self, clock) -> None:
        limiter = RateLimiter(max_requests=1, window_seconds=30.0, clock=clock)
        limiter.enforce("k")
        clock.advance(10.0)

        with pytest.raises(RateLimitExceededError) as info:
            limiter.enforce("k")
        assert info.value.retry_after == pytest.approx(20.0)
        assert info.value.code == "RATE_LIMITED"

    def test_remaining_time(self, clock) -> None:
        limiter = RateLimiter(window_seconds=60.0, clock=clock)
        assert limiter.remaining_time("k") == 0.0
        limiter.check_limit("k")
        clock.advance(15.0)
        assert limiter.remaining_time("k") == pytest.approx(45.0)
        clock.advance(100.0)
        assert limiter.remaining_time("k") == 0.0

    def test_sweep_drops_expired_windows(self, clock) -> None:
        limiter = RateLimiter(window_seconds=60.0, clock=clock)
        limiter.check_limit("old")
        clock.advance(30.0)
        limiter.check_limit("new")
        clock.advance(30.0)

        assert limiter.sweep() == 1
        assert len(limiter) == 1
        assert limiter.remaining_time("new") == pytest.approx(30.0)

    @pytest.mark.asyncio
    async def test_background_sweeper_start_stop(self, clock) -> None:
        limiter = RateLimiter(window_seconds=1.0, sweep_interval=0.01, clock=clock)
        limiter.check_limit("k")
        clock.advance(5.0)

        limiter.start()
        limiter.start()
        for _ in range(50):
            if len(limiter) == 0:
                break
            await asyncio.sleep(0.01)
        await limiter.stop()

        assert len(limiter) == 0
        await limiter.stop()
