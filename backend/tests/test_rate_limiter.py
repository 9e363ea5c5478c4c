"""Tests for the token-bucket rate limiter."""

import asyncio

import pytest

from signal_hub.clock import ManualClock
from signal_hub.resilience import TokenBucketRateLimiter


class TestTokenBucket:
    """Tests for token accounting and waiting."""

    @pytest.mark.asyncio
    async def test_burst_is_free(self):
        clock = ManualClock()
        limiter = TokenBucketRateLimiter(60, burst_size=5, clock=clock)

        waits = [await limiter.wait_for_token() for _ in range(5)]

        assert waits == [0.0] * 5
        assert clock.sleeps == []
        assert limiter.status().tokens == pytest.approx(0.0)

    @pytest.mark.asyncio
    async def test_requests_beyond_burst_are_paced(self):
        """N > burst requests at R/min take at least (N - burst) / R minutes."""
        clock = ManualClock()
        start = clock.time()
        limiter = TokenBucketRateLimiter(60, burst_size=5, clock=clock)

        waits = await asyncio.gather(*(limiter.wait_for_token() for _ in range(8)))

        elapsed = clock.time() - start
        assert elapsed >= (8 - 5) * 60 / 60 - 1e-9
        assert sum(waits) == pytest.approx(3.0)
        assert sorted(waits)[:5] == [0.0] * 5

    @pytest.mark.asyncio
    async def test_burst_defaults_to_rate(self):
        clock = ManualClock()
        limiter = TokenBucketRateLimiter(10, clock=clock)
        assert limiter.burst_size == 10

        for _ in range(10):
            await limiter.wait_for_token()
        waited = await limiter.wait_for_token()

        # 10/min = one token every 6 seconds
        assert waited == pytest.approx(6.0)

    @pytest.mark.asyncio
    async def test_proportional_refill(self):
        clock = ManualClock()
        limiter = TokenBucketRateLimiter(60, burst_size=4, clock=clock)
        for _ in range(4):
            await limiter.wait_for_token()

        clock.advance(2.5)

        assert limiter.status().tokens == pytest.approx(2.5)

    @pytest.mark.asyncio
    async def test_full_refill_after_window(self):
        clock = ManualClock()
        limiter = TokenBucketRateLimiter(30, burst_size=3, clock=clock)
        for _ in range(3):
            await limiter.wait_for_token()

        clock.advance(60)

        status = limiter.status()
        assert status.tokens == 3.0
        assert status.requests_per_minute == 30
        assert status.burst_size == 3

    def test_refill_capped_at_burst(self):
        clock = ManualClock()
        limiter = TokenBucketRateLimiter(600, burst_size=2, clock=clock)
        clock.advance(30)
        assert limiter.status().tokens == 2.0

    def test_invalid_rate(self):
        with pytest.raises(ValueError):
            TokenBucketRateLimiter(0)
