"""Token-bucket rate limiter for external API calls."""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass

from signal_hub.clock import Clock, SystemClock

logger = logging.getLogger(__name__)

# Refill window: rates are configured per minute
REFILL_INTERVAL = 60.0


@dataclass(frozen=True)
class RateLimiterStatus:
    tokens: float
    requests_per_minute: int
    burst_size: int


class TokenBucketRateLimiter:
    """Token bucket allowing bursts up to ``burst_size``.

    Tokens refill proportionally to elapsed time, capped at the burst
    size. Callers wait in FIFO order behind a lock, so long-run
    throughput never exceeds ``requests_per_minute``.
    """

    def __init__(
        self,
        requests_per_minute: int,
        burst_size: int | None = None,
        clock: Clock | None = None,
    ):
        if requests_per_minute <= 0:
            raise ValueError(f"requests_per_minute must be positive, got {requests_per_minute}")
        self.requests_per_minute = requests_per_minute
        self.burst_size = burst_size or requests_per_minute
        self.clock = clock or SystemClock()
        self.tokens = float(self.burst_size)
        self.last_refill = self.clock.time()
        self._lock = asyncio.Lock()

    @property
    def tokens_per_second(self) -> float:
        return self.requests_per_minute / REFILL_INTERVAL

    def _refill(self) -> None:
        now = self.clock.time()
        elapsed = now - self.last_refill
        if elapsed <= 0:
            return
        if elapsed >= REFILL_INTERVAL:
            self.tokens = float(self.burst_size)
        else:
            self.tokens = min(
                float(self.burst_size), self.tokens + elapsed * self.tokens_per_second
            )
        self.last_refill = now

    async def wait_for_token(self) -> float:
        """Take one token, waiting for a refill if the bucket is empty.

        Returns:
            Seconds spent waiting (0.0 when a token was available).
        """
        waited = 0.0
        async with self._lock:
            while True:
                self._refill()
                if self.tokens >= 1:
                    self.tokens -= 1
                    return waited
                wait_time = (1 - self.tokens) / self.tokens_per_second
                logger.debug(f"Rate limit reached, waiting {wait_time:.3f}s")
                await self.clock.sleep(wait_time)
                waited += wait_time

    def status(self) -> RateLimiterStatus:
        self._refill()
        return RateLimiterStatus(
            tokens=self.tokens,
            requests_per_minute=self.requests_per_minute,
            burst_size=self.burst_size,
        )
