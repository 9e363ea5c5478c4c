"""Wrap indicator sources with rate limiting, retry and API monitoring."""

from __future__ import annotations

import logging
import time
from typing import TYPE_CHECKING, Sequence

from signal_core.engines.protocol import IndicatorSource
from signal_core.exceptions import CircuitOpenError
from signal_core.models import IndicatorSample
from signal_hub.clock import Clock, SystemClock
from signal_hub.resilience.monitor import ApiMonitor
from signal_hub.resilience.rate_limiter import TokenBucketRateLimiter
from signal_hub.resilience.retry import RetryHandler, status_of

if TYPE_CHECKING:
    from signal_hub.resilience_config import ApiPolicy, ResilienceConfig

logger = logging.getLogger(__name__)

RATE_LIMITED_STATUS = 429


class GuardedSource:
    """An ``IndicatorSource`` whose fetches pass through the resilience stack.

    Every attempt waits for a rate-limiter token; retryable failures are
    retried per the API's policy; each attempt is recorded in the monitor.
    While the monitor reports the API as broken, fetches fail fast with
    ``CircuitOpenError`` until ``circuit_reset_after`` seconds have passed
    since the last recorded request.
    """

    def __init__(
        self,
        api: str,
        source: IndicatorSource,
        limiter: TokenBucketRateLimiter,
        retry: RetryHandler,
        monitor: ApiMonitor,
        circuit_reset_after: float = 60.0,
        clock: Clock | None = None,
    ):
        self.api = api
        self.source = source
        self.limiter = limiter
        self.retry = retry
        self.monitor = monitor
        self.circuit_reset_after = circuit_reset_after
        self.clock = clock or SystemClock()

    def _check_circuit(self) -> None:
        if not self.monitor.should_circuit_break(self.api):
            return
        metrics = self.monitor.get_metrics(self.api)
        last = metrics.last_request_time if metrics else None
        if last is not None:
            idle = (self.clock.now() - last).total_seconds()
            if idle >= self.circuit_reset_after:
                logger.info(f"Circuit half-open for {self.api} after {idle:.0f}s idle")
                return
        raise CircuitOpenError(self.api, self.monitor.health_score(self.api))

    async def fetch(self, indicators: Sequence[str]) -> dict[str, IndicatorSample]:
        self._check_circuit()

        async def attempt() -> dict[str, IndicatorSample]:
            await self.limiter.wait_for_token()
            start = time.perf_counter()
            try:
                result = await self.source.fetch(indicators)
            except Exception as e:
                self.monitor.record_request(
                    self.api,
                    success=False,
                    response_time_ms=(time.perf_counter() - start) * 1000,
                    at=self.clock.now(),
                    rate_limited=status_of(e) == RATE_LIMITED_STATUS,
                )
                raise
            self.monitor.record_request(
                self.api,
                success=True,
                response_time_ms=(time.perf_counter() - start) * 1000,
                at=self.clock.now(),
            )
            return result

        return await self.retry.run(attempt, context=f"{self.api} fetch")


class ResilienceRegistry:
    """One rate limiter and retry handler per external API, built lazily."""

    def __init__(
        self,
        config: ResilienceConfig,
        monitor: ApiMonitor | None = None,
        clock: Clock | None = None,
    ):
        self.config = config
        self.monitor = monitor or ApiMonitor()
        self.clock = clock or SystemClock()
        self._limiters: dict[str, TokenBucketRateLimiter] = {}
        self._retries: dict[str, RetryHandler] = {}

    def policy(self, api: str) -> ApiPolicy:
        return self.config.policy_for(api)

    def limiter(self, api: str) -> TokenBucketRateLimiter:
        limiter = self._limiters.get(api)
        if limiter is None:
            policy = self.policy(api)
            limiter = self._limiters[api] = TokenBucketRateLimiter(
                policy.requests_per_minute, policy.burst_size, clock=self.clock
            )
        return limiter

    def retry_handler(self, api: str) -> RetryHandler:
        handler = self._retries.get(api)
        if handler is None:
            handler = self._retries[api] = RetryHandler(
                self.policy(api).retry, sleep=self.clock.sleep
            )
        return handler

    def guard(self, api: str, source: IndicatorSource) -> GuardedSource:
        """Wrap *source* so its fetches obey the policy configured for *api*."""
        return GuardedSource(
            api,
            source,
            limiter=self.limiter(api),
            retry=self.retry_handler(api),
            monitor=self.monitor,
            circuit_reset_after=self.policy(api).circuit_reset_after,
            clock=self.clock,
        )
