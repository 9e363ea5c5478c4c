"""Tests for API monitoring and guarded indicator sources."""

from datetime import datetime, timezone
from unittest.mock import AsyncMock

import pytest

from signal_core.exceptions import CircuitOpenError, RetryExhaustedError, TransientError
from signal_core.models import IndicatorSample
from signal_hub.clock import ManualClock
from signal_hub.resilience import ApiMonitor, ResilienceRegistry, RetryPolicy
from signal_hub.resilience_config import ApiPolicy, ResilienceConfig


def _samples(**values: float) -> dict[str, IndicatorSample]:
    ts = datetime(2024, 1, 1, tzinfo=timezone.utc)
    return {s: IndicatorSample(symbol=s, timestamp=ts, value=v) for s, v in values.items()}


# ---------------------------------------------------------------------------
# ApiMonitor
# ---------------------------------------------------------------------------

class TestApiMonitor:
    """Tests for request statistics and health scores."""

    def test_unknown_api_is_healthy(self):
        monitor = ApiMonitor()
        assert monitor.health_score("fred") == 1.0
        assert monitor.should_circuit_break("fred") is False
        assert monitor.overall_health() == 1.0

    def test_counters_and_running_mean(self):
        monitor = ApiMonitor()
        now = datetime(2024, 1, 1, tzinfo=timezone.utc)
        monitor.record_request("fred", True, 100.0, now)
        monitor.record_request("fred", False, 300.0, now, rate_limited=True)

        metrics = monitor.get_metrics("fred")
        assert metrics.total_requests == 2
        assert metrics.successful_requests == 1
        assert metrics.failed_requests == 1
        assert metrics.rate_limit_hits == 1
        assert metrics.average_response_time == pytest.approx(200.0)
        assert metrics.last_request_time == now

    def test_health_score_penalties(self):
        monitor = ApiMonitor()
        now = datetime(2024, 1, 1, tzinfo=timezone.utc)
        for _ in range(3):
            monitor.record_request("fmp", True, 2500.0, now)
        monitor.record_request("fmp", False, 2500.0, now, rate_limited=True)

        # 0.75 success - 0.25 rate limited - 0.5 * 0.2 latency
        assert monitor.health_score("fmp") == pytest.approx(0.4)

    def test_circuit_needs_enough_requests(self):
        monitor = ApiMonitor()
        now = datetime(2024, 1, 1, tzinfo=timezone.utc)
        for _ in range(9):
            monitor.record_request("polygon", False, 10.0, now)
        assert monitor.should_circuit_break("polygon") is False

        monitor.record_request("polygon", False, 10.0, now)
        assert monitor.should_circuit_break("polygon") is True

    def test_reset(self):
        monitor = ApiMonitor()
        now = datetime(2024, 1, 1, tzinfo=timezone.utc)
        monitor.record_request("a", False, 1.0, now)
        monitor.record_request("b", False, 1.0, now)

        monitor.reset("a")
        assert set(monitor.all_metrics()) == {"b"}
        monitor.reset()
        assert monitor.all_metrics() == {}


# ---------------------------------------------------------------------------
# GuardedSource / ResilienceRegistry
# ---------------------------------------------------------------------------

@pytest.fixture
def clock():
    return ManualClock()


@pytest.fixture
def resilience(clock):
    config = ResilienceConfig(
        default=ApiPolicy(requests_per_minute=60, retry=RetryPolicy(max_retries=2)),
        apis={"fred": ApiPolicy(requests_per_minute=120, burst_size=2)},
    )
    return ResilienceRegistry(config, clock=clock)


class TestResilienceRegistry:
    """Tests for per-API component construction."""

    def test_components_are_per_api_and_cached(self, resilience):
        assert resilience.limiter("fred") is resilience.limiter("fred")
        assert resilience.limiter("fred") is not resilience.limiter("finnhub")
        assert resilience.limiter("fred").burst_size == 2
        assert resilience.limiter("finnhub").requests_per_minute == 60
        assert resilience.retry_handler("finnhub").policy.max_retries == 2

    @pytest.mark.asyncio
    async def test_guarded_fetch_success(self, resilience):
        source = AsyncMock()
        source.fetch.return_value = _samples(VIX=18.0)
        guarded = resilience.guard("fred", source)

        result = await guarded.fetch(["VIX"])

        assert result["VIX"].value == 18.0
        source.fetch.assert_awaited_once_with(["VIX"])
        assert resilience.monitor.get_metrics("fred").successful_requests == 1
        assert resilience.limiter("fred").status().tokens == pytest.approx(1.0)

    @pytest.mark.asyncio
    async def test_transient_failure_retried(self, resilience, clock):
        source = AsyncMock()
        source.fetch.side_effect = [TransientError("gateway", status=503), _samples(VIX=18.0)]
        guarded = resilience.guard("finnhub", source)

        result = await guarded.fetch(["VIX"])

        assert "VIX" in result
        metrics = resilience.monitor.get_metrics("finnhub")
        assert (metrics.total_requests, metrics.failed_requests) == (2, 1)
        # default retry policy: first delay 1s
        assert clock.sleeps == [1.0]

    @pytest.mark.asyncio
    async def test_each_attempt_takes_a_token(self, resilience, clock):
        source = AsyncMock()
        source.fetch.side_effect = TransientError("rate limited", status=429)
        guarded = resilience.guard("finnhub", source)

        with pytest.raises(RetryExhaustedError):
            await guarded.fetch(["VIX"])

        assert source.fetch.await_count == 3
        metrics = resilience.monitor.get_metrics("finnhub")
        assert metrics.rate_limit_hits == 3
        assert clock.sleeps == [1.0, 2.0]

    @pytest.mark.asyncio
    async def test_permanent_failure_not_retried(self, resilience):
        source = AsyncMock()
        source.fetch.side_effect = ValueError("unknown symbol")
        guarded = resilience.guard("fred", source)

        with pytest.raises(ValueError):
            await guarded.fetch(["XYZ"])

        assert source.fetch.await_count == 1

    @pytest.mark.asyncio
    async def test_circuit_open_then_half_open(self, resilience, clock):
        for _ in range(10):
            resilience.monitor.record_request("fred", False, 10.0, clock.now())
        source = AsyncMock()
        source.fetch.return_value = _samples(VIX=18.0)
        guarded = resilience.guard("fred", source)

        with pytest.raises(CircuitOpenError) as exc_info:
            await guarded.fetch(["VIX"])
        assert exc_info.value.api == "fred"
        source.fetch.assert_not_awaited()

        clock.advance(60)
        result = await guarded.fetch(["VIX"])

        assert "VIX" in result
        source.fetch.assert_awaited_once()
