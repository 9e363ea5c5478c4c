"""Per-API request statistics, health scores and circuit breaking."""

from __future__ import annotations

import logging
from datetime import datetime

from pydantic import BaseModel

logger = logging.getLogger(__name__)

# Response time at which the latency penalty saturates (ms)
SLOW_RESPONSE_MS = 5000.0
LATENCY_WEIGHT = 0.2

CIRCUIT_BREAK_HEALTH = 0.2
CIRCUIT_BREAK_MIN_REQUESTS = 10


class ApiMetrics(BaseModel):
    """Request counters for one external API."""

    api: str
    total_requests: int = 0
    successful_requests: int = 0
    failed_requests: int = 0
    rate_limit_hits: int = 0
    average_response_time: float = 0.0  # ms, running mean
    last_request_time: datetime | None = None

    @property
    def success_rate(self) -> float:
        if self.total_requests == 0:
            return 1.0
        return self.successful_requests / self.total_requests

    @property
    def health_score(self) -> float:
        """Health in [0, 1]; 1.0 before any request is recorded."""
        if self.total_requests == 0:
            return 1.0
        rate_limit_penalty = self.rate_limit_hits / self.total_requests
        latency_penalty = min(self.average_response_time / SLOW_RESPONSE_MS, 1.0) * LATENCY_WEIGHT
        return max(0.0, self.success_rate - rate_limit_penalty - latency_penalty)


class ApiMonitor:
    """Collect request outcomes per API."""

    def __init__(self):
        self._metrics: dict[str, ApiMetrics] = {}

    def record_request(
        self,
        api: str,
        success: bool,
        response_time_ms: float,
        at: datetime,
        rate_limited: bool = False,
    ) -> ApiMetrics:
        metrics = self._metrics.get(api)
        if metrics is None:
            metrics = self._metrics[api] = ApiMetrics(api=api)

        metrics.total_requests += 1
        if success:
            metrics.successful_requests += 1
        else:
            metrics.failed_requests += 1
        if rate_limited:
            metrics.rate_limit_hits += 1
        n = metrics.total_requests
        metrics.average_response_time += (response_time_ms - metrics.average_response_time) / n
        metrics.last_request_time = at

        if not success:
            logger.debug(
                f"{api} request failed ({metrics.failed_requests}/{n} failed, "
                f"health {metrics.health_score:.2f})"
            )
        return metrics

    def get_metrics(self, api: str) -> ApiMetrics | None:
        return self._metrics.get(api)

    def all_metrics(self) -> dict[str, ApiMetrics]:
        return {k: v.model_copy() for k, v in self._metrics.items()}

    def health_score(self, api: str) -> float:
        metrics = self._metrics.get(api)
        return metrics.health_score if metrics else 1.0

    def should_circuit_break(self, api: str) -> bool:
        metrics = self._metrics.get(api)
        if metrics is None:
            return False
        return (
            metrics.health_score < CIRCUIT_BREAK_HEALTH
            and metrics.total_requests >= CIRCUIT_BREAK_MIN_REQUESTS
        )

    def overall_health(self) -> float:
        """Mean health across monitored APIs (1.0 when none)."""
        if not self._metrics:
            return 1.0
        return sum(m.health_score for m in self._metrics.values()) / len(self._metrics)

    def reset(self, api: str | None = None) -> None:
        """Forget recorded requests for one API, or all of them."""
        if api is None:
            self._metrics.clear()
        else:
            self._metrics.pop(api, None)
        logger.info(f"API metrics reset: {api or 'all'}")
