"""Per-engine performance tracking and aggregate system health."""

from datetime import datetime
from enum import Enum

import orjson
from pydantic import BaseModel, Field

# Success-rate adjustments per execution outcome
SUCCESS_STEP = 1.0
FAILURE_STEP = 5.0

# Trend bands on success rate
IMPROVING_ABOVE = 90.0
DEGRADING_BELOW = 70.0


class Trend(str, Enum):
    """Direction of an engine's success rate."""

    IMPROVING = "improving"
    STABLE = "stable"
    DEGRADING = "degrading"


class PerformanceMetrics(BaseModel):
    """Rolling per-engine execution record.

    Mutated after every execution attempt; only ``reset()`` (an explicit
    operator action) returns it to the initial state.
    """

    engine_id: str
    success_rate: float = 100.0
    confidence: float = 0.0
    error_count: int = 0
    execution_count: int = 0
    execution_time_ms: float = 0.0
    last_execution: datetime | None = None
    trend: Trend = Trend.STABLE

    def record_success(
        self, confidence: float, execution_time_ms: float, at: datetime
    ) -> None:
        """Record a successful execution."""
        self.success_rate = min(100.0, self.success_rate + SUCCESS_STEP)
        self.confidence = confidence
        self._touch(execution_time_ms, at)

    def record_failure(self, execution_time_ms: float, at: datetime) -> None:
        """Record a failed execution."""
        self.success_rate = max(0.0, self.success_rate - FAILURE_STEP)
        self.error_count += 1
        self._touch(execution_time_ms, at)

    def record_skip(self, at: datetime) -> None:
        """Record a cycle the engine declined for lack of data."""
        self.last_execution = at

    def reset(self) -> None:
        self.success_rate = 100.0
        self.confidence = 0.0
        self.error_count = 0
        self.execution_count = 0
        self.execution_time_ms = 0.0
        self.last_execution = None
        self.trend = Trend.STABLE

    def _touch(self, execution_time_ms: float, at: datetime) -> None:
        self.execution_count += 1
        self.execution_time_ms = execution_time_ms
        self.last_execution = at
        if self.success_rate > IMPROVING_ABOVE:
            self.trend = Trend.IMPROVING
        elif self.success_rate < DEGRADING_BELOW:
            self.trend = Trend.DEGRADING
        else:
            self.trend = Trend.STABLE


class SystemHealthMetrics(BaseModel):
    """Aggregate health snapshot. Every score lies in [0, 1]."""

    overall_health: float = Field(ge=0, le=1)
    engine_health: float = Field(ge=0, le=1)
    data_flow_health: float = Field(ge=0, le=1)
    integration_health: float = Field(ge=0, le=1)
    last_health_check: datetime
    unhealthy_components: list[str] = Field(default_factory=list)

    def to_json(self) -> bytes:
        return orjson.dumps(self.model_dump(mode="json"))
