"""Engine report models."""

from datetime import datetime, timezone
from enum import Enum
from typing import Any

from pydantic import BaseModel, ConfigDict, Field


class Signal(str, Enum):
    """Trading signal classification."""

    RISK_ON = "RISK_ON"
    RISK_OFF = "RISK_OFF"
    WARNING = "WARNING"
    NEUTRAL = "NEUTRAL"


class AlertLevel(str, Enum):
    """Alert severity."""

    INFO = "info"
    WARNING = "warning"
    CRITICAL = "critical"


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class Alert(BaseModel):
    """Alert raised by an engine during a calculation cycle."""

    model_config = ConfigDict(frozen=True)

    level: AlertLevel
    message: str
    timestamp: datetime = Field(default_factory=_utcnow)


class PrimaryMetric(BaseModel):
    """Headline number of a report and its change since the previous cycle."""

    model_config = ConfigDict(frozen=True)

    value: float
    change: float = 0.0
    change_percent: float = 0.0


class EngineReport(BaseModel):
    """Output of one engine execution cycle."""

    model_config = ConfigDict(frozen=True)

    primary_metric: PrimaryMetric
    signal: Signal = Signal.NEUTRAL
    confidence: float = Field(ge=0, le=100)
    analysis: str = ""
    sub_metrics: dict[str, Any] = Field(default_factory=dict)
    alerts: list[Alert] = Field(default_factory=list)

    @property
    def has_critical_alert(self) -> bool:
        """Check if any alert is critical."""
        return any(a.level == AlertLevel.CRITICAL for a in self.alerts)
