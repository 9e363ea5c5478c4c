"""Raw indicator input model."""

from datetime import datetime
from pydantic import AwareDatetime, BaseModel, ConfigDict, Field


class IndicatorSample(BaseModel):
    """A single observation of an external indicator (VIX, SPX, ...).

    Produced by the ingestion layer and handed to engines by reference.
    """

    model_config = ConfigDict(frozen=True)

    symbol: str
    timestamp: AwareDatetime
    value: float
    confidence: float | None = Field(default=None, ge=0, le=100)

    def age_seconds(self, now: datetime) -> float:
        """Seconds elapsed between the observation and *now*."""
        return (now - self.timestamp).total_seconds()
