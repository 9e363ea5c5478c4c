"""Cached engine output models."""

from enum import Enum
from typing import Any

import orjson
from pydantic import BaseModel, ConfigDict, Field


class OutputFormat(str, Enum):
    """Presentation format of a bridged entry."""

    TILE = "tile"
    CHART = "chart"
    INDICATOR = "indicator"


class BridgedData(BaseModel):
    """One cache entry of the data bridge.

    ``timestamp`` is the clock reading at write time (seconds) and ``ttl``
    the lifetime in seconds. A newer write for the same key replaces the
    entry instead of mutating it.
    """

    model_config = ConfigDict(frozen=True)

    engine_id: str
    format: OutputFormat
    payload: dict[str, Any] = Field(default_factory=dict)
    timestamp: float
    ttl: float

    @property
    def expires_at(self) -> float:
        return self.timestamp + self.ttl

    def is_expired(self, now: float) -> bool:
        return now >= self.expires_at

    def to_json(self) -> bytes:
        """Serialize the payload for presentation collaborators."""
        return orjson.dumps(self.payload, option=orjson.OPT_SORT_KEYS)
