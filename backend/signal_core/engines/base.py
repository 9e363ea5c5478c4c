"""Shared engine lifecycle: input gathering, validation and state tracking."""

from __future__ import annotations

import logging
import math
import time
from abc import ABC, abstractmethod
from dataclasses import dataclass
from datetime import datetime, timezone
from enum import Enum
from typing import Mapping

from signal_core.engines.protocol import IndicatorSource
from signal_core.exceptions import InsufficientDataError
from signal_core.models import EngineMetadata, EngineReport, IndicatorSample

logger = logging.getLogger(__name__)

# Share of required indicators that must be present for a cycle to run
MIN_INDICATOR_FRACTION = 0.5

MAX_CONSECUTIVE_FAILURES = 3


class EngineStatus(str, Enum):
    """Engine runtime status."""

    IDLE = "idle"
    RUNNING = "running"
    ERROR = "error"
    DEGRADED = "degraded"
    OFFLINE = "offline"


@dataclass
class EngineState:
    """Mutable runtime state of an engine."""

    status: EngineStatus = EngineStatus.IDLE
    consecutive_failures: int = 0
    last_success: datetime | None = None
    execution_time_ms: float = 0.0

    @property
    def is_healthy(self) -> bool:
        return (
            self.status not in (EngineStatus.ERROR, EngineStatus.OFFLINE)
            and self.consecutive_failures < MAX_CONSECUTIVE_FAILURES
        )


class BaseSignalEngine(ABC):
    """Base class for engines reading indicators from a source.

    Subclasses set ``engine_id``, ``engine_name`` and ``indicators`` and
    implement ``calculate``. Samples pushed through ``inject_data`` are
    merged with the source fetch on the next cycle; fetched samples win
    on conflict.
    """

    engine_id: str = ""
    engine_name: str = ""
    indicators: tuple[str, ...] = ()
    pillar: int = 1
    priority: int = 50

    def __init__(self, source: IndicatorSource | None = None):
        self.source = source
        self.state = EngineState()
        self._pending: dict[str, IndicatorSample] = {}

    @property
    def id(self) -> str:
        return self.engine_id

    @property
    def name(self) -> str:
        return self.engine_name or self.engine_id

    @property
    def required_indicators(self) -> list[str]:
        return list(self.indicators)

    @property
    def is_healthy(self) -> bool:
        return self.state.is_healthy

    @property
    def dependencies(self) -> frozenset[str]:
        return frozenset()

    def metadata(self, **overrides) -> EngineMetadata:
        """Registration record built from the class attributes."""
        doc = (type(self).__doc__ or "").strip()
        fields = {
            "id": self.id,
            "name": self.name,
            "pillar": self.pillar,
            "priority": self.priority,
            "dependencies": self.dependencies,
            "indicators": frozenset(self.indicators),
            "description": doc.splitlines()[0] if doc else "",
        }
        fields.update(overrides)
        return EngineMetadata(**fields)

    def inject_data(self, indicator: str, sample: IndicatorSample) -> None:
        """Queue a pushed sample for the next cycle."""
        self._pending[indicator] = sample

    def validate_data(self, samples: Mapping[str, IndicatorSample]) -> bool:
        required = self.required_indicators
        if not required:
            return True
        present = sum(1 for ind in required if ind in samples)
        return present >= math.ceil(len(required) * MIN_INDICATOR_FRACTION)

    @abstractmethod
    def calculate(self, samples: Mapping[str, IndicatorSample]) -> EngineReport:
        ...

    def prepare(self, upstream: Mapping[str, EngineReport]) -> None:
        """Hook for engines that consume dependency reports."""

    async def gather(self) -> dict[str, IndicatorSample]:
        """Collect this cycle's samples from pushed data and the source."""
        samples = dict(self._pending)
        if self.source is not None and self.required_indicators:
            fetched = await self.source.fetch(self.required_indicators)
            samples.update(fetched)
        return samples

    async def execute(self, upstream: Mapping[str, EngineReport]) -> EngineReport:
        start = time.perf_counter()
        self.state.status = EngineStatus.RUNNING
        try:
            samples = await self.gather()
            self.prepare(upstream)
            if not self.validate_data(samples):
                present = sum(1 for ind in self.required_indicators if ind in samples)
                raise InsufficientDataError(
                    self.id, present, len(self.required_indicators)
                )
            report = self.calculate(samples)
        except InsufficientDataError:
            self.state.status = EngineStatus.DEGRADED
            raise
        except Exception:
            self.state.consecutive_failures += 1
            self.state.status = (
                EngineStatus.OFFLINE
                if self.state.consecutive_failures >= MAX_CONSECUTIVE_FAILURES
                else EngineStatus.ERROR
            )
            raise
        finally:
            self.state.execution_time_ms = (time.perf_counter() - start) * 1000

        self._pending.clear()
        self.state.status = EngineStatus.IDLE
        self.state.consecutive_failures = 0
        self.state.last_success = datetime.now(timezone.utc)
        return report
