"""Engine protocols defining the interfaces engines and sources implement.

This module provides:
- IndicatorSource: async provider of the latest indicator samples
- SignalEngine: Runtime-checkable Protocol every engine must satisfy
- DataInjectable: optional capability for engines accepting pushed samples
"""

from __future__ import annotations

from typing import Mapping, Protocol, Sequence, runtime_checkable

from signal_core.models import EngineReport, IndicatorSample


# ---------------------------------------------------------------------------
# Data source
# ---------------------------------------------------------------------------
@runtime_checkable
class IndicatorSource(Protocol):
    """External fetch layer (HTTP APIs, a message feed)."""

    async def fetch(self, indicators: Sequence[str]) -> dict[str, IndicatorSample]:
        """Return the latest sample for each indicator it can provide.

        Indicators the source cannot serve are simply absent from the result.
        """
        ...


# ---------------------------------------------------------------------------
# Engine Protocol
# ---------------------------------------------------------------------------
@runtime_checkable
class SignalEngine(Protocol):
    """Protocol that all signal engines must implement.

    Engines are responsible for:
    1. Deciding whether the current inputs are sufficient
    2. Turning inputs (and upstream reports) into an EngineReport
    3. Owning their historical windows exclusively
    """

    @property
    def id(self) -> str:
        """Unique engine identifier (e.g., 'zscore-foundation')."""
        ...

    @property
    def name(self) -> str:
        ...

    @property
    def required_indicators(self) -> list[str]:
        """Indicator ids this engine reads.

        Example: ['VIX', 'SPX', 'DXY', 'TNX']
        """
        ...

    def validate_data(self, samples: Mapping[str, IndicatorSample]) -> bool:
        """Return ``False`` when the inputs are too sparse to run at all."""
        ...

    def calculate(self, samples: Mapping[str, IndicatorSample]) -> EngineReport:
        """Compute a report from the current samples."""
        ...

    async def execute(self, upstream: Mapping[str, EngineReport]) -> EngineReport:
        """Gather inputs, validate and calculate one cycle.

        Args:
            upstream: Reports of this engine's dependencies that succeeded
                earlier in the same pipeline run.

        Raises:
            InsufficientDataError: If validate_data rejects the inputs.
        """
        ...


@runtime_checkable
class DataInjectable(Protocol):
    """Capability: accept realtime samples pushed by the integration hub."""

    def inject_data(self, indicator: str, sample: IndicatorSample) -> None:
        ...
