"""Engine registry: catalog of engines, their metadata and interests.

Usage:
    registry = EngineRegistry()
    engine = ZScoreEngine(source)
    registry.register(engine, engine.metadata())
    registry.on_success.subscribe(lambda event: ...)
    report = await registry.execute_engine("zscore-foundation")

The registry is an ordinary object: construct one per pipeline and pass
it to the orchestrator and hub explicitly.
"""

from __future__ import annotations

import asyncio
import logging
import time
from dataclasses import dataclass
from typing import Callable, Mapping

from signal_core.engines.protocol import SignalEngine
from signal_core.events import EventChannel, Unsubscribe
from signal_core.exceptions import (
    DuplicateEngineError,
    EngineNotFoundError,
    InsufficientDataError,
)
from signal_core.models import Category, EngineMetadata, EngineReport

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Execution events
# ---------------------------------------------------------------------------
@dataclass(frozen=True)
class ExecutionSucceeded:
    engine_id: str
    report: EngineReport
    duration_ms: float


@dataclass(frozen=True)
class ExecutionFailed:
    engine_id: str
    error: Exception
    duration_ms: float


@dataclass(frozen=True)
class ExecutionSkipped:
    engine_id: str
    reason: str


class EngineRegistry:
    """Engines keyed by id, with metadata and an indicator interest table."""

    def __init__(self):
        self._engines: dict[str, SignalEngine] = {}
        self._metadata: dict[str, EngineMetadata] = {}
        # indicator id -> engine ids, in registration order
        self._interests: dict[str, list[str]] = {}

        self.on_success: EventChannel[ExecutionSucceeded] = EventChannel("execution:success")
        self.on_error: EventChannel[ExecutionFailed] = EventChannel("execution:error")
        self.on_skipped: EventChannel[ExecutionSkipped] = EventChannel("execution:skipped")
        self.on_registered: EventChannel[EngineMetadata] = EventChannel("engine:registered")

    # ------------------------------------------------------------------
    # Registration
    # ------------------------------------------------------------------

    def register(self, engine: SignalEngine, metadata: EngineMetadata) -> None:
        """Register an engine under ``metadata.id``.

        Raises:
            DuplicateEngineError: If the id is already registered.
            ValueError: If the engine's own id disagrees with the metadata.
        """
        if metadata.id in self._engines:
            raise DuplicateEngineError(
                f"Engine '{metadata.id}' is already registered "
                f"by {type(self._engines[metadata.id]).__name__}"
            )
        if engine.id != metadata.id:
            raise ValueError(
                f"Engine id '{engine.id}' does not match metadata id '{metadata.id}'"
            )
        self._engines[metadata.id] = engine
        self._metadata[metadata.id] = metadata
        for indicator in sorted(metadata.indicators):
            self._interests.setdefault(indicator, []).append(metadata.id)
        logger.debug(
            f"Registered engine: {metadata.id} -> {type(engine).__name__} "
            f"({metadata.category.value}, priority {metadata.priority})"
        )
        self.on_registered.publish(metadata)

    def unregister(self, engine_id: str) -> bool:
        """Remove an engine. Returns ``False`` if it was not registered."""
        if engine_id not in self._engines:
            return False
        del self._engines[engine_id]
        metadata = self._metadata.pop(engine_id)
        for indicator in metadata.indicators:
            ids = self._interests.get(indicator, [])
            if engine_id in ids:
                ids.remove(engine_id)
            if not ids:
                self._interests.pop(indicator, None)
        logger.debug(f"Unregistered engine: {engine_id}")
        return True

    # ------------------------------------------------------------------
    # Lookup
    # ------------------------------------------------------------------

    def get_engine(self, engine_id: str) -> SignalEngine | None:
        return self._engines.get(engine_id)

    def get_metadata(self, engine_id: str) -> EngineMetadata | None:
        return self._metadata.get(engine_id)

    def require(self, engine_id: str) -> SignalEngine:
        """Get an engine by id.

        Raises:
            EngineNotFoundError: If no engine is registered under the id.
        """
        engine = self._engines.get(engine_id)
        if engine is None:
            available = ", ".join(sorted(self._engines)) or "(none)"
            raise EngineNotFoundError(
                f"Unknown engine '{engine_id}'. Available: {available}"
            )
        return engine

    def get_all_metadata(self) -> list[EngineMetadata]:
        """All metadata, highest priority first (ties by id)."""
        return sorted(self._metadata.values(), key=lambda m: (-m.priority, m.id))

    def get_by_category(self, category: Category) -> list[EngineMetadata]:
        return [m for m in self.get_all_metadata() if m.category == category]

    def get_by_pillar(self, pillar: int) -> list[EngineMetadata]:
        return [m for m in self.get_all_metadata() if m.pillar == pillar]

    def engines_for_indicator(self, indicator: str) -> tuple[str, ...]:
        """Engine ids that declared interest in *indicator* (exact match)."""
        return tuple(self._interests.get(indicator, ()))

    def list_engines(self) -> list[str]:
        return sorted(self._engines)

    def __contains__(self, engine_id: object) -> bool:
        return engine_id in self._engines

    def __len__(self) -> int:
        return len(self._engines)

    # ------------------------------------------------------------------
    # Execution
    # ------------------------------------------------------------------

    async def execute_engine(
        self,
        engine_id: str,
        upstream: Mapping[str, EngineReport] | None = None,
        timeout: float | None = None,
    ) -> EngineReport:
        """Run one engine and publish the outcome.

        Publishes on ``on_success``, ``on_skipped`` (insufficient data) or
        ``on_error``, then returns the report or re-raises the failure.
        """
        engine = self.require(engine_id)
        start = time.perf_counter()
        try:
            run = engine.execute(upstream or {})
            report = await (asyncio.wait_for(run, timeout) if timeout else run)
        except InsufficientDataError as e:
            logger.warning(f"Engine {engine_id} skipped: {e}")
            self.on_skipped.publish(ExecutionSkipped(engine_id, str(e)))
            raise
        except Exception as e:
            duration_ms = (time.perf_counter() - start) * 1000
            logger.error(f"Engine {engine_id} failed: {e!r}")
            self.on_error.publish(ExecutionFailed(engine_id, e, duration_ms))
            raise

        duration_ms = (time.perf_counter() - start) * 1000
        self.on_success.publish(ExecutionSucceeded(engine_id, report, duration_ms))
        return report

    def subscribe_engine(
        self, engine_id: str, callback: Callable[[EngineReport], None]
    ) -> Unsubscribe:
        """Receive reports of a single engine. Returns an unsubscribe handle."""

        def _filtered(event: ExecutionSucceeded) -> None:
            if event.engine_id == engine_id:
                callback(event.report)

        return self.on_success.subscribe(_filtered)
