"""Phased engine orchestrator.

Splits registered engines into ordered phases and runs each phase with
bounded concurrency:

1. Categories run in order: foundation -> core -> synthesis -> execution.
2. Inside a category, engines whose dependencies are all satisfied form
   the next phase; the rest wait for a later phase.
3. A phase finishes only when every engine in it has succeeded, failed
   or been skipped. One engine's failure never stops the run.

Each engine receives the reports of its successful dependencies as
``upstream``.
"""

from __future__ import annotations

import asyncio
import logging
import time
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Iterable, Mapping

from signal_core.events import EventChannel
from signal_core.exceptions import (
    InsufficientDataError,
    PipelineAlreadyRunningError,
    PipelinePlanError,
)
from signal_core.models import Category, EngineMetadata, EngineReport
from signal_core.registry import EngineRegistry

logger = logging.getLogger(__name__)

DEFAULT_MAX_CONCURRENT = 8
DEFAULT_ENGINE_TIMEOUT = 30.0


class PipelineState(str, Enum):
    """Lifecycle of a pipeline run."""

    IDLE = "idle"
    RUNNING = "running"
    COMPLETED = "completed"
    FAILED = "failed"


@dataclass(frozen=True)
class ExecutionPhase:
    index: int
    category: Category
    engine_ids: tuple[str, ...]


@dataclass
class ExecutionRecord:
    """Outcome of one engine within a run."""

    engine_id: str
    phase: int
    success: bool
    report: EngineReport | None = None
    error: str | None = None
    skipped: bool = False
    duration_ms: float = 0.0


@dataclass
class PipelineRun:
    """Merged result of all phases of one run."""

    started_at: datetime
    phases: list[ExecutionPhase] = field(default_factory=list)
    records: dict[str, ExecutionRecord] = field(default_factory=dict)
    state: PipelineState = PipelineState.RUNNING
    finished_at: datetime | None = None

    @property
    def reports(self) -> dict[str, EngineReport]:
        return {
            engine_id: r.report
            for engine_id, r in self.records.items()
            if r.success and r.report is not None
        }

    @property
    def failed(self) -> list[str]:
        return [e for e, r in self.records.items() if not r.success and not r.skipped]

    @property
    def skipped(self) -> list[str]:
        return [e for e, r in self.records.items() if r.skipped]

    @property
    def execution_time_ms(self) -> float:
        if self.finished_at is None:
            return 0.0
        return (self.finished_at - self.started_at).total_seconds() * 1000


@dataclass(frozen=True)
class PhaseStarted:
    phase: ExecutionPhase


@dataclass(frozen=True)
class PhaseCompleted:
    phase: ExecutionPhase
    records: dict[str, ExecutionRecord]


@dataclass(frozen=True)
class ExecutionStatus:
    total: int
    running: int
    completed: int
    failed: int
    skipped: int


class EngineOrchestrator:
    """Run registry engines in dependency-ordered phases."""

    def __init__(
        self,
        registry: EngineRegistry,
        max_concurrent: int = DEFAULT_MAX_CONCURRENT,
        engine_timeout: float | None = DEFAULT_ENGINE_TIMEOUT,
    ):
        if max_concurrent < 1:
            raise ValueError(f"max_concurrent must be >= 1, got {max_concurrent}")
        self.registry = registry
        self.max_concurrent = max_concurrent
        self.engine_timeout = engine_timeout
        self._semaphore = asyncio.Semaphore(max_concurrent)
        self._state = PipelineState.IDLE
        self._current_phase: int | None = None
        self._running: set[str] = set()
        self._last_run: PipelineRun | None = None

        self.on_phase_started: EventChannel[PhaseStarted] = EventChannel("execution:phase-start")
        self.on_phase_completed: EventChannel[PhaseCompleted] = EventChannel(
            "execution:phase-complete"
        )

    @property
    def state(self) -> PipelineState:
        return self._state

    @property
    def current_phase(self) -> int | None:
        """Index of the phase in flight, ``None`` outside a run."""
        return self._current_phase

    @property
    def last_run(self) -> PipelineRun | None:
        return self._last_run

    # ------------------------------------------------------------------
    # Planning
    # ------------------------------------------------------------------

    def plan(self, engine_ids: Iterable[str] | None = None) -> list[ExecutionPhase]:
        """Arrange engines into ordered phases.

        Dependencies on engines outside the plan are ignored with a
        warning.

        Raises:
            PipelinePlanError: On a dependency cycle, or a dependency on an
                engine of a later category.
        """
        wanted = set(engine_ids) if engine_ids is not None else None
        metas: dict[str, EngineMetadata] = {
            m.id: m
            for m in self.registry.get_all_metadata()
            if wanted is None or m.id in wanted
        }

        deps: dict[str, set[str]] = {}
        for meta in metas.values():
            resolved = set()
            for dep in sorted(meta.dependencies):
                dep_meta = metas.get(dep)
                if dep_meta is None:
                    logger.warning(f"Engine {meta.id} depends on unknown engine {dep}, ignoring")
                    continue
                if dep_meta.category.rank > meta.category.rank:
                    raise PipelinePlanError(
                        f"Engine '{meta.id}' ({meta.category.value}) depends on "
                        f"'{dep}' from later category {dep_meta.category.value}"
                    )
                resolved.add(dep)
            deps[meta.id] = resolved

        phases: list[ExecutionPhase] = []
        done: set[str] = set()
        for category in Category:
            # metas is already in priority order
            pending = [e for e, m in metas.items() if m.category == category]
            while pending:
                ready = [e for e in pending if deps[e] <= done]
                if not ready:
                    raise PipelinePlanError(
                        f"Circular dependency among: {', '.join(sorted(pending))}"
                    )
                phases.append(ExecutionPhase(len(phases), category, tuple(ready)))
                done.update(ready)
                pending = [e for e in pending if e not in done]
        return phases

    # ------------------------------------------------------------------
    # Execution
    # ------------------------------------------------------------------

    async def execute_all(self, engine_ids: Iterable[str] | None = None) -> PipelineRun:
        """Run every phase in order and return the merged records.

        Raises:
            PipelineAlreadyRunningError: If a run is already in progress.
            PipelinePlanError: If the engines cannot be ordered.
        """
        if self._state == PipelineState.RUNNING:
            raise PipelineAlreadyRunningError("Pipeline already executing")
        self._state = PipelineState.RUNNING
        run = PipelineRun(started_at=datetime.now(timezone.utc))
        self._last_run = run

        try:
            run.phases = self.plan(engine_ids)
            engine_count = sum(len(p.engine_ids) for p in run.phases)
            logger.info(f"Pipeline started: {engine_count} engines in {len(run.phases)} phases")
            for phase in run.phases:
                self._current_phase = phase.index
                run.records.update(await self.execute_phase(phase, run.records))
        except PipelinePlanError as e:
            logger.error(f"Pipeline planning failed: {e}")
            self._finish(run, PipelineState.FAILED)
            raise
        except (Exception, asyncio.CancelledError):
            self._finish(run, PipelineState.FAILED)
            raise

        self._finish(run, PipelineState.COMPLETED)
        logger.info(
            f"Pipeline completed in {run.execution_time_ms:.1f}ms: {len(run.reports)} ok, "
            f"{len(run.failed)} failed, {len(run.skipped)} skipped"
        )
        return run

    async def execute_phase(
        self,
        phase: ExecutionPhase,
        completed: Mapping[str, ExecutionRecord] | None = None,
    ) -> dict[str, ExecutionRecord]:
        """Run one phase concurrently; never raises for engine failures.

        Args:
            phase: Engines to run.
            completed: Records of earlier phases, used to build each
                engine's ``upstream`` reports.
        """
        pool = completed or {}
        self.on_phase_started.publish(PhaseStarted(phase))
        logger.debug(
            f"Phase {phase.index} ({phase.category.value}): {', '.join(phase.engine_ids)}"
        )

        results = await asyncio.gather(
            *(self._run_engine(engine_id, phase.index, pool) for engine_id in phase.engine_ids)
        )
        records = {r.engine_id: r for r in results}
        self.on_phase_completed.publish(PhaseCompleted(phase, records))
        return records

    async def _run_engine(
        self,
        engine_id: str,
        phase_index: int,
        pool: Mapping[str, ExecutionRecord],
    ) -> ExecutionRecord:
        meta = self.registry.get_metadata(engine_id)
        dependencies = meta.dependencies if meta else frozenset()
        upstream = {
            dep: pool[dep].report
            for dep in dependencies
            if dep in pool and pool[dep].success and pool[dep].report is not None
        }

        async with self._semaphore:
            self._running.add(engine_id)
            start = time.perf_counter()
            try:
                report = await self.registry.execute_engine(
                    engine_id, upstream, timeout=self.engine_timeout
                )
            except InsufficientDataError as e:
                return ExecutionRecord(
                    engine_id, phase_index, success=False, skipped=True,
                    error=str(e), duration_ms=(time.perf_counter() - start) * 1000,
                )
            except Exception as e:
                return ExecutionRecord(
                    engine_id, phase_index, success=False,
                    error=f"{type(e).__name__}: {e}",
                    duration_ms=(time.perf_counter() - start) * 1000,
                )
            finally:
                self._running.discard(engine_id)

        return ExecutionRecord(
            engine_id, phase_index, success=True, report=report,
            duration_ms=(time.perf_counter() - start) * 1000,
        )

    def _finish(self, run: PipelineRun, state: PipelineState) -> None:
        run.state = state
        run.finished_at = datetime.now(timezone.utc)
        self._state = state
        self._current_phase = None

    def execution_status(self) -> ExecutionStatus:
        run = self._last_run
        if run is None:
            return ExecutionStatus(total=0, running=0, completed=0, failed=0, skipped=0)
        return ExecutionStatus(
            total=sum(len(p.engine_ids) for p in run.phases),
            running=len(self._running),
            completed=len(run.reports),
            failed=len(run.failed),
            skipped=len(run.skipped),
        )
