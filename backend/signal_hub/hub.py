"""Integration hub: one entry point over registry, orchestrator and bridge.

The hub owns per-engine performance metrics (fed by registry execution
events), derives system health, routes realtime samples to interested
engines and runs a periodic health check.

Usage:
    hub = IntegrationHub.from_settings(get_settings())
    engine = ZScoreEngine(source)
    hub.register_engine(engine, engine.metadata())
    async with hub:
        outcome = await hub.execute_integrated_pipeline()
"""

from __future__ import annotations

import asyncio
import logging
import math
from dataclasses import dataclass
from datetime import datetime

from signal_core.engines.protocol import DataInjectable, SignalEngine
from signal_core.events import EventChannel, Unsubscribe
from signal_core.exceptions import PipelineAlreadyRunningError
from signal_core.models import (
    EngineMetadata,
    EngineReport,
    IndicatorSample,
    PerformanceMetrics,
    SystemHealthMetrics,
)
from signal_core.registry import (
    EngineRegistry,
    ExecutionFailed,
    ExecutionSkipped,
    ExecutionSucceeded,
)
from signal_hub.bridge import DataBridge
from signal_hub.clock import Clock, PeriodicTask, SystemClock
from signal_hub.config import Settings
from signal_hub.orchestrator import EngineOrchestrator, PipelineRun, PipelineState
from signal_hub.resilience.monitor import ApiMonitor

logger = logging.getLogger(__name__)

# Components scoring below this are listed as unhealthy
COMPONENT_HEALTHY = 0.8

# Data quality penalties for realtime samples
AGE_PENALTY = 0.2
STALE_PENALTY = 0.3
INVALID_PENALTY = 0.4
MAGNITUDE_PENALTY = 0.2
ZERO_PENALTY = 0.1
MAX_MAGNITUDE = 1e10


@dataclass(frozen=True)
class PipelineOutcome:
    reports: dict[str, EngineReport]
    run: PipelineRun
    health: SystemHealthMetrics

    @property
    def execution_time_ms(self) -> float:
        return self.run.execution_time_ms


@dataclass(frozen=True)
class PipelineError:
    error: BaseException


@dataclass(frozen=True)
class RejectedSample:
    sample: IndicatorSample
    quality: float


class IntegrationHub:
    """Facade wiring engines, orchestration, caching and health tracking."""

    def __init__(
        self,
        registry: EngineRegistry,
        orchestrator: EngineOrchestrator,
        bridge: DataBridge,
        *,
        clock: Clock | None = None,
        monitor: ApiMonitor | None = None,
        health_check_interval: float = 30.0,
        warning_threshold: float = 0.8,
        critical_threshold: float = 0.7,
        validation_threshold: float = 0.8,
        max_sample_age: float = 60.0,
        stale_sample_age: float = 300.0,
    ):
        if orchestrator.registry is not registry:
            raise ValueError("Orchestrator must run the hub's registry")
        self.registry = registry
        self.orchestrator = orchestrator
        self.bridge = bridge
        self.clock = clock or SystemClock()
        self.monitor = monitor or ApiMonitor()
        self.warning_threshold = warning_threshold
        self.critical_threshold = critical_threshold
        self.validation_threshold = validation_threshold
        self.max_sample_age = max_sample_age
        self.stale_sample_age = stale_sample_age

        self._metrics: dict[str, PerformanceMetrics] = {}
        self._samples_accepted = 0
        self._samples_rejected = 0
        self._runs_completed = 0
        self._runs_failed = 0
        self._last_health: SystemHealthMetrics | None = None

        self.on_pipeline_started: EventChannel[datetime] = EventChannel("pipeline:started")
        self.on_pipeline_completed: EventChannel[PipelineOutcome] = EventChannel(
            "pipeline:completed"
        )
        self.on_pipeline_error: EventChannel[PipelineError] = EventChannel("pipeline:error")
        self.on_health_updated: EventChannel[SystemHealthMetrics] = EventChannel("health:updated")
        self.on_health_warning: EventChannel[SystemHealthMetrics] = EventChannel("health:warning")
        self.on_health_critical: EventChannel[SystemHealthMetrics] = EventChannel(
            "health:critical"
        )
        self.on_data_rejected: EventChannel[RejectedSample] = EventChannel("data:rejected")

        self._handles: list[Unsubscribe] = [
            registry.on_success.subscribe(self._on_success),
            registry.on_error.subscribe(self._on_error),
            registry.on_skipped.subscribe(self._on_skipped),
            bridge.attach(registry),
        ]
        self._health_task = PeriodicTask(
            "hub-health-check", health_check_interval, self.check_health, self.clock
        )

    @classmethod
    def from_settings(
        cls,
        settings: Settings,
        clock: Clock | None = None,
        monitor: ApiMonitor | None = None,
    ) -> IntegrationHub:
        """Build a hub and its collaborators from settings."""
        clock = clock or SystemClock()
        registry = EngineRegistry()
        orchestrator = EngineOrchestrator(
            registry,
            max_concurrent=settings.max_concurrent_engines,
            engine_timeout=settings.engine_timeout,
        )
        bridge = DataBridge(
            cache_timeout=settings.cache_timeout,
            max_cache_size=settings.max_cache_size,
            cleanup_interval=settings.cache_cleanup_interval,
            enable_transformations=settings.enable_transformations,
            clock=clock,
        )
        return cls(
            registry,
            orchestrator,
            bridge,
            clock=clock,
            monitor=monitor,
            health_check_interval=settings.health_check_interval,
            warning_threshold=settings.health_warning_threshold,
            critical_threshold=settings.health_critical_threshold,
            validation_threshold=settings.validation_threshold,
            max_sample_age=settings.max_sample_age,
            stale_sample_age=settings.stale_sample_age,
        )

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    def start(self) -> None:
        """Start the health check and bridge cleanup timers."""
        self._health_task.start()
        self.bridge.start()
        logger.info(f"Integration hub started with {len(self.registry)} engines")

    async def stop(self) -> None:
        await self._health_task.stop()
        await self.bridge.stop()

    async def shutdown(self) -> None:
        """Stop timers, detach from the registry and drop cached output."""
        await self.stop()
        for handle in self._handles:
            handle()
        self._handles.clear()
        self.bridge.clear()
        logger.info("Integration hub shut down")

    async def __aenter__(self) -> IntegrationHub:
        self.start()
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        await self.stop()

    # ------------------------------------------------------------------
    # Engines and metrics
    # ------------------------------------------------------------------

    def register_engine(self, engine: SignalEngine, metadata: EngineMetadata) -> None:
        self.registry.register(engine, metadata)
        self._metrics[metadata.id] = PerformanceMetrics(engine_id=metadata.id)

    def _metrics_for(self, engine_id: str) -> PerformanceMetrics:
        metrics = self._metrics.get(engine_id)
        if metrics is None:
            metrics = self._metrics[engine_id] = PerformanceMetrics(engine_id=engine_id)
        return metrics

    def _on_success(self, event: ExecutionSucceeded) -> None:
        self._metrics_for(event.engine_id).record_success(
            event.report.confidence, event.duration_ms, self.clock.now()
        )

    def _on_error(self, event: ExecutionFailed) -> None:
        self._metrics_for(event.engine_id).record_failure(event.duration_ms, self.clock.now())

    def _on_skipped(self, event: ExecutionSkipped) -> None:
        self._metrics_for(event.engine_id).record_skip(self.clock.now())

    def performance_metrics(self) -> dict[str, PerformanceMetrics]:
        return {k: v.model_copy() for k, v in self._metrics.items()}

    def reset_metrics(self, engine_id: str | None = None) -> None:
        """Operator action: reset one engine's metrics, or all of them."""
        if engine_id is None:
            targets = list(self._metrics.values())
        else:
            metrics = self._metrics.get(engine_id)
            targets = [metrics] if metrics else []
        for metrics in targets:
            metrics.reset()
        logger.info(f"Performance metrics reset: {engine_id or 'all engines'}")

    # ------------------------------------------------------------------
    # Pipeline
    # ------------------------------------------------------------------

    async def execute_integrated_pipeline(self) -> PipelineOutcome:
        """Run all phases and return reports plus a health snapshot.

        Raises:
            PipelineAlreadyRunningError: If a run is already in progress.
            PipelinePlanError: If engine dependencies cannot be ordered.
        """
        if self.orchestrator.state == PipelineState.RUNNING:
            error = PipelineAlreadyRunningError("Pipeline already executing")
            logger.warning(f"Integrated pipeline rejected: {error}")
            self.on_pipeline_error.publish(PipelineError(error))
            raise error

        self.on_pipeline_started.publish(self.clock.now())
        try:
            run = await self.orchestrator.execute_all()
        except (Exception, asyncio.CancelledError) as e:
            self._runs_failed += 1
            logger.error(f"Integrated pipeline failed: {e!r}")
            self.on_pipeline_error.publish(PipelineError(e))
            raise

        self._runs_completed += 1
        outcome = PipelineOutcome(reports=run.reports, run=run, health=self.system_health())
        self.on_pipeline_completed.publish(outcome)
        return outcome

    # ------------------------------------------------------------------
    # Realtime samples
    # ------------------------------------------------------------------

    def data_quality(self, sample: IndicatorSample) -> float:
        """Score a sample in [0, 1] by age and plausibility."""
        score = 1.0
        age = sample.age_seconds(self.clock.now())
        if age > self.max_sample_age:
            score -= AGE_PENALTY
        if age > self.stale_sample_age:
            score -= STALE_PENALTY
        if not math.isfinite(sample.value):
            score -= INVALID_PENALTY
        elif abs(sample.value) > MAX_MAGNITUDE:
            score -= MAGNITUDE_PENALTY
        elif sample.value == 0:
            score -= ZERO_PENALTY
        return max(0.0, score)

    def integrate_sample(self, sample: IndicatorSample) -> list[str]:
        """Route a realtime sample to engines interested in its indicator.

        Returns:
            Ids of the engines that received the sample (empty when the
            sample failed the quality gate).
        """
        quality = self.data_quality(sample)
        if quality < self.validation_threshold:
            self._samples_rejected += 1
            logger.warning(
                f"Rejected {sample.symbol} sample "
                f"(quality {quality:.2f} < {self.validation_threshold:.2f})"
            )
            self.on_data_rejected.publish(RejectedSample(sample, quality))
            return []

        self._samples_accepted += 1
        delivered = []
        for engine_id in self.registry.engines_for_indicator(sample.symbol):
            engine = self.registry.get_engine(engine_id)
            if isinstance(engine, DataInjectable):
                engine.inject_data(sample.symbol, sample)
                delivered.append(engine_id)
        return delivered

    # ------------------------------------------------------------------
    # Health
    # ------------------------------------------------------------------

    def system_health(self) -> SystemHealthMetrics:
        if self._metrics:
            engine_health = sum(m.success_rate for m in self._metrics.values()) / (
                100 * len(self._metrics)
            )
        else:
            engine_health = 1.0
        data_flow_health = self._data_flow_health()
        integration_health = self._integration_health()
        components = {
            "engines": engine_health,
            "data_flow": data_flow_health,
            "integration": integration_health,
        }
        health = SystemHealthMetrics(
            overall_health=sum(components.values()) / len(components),
            engine_health=engine_health,
            data_flow_health=data_flow_health,
            integration_health=integration_health,
            last_health_check=self.clock.now(),
            unhealthy_components=[
                name for name, score in components.items() if score < COMPONENT_HEALTHY
            ],
        )
        self._last_health = health
        return health

    def _data_flow_health(self) -> float:
        stats = self.bridge.statistics()
        good = self._samples_accepted + stats.transformations_applied
        total = good + self._samples_rejected + stats.transformations_failed
        return good / total if total else 1.0

    def _integration_health(self) -> float:
        runs = self._runs_completed + self._runs_failed
        run_health = self._runs_completed / runs if runs else 1.0
        return (run_health + self.monitor.overall_health()) / 2

    @property
    def last_health(self) -> SystemHealthMetrics | None:
        return self._last_health

    def check_health(self) -> SystemHealthMetrics:
        """Recompute health and raise warning/critical events."""
        health = self.system_health()
        self.on_health_updated.publish(health)
        unhealthy = ", ".join(health.unhealthy_components) or "-"
        if health.overall_health < self.critical_threshold:
            logger.error(f"System health critical: {health.overall_health:.2f} ({unhealthy})")
            self.on_health_critical.publish(health)
        elif health.overall_health < self.warning_threshold:
            logger.warning(f"System health degraded: {health.overall_health:.2f} ({unhealthy})")
            self.on_health_warning.publish(health)
        return health
