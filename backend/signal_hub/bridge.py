"""Data bridge: last-write-wins cache of engine output for presentation.

Each successful engine execution is turned into one entry per output
format and stored under ``(engine_id, format)``:

- tile      -> headline value, signal, status and analysis
- indicator -> current value, change and confidence
- chart     -> series, only when the report carries ``history``

Entries expire ``cache_timeout`` seconds after they are written. Reads
of an expired entry return ``None``; the entry is only refreshed by the
next engine execution. A periodic sweep deletes expired entries and
trims the cache to ``max_cache_size`` by evicting the oldest writes.

All cache mutations and reads hold one lock. Subscribers are called
after the lock is released.
"""

from __future__ import annotations

import itertools
import logging
import threading
from dataclasses import dataclass
from typing import Any, Callable

from signal_core.events import EventChannel, Unsubscribe
from signal_core.models import (
    AlertLevel,
    BridgedData,
    EngineMetadata,
    EngineReport,
    OutputFormat,
    Signal,
)
from signal_core.registry import EngineRegistry, ExecutionFailed, ExecutionSucceeded
from signal_hub.clock import Clock, PeriodicTask, SystemClock

logger = logging.getLogger(__name__)

DEFAULT_CACHE_TIMEOUT = 30.0
DEFAULT_MAX_CACHE_SIZE = 1000
DEFAULT_CLEANUP_INTERVAL = 60.0

CacheKey = tuple[str, OutputFormat]
BridgeCallback = Callable[[BridgedData], None]


@dataclass(frozen=True)
class DataTransformation:
    """Derive an extra output from one engine's report.

    The result is stored under ``("{source_engine_id}:{id}", target_format)``.
    """

    id: str
    source_engine_id: str
    target_format: OutputFormat
    transform: Callable[[EngineReport], dict[str, Any]]

    @property
    def output_id(self) -> str:
        return f"{self.source_engine_id}:{self.id}"


# ---------------------------------------------------------------------------
# Events
# ---------------------------------------------------------------------------
@dataclass(frozen=True)
class BridgeError:
    engine_id: str
    error: str


@dataclass(frozen=True)
class TransformationApplied:
    transformation_id: str
    engine_id: str
    entry: BridgedData


@dataclass(frozen=True)
class TransformationFailed:
    transformation_id: str
    engine_id: str
    error: str


@dataclass(frozen=True)
class CleanupStats:
    expired: int
    evicted: int
    remaining: int


@dataclass(frozen=True)
class BridgeStatistics:
    cache_size: int
    transformation_count: int
    subscription_count: int
    error_count: int
    transformations_applied: int
    transformations_failed: int


class DataBridge:
    """Cache engine output per ``(engine_id, format)`` and push updates."""

    def __init__(
        self,
        cache_timeout: float = DEFAULT_CACHE_TIMEOUT,
        max_cache_size: int = DEFAULT_MAX_CACHE_SIZE,
        cleanup_interval: float = DEFAULT_CLEANUP_INTERVAL,
        enable_transformations: bool = True,
        clock: Clock | None = None,
    ):
        if max_cache_size < 1:
            raise ValueError(f"max_cache_size must be >= 1, got {max_cache_size}")
        self.cache_timeout = cache_timeout
        self.max_cache_size = max_cache_size
        self.enable_transformations = enable_transformations
        self.clock = clock or SystemClock()

        self._lock = threading.RLock()
        self._cache: dict[CacheKey, BridgedData] = {}
        # Write sequence per key, breaks timestamp ties on eviction
        self._write_seq: dict[CacheKey, int] = {}
        self._seq = itertools.count()
        self._subscribers: dict[CacheKey, list[BridgeCallback]] = {}
        self._transformations: dict[str, DataTransformation] = {}

        self.error_count = 0
        self.transformations_applied = 0
        self.transformations_failed = 0

        self.on_update: EventChannel[BridgedData] = EventChannel("data:bridged")
        self.on_error: EventChannel[BridgeError] = EventChannel("data:error")
        self.on_transformation_applied: EventChannel[TransformationApplied] = EventChannel(
            "transformation:applied"
        )
        self.on_transformation_error: EventChannel[TransformationFailed] = EventChannel(
            "transformation:error"
        )
        self.on_cleanup: EventChannel[CleanupStats] = EventChannel("cache:cleanup")

        self._sweeper = PeriodicTask("bridge-cleanup", cleanup_interval, self.sweep, self.clock)

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    def attach(self, registry: EngineRegistry) -> Unsubscribe:
        """Bridge every execution reported by *registry*. Returns a detach handle."""

        def on_success(event: ExecutionSucceeded) -> None:
            self.publish(event.engine_id, event.report, registry.get_metadata(event.engine_id))

        def on_error(event: ExecutionFailed) -> None:
            self.record_error(event.engine_id, event.error)

        handles = [
            registry.on_success.subscribe(on_success),
            registry.on_error.subscribe(on_error),
        ]

        def detach() -> None:
            for handle in handles:
                handle()

        return detach

    def start(self) -> None:
        """Start the periodic cleanup sweep."""
        self._sweeper.start()

    async def stop(self) -> None:
        await self._sweeper.stop()

    def clear(self) -> None:
        """Drop every entry, subscription and transformation."""
        with self._lock:
            self._cache.clear()
            self._write_seq.clear()
            self._subscribers.clear()
            self._transformations.clear()
        logger.info("Data bridge cleared")

    # ------------------------------------------------------------------
    # Writes
    # ------------------------------------------------------------------

    def publish(
        self,
        engine_id: str,
        report: EngineReport,
        metadata: EngineMetadata | None = None,
    ) -> list[BridgedData]:
        """Bridge a successful execution into every applicable format."""
        title = metadata.name if metadata else engine_id
        written = [
            self.store(engine_id, fmt, payload)
            for fmt, payload in self._derive(title, report).items()
        ]
        if self.enable_transformations:
            written.extend(self._apply_transformations(engine_id, report))
        return written

    def store(
        self, engine_id: str, fmt: OutputFormat | str, payload: dict[str, Any]
    ) -> BridgedData:
        """Write one entry, replacing any previous entry under the same key."""
        fmt = OutputFormat(fmt)
        key = (engine_id, fmt)
        entry = BridgedData(
            engine_id=engine_id,
            format=fmt,
            payload=payload,
            timestamp=self.clock.time(),
            ttl=self.cache_timeout,
        )
        with self._lock:
            self._cache[key] = entry
            self._write_seq[key] = next(self._seq)
            evicted = self._evict_oldest_locked()
            callbacks = list(self._subscribers.get(key, ()))
        if evicted:
            logger.debug(f"Evicted {evicted} bridged entries over max size {self.max_cache_size}")

        for callback in callbacks:
            try:
                callback(entry)
            except Exception as e:
                logger.error(f"Bridge subscriber error for {engine_id}/{fmt.value}: {e}")
        self.on_update.publish(entry)
        return entry

    def record_error(self, engine_id: str, error: BaseException | str) -> None:
        """Note a failed execution. Cached output of the engine is kept."""
        self.error_count += 1
        self.on_error.publish(BridgeError(engine_id, str(error)))

    def _derive(self, title: str, report: EngineReport) -> dict[OutputFormat, dict[str, Any]]:
        metric = report.primary_metric
        now = self.clock.now().isoformat()
        outputs: dict[OutputFormat, dict[str, Any]] = {
            OutputFormat.TILE: {
                "title": title,
                "value": metric.value,
                "change": metric.change,
                "change_percent": metric.change_percent,
                "signal": report.signal.value,
                "confidence": report.confidence,
                "status": _tile_status(report),
                "analysis": report.analysis,
                "alerts": [a.message for a in report.alerts],
            },
            OutputFormat.INDICATOR: {
                "current": metric.value,
                "change": metric.change,
                "change_percent": metric.change_percent,
                "confidence": report.confidence,
                "timestamp": now,
            },
        }
        history = report.sub_metrics.get("history")
        if isinstance(history, list) and history:
            outputs[OutputFormat.CHART] = {
                "label": title,
                "series": list(history),
                "signal": report.signal.value,
                "timestamp": now,
            }
        return outputs

    # ------------------------------------------------------------------
    # Transformations
    # ------------------------------------------------------------------

    def register_transformation(self, transformation: DataTransformation) -> None:
        with self._lock:
            self._transformations[transformation.id] = transformation
        logger.debug(
            f"Registered transformation {transformation.id}: "
            f"{transformation.source_engine_id} -> {transformation.target_format.value}"
        )

    def unregister_transformation(self, transformation_id: str) -> bool:
        with self._lock:
            return self._transformations.pop(transformation_id, None) is not None

    def _apply_transformations(self, engine_id: str, report: EngineReport) -> list[BridgedData]:
        with self._lock:
            applicable = [
                t for t in self._transformations.values() if t.source_engine_id == engine_id
            ]
        written = []
        for t in applicable:
            try:
                entry = self.store(t.output_id, t.target_format, t.transform(report))
            except Exception as e:
                self.transformations_failed += 1
                logger.warning(f"Transformation {t.id} failed for {engine_id}: {e}")
                self.on_transformation_error.publish(TransformationFailed(t.id, engine_id, str(e)))
                continue
            self.transformations_applied += 1
            self.on_transformation_applied.publish(TransformationApplied(t.id, engine_id, entry))
            written.append(entry)
        return written

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    def get_bridged_data(self, engine_id: str, fmt: OutputFormat | str) -> BridgedData | None:
        """Return the cached entry, or ``None`` if missing or expired."""
        key = (engine_id, OutputFormat(fmt))
        now = self.clock.time()
        with self._lock:
            entry = self._cache.get(key)
        if entry is None or entry.is_expired(now):
            return None
        return entry

    def subscribe(
        self, engine_id: str, fmt: OutputFormat | str, callback: BridgeCallback
    ) -> Unsubscribe:
        """Call *callback* with each new entry for the key. Returns an unsubscribe handle."""
        key = (engine_id, OutputFormat(fmt))
        with self._lock:
            self._subscribers.setdefault(key, []).append(callback)

        def unsubscribe() -> None:
            with self._lock:
                callbacks = self._subscribers.get(key)
                if callbacks and callback in callbacks:
                    callbacks.remove(callback)
                    if not callbacks:
                        del self._subscribers[key]

        return unsubscribe

    # ------------------------------------------------------------------
    # Cleanup
    # ------------------------------------------------------------------

    def sweep(self) -> CleanupStats:
        """Delete expired entries, then trim to ``max_cache_size``."""
        now = self.clock.time()
        with self._lock:
            expired_keys = [k for k, e in self._cache.items() if e.is_expired(now)]
            for key in expired_keys:
                del self._cache[key]
                self._write_seq.pop(key, None)
            evicted = self._evict_oldest_locked()
            stats = CleanupStats(
                expired=len(expired_keys), evicted=evicted, remaining=len(self._cache)
            )

        if stats.expired or stats.evicted:
            logger.debug(f"Cleaned up {stats.expired} expired, {stats.evicted} evicted bridge entries")
            self.on_cleanup.publish(stats)
        return stats

    def _evict_oldest_locked(self) -> int:
        overflow = len(self._cache) - self.max_cache_size
        if overflow <= 0:
            return 0
        victims = sorted(
            self._cache,
            key=lambda k: (self._cache[k].timestamp, self._write_seq.get(k, 0)),
        )[:overflow]
        for key in victims:
            del self._cache[key]
            self._write_seq.pop(key, None)
        return len(victims)

    def statistics(self) -> BridgeStatistics:
        with self._lock:
            return BridgeStatistics(
                cache_size=len(self._cache),
                transformation_count=len(self._transformations),
                subscription_count=sum(len(c) for c in self._subscribers.values()),
                error_count=self.error_count,
                transformations_applied=self.transformations_applied,
                transformations_failed=self.transformations_failed,
            )


def _tile_status(report: EngineReport) -> str:
    if report.has_critical_alert:
        return "critical"
    if report.signal in (Signal.RISK_OFF, Signal.WARNING) or any(
        a.level == AlertLevel.WARNING for a in report.alerts
    ):
        return "warning"
    return "normal"
