"""Tests for the engine registry."""

import asyncio
from typing import Mapping

import pytest

from signal_core.engines import BaseSignalEngine
from signal_core.exceptions import (
    DuplicateEngineError,
    EngineNotFoundError,
    InsufficientDataError,
)
from signal_core.models import (
    Category,
    EngineMetadata,
    EngineReport,
    IndicatorSample,
    PrimaryMetric,
)
from signal_core.registry import (
    EngineRegistry,
    ExecutionFailed,
    ExecutionSkipped,
    ExecutionSucceeded,
)


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------

class StubEngine(BaseSignalEngine):
    """Engine with scripted behaviour for registry tests."""

    def __init__(self, engine_id: str, value: float = 1.0, error: Exception | None = None):
        super().__init__()
        self.engine_id = engine_id
        self.value = value
        self.error = error
        self.calls = 0

    def calculate(self, samples: Mapping[str, IndicatorSample]) -> EngineReport:
        self.calls += 1
        if self.error is not None:
            raise self.error
        return EngineReport(primary_metric=PrimaryMetric(value=self.value), confidence=75.0)


class SlowEngine(StubEngine):
    async def execute(self, upstream):
        await asyncio.sleep(1)
        return await super().execute(upstream)


def _meta(engine_id: str, **kwargs) -> EngineMetadata:
    return EngineMetadata(id=engine_id, name=engine_id.title(), **kwargs)


# ---------------------------------------------------------------------------
# Registration
# ---------------------------------------------------------------------------

class TestRegistration:
    """Tests for register/unregister and lookups."""

    def test_register_and_lookup(self):
        registry = EngineRegistry()
        engine = StubEngine("a")
        registry.register(engine, _meta("a", pillar=2))

        assert registry.get_engine("a") is engine
        assert registry.get_metadata("a").category == Category.CORE
        assert "a" in registry
        assert len(registry) == 1

    def test_duplicate_id_rejected(self):
        registry = EngineRegistry()
        registry.register(StubEngine("a"), _meta("a"))

        with pytest.raises(DuplicateEngineError):
            registry.register(StubEngine("a"), _meta("a"))
        # DuplicateEngineError is also a ValueError
        with pytest.raises(ValueError):
            registry.register(StubEngine("a"), _meta("a"))

    def test_metadata_id_mismatch_rejected(self):
        registry = EngineRegistry()
        with pytest.raises(ValueError, match="does not match"):
            registry.register(StubEngine("a"), _meta("b"))
        assert len(registry) == 0

    def test_unknown_engine_lists_available(self):
        registry = EngineRegistry()
        registry.register(StubEngine("beta"), _meta("beta"))
        registry.register(StubEngine("alpha"), _meta("alpha"))

        with pytest.raises(EngineNotFoundError) as exc_info:
            registry.require("gamma")

        assert str(exc_info.value) == "Unknown engine 'gamma'. Available: alpha, beta"
        assert isinstance(exc_info.value, KeyError)

    def test_unknown_engine_on_empty_registry(self):
        with pytest.raises(EngineNotFoundError, match=r"\(none\)"):
            EngineRegistry().require("x")

    def test_get_engine_missing_returns_none(self):
        registry = EngineRegistry()
        assert registry.get_engine("x") is None
        assert registry.get_metadata("x") is None

    def test_metadata_sorted_by_priority_then_id(self):
        registry = EngineRegistry()
        for engine_id, priority in [("c", 10), ("b", 50), ("a", 50), ("d", 90)]:
            registry.register(StubEngine(engine_id), _meta(engine_id, priority=priority))

        assert [m.id for m in registry.get_all_metadata()] == ["d", "a", "b", "c"]

    def test_filters_by_category_and_pillar(self):
        registry = EngineRegistry()
        registry.register(StubEngine("f"), _meta("f", pillar=1))
        registry.register(StubEngine("s"), _meta("s", pillar=3))
        registry.register(StubEngine("x"), _meta("x", pillar=4))

        assert [m.id for m in registry.get_by_category(Category.SYNTHESIS)] == ["s"]
        assert [m.id for m in registry.get_by_category(Category.EXECUTION)] == ["x"]
        assert [m.id for m in registry.get_by_pillar(1)] == ["f"]

    def test_registered_event(self):
        registry = EngineRegistry()
        seen = []
        registry.on_registered.subscribe(seen.append)
        meta = _meta("a")
        registry.register(StubEngine("a"), meta)
        assert seen == [meta]

    def test_self_dependency_rejected_by_metadata(self):
        with pytest.raises(ValueError):
            _meta("a", dependencies=frozenset({"a"}))


class TestInterestTable:
    """Tests for indicator -> engine routing."""

    def test_exact_match_in_registration_order(self):
        registry = EngineRegistry()
        registry.register(StubEngine("z"), _meta("z", indicators=frozenset({"VIX", "SPX"})))
        registry.register(StubEngine("v"), _meta("v", indicators=frozenset({"VIX"})))

        assert registry.engines_for_indicator("VIX") == ("z", "v")
        assert registry.engines_for_indicator("SPX") == ("z",)
        # no substring matching
        assert registry.engines_for_indicator("VIX9D") == ()
        assert registry.engines_for_indicator("VI") == ()

    def test_unregister_removes_interest(self):
        registry = EngineRegistry()
        registry.register(StubEngine("z"), _meta("z", indicators=frozenset({"VIX"})))

        assert registry.unregister("z") is True
        assert registry.unregister("z") is False
        assert registry.engines_for_indicator("VIX") == ()
        assert "z" not in registry


# ---------------------------------------------------------------------------
# Execution
# ---------------------------------------------------------------------------

class TestExecuteEngine:
    """Tests for execute_engine events and propagation."""

    @pytest.mark.asyncio
    async def test_success_event(self):
        registry = EngineRegistry()
        registry.register(StubEngine("a", value=3.0), _meta("a"))
        events = []
        registry.on_success.subscribe(events.append)

        report = await registry.execute_engine("a")

        assert report.primary_metric.value == 3.0
        assert len(events) == 1
        assert isinstance(events[0], ExecutionSucceeded)
        assert events[0].report is report
        assert events[0].duration_ms >= 0

    @pytest.mark.asyncio
    async def test_error_event_and_reraise(self):
        registry = EngineRegistry()
        registry.register(StubEngine("a", error=RuntimeError("broken")), _meta("a"))
        errors = []
        registry.on_error.subscribe(errors.append)

        with pytest.raises(RuntimeError, match="broken"):
            await registry.execute_engine("a")

        assert len(errors) == 1
        assert isinstance(errors[0], ExecutionFailed)
        assert str(errors[0].error) == "broken"

    @pytest.mark.asyncio
    async def test_insufficient_data_is_skip_not_error(self):
        registry = EngineRegistry()
        registry.register(
            StubEngine("a", error=InsufficientDataError("a", 0, 2)), _meta("a")
        )
        skipped, errors = [], []
        registry.on_skipped.subscribe(skipped.append)
        registry.on_error.subscribe(errors.append)

        with pytest.raises(InsufficientDataError):
            await registry.execute_engine("a")

        assert [type(e) for e in skipped] == [ExecutionSkipped]
        assert errors == []

    @pytest.mark.asyncio
    async def test_timeout_is_error(self):
        registry = EngineRegistry()
        registry.register(SlowEngine("slow"), _meta("slow"))
        errors = []
        registry.on_error.subscribe(errors.append)

        with pytest.raises(asyncio.TimeoutError):
            await registry.execute_engine("slow", timeout=0.01)

        assert len(errors) == 1

    @pytest.mark.asyncio
    async def test_unknown_engine(self):
        with pytest.raises(EngineNotFoundError):
            await EngineRegistry().execute_engine("missing")

    @pytest.mark.asyncio
    async def test_subscriber_error_does_not_fail_execution(self):
        registry = EngineRegistry()
        registry.register(StubEngine("a"), _meta("a"))

        def broken(event):
            raise RuntimeError("subscriber bug")

        registry.on_success.subscribe(broken)
        report = await registry.execute_engine("a")
        assert report.confidence == 75.0

    @pytest.mark.asyncio
    async def test_subscribe_engine_filters_and_unsubscribes(self):
        registry = EngineRegistry()
        registry.register(StubEngine("a", value=1.0), _meta("a"))
        registry.register(StubEngine("b", value=2.0), _meta("b"))
        values = []
        unsubscribe = registry.subscribe_engine("b", lambda r: values.append(r.primary_metric.value))

        await registry.execute_engine("a")
        await registry.execute_engine("b")
        unsubscribe()
        await registry.execute_engine("b")

        assert values == [2.0]
