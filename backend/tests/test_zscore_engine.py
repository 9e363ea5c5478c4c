"""Tests for the z-score regime engine and the shared engine lifecycle."""

import math
from datetime import datetime, timezone
from unittest.mock import AsyncMock

import pytest

from signal_core.engines import (
    DataInjectable,
    EngineStatus,
    Regime,
    SignalEngine,
    ZScoreEngine,
    classify_regime,
    classify_signal,
)
from signal_core.exceptions import InsufficientDataError
from signal_core.models import AlertLevel, Category, IndicatorSample, Signal


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------

def _sample(symbol: str, value: float) -> IndicatorSample:
    return IndicatorSample(
        symbol=symbol,
        timestamp=datetime(2024, 1, 1, tzinfo=timezone.utc),
        value=value,
    )


def _samples(**values: float) -> dict[str, IndicatorSample]:
    return {symbol: _sample(symbol, v) for symbol, v in values.items()}


def _warm_up(engine: ZScoreEngine, cycles: int = 20) -> None:
    """Feed a calm market: VIX alternating 15/16, flat SPX."""
    for i in range(cycles):
        engine.calculate(_samples(VIX=15.0 + (i % 2), SPX=4000.0))


# ---------------------------------------------------------------------------
# Classification
# ---------------------------------------------------------------------------

class TestClassification:
    """Tests for regime and signal tiers."""

    @pytest.mark.parametrize(
        "composite,regime",
        [
            (0.0, Regime.NORMAL),
            (0.5, Regime.NORMAL),
            (0.51, Regime.MILD),
            (1.2, Regime.MODERATE),
            (1.7, Regime.ELEVATED),
            (-2.2, Regime.STRESSED),
            (2.51, Regime.EXTREME),
        ],
    )
    def test_regime_tiers(self, composite, regime):
        assert classify_regime(composite) == regime

    def test_regime_is_monotonic_in_magnitude(self):
        """A larger |composite| never maps to a calmer regime."""
        order = list(Regime)
        previous = 0
        for step in range(0, 400):
            rank = order.index(classify_regime(step / 100))
            assert rank >= previous
            previous = rank

    def test_signal_tiers(self):
        assert classify_signal(2.1) == Signal.RISK_OFF
        assert classify_signal(1.5) == Signal.WARNING
        assert classify_signal(0.0) == Signal.NEUTRAL
        assert classify_signal(-1.5) == Signal.NEUTRAL
        assert classify_signal(-2.1) == Signal.RISK_ON


# ---------------------------------------------------------------------------
# Calculation
# ---------------------------------------------------------------------------

class TestZScoreCalculation:
    """Tests for composite scoring."""

    def test_short_history_scores_zero(self):
        engine = ZScoreEngine()
        report = engine.calculate(_samples(VIX=20.0, SPX=4000.0))
        assert report.primary_metric.value == 0.0
        assert report.signal == Signal.NEUTRAL
        assert report.sub_metrics["regime"] == Regime.NORMAL.value
        assert report.sub_metrics["individual_scores"] == {"VIX": 0.0, "SPX": 0.0}

    def test_constant_indicator_scores_zero(self):
        engine = ZScoreEngine()
        _warm_up(engine)
        report = engine.calculate(_samples(VIX=15.0, SPX=4000.0))
        assert report.sub_metrics["individual_scores"]["SPX"] == 0.0

    def test_spike_is_extreme(self):
        engine = ZScoreEngine()
        _warm_up(engine)

        report = engine.calculate(_samples(VIX=30.0, SPX=4000.0))

        assert report.sub_metrics["regime"] == Regime.EXTREME.value
        assert report.signal == Signal.RISK_OFF
        assert report.sub_metrics["outliers"] == 1
        assert report.has_critical_alert
        assert any(a.level == AlertLevel.CRITICAL for a in report.alerts)
        assert "Outliers: VIX" in report.analysis

    def test_confidence_penalised_for_coverage_outliers_and_disagreement(self):
        engine = ZScoreEngine()
        _warm_up(engine)
        report = engine.calculate(_samples(VIX=30.0, SPX=4000.0))
        # 2 of 4 indicators, one outlier, scores split between buckets
        assert report.confidence == pytest.approx(100 * 0.5 * 0.9 * 0.5)

    def test_confidence_full_with_complete_calm_inputs(self):
        engine = ZScoreEngine()
        report = engine.calculate(_samples(VIX=15.0, SPX=4000.0, DXY=104.0, TNX=4.2))
        assert report.confidence == 100.0

    def test_change_against_previous_composite(self):
        engine = ZScoreEngine()
        _warm_up(engine)
        first = engine.calculate(_samples(VIX=20.0, SPX=4000.0))
        second = engine.calculate(_samples(VIX=15.0, SPX=4000.0))
        expected = second.primary_metric.value - first.primary_metric.value
        assert second.primary_metric.change == pytest.approx(expected, abs=1e-6)

    def test_history_window_is_capped(self):
        engine = ZScoreEngine(lookback=20)
        for i in range(50):
            engine.calculate(_samples(VIX=15.0 + i % 3, SPX=4000.0 + i))
        assert engine.history.count("VIX") == 20
        assert engine.history.count("SPX") == 20
        assert engine.data_quality() == 100.0

    def test_chart_history_is_bounded(self):
        engine = ZScoreEngine()
        for i in range(40):
            report = engine.calculate(_samples(VIX=15.0 + i % 2, SPX=4000.0))
        assert len(report.sub_metrics["history"]) == 30

    def test_missing_indicator_not_scored(self):
        engine = ZScoreEngine()
        report = engine.calculate(_samples(VIX=15.0, DXY=104.0))
        assert set(report.sub_metrics["individual_scores"]) == {"VIX", "DXY"}

    def test_non_finite_value_treated_as_missing(self):
        engine = ZScoreEngine()
        _warm_up(engine)

        report = engine.calculate(_samples(VIX=float("nan"), SPX=4000.0))

        assert set(report.sub_metrics["individual_scores"]) == {"SPX"}
        assert report.primary_metric.value == 0.0
        assert math.isfinite(report.primary_metric.change)
        assert report.confidence == 25.0
        assert engine.history.count("VIX") == 20
        assert all(math.isfinite(v) for v in report.sub_metrics["history"])

        following = engine.calculate(_samples(VIX=15.0, SPX=4000.0))
        assert following.primary_metric.change == following.primary_metric.value


class TestZScoreValidation:
    """Tests for input sufficiency."""

    def test_half_of_indicators_is_enough(self):
        engine = ZScoreEngine()
        assert engine.validate_data(_samples(VIX=15.0, TNX=4.0)) is True

    def test_single_indicator_is_not_enough(self):
        engine = ZScoreEngine()
        assert engine.validate_data(_samples(VIX=15.0)) is False

    def test_metadata(self):
        meta = ZScoreEngine().metadata()
        assert meta.id == "zscore-foundation"
        assert meta.category == Category.FOUNDATION
        assert meta.indicators == frozenset({"VIX", "SPX", "DXY", "TNX"})

    def test_satisfies_protocols(self):
        engine = ZScoreEngine()
        assert isinstance(engine, SignalEngine)
        assert isinstance(engine, DataInjectable)


# ---------------------------------------------------------------------------
# Lifecycle
# ---------------------------------------------------------------------------

class TestEngineLifecycle:
    """Tests for execute(): gathering, validation and state."""

    @pytest.mark.asyncio
    async def test_execute_with_source(self):
        source = AsyncMock()
        source.fetch.return_value = _samples(VIX=15.0, SPX=4000.0, DXY=104.0, TNX=4.2)
        engine = ZScoreEngine(source)

        report = await engine.execute({})

        source.fetch.assert_awaited_once_with(["VIX", "SPX", "DXY", "TNX"])
        assert report.confidence == 100.0
        assert engine.state.status == EngineStatus.IDLE
        assert engine.state.last_success is not None
        assert engine.is_healthy

    @pytest.mark.asyncio
    async def test_injected_samples_used_once(self):
        engine = ZScoreEngine()
        engine.inject_data("VIX", _sample("VIX", 15.0))
        engine.inject_data("SPX", _sample("SPX", 4000.0))

        await engine.execute({})

        with pytest.raises(InsufficientDataError):
            await engine.execute({})

    @pytest.mark.asyncio
    async def test_insufficient_data_degrades(self):
        source = AsyncMock()
        source.fetch.return_value = _samples(VIX=15.0)
        engine = ZScoreEngine(source)

        with pytest.raises(InsufficientDataError) as exc_info:
            await engine.execute({})

        assert exc_info.value.present == 1
        assert exc_info.value.required == 4
        assert engine.state.status == EngineStatus.DEGRADED
        assert engine.state.consecutive_failures == 0

    @pytest.mark.asyncio
    async def test_repeated_failures_go_offline(self):
        source = AsyncMock()
        source.fetch.side_effect = ConnectionError("feed down")
        engine = ZScoreEngine(source)

        for _ in range(2):
            with pytest.raises(ConnectionError):
                await engine.execute({})
        assert engine.state.status == EngineStatus.ERROR

        with pytest.raises(ConnectionError):
            await engine.execute({})
        assert engine.state.status == EngineStatus.OFFLINE
        assert not engine.is_healthy

    @pytest.mark.asyncio
    async def test_success_resets_failure_count(self):
        source = AsyncMock()
        source.fetch.side_effect = [
            ConnectionError("blip"),
            _samples(VIX=15.0, SPX=4000.0),
        ]
        engine = ZScoreEngine(source)

        with pytest.raises(ConnectionError):
            await engine.execute({})
        await engine.execute({})

        assert engine.state.consecutive_failures == 0
        assert engine.state.status == EngineStatus.IDLE
