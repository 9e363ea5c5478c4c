"""Z-score regime engine.

Scores each macro indicator against its own recent history, combines
the scores into a weighted composite and classifies the market regime.

Per indicator and cycle:
1. Append the latest value to the indicator's window (length ``L``).
2. Windows shorter than ``MIN_HISTORY`` score 0.
3. Drop IQR outliers; fewer than ``MIN_CLEAN_POINTS`` remaining scores 0.
4. z = (current - mean) / std (Bessel), rounded to 6 decimals.
"""

from __future__ import annotations

import logging
from collections import deque
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Mapping

from signal_core import stats
from signal_core.engines.base import BaseSignalEngine
from signal_core.engines.protocol import IndicatorSource
from signal_core.history import DEFAULT_LOOKBACK, IndicatorHistory
from signal_core.models import (
    Alert,
    AlertLevel,
    EngineReport,
    IndicatorSample,
    PrimaryMetric,
    Signal,
)

logger = logging.getLogger(__name__)

INDICATOR_WEIGHTS: dict[str, float] = {
    "VIX": 0.4,
    "SPX": 0.3,
    "DXY": 0.2,
    "TNX": 0.1,
}
DEFAULT_WEIGHT = 0.1

MIN_HISTORY = 10
MIN_CLEAN_POINTS = 5
OUTLIER_THRESHOLD = 3.0

# Confidence penalties
OUTLIER_PENALTY = 0.1
MAX_OUTLIER_PENALTY = 0.5

CRITICAL_COMPOSITE = 2.5
MAX_OUTLIERS_BEFORE_WARNING = 2

# Number of past composites exposed for chart output
CHART_POINTS = 30


class Regime(str, Enum):
    """Stress regime, ordered from calm to extreme."""

    NORMAL = "NORMAL"
    MILD = "MILD"
    MODERATE = "MODERATE"
    ELEVATED = "ELEVATED"
    STRESSED = "STRESSED"
    EXTREME = "EXTREME"


# (exclusive lower bound on |composite|, regime), most severe first
REGIME_THRESHOLDS: list[tuple[float, Regime]] = [
    (2.5, Regime.EXTREME),
    (2.0, Regime.STRESSED),
    (1.5, Regime.ELEVATED),
    (1.0, Regime.MODERATE),
    (0.5, Regime.MILD),
]


def classify_regime(composite: float) -> Regime:
    """Map ``|composite|`` to a regime tier."""
    magnitude = abs(composite)
    for threshold, regime in REGIME_THRESHOLDS:
        if magnitude > threshold:
            return regime
    return Regime.NORMAL


def classify_signal(composite: float) -> Signal:
    """Map the signed composite to a trading signal."""
    if composite > 2.0:
        return Signal.RISK_OFF
    if composite > 1.0:
        return Signal.WARNING
    if composite < -2.0:
        return Signal.RISK_ON
    return Signal.NEUTRAL


@dataclass
class ZScoreMetrics:
    """Intermediate results of one cycle."""

    composite: float
    individual: dict[str, float] = field(default_factory=dict)
    outliers: list[str] = field(default_factory=list)
    confidence: float = 0.0
    regime: Regime = Regime.NORMAL


class ZScoreEngine(BaseSignalEngine):
    """Composite z-score engine over VIX, SPX, DXY and TNX."""

    engine_id = "zscore-foundation"
    engine_name = "Enhanced Z-Score Foundation"
    indicators = tuple(INDICATOR_WEIGHTS)
    pillar = 1
    priority = 90

    def __init__(
        self,
        source: IndicatorSource | None = None,
        lookback: int = DEFAULT_LOOKBACK,
        weights: Mapping[str, float] | None = None,
    ):
        super().__init__(source)
        self.lookback = lookback
        self.weights = dict(weights or INDICATOR_WEIGHTS)
        self.history = IndicatorHistory(max_length=lookback)
        self._composites: deque[float] = deque(maxlen=CHART_POINTS)

    # ------------------------------------------------------------------
    # Calculation
    # ------------------------------------------------------------------

    def score_indicator(self, indicator: str, value: float) -> float | None:
        """Append *value* to the indicator window and score it.

        Returns ``None`` for a non-finite value, which is neither stored
        nor scored.
        """
        if not self.history.append(indicator, value):
            return None
        if self.history.count(indicator) < MIN_HISTORY:
            return 0.0
        cleaned = stats.remove_outliers(self.history.values(indicator))
        if cleaned.size < MIN_CLEAN_POINTS:
            return 0.0
        return stats.zscore(value, cleaned)

    def compute_metrics(self, samples: Mapping[str, IndicatorSample]) -> ZScoreMetrics:
        individual: dict[str, float] = {}
        outliers: list[str] = []
        for indicator in self.indicators:
            sample = samples.get(indicator)
            if sample is None:
                continue
            score = self.score_indicator(indicator, sample.value)
            if score is None:
                logger.warning(f"Ignoring non-finite {indicator} value: {sample.value}")
                continue
            individual[indicator] = score
            if abs(score) > OUTLIER_THRESHOLD:
                outliers.append(indicator)

        composite = stats.weighted_mean(individual, self.weights, DEFAULT_WEIGHT)
        return ZScoreMetrics(
            composite=composite,
            individual=individual,
            outliers=outliers,
            confidence=self._confidence(individual, len(outliers)),
            regime=classify_regime(composite),
        )

    def _confidence(self, individual: dict[str, float], outlier_count: int) -> float:
        confidence = 100.0
        confidence *= len(individual) / len(self.indicators)
        confidence *= 1 - min(outlier_count * OUTLIER_PENALTY, MAX_OUTLIER_PENALTY)
        if len(individual) > 1:
            confidence *= stats.agreement_ratio(list(individual.values()))
        return round(stats.clamp(confidence, 0.0, 100.0), 1)

    def data_quality(self) -> float:
        """Mean window fill across indicators with data, in percent."""
        filled = [
            self.history.fill_ratio(ind)
            for ind in self.history.indicators()
            if self.history.count(ind) > 0
        ]
        if not filled:
            return 0.0
        return round(sum(filled) / len(filled) * 100, 1)

    def calculate(self, samples: Mapping[str, IndicatorSample]) -> EngineReport:
        metrics = self.compute_metrics(samples)

        previous = self._composites[-1] if self._composites else None
        self._composites.append(metrics.composite)
        change = metrics.composite - previous if previous is not None else 0.0
        change_percent = change / abs(previous) * 100 if previous else 0.0

        return EngineReport(
            primary_metric=PrimaryMetric(
                value=metrics.composite,
                change=round(change, stats.SCORE_DECIMALS),
                change_percent=round(change_percent, 2),
            ),
            signal=classify_signal(metrics.composite),
            confidence=metrics.confidence,
            analysis=self._analysis(metrics),
            sub_metrics={
                "regime": metrics.regime.value,
                "outliers": len(metrics.outliers),
                "individual_scores": dict(metrics.individual),
                "data_quality": self.data_quality(),
                "history": list(self._composites),
            },
            alerts=self._alerts(metrics),
        )

    # ------------------------------------------------------------------
    # Presentation
    # ------------------------------------------------------------------

    @staticmethod
    def _analysis(metrics: ZScoreMetrics) -> str:
        composite = metrics.composite
        text = f"Z-Score regime: {metrics.regime.value} ({composite:.2f}σ). "
        if abs(composite) > 2.0:
            text += "Extreme deviation detected, "
            text += "elevated stress signals." if composite > 0 else "strong contrarian signals."
        elif abs(composite) > 1.0:
            text += "Moderate deviation, market "
            text += "showing stress patterns." if composite > 0 else "potentially oversold."
        else:
            text += "Market indicators within normal ranges."
        if metrics.outliers:
            text += f" Outliers: {', '.join(metrics.outliers)}."
        return text

    @staticmethod
    def _alerts(metrics: ZScoreMetrics) -> list[Alert]:
        now = datetime.now(timezone.utc)
        alerts = []
        if abs(metrics.composite) > CRITICAL_COMPOSITE:
            alerts.append(Alert(
                level=AlertLevel.CRITICAL,
                message=f"Extreme Z-Score deviation: {metrics.composite:.2f}σ",
                timestamp=now,
            ))
        if len(metrics.outliers) > MAX_OUTLIERS_BEFORE_WARNING:
            alerts.append(Alert(
                level=AlertLevel.WARNING,
                message=f"Multiple outliers detected: {', '.join(metrics.outliers)}",
                timestamp=now,
            ))
        return alerts
