"""Signal aggregation engine.

Combines the signals of upstream engines into a weighted consensus.
It reads no indicators; its inputs are the reports of its declared
dependencies from the same pipeline run.
"""

from __future__ import annotations

from collections import Counter
from typing import Mapping

from signal_core import stats
from signal_core.engines.base import BaseSignalEngine
from signal_core.models import (
    Alert,
    AlertLevel,
    EngineReport,
    IndicatorSample,
    PrimaryMetric,
    Signal,
)

SIGNAL_VALUES: dict[Signal, float] = {
    Signal.RISK_ON: 1.0,
    Signal.WARNING: 0.5,
    Signal.NEUTRAL: 0.0,
    Signal.RISK_OFF: -1.0,
}

# Mean squared deviation of vote shares from an even split when one
# signal takes every vote: ((1 - .25)^2 + 3 * .25^2) / 4
_UNANIMOUS_SPREAD = 0.1875

CONFLICT_WARNING = 0.6
CONSENSUS_BONUS = 10.0
CONFLICT_PENALTY = 15.0


def conflict_level(votes: Mapping[Signal, float], total_weight: float) -> float:
    """0 when every vote agrees, 1 when votes split evenly across signals."""
    if total_weight <= 0:
        return 0.0
    shares = [votes.get(s, 0.0) / total_weight for s in SIGNAL_VALUES]
    spread = sum((share - 0.25) ** 2 for share in shares) / len(shares)
    return stats.clamp(1 - spread / _UNANIMOUS_SPREAD, 0.0, 1.0)


class SignalAggregatorEngine(BaseSignalEngine):
    """Weighted consensus over upstream engine signals."""

    engine_id = "signal-aggregator"
    engine_name = "Signal Aggregator"
    pillar = 3
    priority = 70

    def __init__(self, weights: Mapping[str, float]):
        super().__init__(source=None)
        if not weights:
            raise ValueError("SignalAggregatorEngine needs at least one upstream engine")
        self.weights = dict(weights)
        self._upstream: dict[str, EngineReport] = {}

    @property
    def dependencies(self) -> frozenset[str]:
        return frozenset(self.weights)

    def prepare(self, upstream: Mapping[str, EngineReport]) -> None:
        self._upstream = {k: v for k, v in upstream.items() if k in self.weights}

    def validate_data(self, samples: Mapping[str, IndicatorSample]) -> bool:
        return bool(self._upstream)

    def calculate(self, samples: Mapping[str, IndicatorSample]) -> EngineReport:
        votes: Counter[Signal] = Counter()
        total_weight = 0.0
        weighted_value = 0.0
        weighted_confidence = 0.0
        for engine_id, report in self._upstream.items():
            weight = self.weights[engine_id]
            votes[report.signal] += weight
            total_weight += weight
            weighted_value += SIGNAL_VALUES[report.signal] * weight
            weighted_confidence += report.confidence * weight

        dominant, max_votes = (
            max(votes.items(), key=lambda kv: kv[1]) if votes else (Signal.NEUTRAL, 0.0)
        )
        consensus = max_votes / total_weight if total_weight else 0.0
        conflict = conflict_level(votes, total_weight)
        base_confidence = weighted_confidence / total_weight if total_weight else 0.0
        confidence = stats.clamp(
            base_confidence + consensus * CONSENSUS_BONUS - conflict * CONFLICT_PENALTY,
            0.0,
            100.0,
        )

        alerts = []
        if conflict > CONFLICT_WARNING:
            alerts.append(Alert(
                level=AlertLevel.WARNING,
                message=f"Engine signals conflict ({conflict:.0%})",
            ))

        return EngineReport(
            primary_metric=PrimaryMetric(
                value=round(weighted_value / total_weight, 4) if total_weight else 0.0
            ),
            signal=dominant,
            confidence=round(confidence, 1),
            analysis=self._analysis(dominant, consensus, conflict, len(self._upstream)),
            sub_metrics={
                "consensus": round(consensus * 100),
                "conflict_level": round(conflict * 100),
                "participating_engines": len(self._upstream),
                "votes": {s.value: votes.get(s, 0.0) for s in SIGNAL_VALUES},
            },
            alerts=alerts,
        )

    @staticmethod
    def _analysis(dominant: Signal, consensus: float, conflict: float, engines: int) -> str:
        text = f"Market consensus: {consensus * 100:.1f}% {dominant.value}. "
        if conflict > 0.4:
            text += f"High signal conflict detected ({conflict * 100:.1f}%). "
            text += "Mixed market conditions suggest increased uncertainty."
        elif consensus > 0.7:
            text += f"Strong consensus across {engines} engines. "
            text += "Clear directional signal with high confidence."
        else:
            text += "Moderate consensus with some divergence. "
            text += "Market direction unclear, monitor for confirmation."
        return text
