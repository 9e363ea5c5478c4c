"""Volatility regime engine.

Classifies the volatility regime from VIX and its 9-day counterpart and
adds term-structure, vol-of-vol and cross-asset readings. Only VIX is
mandatory; other inputs fall back to long-run typical levels.
"""

from __future__ import annotations

from typing import Mapping

from signal_core.engines.base import BaseSignalEngine
from signal_core.engines.protocol import IndicatorSource
from signal_core.history import IndicatorHistory
from signal_core.models import EngineReport, IndicatorSample, PrimaryMetric, Signal

# Typical levels used when an optional indicator is missing
DEFAULT_LEVELS: dict[str, float] = {
    "VVIX": 90.0,
    "REALIZED_VOL": 15.0,
    "MOVE": 100.0,
    "CVIX": 85.0,
}
VIX9D_DEFAULT_RATIO = 1.1

# Regime floors on the VIX/VIX9D average, most severe first
REGIME_FLOORS: list[tuple[float, str]] = [
    (35.0, "CRISIS"),
    (25.0, "STRESSED"),
    (20.0, "ELEVATED"),
    (16.0, "NORMAL"),
]

# Fallback percentile table used until the VIX window has enough history
PERCENTILE_TABLE: list[tuple[float, float]] = [
    (35.0, 95.0),
    (25.0, 85.0),
    (20.0, 70.0),
    (16.0, 50.0),
    (12.0, 30.0),
]
MIN_PERCENTILE_HISTORY = 20


def classify_volatility(vix: float, vix9d: float) -> str:
    avg = (vix + vix9d) / 2
    for floor, regime in REGIME_FLOORS:
        if avg >= floor:
            return regime
    return "LOW_VOL"


def classify_cross_asset(move: float, cvix: float) -> str:
    avg = (move / 100 + cvix / 85) / 2
    if avg > 1.2:
        return "EXTREME"
    if avg > 1.0:
        return "HIGH"
    if avg > 0.8:
        return "NORMAL"
    return "LOW"


class VolatilityRegimeEngine(BaseSignalEngine):
    """Volatility regime classification from the VIX complex."""

    engine_id = "volatility-regime"
    engine_name = "Volatility Regime Engine"
    indicators = ("VIX", "VIX9D", "VVIX", "REALIZED_VOL", "MOVE", "CVIX")
    pillar = 2
    priority = 80

    def __init__(self, source: IndicatorSource | None = None, lookback: int = 252):
        super().__init__(source)
        self.history = IndicatorHistory(max_length=lookback)

    def validate_data(self, samples: Mapping[str, IndicatorSample]) -> bool:
        return "VIX" in samples

    def calculate(self, samples: Mapping[str, IndicatorSample]) -> EngineReport:
        vix = samples["VIX"].value
        previous_vix = self.history.latest("VIX")
        self.history.append("VIX", vix)

        def level(indicator: str, default: float) -> float:
            sample = samples.get(indicator)
            return sample.value if sample is not None else default

        vix9d = level("VIX9D", vix * VIX9D_DEFAULT_RATIO)
        vvix = level("VVIX", DEFAULT_LEVELS["VVIX"])
        realized = level("REALIZED_VOL", DEFAULT_LEVELS["REALIZED_VOL"])
        move = level("MOVE", DEFAULT_LEVELS["MOVE"])
        cvix = level("CVIX", DEFAULT_LEVELS["CVIX"])

        regime = classify_volatility(vix, vix9d)
        term_structure = (vix9d - vix) / vix * 100 if vix else 0.0
        vol_of_vol = vvix / vix if vix else 0.0

        change = vix - previous_vix if previous_vix is not None else 0.0
        change_percent = change / previous_vix * 100 if previous_vix else 0.0

        return EngineReport(
            primary_metric=PrimaryMetric(
                value=vix, change=round(change, 4), change_percent=round(change_percent, 2)
            ),
            signal=self._signal(regime, term_structure, vol_of_vol),
            confidence=self._confidence(vix, vix9d, vvix, realized),
            analysis=self._analysis(regime, vix, term_structure, vol_of_vol),
            sub_metrics={
                "regime": regime,
                "vix": vix,
                "vix9d": vix9d,
                "vvix": vvix,
                "realized_vol": realized,
                "term_structure": round(term_structure, 4),
                "vol_of_vol": round(vol_of_vol, 4),
                "cross_asset_vol": classify_cross_asset(move, cvix),
                "percentile_rank": self.percentile_rank(vix),
                "contango": term_structure > 0,
                "backwardation": term_structure < 0,
            },
        )

    def percentile_rank(self, vix: float) -> float:
        """VIX percentile within the engine's own window, in percent."""
        if self.history.count("VIX") >= MIN_PERCENTILE_HISTORY:
            rank = self.history.percentile_rank("VIX", vix)
            return round(rank * 100, 1)
        for floor, pct in PERCENTILE_TABLE:
            if vix > floor:
                return pct
        return 10.0

    @staticmethod
    def _confidence(vix: float, vix9d: float, vvix: float, realized: float) -> float:
        confidence = 70.0
        # Term structure agrees with vol-of-vol
        if (vix9d > vix and vvix > 90) or (vix9d < vix and vvix < 90):
            confidence += 10
        # Implied close to realized
        if vix and abs(vix - realized) / vix < 0.2:
            confidence += 10
        # Extreme readings
        if vix > 30 or vix < 12:
            confidence += 10
        return min(100.0, confidence)

    @staticmethod
    def _signal(regime: str, term_structure: float, vol_of_vol: float) -> Signal:
        if regime in ("CRISIS", "STRESSED"):
            return Signal.RISK_OFF
        if regime == "LOW_VOL" and vol_of_vol < 5:
            return Signal.WARNING  # complacency
        if regime == "ELEVATED" and term_structure < -10:
            return Signal.WARNING  # inversion
        if regime == "NORMAL":
            return Signal.NEUTRAL
        return Signal.RISK_ON

    @staticmethod
    def _analysis(regime: str, vix: float, term_structure: float, vol_of_vol: float) -> str:
        text = f"Volatility regime: {regime} with VIX at {vix:.2f}. "
        if term_structure > 5:
            text += "Term structure in contango indicating normalized conditions. "
        elif term_structure < -5:
            text += "Term structure inverted signaling near-term stress. "
        if vol_of_vol > 6:
            text += "Elevated vol-of-vol suggests regime uncertainty. "
        return text.strip()
