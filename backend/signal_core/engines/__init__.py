"""Signal engines.

Public API:
- SignalEngine: Protocol that all engines must implement
- DataInjectable: optional capability for pushed samples
- IndicatorSource: async provider of indicator samples
- BaseSignalEngine: shared lifecycle for concrete engines
- ZScoreEngine, VolatilityRegimeEngine, SignalAggregatorEngine
"""

from signal_core.engines.protocol import DataInjectable, IndicatorSource, SignalEngine
from signal_core.engines.base import BaseSignalEngine, EngineState, EngineStatus
from signal_core.engines.zscore import Regime, ZScoreEngine, classify_regime, classify_signal
from signal_core.engines.volatility import VolatilityRegimeEngine
from signal_core.engines.aggregator import SignalAggregatorEngine

__all__ = [
    "DataInjectable",
    "IndicatorSource",
    "SignalEngine",
    "BaseSignalEngine",
    "EngineState",
    "EngineStatus",
    "Regime",
    "ZScoreEngine",
    "classify_regime",
    "classify_signal",
    "VolatilityRegimeEngine",
    "SignalAggregatorEngine",
]
