"""Data models."""

from signal_core.models.indicator import IndicatorSample
from signal_core.models.report import (
    Alert,
    AlertLevel,
    EngineReport,
    PrimaryMetric,
    Signal,
)
from signal_core.models.metadata import Category, EngineMetadata, PILLAR_CATEGORIES
from signal_core.models.metrics import PerformanceMetrics, SystemHealthMetrics, Trend
from signal_core.models.bridged import BridgedData, OutputFormat

__all__ = [
    "IndicatorSample",
    "Alert",
    "AlertLevel",
    "EngineReport",
    "PrimaryMetric",
    "Signal",
    "Category",
    "EngineMetadata",
    "PILLAR_CATEGORIES",
    "PerformanceMetrics",
    "SystemHealthMetrics",
    "Trend",
    "BridgedData",
    "OutputFormat",
]
