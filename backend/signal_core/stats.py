"""Statistical helpers for indicator windows.

All functions take plain sequences or numpy arrays and return Python
floats so results can be stored in pydantic models directly.
"""

from __future__ import annotations

import math
from typing import Mapping, Sequence

import numpy as np

# Tukey fence multiplier for the IQR outlier rule
IQR_MULTIPLIER = 1.5

# Below this many points, outlier removal is not attempted
MIN_POINTS_FOR_IQR = 4

SCORE_DECIMALS = 6


def iqr_bounds(values: Sequence[float] | np.ndarray) -> tuple[float, float]:
    """Return ``(lower, upper)`` Tukey fences.

    Quartiles are taken by index on the sorted series
    (``sorted[floor(n/4)]`` and ``sorted[floor(3n/4)]``), without
    interpolation.
    """
    arr = np.sort(np.asarray(values, dtype=float))
    n = arr.size
    q1 = arr[n // 4]
    q3 = arr[(3 * n) // 4]
    iqr = q3 - q1
    return float(q1 - IQR_MULTIPLIER * iqr), float(q3 + IQR_MULTIPLIER * iqr)


def remove_outliers(values: Sequence[float] | np.ndarray) -> np.ndarray:
    """Drop values outside the IQR fences.

    Series shorter than ``MIN_POINTS_FOR_IQR`` are returned unchanged.
    """
    arr = np.asarray(values, dtype=float)
    if arr.size < MIN_POINTS_FOR_IQR:
        return arr
    lower, upper = iqr_bounds(arr)
    return arr[(arr >= lower) & (arr <= upper)]


def sample_std(values: Sequence[float] | np.ndarray) -> float:
    """Standard deviation with Bessel's correction (n - 1 divisor)."""
    arr = np.asarray(values, dtype=float)
    if arr.size < 2:
        return 0.0
    return float(np.std(arr, ddof=1))


def zscore(current: float, series: Sequence[float] | np.ndarray) -> float:
    """Score *current* against *series*, rounded to 6 decimals.

    Returns exactly 0.0 when the series has no dispersion.
    """
    arr = np.asarray(series, dtype=float)
    if arr.size == 0:
        return 0.0
    std = sample_std(arr)
    if std == 0 or not math.isfinite(std):
        return 0.0
    return round((current - float(arr.mean())) / std, SCORE_DECIMALS)


def weighted_mean(
    scores: Mapping[str, float],
    weights: Mapping[str, float],
    default_weight: float = 0.1,
) -> float:
    """Weighted mean of ``scores``, rounded to 6 decimals (0.0 if empty)."""
    total_weight = 0.0
    acc = 0.0
    for key, score in scores.items():
        w = weights.get(key, default_weight)
        acc += score * w
        total_weight += w
    if total_weight == 0:
        return 0.0
    return round(acc / total_weight, SCORE_DECIMALS)


def agreement_ratio(scores: Sequence[float], band: float = 0.5) -> float:
    """Share of scores in the most populated sign bucket.

    Buckets are positive (> band), negative (< -band) and neutral.
    Returns 1.0 for fewer than two scores.
    """
    if len(scores) < 2:
        return 1.0
    positive = sum(1 for s in scores if s > band)
    negative = sum(1 for s in scores if s < -band)
    neutral = len(scores) - positive - negative
    return max(positive, negative, neutral) / len(scores)


def clamp(value: float, lower: float, upper: float) -> float:
    return max(lower, min(upper, value))
