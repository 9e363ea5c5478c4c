"""Bounded per-indicator value history.

Each engine owns one ``IndicatorHistory``. It keeps a ring buffer per
indicator (fixed maximum length, oldest value dropped on overflow) and
is never shared with another engine.
"""

from __future__ import annotations

import logging
import math
from collections import deque

import numpy as np

logger = logging.getLogger(__name__)

# Default window length: 84 observations (12 weeks of daily closes)
DEFAULT_LOOKBACK = 84


class IndicatorHistory:
    """Track recent values per indicator.

    Parameters
    ----------
    max_length : int
        Maximum observations kept per indicator (``L``).  Older values
        are discarded (FIFO).
    """

    def __init__(self, max_length: int = DEFAULT_LOOKBACK):
        if max_length < 1:
            raise ValueError(f"max_length must be positive, got {max_length}")
        self.max_length = max_length
        self._windows: dict[str, deque[float]] = {}

    @staticmethod
    def _is_valid(value: float) -> bool:
        """Check that a value is a finite number."""
        return isinstance(value, (int, float)) and math.isfinite(value)

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    def append(self, indicator: str, value: float) -> bool:
        """Append an observation. Returns ``False`` for NaN/inf values."""
        if not self._is_valid(value):
            return False
        window = self._windows.get(indicator)
        if window is None:
            window = self._windows[indicator] = deque(maxlen=self.max_length)
        window.append(float(value))
        return True

    def values(self, indicator: str) -> np.ndarray:
        """Return the window as a float array (oldest first)."""
        return np.asarray(self._windows.get(indicator, ()), dtype=float)

    def latest(self, indicator: str) -> float | None:
        window = self._windows.get(indicator)
        return window[-1] if window else None

    def count(self, indicator: str) -> int:
        """Return the number of stored observations."""
        return len(self._windows.get(indicator, ()))

    def fill_ratio(self, indicator: str) -> float:
        """Fraction of the window that is populated, in [0, 1]."""
        return min(self.count(indicator) / self.max_length, 1.0)

    def percentile_rank(self, indicator: str, value: float) -> float | None:
        """Empirical CDF of *value* within the window (fraction <= value)."""
        arr = self.values(indicator)
        if arr.size == 0:
            return None
        return float((arr <= value).sum() / arr.size)

    def bulk_load(self, indicator: str, values: list[float]) -> None:
        """Load a batch of historical values (warmup at startup).

        Invalid values are filtered out; only the most recent
        ``max_length`` values are kept.
        """
        clean = [v for v in values if self._is_valid(v)]
        window = self._windows.setdefault(indicator, deque(maxlen=self.max_length))
        window.extend(float(v) for v in clean)
        logger.info(
            f"History warmup: {indicator} loaded {len(clean)} values "
            f"(filtered {len(values) - len(clean)} invalid, total {len(window)})"
        )

    def indicators(self) -> list[str]:
        return sorted(self._windows)
