#!/usr/bin/env python3
"""
Run the signal pipeline against a synthetic market feed.

Registers the z-score, volatility and aggregator engines on an integration
hub, feeds them a random-walk indicator source guarded by the resilience
stack, and logs every cycle's reports and system health.
"""

import asyncio
import argparse
import logging
import sys
from datetime import datetime, timezone
from pathlib import Path
from typing import Sequence

import numpy as np

# Add backend to path
sys.path.insert(0, str(Path(__file__).parent.parent / "backend"))

from signal_core.engines import SignalAggregatorEngine, VolatilityRegimeEngine, ZScoreEngine
from signal_core.models import IndicatorSample
from signal_hub.config import configure_logging, get_settings
from signal_hub.hub import IntegrationHub
from signal_hub.resilience import PriorityWorkQueue, ResilienceRegistry
from signal_hub.resilience_config import load_resilience_config

logger = logging.getLogger(__name__)

# Starting levels of the synthetic feed
START_LEVELS = {
    "VIX": 18.0,
    "VIX9D": 17.0,
    "VVIX": 90.0,
    "REALIZED_VOL": 15.0,
    "MOVE": 110.0,
    "CVIX": 8.0,
    "SPX": 4700.0,
    "DXY": 103.0,
    "TNX": 4.2,
    "HYG": 77.0,
    "TLT": 95.0,
}


class RandomWalkSource:
    """Indicator source producing a geometric random walk per symbol."""

    def __init__(self, seed: int = 7, volatility: float = 0.02):
        self.rng = np.random.default_rng(seed)
        self.volatility = volatility
        self.levels = dict(START_LEVELS)

    async def fetch(self, indicators: Sequence[str]) -> dict[str, IndicatorSample]:
        now = datetime.now(timezone.utc)
        result = {}
        for symbol in indicators:
            if symbol not in self.levels:
                continue
            shock = self.rng.normal(0.0, self.volatility)
            self.levels[symbol] *= float(np.exp(shock))
            result[symbol] = IndicatorSample(
                symbol=symbol, timestamp=now, value=self.levels[symbol]
            )
        return result


async def warm_up(queue, source, engines, points: int) -> None:
    """Fill engine histories with a batch of snapshots fetched through the queue."""
    symbols = list(START_LEVELS)
    snapshots = await asyncio.gather(*(
        queue.enqueue(lambda: source.fetch(symbols), context="warmup", max_retries=0)
        for _ in range(points)
    ))
    for engine in engines:
        for indicator in engine.indicators:
            engine.history.bulk_load(
                indicator, [s[indicator].value for s in snapshots if indicator in s]
            )


async def run(cycles: int, interval: float, api: str, seed: int, warmup: int) -> None:
    settings = get_settings()
    resilience = ResilienceRegistry(load_resilience_config(settings.resilience_config_path))
    source = resilience.guard(api, RandomWalkSource(seed=seed))

    hub = IntegrationHub.from_settings(settings, monitor=resilience.monitor)
    zscore = ZScoreEngine(source)
    volatility = VolatilityRegimeEngine(source)
    aggregator = SignalAggregatorEngine({zscore.id: 0.6, volatility.id: 0.4})
    for engine in (zscore, volatility, aggregator):
        hub.register_engine(engine, engine.metadata())

    if warmup:
        queue = PriorityWorkQueue(settings.queue_concurrency)
        await warm_up(queue, source, (zscore, volatility), warmup)
        await queue.close()

    async with hub:
        for cycle in range(1, cycles + 1):
            outcome = await hub.execute_integrated_pipeline()
            logger.info(
                f"Cycle {cycle}/{cycles}: {len(outcome.reports)} reports "
                f"in {outcome.execution_time_ms:.1f}ms"
            )
            for engine_id, report in outcome.reports.items():
                logger.info(
                    f"  {engine_id}: {report.signal.value} "
                    f"value={report.primary_metric.value:.3f} "
                    f"confidence={report.confidence:.0f}"
                )
            for engine_id in outcome.run.failed:
                logger.warning(f"  {engine_id} failed: {outcome.run.records[engine_id].error}")
            if outcome.run.skipped:
                logger.info(f"  skipped (insufficient data): {', '.join(outcome.run.skipped)}")
            health = hub.check_health()
            logger.info(
                f"  health={health.overall_health:.2f} "
                f"engines={health.engine_health:.2f} "
                f"data_flow={health.data_flow_health:.2f} "
                f"integration={health.integration_health:.2f}"
            )
            if cycle < cycles:
                await asyncio.sleep(interval)

    stats = hub.bridge.statistics()
    logger.info(
        f"Bridge: {stats.cache_size} cached entries, "
        f"{stats.transformations_applied} transformations applied"
    )
    await hub.shutdown()


def main():
    parser = argparse.ArgumentParser(description="Run the signal pipeline on synthetic data")
    parser.add_argument("--cycles", type=int, default=30, help="Pipeline cycles to run")
    parser.add_argument("--interval", type=float, default=0.2, help="Seconds between cycles")
    parser.add_argument("--api", default="finnhub", help="API policy guarding the feed")
    parser.add_argument("--seed", type=int, default=7, help="Random walk seed")
    parser.add_argument("--warmup", type=int, default=20, help="History snapshots to preload")
    parser.add_argument("--log-level", default=None, help="Override SIGNAL_HUB_LOG_LEVEL")
    args = parser.parse_args()

    configure_logging(args.log_level or get_settings().log_level)
    asyncio.run(run(args.cycles, args.interval, args.api, args.seed, args.warmup))


if __name__ == "__main__":
    main()
