"""Clock abstraction and lifecycle-owned periodic tasks.

Every timing decision (token refill, cache expiry, health interval)
goes through a ``Clock`` so tests can drive time with ``ManualClock``
instead of waiting on the wall clock.
"""

from __future__ import annotations

import asyncio
import inspect
import logging
import time
from datetime import datetime, timezone
from typing import Any, Awaitable, Callable, Protocol

logger = logging.getLogger(__name__)


class Clock(Protocol):
    """Time source used by runtime components."""

    def time(self) -> float:
        """Current time in seconds (epoch based)."""
        ...

    def now(self) -> datetime:
        """Current UTC datetime."""
        ...

    async def sleep(self, seconds: float) -> None:
        ...


class SystemClock:
    """Production clock backed by the system time and asyncio.sleep."""

    def time(self) -> float:
        return time.time()

    def now(self) -> datetime:
        return datetime.now(timezone.utc)

    async def sleep(self, seconds: float) -> None:
        await asyncio.sleep(seconds)


class ManualClock:
    """Deterministic clock for tests and replays.

    ``sleep`` advances the clock by the requested amount and yields to
    the event loop once, so code under test observes the elapsed time
    without real waiting.
    """

    def __init__(self, start: float = 1_700_000_000.0):
        self._now = start
        self.sleeps: list[float] = []

    def time(self) -> float:
        return self._now

    def now(self) -> datetime:
        return datetime.fromtimestamp(self._now, tz=timezone.utc)

    def advance(self, seconds: float) -> None:
        if seconds < 0:
            raise ValueError("Cannot move a clock backwards")
        self._now += seconds

    async def sleep(self, seconds: float) -> None:
        self.sleeps.append(seconds)
        self.advance(max(0.0, seconds))
        await asyncio.sleep(0)


class PeriodicTask:
    """Run a callback every ``interval`` seconds between start() and stop().

    The callback may be sync or async. Errors are logged and the loop
    keeps going; cancellation ends it.
    """

    def __init__(
        self,
        name: str,
        interval: float,
        callback: Callable[[], Any | Awaitable[Any]],
        clock: Clock | None = None,
    ):
        if interval <= 0:
            raise ValueError(f"{name}: interval must be positive, got {interval}")
        self.name = name
        self.interval = interval
        self.callback = callback
        self.clock = clock or SystemClock()
        self.runs = 0
        self._task: asyncio.Task | None = None

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    def start(self) -> None:
        """Schedule the loop on the running event loop (idempotent)."""
        if self.running:
            return
        self._task = asyncio.create_task(self._loop(), name=self.name)
        logger.debug(f"Started periodic task {self.name} (every {self.interval:.1f}s)")

    async def stop(self) -> None:
        """Cancel the loop and wait for it to finish."""
        task, self._task = self._task, None
        if task is None:
            return
        task.cancel()
        try:
            await task
        except asyncio.CancelledError:
            pass
        logger.debug(f"Stopped periodic task {self.name} after {self.runs} runs")

    async def run_once(self) -> None:
        """Invoke the callback immediately (used by the loop and by tests)."""
        result = self.callback()
        if inspect.isawaitable(result):
            await result
        self.runs += 1

    async def _loop(self) -> None:
        while True:
            try:
                await self.clock.sleep(self.interval)
                await self.run_once()
            except asyncio.CancelledError:
                break
            except Exception as e:
                logger.warning(f"Periodic task {self.name} error: {e}")
