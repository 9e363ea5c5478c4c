"""Priority work queue with bounded concurrency and retry rescheduling."""

from __future__ import annotations

import asyncio
import heapq
import itertools
import logging
import time
import uuid
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable

from signal_hub.resilience.retry import RetryPolicy

logger = logging.getLogger(__name__)

DEFAULT_CONCURRENT_LIMIT = 3
DEFAULT_MAX_RETRIES = 3

# Heap lanes: rescheduled retries go ahead of fresh work
_RETRY_LANE = 0
_FRESH_LANE = 1


@dataclass
class QueueItem:
    """A pending operation and the future its caller awaits."""

    operation: Callable[[], Awaitable[Any]]
    future: asyncio.Future
    priority: int = 0
    context: str = "api-call"
    max_retries: int = DEFAULT_MAX_RETRIES
    retries: int = 0
    # Whether the task currently owning the item has entered its body
    started: bool = False
    created_at: float = field(default_factory=time.time)
    id: str = field(default_factory=lambda: uuid.uuid4().hex)


@dataclass(frozen=True)
class QueueStats:
    queue_size: int
    active_requests: int
    delayed_retries: int
    processing: bool


class PriorityWorkQueue:
    """Dispatch queued operations, highest priority first.

    Ties are served in insertion order. At most ``concurrent_limit``
    operations run at once. A failed operation is put back at the front
    of the queue after a backoff delay until it has used its own
    ``max_retries``; then its caller receives the last error.

    All counter updates happen between awaits, so they are atomic with
    respect to other coroutines on the loop.
    """

    def __init__(
        self,
        concurrent_limit: int = DEFAULT_CONCURRENT_LIMIT,
        policy: RetryPolicy | None = None,
        sleep: Callable[[float], Awaitable[None]] | None = None,
    ):
        if concurrent_limit < 1:
            raise ValueError(f"concurrent_limit must be >= 1, got {concurrent_limit}")
        self.concurrent_limit = concurrent_limit
        self.policy = policy or RetryPolicy()
        self._sleep = sleep or asyncio.sleep
        self._heap: list[tuple[int, int, int, QueueItem]] = []
        self._seq = itertools.count()
        self._active = 0
        self._delayed = 0
        self._tasks: set[asyncio.Task] = set()
        self._closed = False

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    async def enqueue(
        self,
        operation: Callable[[], Awaitable[Any]],
        priority: int = 0,
        context: str = "api-call",
        max_retries: int = DEFAULT_MAX_RETRIES,
    ) -> Any:
        """Queue ``operation`` and wait for its final result."""
        if self._closed:
            raise RuntimeError("Work queue is closed")
        item = QueueItem(
            operation=operation,
            future=asyncio.get_running_loop().create_future(),
            priority=priority,
            context=context,
            max_retries=max_retries,
        )
        self._push(item, _FRESH_LANE)
        self._dispatch()
        return await item.future

    def stats(self) -> QueueStats:
        return QueueStats(
            queue_size=len(self._heap),
            active_requests=self._active,
            delayed_retries=self._delayed,
            processing=self._active > 0,
        )

    async def close(self) -> None:
        """Cancel queued and in-flight work."""
        self._closed = True
        while self._heap:
            *_, item = heapq.heappop(self._heap)
            item.future.cancel()
        tasks = list(self._tasks)
        for task in tasks:
            task.cancel()
        await asyncio.gather(*tasks, return_exceptions=True)

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    def _push(self, item: QueueItem, lane: int) -> None:
        heapq.heappush(self._heap, (lane, -item.priority, next(self._seq), item))

    def _spawn(
        self,
        coro: Awaitable[None],
        item: QueueItem,
        on_unstarted: Callable[[], None],
    ) -> None:
        """Run *coro* as a task owning *item*.

        A task cancelled before its first step never runs its own
        cleanup, so the done callback cancels the caller's future and
        calls *on_unstarted* to release the counter the task held.
        """
        item.started = False
        task = asyncio.ensure_future(coro)
        self._tasks.add(task)

        def settle(done: asyncio.Task) -> None:
            self._tasks.discard(done)
            if not done.cancelled():
                return
            if not item.future.done():
                item.future.cancel()
            if not item.started:
                on_unstarted()

        task.add_done_callback(settle)

    def _release_active(self) -> None:
        self._active -= 1

    def _release_delayed(self) -> None:
        self._delayed -= 1

    def _dispatch(self) -> None:
        while self._active < self.concurrent_limit and self._heap:
            *_, item = heapq.heappop(self._heap)
            if item.future.done():
                continue  # caller went away
            self._active += 1
            self._spawn(self._run(item), item, self._release_active)

    async def _run(self, item: QueueItem) -> None:
        item.started = True
        try:
            result = await item.operation()
        except asyncio.CancelledError:
            if not item.future.done():
                item.future.cancel()
            raise
        except Exception as e:
            if item.retries < item.max_retries and not self._closed:
                delay = self.policy.delay_for(item.retries)
                item.retries += 1
                logger.warning(
                    f"{item.context} {item.id[:8]} failed ({e}), "
                    f"requeue {item.retries}/{item.max_retries} in {delay:.2f}s"
                )
                self._delayed += 1
                self._spawn(self._requeue_after(item, delay), item, self._release_delayed)
            elif not item.future.done():
                item.future.set_exception(e)
        else:
            if not item.future.done():
                item.future.set_result(result)
        finally:
            self._active -= 1
            self._dispatch()

    async def _requeue_after(self, item: QueueItem, delay: float) -> None:
        item.started = True
        try:
            await self._sleep(delay)
        except asyncio.CancelledError:
            if not item.future.done():
                item.future.cancel()
            raise
        finally:
            self._delayed -= 1
        if self._closed:
            item.future.cancel()
            return
        self._push(item, _RETRY_LANE)
        self._dispatch()
