"""Typed synchronous callback channels.

An ``EventChannel`` replaces string-keyed event emitters. Each component
exposes one channel per event kind (``registry.on_success``,
``bridge.on_cleanup``, ...) so subscribers get a typed payload.

Delivery order is synchronous and follows registration order. A callback
that raises is logged and skipped; the remaining callbacks still run and
the publisher never sees the error.
"""

from __future__ import annotations

import logging
from typing import Callable, Generic, TypeVar

logger = logging.getLogger(__name__)

T = TypeVar("T")

Unsubscribe = Callable[[], None]


class EventChannel(Generic[T]):
    """Ordered list of callbacks for a single event type."""

    def __init__(self, name: str):
        self.name = name
        self._callbacks: list[Callable[[T], None]] = []

    def subscribe(self, callback: Callable[[T], None]) -> Unsubscribe:
        """Register a callback and return a handle that removes it.

        The handle is idempotent: calling it twice is harmless.
        """
        self._callbacks.append(callback)

        def unsubscribe() -> None:
            try:
                self._callbacks.remove(callback)
            except ValueError:
                pass

        return unsubscribe

    def publish(self, event: T) -> int:
        """Deliver an event to every subscriber.

        Returns:
            Number of callbacks that completed without raising.
        """
        delivered = 0
        # Snapshot so callbacks may unsubscribe during delivery
        for callback in list(self._callbacks):
            try:
                callback(event)
                delivered += 1
            except Exception as e:
                logger.error(f"{self.name} callback error: {e}")
        return delivered

    def clear(self) -> None:
        self._callbacks.clear()

    def __len__(self) -> int:
        return len(self._callbacks)
