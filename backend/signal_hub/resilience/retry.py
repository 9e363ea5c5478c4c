"""Exponential-backoff retry for transient external failures."""

from __future__ import annotations

import asyncio
import logging
from typing import Awaitable, Callable, TypeVar

import httpx
from pydantic import BaseModel, ConfigDict, Field

from signal_core.exceptions import RetryExhaustedError

logger = logging.getLogger(__name__)

T = TypeVar("T")

# HTTP statuses worth retrying: rate limited or upstream temporarily broken
RETRYABLE_STATUSES = frozenset({429, 500, 502, 503, 504})


class RetryPolicy(BaseModel):
    """Backoff parameters. Delays are in seconds."""

    model_config = ConfigDict(frozen=True)

    max_retries: int = Field(default=3, ge=0)
    initial_delay: float = Field(default=1.0, ge=0)
    max_delay: float = Field(default=30.0, ge=0)
    backoff_multiplier: float = Field(default=2.0, ge=1)

    def delay_for(self, attempt: int) -> float:
        """Delay before retry number ``attempt + 1`` (attempt counts from 0)."""
        return min(self.initial_delay * self.backoff_multiplier ** attempt, self.max_delay)


def status_of(exc: BaseException) -> int | None:
    if isinstance(exc, httpx.HTTPStatusError):
        return exc.response.status_code
    for attr in ("status", "status_code"):
        status = getattr(exc, attr, None)
        if isinstance(status, int):
            return status
    return None


def is_retryable(exc: BaseException) -> bool:
    """Classify an error as transient.

    Retryable: an explicit truthy ``retryable`` attribute, an HTTP-like
    status in RETRYABLE_STATUSES, or an httpx transport error
    (connection reset, timeout). Everything else is permanent.
    """
    if getattr(exc, "retryable", False):
        return True
    status = status_of(exc)
    if status is not None:
        return status in RETRYABLE_STATUSES
    return isinstance(exc, httpx.TransportError)


class RetryHandler:
    """Run an async operation, retrying transient failures."""

    def __init__(
        self,
        policy: RetryPolicy | None = None,
        sleep: Callable[[float], Awaitable[None]] | None = None,
    ):
        self.policy = policy or RetryPolicy()
        self._sleep = sleep or asyncio.sleep

    async def run(
        self,
        operation: Callable[[], Awaitable[T]],
        context: str = "",
    ) -> T:
        """Call ``operation`` until it succeeds or retries run out.

        Raises:
            Exception: The original error when it is not retryable.
            RetryExhaustedError: After ``max_retries`` retries all failed.
        """
        attempt = 0
        while True:
            try:
                return await operation()
            except Exception as e:
                if not is_retryable(e):
                    raise
                if attempt >= self.policy.max_retries:
                    raise RetryExhaustedError(context, attempt + 1, e) from e
                delay = self.policy.delay_for(attempt)
                attempt += 1
                logger.warning(
                    f"{context or 'operation'} failed ({e}), "
                    f"retry {attempt}/{self.policy.max_retries} in {delay:.2f}s"
                )
                await self._sleep(delay)
