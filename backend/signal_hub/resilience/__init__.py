"""Resilience primitives every external call passes through."""

from signal_hub.resilience.retry import RetryHandler, RetryPolicy, is_retryable
from signal_hub.resilience.rate_limiter import RateLimiterStatus, TokenBucketRateLimiter
from signal_hub.resilience.work_queue import PriorityWorkQueue, QueueStats
from signal_hub.resilience.monitor import ApiMetrics, ApiMonitor
from signal_hub.resilience.guard import GuardedSource, ResilienceRegistry

__all__ = [
    "RetryHandler",
    "RetryPolicy",
    "is_retryable",
    "RateLimiterStatus",
    "TokenBucketRateLimiter",
    "PriorityWorkQueue",
    "QueueStats",
    "ApiMetrics",
    "ApiMonitor",
    "GuardedSource",
    "ResilienceRegistry",
]
