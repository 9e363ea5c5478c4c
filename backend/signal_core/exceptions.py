"""Error taxonomy for engine execution and the resilience layer."""

from __future__ import annotations


class SignalCoreError(Exception):
    """Base class for all errors raised by this project."""


class InsufficientDataError(SignalCoreError):
    """An engine declined to run because its inputs are too sparse."""

    def __init__(self, engine_id: str, present: int, required: int):
        self.engine_id = engine_id
        self.present = present
        self.required = required
        super().__init__(
            f"Engine '{engine_id}' has {present} of {required} required indicators"
        )


class DuplicateEngineError(SignalCoreError, ValueError):
    """An engine with the same id is already registered."""


class EngineNotFoundError(SignalCoreError, KeyError):
    """No engine is registered under the requested id."""

    def __str__(self) -> str:
        # KeyError repr-quotes its argument; keep the message readable
        return str(self.args[0]) if self.args else ""


class PipelineAlreadyRunningError(SignalCoreError):
    """execute_all() was called while a pipeline run is in progress."""


class PipelinePlanError(SignalCoreError):
    """Engine dependencies cannot be arranged into ordered phases."""


class TransientError(SignalCoreError):
    """An external failure that is safe to retry (network, rate limit)."""

    retryable = True

    def __init__(self, message: str, status: int | None = None):
        super().__init__(message)
        self.status = status


class RetryExhaustedError(SignalCoreError):
    """All retry attempts failed; wraps the last error."""

    def __init__(self, context: str, attempts: int, last_exception: BaseException):
        self.context = context
        self.attempts = attempts
        self.last_exception = last_exception
        super().__init__(
            f"{context or 'operation'} failed after {attempts} attempts: {last_exception}"
        )


class CircuitOpenError(SignalCoreError):
    """Calls to an external API are suspended because its health collapsed."""

    def __init__(self, api: str, health: float):
        self.api = api
        self.health = health
        super().__init__(f"Circuit open for '{api}' (health={health:.2f})")
