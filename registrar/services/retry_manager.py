"""
Retry policy engine for registration attempts.

This module provides a RetryManager class that runs an async operation with
bounded retries, exponential backoff with jitter, and per-event outcome
tracking used for the cooldown check.
"""

import asyncio
import logging
import random
import time
import uuid
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, Generic, TypeVar

from registrar.models import ErrorType, RegistrationAttempt, RetryConfig
from registrar.services.cooldown_store import CooldownStore, RetryOutcomeRecord
from registrar.services.error_classifier import classify_error, is_retryable
from registrar.services.retry_metrics import RetryMetrics

logger = logging.getLogger(__name__)

T = TypeVar("T")

# Minimum jitter scale; delays land in [0.5, 1.0] of the computed value
JITTER_FLOOR = 0.5


class RetryAbort(Exception):
    """
    Raised by an operation to stop the sequence immediately.

    The abort is never retried and its ``error_type`` becomes the final error
    type of the sequence.
    """

    def __init__(self, message: str, error_type: str):
        super().__init__(message)
        self.error_type = error_type


@dataclass
class OperationContext:
    """Identifies what a retry sequence is working on."""
    event_id: str
    event_title: str | None = None
    adapter_name: str | None = None

    @property
    def label(self) -> str:
        return self.event_title or self.event_id


@dataclass
class RetryResult(Generic[T]):
    """
    Outcome of ``execute_with_retry``.

    Success and failure share this shape. A failure on a non-retryable error
    has ``attempts == 1`` and ``exhausted`` False; a failure after using every
    retry has ``attempts == max_retries + 1`` and ``exhausted`` True.
    """
    success: bool
    attempts: int
    total_time: float
    value: T | None = None
    final_error: str | None = None
    final_error_type: str | None = None
    exhausted: bool = False
    operation_id: str | None = None
    attempt_log: list[RegistrationAttempt] = field(default_factory=list)

    def to_dict(self) -> dict:
        return {
            "success": self.success,
            "attempts": self.attempts,
            "total_time": self.total_time,
            "final_error": self.final_error,
            "final_error_type": self.final_error_type,
            "exhausted": self.exhausted,
            "operation_id": self.operation_id,
        }


def compute_backoff_delay(
    attempt: int,
    base_delay: float,
    max_delay: float,
    multiplier: float,
    jitter: bool = True,
    rand: Callable[[], float] = random.random,
) -> float:
    """
    Delay to wait after a failed attempt, before the next one.

    Formula: min(base_delay * multiplier ^ (attempt - 1), max_delay), then
    scaled by a uniform factor in [0.5, 1.0] when jitter is on.

    Args:
        attempt: The attempt that just failed (1-indexed)
        base_delay: Delay after the first failure, in seconds
        max_delay: Upper bound before jitter, in seconds
        multiplier: Exponential growth factor
        jitter: Whether to randomize the delay
        rand: Source of uniform values in [0, 1)

    Returns:
        Delay in seconds
    """
    if attempt < 1:
        raise ValueError(f"attempt must be >= 1, got {attempt}")

    delay = min(base_delay * (multiplier ** (attempt - 1)), max_delay)
    if jitter:
        delay *= JITTER_FLOOR + rand() * (1 - JITTER_FLOOR)
    return delay


# Suggested options per error type for callers that tune retries
RETRY_RECOMMENDATIONS: dict[str, dict[str, Any]] = {
    ErrorType.RATE_LIMIT.value: {"max_retries": 5, "base_delay": 5.0},
    ErrorType.NETWORK_ERROR.value: {"max_retries": 4, "base_delay": 2.0},
    ErrorType.SERVER_ERROR.value: {"max_retries": 3, "base_delay": 3.0},
    ErrorType.BROWSER_ERROR.value: {"max_retries": 2, "base_delay": 5.0},
    ErrorType.CLIENT_ERROR.value: {"max_retries": 0, "should_retry": False},
    ErrorType.REGISTRATION_CLOSED.value: {"max_retries": 0, "should_retry": False},
}


class RetryManager:
    """
    Runs registration operations with bounded retries.

    Features:
    - Error classification through ``classify_error``
    - Exponential backoff with jitter, applied only between attempts
    - Non-blocking waits (``asyncio.sleep``), so other events keep progressing
    - Last-outcome tracking per event for the cooldown check
    - Attempt-level metrics

    Usage:
        manager = RetryManager(RetryConfig(max_retries=3))

        async def attempt():
            return await adapter.attempt_registration(event, family)

        result = await manager.execute_with_retry(
            attempt,
            OperationContext(event_id=event.id, event_title=event.title),
        )
    """

    def __init__(
        self,
        config: RetryConfig | None = None,
        store: CooldownStore | None = None,
        metrics: RetryMetrics | None = None,
    ):
        """
        Initialize RetryManager.

        Args:
            config: Default options. If None, uses RetryConfig defaults.
            store: Outcome store used for the cooldown check. A private store
                is created when omitted.
            metrics: Attempt-level metrics tracker. A private one is created
                when omitted.
        """
        self.config = config or RetryConfig()
        self.store = store if store is not None else CooldownStore()
        self.metrics = metrics if metrics is not None else RetryMetrics()

    def calculate_delay(self, attempt: int, options: RetryConfig | None = None) -> float:
        """Backoff delay after ``attempt`` failed, using the given or default options."""
        opts = options or self.config
        delay = compute_backoff_delay(
            attempt,
            base_delay=opts.base_delay,
            max_delay=opts.max_delay,
            multiplier=opts.backoff_multiplier,
            jitter=opts.jitter,
        )
        logger.debug(f"Calculated delay for attempt {attempt}: {delay:.2f}s")
        return delay

    async def execute_with_retry(
        self,
        operation: Callable[[], Awaitable[T]],
        context: OperationContext,
        options: RetryConfig | None = None,
        on_retry: Callable[[RegistrationAttempt, float], Awaitable[None] | None] | None = None,
    ) -> RetryResult[T]:
        """
        Execute an async operation, retrying classified transient failures.

        Args:
            operation: Async function to execute (no arguments)
            context: Event being worked on, used for records and logs
            options: Overrides for this call; defaults to the manager config
            on_retry: Callback before each wait (failed attempt, delay)

        Returns:
            RetryResult describing the sequence
        """
        opts = options or self.config
        max_attempts = opts.max_retries + 1
        operation_id = f"{context.event_id}-{uuid.uuid4().hex[:12]}"
        attempt_log: list[RegistrationAttempt] = []
        started = time.monotonic()

        logger.debug(f"Starting operation {operation_id} with retry support")
        self.metrics.record_sequence_start(operation_id, context.event_id)

        attempt = 0
        while True:
            attempt += 1
            attempt_started = time.monotonic()
            logger.debug(f"Attempt {attempt}/{max_attempts} for {context.label}")

            try:
                value = await operation()
            except asyncio.CancelledError:
                self.metrics.record_sequence_end(
                    operation_id, False, attempt, time.monotonic() - started
                )
                raise
            except RetryAbort as e:
                record = self._attempt_record(context, attempt, e.error_type, str(e), attempt_started, False)
                attempt_log.append(record)
                self.metrics.record_attempt(operation_id, record)
                logger.warning(f"Operation {operation_id} aborted on attempt {attempt}: {e}")
                return self._finish_failure(
                    context, operation_id, attempt, started, str(e), e.error_type, False, attempt_log
                )
            except Exception as e:
                error_type = classify_error(e)
                retryable = is_retryable(error_type, opts.retryable_errors)
                record = self._attempt_record(
                    context, attempt, error_type.value, str(e), attempt_started, retryable
                )
                attempt_log.append(record)
                self.metrics.record_attempt(operation_id, record)

                logger.debug(
                    f"Attempt {attempt} failed in {record.elapsed_seconds:.2f}s: "
                    f"{error_type.value} (retryable: {retryable}) - {str(e)[:100]}"
                )

                if not retryable or attempt > opts.max_retries:
                    return self._finish_failure(
                        context, operation_id, attempt, started, str(e),
                        error_type.value, retryable, attempt_log,
                    )

                delay = self.calculate_delay(attempt, opts)
                if on_retry:
                    callback_result = on_retry(record, delay)
                    if asyncio.iscoroutine(callback_result):
                        await callback_result

                logger.info(
                    f"Retrying {context.label} in {delay:.2f}s "
                    f"(attempt {attempt + 1}/{max_attempts}, last error: {error_type.value})"
                )
                await asyncio.sleep(delay)
                continue

            record = self._attempt_record(context, attempt, None, None, attempt_started, False)
            attempt_log.append(record)
            self.metrics.record_attempt(operation_id, record)

            total_time = time.monotonic() - started
            self.store.record_outcome(RetryOutcomeRecord(
                event_id=context.event_id,
                success=True,
                attempts=attempt,
                recorded_at=self.store.now(),
                total_time_seconds=total_time,
                adapter_name=context.adapter_name,
                operation_id=operation_id,
            ))
            self.metrics.record_sequence_end(operation_id, True, attempt, total_time)

            logger.info(f"Operation succeeded on attempt {attempt} in {total_time:.2f}s")
            return RetryResult(
                success=True,
                attempts=attempt,
                total_time=total_time,
                value=value,
                operation_id=operation_id,
                attempt_log=attempt_log,
            )

    def _attempt_record(
        self,
        context: OperationContext,
        attempt: int,
        error_type: str | None,
        message: str | None,
        attempt_started: float,
        retryable: bool,
    ) -> RegistrationAttempt:
        return RegistrationAttempt(
            event_id=context.event_id,
            attempt=attempt,
            error_type=error_type,
            error_message=message,
            elapsed_seconds=time.monotonic() - attempt_started,
            retryable=retryable,
        )

    def _finish_failure(
        self,
        context: OperationContext,
        operation_id: str,
        attempts: int,
        started: float,
        message: str,
        error_type: str,
        exhausted: bool,
        attempt_log: list[RegistrationAttempt],
    ) -> RetryResult:
        total_time = time.monotonic() - started
        self.store.record_outcome(RetryOutcomeRecord(
            event_id=context.event_id,
            success=False,
            attempts=attempts,
            recorded_at=self.store.now(),
            total_time_seconds=total_time,
            final_error=message,
            final_error_type=error_type,
            adapter_name=context.adapter_name,
            operation_id=operation_id,
        ))
        self.metrics.record_sequence_end(operation_id, False, attempts, total_time)

        logger.warning(
            f"Operation failed permanently after {attempts} attempts in {total_time:.2f}s: "
            f"{error_type}"
        )
        return RetryResult(
            success=False,
            attempts=attempts,
            total_time=total_time,
            final_error=message,
            final_error_type=error_type,
            exhausted=exhausted,
            operation_id=operation_id,
            attempt_log=attempt_log,
        )

    def should_retry_event(self, event_id: str) -> bool:
        """False when the event's last sequence failed within the cooldown window."""
        return self.store.should_retry_event(event_id)

    def get_retry_recommendations(self, error_type: ErrorType | str) -> dict[str, Any]:
        """
        Suggested retry options for an error type.

        Returns:
            Dictionary with max_retries, base_delay (seconds) and should_retry
        """
        key = error_type.value if isinstance(error_type, ErrorType) else error_type
        recommendation = {
            "max_retries": self.config.max_retries,
            "base_delay": self.config.base_delay,
            "should_retry": True,
        }
        recommendation.update(RETRY_RECOMMENDATIONS.get(key, {}))
        return recommendation

    def get_retry_stats(self) -> dict[str, Any]:
        """Aggregate statistics over recorded outcomes."""
        return self.store.get_stats()

    def cleanup_history(self, max_age_hours: float | None = None) -> int:
        """Drop outcome records older than the retention window."""
        return self.store.sweep(max_age_hours)


def create_retry_manager_from_settings(
    store: CooldownStore | None = None,
    metrics: RetryMetrics | None = None,
) -> RetryManager:
    """
    Create a RetryManager instance from application settings.

    Returns:
        Configured RetryManager instance
    """
    from registrar.config import settings
    if store is None:
        store = CooldownStore(
            cooldown_seconds=settings.cooldown_seconds,
            retention_hours=settings.retry_history_retention_hours,
        )
    return RetryManager(settings.get_retry_config(), store=store, metrics=metrics)
