"""
Attempt-level metrics for the registration retry engine.

Where the cooldown store keeps only the last outcome per event, RetryMetrics
counts every attempt and every completed sequence so the error distribution
across all attempts stays visible after outcomes are overwritten.
"""

import logging
from dataclasses import dataclass, field
from datetime import datetime
from threading import Lock
from typing import Any

from registrar.models import RegistrationAttempt

logger = logging.getLogger(__name__)


@dataclass
class SequenceRecord:
    """Record of a single retry sequence."""
    operation_id: str
    event_id: str
    started_at: datetime
    ended_at: datetime | None = None
    total_attempts: int = 0
    successful: bool = False
    error_types: list[str] = field(default_factory=list)
    total_time_seconds: float = 0.0

    def to_dict(self) -> dict:
        """Convert to dictionary for serialization."""
        return {
            "operation_id": self.operation_id,
            "event_id": self.event_id,
            "started_at": self.started_at.isoformat(),
            "ended_at": self.ended_at.isoformat() if self.ended_at else None,
            "total_attempts": self.total_attempts,
            "successful": self.successful,
            "error_types": self.error_types,
            "total_time_seconds": self.total_time_seconds,
        }


class RetryMetrics:
    """
    Tracks retry sequences and individual attempts.

    This class is thread-safe. One instance is shared by a RetryManager and
    whatever exposes the numbers (the admin router).

    Metrics tracked:
    - total_sequences / successful_sequences / failed_sequences
    - retried_sequences: sequences that needed more than one attempt
    - total_attempts and the error type of every failed attempt
    - recent sequence records (last ``max_recent_records``)
    """

    def __init__(self, max_recent_records: int = 100):
        self._lock = Lock()
        self._max_recent_records = max_recent_records
        self._reset_state()
        logger.debug("RetryMetrics initialized")

    def _reset_state(self) -> None:
        self._total_sequences = 0
        self._successful_sequences = 0
        self._failed_sequences = 0
        self._retried_sequences = 0
        self._total_attempts = 0
        self._error_type_counts: dict[str, int] = {}
        self._recent_records: list[SequenceRecord] = []
        self._active: dict[str, SequenceRecord] = {}
        self._first_recorded_at: datetime | None = None
        self._last_recorded_at: datetime | None = None

    def record_sequence_start(self, operation_id: str, event_id: str) -> None:
        with self._lock:
            now = datetime.now()
            self._active[operation_id] = SequenceRecord(
                operation_id=operation_id,
                event_id=event_id,
                started_at=now,
            )
            if self._first_recorded_at is None:
                self._first_recorded_at = now

    def record_attempt(self, operation_id: str, attempt: RegistrationAttempt) -> None:
        """
        Record one adapter attempt.

        Args:
            operation_id: Sequence the attempt belongs to
            attempt: The attempt; failed attempts carry an error_type
        """
        with self._lock:
            self._total_attempts += 1
            record = self._active.get(operation_id)
            if record:
                record.total_attempts = attempt.attempt
                if attempt.error_type and attempt.error_type not in record.error_types:
                    record.error_types.append(attempt.error_type)

            if attempt.error_type:
                self._error_type_counts[attempt.error_type] = (
                    self._error_type_counts.get(attempt.error_type, 0) + 1
                )

            logger.debug(
                f"Attempt {attempt.attempt} for event {attempt.event_id}: "
                f"{attempt.error_type or 'success'} in {attempt.elapsed_seconds:.2f}s"
            )

    def record_sequence_end(
        self,
        operation_id: str,
        successful: bool,
        total_attempts: int,
        total_time: float,
    ) -> None:
        with self._lock:
            now = datetime.now()
            record = self._active.pop(operation_id, None)
            if record is None:
                record = SequenceRecord(operation_id=operation_id, event_id="unknown", started_at=now)

            record.ended_at = now
            record.successful = successful
            record.total_attempts = total_attempts
            record.total_time_seconds = total_time

            self._total_sequences += 1
            if successful:
                self._successful_sequences += 1
            else:
                self._failed_sequences += 1
            if total_attempts > 1:
                self._retried_sequences += 1

            self._recent_records.append(record)
            if len(self._recent_records) > self._max_recent_records:
                self._recent_records.pop(0)

            self._last_recorded_at = now

    @property
    def success_rate(self) -> float:
        """Percentage of sequences that succeeded (0-100)."""
        with self._lock:
            if self._total_sequences == 0:
                return 0.0
            return (self._successful_sequences / self._total_sequences) * 100

    @property
    def error_type_distribution(self) -> dict[str, int]:
        with self._lock:
            return dict(self._error_type_counts)

    def get_metrics(self) -> dict[str, Any]:
        """Get all metrics as a dictionary suitable for API responses."""
        with self._lock:
            return {
                "total_sequences": self._total_sequences,
                "successful_sequences": self._successful_sequences,
                "failed_sequences": self._failed_sequences,
                "retried_sequences": self._retried_sequences,
                "total_attempts": self._total_attempts,
                "success_rate": (
                    self._successful_sequences / self._total_sequences * 100
                ) if self._total_sequences > 0 else 0.0,
                "attempt_error_distribution": dict(self._error_type_counts),
                "active_sequences": len(self._active),
                "first_recorded_at": self._first_recorded_at.isoformat() if self._first_recorded_at else None,
                "last_recorded_at": self._last_recorded_at.isoformat() if self._last_recorded_at else None,
            }

    def get_recent_records(self, limit: int = 10) -> list[dict]:
        """Most recent sequences first."""
        with self._lock:
            records = self._recent_records[-limit:]
            return [r.to_dict() for r in reversed(records)]

    def reset(self) -> None:
        with self._lock:
            self._reset_state()
        logger.info("RetryMetrics reset")
