"""
Per-event retry history with a cooldown check.

The store remembers the last completed retry sequence for each event. A
failure recorded less than ``cooldown_seconds`` ago makes
``should_retry_event`` return False, so a site that just rejected an event is
not hit again by a fresh sequence. Records older than the retention window are
removed by ``sweep``; nothing else deletes them.
"""

import asyncio
import logging
from contextlib import asynccontextmanager
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from threading import Lock
from typing import Any, Callable

logger = logging.getLogger(__name__)

DEFAULT_COOLDOWN_SECONDS = 300.0
DEFAULT_RETENTION_HOURS = 24.0


@dataclass
class RetryOutcomeRecord:
    """Last outcome of a retry sequence for one event."""
    event_id: str
    success: bool
    attempts: int
    recorded_at: datetime = field(default_factory=datetime.now)
    total_time_seconds: float = 0.0
    final_error: str | None = None
    final_error_type: str | None = None
    adapter_name: str | None = None
    operation_id: str | None = None

    def to_dict(self) -> dict:
        """Convert to dictionary for serialization."""
        return {
            "event_id": self.event_id,
            "success": self.success,
            "attempts": self.attempts,
            "recorded_at": self.recorded_at.isoformat(),
            "total_time_seconds": self.total_time_seconds,
            "final_error": self.final_error,
            "final_error_type": self.final_error_type,
            "adapter_name": self.adapter_name,
            "operation_id": self.operation_id,
        }


@dataclass
class _EventLock:
    lock: asyncio.Lock = field(default_factory=asyncio.Lock)
    users: int = 0


class CooldownStore:
    """
    Thread-safe map of event id to its last RetryOutcomeRecord.

    Reads and writes go through a lock so concurrent orchestration calls never
    observe a half-written record. ``event_lock`` holds one asyncio.Lock
    per event id for callers that need to serialize whole sequences for the
    same event.

    Usage:
        store = CooldownStore(cooldown_seconds=300)
        store.record_outcome(RetryOutcomeRecord(event_id="evt-1", success=False, attempts=4))
        store.should_retry_event("evt-1")  # False for the next 5 minutes
    """

    def __init__(
        self,
        cooldown_seconds: float = DEFAULT_COOLDOWN_SECONDS,
        retention_hours: float = DEFAULT_RETENTION_HOURS,
        clock: Callable[[], datetime] = datetime.now,
    ):
        self.cooldown_seconds = cooldown_seconds
        self.retention_hours = retention_hours
        self._clock = clock
        self._records: dict[str, RetryOutcomeRecord] = {}
        self._event_locks: dict[str, _EventLock] = {}
        self._lock = Lock()

    def __len__(self) -> int:
        with self._lock:
            return len(self._records)

    def now(self) -> datetime:
        return self._clock()

    @asynccontextmanager
    async def event_lock(self, event_id: str):
        """
        Hold the asyncio lock that serializes sequences for one event.

        Locks are reference counted: the entry is dropped as soon as the last
        holder or waiter leaves, so ids that never record an outcome (unknown,
        paid or link-less events) do not accumulate.
        """
        with self._lock:
            entry = self._event_locks.get(event_id)
            if entry is None:
                entry = _EventLock()
                self._event_locks[event_id] = entry
            entry.users += 1
        try:
            async with entry.lock:
                yield
        finally:
            with self._lock:
                entry.users -= 1
                if entry.users == 0 and self._event_locks.get(event_id) is entry:
                    del self._event_locks[event_id]

    @property
    def active_event_locks(self) -> int:
        """Number of event ids currently holding or waiting on a lock."""
        with self._lock:
            return len(self._event_locks)

    def record_outcome(self, record: RetryOutcomeRecord) -> None:
        """Store the outcome of a completed sequence, replacing any previous one."""
        with self._lock:
            self._records[record.event_id] = record
        logger.debug(
            f"Recorded {'successful' if record.success else 'failed'} outcome for event "
            f"{record.event_id}: {record.attempts} attempts"
        )

    def get(self, event_id: str) -> RetryOutcomeRecord | None:
        with self._lock:
            return self._records.get(event_id)

    def should_retry_event(self, event_id: str) -> bool:
        """
        Check whether a fresh attempt sequence may start for an event.

        Returns False only when the most recent outcome was a failure recorded
        less than ``cooldown_seconds`` ago.
        """
        record = self.get(event_id)
        if record is None or record.success:
            return True

        elapsed = (self.now() - record.recorded_at).total_seconds()
        if elapsed < self.cooldown_seconds:
            logger.debug(
                f"Skipping retry for {event_id} - failed {elapsed:.0f}s ago "
                f"(cooldown {self.cooldown_seconds:.0f}s)"
            )
            return False
        return True

    def cooldown_remaining(self, event_id: str) -> float:
        """Seconds left before a new sequence is allowed (0.0 if allowed now)."""
        record = self.get(event_id)
        if record is None or record.success:
            return 0.0
        elapsed = (self.now() - record.recorded_at).total_seconds()
        return max(0.0, self.cooldown_seconds - elapsed)

    def sweep(self, max_age_hours: float | None = None) -> int:
        """
        Remove records older than the retention window.

        Args:
            max_age_hours: Override for the configured retention

        Returns:
            Number of records removed
        """
        max_age = self.retention_hours if max_age_hours is None else max_age_hours
        cutoff = self.now() - timedelta(hours=max_age)

        with self._lock:
            stale = [
                event_id for event_id, record in self._records.items()
                if record.recorded_at < cutoff
            ]
            for event_id in stale:
                del self._records[event_id]

        if stale:
            logger.info(f"Cleaned up {len(stale)} old retry history records")
        return len(stale)

    def records(self) -> list[RetryOutcomeRecord]:
        with self._lock:
            return list(self._records.values())

    def get_stats(self) -> dict[str, Any]:
        """
        Aggregate statistics over the stored outcomes.

        Returns:
            Dictionary with operation counts, average attempts, average
            success latency and a histogram of final error types
        """
        records = self.records()
        total = len(records)
        successes = [r for r in records if r.success]
        failures = [r for r in records if not r.success]

        error_types: dict[str, int] = {}
        for record in failures:
            error_type = record.final_error_type or "unknown_error"
            error_types[error_type] = error_types.get(error_type, 0) + 1

        return {
            "total_operations": total,
            "successful_operations": len(successes),
            "failed_operations": len(failures),
            "average_attempts": (sum(r.attempts for r in records) / total) if total else 0.0,
            "average_success_time": (
                sum(r.total_time_seconds for r in successes) / len(successes)
            ) if successes else 0.0,
            "common_error_types": error_types,
        }

    def clear(self) -> None:
        with self._lock:
            self._records.clear()
