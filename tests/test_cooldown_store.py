"""Tests for the per-event cooldown store."""

import asyncio

import pytest

from registrar.services.cooldown_store import CooldownStore, RetryOutcomeRecord


def failure(store, event_id="evt-1", error_type="network_error", attempts=4):
    return RetryOutcomeRecord(
        event_id=event_id,
        success=False,
        attempts=attempts,
        recorded_at=store.now(),
        final_error="ECONNRESET",
        final_error_type=error_type,
    )


def success(store, event_id="evt-1", attempts=1, total_time=2.0):
    return RetryOutcomeRecord(
        event_id=event_id,
        success=True,
        attempts=attempts,
        recorded_at=store.now(),
        total_time_seconds=total_time,
    )


class TestShouldRetryEvent:
    """Tests for the 5-minute cooldown after a failed sequence."""

    def test_unknown_event_may_retry(self, store):
        assert store.should_retry_event("never-seen")

    def test_recent_failure_blocks(self, store, clock):
        store.record_outcome(failure(store))
        clock.advance(minutes=4, seconds=59)

        assert not store.should_retry_event("evt-1")
        assert store.cooldown_remaining("evt-1") == 1.0

    def test_failure_older_than_cooldown_allows(self, store, clock):
        store.record_outcome(failure(store))
        clock.advance(minutes=5)

        assert store.should_retry_event("evt-1")
        assert store.cooldown_remaining("evt-1") == 0.0

    def test_success_never_blocks(self, store):
        store.record_outcome(success(store))

        assert store.should_retry_event("evt-1")

    def test_latest_outcome_replaces_previous(self, store):
        store.record_outcome(failure(store))
        store.record_outcome(success(store))

        assert store.should_retry_event("evt-1")
        assert len(store) == 1

    def test_cooldown_is_per_event(self, store):
        store.record_outcome(failure(store, event_id="evt-1"))

        assert store.should_retry_event("evt-2")


class TestSweep:
    """Tests for retention cleanup."""

    def test_removes_only_records_past_retention(self, store, clock):
        store.record_outcome(failure(store, event_id="old"))
        clock.advance(hours=23)
        store.record_outcome(success(store, event_id="recent"))
        clock.advance(hours=1, seconds=1)

        removed = store.sweep()

        assert removed == 1
        assert store.get("old") is None
        assert store.get("recent") is not None

    def test_max_age_override(self, store, clock):
        store.record_outcome(success(store))
        clock.advance(hours=2)

        assert store.sweep(max_age_hours=1) == 1
        assert len(store) == 0


class TestStats:
    def test_empty(self, store):
        assert store.get_stats() == {
            "total_operations": 0,
            "successful_operations": 0,
            "failed_operations": 0,
            "average_attempts": 0.0,
            "average_success_time": 0.0,
            "common_error_types": {},
        }

    def test_aggregates(self, store):
        store.record_outcome(success(store, event_id="a", attempts=1, total_time=2.0))
        store.record_outcome(success(store, event_id="b", attempts=3, total_time=4.0))
        store.record_outcome(failure(store, event_id="c", attempts=4))
        store.record_outcome(failure(store, event_id="d", attempts=4, error_type=None))

        stats = store.get_stats()

        assert stats["total_operations"] == 4
        assert stats["successful_operations"] == 2
        assert stats["failed_operations"] == 2
        assert stats["average_attempts"] == 3.0
        assert stats["average_success_time"] == 3.0
        assert stats["common_error_types"] == {"network_error": 1, "unknown_error": 1}

    def test_clear(self, store):
        store.record_outcome(success(store))
        store.clear()

        assert len(store) == 0


class TestEventLock:
    async def test_entry_dropped_after_release(self, store):
        async with store.event_lock("evt-1"):
            assert store.active_event_locks == 1

        assert store.active_event_locks == 0

    async def test_entry_dropped_after_exception(self, store):
        with pytest.raises(RuntimeError):
            async with store.event_lock("evt-1"):
                raise RuntimeError("boom")

        assert store.active_event_locks == 0

    async def test_many_ids_do_not_accumulate(self, store):
        for i in range(1000):
            async with store.event_lock(f"missing-{i}"):
                pass

        assert store.active_event_locks == 0

    async def test_different_events_do_not_block(self, store):
        async with store.event_lock("evt-1"):
            await asyncio.wait_for(self._hold(store, "evt-2"), timeout=1)

    @staticmethod
    async def _hold(store, event_id):
        async with store.event_lock(event_id):
            assert store.active_event_locks == 2

    async def test_serializes_same_event(self, store):
        order = []

        async def worker(name):
            async with store.event_lock("evt-1"):
                order.append(f"{name}-start")
                await asyncio.sleep(0.01)
                order.append(f"{name}-end")

        await asyncio.gather(worker("a"), worker("b"))

        assert order == ["a-start", "a-end", "b-start", "b-end"]
        assert store.active_event_locks == 0
