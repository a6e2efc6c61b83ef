"""Tests for the retry policy engine."""

import asyncio

import pytest

from registrar.models import ErrorType, RetryConfig
from registrar.services.cooldown_store import CooldownStore
from registrar.services.retry_manager import (
    OperationContext,
    RetryAbort,
    RetryManager,
    compute_backoff_delay,
    create_retry_manager_from_settings,
)


@pytest.fixture
def recorded_sleeps(monkeypatch):
    """Replace asyncio.sleep so backoff delays are recorded instead of waited."""
    sleeps = []

    async def fake_sleep(delay, *args, **kwargs):
        sleeps.append(delay)

    monkeypatch.setattr(asyncio, "sleep", fake_sleep)
    return sleeps


def scripted(*outcomes):
    """Operation that raises or returns each outcome in turn."""
    calls = {"count": 0}

    async def operation():
        outcome = outcomes[calls["count"]]
        calls["count"] += 1
        if isinstance(outcome, BaseException):
            raise outcome
        return outcome

    operation.calls = calls
    return operation


class TestComputeBackoffDelay:
    """Tests for compute_backoff_delay."""

    def test_exponential_without_jitter(self):
        delays = [compute_backoff_delay(n, 1.0, 30.0, 2.0, jitter=False) for n in range(1, 5)]
        assert delays == [1.0, 2.0, 4.0, 8.0]

    def test_capped_at_max_delay(self):
        assert compute_backoff_delay(10, 1.0, 30.0, 2.0, jitter=False) == 30.0

    def test_jitter_bounds(self):
        """Jitter scales the delay into [0.5, 1.0] of the computed value."""
        assert compute_backoff_delay(3, 1.0, 30.0, 2.0, rand=lambda: 0.0) == 2.0
        assert compute_backoff_delay(3, 1.0, 30.0, 2.0, rand=lambda: 0.999999) == pytest.approx(4.0, rel=1e-5)

    def test_jitter_never_exceeds_max_delay(self):
        for _ in range(50):
            delay = compute_backoff_delay(8, 1.0, 30.0, 2.0)
            assert 15.0 <= delay <= 30.0

    def test_rejects_attempt_zero(self):
        with pytest.raises(ValueError):
            compute_backoff_delay(0, 1.0, 30.0, 2.0)


class TestExecuteWithRetry:
    """Tests for RetryManager.execute_with_retry."""

    @pytest.fixture
    def manager(self):
        config = RetryConfig(max_retries=3, base_delay=1.0, max_delay=30.0, jitter=False)
        return RetryManager(config, store=CooldownStore())

    @pytest.fixture
    def context(self):
        return OperationContext(event_id="evt-1", event_title="Story Time", adapter_name="fake")

    @pytest.mark.asyncio
    async def test_success_first_try(self, manager, context, recorded_sleeps):
        result = await manager.execute_with_retry(scripted("ok"), context)

        assert result.success
        assert result.value == "ok"
        assert result.attempts == 1
        assert recorded_sleeps == []
        assert manager.store.get("evt-1").success

    @pytest.mark.asyncio
    async def test_network_errors_then_success(self, manager, context, recorded_sleeps):
        """Three network failures then success: four attempts, delays 1, 2, 4."""
        operation = scripted(
            ConnectionError("ECONNRESET"),
            ConnectionError("ECONNRESET"),
            ConnectionError("ECONNRESET"),
            "ok",
        )

        result = await manager.execute_with_retry(operation, context)

        assert result.success
        assert result.attempts == 4
        assert recorded_sleeps == [1.0, 2.0, 4.0]
        assert [a.error_type for a in result.attempt_log] == ["network_error"] * 3 + [None]

    @pytest.mark.asyncio
    async def test_exhausted_after_max_retries(self, manager, context, recorded_sleeps):
        operation = scripted(*[Exception("503 Service Unavailable")] * 4)

        result = await manager.execute_with_retry(operation, context)

        assert not result.success
        assert result.exhausted
        assert result.attempts == 4
        assert result.final_error_type == ErrorType.SERVER_ERROR.value
        assert len(recorded_sleeps) == 3
        assert operation.calls["count"] == 4

    @pytest.mark.asyncio
    async def test_client_error_is_not_retried(self, manager, context, recorded_sleeps):
        operation = scripted(Exception("403 Forbidden"), "never reached")

        result = await manager.execute_with_retry(operation, context)

        assert not result.success
        assert not result.exhausted
        assert result.attempts == 1
        assert result.final_error_type == ErrorType.CLIENT_ERROR.value
        assert recorded_sleeps == []

    @pytest.mark.asyncio
    async def test_registration_closed_is_not_retried(self, manager, context, recorded_sleeps):
        result = await manager.execute_with_retry(scripted(Exception("Event is sold out")), context)

        assert result.attempts == 1
        assert result.final_error_type == ErrorType.REGISTRATION_CLOSED.value

    @pytest.mark.asyncio
    async def test_unknown_error_is_retried(self, manager, context, recorded_sleeps):
        result = await manager.execute_with_retry(
            scripted(Exception("something odd"), "ok"), context
        )

        assert result.success
        assert result.attempts == 2

    @pytest.mark.asyncio
    async def test_zero_max_retries_means_single_attempt(self, context, recorded_sleeps):
        manager = RetryManager(RetryConfig(max_retries=0, jitter=False))

        result = await manager.execute_with_retry(scripted(ConnectionError("reset")), context)

        assert result.attempts == 1
        assert result.exhausted

    @pytest.mark.asyncio
    async def test_abort_stops_immediately(self, manager, context, recorded_sleeps):
        """RetryAbort ends the sequence and sets the final error type."""
        operation = scripted(RetryAbort("Payment guard blocked", "paid_event"), "never reached")

        result = await manager.execute_with_retry(operation, context)

        assert not result.success
        assert result.attempts == 1
        assert result.final_error_type == "paid_event"
        assert operation.calls["count"] == 1

    @pytest.mark.asyncio
    async def test_per_call_options_override_defaults(self, manager, context, recorded_sleeps):
        options = RetryConfig(max_retries=1, base_delay=0.5, jitter=False)

        result = await manager.execute_with_retry(
            scripted(*[ConnectionError("reset")] * 2), context, options
        )

        assert result.attempts == 2
        assert recorded_sleeps == [0.5]

    @pytest.mark.asyncio
    async def test_on_retry_callback(self, manager, context, recorded_sleeps):
        seen = []

        async def on_retry(attempt, delay):
            seen.append((attempt.attempt, attempt.error_type, delay))

        await manager.execute_with_retry(
            scripted(ConnectionError("reset"), "ok"), context, on_retry=on_retry
        )

        assert seen == [(1, "network_error", 1.0)]

    @pytest.mark.asyncio
    async def test_cancellation_propagates(self, manager, context, recorded_sleeps):
        with pytest.raises(asyncio.CancelledError):
            await manager.execute_with_retry(scripted(asyncio.CancelledError()), context)

        assert manager.metrics.get_metrics()["active_sequences"] == 0

    @pytest.mark.asyncio
    async def test_failure_starts_cooldown(self, manager, context, recorded_sleeps):
        await manager.execute_with_retry(scripted(Exception("404 Not Found")), context)

        assert not manager.should_retry_event("evt-1")
        assert manager.should_retry_event("evt-2")

    @pytest.mark.asyncio
    async def test_metrics_recorded(self, manager, context, recorded_sleeps):
        await manager.execute_with_retry(scripted(ConnectionError("reset"), "ok"), context)

        metrics = manager.metrics.get_metrics()
        assert metrics["total_sequences"] == 1
        assert metrics["retried_sequences"] == 1
        assert metrics["total_attempts"] == 2
        assert metrics["attempt_error_distribution"] == {"network_error": 1}

    @pytest.mark.asyncio
    async def test_operation_ids_are_unique(self, manager, context, recorded_sleeps):
        first = await manager.execute_with_retry(scripted("ok"), context)
        second = await manager.execute_with_retry(scripted("ok"), context)

        assert first.operation_id != second.operation_id
        assert first.operation_id.startswith("evt-1-")


class TestRetryManagerHelpers:
    """Tests for recommendations, stats and settings wiring."""

    def test_recommendations(self):
        manager = RetryManager()

        assert manager.get_retry_recommendations(ErrorType.RATE_LIMIT)["max_retries"] == 5
        assert manager.get_retry_recommendations("client_error")["should_retry"] is False
        assert manager.get_retry_recommendations("unknown_error") == {
            "max_retries": 3,
            "base_delay": 1.0,
            "should_retry": True,
        }

    @pytest.mark.asyncio
    async def test_stats(self, recorded_sleeps):
        manager = RetryManager(RetryConfig(jitter=False))
        await manager.execute_with_retry(scripted("ok"), OperationContext(event_id="a"))
        await manager.execute_with_retry(scripted(Exception("sold out")), OperationContext(event_id="b"))

        stats = manager.get_retry_stats()
        assert stats["total_operations"] == 2
        assert stats["successful_operations"] == 1
        assert stats["failed_operations"] == 1
        assert stats["common_error_types"] == {"registration_closed": 1}

    def test_create_from_settings(self):
        from registrar.config import settings

        manager = create_retry_manager_from_settings()

        assert manager.config.max_retries == settings.retry_max_retries
        assert manager.store.cooldown_seconds == settings.cooldown_seconds
