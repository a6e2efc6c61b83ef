"""Tests for attempt-level retry metrics."""

from registrar.models import RegistrationAttempt
from registrar.services.retry_metrics import RetryMetrics


def attempt(n, error_type=None):
    return RegistrationAttempt(event_id="evt-1", attempt=n, error_type=error_type)


class TestRetryMetrics:
    def test_initial_state(self):
        metrics = RetryMetrics().get_metrics()

        assert metrics["total_sequences"] == 0
        assert metrics["success_rate"] == 0.0
        assert metrics["first_recorded_at"] is None

    def test_sequence_lifecycle(self):
        metrics = RetryMetrics()
        metrics.record_sequence_start("op-1", "evt-1")
        metrics.record_attempt("op-1", attempt(1, "network_error"))
        metrics.record_attempt("op-1", attempt(2, "network_error"))
        metrics.record_attempt("op-1", attempt(3))

        assert metrics.get_metrics()["active_sequences"] == 1

        metrics.record_sequence_end("op-1", True, 3, 1.5)
        data = metrics.get_metrics()

        assert data["active_sequences"] == 0
        assert data["successful_sequences"] == 1
        assert data["retried_sequences"] == 1
        assert data["total_attempts"] == 3
        assert data["attempt_error_distribution"] == {"network_error": 2}
        assert metrics.success_rate == 100.0

        recent = metrics.get_recent_records()
        assert recent[0]["operation_id"] == "op-1"
        assert recent[0]["error_types"] == ["network_error"]

    def test_recent_records_bounded(self):
        metrics = RetryMetrics(max_recent_records=2)
        for i in range(3):
            metrics.record_sequence_start(f"op-{i}", "evt-1")
            metrics.record_sequence_end(f"op-{i}", False, 1, 0.1)

        assert [r["operation_id"] for r in metrics.get_recent_records()] == ["op-2", "op-1"]
        assert metrics.success_rate == 0.0

    def test_reset(self):
        metrics = RetryMetrics()
        metrics.record_sequence_start("op-1", "evt-1")
        metrics.record_sequence_end("op-1", True, 1, 0.1)

        metrics.reset()

        assert metrics.get_metrics()["total_sequences"] == 0
        assert metrics.error_type_distribution == {}
