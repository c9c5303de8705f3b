from __future__ import annotations

from auditrail.db.metrics import observe_capture, observe_enrollment_change, observe_log_write
from auditrail.metrics.registry import (
    AUDIT_CAPTURE_TOTAL,
    AUDIT_ENROLLMENT_CHANGES_TOTAL,
    AUDIT_LOG_WRITE_LATENCY_SECONDS,
)


def _histogram_count(table: str) -> int:
    for family in AUDIT_LOG_WRITE_LATENCY_SECONDS.labels(table=table).collect():
        for sample in family.samples:
            if sample.name.endswith("_count"):
                return int(sample.value)
    return 0


class TestObserveCapture:
    def test_increments_counter_with_correct_labels(self) -> None:
        labels = dict(table="metrics_users", action="update", outcome="suppressed")
        initial = AUDIT_CAPTURE_TOTAL.labels(**labels)._value.get()

        observe_capture(**labels)

        assert AUDIT_CAPTURE_TOTAL.labels(**labels)._value.get() == initial + 1

    def test_outcomes_are_tracked_separately(self) -> None:
        written = dict(table="metrics_orders", action="insert", outcome="written")
        error = dict(table="metrics_orders", action="insert", outcome="error")
        initial_error = AUDIT_CAPTURE_TOTAL.labels(**error)._value.get()

        observe_capture(**written)

        assert AUDIT_CAPTURE_TOTAL.labels(**written)._value.get() >= 1
        assert AUDIT_CAPTURE_TOTAL.labels(**error)._value.get() == initial_error


class TestObserveLogWrite:
    def test_records_latency_for_successful_write(self) -> None:
        initial = _histogram_count("metrics_write_ok")

        observe_log_write("metrics_write_ok", latency_s=0.01, success=True)

        assert _histogram_count("metrics_write_ok") == initial + 1

    def test_does_not_record_latency_for_failed_write(self) -> None:
        initial = _histogram_count("metrics_write_failed")

        observe_log_write("metrics_write_failed", latency_s=0.01, success=False)

        assert _histogram_count("metrics_write_failed") == initial


def test_enrollment_changes_are_counted_per_operation() -> None:
    initial = AUDIT_ENROLLMENT_CHANGES_TOTAL.labels(operation="disable")._value.get()

    observe_enrollment_change("disable")

    assert AUDIT_ENROLLMENT_CHANGES_TOTAL.labels(operation="disable")._value.get() == initial + 1
