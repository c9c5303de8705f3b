from ..metrics.registry import (
    AUDIT_CAPTURE_TOTAL,
    AUDIT_ENROLLMENT_CHANGES_TOTAL,
    AUDIT_LOG_WRITE_LATENCY_SECONDS,
)


def observe_capture(table: str, action: str, outcome: str) -> None:
    AUDIT_CAPTURE_TOTAL.labels(table=table, action=action, outcome=outcome).inc()


def observe_log_write(table: str, latency_s: float, success: bool) -> None:
    # failed writes abort the transaction; only successful inserts are timed
    if success:
        AUDIT_LOG_WRITE_LATENCY_SECONDS.labels(table=table).observe(latency_s)


def observe_enrollment_change(operation: str) -> None:
    AUDIT_ENROLLMENT_CHANGES_TOTAL.labels(operation=operation).inc()
