from prometheus_client import Counter, Histogram


AUDIT_CAPTURE_TOTAL = Counter(
    "auditrail_capture_total",
    "Hook invocations by outcome (written, suppressed, error)",
    ["table", "action", "outcome"],
)

AUDIT_LOG_WRITE_LATENCY_SECONDS = Histogram(
    "auditrail_log_write_latency_seconds",
    "Latency of audit log inserts",
    ["table"],
)

AUDIT_ENROLLMENT_CHANGES_TOTAL = Counter(
    "auditrail_enrollment_changes_total",
    "Enable/disable operations applied to audited tables",
    ["operation"],
)
