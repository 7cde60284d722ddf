"""Prometheus metrics for the storage reconciler."""

from prometheus_client import Counter, Histogram

# Reconciliation metrics
reconcile_total = Counter(
    "storage_reconciler_reconcile_total",
    "Total number of reconciliations",
    ["kind", "operation", "result"],
)

reconcile_duration_seconds = Histogram(
    "storage_reconciler_reconcile_duration_seconds",
    "Duration of reconciliations in seconds",
    ["kind", "operation"],
    buckets=[0.1, 0.5, 1.0, 2.5, 5.0, 10.0, 30.0, 60.0],
)

# Retry driver metrics
retry_total = Counter(
    "storage_reconciler_retry_total",
    "Total number of retry loops by outcome",
    ["operation", "outcome"],
)

retry_attempts_total = Counter(
    "storage_reconciler_retry_attempts_total",
    "Total number of attempts made inside retry loops",
    ["operation"],
)

# Bulk deletion metrics
object_versions_deleted_total = Counter(
    "storage_reconciler_object_versions_deleted_total",
    "Total number of object versions and delete markers removed",
    ["bucket"],
)

legal_holds_released_total = Counter(
    "storage_reconciler_legal_holds_released_total",
    "Total number of legal holds lifted during forced deletion",
    ["bucket"],
)

# Configuration drift detection metrics
drift_detected_total = Counter(
    "storage_reconciler_drift_detected_total",
    "Total number of configuration drift detections",
    ["kind", "resource_type"],
)

policy_drift_suppressed_total = Counter(
    "storage_reconciler_policy_drift_suppressed_total",
    "Policy differences ignored because the documents are equivalent",
    ["kind"],
)

# API call metrics
api_call_total = Counter(
    "storage_reconciler_api_call_total",
    "Total number of API calls",
    ["api_type", "operation", "result"],
)

api_call_duration_seconds = Histogram(
    "storage_reconciler_api_call_duration_seconds",
    "Duration of API calls in seconds",
    ["api_type", "operation"],
    buckets=[0.01, 0.05, 0.1, 0.5, 1.0, 2.5, 5.0],
)
