"""Prometheus metrics for the Kops Operator."""

from prometheus_client import Counter, Histogram

# Reconciliation metrics
reconcile_total = Counter(
    "kops_operator_reconcile_total",
    "Total number of reconciliations",
    ["kind", "result"],
)

reconcile_duration_seconds = Histogram(
    "kops_operator_reconcile_duration_seconds",
    "Duration of reconciliations in seconds",
    ["kind"],
    buckets=[0.5, 1.0, 5.0, 15.0, 30.0, 60.0, 300.0, 900.0],
)

error_total = Counter(
    "kops_operator_error_total",
    "Total number of reconciliation errors",
    ["kind", "error_type"],
)

stage_failures_total = Counter(
    "kops_operator_stage_failures_total",
    "Total number of failed reconciliation stages",
    ["stage", "error_kind"],
)

resource_status_total = Counter(
    "kops_operator_resource_status_total",
    "Resource status transitions",
    ["kind", "status"],
)

# Cluster lifecycle metrics
cluster_operations_total = Counter(
    "kops_operator_cluster_operations_total",
    "Total number of cluster lifecycle operations",
    ["operation", "result"],
)

validation_total = Counter(
    "kops_operator_validation_total",
    "Total number of cluster validations",
    ["result"],
)

# Configuration drift detection metrics
drift_detected_total = Counter(
    "kops_operator_drift_detected_total",
    "Total number of configuration drift detections",
    ["kind", "resource_type"],
)

# API call metrics
api_call_total = Counter(
    "kops_operator_api_call_total",
    "Total number of API calls",
    ["api_type", "operation", "result"],
)

api_call_duration_seconds = Histogram(
    "kops_operator_api_call_duration_seconds",
    "Duration of API calls in seconds",
    ["api_type", "operation"],
    buckets=[0.01, 0.05, 0.1, 0.5, 1.0, 5.0, 30.0, 120.0, 600.0],
)
