"""Prometheus metrics definitions."""

from prometheus_client import Counter, Gauge, Histogram

# =============================================================================
# Histogram Buckets (optimized by latency category)
# =============================================================================

# MEDIUM: API calls, proxied requests, reconcile passes (5ms ~ 60s)
_BUCKETS_MEDIUM = (
    0.005, 0.01, 0.02, 0.04, 0.09,
    0.18, 0.36, 0.73, 1.5, 3,
    6.2, 12.7, 26, 53,
)  # 14 buckets

# SLOW: Docker operations including image pulls (100ms ~ 180s)
_BUCKETS_SLOW = (
    0.1, 0.2, 0.39, 0.77, 1.5,
    3, 6, 12, 23, 46,
    91, 180,
)  # 12 buckets

# =============================================================================
# HTTP Metrics
# =============================================================================

HTTP_REQUESTS_TOTAL = Counter(
    "instancehub_http_requests_total",
    "Total HTTP requests",
    ["method", "endpoint", "status"],
)

HTTP_REQUEST_DURATION = Histogram(
    "instancehub_http_request_duration_seconds",
    "HTTP request duration",
    ["method", "endpoint"],
    buckets=_BUCKETS_MEDIUM,
)

# =============================================================================
# Proxy Metrics
# =============================================================================

PROXY_REQUESTS_TOTAL = Counter(
    "instancehub_proxy_requests_total",
    "Proxied requests by outcome",
    ["outcome"],  # forwarded, invalid_path, not_found, not_running, failed
)

PROXY_UPSTREAM_DURATION = Histogram(
    "instancehub_proxy_upstream_duration_seconds",
    "Upstream round-trip time for proxied requests",
    buckets=_BUCKETS_MEDIUM,
)

# =============================================================================
# Lifecycle Metrics
# =============================================================================

LIFECYCLE_OPERATIONS_TOTAL = Counter(
    "instancehub_lifecycle_operations_total",
    "Lifecycle operations by result",
    ["operation", "result"],  # operation: create, start, stop, remove; result: success, failure
)

LIFECYCLE_OPERATION_DURATION = Histogram(
    "instancehub_lifecycle_operation_duration_seconds",
    "Lifecycle operation duration",
    ["operation"],
    buckets=_BUCKETS_SLOW,
)

# =============================================================================
# Reconciler Metrics
# =============================================================================

RECONCILE_TOTAL = Counter(
    "instancehub_reconcile_total",
    "Reconcile passes by result",
    ["result"],  # completed, skipped, failed
)

RECONCILE_DURATION = Histogram(
    "instancehub_reconcile_duration_seconds",
    "Duration of a reconcile pass",
    buckets=_BUCKETS_MEDIUM,
)

RECONCILE_STATUS_CHANGES_TOTAL = Counter(
    "instancehub_reconcile_status_changes_total",
    "Status changes written by the reconciler",
    ["status"],
)

INSTANCES_BY_STATUS = Gauge(
    "instancehub_instances",
    "Instances observed in the last reconcile pass, by recorded status",
    ["status"],
)


# =============================================================================
# Metric Initialization (ensure labels appear before first use)
# =============================================================================


def _init_metrics() -> None:
    """Initialize labeled metrics with zero values.

    Prometheus metrics with labels don't appear in output until first use.
    """
    for outcome in ["forwarded", "invalid_path", "not_found", "not_running", "failed"]:
        PROXY_REQUESTS_TOTAL.labels(outcome=outcome)
    for op in ["create", "start", "stop", "remove"]:
        LIFECYCLE_OPERATION_DURATION.labels(operation=op)
        for result in ["success", "failure"]:
            LIFECYCLE_OPERATIONS_TOTAL.labels(operation=op, result=result)
    for result in ["completed", "skipped", "failed"]:
        RECONCILE_TOTAL.labels(result=result)


_init_metrics()
