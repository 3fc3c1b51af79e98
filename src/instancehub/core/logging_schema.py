"""Logging field schema - v1.0

Standard fields (added to all logs):
- schema_version: Log schema version
- service: Service name (instancehub-control-plane)
- component: Component name (lifecycle, reconciler, proxy, api)
- event: Event type (reconcile_complete, operation_failed, etc.)
- trace_id: Request trace ID
- duration_ms: Duration in milliseconds

High cardinality fields (OK in logs, NOT in metric labels):
- instance_id: Instance ID
- handle: Runtime handle (container ID)
- port: Host port
"""

from enum import StrEnum


class LogEvent(StrEnum):
    """Standard log event types.

    Use these event types in the 'event' extra field for consistent
    log filtering and analysis.
    """

    # Reconciler events
    RECONCILE_COMPLETE = "reconcile_complete"
    RECONCILE_SKIPPED = "reconcile_skipped"
    RECONCILE_SLOW = "reconcile_slow"
    STATE_CHANGED = "state_changed"
    CAS_CONFLICT = "cas_conflict"

    # Lifecycle events
    OPERATION_STARTED = "operation_started"
    OPERATION_SUCCESS = "operation_success"
    OPERATION_FAILED = "operation_failed"
    PREFLIGHT_FAILED = "preflight_failed"
    PORT_ALLOCATED = "port_allocated"
    IMAGE_PULLED = "image_pulled"

    # Runtime events
    CONTAINER_CREATED = "container_created"
    CONTAINER_STARTED = "container_started"
    CONTAINER_STOPPED = "container_stopped"
    CONTAINER_REMOVED = "container_removed"
    RUNTIME_ERROR = "runtime_error"

    # Proxy events
    PROXY_FAILED = "proxy_failed"
    UPSTREAM_UNHEALTHY = "upstream_unhealthy"

    # Application events
    APP_STARTED = "app_started"
    APP_STOPPED = "app_stopped"
    DB_CONNECTED = "db_connected"
    DB_ERROR = "db_error"

    # API events
    REQUEST_COMPLETE = "request_complete"
    REQUEST_FAILED = "request_failed"
    REQUEST_SLOW = "request_slow"


class ErrorClass(StrEnum):
    """Error classification for structured error logging.

    Use these in the 'error_class' extra field to enable
    filtering by error type and setting up alerts.
    """

    TRANSIENT = "transient"  # Retryable (daemon down, network)
    PERMANENT = "permanent"  # Not retryable without operator action
    TIMEOUT = "timeout"


class Component(StrEnum):
    """Component identifiers for log filtering."""

    LIFECYCLE = "lifecycle"
    RECONCILER = "reconciler"
    PROXY = "proxy"
    RUNTIME = "runtime"
    API = "api"
