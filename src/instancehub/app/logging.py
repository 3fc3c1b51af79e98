"""JSON logging for the control plane.

Records are stamped with the fields bound in the current log context
(trace_id for API requests, component and instance_id inside the proxy,
reconcile_pass inside a reconcile pass) before they are formatted, so call
sites only pass what is specific to the line.
"""

import logging
import sys
import time
from collections.abc import Iterator
from contextlib import contextmanager
from contextvars import ContextVar
from datetime import datetime, timezone
from typing import Any
from uuid import uuid4

from pythonjsonlogger import jsonlogger

from instancehub.app.config import get_settings

_log_context: ContextVar[dict[str, Any] | None] = ContextVar("log_context", default=None)

SUPPRESSED_MARKER = "[RATE LIMITED]"


def get_log_context() -> dict[str, Any]:
    return dict(_log_context.get() or {})


@contextmanager
def log_context(**fields: Any) -> Iterator[None]:
    """Bind fields to every record logged inside the block. None values are skipped."""
    merged = get_log_context()
    merged.update({k: v for k, v in fields.items() if v is not None})
    token = _log_context.set(merged)
    try:
        yield
    finally:
        _log_context.reset(token)


def set_trace_id(trace_id: str | None = None) -> str:
    """Bind a trace id for the current request, generating one if absent."""
    tid = trace_id or str(uuid4())
    _log_context.set({**get_log_context(), "trace_id": tid})
    return tid


def clear_trace_context() -> None:
    _log_context.set(None)


class ContextFilter(logging.Filter):
    """Copy bound context fields onto the record. Explicit extras win."""

    def filter(self, record: logging.LogRecord) -> bool:
        for key, value in get_log_context().items():
            if not hasattr(record, key):
                setattr(record, key, value)
        return True


class RateLimitFilter(logging.Filter):
    """Cap repeats of one message per instance to rate_per_minute.

    The reconciler emits the same lines for the same instances every pass,
    so the key is (logger, message template, instance_id). A flapping
    instance is throttled without silencing the others. ERROR and above
    always pass.
    """

    def __init__(self, rate_per_minute: int = 100) -> None:
        super().__init__()
        self.rate_per_minute = rate_per_minute
        self._seen: dict[tuple[str, str, str | None], list[float]] = {}
        self._suppressing: set[tuple[str, str, str | None]] = set()

    def filter(self, record: logging.LogRecord) -> bool:
        if record.levelno >= logging.ERROR:
            return True

        key = (record.name, str(record.msg), getattr(record, "instance_id", None))
        now = time.monotonic()
        window = [t for t in self._seen.get(key, []) if now - t < 60]
        self._seen[key] = window

        if len(window) < self.rate_per_minute:
            if key in self._suppressing and len(window) < self.rate_per_minute // 2:
                self._suppressing.discard(key)
            window.append(now)
            return True

        if key in self._suppressing:
            return False
        # First suppressed record is kept as a marker
        self._suppressing.add(key)
        window.append(now)
        record.msg = f"{SUPPRESSED_MARKER} {record.msg} (max {self.rate_per_minute}/min)"
        return True


class CustomJsonFormatter(jsonlogger.JsonFormatter):
    """Adds timestamp, level, logger, schema_version and service.

    Context fields land on the record through ContextFilter and are
    serialized by JsonFormatter like any other extra.
    """

    def __init__(self, *args: Any, **kwargs: Any) -> None:
        super().__init__(*args, **kwargs)
        settings = get_settings()
        self._static = {
            "schema_version": settings.logging.schema_version,
            "service": settings.logging.service_name,
        }

    def add_fields(
        self,
        log_record: dict[str, Any],
        record: logging.LogRecord,
        message_dict: dict[str, Any],
    ) -> None:
        super().add_fields(log_record, record, message_dict)
        log_record["timestamp"] = datetime.fromtimestamp(
            record.created, tz=timezone.utc
        ).isoformat()
        log_record["level"] = record.levelname
        log_record["logger"] = record.name
        log_record.update(self._static)
        if record.exc_info:
            log_record["exception"] = self.formatException(record.exc_info)
        log_record.pop("color_message", None)


def build_handler(rate_per_minute: int) -> logging.Handler:
    handler = logging.StreamHandler(sys.stdout)
    handler.setFormatter(CustomJsonFormatter())
    # Context first so the rate limit can key on instance_id
    handler.addFilter(ContextFilter())
    handler.addFilter(RateLimitFilter(rate_per_minute))
    return handler


def setup_logging(level: int | None = None) -> None:
    """Route the root and uvicorn loggers through one JSON handler.

    Args:
        level: Log level. If None, uses LOGGING_LEVEL from settings.
    """
    settings = get_settings()
    if level is None:
        level = getattr(logging, settings.logging.level.upper(), logging.INFO)

    handler = build_handler(settings.logging.rate_limit_per_minute)

    root_logger = logging.getLogger()
    root_logger.handlers.clear()
    root_logger.addHandler(handler)
    root_logger.setLevel(level)

    for name in ("uvicorn", "uvicorn.error"):
        uv_logger = logging.getLogger(name)
        uv_logger.handlers.clear()
        uv_logger.propagate = False
        uv_logger.addHandler(handler)

    # LoggingMiddleware writes the access log
    logging.getLogger("uvicorn.access").disabled = True

    # Health probes and proxied calls would otherwise log every request
    for name in ("httpx", "httpcore", "docker", "urllib3"):
        logging.getLogger(name).setLevel(logging.WARNING)
