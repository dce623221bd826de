"""
Observability module for crudkit.

Provides:
- Structured logging with JSON format
- Operation context (which public operation a log line belongs to)
- Prometheus metrics for store calls and notification dispatch

Usage:
    from crudkit.core.observability import (
        configure_structured_logging,
        operation_context,
        store_metrics,
    )
"""

import json
import logging
import time
from collections.abc import Iterator
from contextlib import contextmanager
from contextvars import ContextVar
from datetime import UTC, datetime

from prometheus_client import CollectorRegistry, Counter, Histogram, generate_latest

# ============================================================================
# Context Variables
# ============================================================================

# Public operation currently running (e.g. "update", "delete_by_condition")
_operation_ctx: ContextVar[str] = ContextVar("operation", default="")

# Record type the current operation targets
_record_type_ctx: ContextVar[str] = ContextVar("record_type", default="")


def get_operation() -> str:
    """Get the current operation name from context."""
    return _operation_ctx.get()


def get_record_type() -> str:
    """Get the current record type name from context."""
    return _record_type_ctx.get()


@contextmanager
def operation_context(operation: str, record_type: str) -> Iterator[None]:
    """Tag every log line and metric emitted inside the block with the operation."""
    op_token = _operation_ctx.set(operation)
    rt_token = _record_type_ctx.set(record_type)
    try:
        yield
    finally:
        _operation_ctx.reset(op_token)
        _record_type_ctx.reset(rt_token)


# ============================================================================
# Structured Logging Configuration
# ============================================================================

_RESERVED_RECORD_KEYS = frozenset(
    {
        "name",
        "msg",
        "args",
        "levelname",
        "levelno",
        "pathname",
        "filename",
        "module",
        "lineno",
        "funcName",
        "created",
        "msecs",
        "relativeCreated",
        "thread",
        "threadName",
        "processName",
        "process",
        "taskName",
        "getMessage",
        "exc_info",
        "exc_text",
        "stack_info",
    }
)


class StructuredFormatter(logging.Formatter):
    """
    JSON formatter for structured logging.

    Outputs logs as JSON with standard fields:
    - timestamp: ISO 8601 format
    - level: Log level (DEBUG, INFO, WARNING, ERROR, CRITICAL)
    - logger: Logger name
    - message: Log message
    - operation: Public crudkit operation (if inside one)
    - record_type: Record type of that operation (if inside one)
    - extra: Any additional context from logging.extra
    """

    def format(self, record: logging.LogRecord) -> str:
        log_entry = {
            "timestamp": datetime.fromtimestamp(record.created, tz=UTC).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }

        operation = get_operation()
        if operation:
            log_entry["operation"] = operation

        record_type = get_record_type()
        if record_type:
            log_entry["record_type"] = record_type

        if record.exc_info:
            log_entry["exception"] = {
                "type": record.exc_info[0].__name__ if record.exc_info[0] else None,
                "message": str(record.exc_info[1]) if record.exc_info[1] else None,
            }

        log_entry["function"] = record.funcName
        log_entry["line"] = record.lineno

        extra_keys = {
            k: v for k, v in record.__dict__.items() if k not in _RESERVED_RECORD_KEYS
        }
        if extra_keys:
            log_entry["extra"] = extra_keys

        return json.dumps(log_entry, default=str)


def configure_structured_logging(level: str = "INFO") -> None:
    """
    Configure root logger with structured JSON formatting.

    Args:
        level: Log level (DEBUG, INFO, WARNING, ERROR, CRITICAL)
    """
    root_logger = logging.getLogger()
    root_logger.handlers.clear()
    root_logger.setLevel(getattr(logging, level.upper(), logging.INFO))

    handler = logging.StreamHandler()
    handler.setFormatter(StructuredFormatter())
    root_logger.addHandler(handler)


def configure_logging_from_settings() -> None:
    """Apply the logging options from ``crudkit.core.config``."""
    from crudkit.core.config import get_settings

    settings = get_settings()
    if settings.structured_logs:
        configure_structured_logging(settings.log_level)
    else:
        logging.basicConfig(level=settings.log_level)


# ============================================================================
# Prometheus Metrics
# ============================================================================

# Use a custom registry to avoid conflicts with the host application's metrics
_registry = CollectorRegistry()


class Metrics:
    """
    Centralized metrics collection for crudkit.

    Metrics groups:
    - Store: call count and latency per operation and record type
    - Notifications: dispatch count per mode and outcome
    """

    def __init__(self, registry: CollectorRegistry) -> None:
        self.registry = registry

        self.store_calls_total = Counter(
            "crudkit_store_calls_total",
            "Total store calls issued by crudkit",
            ["operation", "record_type", "status"],
            registry=self.registry,
        )

        self.store_call_duration_seconds = Histogram(
            "crudkit_store_call_duration_seconds",
            "Store call duration in seconds",
            ["operation", "record_type"],
            buckets=(0.001, 0.005, 0.01, 0.025, 0.05, 0.1, 0.25, 0.5, 1.0, 2.5, 5.0),
            registry=self.registry,
        )

        self.notifications_total = Counter(
            "crudkit_notifications_total",
            "Notification callbacks dispatched",
            ["mode", "status"],
            registry=self.registry,
        )


# Global metrics instance
metrics = Metrics(_registry)


class StoreMetricsWrapper:
    """
    Wrapper to track store call metrics.

    Usage in repos:
        with store_metrics.track("find", "Widget"):
            result = await db.execute(stmt)
    """

    def __init__(self, metrics_instance: Metrics | None = None) -> None:
        self.metrics = metrics_instance or metrics

    @contextmanager
    def track(self, operation: str, record_type: str) -> Iterator[None]:
        """
        Track timing and outcome of one store call.

        Args:
            operation: Store primitive (e.g. "select", "update", "delete")
            record_type: Name of the targeted record type
        """
        from crudkit.core.config import get_settings

        if not get_settings().metrics_enabled:
            yield
            return

        start = time.perf_counter()
        status = "success"
        try:
            yield
        except Exception:
            status = "error"
            raise
        finally:
            self.metrics.store_call_duration_seconds.labels(
                operation=operation, record_type=record_type
            ).observe(time.perf_counter() - start)
            self.metrics.store_calls_total.labels(
                operation=operation, record_type=record_type, status=status
            ).inc()


# Global store metrics wrapper
store_metrics = StoreMetricsWrapper()


def render_metrics() -> bytes:
    """Return crudkit metrics in Prometheus text exposition format."""
    return generate_latest(_registry)
