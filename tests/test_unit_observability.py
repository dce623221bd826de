"""
Unit tests for observability features.

Tests cover:
- Structured logging with JSON format
- Operation context propagation into log lines
- Prometheus store-call metrics, and switching them off
"""

import json
import logging
import sys

import pytest

from crudkit.core.observability import (
    StructuredFormatter,
    configure_logging_from_settings,
    configure_structured_logging,
    get_operation,
    get_record_type,
    metrics,
    operation_context,
    render_metrics,
    store_metrics,
)


def make_record(message: str = "hello", **extra) -> logging.LogRecord:
    record = logging.LogRecord(
        name="crudkit.test",
        level=logging.INFO,
        pathname=__file__,
        lineno=10,
        msg=message,
        args=(),
        exc_info=None,
    )
    for key, value in extra.items():
        setattr(record, key, value)
    return record


def store_call_count(operation: str, record_type: str, status: str) -> float:
    value = metrics.registry.get_sample_value(
        "crudkit_store_calls_total",
        {"operation": operation, "record_type": record_type, "status": status},
    )
    return value or 0.0


class TestOperationContext:
    """Tests for operation context variables."""

    def test_context_is_set_and_restored(self):
        assert get_operation() == ""

        with operation_context("update", "Widget"):
            assert get_operation() == "update"
            assert get_record_type() == "Widget"

            with operation_context("find_one", "Gadget"):
                assert get_operation() == "find_one"

            assert get_operation() == "update"

        assert get_operation() == ""
        assert get_record_type() == ""


class TestStructuredFormatter:
    """Tests for StructuredFormatter."""

    def test_formats_as_json(self):
        output = json.loads(StructuredFormatter().format(make_record()))

        assert output["level"] == "INFO"
        assert output["logger"] == "crudkit.test"
        assert output["message"] == "hello"
        assert "timestamp" in output
        assert "operation" not in output

    def test_includes_operation_context(self):
        with operation_context("delete_many", "Widget"):
            output = json.loads(StructuredFormatter().format(make_record()))

        assert output["operation"] == "delete_many"
        assert output["record_type"] == "Widget"

    def test_includes_extra_fields(self):
        output = json.loads(StructuredFormatter().format(make_record(rows=3)))

        assert output["extra"] == {"rows": 3}

    def test_includes_exception(self):
        try:
            raise ValueError("boom")
        except ValueError:
            record = make_record()
            record.exc_info = sys.exc_info()

        output = json.loads(StructuredFormatter().format(record))

        assert output["exception"] == {"type": "ValueError", "message": "boom"}

    def test_configure_structured_logging(self):
        root = logging.getLogger()
        saved_handlers, saved_level = root.handlers[:], root.level
        try:
            configure_structured_logging("debug")

            assert root.level == logging.DEBUG
            assert isinstance(root.handlers[0].formatter, StructuredFormatter)
        finally:
            root.handlers[:] = saved_handlers
            root.setLevel(saved_level)


@pytest.mark.unit
class TestStoreMetrics:
    """Tests for StoreMetricsWrapper."""

    def test_counts_success(self):
        before = store_call_count("select_many", "MetricsProbe", "success")

        with store_metrics.track("select_many", "MetricsProbe"):
            pass

        assert store_call_count("select_many", "MetricsProbe", "success") == before + 1

    def test_counts_error_and_reraises(self):
        before = store_call_count("update", "MetricsProbe", "error")

        with pytest.raises(RuntimeError):
            with store_metrics.track("update", "MetricsProbe"):
                raise RuntimeError("db down")

        assert store_call_count("update", "MetricsProbe", "error") == before + 1

    def test_disabled_by_settings(self, monkeypatch):
        monkeypatch.setenv("CRUDKIT_METRICS_ENABLED", "false")
        before = store_call_count("count", "MetricsProbe", "success")

        with store_metrics.track("count", "MetricsProbe"):
            pass

        assert store_call_count("count", "MetricsProbe", "success") == before

    def test_render_metrics(self):
        with store_metrics.track("delete", "MetricsProbe"):
            pass

        assert b"crudkit_store_calls_total" in render_metrics()


class TestConfigureFromSettings:
    """Tests for configure_logging_from_settings."""

    @pytest.mark.parametrize(("structured", "expected"), [("true", True), ("false", False)])
    def test_respects_structured_flag(self, monkeypatch, structured, expected):
        monkeypatch.setenv("CRUDKIT_STRUCTURED_LOGS", structured)
        monkeypatch.setenv("CRUDKIT_LOG_LEVEL", "warning")
        root = logging.getLogger()
        saved_handlers, saved_level = root.handlers[:], root.level
        root.handlers.clear()
        try:
            configure_logging_from_settings()

            formatters = [type(h.formatter) for h in root.handlers]
            assert (StructuredFormatter in formatters) is expected
            assert root.level == logging.WARNING
        finally:
            root.handlers[:] = saved_handlers
            root.setLevel(saved_level)
