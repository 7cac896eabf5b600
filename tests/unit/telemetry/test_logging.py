"""Unit tests for structlog configuration and trace correlation."""

from __future__ import annotations

import json
from typing import Any

import pytest
import structlog
from opentelemetry.sdk.trace import TracerProvider

from action_publisher.telemetry.logging import add_trace_context, configure_logging


class TestAddTraceContext:
    """Tests for the add_trace_context processor."""

    @pytest.mark.requirement("logging-trace-context")
    def test_adds_ids_inside_span(self) -> None:
        """Test trace_id and span_id are added when a span is active."""
        tracer = TracerProvider().get_tracer("test")

        with tracer.start_as_current_span("upload_blob") as span:
            result = add_trace_context(None, "info", {"event": "blob_uploaded"})
            ctx = span.get_span_context()

        assert result["trace_id"] == format(ctx.trace_id, "032x")
        assert result["span_id"] == format(ctx.span_id, "016x")

    @pytest.mark.requirement("logging-trace-context")
    def test_no_ids_outside_span(self) -> None:
        """Test the event is unchanged without an active span."""
        event_dict: dict[str, Any] = {"event": "blob_uploaded"}

        assert add_trace_context(None, "info", event_dict) == {"event": "blob_uploaded"}


class TestConfigureLogging:
    """Tests for configure_logging."""

    @pytest.mark.requirement("logging-config")
    def test_json_output(self, capsys: pytest.CaptureFixture[str]) -> None:
        """Test JSON logs go to stderr with level and timestamp."""
        configure_logging(log_level="INFO", json_output=True)

        structlog.get_logger("test").info("manifest_uploaded", digest="sha256:abc")

        record = json.loads(capsys.readouterr().err.strip().splitlines()[-1])
        assert record["event"] == "manifest_uploaded"
        assert record["digest"] == "sha256:abc"
        assert record["level"] == "info"
        assert "timestamp" in record

    @pytest.mark.requirement("logging-config")
    def test_level_filtering(self, capsys: pytest.CaptureFixture[str]) -> None:
        """Test events below the configured level are dropped."""
        configure_logging(log_level="warning", json_output=True)

        structlog.get_logger("test").info("blob_exists")
        structlog.get_logger("test").warning("temp_dir_cleanup_failed")

        err = capsys.readouterr().err
        assert "blob_exists" not in err
        assert "temp_dir_cleanup_failed" in err

    @pytest.mark.requirement("logging-config")
    def test_unknown_level(self) -> None:
        """Test unknown level names are rejected."""
        with pytest.raises(ValueError, match="Unknown log level"):
            configure_logging(log_level="LOUD")
