"""Logging and trace correlation for action-publisher."""

from __future__ import annotations

from action_publisher.telemetry.logging import add_trace_context, configure_logging

__all__ = ["add_trace_context", "configure_logging"]
