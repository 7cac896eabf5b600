"""Command-line interface for action-publisher."""

from __future__ import annotations

from action_publisher.cli.main import cli, main

__all__ = ["cli", "main"]
