"""Step outputs and failure reporting for GitHub Actions.

Outputs are appended to the file named by ``$GITHUB_OUTPUT`` using the
multi-line ``name<<DELIMITER`` syntax. Failures are reported as an ``::error::``
workflow command and recorded so the caller can exit non-zero.
"""

from __future__ import annotations

import os
import sys
import uuid
from collections.abc import Mapping
from pathlib import Path
from typing import Protocol, TextIO

import structlog

logger = structlog.get_logger(__name__)


class OutputSink(Protocol):
    """Destination for step outputs and the single failure message."""

    def set_output(self, name: str, value: str) -> None: ...

    def set_failed(self, message: str) -> None: ...


def escape_command_data(value: str) -> str:
    """Escape a value for use in a workflow command.

    Examples:
        >>> escape_command_data("line one\\nline two")
        'line one%0Aline two'
    """
    return value.replace("%", "%25").replace("\r", "%0D").replace("\n", "%0A")


def format_output_record(name: str, value: str, delimiter: str) -> str:
    """Render one ``$GITHUB_OUTPUT`` record.

    Raises:
        ValueError: If the name or value contains the delimiter.
    """
    if delimiter in name or delimiter in value:
        raise ValueError(f"Output {name} contains the delimiter {delimiter}")
    return f"{name}<<{delimiter}\n{value}\n{delimiter}\n"


class GitHubActionsOutputs:
    """OutputSink writing to the GitHub Actions runner.

    Args:
        env: Environment mapping used to locate ``GITHUB_OUTPUT``.
        stream: Stream for workflow commands. Defaults to stdout.

    Attributes:
        failed: True once ``set_failed`` has been called.
        outputs: Every output set so far, in order.
    """

    def __init__(
        self,
        env: Mapping[str, str] | None = None,
        *,
        stream: TextIO | None = None,
    ) -> None:
        env = os.environ if env is None else env
        output_path = env.get("GITHUB_OUTPUT")
        self._output_file = Path(output_path) if output_path else None
        self._stream = stream
        self.failed = False
        self.failure_message: str | None = None
        self.outputs: dict[str, str] = {}

    @property
    def stream(self) -> TextIO:
        return self._stream or sys.stdout

    def set_output(self, name: str, value: str) -> None:
        self.outputs[name] = value
        if self._output_file is not None:
            record = format_output_record(name, value, f"ghadelimiter_{uuid.uuid4()}")
            with self._output_file.open("a", encoding="utf-8") as f:
                f.write(record)
        else:
            self.stream.write(f"\n::set-output name={name}::{escape_command_data(value)}\n")
        logger.debug("output_set", name=name)

    def set_failed(self, message: str) -> None:
        self.failed = True
        self.failure_message = message
        self.stream.write(f"::error::{escape_command_data(message)}\n")
        logger.error("publish_failed", message=message)


__all__ = [
    "GitHubActionsOutputs",
    "OutputSink",
    "escape_command_data",
    "format_output_record",
]
