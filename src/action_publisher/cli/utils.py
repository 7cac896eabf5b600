"""CLI utility functions and exit codes.

Errors are written as plain text to stderr; each error type maps to a
non-zero exit code so workflow steps fail with a meaningful status.

Example:
    from action_publisher.cli.utils import error_exit, ExitCode

    error_exit("Registry unreachable", exit_code=ExitCode.NETWORK_ERROR)
"""

from __future__ import annotations

import sys
from enum import IntEnum
from typing import TYPE_CHECKING

import click

from action_publisher.oci.errors import PublishError

if TYPE_CHECKING:
    from typing import NoReturn


class ExitCode(IntEnum):
    """Exit codes for the action-publisher CLI."""

    SUCCESS = 0
    """Command completed successfully."""

    GENERAL_ERROR = 1
    """General error (catch-all for failures)."""

    USAGE_ERROR = 2
    """Invalid usage (bad arguments, missing required options)."""

    VALIDATION_ERROR = 5
    """Configuration or input validation failed."""

    DIGEST_MISMATCH = 6
    """Registry confirmed a different manifest digest."""

    NETWORK_ERROR = 8
    """Registry protocol or network error."""


def exit_code_for(exc: BaseException | None) -> ExitCode:
    """Map an exception to the exit code the CLI should use.

    Examples:
        >>> from action_publisher.oci.errors import InvalidRefError
        >>> exit_code_for(InvalidRefError("refs/heads/main"))
        <ExitCode.VALIDATION_ERROR: 5>
    """
    if exc is None:
        return ExitCode.SUCCESS
    if isinstance(exc, PublishError):
        try:
            return ExitCode(exc.exit_code)
        except ValueError:
            return ExitCode.GENERAL_ERROR
    return ExitCode.GENERAL_ERROR


def error(message: str, **context: str | int | bool | None) -> None:
    """Print an error message to stderr.

    Example:
        error("Publish failed", repository="octo-org/hello")
        # Output: Error: Publish failed (repository=octo-org/hello)
    """
    if context:
        context_str = ", ".join(f"{k}={v}" for k, v in context.items() if v is not None)
        full_message = f"Error: {message} ({context_str})"
    else:
        full_message = f"Error: {message}"

    click.echo(full_message, err=True)


def error_exit(
    message: str,
    exit_code: ExitCode = ExitCode.GENERAL_ERROR,
    **context: str | int | bool | None,
) -> NoReturn:
    """Print an error message to stderr and exit with a code.

    Raises:
        SystemExit: Always exits with the specified code.
    """
    error(message, **context)
    sys.exit(exit_code)


def success(message: str) -> None:
    """Print a success message to stderr.

    Stdout is reserved for workflow commands.
    """
    click.echo(message, err=True)


def info(message: str) -> None:
    """Print an informational message to stderr."""
    click.echo(message, err=True)


__all__ = [
    "ExitCode",
    "error",
    "error_exit",
    "exit_code_for",
    "info",
    "success",
]
