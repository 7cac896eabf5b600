"""Main entry point for the action-publisher CLI.

Commands:
    action-publisher publish: Package the action and publish it to the
        container registry (run from a release workflow).

Example:
    $ action-publisher publish --path .
    $ action-publisher publish --path actions/hello --log-level DEBUG --console-logs
"""

from __future__ import annotations

import asyncio
import sys
from importlib.metadata import PackageNotFoundError
from importlib.metadata import version as get_version

import click

from action_publisher.cli.utils import ExitCode, error_exit, exit_code_for, info, success
from action_publisher.config import resolve_publish_options
from action_publisher.fs_helper import LocalFileOperations
from action_publisher.oci.errors import ConfigurationError
from action_publisher.outputs import GitHubActionsOutputs
from action_publisher.publish import PublishOrchestrator
from action_publisher.schemas.oci import PublishResult
from action_publisher.telemetry.logging import LOG_LEVELS, configure_logging


def _get_version() -> str:
    """Get the action-publisher package version.

    Returns:
        Version string from package metadata, or 'unknown' if not installed.
    """
    try:
        return get_version("action-publisher")
    except PackageNotFoundError:
        return "unknown"


async def _publish(path: str) -> tuple[PublishResult | None, Exception | None]:
    outputs = GitHubActionsOutputs()
    try:
        options = await resolve_publish_options()
    except ConfigurationError as e:
        outputs.set_failed(str(e))
        return None, e

    orchestrator = PublishOrchestrator(
        options,
        files=LocalFileOperations(),
        outputs=outputs,
    )
    result = await orchestrator.run(path)
    return result, orchestrator.last_error


@click.group(
    name="action-publisher",
    help="action-publisher - Publish GitHub Actions as OCI packages.",
    context_settings={"help_option_names": ["-h", "--help"]},
)
@click.version_option(
    version=_get_version(),
    prog_name="action-publisher",
    message="%(prog)s %(version)s",
)
def cli() -> None:
    """Root command group for the action-publisher CLI."""
    pass


@cli.command(
    name="publish",
    help="""\b
Package an action and publish it to the container registry.

Reads the workflow context (repository, ref, token, registry) from the
GitHub Actions environment. The ref must be a semantic version tag.

Examples:
    $ action-publisher publish
    $ action-publisher publish --path actions/hello --console-logs
""",
)
@click.option(
    "--path",
    "path",
    type=click.Path(file_okay=False),
    default=".",
    show_default=True,
    help="Directory containing action.yml.",
)
@click.option(
    "--log-level",
    type=click.Choice(LOG_LEVELS, case_sensitive=False),
    default="INFO",
    show_default=True,
    envvar="ACTION_PUBLISHER_LOG_LEVEL",
    help="Minimum log level.",
)
@click.option(
    "--json-logs/--console-logs",
    default=True,
    help="Emit logs as JSON (default) or in human-readable form.",
)
def publish_command(path: str, log_level: str, json_logs: bool) -> None:
    """Publish the action at PATH."""
    configure_logging(log_level=log_level, json_output=json_logs)
    info(f"Publishing action from {path}")

    result, failure = asyncio.run(_publish(path))
    if result is None:
        error_exit(
            "Publish failed",
            exit_code=exit_code_for(failure) or ExitCode.GENERAL_ERROR,
            error_type=type(failure).__name__ if failure is not None else None,
        )

    success(f"Published {result.package_url} ({result.manifest_digest})")


def main(argv: list[str] | None = None) -> None:
    """Main entry point for the action-publisher CLI.

    Args:
        argv: Command-line arguments (uses sys.argv if None).
    """
    try:
        code = cli.main(args=argv, standalone_mode=False)
    except click.UsageError as e:
        e.show()
        sys.exit(ExitCode.USAGE_ERROR)
    except click.ClickException as e:
        e.show()
        sys.exit(e.exit_code)
    except click.Abort:
        click.echo("Aborted!", err=True)
        sys.exit(1)
    sys.exit(code or ExitCode.SUCCESS)


if __name__ == "__main__":
    main()
