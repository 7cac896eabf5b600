"""Resolve publish options from the GitHub Actions environment.

Options are resolved exactly once, before the orchestrator starts, and are
passed to it as an immutable ``PublishOptions`` record.

Example:
    >>> options = await resolve_publish_options()
    >>> options.name_with_owner
    'octo-org/hello-action'
"""

from __future__ import annotations

import json
import os
from collections.abc import Mapping
from pathlib import Path
from typing import Any
from urllib.parse import urlparse

import httpx
import structlog
from pydantic import ValidationError as PydanticValidationError

from action_publisher.oci.errors import ConfigurationError
from action_publisher.schemas.config import PublishOptions, RepositoryVisibility

logger = structlog.get_logger(__name__)

REGISTRY_URL_OVERRIDE_ENV = "OCI_REGISTRY_URL"
TOKEN_ENV_NAMES = ("TOKEN", "INPUT_GITHUB-TOKEN")
DEFAULT_SERVER_URL = "https://github.com"
REGISTRY_LOOKUP_TIMEOUT_SECONDS = 30.0

_REQUIRED_ENV = {
    "name_with_owner": "GITHUB_REPOSITORY",
    "workspace_dir": "GITHUB_WORKSPACE",
    "event": "GITHUB_EVENT_NAME",
    "api_base_url": "GITHUB_API_URL",
    "runner_temp_dir": "RUNNER_TEMP",
    "sha": "GITHUB_SHA",
    "repository_id": "GITHUB_REPOSITORY_ID",
    "repository_owner_id": "GITHUB_REPOSITORY_OWNER_ID",
    "ref": "GITHUB_REF",
}


def _require(env: Mapping[str, str], name: str) -> str:
    value = env.get(name, "").strip()
    if not value:
        raise ConfigurationError(f"Environment variable {name} is not set.")
    return value


def _resolve_token(env: Mapping[str, str]) -> str:
    for name in TOKEN_ENV_NAMES:
        value = env.get(name, "").strip()
        if value:
            return value
    raise ConfigurationError(
        f"No registry token provided. Set one of: {', '.join(TOKEN_ENV_NAMES)}."
    )


def is_enterprise_server(server_url: str) -> bool:
    """Whether ``server_url`` points at a GitHub Enterprise Server instance.

    github.com and GHE.com data-residency hosts (``*.ghe.com``) are not
    enterprise servers.

    Examples:
        >>> is_enterprise_server("https://github.com")
        False
        >>> is_enterprise_server("https://octo.ghe.com")
        False
        >>> is_enterprise_server("https://github.example.com")
        True
    """
    host = (urlparse(server_url).hostname or "").lower()
    return not (host == "github.com" or host.endswith(".ghe.com"))


def load_event_payload(event_path: str | None) -> dict[str, Any]:
    """Read the workflow event payload. Returns an empty dict when unavailable."""
    if not event_path:
        return {}
    path = Path(event_path)
    if not path.is_file():
        logger.warning("event_payload_missing", path=event_path)
        return {}
    try:
        payload = json.loads(path.read_text(encoding="utf-8"))
    except (OSError, json.JSONDecodeError) as e:
        raise ConfigurationError(f"Could not read event payload at {event_path}: {e}") from e
    return payload if isinstance(payload, dict) else {}


def repository_visibility(payload: Mapping[str, Any]) -> RepositoryVisibility:
    """Visibility of the repository described by an event payload.

    Falls back to the ``private`` flag for payloads without ``visibility``,
    and to public when the payload has no repository at all.
    """
    repository = payload.get("repository") or {}
    visibility = repository.get("visibility")
    if visibility:
        try:
            return RepositoryVisibility(str(visibility).lower())
        except ValueError as e:
            raise ConfigurationError(f"Unknown repository visibility {visibility!r}.") from e
    if repository.get("private"):
        return RepositoryVisibility.PRIVATE
    return RepositoryVisibility.PUBLIC


async def fetch_container_registry_url(
    api_base_url: str,
    *,
    client: httpx.AsyncClient | None = None,
) -> str:
    """Ask the GitHub API which container registry serves this instance.

    Args:
        api_base_url: GitHub API base URL (``GITHUB_API_URL``).
        client: Optional HTTP client. One is created and closed otherwise.

    Returns:
        The registry URL from the ``url`` field of the response.

    Raises:
        ConfigurationError: If the lookup fails or returns no URL.
    """
    url = f"{api_base_url.rstrip('/')}/packages/container-registry-url"
    owned = client is None
    http = client or httpx.AsyncClient(timeout=REGISTRY_LOOKUP_TIMEOUT_SECONDS)
    try:
        response = await http.get(url)
    except httpx.HTTPError as e:
        raise ConfigurationError(f"Failed to fetch status page: {e}") from e
    finally:
        if owned:
            await http.aclose()

    if response.is_error:
        raise ConfigurationError(f"Failed to fetch status page: {response.reason_phrase}")

    try:
        registry_url = response.json()["url"]
    except (ValueError, KeyError, TypeError) as e:
        raise ConfigurationError(f"No container registry URL in response from {url}.") from e

    logger.info("container_registry_resolved", registry_url=registry_url)
    return str(registry_url)


async def resolve_publish_options(
    env: Mapping[str, str] | None = None,
    *,
    client: httpx.AsyncClient | None = None,
) -> PublishOptions:
    """Build PublishOptions from the workflow environment.

    Args:
        env: Environment mapping. Defaults to ``os.environ``.
        client: Optional HTTP client for the registry URL lookup.

    Returns:
        Validated, immutable PublishOptions.

    Raises:
        ConfigurationError: If a required variable is missing or invalid.
    """
    env = os.environ if env is None else env

    values: dict[str, Any] = {
        field: _require(env, name) for field, name in _REQUIRED_ENV.items()
    }
    server_url = env.get("GITHUB_SERVER_URL") or DEFAULT_SERVER_URL
    payload = load_event_payload(env.get("GITHUB_EVENT_PATH"))

    registry_url = env.get(REGISTRY_URL_OVERRIDE_ENV, "").strip()
    if not registry_url:
        registry_url = await fetch_container_registry_url(values["api_base_url"], client=client)

    try:
        options = PublishOptions(
            **values,
            token=_resolve_token(env),
            container_registry_url=registry_url,
            is_enterprise=is_enterprise_server(server_url),
            repository_visibility=repository_visibility(payload),
            server_url=server_url,
            run_id=env.get("GITHUB_RUN_ID") or None,
            run_attempt=env.get("GITHUB_RUN_ATTEMPT") or None,
            workflow_ref=env.get("GITHUB_WORKFLOW_REF") or None,
        )
    except PydanticValidationError as e:
        raise ConfigurationError(f"Invalid publish options: {e}") from e

    logger.info(
        "publish_options_resolved",
        repository=options.name_with_owner,
        ref=options.ref,
        is_enterprise=options.is_enterprise,
        visibility=options.repository_visibility.value,
    )
    return options


__all__ = [
    "fetch_container_registry_url",
    "is_enterprise_server",
    "load_event_payload",
    "repository_visibility",
    "resolve_publish_options",
]
