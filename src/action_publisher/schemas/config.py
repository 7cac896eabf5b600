"""Publish options schema.

PublishOptions is the single, pre-validated configuration record handed to
the orchestrator. It is produced once by
``action_publisher.config.resolve_publish_options`` and only read afterwards.
"""

from __future__ import annotations

from enum import Enum

from pydantic import BaseModel, ConfigDict, Field, SecretStr, field_validator


class RepositoryVisibility(str, Enum):
    """Visibility of the repository being published."""

    PUBLIC = "public"
    PRIVATE = "private"
    INTERNAL = "internal"


class PublishOptions(BaseModel):
    """Resolved inputs for one publish run.

    Examples:
        >>> options = PublishOptions(
        ...     name_with_owner="octo-org/hello-action",
        ...     workspace_dir="/home/runner/work/hello-action",
        ...     event="release",
        ...     api_base_url="https://api.github.com",
        ...     runner_temp_dir="/home/runner/work/_temp",
        ...     sha="a" * 40,
        ...     repository_id="1",
        ...     repository_owner_id="2",
        ...     container_registry_url="https://ghcr.io/",
        ...     token="ghs_token",
        ...     ref="refs/tags/v1.0.0",
        ... )
        >>> options.is_enterprise
        False
    """

    model_config = ConfigDict(frozen=True, extra="forbid")

    name_with_owner: str = Field(..., pattern=r"^[^/\s]+/[^/\s]+$")
    workspace_dir: str = Field(..., min_length=1)
    event: str = Field(..., min_length=1)
    api_base_url: str = Field(..., min_length=1)
    runner_temp_dir: str = Field(..., min_length=1)
    sha: str = Field(..., min_length=1)
    repository_id: str = Field(..., min_length=1)
    repository_owner_id: str = Field(..., min_length=1)
    is_enterprise: bool = False
    container_registry_url: str = Field(..., min_length=1)
    token: SecretStr
    ref: str = Field(..., min_length=1)
    repository_visibility: RepositoryVisibility = RepositoryVisibility.PUBLIC
    server_url: str = "https://github.com"
    run_id: str | None = None
    run_attempt: str | None = None
    workflow_ref: str | None = None

    @field_validator("container_registry_url")
    @classmethod
    def _ensure_trailing_slash(cls, value: str) -> str:
        # Relative joins against the registry drop the last path segment otherwise.
        return value if value.endswith("/") else f"{value}/"


__all__ = ["PublishOptions", "RepositoryVisibility"]
