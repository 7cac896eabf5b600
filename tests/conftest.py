"""Shared pytest fixtures for action-publisher tests.

NOTE: Do NOT add __init__.py to test directories - pytest uses importlib mode
which can cause namespace collisions with __init__.py files.
"""

from __future__ import annotations

import hashlib
from collections.abc import Callable, Generator
from pathlib import Path
from typing import Any

import pytest
import structlog

from action_publisher.schemas.config import PublishOptions
from action_publisher.schemas.oci import Archives, FileMetadata

RELEASE_SHA = "0123456789abcdef0123456789abcdef01234567"


def pytest_configure(config: pytest.Config) -> None:
    """Configure pytest with custom markers."""
    config.addinivalue_line(
        "markers",
        "requirement(id): Mark test as covering a specific requirement",
    )


@pytest.fixture
def anyio_backend() -> str:
    """Run anyio-marked tests on asyncio only."""
    return "asyncio"


@pytest.fixture(autouse=True)
def _reset_structlog() -> Generator[None, None, None]:
    """Undo any structlog configuration a test (or the CLI) applied."""
    yield
    structlog.reset_defaults()


def _metadata(path: Path, content: bytes) -> FileMetadata:
    path.write_bytes(content)
    return FileMetadata(
        path=path,
        size=len(content),
        sha256=f"sha256:{hashlib.sha256(content).hexdigest()}",
    )


@pytest.fixture
def archives(tmp_path: Path) -> Archives:
    """Two small on-disk archives with correct sizes and digests."""
    return Archives(
        zip_file=_metadata(tmp_path / "octo-org-hello-action_1.0.0.zip", b"zip-archive-content"),
        tar_file=_metadata(tmp_path / "octo-org-hello-action_1.0.0.tar.gz", b"tar-archive-content"),
    )


@pytest.fixture
def make_options(tmp_path: Path) -> Callable[..., PublishOptions]:
    """Factory for PublishOptions with overridable fields.

    Example:
        >>> options = make_options(is_enterprise=True)
    """

    def _make(**overrides: Any) -> PublishOptions:
        values: dict[str, Any] = {
            "name_with_owner": "octo-org/hello-action",
            "workspace_dir": str(tmp_path / "workspace"),
            "event": "release",
            "api_base_url": "https://api.github.com",
            "runner_temp_dir": str(tmp_path / "runner-temp"),
            "sha": RELEASE_SHA,
            "repository_id": "1234",
            "repository_owner_id": "5678",
            "is_enterprise": False,
            "container_registry_url": "https://ghcr.io/",
            "token": "ghs_secret_token",
            "ref": "refs/tags/v1.0.0",
            "run_id": "42",
            "workflow_ref": "octo-org/hello-action/.github/workflows/release.yml@refs/tags/v1.0.0",
        }
        values.update(overrides)
        return PublishOptions(**values)

    return _make


@pytest.fixture
def publish_options(make_options: Callable[..., PublishOptions]) -> PublishOptions:
    """Default non-enterprise PublishOptions."""
    return make_options()
