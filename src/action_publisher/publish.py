"""End-to-end publishing of an action package.

The orchestrator runs the publish stages in a fixed order:

    validate ref -> verify checkout -> stage -> archive -> build manifest
    -> publish -> [attest -> attach attestation] -> emit outputs

Temporary directories are removed afterwards whether the run succeeded or
not. The first failure ends the run; its message is reported once through
the output sink and no outputs are set.

Example:
    >>> orchestrator = PublishOrchestrator(
    ...     options, files=LocalFileOperations(), outputs=GitHubActionsOutputs()
    ... )
    >>> result = await orchestrator.run(".")
    >>> result.package_url
    'https://ghcr.io/octo-org/hello-action:1.0.0'
"""

from __future__ import annotations

import re
from collections.abc import Callable
from datetime import datetime, timezone
from pathlib import Path
from urllib.parse import urlparse

import structlog
from opentelemetry import trace

from action_publisher.fs_helper import FileOperations
from action_publisher.oci.attestation import (
    AttestationBinder,
    CosignAttestationGenerator,
    RegistryReferrerAttacher,
)
from action_publisher.oci.client import RegistryClient
from action_publisher.oci.errors import (
    ActionFilesNotFoundError,
    AttestationAttachError,
    DigestMismatchError,
    InvalidRefError,
    InvalidVersionError,
)
from action_publisher.oci.manifest import (
    build_action_package_manifest,
    manifest_digest,
    serialize_manifest,
)
from action_publisher.outputs import OutputSink
from action_publisher.schemas.config import PublishOptions
from action_publisher.schemas.oci import AttachResult, PublishResult

logger = structlog.get_logger(__name__)
tracer = trace.get_tracer(__name__)

TAG_REF_PREFIX = "refs/tags/"

# https://semver.org/#is-there-a-suggested-regular-expression-regex-to-check-a-semver-string
SEMVER_PATTERN = re.compile(
    r"(0|[1-9][0-9]*)\.(0|[1-9][0-9]*)\.(0|[1-9][0-9]*)"
    r"(?:-((?:0|[1-9][0-9]*|[0-9]*[a-zA-Z-][0-9a-zA-Z-]*)"
    r"(?:\.(?:0|[1-9][0-9]*|[0-9]*[a-zA-Z-][0-9a-zA-Z-]*))*))?"
    r"(?:\+([0-9a-zA-Z-]+(?:\.[0-9a-zA-Z-]+)*))?"
)

PACKAGE_URL_OUTPUT = "package-url"
PACKAGE_MANIFEST_OUTPUT = "package-manifest"
PACKAGE_MANIFEST_SHA_OUTPUT = "package-manifest-sha"
ATTESTATION_MANIFEST_SHA_OUTPUT = "attestation-manifest-sha"
ATTESTATION_URL_OUTPUT = "attestation-url"


def is_semver(version: str) -> bool:
    """Check a version string against the semver 2.0.0 grammar.

    Examples:
        >>> is_semver("1.2.3-rc.1+build.5")
        True
        >>> is_semver("1.0")
        False
    """
    return SEMVER_PATTERN.fullmatch(version) is not None


def validate_release_ref(ref: str) -> str:
    """Extract the package version from a release tag ref.

    One leading ``v`` is stripped from the tag before validation.

    Args:
        ref: Full git ref, e.g. ``refs/tags/v1.2.3``.

    Returns:
        The normalised version, e.g. ``1.2.3``.

    Raises:
        InvalidRefError: If ``ref`` is not a tag ref.
        InvalidVersionError: If the tag is not a semantic version.
    """
    if not ref.startswith(TAG_REF_PREFIX) or len(ref) == len(TAG_REF_PREFIX):
        raise InvalidRefError(ref)

    tag = ref[len(TAG_REF_PREFIX) :]
    version = tag[1:] if tag.startswith("v") else tag
    if not is_semver(version):
        raise InvalidVersionError(tag)
    return version


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _failure_message(error: Exception) -> str:
    return str(error) or type(error).__name__


def _output_values(result: PublishResult) -> dict[str, str]:
    """Collect every step output before any of them is written.

    Raises:
        AttestationAttachError: If the attestation has no URL.
    """
    values = {
        PACKAGE_URL_OUTPUT: result.package_url,
        PACKAGE_MANIFEST_OUTPUT: result.manifest_json,
        PACKAGE_MANIFEST_SHA_OUTPUT: result.manifest_digest,
    }
    if result.attestation is not None:
        if not result.attestation.urls:
            raise AttestationAttachError("registry returned no attestation URL")
        values[ATTESTATION_MANIFEST_SHA_OUTPUT] = result.attestation.digest
        values[ATTESTATION_URL_OUTPUT] = result.attestation.urls[0]
    return values


class PublishOrchestrator:
    """Runs one publish of an action package.

    Args:
        options: Resolved publish options.
        files: Filesystem and git collaborators.
        outputs: Sink receiving outputs on success and the failure message
            otherwise.
        registry_client: Optional registry client. A client for
            ``options.container_registry_url`` is created and closed per run
            when omitted.
        attestation_binder: Optional attestation binder. One backed by cosign
            and the registry client is created when omitted. Never used in
            enterprise mode.
        clock: Returns the creation time recorded in the manifest.

    Attributes:
        last_error: The exception that ended the most recent run, if any.
    """

    def __init__(
        self,
        options: PublishOptions,
        *,
        files: FileOperations,
        outputs: OutputSink,
        registry_client: RegistryClient | None = None,
        attestation_binder: AttestationBinder | None = None,
        clock: Callable[[], datetime] | None = None,
    ) -> None:
        self._options = options
        self._files = files
        self._outputs = outputs
        self._registry_client = registry_client
        self._attestation_binder = attestation_binder
        self._clock = clock or _utcnow
        self.last_error: Exception | None = None

    @property
    def registry_host(self) -> str:
        """Host (and port) of the container registry."""
        return urlparse(self._options.container_registry_url).netloc

    async def run(self, path: str | Path) -> PublishResult | None:
        """Publish the action at ``path``.

        Args:
            path: Directory holding the action, relative to the working
                directory or absolute.

        Returns:
            PublishResult on success, None on failure. On failure the
            message has already been reported through the output sink.
        """
        self.last_error = None
        temp_dirs: list[Path] = []
        owned_client: RegistryClient | None = None

        with tracer.start_as_current_span("action_publisher.publish") as span:
            span.set_attribute("publish.repository", self._options.name_with_owner)
            span.set_attribute("publish.ref", self._options.ref)
            try:
                client = self._registry_client
                if client is None:
                    owned_client = RegistryClient(
                        self._options.container_registry_url,
                        self._options.token.get_secret_value(),
                    )
                    client = owned_client

                result = await self._publish(Path(path), client, temp_dirs)
                self._emit_outputs(_output_values(result))
            except Exception as e:
                self.last_error = e
                span.record_exception(e)
                span.set_status(trace.Status(trace.StatusCode.ERROR, _failure_message(e)))
                self._outputs.set_failed(_failure_message(e))
                return None
            finally:
                self._cleanup(temp_dirs)
                if owned_client is not None:
                    await owned_client.aclose()

            span.set_attribute("publish.manifest_digest", result.manifest_digest)

        logger.info(
            "publish_completed",
            package_url=result.package_url,
            manifest_digest=result.manifest_digest,
        )
        return result

    async def _publish(
        self,
        path: Path,
        client: RegistryClient,
        temp_dirs: list[Path],
    ) -> PublishResult:
        options = self._options
        repository = options.name_with_owner

        version = validate_release_ref(options.ref)
        logger.info("release_validated", repository=repository, version=version)

        self._files.ensure_tag_and_ref_checked_out(options.ref, options.sha, options.workspace_dir)

        staging_dir = self._files.create_temp_dir(options.runner_temp_dir, "staging")
        temp_dirs.append(staging_dir)
        self._files.stage_action_files(path, staging_dir)
        if not self._files.is_action_repo(staging_dir):
            raise ActionFilesNotFoundError(str(path))

        archive_dir = self._files.create_temp_dir(options.runner_temp_dir, "archives")
        temp_dirs.append(archive_dir)
        archives = self._files.create_archives(staging_dir, archive_dir, repository, version)

        manifest = build_action_package_manifest(
            archives.tar_file,
            archives.zip_file,
            repository,
            version,
            self._clock(),
        )
        manifest_bytes = serialize_manifest(manifest)
        digest = manifest_digest(manifest)

        upload = await client.publish(repository, version, archives, manifest)
        if upload.published_digest != digest:
            raise DigestMismatchError(
                digest,
                upload.published_digest,
                context="Unexpected digest returned for manifest",
            )

        attestation: AttachResult | None = None
        if options.is_enterprise:
            logger.info("attestation_skipped", reason="enterprise")
        else:
            binder = self._attestation_binder or self._default_binder(client)
            subject_name = f"{self.registry_host}/{repository}"
            bundle = await binder.generate(subject_name, digest)
            attestation = await binder.attach(bundle, repository, digest, len(manifest_bytes))

        return PublishResult(
            package_url=upload.package_url,
            manifest_json=manifest_bytes.decode("utf-8"),
            manifest_digest=digest,
            attestation=attestation,
        )

    def _default_binder(self, client: RegistryClient) -> AttestationBinder:
        return AttestationBinder(
            CosignAttestationGenerator.from_options(self._options),
            RegistryReferrerAttacher(client),
        )

    def _emit_outputs(self, values: dict[str, str]) -> None:
        for name, value in values.items():
            self._outputs.set_output(name, value)

    def _cleanup(self, temp_dirs: list[Path]) -> None:
        for temp_dir in temp_dirs:
            try:
                self._files.remove_dir(temp_dir)
            except Exception as e:
                logger.warning("temp_dir_cleanup_failed", path=str(temp_dir), error=str(e))


__all__ = [
    "PublishOrchestrator",
    "SEMVER_PATTERN",
    "is_semver",
    "validate_release_ref",
]
