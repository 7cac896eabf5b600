"""Provenance attestation generation and attachment.

Implements the two halves of binding a provenance attestation to a published
package:

    - Generation: build an SLSA v1 provenance predicate for the publishing
      workflow and sign it with the cosign CLI in compute-only mode
      (``--tlog-upload=false``). Nothing is written to a transparency log.
    - Attachment: store the resulting Sigstore bundle in the registry as an
      OCI referrer whose ``subject`` is the package manifest.

External Dependencies:
    - cosign: Keyless signing (https://github.com/sigstore/cosign)

Example:
    >>> binder = AttestationBinder(
    ...     generator=CosignAttestationGenerator(predicate),
    ...     attacher=RegistryReferrerAttacher(registry_client),
    ... )
    >>> bundle = await binder.generate("ghcr.io/octo-org/hello", digest)
    >>> result = await binder.attach(bundle, "octo-org/hello", digest, size)
"""

from __future__ import annotations

import asyncio
import json
import shutil
import subprocess
import tempfile
import textwrap
from pathlib import Path
from typing import TYPE_CHECKING, Any, Protocol

import structlog
from opentelemetry import trace

from action_publisher.oci.errors import (
    AttestationAttachError,
    AttestationGenerationError,
    CosignNotFoundError,
    PublishError,
)
from action_publisher.oci.manifest import build_referrer_manifest, calculate_digest
from action_publisher.schemas.config import RepositoryVisibility
from action_publisher.schemas.oci import (
    EMPTY_CONFIG_CONTENT,
    EMPTY_CONFIG_DIGEST,
    OCI_IMAGE_MANIFEST_TYPE,
    SIGSTORE_BUNDLE_TYPE,
    AttachResult,
    AttestationBundle,
    Layer,
)

if TYPE_CHECKING:
    from action_publisher.oci.client import RegistryClient
    from action_publisher.schemas.config import PublishOptions

logger = structlog.get_logger(__name__)
tracer = trace.get_tracer(__name__)

SLSA_PROVENANCE_PREDICATE_TYPE = "https://slsa.dev/provenance/v1"
GITHUB_WORKFLOW_BUILD_TYPE = "https://actions.github.io/buildtypes/workflow/v1"

GITHUB_FULCIO_URL = "https://fulcio.githubapp.com"
GITHUB_TIMESTAMP_URL = "https://timestamp.githubapp.com/api/v1/timestamp"

BUNDLE_CONTENT_ANNOTATION = "dev.sigstore.bundle.content"
BUNDLE_PREDICATE_ANNOTATION = "dev.sigstore.bundle.predicateType"

COSIGN_TIMEOUT_SECONDS = 120


# =============================================================================
# Provenance statement
# =============================================================================


def build_provenance_predicate(options: PublishOptions) -> dict[str, Any]:
    """Build an SLSA v1 provenance predicate for the publishing workflow.

    Args:
        options: Resolved publish options.

    Returns:
        Provenance predicate dictionary.
    """
    server_url = options.server_url.rstrip("/")
    repository_url = f"{server_url}/{options.name_with_owner}"

    workflow_path = None
    if options.workflow_ref:
        workflow_path = options.workflow_ref.split("@", 1)[0]
        workflow_path = workflow_path.removeprefix(f"{options.name_with_owner}/")

    predicate: dict[str, Any] = {
        "buildDefinition": {
            "buildType": GITHUB_WORKFLOW_BUILD_TYPE,
            "externalParameters": {
                "workflow": {
                    "ref": options.ref,
                    "repository": repository_url,
                    "path": workflow_path,
                },
            },
            "internalParameters": {
                "github": {
                    "event_name": options.event,
                    "repository_id": options.repository_id,
                    "repository_owner_id": options.repository_owner_id,
                },
            },
            "resolvedDependencies": [
                {
                    "uri": f"git+{repository_url}@{options.ref}",
                    "digest": {"gitCommit": options.sha},
                }
            ],
        },
        "runDetails": {
            "builder": {"id": f"{server_url}/{options.workflow_ref or options.name_with_owner}"},
            "metadata": {},
        },
    }
    if options.run_id:
        attempt = options.run_attempt or "1"
        predicate["runDetails"]["metadata"]["invocationId"] = (
            f"{repository_url}/actions/runs/{options.run_id}/attempts/{attempt}"
        )
    return predicate


def _der_to_pem(raw_b64: str) -> str:
    body = "\n".join(textwrap.wrap(raw_b64, 64))
    return f"-----BEGIN CERTIFICATE-----\n{body}\n-----END CERTIFICATE-----\n"


def extract_certificate(bundle: dict[str, Any]) -> str:
    """Return the PEM signing certificate embedded in a Sigstore bundle.

    Handles both the v0.3 layout (single ``certificate``) and the older
    ``x509CertificateChain`` layout. Returns an empty string when the bundle
    carries a public key hint instead of a certificate.
    """
    material = bundle.get("verificationMaterial", {})
    certificate = material.get("certificate")
    if certificate and certificate.get("rawBytes"):
        return _der_to_pem(certificate["rawBytes"])

    chain = material.get("x509CertificateChain", {}).get("certificates", [])
    if chain and chain[0].get("rawBytes"):
        return _der_to_pem(chain[0]["rawBytes"])
    return ""


# =============================================================================
# Generation
# =============================================================================


class AttestationGenerator(Protocol):
    """Produces a signed attestation without persisting it anywhere."""

    async def generate(self, subject_name: str, subject_digest: str) -> AttestationBundle:
        """Sign a provenance statement for ``subject_digest``."""
        ...


def check_cosign_available(cosign_path: str = "cosign") -> bool:
    """Check if cosign CLI is available on PATH."""
    return shutil.which(cosign_path) is not None


class CosignAttestationGenerator:
    """Generates provenance attestations with ``cosign attest-blob``.

    The attestation is computed only: cosign is invoked with
    ``--tlog-upload=false`` so nothing reaches a transparency log. Public
    repositories sign against the public-good Sigstore instance; private and
    internal repositories use GitHub's instance.

    Args:
        predicate: Provenance predicate to sign.
        visibility: Repository visibility; selects the Sigstore instance.
        cosign_path: Name or path of the cosign executable.
    """

    def __init__(
        self,
        predicate: dict[str, Any],
        *,
        visibility: RepositoryVisibility = RepositoryVisibility.PUBLIC,
        cosign_path: str = "cosign",
    ) -> None:
        self._predicate = predicate
        self._visibility = visibility
        self._cosign_path = cosign_path

    @classmethod
    def from_options(cls, options: PublishOptions) -> CosignAttestationGenerator:
        """Create a generator signing provenance for the given run."""
        return cls(
            build_provenance_predicate(options),
            visibility=options.repository_visibility,
        )

    def build_command(self, subject_name: str, subject_digest: str, workdir: Path) -> list[str]:
        """Assemble the cosign command line."""
        cmd = [
            self._cosign_path,
            "attest-blob",
            "--yes",
            "--tlog-upload=false",
            "--new-bundle-format",
            "--bundle",
            str(workdir / "bundle.json"),
            "--predicate",
            str(workdir / "predicate.json"),
            "--type",
            SLSA_PROVENANCE_PREDICATE_TYPE,
            "--hash",
            subject_digest.removeprefix("sha256:"),
        ]
        if self._visibility is not RepositoryVisibility.PUBLIC:
            cmd.extend(
                [
                    "--fulcio-url",
                    GITHUB_FULCIO_URL,
                    "--timestamp-server-url",
                    GITHUB_TIMESTAMP_URL,
                ]
            )
        cmd.append(subject_name)
        return cmd

    async def generate(self, subject_name: str, subject_digest: str) -> AttestationBundle:
        """Sign a provenance statement for ``subject_digest``.

        Raises:
            CosignNotFoundError: If cosign CLI is not installed.
            AttestationGenerationError: If cosign fails or emits no bundle.
        """
        return await asyncio.to_thread(self._generate, subject_name, subject_digest)

    def _generate(self, subject_name: str, subject_digest: str) -> AttestationBundle:
        with tracer.start_as_current_span("action_publisher.attestation.generate") as span:
            span.set_attribute("attestation.subject", subject_name)
            span.set_attribute("attestation.subject_digest", subject_digest)
            span.set_attribute("attestation.visibility", self._visibility.value)

            if not check_cosign_available(self._cosign_path):
                raise CosignNotFoundError()

            with tempfile.TemporaryDirectory(prefix="attestation-") as tmpdir:
                workdir = Path(tmpdir)
                (workdir / "predicate.json").write_text(json.dumps(self._predicate))
                cmd = self.build_command(subject_name, subject_digest, workdir)

                try:
                    subprocess.run(
                        cmd,
                        capture_output=True,
                        text=True,
                        check=True,
                        timeout=COSIGN_TIMEOUT_SECONDS,
                    )
                except subprocess.CalledProcessError as e:
                    span.record_exception(e)
                    raise AttestationGenerationError(
                        f"cosign exited with code {e.returncode}",
                        stderr=e.stderr,
                    ) from e
                except subprocess.TimeoutExpired as e:
                    span.record_exception(e)
                    raise AttestationGenerationError(
                        f"cosign timed out after {COSIGN_TIMEOUT_SECONDS} seconds"
                    ) from e

                bundle_path = workdir / "bundle.json"
                if not bundle_path.exists():
                    raise AttestationGenerationError("cosign did not write a bundle")
                try:
                    bundle = json.loads(bundle_path.read_text())
                except json.JSONDecodeError as e:
                    raise AttestationGenerationError(f"Invalid bundle from cosign: {e}") from e

        logger.info("attestation_generated", subject=subject_name, digest=subject_digest)
        return AttestationBundle(
            attestation_id=None,
            certificate=extract_certificate(bundle),
            bundle=bundle,
        )


# =============================================================================
# Attachment
# =============================================================================


class AttestationAttacher(Protocol):
    """Stores an attestation bundle next to the artifact it describes."""

    async def attach(
        self,
        bundle: AttestationBundle,
        repository: str,
        image_digest: str,
        image_size: int,
    ) -> AttachResult:
        """Attach ``bundle`` to the manifest ``image_digest``."""
        ...


class RegistryReferrerAttacher:
    """Attaches bundles as OCI referrers through the registry client.

    The bundle becomes a single-layer artifact whose ``subject`` is the
    package manifest. The referrer manifest is uploaded untagged, addressed
    by its own digest.
    """

    def __init__(self, client: RegistryClient) -> None:
        self._client = client

    def _manifest_url(self, repository: str, digest: str) -> str:
        host = self._client.registry_url.split("://", 1)[-1].rstrip("/")
        return f"{host}/v2/{repository}/manifests/{digest}"

    async def attach(
        self,
        bundle: AttestationBundle,
        repository: str,
        image_digest: str,
        image_size: int,
    ) -> AttachResult:
        """Upload the bundle and its referrer manifest.

        Raises:
            AttestationAttachError: If any registry step fails.
        """
        content = json.dumps(bundle.bundle, sort_keys=True, separators=(",", ":")).encode("utf-8")
        layer = Layer(
            media_type=SIGSTORE_BUNDLE_TYPE,
            size=len(content),
            digest=calculate_digest(content),
        )
        subject = Layer(
            media_type=OCI_IMAGE_MANIFEST_TYPE,
            size=image_size,
            digest=image_digest,
        )
        manifest = build_referrer_manifest(
            layer,
            subject,
            annotations={
                BUNDLE_CONTENT_ANNOTATION: "dsse-envelope",
                BUNDLE_PREDICATE_ANNOTATION: SLSA_PROVENANCE_PREDICATE_TYPE,
            },
        )
        blobs = {EMPTY_CONFIG_DIGEST: EMPTY_CONFIG_CONTENT, layer.digest: content}

        try:
            digest = await self._client.upload_image_manifest(repository, manifest, blobs)
        except PublishError as e:
            raise AttestationAttachError(str(e)) from e

        return AttachResult(digest=digest, urls=[self._manifest_url(repository, digest)])


class AttestationBinder:
    """Sequences attestation generation and attachment.

    Errors from the generator and attacher propagate unchanged.
    """

    def __init__(self, generator: AttestationGenerator, attacher: AttestationAttacher) -> None:
        self._generator = generator
        self._attacher = attacher

    async def generate(self, subject_name: str, subject_digest: str) -> AttestationBundle:
        """Generate a compute-only provenance attestation."""
        with tracer.start_as_current_span("action_publisher.attestation.bind_generate"):
            bundle = await self._generator.generate(subject_name, subject_digest)
        logger.debug("attestation_bundle_ready", subject=subject_name)
        return bundle

    async def attach(
        self,
        bundle: AttestationBundle,
        repository: str,
        image_digest: str,
        image_size: int,
    ) -> AttachResult:
        """Attach a generated attestation to the published manifest."""
        with tracer.start_as_current_span("action_publisher.attestation.attach") as span:
            span.set_attribute("attestation.image_digest", image_digest)
            result = await self._attacher.attach(bundle, repository, image_digest, image_size)
            span.set_attribute("attestation.digest", result.digest)

        logger.info("attestation_attached", digest=result.digest, urls=result.urls)
        return result


__all__ = [
    "AttestationAttacher",
    "AttestationBinder",
    "AttestationGenerator",
    "CosignAttestationGenerator",
    "RegistryReferrerAttacher",
    "SLSA_PROVENANCE_PREDICATE_TYPE",
    "build_provenance_predicate",
    "check_cosign_available",
    "extract_certificate",
]
