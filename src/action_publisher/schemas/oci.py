"""OCI schemas for action package publishing.

This module defines the Pydantic v2 schemas describing the archives,
descriptors and manifests that make up an action package, plus the results
returned by registry uploads and attestation attachment.

OCI JSON field names are camelCase; the models expose snake_case attributes
and serialize with ``by_alias=True``.

Key Components:
    FileMetadata: One locally produced archive (path, size, digest)
    Layer: OCI content descriptor
    LayerKind: Tagged variant resolved from a descriptor media type
    Manifest: OCI image manifest
    UploadResult / AttachResult: Registry responses

See Also:
    - https://github.com/opencontainers/image-spec/blob/main/manifest.md
    - https://github.com/opencontainers/distribution-spec/blob/main/spec.md
"""

from __future__ import annotations

from enum import Enum
from pathlib import Path
from typing import Any

from pydantic import BaseModel, ConfigDict, Field

# =============================================================================
# Constants
# =============================================================================

OCI_IMAGE_MANIFEST_TYPE = "application/vnd.oci.image.manifest.v1+json"
"""Media type (and artifact type) of an action package manifest."""

OCI_EMPTY_CONFIG_TYPE = "application/vnd.oci.empty.v1+json"
"""Media type for the OCI empty config blob."""

ACTION_PACKAGE_CONFIG_TYPE = "application/vnd.github.actions.package.config.v1+json"
"""Media type for the action package config layer."""

ACTION_PACKAGE_TAR_TYPE = "application/vnd.github.actions.package.layer.v1.tar+gzip"
"""Media type for the tar.gz archive layer."""

ACTION_PACKAGE_ZIP_TYPE = "application/vnd.github.actions.package.layer.v1.zip"
"""Media type for the zip archive layer."""

SIGSTORE_BUNDLE_TYPE = "application/vnd.dev.sigstore.bundle.v0.3+json"
"""Media type for a Sigstore bundle attached as a referrer."""

EMPTY_CONFIG_CONTENT = b"{}"
"""Literal content of the empty config blob."""

EMPTY_CONFIG_DIGEST = "sha256:44136fa355b3678a1146ad16f7e8649e94fb4fc21fe77e8310c060f61caaff8a"
"""sha256 of ``{}``; constant for every build."""

DIGEST_PATTERN = r"^sha256:[a-f0-9]{64}$"


# =============================================================================
# Archives
# =============================================================================


class FileMetadata(BaseModel):
    """Metadata for one locally produced archive.

    Examples:
        >>> FileMetadata(
        ...     path=Path("/tmp/archives/octo-org-hello_1.0.0.zip"),
        ...     size=1024,
        ...     sha256="sha256:" + "a" * 64,
        ... ).path.name
        'octo-org-hello_1.0.0.zip'
    """

    model_config = ConfigDict(frozen=True, extra="forbid")

    path: Path = Field(..., description="Location of the archive on disk")
    size: int = Field(..., ge=0, description="Archive size in bytes")
    sha256: str = Field(
        ...,
        pattern=DIGEST_PATTERN,
        description="Archive content digest in OCI form (sha256:<hex>)",
    )


class Archives(BaseModel):
    """The pair of archives produced for one release."""

    model_config = ConfigDict(frozen=True, extra="forbid")

    zip_file: FileMetadata
    tar_file: FileMetadata


# =============================================================================
# Descriptors and manifests
# =============================================================================


class LayerKind(str, Enum):
    """Kinds of blob the publisher knows how to upload."""

    EMPTY_CONFIG = "empty-config"
    PACKAGE_CONFIG = "package-config"
    TAR = "tar"
    ZIP = "zip"
    SIGSTORE_BUNDLE = "sigstore-bundle"

    @classmethod
    def from_media_type(cls, media_type: str) -> LayerKind:
        """Resolve a media type to its layer kind.

        Raises:
            UnknownMediaTypeError: If the media type is not recognised.
        """
        from action_publisher.oci.errors import UnknownMediaTypeError

        try:
            return _MEDIA_TYPE_KINDS[media_type]
        except KeyError:
            raise UnknownMediaTypeError(media_type) from None


_MEDIA_TYPE_KINDS: dict[str, LayerKind] = {
    OCI_EMPTY_CONFIG_TYPE: LayerKind.EMPTY_CONFIG,
    ACTION_PACKAGE_CONFIG_TYPE: LayerKind.PACKAGE_CONFIG,
    ACTION_PACKAGE_TAR_TYPE: LayerKind.TAR,
    ACTION_PACKAGE_ZIP_TYPE: LayerKind.ZIP,
    SIGSTORE_BUNDLE_TYPE: LayerKind.SIGSTORE_BUNDLE,
}


class Layer(BaseModel):
    """OCI content descriptor for one blob.

    Examples:
        >>> layer = Layer(media_type=OCI_EMPTY_CONFIG_TYPE, size=2, digest=EMPTY_CONFIG_DIGEST)
        >>> layer.kind
        <LayerKind.EMPTY_CONFIG: 'empty-config'>
    """

    model_config = ConfigDict(frozen=True, extra="forbid", populate_by_name=True)

    media_type: str = Field(..., alias="mediaType", min_length=1)
    size: int = Field(..., ge=0, description="Blob size in bytes")
    digest: str = Field(..., pattern=DIGEST_PATTERN, description="Blob digest")
    annotations: dict[str, str] | None = Field(default=None)

    @property
    def kind(self) -> LayerKind:
        """Tagged variant for this descriptor's media type."""
        return LayerKind.from_media_type(self.media_type)


class Manifest(BaseModel):
    """OCI image manifest.

    The order of ``layers`` is significant: it is part of the serialized
    bytes and therefore of the manifest digest.
    """

    model_config = ConfigDict(frozen=True, extra="forbid", populate_by_name=True)

    schema_version: int = Field(default=2, alias="schemaVersion")
    media_type: str = Field(default=OCI_IMAGE_MANIFEST_TYPE, alias="mediaType")
    artifact_type: str | None = Field(default=None, alias="artifactType")
    config: Layer
    layers: list[Layer] = Field(default_factory=list)
    subject: Layer | None = Field(default=None)
    annotations: dict[str, str] = Field(default_factory=dict)

    def to_oci_dict(self) -> dict[str, Any]:
        """Return the manifest as OCI JSON-compatible data."""
        return self.model_dump(mode="json", by_alias=True, exclude_none=True)


# =============================================================================
# Results
# =============================================================================


class UploadResult(BaseModel):
    """Result of publishing an action package."""

    model_config = ConfigDict(frozen=True, extra="forbid")

    package_url: str = Field(..., description="Human-facing URL of the tagged package")
    published_digest: str = Field(..., description="Digest confirmed by the registry")


class AttachResult(BaseModel):
    """Result of attaching an attestation to a published package."""

    model_config = ConfigDict(frozen=True, extra="forbid")

    digest: str = Field(..., description="Digest of the attestation manifest")
    urls: list[str] = Field(default_factory=list)


class AttestationBundle(BaseModel):
    """A signed provenance attestation produced in compute-only mode.

    Attributes:
        attestation_id: Identifier assigned by an attestation store. Always
            None here, since generation never writes to a store.
        certificate: PEM signing certificate.
        bundle: Sigstore bundle document.
    """

    model_config = ConfigDict(frozen=True, extra="forbid")

    attestation_id: str | None = None
    certificate: str = ""
    bundle: dict[str, Any]


class PublishResult(BaseModel):
    """Outcome of a successful publish run."""

    model_config = ConfigDict(frozen=True, extra="forbid")

    package_url: str
    manifest_json: str
    manifest_digest: str
    attestation: AttachResult | None = None


__all__ = [
    "ACTION_PACKAGE_CONFIG_TYPE",
    "ACTION_PACKAGE_TAR_TYPE",
    "ACTION_PACKAGE_ZIP_TYPE",
    "EMPTY_CONFIG_CONTENT",
    "EMPTY_CONFIG_DIGEST",
    "OCI_EMPTY_CONFIG_TYPE",
    "OCI_IMAGE_MANIFEST_TYPE",
    "SIGSTORE_BUNDLE_TYPE",
    "Archives",
    "AttachResult",
    "AttestationBundle",
    "FileMetadata",
    "Layer",
    "LayerKind",
    "Manifest",
    "PublishResult",
    "UploadResult",
]
