"""OCI manifest builder for action packages.

This module builds the layer descriptors and the OCI image manifest for an
action package, and computes the manifest's content digest from a canonical
serialization. The bytes returned by ``serialize_manifest`` are the exact
bytes that are hashed, uploaded to the registry and emitted as output.

Key Functions:
    build_layer: Descriptor for an archive on disk
    build_empty_config_layer: Descriptor for the ``{}`` config blob
    build_action_package_manifest: Manifest with config, tar and zip layers
    serialize_manifest: Canonical JSON bytes
    manifest_digest: sha256 digest of the canonical bytes

Example:
    >>> manifest = build_action_package_manifest(
    ...     tar_file, zip_file, "octo-org/hello-action", "1.0.0", created
    ... )
    >>> manifest_digest(manifest) == manifest_digest(manifest)
    True
"""

from __future__ import annotations

import hashlib
import json
from datetime import datetime, timezone

import structlog

from action_publisher.schemas.oci import (
    ACTION_PACKAGE_CONFIG_TYPE,
    ACTION_PACKAGE_TAR_TYPE,
    ACTION_PACKAGE_ZIP_TYPE,
    EMPTY_CONFIG_CONTENT,
    EMPTY_CONFIG_DIGEST,
    OCI_EMPTY_CONFIG_TYPE,
    OCI_IMAGE_MANIFEST_TYPE,
    FileMetadata,
    Layer,
    Manifest,
)

logger = structlog.get_logger(__name__)

TITLE_ANNOTATION = "org.opencontainers.image.title"
CREATED_ANNOTATION = "org.opencontainers.image.created"
TAR_DIGEST_ANNOTATION = "action.tar.gz.digest"
ZIP_DIGEST_ANNOTATION = "action.zip.digest"
PACKAGE_TYPE_ANNOTATION = "com.github.package.type"
PACKAGE_TYPE = "actions_oci_pkg"


def calculate_digest(content: bytes) -> str:
    """Calculate SHA256 digest for content.

    Args:
        content: Raw bytes to calculate digest for.

    Returns:
        Digest string in OCI format: "sha256:<hex>"

    Example:
        >>> calculate_digest(b"{}")
        'sha256:44136fa355b3678a1146ad16f7e8649e94fb4fc21fe77e8310c060f61caaff8a'
    """
    return f"sha256:{hashlib.sha256(content).hexdigest()}"


def format_created(created: datetime) -> str:
    """Format a timestamp as RFC3339 UTC with millisecond precision.

    Naive datetimes are taken to be UTC.

    Example:
        >>> format_created(datetime(2024, 5, 1, 12, 30, tzinfo=timezone.utc))
        '2024-05-01T12:30:00.000Z'
    """
    if created.tzinfo is None:
        created = created.replace(tzinfo=timezone.utc)
    created = created.astimezone(timezone.utc)
    return created.strftime("%Y-%m-%dT%H:%M:%S.") + f"{created.microsecond // 1000:03d}Z"


def build_layer(media_type: str, file: FileMetadata) -> Layer:
    """Build a descriptor for an archive on disk.

    Args:
        media_type: Media type of the archive layer.
        file: Archive metadata; size and digest are taken from it.

    Returns:
        Layer titled with the archive's file name.
    """
    return Layer(
        media_type=media_type,
        size=file.size,
        digest=file.sha256,
        annotations={TITLE_ANNOTATION: file.path.name},
    )


def build_empty_config_layer() -> Layer:
    """Descriptor for the OCI empty config blob ``{}``."""
    return Layer(
        media_type=OCI_EMPTY_CONFIG_TYPE,
        size=len(EMPTY_CONFIG_CONTENT),
        digest=EMPTY_CONFIG_DIGEST,
    )


def build_package_config_layer() -> Layer:
    """Descriptor for the action package config layer.

    The config layer carries the same ``{}`` content as the empty config
    blob, under the action package config media type.
    """
    return Layer(
        media_type=ACTION_PACKAGE_CONFIG_TYPE,
        size=len(EMPTY_CONFIG_CONTENT),
        digest=EMPTY_CONFIG_DIGEST,
        annotations={TITLE_ANNOTATION: "config.json"},
    )


def build_action_package_manifest(
    tar_file: FileMetadata,
    zip_file: FileMetadata,
    repository: str,
    version: str,
    created: datetime,
) -> Manifest:
    """Build the OCI manifest for an action package.

    Layers are always ordered config, tar, zip so that equal inputs produce
    equal manifests.

    Args:
        tar_file: The tar.gz archive.
        zip_file: The zip archive.
        repository: Repository the package belongs to (owner/name).
        version: Semantic version being published.
        created: Creation timestamp recorded in the annotations.

    Returns:
        The action package manifest.
    """
    manifest = Manifest(
        schema_version=2,
        media_type=OCI_IMAGE_MANIFEST_TYPE,
        artifact_type=OCI_IMAGE_MANIFEST_TYPE,
        config=build_empty_config_layer(),
        layers=[
            build_package_config_layer(),
            build_layer(ACTION_PACKAGE_TAR_TYPE, tar_file),
            build_layer(ACTION_PACKAGE_ZIP_TYPE, zip_file),
        ],
        annotations={
            CREATED_ANNOTATION: format_created(created),
            TAR_DIGEST_ANNOTATION: tar_file.sha256,
            ZIP_DIGEST_ANNOTATION: zip_file.sha256,
            PACKAGE_TYPE_ANNOTATION: PACKAGE_TYPE,
        },
    )

    logger.debug(
        "manifest_built",
        repository=repository,
        version=version,
        layer_count=len(manifest.layers),
    )
    return manifest


def build_referrer_manifest(
    layer: Layer,
    subject: Layer,
    *,
    annotations: dict[str, str] | None = None,
    created: datetime | None = None,
) -> Manifest:
    """Build a manifest for a companion artifact that refers to ``subject``.

    Used to store attestation bundles next to the package they describe.
    The artifact type is the media type of the single content layer.

    Args:
        layer: Descriptor of the companion content.
        subject: Descriptor of the manifest being referred to.
        annotations: Extra manifest annotations.
        created: Creation timestamp. Defaults to now.
    """
    if created is None:
        created = datetime.now(timezone.utc)

    manifest_annotations = {CREATED_ANNOTATION: format_created(created)}
    if annotations:
        manifest_annotations.update(annotations)

    return Manifest(
        schema_version=2,
        media_type=OCI_IMAGE_MANIFEST_TYPE,
        artifact_type=layer.media_type,
        config=build_empty_config_layer(),
        layers=[layer],
        subject=subject,
        annotations=manifest_annotations,
    )


def serialize_manifest(manifest: Manifest) -> bytes:
    """Serialize a manifest to canonical JSON bytes.

    Keys are sorted and separators are compact, so structurally equal
    manifests always serialize to identical bytes.
    """
    return json.dumps(
        manifest.to_oci_dict(),
        sort_keys=True,
        separators=(",", ":"),
        ensure_ascii=False,
    ).encode("utf-8")


def manifest_digest(manifest: Manifest) -> str:
    """Return the content digest of a manifest's canonical serialization."""
    return calculate_digest(serialize_manifest(manifest))


__all__ = [
    "build_action_package_manifest",
    "build_empty_config_layer",
    "build_layer",
    "build_package_config_layer",
    "build_referrer_manifest",
    "calculate_digest",
    "format_created",
    "manifest_digest",
    "serialize_manifest",
]
