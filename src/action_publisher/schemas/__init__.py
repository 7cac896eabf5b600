"""Pydantic schemas for action-publisher."""

from __future__ import annotations

from action_publisher.schemas.config import PublishOptions, RepositoryVisibility
from action_publisher.schemas.oci import (
    ACTION_PACKAGE_CONFIG_TYPE,
    ACTION_PACKAGE_TAR_TYPE,
    ACTION_PACKAGE_ZIP_TYPE,
    EMPTY_CONFIG_CONTENT,
    EMPTY_CONFIG_DIGEST,
    OCI_EMPTY_CONFIG_TYPE,
    OCI_IMAGE_MANIFEST_TYPE,
    SIGSTORE_BUNDLE_TYPE,
    Archives,
    AttachResult,
    AttestationBundle,
    FileMetadata,
    Layer,
    LayerKind,
    Manifest,
    PublishResult,
    UploadResult,
)

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
    "PublishOptions",
    "PublishResult",
    "RepositoryVisibility",
    "UploadResult",
]
