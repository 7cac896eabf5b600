"""OCI packaging and registry publishing for action packages.

This package provides:
    - Manifest construction and canonical digests (manifest)
    - The blob/manifest upload protocol (client, transport)
    - Provenance attestation generation and attachment (attestation)
    - The exception hierarchy (errors)

Example:
    >>> from action_publisher.oci import RegistryClient, build_action_package_manifest
    >>> manifest = build_action_package_manifest(tar, zip_, "octo-org/hello", "1.0.0", now)
    >>> async with RegistryClient("https://ghcr.io/", token) as client:
    ...     result = await client.publish("octo-org/hello", "1.0.0", archives, manifest)
"""

from __future__ import annotations

from action_publisher.oci.errors import (
    AttestationError,
    DigestMismatchError,
    ProtocolError,
    PublishError,
)
from action_publisher.oci.manifest import (
    build_action_package_manifest,
    build_empty_config_layer,
    build_layer,
    calculate_digest,
    manifest_digest,
    serialize_manifest,
)
from action_publisher.oci.transport import HttpxTransport, RegistryResponse, RegistryTransport
from action_publisher.oci.client import RegistryClient
from action_publisher.oci.attestation import (
    AttestationBinder,
    CosignAttestationGenerator,
    RegistryReferrerAttacher,
)

__all__ = [
    "AttestationBinder",
    "AttestationError",
    "CosignAttestationGenerator",
    "DigestMismatchError",
    "HttpxTransport",
    "ProtocolError",
    "PublishError",
    "RegistryClient",
    "RegistryReferrerAttacher",
    "RegistryResponse",
    "RegistryTransport",
    "build_action_package_manifest",
    "build_empty_config_layer",
    "build_layer",
    "calculate_digest",
    "manifest_digest",
    "serialize_manifest",
]
