"""Exception hierarchy for action-publisher.

This module defines all custom exceptions raised while packaging and
publishing an action. All exceptions inherit from PublishError, so the
orchestrator can translate any failure into a single message.

Exception Hierarchy:
    PublishError (base)
    ├── ConfigurationError          # Environment/inputs could not be resolved
    ├── ValidationError             # Bad ref, tag or layer media type
    │   ├── InvalidRefError
    │   ├── InvalidVersionError
    │   └── UnknownMediaTypeError
    ├── CollaboratorError           # Checkout, staging or archiving failed
    │   ├── CheckoutMismatchError
    │   ├── ActionFilesNotFoundError
    │   └── ArchiveError
    ├── ProtocolError               # Registry answered outside the protocol
    │   ├── BlobCheckError
    │   ├── UploadInitiationError
    │   ├── MissingLocationHeaderError
    │   ├── BlobUploadError
    │   └── ManifestUploadError
    ├── DigestMismatchError         # Registry digest differs from local digest
    └── AttestationError            # Generation or attachment failed
        ├── CosignNotFoundError
        ├── AttestationGenerationError
        └── AttestationAttachError

Exit Codes:
    0 - Success
    1 - General error (PublishError, CollaboratorError, AttestationError)
    5 - Invalid configuration or input (ConfigurationError, ValidationError)
    6 - Digest verification failed (DigestMismatchError)
    8 - Registry protocol error (ProtocolError)

Example:
    >>> from action_publisher.oci.errors import InvalidRefError
    >>> raise InvalidRefError("refs/heads/main")
    Traceback (most recent call last):
        ...
    InvalidRefError: The ref refs/heads/main is not a valid tag reference.
"""

from __future__ import annotations

import json
from typing import Any


class PublishError(Exception):
    """Base exception for all action-publisher errors.

    Attributes:
        exit_code: CLI exit code for this error type (default: 1).
    """

    exit_code: int = 1

    pass


# =============================================================================
# Configuration and validation
# =============================================================================


class ConfigurationError(PublishError):
    """Raised when the publish options cannot be resolved from the environment.

    Attributes:
        reason: Description of what is missing or malformed.
        exit_code: CLI exit code (5).
    """

    exit_code: int = 5

    def __init__(self, reason: str) -> None:
        self.reason = reason
        super().__init__(reason)


class ValidationError(PublishError):
    """Raised when an input fails validation before any network call."""

    exit_code: int = 5


class InvalidRefError(ValidationError):
    """Raised when the workflow ref is not a tag reference.

    Attributes:
        ref: The offending git ref (e.g. ``refs/heads/main``).
    """

    def __init__(self, ref: str) -> None:
        self.ref = ref
        super().__init__(f"The ref {ref} is not a valid tag reference.")


class InvalidVersionError(ValidationError):
    """Raised when a release tag is not a semantic version.

    Attributes:
        tag: The tag exactly as it appeared in the ref.
    """

    def __init__(self, tag: str) -> None:
        self.tag = tag
        super().__init__(
            f"{tag} is not a valid semantic version tag, "
            "and so cannot be uploaded to the action package."
        )


class UnknownMediaTypeError(ValidationError):
    """Raised when a layer carries a media type the publisher cannot upload.

    Attributes:
        media_type: The unrecognised media type.
    """

    def __init__(self, media_type: str) -> None:
        self.media_type = media_type
        super().__init__(f"Unknown media type {media_type}")


# =============================================================================
# Collaborators (checkout, staging, archiving)
# =============================================================================


class CollaboratorError(PublishError):
    """Base class for failures in the local filesystem and git collaborators.

    Messages are surfaced to the user unmodified.
    """

    pass


class CheckoutMismatchError(CollaboratorError):
    """Raised when the checked out commit does not match the release tag."""

    def __init__(self, message: str, *, expected: str | None = None, actual: str | None = None):
        self.expected = expected
        self.actual = actual
        super().__init__(message)


class ActionFilesNotFoundError(CollaboratorError):
    """Raised when the staged tree has no action.yml or action.yaml."""

    def __init__(self, path: str) -> None:
        self.path = path
        super().__init__(
            "action.y(a)ml not found. Action packages can be created only for "
            "action repositories."
        )


class ArchiveError(CollaboratorError):
    """Raised when the zip or tar.gz archive cannot be produced."""

    pass


# =============================================================================
# Registry protocol
# =============================================================================


def format_registry_body(body: bytes | str | None) -> str:
    """Render a registry response body for an error message.

    Registries answer with ``{"errors": [{"code": ..., "message": ...}]}``
    when they follow the distribution spec. Those are rendered as
    ``Errors: CODE - message``; anything else is echoed verbatim.

    Args:
        body: Raw response body.

    Returns:
        Human-readable description of the body.

    Example:
        >>> format_registry_body(b'{"errors": [{"code": "DENIED", "message": "no"}]}')
        'Errors: DENIED - no'
        >>> format_registry_body("503 Service Unavailable")
        'Response Body: 503 Service Unavailable.'
    """
    if body is None:
        return "Response Body: ."
    text = body.decode("utf-8", errors="replace") if isinstance(body, bytes) else body

    errors = parse_registry_errors(text)
    if errors:
        rendered = ", ".join(f"{code} - {message}" for code, message in errors)
        return f"Errors: {rendered}"
    return f"Response Body: {text}."


def parse_registry_errors(text: str) -> list[tuple[str, str]]:
    """Extract ``(code, message)`` pairs from a distribution-spec error body.

    Returns an empty list when the body is not a structured error document.
    """
    try:
        payload: Any = json.loads(text)
    except ValueError:
        return []
    if not isinstance(payload, dict):
        return []
    entries = payload.get("errors")
    if not isinstance(entries, list):
        return []
    return [
        (str(entry.get("code", "")), str(entry.get("message", "")))
        for entry in entries
        if isinstance(entry, dict)
    ]


class ProtocolError(PublishError):
    """Raised when the registry responds outside the upload protocol.

    Attributes:
        status: HTTP status code of the offending response (if any).
        body: Raw response body (if any).
        exit_code: CLI exit code (8).
    """

    exit_code: int = 8

    def __init__(self, message: str, *, status: int | None = None, body: bytes | None = None):
        self.status = status
        self.body = body
        super().__init__(message)


def _status_text(status: int, reason: str) -> str:
    return f"{status} {reason}".rstrip()


class BlobCheckError(ProtocolError):
    """Raised when the blob existence check returns an unexpected status."""

    def __init__(self, url: str, status: int, reason: str, body: bytes | None) -> None:
        self.url = url
        super().__init__(
            f"Unexpected {_status_text(status, reason)} response from check blob {url}. "
            f"{format_registry_body(body)}",
            status=status,
            body=body,
        )


class UploadInitiationError(ProtocolError):
    """Raised when the registry refuses to start a blob upload session."""

    def __init__(self, status: int, reason: str, body: bytes | None) -> None:
        super().__init__(
            f"Unexpected {_status_text(status, reason)} response from initiate layer upload. "
            f"{format_registry_body(body)}",
            status=status,
            body=body,
        )


class MissingLocationHeaderError(ProtocolError):
    """Raised when an upload session is opened without a location header."""

    def __init__(self, url: str, digest: str) -> None:
        self.url = url
        self.digest = digest
        super().__init__(
            f"No location header in response from upload post {url} for layer {digest}",
            status=202,
        )


class BlobUploadError(ProtocolError):
    """Raised when the blob PUT does not return 201 Created."""

    def __init__(self, digest: str, status: int, reason: str, body: bytes | None) -> None:
        self.digest = digest
        super().__init__(
            f"Unexpected {_status_text(status, reason)} response from layer {digest} upload. "
            f"{format_registry_body(body)}",
            status=status,
            body=body,
        )


class ManifestUploadError(ProtocolError):
    """Raised when the manifest PUT does not return 201 Created.

    Attributes:
        errors: Structured ``(code, message)`` pairs found in the body.
    """

    def __init__(self, status: int, reason: str, body: bytes | None) -> None:
        text = body.decode("utf-8", errors="replace") if body else ""
        self.errors = parse_registry_errors(text)
        super().__init__(
            f"Unexpected {_status_text(status, reason)} response from manifest upload. "
            f"{format_registry_body(body)}",
            status=status,
            body=body,
        )


class DigestMismatchError(PublishError):
    """Raised when the registry confirms a digest other than the local one.

    This indicates corruption or tampering between serialization and storage.

    Attributes:
        expected: The digest computed locally before upload.
        actual: The digest reported by the registry.
        exit_code: CLI exit code (6).

    Example:
        >>> raise DigestMismatchError("sha256:abc", "sha256:def")
        Traceback (most recent call last):
            ...
        DigestMismatchError: Digest mismatch. Expected sha256:abc, got sha256:def.
    """

    exit_code: int = 6

    def __init__(
        self,
        expected: str,
        actual: str | None,
        *,
        context: str = "Digest mismatch",
    ) -> None:
        self.expected = expected
        self.actual = actual
        super().__init__(f"{context}. Expected {expected}, got {actual}.")


# =============================================================================
# Attestation
# =============================================================================


class AttestationError(PublishError):
    """Base exception for attestation generation and attachment."""

    pass


class CosignNotFoundError(AttestationError):
    """Raised when the cosign CLI is not installed."""

    def __init__(self) -> None:
        super().__init__(
            "cosign CLI not found. Install with: brew install cosign (macOS) "
            "or see https://github.com/sigstore/cosign#installation"
        )


class AttestationGenerationError(AttestationError):
    """Raised when a provenance attestation cannot be produced."""

    def __init__(self, reason: str, stderr: str | None = None) -> None:
        self.reason = reason
        self.stderr = stderr
        msg = f"Attestation generation failed: {reason}"
        if stderr:
            msg += f"\n{stderr}"
        super().__init__(msg)


class AttestationAttachError(AttestationError):
    """Raised when the attestation bundle cannot be stored in the registry."""

    def __init__(self, reason: str) -> None:
        self.reason = reason
        super().__init__(f"Attestation attachment failed: {reason}")


__all__ = [
    "ActionFilesNotFoundError",
    "ArchiveError",
    "AttestationAttachError",
    "AttestationError",
    "AttestationGenerationError",
    "BlobCheckError",
    "BlobUploadError",
    "CheckoutMismatchError",
    "CollaboratorError",
    "ConfigurationError",
    "CosignNotFoundError",
    "DigestMismatchError",
    "InvalidRefError",
    "InvalidVersionError",
    "ManifestUploadError",
    "MissingLocationHeaderError",
    "ProtocolError",
    "PublishError",
    "UnknownMediaTypeError",
    "UploadInitiationError",
    "ValidationError",
    "format_registry_body",
    "parse_registry_errors",
]
