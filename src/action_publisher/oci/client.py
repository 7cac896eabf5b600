"""Registry client for publishing action packages.

This module implements the OCI distribution upload protocol used to publish
an action package:

1. ``HEAD /v2/<repo>/blobs/<digest>``: skip blobs the registry already has
2. ``POST /v2/<repo>/blobs/uploads/``: open an upload session
3. ``PUT <location>?digest=<digest>``: upload the blob content
4. ``PUT /v2/<repo>/manifests/<reference>``: upload the manifest, only after
   every blob upload has succeeded
5. Compare the ``docker-content-digest`` header with the local digest

Blob uploads run concurrently. The first failure aborts the publish before
the manifest is sent, so the registry never holds a manifest that refers to a
missing blob. Nothing is retried; reruns are cheap because existing blobs are
skipped.

Example:
    >>> async with RegistryClient("https://ghcr.io/", token) as client:
    ...     result = await client.publish("octo-org/hello", "1.0.0", archives, manifest)
    >>> result.package_url
    'https://ghcr.io/octo-org/hello:1.0.0'
"""

from __future__ import annotations

import asyncio
import base64
from collections.abc import Mapping
from pathlib import Path
from types import TracebackType
from typing import Union

import httpx
import structlog
from opentelemetry import trace

from action_publisher.oci.errors import (
    BlobCheckError,
    BlobUploadError,
    DigestMismatchError,
    ManifestUploadError,
    MissingLocationHeaderError,
    PublishError,
    UnknownMediaTypeError,
    UploadInitiationError,
)
from action_publisher.oci.manifest import manifest_digest, serialize_manifest
from action_publisher.oci.transport import HttpxTransport, RegistryTransport
from action_publisher.schemas.oci import (
    EMPTY_CONFIG_CONTENT,
    OCI_IMAGE_MANIFEST_TYPE,
    Archives,
    Layer,
    LayerKind,
    Manifest,
    UploadResult,
)

logger = structlog.get_logger(__name__)
tracer = trace.get_tracer(__name__)

BlobSource = Union[bytes, Path]
"""Blob content, either in memory or as a file to read at upload time."""

CONTENT_DIGEST_HEADER = "docker-content-digest"


def encode_token(token: str) -> str:
    """Base64-encode a token for the registry's bearer authorization header."""
    return base64.b64encode(token.encode("utf-8")).decode("ascii")


class RegistryClient:
    """Client for the blob and manifest upload protocol of an OCI registry.

    Attributes:
        registry_url: Base URL of the registry (always ends with ``/``).

    Args:
        registry_url: Base URL of the registry, e.g. ``https://ghcr.io/``.
        token: Registry token; sent base64-encoded as a bearer credential.
        transport: Optional transport. Defaults to an httpx transport owned by
            this client and closed with it.
    """

    def __init__(
        self,
        registry_url: str,
        token: str,
        *,
        transport: RegistryTransport | None = None,
    ) -> None:
        if not registry_url.endswith("/"):
            registry_url = f"{registry_url}/"
        self._registry = httpx.URL(registry_url)
        self._authorization = f"Bearer {encode_token(token)}"
        self._transport = transport
        self._owned_transport: HttpxTransport | None = None

    @property
    def registry_url(self) -> str:
        """Return the registry base URL."""
        return str(self._registry)

    @property
    def transport(self) -> RegistryTransport:
        """Get or create the transport."""
        if self._transport is None:
            self._owned_transport = HttpxTransport()
            self._transport = self._owned_transport
        return self._transport

    async def aclose(self) -> None:
        """Close the transport if this client created it."""
        if self._owned_transport is not None:
            await self._owned_transport.aclose()
            self._owned_transport = None
            self._transport = None

    async def __aenter__(self) -> RegistryClient:
        return self

    async def __aexit__(
        self,
        exc_type: type[BaseException] | None,
        exc: BaseException | None,
        tb: TracebackType | None,
    ) -> None:
        await self.aclose()

    # -------------------------------------------------------------------------
    # Public operations
    # -------------------------------------------------------------------------

    def package_url(self, repository: str, version: str) -> str:
        """URL under which a published package version is reachable."""
        return str(self._registry.join(f"{repository}:{version}"))

    async def publish(
        self,
        repository: str,
        version: str,
        archives: Archives,
        manifest: Manifest,
    ) -> UploadResult:
        """Publish an action package and verify the registry's digest.

        Args:
            repository: Repository to publish into (owner/name).
            version: Version tag for the manifest.
            archives: The zip and tar.gz archives referenced by the manifest.
            manifest: The action package manifest.

        Returns:
            UploadResult with the package URL and the verified digest.

        Raises:
            UnknownMediaTypeError: If a layer media type cannot be uploaded.
            ProtocolError: If the registry answers outside the protocol.
            DigestMismatchError: If the registry confirms a different digest.
        """
        blobs = self._package_blobs(manifest, archives)

        logger.info(
            "package_publish_started",
            repository=repository,
            version=version,
            zip_path=str(archives.zip_file.path),
            tar_path=str(archives.tar_file.path),
        )
        digest = await self.upload_image_manifest(repository, manifest, blobs, tag=version)
        return UploadResult(
            package_url=self.package_url(repository, version),
            published_digest=digest,
        )

    async def upload_image_manifest(
        self,
        repository: str,
        manifest: Manifest,
        blobs: Mapping[str, BlobSource],
        *,
        tag: str | None = None,
    ) -> str:
        """Upload every blob a manifest references, then the manifest itself.

        Args:
            repository: Repository to upload into.
            manifest: Manifest to upload.
            blobs: Content for each referenced digest.
            tag: Reference to store the manifest under. Defaults to the
                manifest's own digest (an untagged upload).

        Returns:
            The manifest digest, verified against the registry.

        Raises:
            UnknownMediaTypeError: If a descriptor media type is unknown.
            PublishError: If content for a referenced digest is missing.
            ProtocolError: If the registry answers outside the protocol.
            DigestMismatchError: If the registry confirms a different digest.
        """
        descriptors = self._descriptors_to_upload(manifest)
        for descriptor in descriptors:
            if descriptor.digest not in blobs:
                raise PublishError(f"No content provided for blob {descriptor.digest}")

        expected_digest = manifest_digest(manifest)
        reference = tag or expected_digest

        with tracer.start_as_current_span("action_publisher.registry.upload_manifest") as span:
            span.set_attribute("registry.repository", repository)
            span.set_attribute("registry.reference", reference)
            span.set_attribute("registry.blob_count", len(descriptors))

            await self._upload_blobs(repository, descriptors, blobs)
            return await self._upload_manifest(repository, manifest, reference, expected_digest)

    # -------------------------------------------------------------------------
    # Blob resolution
    # -------------------------------------------------------------------------

    @staticmethod
    def _descriptors_to_upload(manifest: Manifest) -> list[Layer]:
        """Every distinct blob descriptor in the manifest, layers first.

        The config is included only when no layer already covers its digest.
        Each descriptor's kind is resolved here, before any network call.
        """
        descriptors: list[Layer] = []
        seen: set[str] = set()
        for descriptor in [*manifest.layers, manifest.config]:
            _ = descriptor.kind
            if descriptor.digest in seen:
                continue
            seen.add(descriptor.digest)
            descriptors.append(descriptor)
        return descriptors

    @staticmethod
    def _package_blobs(manifest: Manifest, archives: Archives) -> dict[str, BlobSource]:
        """Map each package descriptor digest to its content."""
        blobs: dict[str, BlobSource] = {}
        for descriptor in [manifest.config, *manifest.layers]:
            kind = descriptor.kind
            if kind in (LayerKind.EMPTY_CONFIG, LayerKind.PACKAGE_CONFIG):
                blobs[descriptor.digest] = EMPTY_CONFIG_CONTENT
            elif kind is LayerKind.TAR:
                blobs[descriptor.digest] = archives.tar_file.path
            elif kind is LayerKind.ZIP:
                blobs[descriptor.digest] = archives.zip_file.path
            else:
                raise UnknownMediaTypeError(descriptor.media_type)
        return blobs

    # -------------------------------------------------------------------------
    # Protocol steps
    # -------------------------------------------------------------------------

    def _headers(self, **extra: str) -> dict[str, str]:
        headers = {"Authorization": self._authorization}
        headers.update(extra)
        return headers

    async def _upload_blobs(
        self,
        repository: str,
        descriptors: list[Layer],
        blobs: Mapping[str, BlobSource],
    ) -> None:
        """Upload all blobs concurrently; the first failure wins.

        Once a task fails, the others send no further requests. Requests
        already in flight are allowed to finish so the transport is not
        closed under them; their results are discarded.
        """
        abort = asyncio.Event()
        tasks = [
            asyncio.create_task(
                self._upload_blob(repository, descriptor, blobs[descriptor.digest], abort)
            )
            for descriptor in descriptors
        ]
        done, pending = await asyncio.wait(tasks, return_when=asyncio.FIRST_EXCEPTION)
        if pending:
            abort.set()
            await asyncio.gather(*pending, return_exceptions=True)

        for task in tasks:
            if task in done:
                error = task.exception()
                if error is not None:
                    raise error

    async def _upload_blob(
        self,
        repository: str,
        descriptor: Layer,
        source: BlobSource,
        abort: asyncio.Event,
    ) -> None:
        digest = descriptor.digest
        with tracer.start_as_current_span("action_publisher.registry.upload_blob") as span:
            span.set_attribute("registry.blob.digest", digest)
            span.set_attribute("registry.blob.size", descriptor.size)

            exists = await self._blob_exists(repository, digest)
            if exists:
                logger.info("blob_exists", digest=digest)
                span.set_attribute("registry.blob.skipped", True)
                return
            if abort.is_set():
                logger.info("blob_upload_abandoned", digest=digest)
                return

            logger.info("blob_upload_started", digest=digest, size=descriptor.size)
            location = await self._initiate_upload(repository, digest)
            if isinstance(source, Path):
                content = await asyncio.to_thread(source.read_bytes)
            else:
                content = source
            if abort.is_set():
                logger.info("blob_upload_abandoned", digest=digest)
                return

            await self._put_blob(location, descriptor, content)
            logger.info("blob_uploaded", digest=digest)

    async def _blob_exists(self, repository: str, digest: str) -> bool:
        url = str(self._registry.join(f"v2/{repository}/blobs/{digest}"))
        response = await self.transport.request("HEAD", url, headers=self._headers())

        if response.status in (200, 202):
            return True
        if response.status == 404:
            return False
        raise BlobCheckError(url, response.status, response.reason, response.body)

    async def _initiate_upload(self, repository: str, digest: str) -> str:
        url = str(self._registry.join(f"v2/{repository}/blobs/uploads/"))
        response = await self.transport.request("POST", url, headers=self._headers())

        if response.status != 202:
            logger.error("blob_upload_initiation_failed", url=url, status=response.status)
            raise UploadInitiationError(response.status, response.reason, response.body)

        location = response.header("location")
        if not location:
            raise MissingLocationHeaderError(url, digest)
        return location

    async def _put_blob(self, location: str, descriptor: Layer, content: bytes) -> None:
        upload_url = self._registry.join(location).copy_merge_params({"digest": descriptor.digest})
        response = await self.transport.request(
            "PUT",
            str(upload_url),
            headers=self._headers(
                **{
                    "Content-Type": "application/octet-stream",
                    "Content-Length": str(descriptor.size),
                }
            ),
            content=content,
        )
        if response.status != 201:
            raise BlobUploadError(descriptor.digest, response.status, response.reason, response.body)

    async def _upload_manifest(
        self,
        repository: str,
        manifest: Manifest,
        reference: str,
        expected_digest: str,
    ) -> str:
        url = str(self._registry.join(f"v2/{repository}/manifests/{reference}"))
        logger.info("manifest_upload_started", url=url)

        response = await self.transport.request(
            "PUT",
            url,
            headers=self._headers(**{"Content-Type": OCI_IMAGE_MANIFEST_TYPE}),
            content=serialize_manifest(manifest),
        )
        if response.status != 201:
            raise ManifestUploadError(response.status, response.reason, response.body)

        actual_digest = response.header(CONTENT_DIGEST_HEADER)
        if actual_digest != expected_digest:
            logger.error(
                "manifest_digest_mismatch",
                expected=expected_digest,
                actual=actual_digest,
            )
            raise DigestMismatchError(expected_digest, actual_digest)

        logger.info("manifest_uploaded", url=url, digest=actual_digest)
        return actual_digest


__all__ = ["BlobSource", "RegistryClient", "encode_token"]
