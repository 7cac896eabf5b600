"""HTTP transport abstraction for registry requests.

The registry client never talks to httpx directly. It sends requests through
a ``RegistryTransport`` and receives a fixed ``RegistryResponse`` value, which
lets tests substitute a fake transport without a live registry.

Example:
    >>> async with HttpxTransport() as transport:
    ...     response = await transport.request("HEAD", url, headers=headers)
    ...     response.status
    404
"""

from __future__ import annotations

from collections.abc import Mapping
from dataclasses import dataclass, field
from types import TracebackType
from typing import Protocol, runtime_checkable

import httpx
import structlog

logger = structlog.get_logger(__name__)

DEFAULT_TIMEOUT_SECONDS = 60.0


@dataclass(frozen=True)
class RegistryResponse:
    """Status, headers and body of one registry response.

    Header lookups are case-insensitive.
    """

    status: int
    headers: httpx.Headers = field(default_factory=httpx.Headers)
    body: bytes = b""

    @property
    def reason(self) -> str:
        """Standard reason phrase for the status code."""
        return httpx.codes.get_reason_phrase(self.status)

    def header(self, name: str) -> str | None:
        """Return a response header, or None when absent."""
        return self.headers.get(name)


@runtime_checkable
class RegistryTransport(Protocol):
    """Anything able to send one HTTP request to a registry."""

    async def request(
        self,
        method: str,
        url: str,
        *,
        headers: Mapping[str, str],
        content: bytes | None = None,
    ) -> RegistryResponse:
        """Send a request and return the full response."""
        ...


async def _log_request(request: httpx.Request) -> None:
    logger.debug("registry_request", method=request.method, url=str(request.url))


async def _log_response(response: httpx.Response) -> None:
    logger.debug(
        "registry_response",
        method=response.request.method,
        url=str(response.request.url),
        status=response.status_code,
    )


class HttpxTransport:
    """RegistryTransport backed by ``httpx.AsyncClient``.

    Non-2xx responses are returned, not raised; the registry client decides
    what each status means. Redirects are followed because registries
    commonly redirect blob uploads to object storage.

    Args:
        client: Optional pre-configured client. When omitted, one is created
            and closed with the transport.
        timeout: Per-request timeout in seconds for the owned client.
    """

    def __init__(
        self,
        client: httpx.AsyncClient | None = None,
        *,
        timeout: float = DEFAULT_TIMEOUT_SECONDS,
    ) -> None:
        self._owns_client = client is None
        self._client = client or httpx.AsyncClient(
            timeout=timeout,
            follow_redirects=True,
            event_hooks={"request": [_log_request], "response": [_log_response]},
        )

    async def request(
        self,
        method: str,
        url: str,
        *,
        headers: Mapping[str, str],
        content: bytes | None = None,
    ) -> RegistryResponse:
        response = await self._client.request(
            method,
            url,
            headers=dict(headers),
            content=content,
        )
        return RegistryResponse(
            status=response.status_code,
            headers=response.headers,
            body=response.content,
        )

    async def aclose(self) -> None:
        """Close the underlying client if this transport created it."""
        if self._owns_client:
            await self._client.aclose()

    async def __aenter__(self) -> HttpxTransport:
        return self

    async def __aexit__(
        self,
        exc_type: type[BaseException] | None,
        exc: BaseException | None,
        tb: TracebackType | None,
    ) -> None:
        await self.aclose()


__all__ = ["HttpxTransport", "RegistryResponse", "RegistryTransport"]
