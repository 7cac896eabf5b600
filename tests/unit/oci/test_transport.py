"""Unit tests for the httpx-backed registry transport."""

from __future__ import annotations

import httpx
import pytest

from action_publisher.oci.transport import HttpxTransport, RegistryResponse, RegistryTransport


def _transport(handler: httpx.MockTransport) -> HttpxTransport:
    return HttpxTransport(httpx.AsyncClient(transport=handler))


class TestRegistryResponse:
    """Tests for the response value."""

    @pytest.mark.requirement("registry-transport")
    def test_header_lookup_is_case_insensitive(self) -> None:
        """Test header access ignores case."""
        response = RegistryResponse(status=201, headers=httpx.Headers({"Location": "/x"}))

        assert response.header("location") == "/x"
        assert response.header("docker-content-digest") is None

    @pytest.mark.requirement("registry-transport")
    def test_reason_phrase(self) -> None:
        """Test the reason phrase comes from the status code."""
        assert RegistryResponse(status=404).reason == "Not Found"


class TestHttpxTransport:
    """Tests for HttpxTransport."""

    @pytest.mark.requirement("registry-transport")
    def test_satisfies_protocol(self) -> None:
        """Test HttpxTransport is a RegistryTransport."""
        assert isinstance(HttpxTransport(), RegistryTransport)

    @pytest.mark.requirement("registry-transport")
    @pytest.mark.anyio
    async def test_sends_request_and_returns_response(self) -> None:
        """Test method, headers and body reach the server unchanged."""
        seen: list[httpx.Request] = []

        def handler(request: httpx.Request) -> httpx.Response:
            seen.append(request)
            return httpx.Response(201, headers={"Docker-Content-Digest": "sha256:abc"})

        async with _transport(httpx.MockTransport(handler)) as transport:
            response = await transport.request(
                "PUT",
                "https://ghcr.io/v2/octo-org/hello/manifests/1.0.0",
                headers={"Content-Type": "application/json"},
                content=b"{}",
            )

        assert response.status == 201
        assert response.header("docker-content-digest") == "sha256:abc"
        assert seen[0].method == "PUT"
        assert seen[0].headers["content-type"] == "application/json"
        assert seen[0].content == b"{}"

    @pytest.mark.requirement("registry-transport")
    @pytest.mark.anyio
    async def test_error_statuses_are_returned(self) -> None:
        """Test non-2xx responses are returned rather than raised."""
        transport = _transport(
            httpx.MockTransport(lambda request: httpx.Response(500, content=b"oops"))
        )

        response = await transport.request("HEAD", "https://ghcr.io/v2/", headers={})

        assert response.status == 500
        assert response.body == b"oops"
        await transport.aclose()
