"""Tests for the HTTP client boundary."""

from __future__ import annotations

import httpx
import pytest

from rampload.client import HTTPClient, HttpxClient, Request, Response
from rampload.errors import TransportError, error_kind


def _httpx(handler) -> httpx.AsyncClient:
    return httpx.AsyncClient(transport=httpx.MockTransport(handler))


class TestResponse:
    """Tests for Response helpers."""

    def test_helpers(self) -> None:
        response = Response(status_code=201, body=b'{"id": 7}')
        assert response.is_success
        assert response.text == '{"id": 7}'
        assert response.json() == {"id": 7}

    def test_not_success(self) -> None:
        assert not Response(status_code=302).is_success


class TestHttpxClient:
    """Tests for HttpxClient."""

    def test_satisfies_protocol(self) -> None:
        assert isinstance(HttpxClient(), HTTPClient)

    @pytest.mark.asyncio
    async def test_send(self) -> None:
        """Test method, headers and body reach the transport."""
        seen: list[httpx.Request] = []

        def handler(request: httpx.Request) -> httpx.Response:
            seen.append(request)
            return httpx.Response(200, json={"status": "ok"})

        client = HttpxClient(client=_httpx(handler))
        response = await client.send(Request(
            "POST",
            "http://localhost:80/pessoas",
            headers={"Content-Type": "application/json"},
            body=b'{"apelido": "ana"}',
        ))

        assert response.status_code == 200
        assert response.json() == {"status": "ok"}
        assert response.url == "http://localhost:80/pessoas"
        assert response.elapsed >= 0
        assert seen[0].method == "POST"
        assert seen[0].content == b'{"apelido": "ana"}'
        assert seen[0].headers["content-type"] == "application/json"

    @pytest.mark.asyncio
    async def test_error_status_is_a_response(self) -> None:
        """Test 5xx statuses are returned, not raised."""
        client = HttpxClient(client=_httpx(lambda r: httpx.Response(503)))
        response = await client.send(Request("GET", "http://localhost/"))
        assert response.status_code == 503

    @pytest.mark.asyncio
    async def test_transport_error_wrapped(self) -> None:
        """Test transport failures raise TransportError chained to the cause."""
        def handler(request: httpx.Request) -> httpx.Response:
            raise httpx.ConnectError("All connection attempts failed", request=request)

        client = HttpxClient(client=_httpx(handler))
        with pytest.raises(TransportError, match="ConnectError") as exc_info:
            await client.send(Request("GET", "http://localhost/"))

        assert isinstance(exc_info.value.__cause__, httpx.ConnectError)
        assert error_kind(exc_info.value) == "ConnectError"

    @pytest.mark.asyncio
    async def test_supplied_client_left_open(self) -> None:
        """Test aclose() does not close a client the caller owns."""
        inner = _httpx(lambda r: httpx.Response(200))
        client = HttpxClient(client=inner)
        await client.aclose()

        assert not inner.is_closed
        await inner.aclose()

    @pytest.mark.asyncio
    async def test_context_manager(self, mock_server) -> None:
        """Test the owned client is created on entry and closed on exit."""
        async with HttpxClient(max_connections=2) as client:
            response = await client.send(Request("GET", f"{mock_server.url}/pessoas"))
            assert response.status_code == 200
            assert response.json()["path"] == "/pessoas"
        assert client._client is None

    def test_pool_size_floor(self) -> None:
        assert HttpxClient(max_connections=0).max_connections == 1
