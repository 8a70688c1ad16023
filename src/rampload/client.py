"""HTTP client boundary.

Virtual users only talk to an ``HTTPClient``: anything with an async
``send(request)`` that returns a ``Response`` or raises on transport
failure. ``HttpxClient`` is the default implementation; tests inject
their own.
"""

from __future__ import annotations

import json
import time
from dataclasses import dataclass, field
from typing import Any, Protocol, runtime_checkable

import httpx

from rampload.errors import TransportError

METHODS = ("GET", "POST", "PUT", "PATCH", "DELETE", "HEAD", "OPTIONS")


@dataclass(frozen=True)
class Request:
    """A request a virtual user is about to send.

    Attributes:
        method: HTTP method.
        url: Absolute target URL.
        headers: Request headers.
        body: Raw request body, if any.
        timeout: Per-request timeout in seconds.
    """

    method: str
    url: str
    headers: dict[str, str] = field(default_factory=dict)
    body: bytes | None = None
    timeout: float = 30.0


@dataclass
class Response:
    """Response handed to checks.

    Attributes:
        status_code: HTTP status code.
        headers: Response headers.
        body: Raw response body.
        elapsed: Response time in seconds as measured by the client.
        url: Final URL after redirects.
    """

    status_code: int
    headers: dict[str, str] = field(default_factory=dict)
    body: bytes = b""
    elapsed: float = 0.0
    url: str = ""

    @property
    def is_success(self) -> bool:
        """Check if the response indicates success (2xx status)."""
        return 200 <= self.status_code < 300

    @property
    def text(self) -> str:
        return self.body.decode("utf-8", errors="replace")

    def json(self) -> Any:
        """Parse response body as JSON."""
        return json.loads(self.body)


@runtime_checkable
class HTTPClient(Protocol):
    """Transport used by virtual users."""

    async def send(self, request: Request) -> Response:
        """Send ``request`` and return the response.

        Raises:
            Exception: Any transport failure. Callers record it as a
                failed request, never propagate it.
        """
        ...


class HttpxClient:
    """``HTTPClient`` backed by a shared ``httpx.AsyncClient``.

    One connection pool is shared by every virtual user. The pool is sized
    for the plan's peak concurrency so users are not queued behind each
    other inside the client.

    Example:
        >>> async with HttpxClient(max_connections=500) as client:
        ...     response = await client.send(Request("POST", "http://localhost:80/pessoas"))
    """

    def __init__(
        self,
        max_connections: int = 1000,
        follow_redirects: bool = True,
        verify: bool = True,
        client: httpx.AsyncClient | None = None,
    ) -> None:
        """Initialize the client.

        Args:
            max_connections: Upper bound on open connections.
            follow_redirects: Whether to follow HTTP redirects.
            verify: Whether to verify TLS certificates.
            client: Pre-built ``httpx.AsyncClient`` to use instead.
        """
        self.max_connections = max(1, max_connections)
        self.follow_redirects = follow_redirects
        self.verify = verify
        self._client = client
        self._owns_client = client is None

    def _get_client(self) -> httpx.AsyncClient:
        if self._client is None:
            limits = httpx.Limits(
                max_connections=self.max_connections,
                max_keepalive_connections=self.max_connections,
            )
            self._client = httpx.AsyncClient(
                limits=limits,
                follow_redirects=self.follow_redirects,
                verify=self.verify,
            )
        return self._client

    async def send(self, request: Request) -> Response:
        """Send the request over the shared connection pool.

        Raises:
            TransportError: If no response was received.
        """
        client = self._get_client()
        start = time.perf_counter()
        try:
            response = await client.request(
                request.method,
                request.url,
                headers=request.headers,
                content=request.body,
                timeout=request.timeout,
            )
        except httpx.TransportError as e:
            raise TransportError(f"{type(e).__name__}: {e}") from e

        body = response.content
        try:
            elapsed = response.elapsed.total_seconds()
        except RuntimeError:
            # Mocked responses may not carry elapsed
            elapsed = time.perf_counter() - start

        return Response(
            status_code=response.status_code,
            headers=dict(response.headers),
            body=body,
            elapsed=elapsed,
            url=str(response.url),
        )

    async def aclose(self) -> None:
        """Close the underlying client if this instance created it."""
        if self._client is not None and self._owns_client:
            await self._client.aclose()
            self._client = None

    async def __aenter__(self) -> HttpxClient:
        self._get_client()
        return self

    async def __aexit__(self, *exc_info: object) -> None:
        await self.aclose()
