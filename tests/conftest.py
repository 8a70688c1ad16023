"""Shared fixtures for rampload tests."""

from __future__ import annotations

import asyncio
import sys
from collections.abc import Iterator
from pathlib import Path

import pytest

# Add src and tests to path
sys.path.insert(0, str(Path(__file__).parent.parent / "src"))
sys.path.insert(0, str(Path(__file__).parent))

from fixtures.mock_server import MockServer
from rampload.client import Request, Response


class MockClient:
    """In-memory HTTP client for driving virtual users.

    Tracks how many requests started, finished and were cancelled so
    tests can prove no request is cut off mid-flight.
    """

    def __init__(
        self,
        status: int = 200,
        delay: float = 0.0,
        error: Exception | None = None,
        body: bytes = b'{"status": "ok"}',
    ) -> None:
        self.status = status
        self.delay = delay
        self.error = error
        self.body = body
        self.started = 0
        self.completed = 0
        self.cancelled = 0
        self.in_flight = 0
        self.requests: list[Request] = []

    async def send(self, request: Request) -> Response:
        self.started += 1
        self.in_flight += 1
        self.requests.append(request)
        try:
            if self.delay:
                await asyncio.sleep(self.delay)
            if self.error is not None:
                raise self.error
            return Response(status_code=self.status, body=self.body, elapsed=self.delay, url=request.url)
        except asyncio.CancelledError:
            self.cancelled += 1
            raise
        finally:
            self.in_flight -= 1
            self.completed += 1


@pytest.fixture
def mock_client() -> MockClient:
    return MockClient(delay=0.005)


@pytest.fixture
def make_client() -> type[MockClient]:
    return MockClient


@pytest.fixture
def mock_server() -> Iterator[MockServer]:
    server = MockServer()
    server.start()
    yield server
    server.stop()
