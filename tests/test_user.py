"""Tests for the virtual user loop."""

from __future__ import annotations

import asyncio

import pytest

from rampload.checks import Check, status_is
from rampload.client import Request
from rampload.errors import TransportError
from rampload.metrics.collector import StatsAggregator
from rampload.user import VirtualUser

REQUEST = Request("POST", "http://localhost:80/pessoas")


def _user(client, stats: StatsAggregator, **kwargs) -> VirtualUser:
    kwargs.setdefault("checks", [Check("success login", status_is(200))])
    return VirtualUser(
        index=0,
        client=client,
        request_factory=lambda index, iteration: REQUEST,
        stats=stats,
        **kwargs,
    )


async def _wait_for(condition, timeout: float = 2.0) -> None:
    async def poll() -> None:
        while not condition():
            await asyncio.sleep(0.001)

    await asyncio.wait_for(poll(), timeout=timeout)


class TestIterate:
    """Tests for a single iteration."""

    @pytest.mark.asyncio
    async def test_success(self, make_client) -> None:
        """Test a 200 response records a request and a passing check."""
        stats = StatsAggregator()
        await _user(make_client(status=200), stats).iterate()

        snapshot = stats.snapshot()
        assert snapshot.requests == 1
        assert snapshot.iterations == 1
        assert snapshot.status_codes == {200: 1}
        assert snapshot.checks == {"success login": (1, 0)}

    @pytest.mark.asyncio
    async def test_check_failure(self, make_client) -> None:
        """Test a mismatched status fails the check without raising."""
        stats = StatsAggregator()
        await _user(make_client(status=500), stats).iterate()

        snapshot = stats.snapshot()
        assert snapshot.checks == {"success login": (0, 1)}
        assert snapshot.failed_requests == 1

    @pytest.mark.asyncio
    async def test_transport_error(self, make_client) -> None:
        """Test a transport error becomes failed checks, not an exception."""
        stats = StatsAggregator()
        client = make_client(error=ConnectionRefusedError("connection refused"))
        await _user(client, stats).iterate()

        snapshot = stats.snapshot()
        assert snapshot.requests == 1
        assert snapshot.failed_requests == 1
        assert snapshot.errors == {"ConnectionRefusedError": 1}
        assert snapshot.error_samples == {"ConnectionRefusedError": "connection refused"}
        assert snapshot.checks == {"success login": (0, 1)}
        assert snapshot.iterations == 1

    @pytest.mark.asyncio
    async def test_wrapped_transport_error_kind(self, make_client) -> None:
        """Test wrapped transport errors are bucketed by their cause."""
        try:
            raise TransportError("ConnectTimeout: timed out") from TimeoutError("timed out")
        except TransportError as e:
            error = e

        stats = StatsAggregator()
        await _user(make_client(error=error), stats).iterate()
        assert stats.snapshot().errors == {"TimeoutError": 1}

    @pytest.mark.asyncio
    async def test_request_factory_arguments(self, make_client) -> None:
        """Test the factory receives the user index and iteration."""
        seen = []

        def factory(index: int, iteration: int) -> Request:
            seen.append((index, iteration))
            return REQUEST

        user = VirtualUser(3, make_client(), factory, (), StatsAggregator(), max_iterations=2)
        task = asyncio.create_task(user.run())
        await _wait_for(lambda: user.iteration == 2)
        user.retire()
        await task

        assert seen == [(3, 0), (3, 1)]


class TestRunLoop:
    """Tests for the repeated loop and stopping."""

    @pytest.mark.asyncio
    async def test_loops_until_retired(self, make_client) -> None:
        """Test the user keeps iterating until retired."""
        stats = StatsAggregator()
        user = _user(make_client(delay=0.001), stats)
        task = asyncio.create_task(user.run())

        await _wait_for(lambda: user.iteration >= 5)
        user.retire()
        await asyncio.wait_for(task, timeout=1.0)

        assert stats.snapshot().iterations == user.iteration

    @pytest.mark.asyncio
    async def test_retire_waits_for_in_flight_request(self, make_client) -> None:
        """Test retiring mid-request lets the request finish."""
        client = make_client(delay=0.1)
        stats = StatsAggregator()
        user = _user(client, stats)
        task = asyncio.create_task(user.run())

        await _wait_for(lambda: user.in_iteration)
        user.retire()
        await asyncio.wait_for(task, timeout=1.0)

        assert client.started == client.completed == 1
        assert client.cancelled == 0
        assert stats.snapshot().checks == {"success login": (1, 0)}

    @pytest.mark.asyncio
    async def test_retire_interrupts_think_time(self, make_client) -> None:
        """Test a user thinking between iterations exits promptly."""
        user = _user(make_client(), StatsAggregator(), think_time=10.0)
        task = asyncio.create_task(user.run())

        await _wait_for(lambda: user.iteration == 1)
        user.retire()
        await asyncio.wait_for(task, timeout=1.0)

        assert user.iteration == 1

    @pytest.mark.asyncio
    async def test_iteration_budget(self, make_client) -> None:
        """Test a user idles after spending its budget, then exits when retired."""
        client = make_client()
        user = _user(client, StatsAggregator(), max_iterations=3)
        task = asyncio.create_task(user.run())

        await _wait_for(lambda: user.iteration == 3)
        await asyncio.sleep(0.02)
        assert not task.done()
        assert client.started == 3

        user.retire()
        await asyncio.wait_for(task, timeout=1.0)

    @pytest.mark.asyncio
    async def test_errors_do_not_stop_loop(self, make_client) -> None:
        """Test the loop continues through repeated transport errors."""
        stats = StatsAggregator()
        user = _user(make_client(error=OSError("reset")), stats)
        task = asyncio.create_task(user.run())

        await _wait_for(lambda: user.iteration >= 3)
        user.retire()
        await asyncio.wait_for(task, timeout=1.0)

        snapshot = stats.snapshot()
        assert snapshot.checks_passed == 0
        assert snapshot.checks_failed == user.iteration
