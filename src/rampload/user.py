"""Virtual user loop.

A virtual user repeats one iteration (build request, send, check,
record, think) until it is told to stop. The stop flag is only looked at
between iterations and while thinking, so a request in flight is always
allowed to finish.
"""

from __future__ import annotations

import asyncio
import contextlib
import logging
import time
from typing import TYPE_CHECKING, Callable

from rampload.checks import Check, fail_all, run_checks
from rampload.errors import error_kind

if TYPE_CHECKING:
    from rampload.client import HTTPClient, Request
    from rampload.metrics.collector import StatsAggregator

logger = logging.getLogger(__name__)

RequestFactory = Callable[[int, int], "Request"]


class VirtualUser:
    """A simulated concurrent client.

    Attributes:
        index: Identifier assigned by the controller.
        client: Transport shared by all users.
        request_factory: Called as ``(index, iteration)`` for every request.
        checks: Checks applied to every response.
        stats: Shared aggregator.
        think_time: Pause between iterations in seconds.
        max_iterations: Iteration budget; once spent the user idles
            until stopped. ``None`` means no limit.
        iteration: Number of completed iterations.
    """

    def __init__(
        self,
        index: int,
        client: HTTPClient,
        request_factory: RequestFactory,
        checks: tuple[Check, ...] | list[Check],
        stats: StatsAggregator,
        think_time: float = 0.0,
        max_iterations: int | None = None,
    ) -> None:
        self.index = index
        self.client = client
        self.request_factory = request_factory
        self.checks = tuple(checks)
        self.stats = stats
        self.think_time = think_time
        self.max_iterations = max_iterations
        self.iteration = 0

        self._stop_event = asyncio.Event()
        self._in_iteration = False

    @property
    def stopping(self) -> bool:
        return self._stop_event.is_set()

    @property
    def in_iteration(self) -> bool:
        """Whether a request/check cycle is currently in progress."""
        return self._in_iteration

    def retire(self) -> None:
        """Ask the user to exit after its current iteration."""
        self._stop_event.set()

    async def run(self) -> None:
        """Run iterations until retired."""
        logger.debug("virtual user %d started", self.index)
        while not self._stop_event.is_set():
            if self.max_iterations is not None and self.iteration >= self.max_iterations:
                await self._stop_event.wait()
                break

            self._in_iteration = True
            try:
                await self.iterate()
            finally:
                self._in_iteration = False
            self.iteration += 1

            if self.think_time > 0:
                await self._think(self.think_time)
            else:
                # Let the controller and other users run between iterations
                await asyncio.sleep(0)
        logger.debug("virtual user %d stopped after %d iterations", self.index, self.iteration)

    async def iterate(self) -> None:
        """Perform one request/check cycle and record the outcome.

        Transport errors are recorded as a failed request with every check
        failed; they never propagate.
        """
        start = time.perf_counter()
        try:
            request = self.request_factory(self.index, self.iteration)
            response = await self.client.send(request)
        except Exception as e:
            latency = time.perf_counter() - start
            logger.debug("virtual user %d request failed: %s", self.index, e)
            reason = str(e) or type(e).__name__
            self.stats.record_request(latency, error=error_kind(e), detail=reason)
            self.stats.record_checks(fail_all(self.checks, reason))
        else:
            latency = time.perf_counter() - start
            self.stats.record_request(latency, status_code=response.status_code)
            self.stats.record_checks(run_checks(self.checks, response))

        self.stats.record_iteration()

    async def _think(self, seconds: float) -> None:
        with contextlib.suppress(asyncio.TimeoutError):
            await asyncio.wait_for(self._stop_event.wait(), timeout=seconds)

    def __repr__(self) -> str:
        return f"VirtualUser(index={self.index}, iteration={self.iteration})"
