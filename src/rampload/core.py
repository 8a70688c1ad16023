"""Core ramp test orchestrator module.

This module provides the RampTest class, which wires a RunConfig, an HTTP
client, the stats aggregator and the ramp controller together, and the
RunResult it produces.
"""

from __future__ import annotations

import json
import time
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any, Callable

from rampload.client import HttpxClient
from rampload.controller import RampController, RunEventType, RunState
from rampload.errors import match_suggestion
from rampload.metrics.collector import RunStats, StatsAggregator
from rampload.user import VirtualUser

if TYPE_CHECKING:
    from rampload.client import HTTPClient, Request
    from rampload.config import RunConfig
    from rampload.controller import EventHandler
    from rampload.user import RequestFactory


@dataclass
class RunResult:
    """Results from a ramp run.

    Attributes:
        config: The configuration used.
        stats: Final stats snapshot.
        start_time: Timestamp when the run started.
        end_time: Timestamp when every user had stopped.
        ramp_duration: Seconds spent executing stages, excluding drain.
        final_state: Controller state at the end.
        stopped_early: Whether the run was stopped before the plan ended.
        threshold_failures: Description of each threshold the run exceeded.
    """

    config: RunConfig
    stats: RunStats
    start_time: float = 0.0
    end_time: float = 0.0
    ramp_duration: float = 0.0
    final_state: RunState = RunState.COMPLETED
    stopped_early: bool = False
    threshold_failures: list[str] = field(default_factory=list)

    @property
    def duration(self) -> float:
        """Total run time including drain."""
        return self.end_time - self.start_time

    @property
    def passed(self) -> bool:
        return not self.threshold_failures

    @property
    def exit_code(self) -> int:
        """0 when every threshold held, otherwise the configured failure code."""
        return 0 if self.passed else self.config.failure_exit_code


def evaluate_thresholds(config: RunConfig, stats: RunStats) -> list[str]:
    """Describe every threshold ``stats`` exceeds.

    Check failures only count when ``max_check_failure_rate`` is set.
    """
    failures = []
    thresholds = config.thresholds

    if thresholds.max_run_errors is not None and stats.run_errors > thresholds.max_run_errors:
        failures.append(
            f"run errors {stats.run_errors} exceed max_run_errors {thresholds.max_run_errors}"
        )

    rate = thresholds.max_check_failure_rate
    if rate is not None and stats.checks_total and stats.check_failure_rate > rate:
        failures.append(
            f"check failure rate {stats.check_failure_rate:.2f}% exceeds "
            f"max_check_failure_rate {rate:g}%"
        )

    return failures


class RampTest:
    """Main orchestrator for a ramp run.

    Example:
        >>> config = from_dict({
        ...     "target_url": "http://localhost:80/pessoas",
        ...     "request_method": "POST",
        ...     "stages": [{"duration": "1s", "target": 100}],
        ...     "checks": [{"name": "success login", "status": 200}],
        ... })
        >>> result = await RampTest(config).run()
        >>> result.exit_code
        0

    Attributes:
        config: The run configuration.
        stats: The aggregator shared with every virtual user.
        request_factory: Builds the request for ``(user_index, iteration)``.
        console_output: Whether to show the live progress display.
    """

    def __init__(
        self,
        config: RunConfig,
        client: HTTPClient | None = None,
        request_factory: RequestFactory | None = None,
        console_output: bool = False,
    ) -> None:
        """Initialize a RampTest.

        Args:
            config: Run configuration; validated here.
            client: Transport to use. Defaults to an HttpxClient created
                per run and sized to the plan's peak concurrency.
            request_factory: Per-iteration request builder. Defaults to the
                fixed request described by ``config``.
            console_output: Show the live progress display.

        Raises:
            ConfigurationError: If the configuration is invalid.
        """
        config.validate()
        self.config = config
        self.stats = StatsAggregator(config.expected_statuses)
        self.request_factory = request_factory or self._fixed_request
        self.console_output = console_output

        self._client = client
        self._request = config.build_request()
        self._controller: RampController | None = None
        self._handlers: list[tuple[RunEventType, EventHandler]] = []
        self._stop_requested = False

    def _fixed_request(self, index: int, iteration: int) -> Request:
        return self._request

    def _make_user(self, client: HTTPClient) -> Callable[[int], VirtualUser]:
        def factory(index: int) -> VirtualUser:
            return VirtualUser(
                index=index,
                client=client,
                request_factory=self.request_factory,
                checks=self.config.checks,
                stats=self.stats,
                think_time=self.config.think_time,
                max_iterations=self.config.iterations_per_user,
            )

        return factory

    def on(self, event_type: RunEventType, handler: EventHandler) -> RampTest:
        """Register a controller event handler for every run.

        TICK handlers receive a stats snapshot each tick, which is how
        progress is streamed while the run is in flight.

        Returns:
            Self for method chaining.
        """
        self._handlers.append((event_type, handler))
        return self

    async def run(self) -> RunResult:
        """Execute the ramp plan against the target.

        Returns:
            RunResult with the final stats and exit status.
        """
        from rampload.progress import RunProgress

        self.stats.reset()

        owns_client = self._client is None
        client = self._client or HttpxClient(max_connections=max(self.config.stages.peak_target, 1))

        controller = RampController(
            plan=self.config.stages,
            user_factory=self._make_user(client),
            stats=self.stats,
            tick_interval=self.config.tick_interval,
        )
        for event_type, handler in self._handlers:
            controller.on(event_type, handler)
        self._controller = controller
        if self._stop_requested:
            controller.stop()

        progress = None
        if self.console_output:
            progress = RunProgress(self.config.stages, self.config.name)
            progress.attach(controller)
            await progress.start()

        start_time = time.time()
        try:
            stats = await controller.run()
        finally:
            if progress is not None:
                progress.stop()
                await progress.wait()
            if owns_client:
                await client.aclose()
            stopped_early = self._stop_requested
            self._stop_requested = False

        return RunResult(
            config=self.config,
            stats=stats,
            start_time=start_time,
            end_time=time.time(),
            ramp_duration=controller.ramp_duration,
            final_state=controller.state,
            stopped_early=stopped_early,
            threshold_failures=evaluate_thresholds(self.config, stats),
        )

    def stop(self) -> None:
        """Signal the run to stop gracefully."""
        self._stop_requested = True
        if self._controller:
            self._controller.stop()

    def snapshot(self) -> RunStats:
        """Current stats, usable while the run is in flight."""
        return self.stats.snapshot()

    def report(self, format: str = "console") -> str:  # noqa: A002
        """Generate a report from the current stats.

        Args:
            format: The report format ("console" or "json").

        Returns:
            The generated report as a string.
        """
        stats = self.snapshot()
        if format == "json":
            data: dict[str, Any] = {"name": self.config.name, **stats.to_dict()}
            return json.dumps(data, indent=2)
        if format == "console":
            return self._generate_console_report(stats)
        raise ValueError(f"Unknown report format: {format}")

    def _generate_console_report(self, stats: RunStats) -> str:
        lines = [
            "=" * 60,
            f"Ramp Test Report: {self.config.name}",
            "=" * 60,
            f"Target: {self.config.request_method} {self.config.target_url}",
            f"Duration: {stats.elapsed:.2f}s",
            f"Peak Users: {stats.peak_users}",
            f"Iterations: {stats.iterations}",
            f"Requests: {stats.requests} ({stats.throughput:.1f}/s)",
            f"Failed Requests: {stats.failed_requests}",
            f"Run Errors: {stats.run_errors}",
            "",
            f"Checks: {stats.check_pass_rate:.2f}% passed "
            f"({stats.checks_passed} passed, {stats.checks_failed} failed)",
        ]
        for name, (passes, fails) in stats.checks.items():
            mark = "✓" if fails == 0 else "✗"
            lines.append(f"  {mark} {name}: {passes} passed, {fails} failed")
        lines.extend([
            "",
            "Response Times:",
            f"  Mean: {stats.mean_latency:.3f}s",
            f"  P50: {stats.latency_percentile(50):.3f}s",
            f"  P95: {stats.latency_percentile(95):.3f}s",
            f"  P99: {stats.latency_percentile(99):.3f}s",
        ])
        if stats.status_codes:
            codes = ", ".join(f"{code}: {count}" for code, count in sorted(stats.status_codes.items()))
            lines.extend(["", f"Status Codes: {codes}"])
        if stats.errors or stats.run_error_messages:
            lines.extend(["", "Errors:"])
            for kind, count in sorted(stats.errors.items(), key=lambda item: -item[1]):
                sample = stats.error_samples.get(kind)
                lines.append(f"  {kind}: {count}" + (f" ({sample})" if sample else ""))
            for message, count in stats.run_error_messages.items():
                lines.append(f"  run error: {count} ({message})")
            if stats.top_error is not None:
                hint = match_suggestion(stats.top_error, stats.error_samples.get(stats.top_error, ""))
                if hint is not None:
                    lines.append(f"Hint: {hint[0]}. " + hint[1].replace("\n", " "))
        lines.append("=" * 60)
        return "\n".join(lines)
