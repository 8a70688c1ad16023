"""Run statistics aggregation.

This module provides the StatsAggregator shared by every virtual user and
the RunStats snapshot it hands out.
"""

from __future__ import annotations

import dataclasses
import threading
import time
from collections import defaultdict
from collections.abc import Iterable
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any

if TYPE_CHECKING:
    from rampload.checks import CheckResult


def percentile(sorted_data: list[float] | tuple[float, ...], p: float) -> float:
    """Calculate the percentile of sorted data.

    Args:
        sorted_data: Sorted values.
        p: Percentile to calculate (0-100).

    Returns:
        The linearly interpolated percentile value, 0.0 for no data.
    """
    if not sorted_data:
        return 0.0

    k = (len(sorted_data) - 1) * (p / 100)
    f = int(k)
    c = f + 1 if f + 1 < len(sorted_data) else f

    if f == c:
        return sorted_data[f]

    return sorted_data[f] * (c - k) + sorted_data[c] * (k - f)


@dataclass(frozen=True)
class RunStats:
    """Point-in-time copy of all run counters.

    Attributes:
        timestamp: When the snapshot was taken.
        elapsed: Seconds since the aggregator started.
        requests: Requests sent, including those that failed.
        failed_requests: Transport errors plus unexpected status codes.
        iterations: Completed virtual-user iterations.
        checks_passed: Passing check results.
        checks_failed: Failing check results.
        checks: Per-check ``(passes, fails)``.
        status_codes: Count of each HTTP status code received.
        errors: Count of each request error type.
        error_samples: First message seen for each request error type.
        run_errors: Controller-level errors (failed spawns).
        run_error_messages: Count of each run-level error message.
        latencies: Sorted response times in seconds.
        active_users: Active virtual users at snapshot time.
        peak_users: Highest active user count observed.
    """

    timestamp: float
    elapsed: float = 0.0
    requests: int = 0
    failed_requests: int = 0
    iterations: int = 0
    checks_passed: int = 0
    checks_failed: int = 0
    checks: dict[str, tuple[int, int]] = field(default_factory=dict)
    status_codes: dict[int, int] = field(default_factory=dict)
    errors: dict[str, int] = field(default_factory=dict)
    error_samples: dict[str, str] = field(default_factory=dict)
    run_errors: int = 0
    run_error_messages: dict[str, int] = field(default_factory=dict)
    latencies: tuple[float, ...] = ()
    active_users: int = 0
    peak_users: int = 0

    @property
    def checks_total(self) -> int:
        return self.checks_passed + self.checks_failed

    @property
    def check_pass_rate(self) -> float:
        """Percentage of passing checks, 0.0 when none ran."""
        if self.checks_total == 0:
            return 0.0
        return self.checks_passed / self.checks_total * 100

    @property
    def check_failure_rate(self) -> float:
        if self.checks_total == 0:
            return 0.0
        return self.checks_failed / self.checks_total * 100

    @property
    def throughput(self) -> float:
        """Requests per second over the elapsed time."""
        if self.elapsed <= 0:
            return 0.0
        return self.requests / self.elapsed

    @property
    def top_error(self) -> str | None:
        """Most frequent request error type, if any request failed in transport."""
        if not self.errors:
            return None
        return max(self.errors, key=self.errors.__getitem__)

    @property
    def mean_latency(self) -> float:
        if not self.latencies:
            return 0.0
        return sum(self.latencies) / len(self.latencies)

    def latency_percentile(self, p: float) -> float:
        return percentile(self.latencies, p)

    def to_dict(self) -> dict[str, Any]:
        """Summary form suitable for JSON output."""
        return {
            "elapsed": self.elapsed,
            "requests": self.requests,
            "failed_requests": self.failed_requests,
            "iterations": self.iterations,
            "throughput": self.throughput,
            "checks_passed": self.checks_passed,
            "checks_failed": self.checks_failed,
            "check_pass_rate": self.check_pass_rate,
            "checks": {name: {"passes": p, "fails": f} for name, (p, f) in self.checks.items()},
            "status_codes": dict(self.status_codes),
            "errors": dict(self.errors),
            "error_samples": dict(self.error_samples),
            "run_errors": self.run_errors,
            "run_error_messages": dict(self.run_error_messages),
            "active_users": self.active_users,
            "peak_users": self.peak_users,
            "latency": {
                "count": len(self.latencies),
                "min": self.latencies[0] if self.latencies else 0.0,
                "max": self.latencies[-1] if self.latencies else 0.0,
                "mean": self.mean_latency,
                "p50": self.latency_percentile(50),
                "p95": self.latency_percentile(95),
                "p99": self.latency_percentile(99),
            },
        }


class StatsAggregator:
    """Thread-safe collector for run statistics.

    One instance is shared by reference between the controller and every
    virtual user. All mutation happens under a single lock held only for
    the duration of the update; counters only ever grow until ``reset``.

    Example:
        >>> stats = StatsAggregator()
        >>> stats.record_request(0.012, status_code=200)
        >>> stats.snapshot().requests
        1
    """

    def __init__(self, expected_statuses: Iterable[int] | None = None) -> None:
        """Initialize the aggregator.

        Args:
            expected_statuses: Status codes that do not count as failed
                requests. Defaults to 200-399.
        """
        self._lock = threading.Lock()
        self.expected_statuses = frozenset(
            expected_statuses if expected_statuses is not None else range(200, 400)
        )
        self._reset_locked()

    def _reset_locked(self) -> None:
        self._requests = 0
        self._failed_requests = 0
        self._iterations = 0
        self._checks_passed = 0
        self._checks_failed = 0
        self._check_passes: dict[str, int] = defaultdict(int)
        self._check_fails: dict[str, int] = defaultdict(int)
        self._status_codes: dict[int, int] = defaultdict(int)
        self._errors: dict[str, int] = defaultdict(int)
        self._error_samples: dict[str, str] = {}
        self._run_errors = 0
        self._run_error_messages: dict[str, int] = defaultdict(int)
        self._latencies: list[float] = []
        self._active_users = 0
        self._peak_users = 0
        self.start_time = time.time()

    def record_request(
        self,
        latency: float,
        status_code: int | None = None,
        error: str | None = None,
        detail: str | None = None,
    ) -> None:
        """Record one sent request.

        Args:
            latency: Time from send to response (or failure) in seconds.
            status_code: Status of the response, if one arrived.
            error: Error type if the request failed in transport.
            detail: Error message; the first one per type is kept.
        """
        with self._lock:
            self._requests += 1
            self._latencies.append(latency)
            if error is not None:
                self._failed_requests += 1
                self._errors[error] += 1
                if detail is not None:
                    self._error_samples.setdefault(error, detail)
            if status_code is not None:
                self._status_codes[status_code] += 1
                if status_code not in self.expected_statuses:
                    self._failed_requests += 1

    def record_checks(self, results: Iterable[CheckResult]) -> None:
        """Record the check results of one iteration."""
        with self._lock:
            for result in results:
                if result.passed:
                    self._checks_passed += 1
                    self._check_passes[result.name] += 1
                else:
                    self._checks_failed += 1
                    self._check_fails[result.name] += 1

    def record_iteration(self) -> None:
        with self._lock:
            self._iterations += 1

    def record_run_error(self, message: str) -> None:
        """Record a controller-level error such as a failed spawn."""
        with self._lock:
            self._run_errors += 1
            self._run_error_messages[message] += 1

    def set_active_users(self, count: int) -> None:
        with self._lock:
            self._active_users = count
            if count > self._peak_users:
                self._peak_users = count

    def snapshot(self) -> RunStats:
        """Return a consistent copy of every counter.

        Counters are copied under the lock; sorting the latency samples
        happens after it is released.
        """
        with self._lock:
            now = time.time()
            names = set(self._check_passes) | set(self._check_fails)
            latencies = list(self._latencies)
            stats = RunStats(
                timestamp=now,
                elapsed=now - self.start_time,
                requests=self._requests,
                failed_requests=self._failed_requests,
                iterations=self._iterations,
                checks_passed=self._checks_passed,
                checks_failed=self._checks_failed,
                checks={
                    name: (self._check_passes.get(name, 0), self._check_fails.get(name, 0))
                    for name in sorted(names)
                },
                status_codes=dict(self._status_codes),
                errors=dict(self._errors),
                error_samples=dict(self._error_samples),
                run_errors=self._run_errors,
                run_error_messages=dict(self._run_error_messages),
                active_users=self._active_users,
                peak_users=self._peak_users,
            )
        latencies.sort()
        return dataclasses.replace(stats, latencies=tuple(latencies))

    def reset(self) -> None:
        """Reset all counters to their initial state."""
        with self._lock:
            self._reset_locked()
