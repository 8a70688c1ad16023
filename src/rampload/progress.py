"""Progress tracking and live results display.

Provides a live view of the ramp (stage, active users, checks, latency)
while a run is in flight, and the summary table printed at the end.
"""

from __future__ import annotations

import asyncio
import contextlib
from dataclasses import dataclass
from typing import TYPE_CHECKING

from rich.console import Console, Group
from rich.live import Live
from rich.markup import escape
from rich.panel import Panel
from rich.progress import (
    BarColumn,
    Progress,
    SpinnerColumn,
    TaskID,
    TextColumn,
    TimeRemainingColumn,
)
from rich.table import Table

from rampload.errors import match_suggestion

if TYPE_CHECKING:
    from rampload.controller import RampController
    from rampload.core import RunResult
    from rampload.metrics.collector import RunStats
    from rampload.plan import RunPlan


console = Console()


@dataclass
class LiveStats:
    """Live statistics snapshot."""

    elapsed: float
    stage: str
    desired_users: int
    active_users: int
    requests: int
    failed_requests: int
    rps: float
    check_pass_rate: float
    p95_latency: float
    run_errors: int


class ProgressTracker:
    """Live view of a ramp: one bar for the whole plan, one for the stage."""

    def __init__(self, plan: RunPlan, test_name: str = "Ramp Test") -> None:
        """Initialize progress tracker.

        Args:
            plan: The plan being executed
            test_name: Name of the run
        """
        self.plan = plan
        self.test_name = test_name
        self._stop_event = asyncio.Event()
        self._controller: RampController | None = None

    def attach(self, controller: RampController) -> None:
        """Read stage, user counts and stats from ``controller``."""
        self._controller = controller

    def _elapsed(self) -> float:
        return self._controller.elapsed if self._controller is not None else 0.0

    def _create_progress(self) -> Progress:
        return Progress(
            SpinnerColumn(),
            TextColumn("{task.description}"),
            BarColumn(bar_width=None),
            TextColumn("[progress.percentage]{task.percentage:>3.0f}%"),
            TimeRemainingColumn(),
            console=console,
        )

    def _create_stats_table(self, stats: LiveStats) -> Table:
        table = Table(show_header=False, box=None, padding=(0, 2))
        table.add_column(style="cyan", no_wrap=True)
        table.add_column(style="white")

        table.add_row("Stage", stats.stage)
        table.add_row("Users", f"{stats.active_users:,} active / {stats.desired_users:,} desired")
        table.add_row("Requests", f"{stats.requests:,} ({stats.rps:.1f}/s)")
        if stats.failed_requests:
            table.add_row("Failed", f"[red]{stats.failed_requests:,}[/red]")
        pass_style = "green" if stats.check_pass_rate >= 95 else "red"
        table.add_row("Checks", f"[{pass_style}]{stats.check_pass_rate:.1f}% passed[/{pass_style}]")
        table.add_row("p95", f"{stats.p95_latency * 1000:.1f}ms")
        if stats.run_errors:
            table.add_row("Run Errors", f"[yellow]{stats.run_errors:,}[/yellow]")

        return table

    def _get_live_stats(self) -> LiveStats:
        elapsed = self._elapsed()
        controller = self._controller
        if controller is None:
            return LiveStats(elapsed, "-", 0, 0, 0, 0, 0.0, 0.0, 0.0, 0)

        stage = "-"
        if controller.stage_index is not None:
            index = controller.stage_index
            stage = f"{index + 1}/{len(self.plan)} → {self.plan[index].target} users"

        snapshot = controller.snapshot()
        return LiveStats(
            elapsed=elapsed,
            stage=stage,
            desired_users=controller.desired,
            active_users=controller.active_count,
            requests=snapshot.requests,
            failed_requests=snapshot.failed_requests,
            rps=snapshot.requests / max(elapsed, 0.001),
            check_pass_rate=snapshot.check_pass_rate,
            p95_latency=snapshot.latency_percentile(95),
            run_errors=snapshot.run_errors,
        )

    def _render(self, progress: Progress, overall: TaskID, stage_task: TaskID) -> Group:
        elapsed = self._elapsed()
        index, stage_elapsed = self.plan.stage_at(elapsed)
        stage = self.plan[index]

        progress.update(overall, completed=min(elapsed, self.plan.total_duration))
        progress.update(
            stage_task,
            description=f"stage {index + 1}/{len(self.plan)}",
            completed=min(stage_elapsed, stage.duration),
            total=stage.duration,
        )
        return Group(
            Panel(progress, title=self.test_name, border_style="blue"),
            Panel(self._create_stats_table(self._get_live_stats()), title="Live", border_style="green"),
        )

    async def run(self) -> None:
        """Refresh the display until stopped."""
        progress = self._create_progress()
        overall = progress.add_task("[cyan]ramp", total=self.plan.total_duration)
        stage_task = progress.add_task("stage", total=self.plan[0].duration)

        with Live(console=console, refresh_per_second=4, transient=True) as live:
            while not self._stop_event.is_set():
                live.update(self._render(progress, overall, stage_task))
                with contextlib.suppress(asyncio.TimeoutError):
                    await asyncio.wait_for(self._stop_event.wait(), timeout=0.25)

    def stop(self) -> None:
        self._stop_event.set()


def show_run_summary(result: RunResult, console: Console | None = None) -> None:
    """Display the final summary of a run.

    Args:
        result: Run result to display
        console: Console to use (creates new if None)
    """
    console = console or Console()
    stats = result.stats

    table = Table(title="Ramp Test Results", title_style="bold cyan")
    table.add_column("Metric", style="cyan", width=20)
    table.add_column("Value", style="white")

    table.add_row("Test Name", result.config.name)
    table.add_row("Target", f"{result.config.request_method} {result.config.target_url}")
    table.add_row("Duration", f"{result.duration:.2f}s")
    table.add_row("Peak Users", f"{stats.peak_users:,}")
    table.add_row("Iterations", f"{stats.iterations:,}")
    table.add_row("Requests", f"{stats.requests:,}")
    table.add_row(
        "Failed Requests",
        f"[red]{stats.failed_requests:,}[/red]" if stats.failed_requests > 0 else "0",
    )
    table.add_row(
        "Run Errors",
        f"[yellow]{stats.run_errors:,}[/yellow]" if stats.run_errors > 0 else "0",
    )

    if stats.checks:
        table.add_row("", "")
        table.add_row("[bold]Checks[/bold]", f"{stats.check_pass_rate:.1f}% passed")
        for name, (passes, fails) in stats.checks.items():
            mark = "[green]✓[/green]" if fails == 0 else "[red]✗[/red]"
            table.add_row(f"  {mark} {name}", f"{passes:,} passed / {fails:,} failed")

    table.add_row("", "")
    table.add_row("[bold]Response Times[/bold]", "")
    table.add_row("  Mean", f"{stats.mean_latency*1000:.2f}ms")
    table.add_row("  P50", f"{stats.latency_percentile(50)*1000:.2f}ms")
    table.add_row("  P95", f"{stats.latency_percentile(95)*1000:.2f}ms")
    table.add_row("  P99", f"{stats.latency_percentile(99)*1000:.2f}ms")

    if stats.status_codes:
        table.add_row("", "")
        table.add_row("[bold]Status Codes[/bold]", "")
        for code, count in sorted(stats.status_codes.items()):
            table.add_row(f"  {code}", f"{count:,}")

    if stats.errors or stats.run_error_messages:
        table.add_row("", "")
        table.add_row("[bold]Errors[/bold]", "")
        for kind, count in sorted(stats.errors.items(), key=lambda item: -item[1]):
            sample = stats.error_samples.get(kind)
            table.add_row(f"  [red]{count:,}[/red]", escape(f"{kind}: {sample}" if sample else kind))
        for message, count in stats.run_error_messages.items():
            table.add_row(f"  [yellow]{count:,}[/yellow]", escape(f"run error: {message}"))

    console.print()
    console.print(table)

    hint = _top_error_hint(stats)
    if hint is not None:
        console.print()
        console.print(
            Panel(f"[bold]{hint[0]}[/bold]\n\n{hint[1]}", title="💡 Most common error", border_style="yellow")
        )

    if result.passed:
        verdict = "[bold green]✓ PASSED[/bold green] - all thresholds held"
    else:
        reasons = "\n".join(f"  • {reason}" for reason in result.threshold_failures)
        verdict = f"[bold red]✗ FAILED[/bold red] - thresholds exceeded:\n{reasons}"

    console.print()
    console.print(Panel(verdict, border_style="blue"))


def _top_error_hint(stats: RunStats) -> tuple[str, str] | None:
    kind = stats.top_error
    if kind is None:
        return None
    return match_suggestion(kind, stats.error_samples.get(kind, ""))


class RunProgress:
    """Simple progress wrapper used by RampTest."""

    def __init__(self, plan: RunPlan, test_name: str = "Ramp Test") -> None:
        self.tracker = ProgressTracker(plan, test_name)
        self._task: asyncio.Task | None = None

    def attach(self, controller: RampController) -> None:
        self.tracker.attach(controller)

    async def start(self) -> None:
        """Start showing progress."""
        self._task = asyncio.create_task(self.tracker.run())

    def stop(self) -> None:
        """Stop progress display."""
        self.tracker.stop()

    async def wait(self) -> None:
        """Wait for the display to close after ``stop``."""
        if self._task is not None:
            await self._task
            self._task = None
