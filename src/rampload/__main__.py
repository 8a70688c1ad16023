"""Entry point for running rampload from the command line."""

from __future__ import annotations

import argparse
import asyncio
import contextlib
import dataclasses
import logging
import signal
import sys

from rich.console import Console
from rich.logging import RichHandler
from rich.panel import Panel
from rich.table import Table

from rampload import __version__
from rampload.config import RunConfig, generate_config_file, load
from rampload.core import RampTest
from rampload.errors import ConfigurationError, show_error, show_validation_warnings
from rampload.progress import show_run_summary

console = Console()

EXIT_CONFIG_ERROR = 2
EXIT_INTERRUPTED = 130


def configure_logging(verbosity: int) -> None:
    """Route library logging through rich.

    Args:
        verbosity: 0 for warnings, 1 for info, 2 or more for debug.
    """
    level = logging.WARNING
    if verbosity == 1:
        level = logging.INFO
    elif verbosity >= 2:
        level = logging.DEBUG

    logging.basicConfig(
        level=level,
        format="%(message)s",
        datefmt="[%X]",
        handlers=[RichHandler(console=Console(stderr=True), rich_tracebacks=True)],
        force=True,
    )
    # Request-level chatter from the transport drowns out the run
    logging.getLogger("httpx").setLevel(max(level, logging.WARNING))
    logging.getLogger("httpcore").setLevel(max(level, logging.WARNING))


def print_success(message: str) -> None:
    console.print(f"[bold green]✓[/bold green] {message}")


def print_info(message: str) -> None:
    console.print(f"[blue]ℹ[/blue] {message}")


def apply_overrides(config: RunConfig, args: argparse.Namespace) -> RunConfig:
    """Apply threshold overrides given on the command line."""
    thresholds = config.thresholds
    if args.max_run_errors is not None:
        thresholds = dataclasses.replace(thresholds, max_run_errors=args.max_run_errors)
    if args.max_check_failure_rate is not None:
        thresholds = dataclasses.replace(
            thresholds, max_check_failure_rate=args.max_check_failure_rate
        )
    if thresholds is config.thresholds:
        return config

    config = dataclasses.replace(config, thresholds=thresholds)
    config.validate()
    return config


def config_warnings(config: RunConfig) -> list[str]:
    """Non-fatal observations about a valid config."""
    warnings = []
    if not config.checks:
        warnings.append("No checks configured - only request counts and latency will be reported")
    if config.stages.peak_target > 5000:
        warnings.append(
            f"Peak of {config.stages.peak_target} users - make sure the open-file limit allows it"
        )
    if config.stages.total_duration > 3600:
        warnings.append(f"Run lasts {config.stages.total_duration:.0f}s (over an hour)")
    return warnings


async def run_test(test: RampTest) -> int:
    """Run ``test``, stopping gracefully on the first SIGINT/SIGTERM.

    Returns:
        The run's exit code.
    """
    loop = asyncio.get_running_loop()
    for sig in (signal.SIGINT, signal.SIGTERM):
        with contextlib.suppress(NotImplementedError):
            loop.add_signal_handler(sig, test.stop)

    try:
        result = await test.run()
    finally:
        for sig in (signal.SIGINT, signal.SIGTERM):
            with contextlib.suppress(NotImplementedError):
                loop.remove_signal_handler(sig)

    show_run_summary(result, console)
    if result.stopped_early:
        console.print("\n[yellow]⚠ Run stopped before the plan finished[/yellow]")
        return EXIT_INTERRUPTED
    return result.exit_code


def cmd_run(args: argparse.Namespace) -> int:
    try:
        config = apply_overrides(load(args.config), args)
    except (FileNotFoundError, ConfigurationError) as e:
        show_error(e, context=f"Loading {args.config}")
        return EXIT_CONFIG_ERROR

    show_validation_warnings(config_warnings(config))
    print_info(
        f"Running '{config.name}': {len(config.stages)} stages, "
        f"{config.stages.total_duration:g}s, peak {config.stages.peak_target} users"
    )

    test = RampTest(config, console_output=not args.quiet)
    try:
        code = asyncio.run(run_test(test))
    except KeyboardInterrupt:
        console.print("\n[yellow]⚠ Run interrupted by user[/yellow]")
        return EXIT_INTERRUPTED

    if args.json:
        console.print_json(test.report(format="json"))
    return code


def cmd_validate(args: argparse.Namespace) -> int:
    try:
        config = load(args.config)
    except (FileNotFoundError, ConfigurationError) as e:
        show_error(e, context=f"Validating {args.config}")
        return EXIT_CONFIG_ERROR

    table = Table(title=f"{config.name}: {config.request_method} {config.target_url}")
    table.add_column("Stage", style="cyan", no_wrap=True)
    table.add_column("Duration", style="green")
    table.add_column("Users", style="white")
    for index, stage in enumerate(config.stages):
        start = config.stages.start_target(index)
        table.add_row(str(index + 1), f"{stage.duration:g}s", f"{start} → {stage.target}")
    console.print(table)

    show_validation_warnings(config_warnings(config))
    print_success(f"{args.config} is valid")
    return 0


def cmd_init(args: argparse.Namespace) -> int:
    try:
        path = generate_config_file(args.output, args.target_url, args.method)
    except ConfigurationError as e:
        show_error(e, context="Generating config")
        return EXIT_CONFIG_ERROR
    print_success(f"Wrote {path}")
    return 0


def show_version() -> None:
    console.print(Panel(
        f"[bold]rampload[/bold] version [cyan]{__version__}[/cyan]\n"
        "Ramp virtual users against an HTTP endpoint",
        title="📈 rampload",
        border_style="cyan",
    ))


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="rampload",
        description="Ramp virtual users against an HTTP endpoint and check the responses",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  rampload init                           # Write a starter rampload.yaml
  rampload validate rampload.yaml         # Check a config without running it
  rampload run rampload.yaml              # Run with a live display
  rampload run rampload.yaml --max-run-errors 0 --quiet
        """,
    )
    parser.add_argument(
        "-v", "--verbose",
        action="count",
        default=0,
        help="Increase log verbosity (-v info, -vv debug)",
    )

    subparsers = parser.add_subparsers(dest="command", help="Available commands")

    run_parser = subparsers.add_parser(
        "run",
        help="Run a ramp from a configuration file",
        description="Execute the stages in a JSON or YAML configuration file.",
    )
    run_parser.add_argument("config", metavar="FILE", help="Path to .json, .yaml or .yml config")
    run_parser.add_argument(
        "--max-run-errors",
        type=int,
        metavar="N",
        help="Fail the run if more than N virtual users could not be started",
    )
    run_parser.add_argument(
        "--max-check-failure-rate",
        type=float,
        metavar="PCT",
        help="Fail the run if more than PCT percent of checks fail",
    )
    run_parser.add_argument("-q", "--quiet", action="store_true", help="Disable the live display")
    run_parser.add_argument("--json", action="store_true", help="Print the final stats as JSON")

    validate_parser = subparsers.add_parser("validate", help="Validate a configuration file")
    validate_parser.add_argument("config", metavar="FILE", help="Path to config file")

    init_parser = subparsers.add_parser("init", help="Write a starter configuration file")
    init_parser.add_argument(
        "-o", "--output",
        default="rampload.yaml",
        metavar="PATH",
        help="Output path (.yaml or .json, default: rampload.yaml)",
    )
    init_parser.add_argument("--target-url", metavar="URL", help="Endpoint to target")
    init_parser.add_argument("--method", metavar="METHOD", help="HTTP method")

    subparsers.add_parser("version", help="Show version information")

    return parser


def main(args: list[str] | None = None) -> int:
    """Main entry point for the CLI.

    Args:
        args: Command line arguments (defaults to sys.argv[1:]).

    Returns:
        Exit code.
    """
    parser = build_parser()
    parsed = parser.parse_args(args)
    configure_logging(parsed.verbose)

    if parsed.command == "run":
        return cmd_run(parsed)
    elif parsed.command == "validate":
        return cmd_validate(parsed)
    elif parsed.command == "init":
        return cmd_init(parsed)
    elif parsed.command == "version":
        show_version()
        return 0
    else:
        parser.print_help()
        return 0


if __name__ == "__main__":
    sys.exit(main())
