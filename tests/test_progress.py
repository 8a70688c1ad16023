"""Tests for the live display and run summary."""

from __future__ import annotations

import pytest
from rich.console import Console

from rampload.config import from_dict
from rampload.controller import RampController
from rampload.core import RampTest
from rampload.progress import ProgressTracker, show_run_summary

CONFIG = {
    "name": "display",
    "target_url": "http://localhost:80/pessoas",
    "stages": [{"duration": "100ms", "target": 2}, {"duration": "100ms", "target": 4}],
    "tick_interval": "20ms",
    "checks": [{"name": "success login", "status": 200}],
}


class TestProgressTracker:
    """Tests for ProgressTracker."""

    def test_live_stats_before_run(self) -> None:
        config = from_dict(CONFIG)
        tracker = ProgressTracker(config.stages, "display")
        live = tracker._get_live_stats()
        assert live.stage == "-"
        assert live.requests == 0

    def test_live_stats_from_controller(self, mock_client) -> None:
        config = from_dict(CONFIG)
        test = RampTest(config, client=mock_client)
        controller = RampController(config.stages, lambda i: None, test.stats)
        controller.stage_index = 1
        test.stats.record_request(0.01, status_code=200)

        tracker = ProgressTracker(config.stages, "display")
        tracker.attach(controller)
        live = tracker._get_live_stats()

        assert live.stage == "2/2 → 4 users"
        assert live.requests == 1

    @pytest.mark.asyncio
    async def test_run_with_display(self, mock_client) -> None:
        """Test a run with the live display starts and closes it cleanly."""
        result = await RampTest(from_dict(CONFIG), client=mock_client, console_output=True).run()
        assert result.stats.peak_users == 4


class TestRunSummary:
    """Tests for show_run_summary."""

    @pytest.mark.asyncio
    async def test_passed(self, mock_client) -> None:
        result = await RampTest(from_dict(CONFIG), client=mock_client).run()
        console = Console(record=True, width=120)

        show_run_summary(result, console)

        output = console.export_text()
        assert "Ramp Test Results" in output
        assert "success login" in output
        assert "PASSED" in output

    @pytest.mark.asyncio
    async def test_failed(self, make_client) -> None:
        config = from_dict({**CONFIG, "thresholds": {"max_check_failure_rate": 0}})
        result = await RampTest(config, client=make_client(status=500)).run()
        console = Console(record=True, width=120)

        show_run_summary(result, console)

        output = console.export_text()
        assert "FAILED" in output
        assert "check failure rate" in output

    @pytest.mark.asyncio
    async def test_lists_errors(self, make_client) -> None:
        """Test request errors reach the summary with a suggestion."""
        client = make_client(error=ConnectionRefusedError("[Errno 111] Connection refused"))
        result = await RampTest(from_dict(CONFIG), client=client).run()
        console = Console(record=True, width=160)

        show_run_summary(result, console)

        output = console.export_text()
        assert "Errors" in output
        assert "ConnectionRefusedError" in output
        assert "Connection refused" in output
        assert "server is running" in output

    @pytest.mark.asyncio
    async def test_lists_status_codes(self, make_client) -> None:
        result = await RampTest(from_dict(CONFIG), client=make_client(status=503)).run()
        console = Console(record=True, width=120)

        show_run_summary(result, console)

        output = console.export_text()
        assert "Status Codes" in output
        assert "503" in output
        assert "Most common error" not in output
