"""Tests for the ramp controller."""

from __future__ import annotations

import asyncio

import pytest

from rampload.checks import Check, status_is
from rampload.client import Request
from rampload.controller import RampController, RunEvent, RunEventType, RunState
from rampload.errors import ConfigurationError, SpawnError
from rampload.metrics.collector import StatsAggregator
from rampload.plan import RunPlan, Stage
from rampload.user import VirtualUser

REQUEST = Request("POST", "http://localhost:80/pessoas")
TICK = 0.02


def _controller(
    plan: RunPlan,
    client,
    stats: StatsAggregator | None = None,
    think_time: float = 0.0,
    tick_interval: float = TICK,
) -> RampController:
    stats = stats or StatsAggregator()

    def factory(index: int) -> VirtualUser:
        return VirtualUser(
            index=index,
            client=client,
            request_factory=lambda i, n: REQUEST,
            checks=[Check("success login", status_is(200))],
            stats=stats,
            think_time=think_time,
        )

    return RampController(plan, factory, stats, tick_interval=tick_interval)


class TestRampControllerInit:
    """Tests for construction."""

    def test_invalid_tick_interval(self, mock_client) -> None:
        with pytest.raises(ConfigurationError, match="tick_interval"):
            _controller(RunPlan([Stage(1.0, 1)]), mock_client, tick_interval=0)

    def test_initial_state(self, mock_client) -> None:
        controller = _controller(RunPlan([Stage(1.0, 1)]), mock_client)
        assert controller.state is RunState.PENDING
        assert controller.active_count == 0
        assert controller.stage_index is None


class TestRamping:
    """Tests for stage execution and concurrency tracking."""

    @pytest.mark.asyncio
    async def test_run_duration_matches_plan(self, mock_client) -> None:
        """Test ramping lasts the sum of stage durations, within a tick."""
        plan = RunPlan([Stage(0.2, 5), Stage(0.3, 10)])
        controller = _controller(plan, mock_client)

        await controller.run()

        assert controller.state is RunState.COMPLETED
        assert plan.total_duration <= controller.ramp_duration
        # One tick of tolerance plus scheduler slack
        assert controller.ramp_duration < plan.total_duration + TICK + 0.1

    @pytest.mark.asyncio
    async def test_active_users_follow_interpolated_target(self, mock_client) -> None:
        """Test every tick matches the interpolated target."""
        plan = RunPlan([Stage(0.2, 10), Stage(0.2, 20), Stage(0.2, 4)])
        controller = _controller(plan, mock_client)
        ticks: list[RunEvent] = []
        controller.on(RunEventType.TICK, ticks.append)

        await controller.run()

        assert ticks
        max_slope = max(
            abs(stage.target - plan.start_target(i)) / stage.duration
            for i, stage in enumerate(plan)
        )
        for event in ticks:
            assert event.active == event.desired
            expected = plan.target_at(event.elapsed)
            assert abs(event.desired - expected) <= max_slope * (TICK + 0.05) + 1

    @pytest.mark.asyncio
    async def test_reaches_each_stage_target(self, make_client) -> None:
        """Test the three-stage ramp hits each target at each boundary."""
        plan = RunPlan([Stage(0.1, 10), Stage(0.5, 50), Stage(1.0, 100)])
        controller = _controller(plan, make_client(delay=0.01), think_time=0.02)
        ends: list[RunEvent] = []
        controller.on(RunEventType.STAGE_END, ends.append)

        await controller.run()

        assert [e.active for e in ends] == [10, 50, 100]
        for event, boundary in zip(ends, (0.1, 0.6, 1.6)):
            assert boundary <= event.elapsed < boundary + TICK + 0.1

        stats = controller.snapshot()
        assert stats.peak_users == 100
        assert stats.active_users == 0

    @pytest.mark.asyncio
    async def test_ramp_down_retires_without_interrupting(self, make_client) -> None:
        """Test retired users finish their in-flight request."""
        client = make_client(delay=0.05)
        plan = RunPlan([Stage(0.15, 10), Stage(0.15, 0)])
        controller = _controller(plan, client)
        ends: list[RunEvent] = []
        controller.on(RunEventType.STAGE_END, ends.append)

        await controller.run()

        assert [e.active for e in ends] == [10, 0]
        assert client.cancelled == 0
        assert client.started == client.completed
        assert controller.snapshot().requests == client.completed

    @pytest.mark.asyncio
    async def test_stages_run_in_order(self, mock_client) -> None:
        """Test stage N+1 never starts before stage N ends."""
        plan = RunPlan([Stage(0.05, 2), Stage(0.05, 4), Stage(0.05, 6)])
        controller = _controller(plan, mock_client)
        log: list[tuple[str, int]] = []
        controller.on(RunEventType.STAGE_START, lambda e: log.append(("start", e.stage_index)))
        controller.on(RunEventType.STAGE_END, lambda e: log.append(("end", e.stage_index)))

        await controller.run()

        assert log == [
            ("start", 0), ("end", 0),
            ("start", 1), ("end", 1),
            ("start", 2), ("end", 2),
        ]

    @pytest.mark.asyncio
    async def test_counters_never_decrease(self, mock_client) -> None:
        """Test streamed snapshots are monotonically non-decreasing."""
        plan = RunPlan([Stage(0.2, 10), Stage(0.2, 2)])
        controller = _controller(plan, mock_client)
        snapshots = []
        controller.on(RunEventType.TICK, lambda e: snapshots.append(e.stats))

        final = await controller.run()
        snapshots.append(final)

        for field in ("requests", "iterations", "checks_passed", "checks_failed", "run_errors"):
            values = [getattr(s, field) for s in snapshots]
            assert values == sorted(values), field


class TestStateMachine:
    """Tests for lifecycle states and hooks."""

    @pytest.mark.asyncio
    async def test_state_transitions(self, mock_client) -> None:
        controller = _controller(RunPlan([Stage(0.05, 2)]), mock_client)
        seen = []
        for event_type in (
            RunEventType.START,
            RunEventType.STAGE_START,
            RunEventType.DRAIN,
            RunEventType.COMPLETE,
        ):
            controller.on(event_type, lambda e: seen.append((e.event_type, controller.state)))

        await controller.run()

        assert seen == [
            (RunEventType.START, RunState.RAMPING),
            (RunEventType.STAGE_START, RunState.RAMPING),
            (RunEventType.DRAIN, RunState.DRAINING),
            (RunEventType.COMPLETE, RunState.COMPLETED),
        ]

    @pytest.mark.asyncio
    async def test_decorator_registration(self, mock_client) -> None:
        controller = _controller(RunPlan([Stage(0.05, 1)]), mock_client)
        completed = []

        @controller.on(RunEventType.COMPLETE)
        def on_complete(event: RunEvent) -> None:
            completed.append(event.stats)

        await controller.run()

        assert len(completed) == 1
        assert completed[0] is not None

    @pytest.mark.asyncio
    async def test_failing_handler_does_not_break_run(self, mock_client) -> None:
        controller = _controller(RunPlan([Stage(0.05, 2)]), mock_client)

        def explode(event: RunEvent) -> None:
            raise ValueError("handler bug")

        controller.on(RunEventType.TICK, explode)
        await controller.run()

        assert controller.state is RunState.COMPLETED

    @pytest.mark.asyncio
    async def test_cannot_run_twice(self, mock_client) -> None:
        controller = _controller(RunPlan([Stage(0.05, 1)]), mock_client)
        await controller.run()

        with pytest.raises(RuntimeError, match="already ran"):
            await controller.run()

    @pytest.mark.asyncio
    async def test_stop_drains_early(self, make_client) -> None:
        """Test stop() ends the run at the next tick and drains users."""
        client = make_client(delay=0.01)
        controller = _controller(RunPlan([Stage(5.0, 5)]), client)
        asyncio.get_running_loop().call_later(0.1, controller.stop)

        await asyncio.wait_for(controller.run(), timeout=2.0)

        assert controller.state is RunState.COMPLETED
        assert controller.ramp_duration < 1.0
        assert client.cancelled == 0
        assert client.in_flight == 0


class TestSpawnFailures:
    """Tests for resource exhaustion while spawning users."""

    @pytest.mark.asyncio
    async def test_failed_spawns_are_retried(self, mock_client) -> None:
        """Test spawn failures become run errors and are retried next tick."""
        stats = StatsAggregator()
        failures = {"left": 3}

        def factory(index: int) -> VirtualUser:
            if failures["left"]:
                failures["left"] -= 1
                raise SpawnError("out of sockets")
            return VirtualUser(index, mock_client, lambda i, n: REQUEST, (), stats)

        controller = RampController(RunPlan([Stage(0.3, 5)]), factory, stats, tick_interval=TICK)
        ends: list[RunEvent] = []
        controller.on(RunEventType.STAGE_END, ends.append)

        final = await controller.run()

        assert final.run_errors == 3
        assert all("out of sockets" in message for message in final.run_error_messages)
        assert ends[0].active == 5
        assert final.peak_users == 5

    @pytest.mark.asyncio
    async def test_os_error_counts_as_spawn_failure(self, mock_client) -> None:
        stats = StatsAggregator()
        calls = {"n": 0}

        def factory(index: int) -> VirtualUser:
            calls["n"] += 1
            if calls["n"] == 1:
                raise OSError(24, "Too many open files")
            return VirtualUser(index, mock_client, lambda i, n: REQUEST, (), stats)

        controller = RampController(RunPlan([Stage(0.1, 2)]), factory, stats, tick_interval=TICK)
        final = await controller.run()

        assert final.run_errors == 1
        assert final.peak_users == 2
