"""Ramp controller.

This module provides the RampController, which walks a RunPlan stage by
stage on a single ticker loop and keeps the number of active virtual
users equal to the linearly interpolated target at every tick. It never
performs request I/O itself; it only starts and retires users.
"""

from __future__ import annotations

import asyncio
import logging
import math
import time
from dataclasses import dataclass, field
from enum import Enum, auto
from typing import TYPE_CHECKING, Any, Callable

from rampload.errors import ConfigurationError, SpawnError

if TYPE_CHECKING:
    from rampload.metrics.collector import RunStats, StatsAggregator
    from rampload.plan import RunPlan, Stage
    from rampload.user import VirtualUser

logger = logging.getLogger(__name__)

DEFAULT_TICK_INTERVAL = 0.1

# Exceptions that mean "could not start a user right now", not a bug
SPAWN_ERRORS = (SpawnError, OSError, MemoryError, RuntimeError)

UserFactory = Callable[[int], "VirtualUser"]


class RunState(Enum):
    """Lifecycle of a run."""
    PENDING = auto()
    RAMPING = auto()
    DRAINING = auto()
    COMPLETED = auto()


class RunEventType(Enum):
    """Hook points exposed by the controller."""
    START = auto()
    STAGE_START = auto()
    STAGE_END = auto()
    TICK = auto()
    DRAIN = auto()
    COMPLETE = auto()


@dataclass
class RunEvent:
    """Controller event.

    Attributes:
        event_type: Type of event.
        timestamp: Wall-clock time of the event.
        elapsed: Seconds since the run started.
        stage_index: Stage running when the event fired, if any.
        desired: Interpolated target concurrency.
        active: Active virtual users after reconciling.
        stats: Stats snapshot (TICK and COMPLETE events only).
        metadata: Additional event data.
    """
    event_type: RunEventType
    timestamp: float = field(default_factory=time.time)
    elapsed: float = 0.0
    stage_index: int | None = None
    desired: int = 0
    active: int = 0
    stats: RunStats | None = None
    metadata: dict[str, Any] = field(default_factory=dict)


EventHandler = Callable[[RunEvent], None]


class RampController:
    """Drives virtual users through the stages of a plan.

    Stages run strictly in order. Within a stage the desired concurrency
    is interpolated from the previous stage's target (0 for the first) to
    the stage's target, sampled every ``tick_interval`` seconds. Stage
    boundaries are measured from the start of the run so ticks do not
    accumulate drift.

    Retiring a user only sets its stop flag; the user finishes its
    current iteration before exiting. When the plan ends, or ``stop()``
    is called, the controller drains every user and waits for them.

    Example:
        >>> controller = RampController(plan, user_factory, stats)
        >>> @controller.on(RunEventType.STAGE_START)
        ... def announce(event):
        ...     print(f"stage {event.stage_index} started")
        >>> final = await controller.run()

    Attributes:
        plan: The stages to execute.
        user_factory: Called with a user index to build a VirtualUser.
        stats: Shared aggregator; also receives run-level errors.
        tick_interval: Seconds between concurrency adjustments.
        state: Current RunState.
        stage_index: Index of the running stage, or None.
        desired: Most recently computed target concurrency.
    """

    def __init__(
        self,
        plan: RunPlan,
        user_factory: UserFactory,
        stats: StatsAggregator,
        tick_interval: float = DEFAULT_TICK_INTERVAL,
    ) -> None:
        """Initialize the controller.

        Raises:
            ConfigurationError: If ``tick_interval`` is not positive.
        """
        if not math.isfinite(tick_interval) or tick_interval <= 0:
            raise ConfigurationError(f"tick_interval must be positive, got {tick_interval}")

        self.plan = plan
        self.user_factory = user_factory
        self.stats = stats
        self.tick_interval = tick_interval

        self.state = RunState.PENDING
        self.stage_index: int | None = None
        self.desired = 0
        self.ramp_duration = 0.0

        self._users: dict[int, tuple[VirtualUser, asyncio.Task]] = {}
        self._retiring: set[asyncio.Task] = set()
        self._next_index = 0
        self._stop_requested = False
        self._start_time: float | None = None
        self._event_handlers: dict[RunEventType, list[EventHandler]] = {
            event_type: [] for event_type in RunEventType
        }

    @property
    def active_count(self) -> int:
        """Users that have not been asked to stop."""
        return len(self._users)

    @property
    def elapsed(self) -> float:
        if self._start_time is None:
            return 0.0
        return time.monotonic() - self._start_time

    def active_users(self) -> list[VirtualUser]:
        return [user for user, _ in self._users.values()]

    def on(
        self,
        event_type: RunEventType,
        handler: EventHandler | None = None,
    ) -> EventHandler | Callable[[EventHandler], EventHandler]:
        """Register an event handler.

        Can be used as a decorator or direct call:
            @controller.on(RunEventType.TICK)
            def handler(event): pass

            # Or:
            controller.on(RunEventType.TICK, handler)
        """
        def _register(h: EventHandler) -> EventHandler:
            self._event_handlers[event_type].append(h)
            return h

        if handler is not None:
            return _register(handler)
        return _register

    def _emit(self, event_type: RunEventType, **kwargs: Any) -> None:
        handlers = self._event_handlers[event_type]
        if not handlers:
            return

        stats = None
        if event_type in (RunEventType.TICK, RunEventType.COMPLETE):
            stats = self.stats.snapshot()

        event = RunEvent(
            event_type=event_type,
            elapsed=self.elapsed,
            stage_index=self.stage_index,
            desired=self.desired,
            active=self.active_count,
            stats=stats,
            metadata=kwargs,
        )
        for handler in handlers:
            try:
                handler(event)
            except Exception:
                logger.exception("%s handler %r failed", event_type.name, handler)

    async def run(self) -> RunStats:
        """Execute every stage, then drain.

        Returns:
            Final stats snapshot.

        Raises:
            RuntimeError: If the controller has already run.
        """
        if self.state is not RunState.PENDING:
            raise RuntimeError(f"Controller already ran (state: {self.state.name})")

        self._start_time = time.monotonic()
        self.state = RunState.RAMPING
        logger.info(
            "starting run: %d stages, %.1fs, peak %d users",
            len(self.plan),
            self.plan.total_duration,
            self.plan.peak_target,
        )
        self._emit(RunEventType.START)

        try:
            for index, stage in enumerate(self.plan):
                if self._stop_requested:
                    break
                await self._run_stage(index, stage)
        finally:
            self.ramp_duration = self.elapsed
            await self._drain()

        return self.stats.snapshot()

    async def _run_stage(self, index: int, stage: Stage) -> None:
        stage_start = self._start_time + self.plan.stage_start(index)
        stage_end = stage_start + stage.duration

        self.stage_index = index
        logger.info(
            "stage %d/%d: %d -> %d users over %.1fs",
            index + 1,
            len(self.plan),
            self.plan.start_target(index),
            stage.target,
            stage.duration,
        )
        self._emit(RunEventType.STAGE_START, target=stage.target, duration=stage.duration)

        while not self._stop_requested:
            now = time.monotonic()
            if now >= stage_end:
                break
            self._reconcile(self.plan.target_in_stage(index, now - stage_start))
            self._emit(RunEventType.TICK)
            await asyncio.sleep(min(self.tick_interval, stage_end - now))

        if self._stop_requested:
            return

        self._reconcile(stage.target)
        self._emit(RunEventType.STAGE_END, target=stage.target)

    def _reconcile(self, desired: int) -> None:
        """Spawn or retire users until the active count equals ``desired``."""
        self.desired = desired
        shortfall = desired - len(self._users)

        if shortfall > 0:
            for _ in range(shortfall):
                if not self._spawn():
                    # Remaining shortfall is retried on the next tick
                    break
        elif shortfall < 0:
            self._retire(-shortfall)

        self.stats.set_active_users(len(self._users))

    def _spawn(self) -> bool:
        index = self._next_index
        try:
            user = self.user_factory(index)
            task = asyncio.create_task(self._run_user(user), name=f"virtual-user-{index}")
        except SPAWN_ERRORS as e:
            self.stats.record_run_error(f"spawn failed: {type(e).__name__}: {e}")
            logger.warning("could not start virtual user %d, retrying next tick: %s", index, e)
            return False

        self._next_index += 1
        self._users[index] = (user, task)
        task.add_done_callback(lambda t, i=index: self._on_user_done(i, t))
        return True

    def _retire(self, count: int) -> None:
        # Newest users go first
        for index in sorted(self._users, reverse=True)[:count]:
            user, task = self._users.pop(index)
            user.retire()
            self._retiring.add(task)

    async def _run_user(self, user: VirtualUser) -> None:
        try:
            await user.run()
        except Exception as e:
            self.stats.record_run_error(f"virtual user crashed: {type(e).__name__}: {e}")
            logger.exception("virtual user %d crashed", user.index)

    def _on_user_done(self, index: int, task: asyncio.Task) -> None:
        self._retiring.discard(task)
        entry = self._users.get(index)
        if entry is not None and entry[1] is task:
            # Exited on its own; the next tick replaces it
            del self._users[index]

    async def _drain(self) -> None:
        self.state = RunState.DRAINING
        logger.info("draining %d users", len(self._users) + len(self._retiring))
        self._emit(RunEventType.DRAIN)

        self._retire(len(self._users))
        self.stats.set_active_users(0)

        pending = list(self._retiring)
        if pending:
            await asyncio.gather(*pending, return_exceptions=True)
        self._retiring.clear()

        self.state = RunState.COMPLETED
        logger.info("run completed after %.2fs", self.elapsed)
        self._emit(RunEventType.COMPLETE)

    def stop(self) -> None:
        """Stop the run.

        Every user is told to exit after its current iteration; the
        controller moves to draining at its next tick.
        """
        if self._stop_requested:
            return
        self._stop_requested = True
        logger.info("stop requested")
        for user, _ in self._users.values():
            user.retire()

    def snapshot(self) -> RunStats:
        return self.stats.snapshot()

    def __repr__(self) -> str:
        return (
            f"RampController(stages={len(self.plan)}, "
            f"state={self.state.name}, active={self.active_count})"
        )
