"""Ramp plans: ordered, immutable sequences of stages.

A stage says "over this duration, move the number of active virtual
users linearly to this target". The first stage ramps from zero; each
following stage ramps from the previous stage's target.

Example:
    >>> plan = RunPlan.from_stages([
    ...     {"duration": "1s", "target": 100},
    ...     {"duration": "5s", "target": 500},
    ...     {"duration": "30s", "target": 1000},
    ... ])
    >>> plan.total_duration
    36.0
    >>> plan.target_at(3.5)
    300
"""

from __future__ import annotations

import math
import re
from collections.abc import Iterable, Iterator, Mapping
from dataclasses import dataclass
from typing import Any

from rampload.errors import ConfigurationError

_DURATION_PART = re.compile(r"(\d+(?:\.\d+)?)(ms|h|m|s)")

_UNIT_SECONDS = {
    "ms": 0.001,
    "s": 1.0,
    "m": 60.0,
    "h": 3600.0,
}


def parse_duration(value: str | float | int) -> float:
    """Parse a duration into seconds.

    Accepts plain numbers (seconds) and strings in the ``"1h2m3s"``,
    ``"500ms"``, ``"1.5s"`` form. A bare numeric string is read as seconds.

    Args:
        value: Duration to parse.

    Returns:
        Duration in seconds.

    Raises:
        ConfigurationError: If the value cannot be parsed or is not finite.
    """
    if isinstance(value, bool):
        raise ConfigurationError(f"Invalid duration: {value!r}")
    if isinstance(value, (int, float)):
        return _finite(float(value), value)

    text = str(value).strip().lower()
    if not text:
        raise ConfigurationError("Empty duration")

    try:
        return _finite(float(text), value)
    except ValueError:
        pass

    total = 0.0
    position = 0
    for match in _DURATION_PART.finditer(text):
        if match.start() != position:
            break
        total += float(match.group(1)) * _UNIT_SECONDS[match.group(2)]
        position = match.end()

    if position != len(text) or position == 0:
        raise ConfigurationError(
            f"Invalid duration: {value!r}",
            suggestion='Use seconds or a unit string such as "500ms", "30s", "1m30s" or "1h".',
        )
    return _finite(total, value)


def _finite(seconds: float, value: object) -> float:
    if not math.isfinite(seconds):
        raise ConfigurationError(f"Duration must be finite, got {value!r}")
    return seconds


def format_duration(seconds: float) -> str:
    """Format seconds the way durations are written in config files."""
    if seconds < 1:
        return f"{seconds * 1000:g}ms"
    minutes, secs = divmod(seconds, 60)
    if minutes >= 1:
        return f"{int(minutes)}m{secs:g}s" if secs else f"{int(minutes)}m"
    return f"{secs:g}s"


@dataclass(frozen=True)
class Stage:
    """A single ramp stage.

    Attributes:
        duration: Length of the stage in seconds.
        target: Number of active virtual users at the end of the stage.
    """

    duration: float
    target: int

    def __post_init__(self) -> None:
        if isinstance(self.target, bool) or not isinstance(self.target, int):
            raise ConfigurationError(f"Stage target must be an integer, got {self.target!r}")
        if not math.isfinite(self.duration) or self.duration <= 0:
            raise ConfigurationError(f"Stage duration must be positive, got {self.duration}")
        if self.target < 0:
            raise ConfigurationError(f"Stage target must be non-negative, got {self.target}")

    @classmethod
    def from_value(cls, value: Stage | Mapping[str, Any] | tuple[Any, Any]) -> Stage:
        """Build a stage from a mapping, a ``(duration, target)`` pair or a Stage."""
        if isinstance(value, Stage):
            return value
        if isinstance(value, Mapping):
            if "duration" not in value or "target" not in value:
                raise ConfigurationError(
                    f"Stage needs 'duration' and 'target': {dict(value)!r}",
                    suggestion='Example: {"duration": "30s", "target": 100}',
                )
            duration, target = value["duration"], value["target"]
        else:
            try:
                duration, target = value
            except (TypeError, ValueError):
                raise ConfigurationError(f"Invalid stage: {value!r}") from None
        return cls(duration=parse_duration(duration), target=target)

    def to_dict(self) -> dict[str, Any]:
        return {"duration": format_duration(self.duration), "target": self.target}


class RunPlan:
    """Immutable ordered sequence of stages.

    The plan is validated once on construction; the controller only reads
    it afterwards.

    Attributes:
        stages: The stages, in execution order.
    """

    __slots__ = ("_stages", "_starts")

    def __init__(self, stages: Iterable[Stage]) -> None:
        """Initialize the plan.

        Args:
            stages: Stages in execution order.

        Raises:
            ConfigurationError: If the plan is empty or a stage is invalid.
        """
        frozen = tuple(stages)
        if not frozen:
            raise ConfigurationError(
                "Run plan has no stages",
                suggestion='Add at least one stage, e.g. {"duration": "30s", "target": 10}',
            )
        for stage in frozen:
            if not isinstance(stage, Stage):
                raise ConfigurationError(f"Not a Stage: {stage!r}")

        starts = []
        offset = 0.0
        for stage in frozen:
            starts.append(offset)
            offset += stage.duration

        self._stages = frozen
        self._starts = tuple(starts)

    @classmethod
    def from_stages(cls, stages: Iterable[Stage | Mapping[str, Any] | tuple[Any, Any]]) -> RunPlan:
        """Build a plan from loosely typed stage definitions."""
        return cls(Stage.from_value(stage) for stage in stages)

    @property
    def stages(self) -> tuple[Stage, ...]:
        return self._stages

    @property
    def total_duration(self) -> float:
        """Sum of all stage durations in seconds."""
        return self._starts[-1] + self._stages[-1].duration

    @property
    def peak_target(self) -> int:
        """Largest concurrency any stage asks for."""
        return max(stage.target for stage in self._stages)

    def stage_start(self, index: int) -> float:
        """Offset from run start at which stage ``index`` begins."""
        return self._starts[index]

    def start_target(self, index: int) -> int:
        """Concurrency at the start of stage ``index``."""
        return 0 if index == 0 else self._stages[index - 1].target

    def stage_at(self, elapsed: float) -> tuple[int, float]:
        """Locate the stage running at ``elapsed`` seconds into the run.

        Args:
            elapsed: Seconds since the run started.

        Returns:
            ``(stage_index, seconds_into_stage)``. Past the end of the plan
            this is the last stage, clamped to its duration.
        """
        if elapsed <= 0:
            return 0, 0.0
        for index in range(len(self._stages) - 1, -1, -1):
            if elapsed >= self._starts[index]:
                within = min(elapsed - self._starts[index], self._stages[index].duration)
                return index, within
        return 0, 0.0

    def target_in_stage(self, index: int, stage_elapsed: float) -> int:
        """Interpolated concurrency ``stage_elapsed`` seconds into stage ``index``."""
        stage = self._stages[index]
        start = self.start_target(index)
        progress = min(max(stage_elapsed / stage.duration, 0.0), 1.0)
        return int(round(start + progress * (stage.target - start)))

    def target_at(self, elapsed: float) -> int:
        """Interpolated concurrency ``elapsed`` seconds into the run."""
        index, within = self.stage_at(elapsed)
        return self.target_in_stage(index, within)

    def to_list(self) -> list[dict[str, Any]]:
        return [stage.to_dict() for stage in self._stages]

    def __len__(self) -> int:
        return len(self._stages)

    def __iter__(self) -> Iterator[Stage]:
        return iter(self._stages)

    def __getitem__(self, index: int) -> Stage:
        return self._stages[index]

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, RunPlan):
            return NotImplemented
        return self._stages == other._stages

    def __hash__(self) -> int:
        return hash(self._stages)

    def __repr__(self) -> str:
        stages = ", ".join(f"{format_duration(s.duration)}->{s.target}" for s in self._stages)
        return f"RunPlan({stages})"
