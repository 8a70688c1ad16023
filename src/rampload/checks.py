"""Named checks evaluated against every response.

A check is a name plus a predicate over ``Response``. Checks never stop
an iteration: a false result, or a predicate that raises, is recorded as
a failed ``CheckResult`` and the virtual user moves on.

Example:
    >>> checks = [Check("success login", status_is(200))]
    >>> run_checks(checks, Response(status_code=200))
    [CheckResult(name='success login', passed=True, error=None)]
"""

from __future__ import annotations

from collections.abc import Iterable, Mapping
from dataclasses import dataclass
from typing import Any, Callable

from rampload.client import Response
from rampload.errors import ConfigurationError
from rampload.plan import parse_duration

Predicate = Callable[[Response], bool]


@dataclass(frozen=True)
class CheckResult:
    """Outcome of one check on one response."""

    name: str
    passed: bool
    error: str | None = None


@dataclass(frozen=True)
class Check:
    """A named assertion on a response."""

    name: str
    predicate: Predicate

    def evaluate(self, response: Response) -> CheckResult:
        try:
            passed = bool(self.predicate(response))
        except Exception as e:
            return CheckResult(self.name, False, f"{type(e).__name__}: {e}")
        return CheckResult(self.name, passed)

    def fail(self, reason: str) -> CheckResult:
        """Result recorded when there is no response to evaluate."""
        return CheckResult(self.name, False, reason)


def status_is(code: int) -> Predicate:
    return lambda r: r.status_code == code


def status_in(codes: Iterable[int]) -> Predicate:
    allowed = frozenset(codes)
    return lambda r: r.status_code in allowed


def body_contains(text: str) -> Predicate:
    needle = text.encode()
    return lambda r: needle in r.body


def latency_below(seconds: float) -> Predicate:
    return lambda r: r.elapsed < seconds


def run_checks(checks: Iterable[Check], response: Response) -> list[CheckResult]:
    return [check.evaluate(response) for check in checks]


def fail_all(checks: Iterable[Check], reason: str) -> list[CheckResult]:
    return [check.fail(reason) for check in checks]


_DECLARATIVE = {
    "status": lambda v: status_is(int(v)),
    "status_in": lambda v: status_in(int(c) for c in v),
    "body_contains": lambda v: body_contains(str(v)),
    "max_latency": lambda v: latency_below(parse_duration(v)),
}


def check_from_dict(data: Mapping[str, Any]) -> Check:
    """Build a check from its config form.

    Exactly one of ``status``, ``status_in``, ``body_contains`` or
    ``max_latency`` must be given alongside ``name``.

    Raises:
        ConfigurationError: If the mapping is not a recognized check.
    """
    name = data.get("name")
    if not name or not isinstance(name, str):
        raise ConfigurationError(f"Check needs a 'name': {dict(data)!r}")

    kinds = [key for key in data if key in _DECLARATIVE]
    if len(kinds) != 1:
        raise ConfigurationError(
            f"Check {name!r} must set exactly one of: {', '.join(_DECLARATIVE)}",
            suggestion='Example: {"name": "success login", "status": 200}',
        )

    kind = kinds[0]
    try:
        predicate = _DECLARATIVE[kind](data[kind])
    except (TypeError, ValueError) as e:
        raise ConfigurationError(f"Check {name!r} has an invalid {kind!r}: {e}") from e

    return Check(name, predicate)


def build_checks(
    checks: Iterable[Check | Mapping[str, Any]] | Mapping[str, Predicate] | None,
) -> tuple[Check, ...]:
    """Normalize the accepted check forms into a tuple of ``Check``.

    Accepts a mapping of name to predicate, or an iterable whose items are
    ``Check`` objects or config mappings.

    Raises:
        ConfigurationError: On an unrecognized item or duplicate names.
    """
    if not checks:
        return ()

    built: list[Check] = []
    if isinstance(checks, Mapping):
        for name, predicate in checks.items():
            if not callable(predicate):
                raise ConfigurationError(f"Check {name!r} is not callable")
            built.append(Check(str(name), predicate))
    else:
        for item in checks:
            if isinstance(item, Check):
                built.append(item)
            elif isinstance(item, Mapping):
                built.append(check_from_dict(item))
            else:
                raise ConfigurationError(f"Unrecognized check: {item!r}")

    names = [check.name for check in built]
    duplicates = sorted({n for n in names if names.count(n) > 1})
    if duplicates:
        raise ConfigurationError(f"Duplicate check names: {', '.join(duplicates)}")

    return tuple(built)
