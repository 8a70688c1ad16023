"""Run configuration.

Build, validate, load and save the configuration of a ramp run. A config
file is JSON or YAML:

    target_url: http://localhost:80/pessoas
    request_method: POST
    stages:
      - {duration: 1s, target: 100}
      - {duration: 5s, target: 500}
      - {duration: 30s, target: 1000}
    checks:
      - {name: success login, status: 200}

Validation collects every problem and raises one ConfigurationError
before anything runs.
"""

from __future__ import annotations

import json
import math
from collections.abc import Mapping
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

import httpx
import yaml

from rampload.checks import Check, build_checks
from rampload.client import METHODS, Request
from rampload.controller import DEFAULT_TICK_INTERVAL
from rampload.errors import ConfigurationError
from rampload.plan import RunPlan, Stage, parse_duration

DEFAULT_FAILURE_EXIT_CODE = 99


@dataclass(frozen=True)
class Thresholds:
    """Limits that turn a completed run into a failing exit status.

    Attributes:
        max_run_errors: Most controller-level errors tolerated.
            ``None`` tolerates any number.
        max_check_failure_rate: Highest percentage of failing checks
            tolerated. ``None`` means check failures never fail the run.
    """

    max_run_errors: int | None = None
    max_check_failure_rate: float | None = None

    @classmethod
    def from_dict(cls, data: Mapping[str, Any] | None) -> Thresholds:
        data = data or {}
        unknown = set(data) - {"max_run_errors", "max_check_failure_rate"}
        if unknown:
            raise ConfigurationError(f"Unknown threshold(s): {', '.join(sorted(unknown))}")
        run_errors = data.get("max_run_errors")
        failure_rate = data.get("max_check_failure_rate")
        return cls(
            max_run_errors=int(run_errors) if run_errors is not None else None,
            max_check_failure_rate=float(failure_rate) if failure_rate is not None else None,
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "max_run_errors": self.max_run_errors,
            "max_check_failure_rate": self.max_check_failure_rate,
        }


@dataclass(frozen=True)
class RunConfig:
    """Everything a ramp run needs.

    Attributes:
        stages: The ramp plan.
        target_url: Endpoint every virtual user hits.
        request_method: HTTP method.
        payload: Request body, if any.
        headers: Request headers.
        checks: Checks applied to every response.
        think_time: Pause between iterations in seconds.
        tick_interval: Controller sampling interval in seconds.
        request_timeout: Per-request timeout in seconds.
        iterations_per_user: Iteration budget per virtual user.
        expected_statuses: Status codes not counted as failed requests.
        thresholds: Exit-status thresholds.
        failure_exit_code: Exit status when a threshold is exceeded.
        name: Display name of the run.
    """

    stages: RunPlan
    target_url: str
    request_method: str = "GET"
    payload: bytes | None = None
    headers: dict[str, str] = field(default_factory=dict)
    checks: tuple[Check, ...] = ()
    think_time: float = 0.0
    tick_interval: float = DEFAULT_TICK_INTERVAL
    request_timeout: float = 30.0
    iterations_per_user: int | None = None
    expected_statuses: tuple[int, ...] = tuple(range(200, 400))
    thresholds: Thresholds = field(default_factory=Thresholds)
    failure_exit_code: int = DEFAULT_FAILURE_EXIT_CODE
    name: str = "Ramp Test"

    def validate(self) -> None:
        """Check the config as a whole.

        Raises:
            ConfigurationError: Listing every issue found.
        """
        issues = collect_issues(self)
        if issues:
            raise ConfigurationError(
                issues[0] if len(issues) == 1 else f"{len(issues)} configuration problems",
                suggestion="Fix the configuration and try again. `rampload validate FILE` checks it without running.",
                issues=issues,
            )

    def build_request(self) -> Request:
        """The fixed request every iteration sends."""
        return Request(
            method=self.request_method,
            url=self.target_url,
            headers=dict(self.headers),
            body=self.payload,
            timeout=self.request_timeout,
        )


def collect_issues(config: RunConfig) -> list[str]:
    """Return every validation problem in ``config``."""
    issues = []

    try:
        url = httpx.URL(config.target_url)
    except (httpx.InvalidURL, TypeError) as e:
        issues.append(f"Malformed target_url {config.target_url!r}: {e}")
    else:
        if url.scheme not in ("http", "https"):
            issues.append(f"target_url must use http or https: {config.target_url!r}")
        elif not url.host:
            issues.append(f"target_url has no host: {config.target_url!r}")

    if config.request_method not in METHODS:
        issues.append(
            f"Unknown request_method {config.request_method!r}; use one of: {', '.join(METHODS)}"
        )
    if config.payload is not None and not isinstance(config.payload, bytes):
        issues.append("payload must be bytes")
    if not math.isfinite(config.think_time) or config.think_time < 0:
        issues.append(f"think_time must be a finite non-negative number, got {config.think_time}")
    if not math.isfinite(config.tick_interval) or config.tick_interval <= 0:
        issues.append(f"tick_interval must be a finite positive number, got {config.tick_interval}")
    if not math.isfinite(config.request_timeout) or config.request_timeout <= 0:
        issues.append(f"request_timeout must be a finite positive number, got {config.request_timeout}")
    if config.iterations_per_user is not None and config.iterations_per_user < 1:
        issues.append(f"iterations_per_user must be at least 1, got {config.iterations_per_user}")
    if not config.expected_statuses:
        issues.append("expected_statuses must not be empty")

    thresholds = config.thresholds
    if thresholds.max_run_errors is not None and thresholds.max_run_errors < 0:
        issues.append(f"max_run_errors must be non-negative, got {thresholds.max_run_errors}")
    rate = thresholds.max_check_failure_rate
    if rate is not None and not 0 <= rate <= 100:
        issues.append(f"max_check_failure_rate must be between 0 and 100, got {rate}")
    if not 1 <= config.failure_exit_code <= 255:
        issues.append(f"failure_exit_code must be between 1 and 255, got {config.failure_exit_code}")

    return issues


def _payload_from(data: Mapping[str, Any]) -> tuple[bytes | None, dict[str, str]]:
    headers = {str(k): str(v) for k, v in (data.get("headers") or {}).items()}
    if "json" in data and data["json"] is not None:
        if data.get("payload") is not None:
            raise ConfigurationError("Set either 'payload' or 'json', not both")
        headers.setdefault("Content-Type", "application/json")
        return json.dumps(data["json"]).encode(), headers

    payload = data.get("payload")
    if payload is None:
        return None, headers
    if isinstance(payload, str):
        return payload.encode(), headers
    if isinstance(payload, (bytes, bytearray)):
        return bytes(payload), headers
    raise ConfigurationError(f"payload must be a string, got {type(payload).__name__}")


_KNOWN_KEYS = {
    "name",
    "stages",
    "target_url",
    "request_method",
    "payload",
    "json",
    "headers",
    "checks",
    "think_time",
    "tick_interval",
    "request_timeout",
    "iterations_per_user",
    "expected_statuses",
    "thresholds",
    "failure_exit_code",
}


def from_dict(data: Mapping[str, Any]) -> RunConfig:
    """Create a RunConfig from its dictionary form and validate it.

    Args:
        data: Configuration dictionary.

    Returns:
        Validated RunConfig.

    Raises:
        ConfigurationError: If anything is missing or invalid.
    """
    if not isinstance(data, Mapping):
        raise ConfigurationError(f"Configuration must be a mapping, got {type(data).__name__}")

    unknown = set(data) - _KNOWN_KEYS
    if unknown:
        raise ConfigurationError(
            f"Unknown option(s): {', '.join(sorted(unknown))}",
            suggestion=f"Recognized options: {', '.join(sorted(_KNOWN_KEYS))}",
        )
    for key in ("stages", "target_url"):
        if key not in data:
            raise ConfigurationError(f"Missing required option '{key}'")

    payload, headers = _payload_from(data)
    method = str(data.get("request_method", "GET")).upper()

    try:
        config = RunConfig(
            name=str(data.get("name", "Ramp Test")),
            stages=RunPlan.from_stages(data["stages"]),
            target_url=str(data["target_url"]),
            request_method=method,
            payload=payload,
            headers=headers,
            checks=build_checks(data.get("checks")),
            think_time=parse_duration(data.get("think_time", 0)),
            tick_interval=parse_duration(data.get("tick_interval", DEFAULT_TICK_INTERVAL)),
            request_timeout=parse_duration(data.get("request_timeout", 30)),
            iterations_per_user=(
                int(data["iterations_per_user"])
                if data.get("iterations_per_user") is not None
                else None
            ),
            expected_statuses=tuple(
                int(code) for code in data.get("expected_statuses", range(200, 400))
            ),
            thresholds=Thresholds.from_dict(data.get("thresholds")),
            failure_exit_code=int(data.get("failure_exit_code", DEFAULT_FAILURE_EXIT_CODE)),
        )
    except (TypeError, ValueError) as e:
        raise ConfigurationError(f"Invalid configuration: {e}") from e

    config.validate()
    return config


def to_dict(config: RunConfig) -> dict[str, Any]:
    """Convert a RunConfig to a dictionary.

    Checks hold arbitrary predicates and are not serialized.
    """
    data: dict[str, Any] = {
        "name": config.name,
        "target_url": config.target_url,
        "request_method": config.request_method,
        "stages": config.stages.to_list(),
        "headers": dict(config.headers),
        "think_time": config.think_time,
        "tick_interval": config.tick_interval,
        "request_timeout": config.request_timeout,
        "thresholds": config.thresholds.to_dict(),
        "failure_exit_code": config.failure_exit_code,
    }
    if config.payload is not None:
        data["payload"] = config.payload.decode("utf-8", errors="replace")
    if config.iterations_per_user is not None:
        data["iterations_per_user"] = config.iterations_per_user
    if config.expected_statuses != tuple(range(200, 400)):
        data["expected_statuses"] = list(config.expected_statuses)
    return data


def load(path: str | Path) -> RunConfig:
    """Load a run configuration (auto-detects format from extension).

    Args:
        path: File path (.json or .yaml/.yml)

    Returns:
        Validated RunConfig.

    Raises:
        FileNotFoundError: If the file doesn't exist.
        ConfigurationError: If the file cannot be parsed or is invalid.
    """
    path = Path(path)

    if not path.exists():
        raise FileNotFoundError(f"Config file not found: {path}")

    with open(path) as f:
        try:
            if path.suffix in (".yaml", ".yml"):
                data = yaml.safe_load(f)
            else:
                data = json.load(f)
        except (yaml.YAMLError, json.JSONDecodeError) as e:
            raise ConfigurationError(f"Could not parse {path}: {e}") from e

    return from_dict(data or {})


def save(config: RunConfig | Mapping[str, Any], path: str | Path) -> Path:
    """Save a run configuration (auto-detects format from extension).

    Args:
        config: RunConfig or its dictionary form.
        path: File path (.json or .yaml/.yml)

    Returns:
        The path written.
    """
    path = Path(path)
    data = to_dict(config) if isinstance(config, RunConfig) else dict(config)

    with open(path, "w") as f:
        if path.suffix in (".yaml", ".yml"):
            yaml.safe_dump(data, f, default_flow_style=False, sort_keys=False)
        else:
            json.dump(data, f, indent=2)

    return path


def starter_config() -> dict[str, Any]:
    """Dictionary form of the classic three-stage POST ramp."""
    return {
        "name": "pessoas ramp",
        "target_url": "http://localhost:80/pessoas",
        "request_method": "POST",
        "stages": [
            Stage(1.0, 100).to_dict(),
            Stage(5.0, 500).to_dict(),
            Stage(30.0, 1000).to_dict(),
        ],
        "checks": [{"name": "success login", "status": 200}],
    }


def generate_config_file(
    output: str | Path = "rampload.yaml",
    target_url: str | None = None,
    request_method: str | None = None,
) -> Path:
    """Write a starter configuration file.

    Args:
        output: Output file path.
        target_url: Override the starter endpoint.
        request_method: Override the starter method.

    Returns:
        Path to the generated file.
    """
    data = starter_config()
    if target_url:
        data["target_url"] = target_url
    if request_method:
        data["request_method"] = request_method.upper()

    # Reject bad overrides before writing anything
    from_dict(data)
    return save(data, output)
