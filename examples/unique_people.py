#!/usr/bin/env python3
"""Unique payload per iteration example.

Each virtual user posts a different person on every iteration, so the
target never sees duplicate nicknames. Shows a custom request factory,
custom checks and streaming stats through a TICK handler.
"""

import asyncio
import dataclasses
import json
import sys
from pathlib import Path

# Add src to path for development
sys.path.insert(0, str(Path(__file__).parent.parent / "src"))

from rampload import Check, RampTest, Request, RunEvent, RunEventType, from_dict
from rampload.checks import latency_below, status_in

BASE_URL = "http://localhost:80"


def person_request(index: int, iteration: int) -> Request:
    """Build a POST for a person unique to this user and iteration."""
    body = {
        "apelido": f"vu{index}-{iteration}",
        "nome": f"Virtual User {index}",
        "nascimento": "2000-01-01",
        "stack": ["Python", "asyncio"],
    }
    return Request(
        method="POST",
        url=f"{BASE_URL}/pessoas",
        headers={"Content-Type": "application/json"},
        body=json.dumps(body).encode(),
        timeout=10.0,
    )


def print_tick(event: RunEvent) -> None:
    stats = event.stats
    print(
        f"[{event.elapsed:6.1f}s] users {event.active:4d}/{event.desired:<4d} "
        f"requests {stats.requests:6d} checks {stats.check_pass_rate:5.1f}%"
    )


async def main() -> int:
    config = from_dict({
        "name": "Unique People",
        "target_url": f"{BASE_URL}/pessoas",
        "request_method": "POST",
        "stages": [
            {"duration": "10s", "target": 50},
            {"duration": "20s", "target": 50},
            {"duration": "5s", "target": 0},
        ],
        "think_time": "100ms",
        "tick_interval": "1s",
        "thresholds": {"max_check_failure_rate": 5},
    })

    # Checks built in code can hold any predicate
    config = dataclasses.replace(config, checks=(
        Check("created", status_in([200, 201])),
        Check("under 500ms", latency_below(0.5)),
    ))
    test = RampTest(config, request_factory=person_request).on(RunEventType.TICK, print_tick)

    result = await test.run()
    print("\n" + test.report(format="console"))
    for failure in result.threshold_failures:
        print(f"✗ {failure}")
    return result.exit_code


if __name__ == "__main__":
    try:
        sys.exit(asyncio.run(main()))
    except KeyboardInterrupt:
        sys.exit(130)
