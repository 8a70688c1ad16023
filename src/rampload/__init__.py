"""rampload - ramp virtual users against an HTTP endpoint.

Quick Start:
    >>> from rampload import RampTest, from_dict
    >>> config = from_dict({
    ...     "target_url": "http://localhost:80/pessoas",
    ...     "request_method": "POST",
    ...     "stages": [
    ...         {"duration": "1s", "target": 100},
    ...         {"duration": "5s", "target": 500},
    ...         {"duration": "30s", "target": 1000},
    ...     ],
    ...     "checks": [{"name": "success login", "status": 200}],
    ... })
    >>> result = asyncio.run(RampTest(config).run())
    >>> result.stats.check_pass_rate
"""

from rampload.__version__ import __author__, __email__, __license__, __version__
from rampload.checks import Check, CheckResult
from rampload.client import HTTPClient, HttpxClient, Request, Response
from rampload.config import RunConfig, Thresholds, from_dict, load
from rampload.controller import RampController, RunEvent, RunEventType, RunState
from rampload.core import RampTest, RunResult
from rampload.errors import ConfigurationError, RampLoadError
from rampload.metrics.collector import RunStats, StatsAggregator
from rampload.plan import RunPlan, Stage
from rampload.user import VirtualUser

__all__ = [
    "Check",
    "CheckResult",
    "ConfigurationError",
    "HTTPClient",
    "HttpxClient",
    "RampController",
    "RampLoadError",
    "RampTest",
    "Request",
    "Response",
    "RunConfig",
    "RunEvent",
    "RunEventType",
    "RunPlan",
    "RunResult",
    "RunState",
    "RunStats",
    "Stage",
    "StatsAggregator",
    "Thresholds",
    "VirtualUser",
    "from_dict",
    "load",
    "__version__",
    "__author__",
    "__email__",
    "__license__",
]
