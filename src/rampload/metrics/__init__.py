"""Run statistics."""

from __future__ import annotations

from rampload.metrics.collector import RunStats, StatsAggregator, percentile

__all__ = ["RunStats", "StatsAggregator", "percentile"]
