"""Prometheus metric registry for the exporter."""

from .registry import (
    CUSTOM,
    JOBS,
    PULL_REQUESTS,
    RATE_LIMIT,
    MetricRegistry,
    UnknownMetricError,
)

__all__ = [
    "CUSTOM",
    "JOBS",
    "PULL_REQUESTS",
    "RATE_LIMIT",
    "MetricRegistry",
    "UnknownMetricError",
]
