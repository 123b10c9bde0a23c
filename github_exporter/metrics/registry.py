"""Metric registry shared by the scheduler and the exposition server.

Each registry owns a private ``prometheus_client`` collector registry, so
independent instances never see each other's samples. Writers set the
current value of a labelled gauge; readers render every family in the
Prometheus text exposition format.

Individual label-tuple updates are atomic (``prometheus_client`` guards
each child with a lock). There is no cross-key consistency: a scrape taken
mid-tick may mix values from the previous tick and the current one.
"""

import logging
from collections.abc import Sequence

from prometheus_client import (
    CONTENT_TYPE_LATEST,
    CollectorRegistry,
    Counter,
    Gauge,
    generate_latest,
)

logger = logging.getLogger(__name__)

JOBS = "github_jobs"
PULL_REQUESTS = "github_pull_requests"
RATE_LIMIT = "github_rate_limit"
CUSTOM = "github_custom"

# (name, help, label names)
GAUGE_FAMILIES: tuple[tuple[str, str, tuple[str, ...]], ...] = (
    (
        PULL_REQUESTS,
        "Number of pull requests",
        ("owner", "repository", "status", "label"),
    ),
    (
        JOBS,
        "Number of jobs",
        ("owner", "repository", "status", "workflow"),
    ),
    (
        RATE_LIMIT,
        "Remaining GitHub API rate limit",
        ("username",),
    ),
    (
        CUSTOM,
        "Custom metric",
        ("owner", "repository", "url", "query", "monitor", "prometheus_metric"),
    ),
)


class UnknownMetricError(KeyError):
    """Raised when writing to a metric family that was never declared."""


class MetricRegistry:
    """Named, labelled integer gauges with text exposition."""

    content_type = CONTENT_TYPE_LATEST

    def __init__(self) -> None:
        """Create a registry with every exporter family declared."""
        self.registry = CollectorRegistry()
        self._gauges: dict[str, Gauge] = {}
        self._labelnames: dict[str, tuple[str, ...]] = {}

        for name, documentation, labelnames in GAUGE_FAMILIES:
            self._gauges[name] = Gauge(
                name, documentation, labelnames, registry=self.registry
            )
            self._labelnames[name] = labelnames

        self.dispatch_errors = Counter(
            "github_exporter_dispatch_errors",
            "Monitor dispatches that failed, by monitor and reason",
            ("monitor", "reason"),
            registry=self.registry,
        )

    def _gauge(self, metric_name: str) -> Gauge:
        try:
            return self._gauges[metric_name]
        except KeyError:
            raise UnknownMetricError(metric_name) from None

    def set(self, metric_name: str, label_values: Sequence[str], value: int) -> None:
        """Overwrite the gauge for one exact label tuple.

        Args:
            metric_name: Declared family name
            label_values: Label values, in the family's label order
            value: Current observed value

        Raises:
            UnknownMetricError: If the family is not declared
            ValueError: If the number of label values does not match
        """
        gauge = self._gauge(metric_name)
        gauge.labels(*label_values).set(int(value))
        logger.debug(f"Set {metric_name}{tuple(label_values)} = {int(value)}")

    def get(self, metric_name: str, label_values: Sequence[str]) -> int | None:
        """Current value for one label tuple, or None if never written."""
        self._gauge(metric_name)
        labelnames = self._labelnames[metric_name]
        if len(labelnames) != len(label_values):
            raise ValueError(
                f"{metric_name} expects {len(labelnames)} label values, "
                f"got {len(label_values)}"
            )
        value = self.registry.get_sample_value(
            metric_name, dict(zip(labelnames, label_values, strict=True))
        )
        return None if value is None else int(value)

    def record_dispatch_error(self, monitor: str, reason: str) -> None:
        """Count one failed monitor dispatch."""
        self.dispatch_errors.labels(monitor, reason).inc()

    def dispatch_error_count(self, monitor: str, reason: str) -> int:
        """Failed dispatches recorded for a monitor and reason."""
        value = self.registry.get_sample_value(
            "github_exporter_dispatch_errors_total",
            {"monitor": monitor, "reason": reason},
        )
        return 0 if value is None else int(value)

    def render_all(self) -> bytes:
        """Serialize every family in the Prometheus text format."""
        return generate_latest(self.registry)
