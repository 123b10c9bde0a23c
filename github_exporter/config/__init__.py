"""Configuration for the GitHub exporter.

Example usage:
    from github_exporter.config import load_config, resolve_repository

    config = load_config("config.yaml")
    for monitor in config.monitoring:
        print(monitor.describe(), resolve_repository(monitor, config.default_repo))
"""

from .exceptions import (
    ConfigurationError,
    ConfigurationFileError,
    ConfigurationValidationError,
)
from .loader import ConfigurationLoader, load_config
from .models import (
    AnyMonitor,
    Config,
    CustomMonitor,
    JobMonitor,
    Monitor,
    PrometheusMetric,
    PRStatus,
    PullRequestsMonitor,
    RateLimitMonitor,
    RepositoryRef,
    resolve_repository,
)

__all__ = [
    "AnyMonitor",
    "Config",
    "ConfigurationError",
    "ConfigurationFileError",
    "ConfigurationLoader",
    "ConfigurationValidationError",
    "CustomMonitor",
    "JobMonitor",
    "Monitor",
    "PRStatus",
    "PrometheusMetric",
    "PullRequestsMonitor",
    "RateLimitMonitor",
    "RepositoryRef",
    "load_config",
    "resolve_repository",
]
