"""Prometheus exporter for GitHub workflow queues, pull requests and rate limits."""

__version__ = "0.1.0"
