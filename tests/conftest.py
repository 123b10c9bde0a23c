"""
Test configuration and shared fixtures.

Provides registries, configurations and fake GitHub clients so unit tests
can exercise dispatch, scheduling and exposition without network access.
"""

from typing import Any
from unittest.mock import AsyncMock, Mock

import pytest

from github_exporter.config.models import Config, RepositoryRef
from github_exporter.github.client import GitHubClientConfig
from github_exporter.metrics.registry import MetricRegistry
from tests.fakes import FakePaginator


@pytest.fixture
def registry() -> MetricRegistry:
    """
    Fresh metric registry per test.

    Why: Registries are instance-scoped, so tests never leak samples
    What: Provides an empty MetricRegistry with all families declared
    How: Constructs a new instance for each test
    """
    return MetricRegistry()


@pytest.fixture
def default_repo() -> RepositoryRef:
    """Default repository used by configs in tests."""
    return RepositoryRef(owner="o", repository="r")


@pytest.fixture
def make_config():
    """
    Factory for validated configurations.

    Why: Most tests need a Config with a specific monitor list
    What: Returns a callable building Config from monitor dicts
    How: Goes through model validation like a loaded YAML file would
    """

    def _make(monitoring: list[dict[str, Any]] | None = None, **overrides: Any) -> Config:
        data: dict[str, Any] = {
            "owner": "o",
            "repository": "r",
            "monitoring": monitoring or [],
        }
        data.update(overrides)
        return Config(**data)

    return _make


@pytest.fixture
def mock_client() -> Mock:
    """
    Mock primary GitHub client.

    Why: Dispatch tests must not make real GitHub API calls
    What: Provides a Mock with the client operations the dispatcher uses
    How: AsyncMock for coroutine methods, a FakePaginator for issue listings
    """
    client = Mock()
    client.config = GitHubClientConfig()
    client.get_user = AsyncMock(return_value={"login": "exporter-bot"})
    client.get_rate_limit = AsyncMock(
        return_value={"rate": {"limit": 5000, "remaining": 4321, "reset": 0}}
    )
    client.list_workflow_runs = AsyncMock(
        return_value={"total_count": 0, "workflow_runs": []}
    )
    client.list_issues = Mock(return_value=FakePaginator([[]]))
    return client
