"""
Unit tests for the monitor dispatcher.

Why: Each monitor kind translates a different GitHub response into one
     gauge sample, and failures must surface as typed monitor errors.

What: Tests MonitorDispatcher for job, pull request, rate limit and custom
      monitors.

How: Uses a mocked primary client and a mocked client factory, plus
     aioresponses behind a real GitHubClient for end-to-end dispatches.
"""

import time
from unittest.mock import AsyncMock, Mock

import pytest
from aioresponses import aioresponses

from github_exporter.config.models import (
    CustomMonitor,
    JobMonitor,
    PRStatus,
    PullRequestsMonitor,
    RateLimitMonitor,
    RepositoryRef,
)
from github_exporter.github.auth import PersonalAccessTokenAuth
from github_exporter.github.client import GitHubClient, GitHubClientConfig
from github_exporter.github.exceptions import (
    GitHubAuthenticationError,
    GitHubNotFoundError,
)
from github_exporter.metrics.registry import (
    JOBS,
    PULL_REQUESTS,
    RATE_LIMIT,
    MetricRegistry,
)
from github_exporter.monitors.dispatcher import MonitorDispatcher
from github_exporter.monitors.exceptions import (
    CredentialError,
    RemoteCallError,
    UnsupportedMonitorError,
)
from tests.fakes import FakePaginator, make_issue


@pytest.fixture
def dispatcher(registry: MetricRegistry) -> MonitorDispatcher:
    """Dispatcher with an empty environment."""
    return MonitorDispatcher(registry, environ={})


class TestJobDispatch:
    """Test workflow run queue monitors."""

    @pytest.mark.asyncio
    async def test_total_count_recorded(
        self,
        dispatcher: MonitorDispatcher,
        registry: MetricRegistry,
        mock_client: Mock,
        default_repo: RepositoryRef,
    ) -> None:
        """
        Why: The job gauge reports how many runs match the workflow and status
        What: Tests total_count is written under the default repository
        How: Returns total_count 7 from the mocked client
        """
        mock_client.list_workflow_runs.return_value = {"total_count": 7}
        monitor = JobMonitor(workflow="build.yml", status="queued")

        await dispatcher.dispatch(mock_client, default_repo, monitor)

        mock_client.list_workflow_runs.assert_awaited_once_with(
            "o", "r", "build.yml", status="queued"
        )
        assert registry.get(JOBS, ("o", "r", "queued", "build.yml")) == 7

    @pytest.mark.asyncio
    async def test_override_repository(
        self,
        dispatcher: MonitorDispatcher,
        registry: MetricRegistry,
        mock_client: Mock,
        default_repo: RepositoryRef,
    ) -> None:
        """Test an override is queried and labelled instead of the default."""
        mock_client.list_workflow_runs.return_value = {"total_count": 2}
        monitor = JobMonitor(workflow="ci", owner="x", repository="y")

        await dispatcher.dispatch(mock_client, default_repo, monitor)

        mock_client.list_workflow_runs.assert_awaited_once_with(
            "x", "y", "ci", status=None
        )
        assert registry.get(JOBS, ("x", "y", "", "ci")) == 2
        assert registry.get(JOBS, ("o", "r", "", "ci")) is None

    @pytest.mark.asyncio
    async def test_missing_total_count_is_zero(
        self,
        dispatcher: MonitorDispatcher,
        registry: MetricRegistry,
        mock_client: Mock,
        default_repo: RepositoryRef,
    ) -> None:
        """Test an absent or null total_count records zero."""
        mock_client.list_workflow_runs.return_value = {"total_count": None}

        await dispatcher.dispatch(mock_client, default_repo, JobMonitor(workflow="ci"))

        assert registry.get(JOBS, ("o", "r", "", "ci")) == 0

    @pytest.mark.asyncio
    async def test_non_numeric_total_count(
        self,
        dispatcher: MonitorDispatcher,
        registry: MetricRegistry,
        mock_client: Mock,
        default_repo: RepositoryRef,
    ) -> None:
        """Test an unusable total_count is a remote error and writes nothing."""
        mock_client.list_workflow_runs.return_value = {"total_count": "many"}

        with pytest.raises(RemoteCallError):
            await dispatcher.dispatch(
                mock_client, default_repo, JobMonitor(workflow="ci")
            )

        assert registry.get(JOBS, ("o", "r", "", "ci")) is None

    @pytest.mark.asyncio
    async def test_github_error_wrapped(
        self,
        dispatcher: MonitorDispatcher,
        mock_client: Mock,
        default_repo: RepositoryRef,
    ) -> None:
        """Test client errors surface as RemoteCallError."""
        mock_client.list_workflow_runs.side_effect = GitHubNotFoundError(
            "Not Found", 404
        )

        with pytest.raises(RemoteCallError) as exc_info:
            await dispatcher.dispatch(
                mock_client, default_repo, JobMonitor(workflow="missing.yml")
            )

        assert exc_info.value.monitor == "job[missing.yml]"
        assert isinstance(exc_info.value.__cause__, GitHubNotFoundError)


class TestPullRequestDispatch:
    """Test pull request count monitors."""

    @pytest.mark.asyncio
    async def test_counts_only_pull_requests(
        self,
        dispatcher: MonitorDispatcher,
        registry: MetricRegistry,
        mock_client: Mock,
        default_repo: RepositoryRef,
    ) -> None:
        """
        Why: The issues listing mixes issues and pull requests
        What: Tests only entries with a pull_request key are counted
        How: Serves five entries over two pages, three of them pull requests
        """
        paginator = FakePaginator(
            [
                [make_issue(1, True), make_issue(2, False), make_issue(3, True)],
                [make_issue(4, False), make_issue(5, True)],
            ]
        )
        mock_client.list_issues.return_value = paginator
        monitor = PullRequestsMonitor(status="open", labels=["bug", "ui"])

        await dispatcher.dispatch(mock_client, default_repo, monitor)

        mock_client.list_issues.assert_called_once_with(
            "o", "r", state="open", labels=["bug", "ui"]
        )
        assert paginator.pages_fetched == 2
        assert registry.get(PULL_REQUESTS, ("o", "r", "open", "bug,ui")) == 3

    @pytest.mark.asyncio
    async def test_unset_status_and_labels(
        self,
        dispatcher: MonitorDispatcher,
        registry: MetricRegistry,
        mock_client: Mock,
        default_repo: RepositoryRef,
    ) -> None:
        """Test an unset status queries and labels as all, with no labels."""
        mock_client.list_issues.return_value = FakePaginator([[make_issue(1, True)]])

        await dispatcher.dispatch(mock_client, default_repo, PullRequestsMonitor())

        mock_client.list_issues.assert_called_once_with(
            "o", "r", state=PRStatus.ALL.api_state, labels=None
        )
        assert registry.get(PULL_REQUESTS, ("o", "r", "all", "")) == 1

    @pytest.mark.asyncio
    async def test_empty_listing(
        self,
        dispatcher: MonitorDispatcher,
        registry: MetricRegistry,
        mock_client: Mock,
        default_repo: RepositoryRef,
    ) -> None:
        """Test an empty listing records zero."""
        await dispatcher.dispatch(
            mock_client, default_repo, PullRequestsMonitor(status="closed")
        )

        assert registry.get(PULL_REQUESTS, ("o", "r", "closed", "")) == 0


class TestRateLimitDispatch:
    """Test rate limit monitors."""

    @pytest.mark.asyncio
    async def test_primary_credential(
        self,
        dispatcher: MonitorDispatcher,
        registry: MetricRegistry,
        mock_client: Mock,
        default_repo: RepositoryRef,
    ) -> None:
        """Test the remaining budget is labelled with the user's login."""
        await dispatcher.dispatch(mock_client, default_repo, RateLimitMonitor())

        assert registry.get(RATE_LIMIT, ("exporter-bot",)) == 4321

    @pytest.mark.asyncio
    async def test_alternate_credential(
        self,
        registry: MetricRegistry,
        mock_client: Mock,
        default_repo: RepositoryRef,
    ) -> None:
        """
        Why: A rate limit monitor may watch a token other than the primary
        What: Tests a secondary client is built from the named variable
        How: Injects a client factory and an environment mapping
        """
        local_client = Mock()
        local_client.get_user = AsyncMock(return_value={"login": "other-bot"})
        local_client.get_rate_limit = AsyncMock(
            return_value={"rate": {"limit": 5000, "remaining": 17}}
        )
        context = Mock()
        context.__aenter__ = AsyncMock(return_value=local_client)
        context.__aexit__ = AsyncMock(return_value=None)
        factory = Mock(return_value=context)

        dispatcher = MonitorDispatcher(
            registry, client_factory=factory, environ={"OTHER_PAT": "ghp_other"}
        )

        await dispatcher.dispatch(
            mock_client, default_repo, RateLimitMonitor(pat_env="OTHER_PAT")
        )

        auth, client_config = factory.call_args.args
        assert isinstance(auth, PersonalAccessTokenAuth)
        assert (await auth.get_token()).token == "ghp_other"
        assert client_config is mock_client.config
        context.__aexit__.assert_awaited_once()
        mock_client.get_user.assert_not_awaited()
        assert registry.get(RATE_LIMIT, ("other-bot",)) == 17

    @pytest.mark.asyncio
    async def test_alternate_credential_missing(
        self,
        dispatcher: MonitorDispatcher,
        registry: MetricRegistry,
        mock_client: Mock,
        default_repo: RepositoryRef,
    ) -> None:
        """Test an unset variable is a credential error and writes nothing."""
        with pytest.raises(CredentialError):
            await dispatcher.dispatch(
                mock_client, default_repo, RateLimitMonitor(pat_env="UNSET_PAT")
            )

        assert "github_rate_limit{" not in registry.render_all().decode()

    @pytest.mark.asyncio
    async def test_alternate_credential_rejected(
        self,
        registry: MetricRegistry,
        mock_client: Mock,
        default_repo: RepositoryRef,
    ) -> None:
        """Test a token GitHub rejects is a credential error."""
        local_client = Mock()
        local_client.get_user = AsyncMock(
            side_effect=GitHubAuthenticationError("Bad credentials", 401)
        )
        context = Mock()
        context.__aenter__ = AsyncMock(return_value=local_client)
        context.__aexit__ = AsyncMock(return_value=None)
        dispatcher = MonitorDispatcher(
            registry,
            client_factory=Mock(return_value=context),
            environ={"OTHER_PAT": "ghp_revoked"},
        )

        with pytest.raises(CredentialError):
            await dispatcher.dispatch(
                mock_client, default_repo, RateLimitMonitor(pat_env="OTHER_PAT")
            )

    @pytest.mark.asyncio
    async def test_missing_login(
        self,
        dispatcher: MonitorDispatcher,
        mock_client: Mock,
        default_repo: RepositoryRef,
    ) -> None:
        """Test a user response without login is a remote error."""
        mock_client.get_user.return_value = {}

        with pytest.raises(RemoteCallError):
            await dispatcher.dispatch(mock_client, default_repo, RateLimitMonitor())


class TestCustomDispatch:
    """Test custom monitors."""

    @pytest.mark.asyncio
    async def test_custom_unsupported(
        self,
        dispatcher: MonitorDispatcher,
        registry: MetricRegistry,
        mock_client: Mock,
        default_repo: RepositoryRef,
    ) -> None:
        """Test custom monitors fail without touching GitHub or the registry."""
        before = registry.render_all()
        monitor = CustomMonitor(url="https://example.com", prometheus_metric="Gauge")

        with pytest.raises(UnsupportedMonitorError) as exc_info:
            await dispatcher.dispatch(mock_client, default_repo, monitor)

        assert exc_info.value.reason == "unsupported"
        assert registry.render_all() == before
        mock_client.list_workflow_runs.assert_not_awaited()
        mock_client.get_user.assert_not_awaited()


class TestDispatchThroughClient:
    """Test dispatches against mocked GitHub responses."""

    API = "https://api.github.com"

    @pytest.fixture
    def github_client(self) -> GitHubClient:
        """Real client with retries disabled."""
        return GitHubClient(
            PersonalAccessTokenAuth("test_token"), GitHubClientConfig(max_retries=0)
        )

    @pytest.mark.asyncio
    async def test_pull_requests_counted_across_pages(
        self,
        dispatcher: MonitorDispatcher,
        registry: MetricRegistry,
        github_client: GitHubClient,
        default_repo: RepositoryRef,
    ) -> None:
        """
        Why: Counts must cover every page, whatever the header name casing
        What: Tests a lowercase link header is followed to the second page
        How: Serves one pull request per page with an issue in between
        """
        page_two = f"{self.API}/repositories/1/issues?page=2&per_page=100&state=all"
        with aioresponses() as mocked:
            mocked.get(
                f"{self.API}/repos/o/r/issues?per_page=100&state=all",
                payload=[make_issue(1, True), make_issue(2, False)],
                headers={"link": f'<{page_two}>; rel="next"'},
            )
            mocked.get(page_two, payload=[make_issue(3, True)])

            async with github_client:
                await dispatcher.dispatch(
                    github_client, default_repo, PullRequestsMonitor()
                )

        assert registry.get(PULL_REQUESTS, ("o", "r", "all", "")) == 2

    @pytest.mark.asyncio
    async def test_rate_limit_reported_when_nearly_spent(
        self,
        dispatcher: MonitorDispatcher,
        registry: MetricRegistry,
        github_client: GitHubClient,
        default_repo: RepositoryRef,
    ) -> None:
        """
        Why: The rate limit gauge matters most when the budget runs low
        What: Tests a budget below the local buffer is still recorded, twice
        How: Serves /user and /rate_limit reporting 8 remaining calls
        """
        headers = {
            "x-ratelimit-limit": "5000",
            "x-ratelimit-remaining": "8",
            "x-ratelimit-reset": str(int(time.time()) + 3600),
        }
        with aioresponses() as mocked:
            mocked.get(
                f"{self.API}/user",
                payload={"login": "octocat"},
                headers=headers,
                repeat=True,
            )
            mocked.get(
                f"{self.API}/rate_limit",
                payload={"rate": {"limit": 5000, "remaining": 8}},
                headers=headers,
                repeat=True,
            )

            async with github_client:
                for _ in range(2):
                    await dispatcher.dispatch(
                        github_client, default_repo, RateLimitMonitor()
                    )

        assert registry.get(RATE_LIMIT, ("octocat",)) == 8
        info = github_client.rate_limiter.get_rate_limit()
        assert info is not None
        assert info.remaining == 8
