"""Fetch-and-translate for a single monitor.

One ``dispatch`` call queries GitHub for the state a monitor describes and
writes the result into the metric registry. Nothing else is side-effected.
Failures are raised as ``MonitorError`` subclasses for the scheduler to
contain.
"""

import logging
import os
from collections.abc import Callable, Mapping
from typing import Any, assert_never

from ..config.models import (
    AnyMonitor,
    CustomMonitor,
    JobMonitor,
    PRStatus,
    PullRequestsMonitor,
    RateLimitMonitor,
    RepositoryRef,
    resolve_repository,
)
from ..github.auth import AuthProvider, PersonalAccessTokenAuth
from ..github.client import GitHubClient, GitHubClientConfig
from ..github.exceptions import GitHubAuthenticationError, GitHubError
from ..metrics.registry import JOBS, PULL_REQUESTS, RATE_LIMIT, MetricRegistry
from .exceptions import (
    CredentialError,
    RemoteCallError,
    UnsupportedMonitorError,
)

logger = logging.getLogger(__name__)

ClientFactory = Callable[[AuthProvider, GitHubClientConfig], GitHubClient]


class MonitorDispatcher:
    """Runs one fetch-and-translate cycle per monitor.

    Args:
        registry: Registry the results are written to
        client_factory: Builds the secondary client for rate limit monitors
            that name an alternate credential
        environ: Environment the alternate credentials are read from
    """

    def __init__(
        self,
        registry: MetricRegistry,
        client_factory: ClientFactory = GitHubClient,
        environ: Mapping[str, str] | None = None,
    ) -> None:
        self.registry = registry
        self.client_factory = client_factory
        self.environ = os.environ if environ is None else environ

    async def dispatch(
        self,
        client: GitHubClient,
        default_repo: RepositoryRef,
        monitor: AnyMonitor,
    ) -> None:
        """Query GitHub for one monitor and record the result.

        Args:
            client: Authenticated primary client
            default_repo: Repository used when the monitor has no override
            monitor: Monitor to dispatch

        Raises:
            RemoteCallError: If a GitHub call fails or returns bad data
            CredentialError: If an alternate credential cannot be used
            UnsupportedMonitorError: For custom monitors
        """
        description = monitor.describe()
        logger.info(f"Querying {description}")
        logger.debug(f"Default repo settings: {default_repo}")

        try:
            match monitor:
                case JobMonitor():
                    await self._dispatch_job(client, default_repo, monitor)
                case PullRequestsMonitor():
                    await self._dispatch_pull_requests(client, default_repo, monitor)
                case RateLimitMonitor():
                    await self._dispatch_rate_limit(client, monitor)
                case CustomMonitor():
                    logger.error(f"Custom monitoring not implemented: {description}")
                    raise UnsupportedMonitorError(
                        "Custom monitors are not supported", monitor=description
                    )
                case _:
                    assert_never(monitor)
        except GitHubError as e:
            raise RemoteCallError(
                f"GitHub request for {description} failed: {e}", monitor=description
            ) from e

    async def _dispatch_job(
        self, client: GitHubClient, default_repo: RepositoryRef, monitor: JobMonitor
    ) -> None:
        repo = resolve_repository(monitor, default_repo)
        logger.debug(f"Using repo settings: {repo}")
        if monitor.status is not None:
            logger.debug(f"Filtering job status to {monitor.status}")

        logger.info("Querying repo runs")
        runs = await client.list_workflow_runs(
            repo.owner, repo.repository, monitor.workflow, status=monitor.status
        )
        logger.debug(f"Got runs: total_count={runs.get('total_count')}")

        total = _as_int(runs.get("total_count") or 0, monitor, "total_count")

        logger.info("Pushing metrics to prometheus")
        self.registry.set(
            JOBS,
            (repo.owner, repo.repository, monitor.status or "", monitor.workflow),
            total,
        )

    async def _dispatch_pull_requests(
        self,
        client: GitHubClient,
        default_repo: RepositoryRef,
        monitor: PullRequestsMonitor,
    ) -> None:
        repo = resolve_repository(monitor, default_repo)
        logger.debug(f"Using repo settings: {repo}")

        status = monitor.status or PRStatus.ALL
        labels = list(monitor.labels or ())
        if monitor.status is not None:
            logger.debug(f"Filtering pull request status to {status.display}")
        if labels:
            logger.debug(f"Filtering pull request labels to {labels}")

        # The issues listing has no usable aggregate count for this filter
        # combination, so every page is fetched and pull requests are counted
        # here.
        paginator = client.list_issues(
            repo.owner, repo.repository, state=status.api_state, labels=labels or None
        )
        count = 0
        async for issue in paginator:
            if isinstance(issue, dict) and issue.get("pull_request") is not None:
                count += 1
        logger.debug(
            f"Counted {count} pull requests over {paginator.pages_fetched} pages"
        )

        logger.info("Pushing metrics to prometheus")
        self.registry.set(
            PULL_REQUESTS,
            (repo.owner, repo.repository, status.display, ",".join(labels)),
            count,
        )

    async def _dispatch_rate_limit(
        self, client: GitHubClient, monitor: RateLimitMonitor
    ) -> None:
        if monitor.pat_env is None:
            user_name, remaining = await _get_rate_limit(client, monitor)
        else:
            logger.info(f"Querying rate limit for {monitor.pat_env}")
            token = self.environ.get(monitor.pat_env)
            if not token or not token.strip():
                raise CredentialError(
                    f"Environment variable {monitor.pat_env} is not set",
                    monitor=monitor.describe(),
                )

            async with self.client_factory(
                PersonalAccessTokenAuth(token), client.config
            ) as local_client:
                try:
                    user_name, remaining = await _get_rate_limit(local_client, monitor)
                except GitHubAuthenticationError as e:
                    raise CredentialError(
                        f"Token from {monitor.pat_env} was rejected: {e}",
                        monitor=monitor.describe(),
                    ) from e

        logger.info("Pushing metrics to prometheus")
        self.registry.set(RATE_LIMIT, (user_name,), remaining)


async def _get_rate_limit(
    client: GitHubClient, monitor: RateLimitMonitor
) -> tuple[str, int]:
    # No local buffer check: a nearly spent budget is still reported
    user = await client.get_user(check_budget=False)
    logger.debug(f"Got user: {user.get('login')}")
    rate = await client.get_rate_limit()
    logger.debug(f"Got rate limit: {rate.get('rate')}")

    login = user.get("login")
    if not isinstance(login, str) or not login:
        raise RemoteCallError(
            "User response has no login", monitor=monitor.describe()
        )
    try:
        remaining = rate["rate"]["remaining"]
    except (KeyError, TypeError) as e:
        raise RemoteCallError(
            "Rate limit response has no remaining budget", monitor=monitor.describe()
        ) from e
    return login, _as_int(remaining, monitor, "rate.remaining")


def _as_int(value: Any, monitor: AnyMonitor, field: str) -> int:
    try:
        return int(value)
    except (TypeError, ValueError) as e:
        raise RemoteCallError(
            f"Unexpected {field} value {value!r}", monitor=monitor.describe()
        ) from e
