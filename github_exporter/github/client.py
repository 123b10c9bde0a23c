"""Async GitHub REST client used by the monitor dispatcher."""

import asyncio
import json
import logging
import time
import uuid
from collections.abc import Mapping
from dataclasses import dataclass
from typing import Any
from urllib.parse import quote, urljoin

import aiohttp
from multidict import CIMultiDict

from .auth import AuthProvider
from .exceptions import (
    GitHubAuthenticationError,
    GitHubConnectionError,
    GitHubError,
    GitHubNotFoundError,
    GitHubRateLimitError,
    GitHubServerError,
    GitHubTimeoutError,
    GitHubValidationError,
)
from .pagination import AsyncPaginator, PaginatedResponse
from .rate_limiting import CircuitBreaker, RateLimitManager

logger = logging.getLogger(__name__)

# Errors that a retry cannot fix
NON_RETRYABLE_ERRORS = (
    GitHubAuthenticationError,
    GitHubNotFoundError,
    GitHubRateLimitError,
    GitHubValidationError,
)


@dataclass
class GitHubClientConfig:
    """Configuration for GitHub client."""

    base_url: str = "https://api.github.com"
    timeout: int = 30
    max_retries: int = 3
    retry_backoff_factor: float = 2.0
    rate_limit_buffer: int = 10
    user_agent: str = "github-exporter/0.1"
    max_concurrent_requests: int = 10


class GitHubClient:
    """Async GitHub API client with retries, rate limiting and pagination."""

    def __init__(
        self,
        auth: AuthProvider,
        config: GitHubClientConfig | None = None,
    ) -> None:
        """Initialize GitHub client.

        Args:
            auth: Authentication provider
            config: Client configuration
        """
        self.auth = auth
        self.config = config or GitHubClientConfig()
        self.rate_limiter = RateLimitManager(buffer=self.config.rate_limit_buffer)
        self.circuit_breaker = CircuitBreaker()

        # HTTP session will be initialized on first use
        self._session: aiohttp.ClientSession | None = None
        self._session_lock = asyncio.Lock()
        self._request_semaphore = asyncio.Semaphore(self.config.max_concurrent_requests)

    async def __aenter__(self) -> "GitHubClient":
        """Async context manager entry."""
        await self._ensure_session()
        return self

    async def __aexit__(self, exc_type: Any, exc_val: Any, exc_tb: Any) -> None:
        """Async context manager exit."""
        await self.close()

    async def _ensure_session(self) -> None:
        """Ensure HTTP session is initialized."""
        if self._session is None or self._session.closed:
            async with self._session_lock:
                if self._session is None or self._session.closed:
                    timeout = aiohttp.ClientTimeout(total=self.config.timeout)
                    connector = aiohttp.TCPConnector(limit=100, limit_per_host=30)

                    self._session = aiohttp.ClientSession(
                        timeout=timeout,
                        connector=connector,
                        headers={
                            "User-Agent": self.config.user_agent,
                            "Accept": "application/vnd.github+json",
                        },
                    )

    async def close(self) -> None:
        """Close HTTP session and cleanup resources."""
        if self._session and not self._session.closed:
            await self._session.close()
        self._session = None

    def _generate_correlation_id(self) -> str:
        """Generate correlation ID for request tracking."""
        return str(uuid.uuid4())[:8]

    def _url(self, path: str) -> str:
        return urljoin(self.config.base_url.rstrip("/") + "/", path.lstrip("/"))

    async def _make_request(
        self,
        method: str,
        url: str,
        params: dict[str, Any] | None = None,
        correlation_id: str | None = None,
        check_budget: bool = True,
    ) -> tuple[Any, Mapping[str, str]]:
        """Make HTTP request with retry logic and error handling.

        The response body is decoded while the connection is still held, so
        callers receive plain data rather than a released response object.

        Args:
            method: HTTP method
            url: Request URL
            params: Query parameters
            correlation_id: Request correlation ID
            check_budget: Refuse the request locally when the remaining
                budget is within the buffer

        Returns:
            Tuple of decoded JSON payload and case-insensitive response headers

        Raises:
            GitHubError: Various GitHub API errors
        """
        if not correlation_id:
            correlation_id = self._generate_correlation_id()

        if not self.circuit_breaker.can_attempt_request():
            wait_time = self.circuit_breaker.get_wait_time()
            raise GitHubConnectionError(
                f"Circuit breaker open. Wait {wait_time:.1f}s before retry."
            )

        if check_budget:
            await self.rate_limiter.check_rate_limit()

        auth_token = await self.auth.get_token()
        request_headers = auth_token.to_header()

        await self._ensure_session()

        if not self._session:
            raise GitHubConnectionError("Failed to initialize HTTP session")

        last_exception: GitHubError | None = None
        for attempt in range(self.config.max_retries + 1):
            try:
                async with self._request_semaphore:
                    start_time = time.time()

                    logger.debug(
                        f"GitHub API request [{correlation_id}] {method} {url} "
                        f"(attempt {attempt + 1})"
                    )

                    async with self._session.request(
                        method, url, params=params, headers=request_headers
                    ) as response:
                        request_time = time.time() - start_time
                        headers = CIMultiDict(response.headers)

                        self.rate_limiter.update_rate_limit(headers)

                        logger.debug(
                            f"GitHub API response [{correlation_id}] "
                            f"{response.status} in {request_time:.2f}s"
                        )

                        if response.status in (200, 201, 204):
                            self.circuit_breaker.record_success()
                            if response.status == 204:
                                return None, headers
                            return await response.json(), headers

                        await self._handle_error_response(response, correlation_id)

            except NON_RETRYABLE_ERRORS:
                raise

            except GitHubServerError as e:
                last_exception = e

            except TimeoutError:
                last_exception = GitHubTimeoutError(
                    f"Request timeout for {method} {url}"
                )
                self.circuit_breaker.record_failure()

            except (aiohttp.ContentTypeError, json.JSONDecodeError) as e:
                raise GitHubError(
                    f"Malformed response for {method} {url}: {e}"
                ) from e

            except aiohttp.ClientError as e:
                last_exception = GitHubConnectionError(
                    f"Connection error for {method} {url}: {e}"
                )
                self.circuit_breaker.record_failure()

            if attempt < self.config.max_retries:
                backoff_time = self.config.retry_backoff_factor**attempt
                logger.warning(
                    f"Request [{correlation_id}] failed (attempt {attempt + 1}), "
                    f"retrying in {backoff_time:.1f}s: {last_exception}"
                )
                await asyncio.sleep(backoff_time)

        if last_exception:
            raise last_exception
        raise GitHubError(f"Request failed after {self.config.max_retries} retries")

    async def _handle_error_response(
        self, response: aiohttp.ClientResponse, correlation_id: str
    ) -> None:
        """Handle error responses from GitHub API.

        Args:
            response: HTTP response
            correlation_id: Request correlation ID

        Raises:
            GitHubError: Appropriate error based on status code
        """
        try:
            error_data = await response.json()
        except (json.JSONDecodeError, aiohttp.ContentTypeError):
            error_data = {"message": await response.text()}

        if not isinstance(error_data, dict):
            error_data = {"message": str(error_data)}

        error_message = error_data.get("message", f"HTTP {response.status}")

        logger.warning(
            f"GitHub API error [{correlation_id}] {response.status}: {error_message}"
        )

        if response.status == 401:
            raise GitHubAuthenticationError(error_message, response.status, error_data)
        elif response.status in (403, 429):
            if response.status == 429 or "rate limit" in error_message.lower():
                reset_time = response.headers.get("X-RateLimit-Reset")
                remaining = response.headers.get("X-RateLimit-Remaining", "0")
                limit = response.headers.get("X-RateLimit-Limit", "0")

                raise GitHubRateLimitError(
                    error_message,
                    reset_time=int(reset_time) if reset_time else None,
                    remaining=int(remaining),
                    limit=int(limit),
                )
            raise GitHubAuthenticationError(error_message, response.status, error_data)
        elif response.status == 404:
            raise GitHubNotFoundError(error_message, response.status, error_data)
        elif response.status == 422:
            raise GitHubValidationError(error_message, response.status, error_data)
        elif 500 <= response.status < 600:
            self.circuit_breaker.record_failure()
            raise GitHubServerError(error_message, response.status, error_data)
        else:
            raise GitHubError(error_message, response.status, error_data)

    async def get(
        self,
        path: str,
        params: dict[str, Any] | None = None,
        check_budget: bool = True,
    ) -> dict[str, Any]:
        """Make GET request to GitHub API.

        Args:
            path: API path (e.g., '/repos/owner/repo/issues')
            params: Query parameters
            check_budget: Apply the local rate limit buffer

        Returns:
            JSON response data
        """
        data, _ = await self._make_request(
            "GET", self._url(path), params, check_budget=check_budget
        )
        if not isinstance(data, dict):
            raise GitHubError(f"Expected JSON object from {path}")
        return data

    async def _fetch_paginated(
        self, url: str, params: dict[str, Any] | None = None
    ) -> PaginatedResponse:
        """Fetch one page for AsyncPaginator."""
        data, headers = await self._make_request("GET", url, params)
        if not isinstance(data, list):
            raise GitHubError(f"Expected JSON array from {url}")
        return PaginatedResponse(data, headers, url)

    def paginate(
        self,
        path: str,
        params: dict[str, Any] | None = None,
        per_page: int = 100,
        max_pages: int | None = None,
    ) -> AsyncPaginator:
        """Create async paginator for GitHub API endpoint.

        Args:
            path: API path
            params: Query parameters
            per_page: Items per page (max 100)
            max_pages: Maximum pages to fetch

        Returns:
            AsyncPaginator for iterating through results
        """
        return AsyncPaginator(
            client=self,
            initial_url=self._url(path),
            params=params,
            per_page=per_page,
            max_pages=max_pages,
        )

    async def get_user(self, check_budget: bool = True) -> dict[str, Any]:
        """Get authenticated user information.

        Args:
            check_budget: Apply the local rate limit buffer. The rate limit
                monitor passes False so it can still report a nearly spent
                budget.
        """
        return await self.get("/user", check_budget=check_budget)

    async def get_rate_limit(self) -> dict[str, Any]:
        """Get current rate limit status.

        GitHub does not count this endpoint against the budget, so the local
        buffer is not applied.
        """
        return await self.get("/rate_limit", check_budget=False)

    async def list_workflow_runs(
        self,
        owner: str,
        repo: str,
        workflow: str,
        status: str | None = None,
    ) -> dict[str, Any]:
        """List runs of one workflow.

        Only the first page is requested with a single item, since callers
        consume ``total_count`` rather than the runs themselves.

        Args:
            owner: Repository owner
            repo: Repository name
            workflow: Workflow file name or numeric ID
            status: Optional run status filter (queued, in_progress, ...)

        Returns:
            Workflow runs listing including ``total_count``
        """
        params: dict[str, Any] = {"per_page": 1}
        if status is not None:
            params["status"] = status

        return await self.get(
            f"/repos/{owner}/{repo}/actions/workflows/{quote(workflow, safe='')}/runs",
            params=params,
        )

    def list_issues(
        self,
        owner: str,
        repo: str,
        state: str | None = None,
        labels: list[str] | None = None,
        per_page: int = 100,
    ) -> AsyncPaginator:
        """List issues and pull requests of a repository.

        Args:
            owner: Repository owner
            repo: Repository name
            state: Issue state (open, closed, all); omitted when None
            labels: Labels every returned issue must carry
            per_page: Items per page

        Returns:
            AsyncPaginator over issue objects
        """
        params: dict[str, Any] = {}
        if state is not None:
            params["state"] = state
        if labels:
            params["labels"] = ",".join(labels)

        return self.paginate(
            f"/repos/{owner}/{repo}/issues",
            params=params,
            per_page=per_page,
        )
