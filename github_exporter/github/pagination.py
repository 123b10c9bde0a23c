"""GitHub API pagination utilities."""

import re
from collections.abc import AsyncIterator, Mapping
from typing import Any

from multidict import CIMultiDict


class LinkHeader:
    """Parser for GitHub Link headers."""

    def __init__(self, link_header: str | None = None):
        """Initialize Link header parser.

        Args:
            link_header: Raw Link header value from response
        """
        self.links: dict[str, str] = {}
        if link_header:
            self._parse(link_header)

    def _parse(self, link_header: str) -> None:
        # Link header format: <url>; rel="next", <url>; rel="last"
        link_pattern = re.compile(r'<([^>]+)>;\s*rel="([^"]+)"')

        for match in link_pattern.finditer(link_header):
            url, rel = match.groups()
            self.links[rel] = url

    @property
    def next_url(self) -> str | None:
        """Get URL for next page."""
        return self.links.get("next")

    @property
    def has_next(self) -> bool:
        """Check if there's a next page."""
        return "next" in self.links


class PaginatedResponse:
    """Wrapper for one page of a GitHub API listing."""

    def __init__(
        self,
        data: list[dict[str, Any]],
        headers: Mapping[str, str],
        url: str,
    ):
        """Initialize paginated response.

        Args:
            data: Response data
            headers: Response headers, looked up case-insensitively
            url: Request URL
        """
        self.data = data
        self.headers = CIMultiDict(headers)
        self.url = url
        self.link_header = LinkHeader(self.headers.get("Link"))

    @property
    def has_next_page(self) -> bool:
        """Check if there's a next page."""
        return self.link_header.has_next

    @property
    def next_page_url(self) -> str | None:
        """Get URL for next page."""
        return self.link_header.next_url

    @property
    def items(self) -> list[dict[str, Any]]:
        """Get items from current page."""
        return self.data


class AsyncPaginator:
    """Async iterator for paginated GitHub API responses.

    Query parameters are only sent with the first request. GitHub's ``next``
    links already carry the full query string of the original request.
    """

    def __init__(
        self,
        client: Any,  # Avoid circular import
        initial_url: str,
        params: dict[str, Any] | None = None,
        max_pages: int | None = None,
        per_page: int = 100,
    ):
        """Initialize async paginator.

        Args:
            client: GitHub client instance
            initial_url: Initial URL to fetch
            params: Query parameters
            max_pages: Maximum number of pages to fetch
            per_page: Items per page (max 100 for GitHub)
        """
        self.client = client
        self.initial_url = initial_url
        self.params = dict(params or {})
        self.max_pages = max_pages
        self.per_page = min(per_page, 100)  # GitHub max is 100

        self.params["per_page"] = self.per_page

        self.pages_fetched = 0
        self._next_url: str | None = initial_url

    async def __aiter__(self) -> AsyncIterator[dict[str, Any]]:
        """Async iterator implementation."""
        while self._next_url:
            if self.max_pages and self.pages_fetched >= self.max_pages:
                break

            response = await self._fetch_page(self._next_url)
            self.pages_fetched += 1
            self._next_url = response.next_page_url if response.has_next_page else None

            for item in response.items:
                yield item

    async def _fetch_page(self, url: str) -> PaginatedResponse:
        params = self.params if self.pages_fetched == 0 else None
        result: PaginatedResponse = await self.client._fetch_paginated(url, params)
        return result

    async def collect_all(self) -> list[dict[str, Any]]:
        """Collect all items from all pages.

        Returns:
            List of all items
        """
        items = []
        async for item in self:
            items.append(item)
        return items
