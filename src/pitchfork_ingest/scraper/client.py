# src/pitchfork_ingest/scraper/client.py

from __future__ import annotations

import asyncio
import logging
from urllib.parse import urljoin

import httpx

from pitchfork_ingest.config import DEFAULT_BASE_URL
from pitchfork_ingest.errors import (
    FetchError,
    NetworkError,
    RateLimitError,
    ServerError,
    parse_retry_after,
)
from pitchfork_ingest.scraper.retry import DEFAULT_ERROR_DELAY, SleepFunc, call_with_retry

logger = logging.getLogger(__name__)


DEFAULT_TIMEOUT = 30.0


class RateLimitedFetcher:
    """Async HTTP client for fetching listing and detail pages.

    ``fetch`` never gives up on throttling, 5xx responses or connection
    problems unless ``max_attempts`` is set; see
    :func:`pitchfork_ingest.scraper.retry.call_with_retry`.
    """

    def __init__(
        self,
        *,
        base_url: str = DEFAULT_BASE_URL,
        timeout: float = DEFAULT_TIMEOUT,
        error_delay: float = DEFAULT_ERROR_DELAY,
        max_attempts: int | None = None,
        user_agent: str | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
        sleep: SleepFunc = asyncio.sleep,
    ) -> None:
        if max_attempts is not None and max_attempts < 1:
            msg = "max_attempts must be >= 1 when set."
            raise ValueError(msg)

        self._base_url = base_url.rstrip("/")
        self._error_delay = error_delay
        self._max_attempts = max_attempts
        self._sleep = sleep

        headers = {
            "User-Agent": user_agent
            or "pitchfork-ingest/0.1 (+https://example.com)",
            "Accept": "text/html,application/xhtml+xml",
        }

        self._client = httpx.AsyncClient(
            headers=headers,
            timeout=timeout,
            follow_redirects=True,
            transport=transport,
        )

    async def aclose(self) -> None:
        """Close the underlying HTTP client."""
        await self._client.aclose()

    async def __aenter__(self) -> "RateLimitedFetcher":
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:  # type: ignore[override]
        await self.aclose()

    @property
    def base_url(self) -> str:
        return self._base_url

    def listing_page_url(self, page_number: int) -> str:
        """Build the album review listing URL for a given page number."""
        return f"{self._base_url}/reviews/albums/?page={page_number}"

    def absolute_url(self, path_or_url: str) -> str:
        """Resolve a detail path like '/reviews/albums/foo/' against the site."""
        return urljoin(f"{self._base_url}/", path_or_url)

    async def fetch(self, url: str) -> str:
        """Fetch a page and return its text, retrying until it succeeds.

        Raises:
            FetchError: for 4xx responses other than 429, which are not
                retried.
        """
        return await call_with_retry(
            lambda: self._fetch_once(url),
            description=url,
            error_delay=self._error_delay,
            max_attempts=self._max_attempts,
            sleep=self._sleep,
        )

    async def _fetch_once(self, url: str) -> str:
        try:
            response = await self._client.get(url)
        except httpx.TransportError as exc:
            msg = f"Request error for {url}: {exc!r}"
            raise NetworkError(msg, url=url) from exc

        status = response.status_code
        if status == 429:
            retry_after = parse_retry_after(response.headers.get("Retry-After"))
            msg = f"Too many requests for {url}"
            raise RateLimitError(msg, url=url, retry_after_seconds=retry_after)
        if 500 <= status < 600:
            msg = f"Server error for {url} (status={status})"
            raise ServerError(msg, url=url, status_code=status)
        if status >= 400:
            logger.error("Unrecoverable HTTP error for %s (status=%s).", url, status)
            msg = f"HTTP {status} for {url}"
            raise FetchError(msg, url=url)

        logger.debug("Fetched %s (status=%s, bytes=%s).", url, status, len(response.content))
        return response.text
