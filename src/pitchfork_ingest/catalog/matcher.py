# src/pitchfork_ingest/catalog/matcher.py

from __future__ import annotations

import asyncio
import logging
from collections.abc import Sequence
from typing import Protocol

from pitchfork_ingest.domain.models import CatalogCandidate
from pitchfork_ingest.scraper.retry import DEFAULT_ERROR_DELAY, SleepFunc, call_with_retry

logger = logging.getLogger(__name__)


class CatalogSearchClient(Protocol):
    def client_credentials_grant(self) -> str: ...

    def search(
        self,
        query: str,
        types: Sequence[str] = ("album",),
    ) -> list[CatalogCandidate]: ...


def build_search_query(primary_artist: str | None, album_title: str) -> str:
    """Build the catalog query for an album.

    The first "EP" is cut from the title: catalog entries rarely carry the
    suffix, and keeping it makes exact-title matches fail.
    """
    title = album_title.replace("EP", "", 1)
    if not primary_artist:
        return title
    return f"{primary_artist} {title}"


class CatalogMatcher:
    """Resolve an album to a catalog URI using the catalog's own ranking."""

    def __init__(
        self,
        client: CatalogSearchClient,
        *,
        error_delay: float = DEFAULT_ERROR_DELAY,
        max_attempts: int | None = None,
        sleep: SleepFunc = asyncio.sleep,
    ) -> None:
        self._client = client
        self._error_delay = error_delay
        self._max_attempts = max_attempts
        self._sleep = sleep

    async def authorize(self) -> None:
        """Obtain the catalog token, waiting out rate limits and outages."""
        await call_with_retry(
            lambda: asyncio.to_thread(self._client.client_credentials_grant),
            description="catalog token grant",
            error_delay=self._error_delay,
            max_attempts=self._max_attempts,
            sleep=self._sleep,
        )

    async def search(
        self,
        primary_artist: str | None,
        album_title: str,
    ) -> list[CatalogCandidate]:
        """Search the catalog, retrying through its rate limit."""
        query = build_search_query(primary_artist, album_title)

        return await call_with_retry(
            lambda: asyncio.to_thread(self._client.search, query, ["album"]),
            description=f"catalog search {query!r}",
            error_delay=self._error_delay,
            max_attempts=self._max_attempts,
            sleep=self._sleep,
        )

    async def match(
        self,
        primary_artist: str | None,
        album_title: str,
    ) -> CatalogCandidate | None:
        """Return the first candidate, or None when the catalog has nothing."""
        candidates = await self.search(primary_artist, album_title)
        if not candidates:
            logger.info("No catalog match for %s - %s", primary_artist, album_title)
            return None

        best = candidates[0]
        logger.debug(
            "Matched %s - %s to %s (%s)",
            primary_artist,
            album_title,
            best.uri,
            best.display_name,
        )
        return best


class NullCatalogMatcher:
    """Matcher used when no catalog credentials are configured."""

    async def search(
        self,
        primary_artist: str | None,
        album_title: str,
    ) -> list[CatalogCandidate]:
        return []

    async def match(
        self,
        primary_artist: str | None,
        album_title: str,
    ) -> CatalogCandidate | None:
        return None
