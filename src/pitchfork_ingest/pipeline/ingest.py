# pitchfork_ingest/pipeline/ingest.py

"""Fetch → parse → match → reconcile for one listing page at a time.

Each review summary walks through :class:`ReviewState`::

    PENDING -> FETCHING -> (THROTTLED_RETRY -> FETCHING)* -> PARSED
            -> MATCHING -> MATCHED -> NORMALIZED -> DONE

Detail pages and catalog lookups run on a bounded worker pool and may finish
in any order. Writes are applied afterwards in reverse listing order (the
listing is newest first), so storage IDs follow publication order.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Iterable
from dataclasses import dataclass, field
from enum import Enum
from typing import Protocol

from pitchfork_ingest.catalog.matcher import CatalogMatcher, NullCatalogMatcher
from pitchfork_ingest.catalog.spotify_client import SpotifyCatalogClient
from pitchfork_ingest.config import IngestSettings, load_settings
from pitchfork_ingest.domain.models import (
    CatalogCandidate,
    ParsedReview,
    RawReviewSummary,
    ReconcileOutcome,
)
from pitchfork_ingest.errors import CatalogError, FetchError, ParseError, PitchforkIngestError
from pitchfork_ingest.scraper.client import RateLimitedFetcher
from pitchfork_ingest.scraper.parser import parse_detail_page, parse_listing_page
from pitchfork_ingest.scraper.retry import SleepFunc
from pitchfork_ingest.storage.base import ReviewRepository
from pitchfork_ingest.storage.jsonl_store import JsonlReviewStore
from pitchfork_ingest.storage.reconciler import UpsertReconciler

logger = logging.getLogger(__name__)

DEFAULT_CONCURRENCY = 8
DEFAULT_THROTTLE_DELAY = 30.0
PAGE_RETRIES = 3
PAGE_PAUSE_SECONDS = 1.0


class ReviewState(str, Enum):
    PENDING = "pending"
    FETCHING = "fetching"
    THROTTLED_RETRY = "throttled_retry"
    PARSED = "parsed"
    MATCHING = "matching"
    MATCHED = "matched"
    NORMALIZED = "normalized"
    DONE = "done"


class PageFetcher(Protocol):
    def listing_page_url(self, page_number: int) -> str: ...

    def absolute_url(self, path_or_url: str) -> str: ...

    async def fetch(self, url: str) -> str: ...


class AlbumMatcher(Protocol):
    async def match(
        self,
        primary_artist: str | None,
        album_title: str,
    ) -> CatalogCandidate | None: ...


@dataclass(slots=True)
class ItemFailure:
    detail_url: str
    error: str


@dataclass(slots=True)
class PageReport:
    """What happened to each review of one listing page."""

    page_number: int
    discovered: int = 0
    outcomes: list[tuple[str, ReconcileOutcome]] = field(default_factory=list)
    failures: list[ItemFailure] = field(default_factory=list)

    def count(self, outcome: ReconcileOutcome) -> int:
        return sum(1 for _url, o in self.outcomes if o is outcome)


class IngestionPipeline:
    def __init__(
        self,
        fetcher: PageFetcher,
        matcher: AlbumMatcher,
        reconciler: UpsertReconciler,
        *,
        concurrency: int = DEFAULT_CONCURRENCY,
        throttle_delay: float = DEFAULT_THROTTLE_DELAY,
        sleep: SleepFunc = asyncio.sleep,
    ) -> None:
        if concurrency < 1:
            msg = "concurrency must be >= 1."
            raise ValueError(msg)

        self._fetcher = fetcher
        self._matcher = matcher
        self._reconciler = reconciler
        self._concurrency = concurrency
        self._throttle_delay = throttle_delay
        self._sleep = sleep

    async def ingest_listing_page(self, page_number: int) -> PageReport:
        """Ingest every review on one listing page.

        Failures of single reviews are logged and recorded in the report;
        a listing page that cannot be fetched or parsed raises.
        """
        listing_url = self._fetcher.listing_page_url(page_number)
        html = await self._fetcher.fetch(listing_url)
        summaries = parse_listing_page(html, page_number)

        report = PageReport(page_number=page_number, discovered=len(summaries))
        logger.info("Page %s: processing %s reviews.", page_number, len(summaries))

        semaphore = asyncio.Semaphore(self._concurrency)

        async def worker(summary: RawReviewSummary) -> ParsedReview | None:
            async with semaphore:
                try:
                    return await self.process_summary(summary)
                except (FetchError, ParseError, CatalogError) as exc:
                    logger.error(
                        "Failed to process %s: %s: %s",
                        summary.detail_url,
                        type(exc).__name__,
                        exc,
                    )
                    report.failures.append(ItemFailure(summary.detail_url, str(exc)))
                    return None
                except Exception as exc:
                    logger.exception("Unexpected error processing %s", summary.detail_url)
                    report.failures.append(
                        ItemFailure(summary.detail_url, f"{type(exc).__name__}: {exc}")
                    )
                    return None

        # gather keeps results in discovery order regardless of completion order
        results = await asyncio.gather(*(worker(s) for s in summaries))

        for summary, review in zip(reversed(summaries), reversed(results)):
            if review is None:
                continue
            try:
                outcome = await self._reconciler.reconcile(review)
            except PitchforkIngestError as exc:
                logger.error("Failed to store %s: %s", summary.detail_url, exc)
                report.failures.append(ItemFailure(summary.detail_url, str(exc)))
                continue
            report.outcomes.append((summary.detail_url, outcome))
            _log_state(summary, ReviewState.DONE)

        logger.info(
            "Page %s done: inserted=%s updated=%s skipped=%s failed=%s",
            page_number,
            report.count(ReconcileOutcome.INSERTED),
            report.count(ReconcileOutcome.UPDATED),
            report.count(ReconcileOutcome.SKIPPED),
            len(report.failures),
        )
        return report

    async def process_summary(self, summary: RawReviewSummary) -> ParsedReview:
        """Take one summary from PENDING to NORMALIZED."""
        _log_state(summary, ReviewState.PENDING)
        review = await self.fetch_review(summary)

        _log_state(summary, ReviewState.MATCHING)
        candidate = await self._matcher.match(review.primary_artist, review.album_title)
        review = review.with_catalog_uri(candidate.uri if candidate else None)
        _log_state(summary, ReviewState.MATCHED)

        _log_state(summary, ReviewState.NORMALIZED)
        return review

    async def fetch_review(self, summary: RawReviewSummary) -> ParsedReview:
        """Fetch and parse a detail page, waiting out throttled responses.

        An HTTP 200 with an empty review body is how the site throttles, so
        it is retried here rather than in the fetcher.
        """
        url = self._fetcher.absolute_url(summary.detail_url)
        attempt = 0
        while True:
            attempt += 1
            _log_state(summary, ReviewState.FETCHING)
            html = await self._fetcher.fetch(url)
            review = parse_detail_page(html, summary, url=summary.detail_url)
            if not review.is_throttled:
                _log_state(summary, ReviewState.PARSED)
                return review

            _log_state(summary, ReviewState.THROTTLED_RETRY)
            logger.warning(
                "Throttled by Pitchfork on %s (attempt=%s). Waiting %.0fs...",
                url,
                attempt,
                self._throttle_delay,
            )
            await self._sleep(self._throttle_delay)


def _log_state(summary: RawReviewSummary, state: ReviewState) -> None:
    logger.debug("%s -> %s", summary.detail_url, state.value)


# ---------------------------------------------------------------------------
# Entry points
# ---------------------------------------------------------------------------


async def ingest_listing_page(
    page_number: int,
    *,
    settings: IngestSettings | None = None,
    repository: ReviewRepository | None = None,
) -> PageReport:
    """Ingest one listing page with clients built for this call only.

    Safe to repeat: reviews already stored are skipped or have their catalog
    link backfilled.
    """
    settings = settings or load_settings()
    repository = repository or JsonlReviewStore(settings.data_dir)

    catalog_client: SpotifyCatalogClient | None = None
    matcher: AlbumMatcher
    if settings.has_catalog_credentials:
        catalog_client = SpotifyCatalogClient(
            settings.spotify_client_id or "",
            settings.spotify_client_secret or "",
            user_agent=settings.user_agent,
        )
        matcher = CatalogMatcher(
            catalog_client,
            error_delay=settings.error_delay,
            max_attempts=settings.max_attempts,
        )
    else:
        logger.warning(
            "SPOTIFY_CLIENT_ID / SPOTIFY_CLIENT_SECRET not set; "
            "reviews are stored without catalog links."
        )
        matcher = NullCatalogMatcher()

    try:
        async with RateLimitedFetcher(
            base_url=settings.base_url,
            error_delay=settings.error_delay,
            max_attempts=settings.max_attempts,
            user_agent=settings.user_agent,
        ) as fetcher:
            if isinstance(matcher, CatalogMatcher):
                await matcher.authorize()

            pipeline = IngestionPipeline(
                fetcher,
                matcher,
                UpsertReconciler(repository),
                concurrency=settings.concurrency,
                throttle_delay=settings.throttle_delay,
            )
            return await pipeline.ingest_listing_page(page_number)
    finally:
        if catalog_client is not None:
            catalog_client.close()


async def ingest_pages(
    pages: Iterable[int],
    *,
    settings: IngestSettings | None = None,
    repository: ReviewRepository | None = None,
    page_retries: int = PAGE_RETRIES,
    pause_seconds: float = PAGE_PAUSE_SECONDS,
    sleep: SleepFunc = asyncio.sleep,
) -> list[PageReport]:
    """Ingest several pages one after another, in the order given."""
    settings = settings or load_settings()
    repository = repository or JsonlReviewStore(settings.data_dir)

    reports: list[PageReport] = []
    for page_number in pages:
        logger.info("Scraping page %s", page_number)
        for attempt in range(1, page_retries + 2):
            try:
                report = await ingest_listing_page(
                    page_number,
                    settings=settings,
                    repository=repository,
                )
            except PitchforkIngestError as exc:
                if attempt <= page_retries:
                    logger.warning(
                        "Page %s failed (attempt=%s/%s): %s. Retrying...",
                        page_number,
                        attempt,
                        page_retries,
                        exc,
                    )
                    continue
                logger.error("Giving up on page %s: %s", page_number, exc)
                break
            reports.append(report)
            break

        await sleep(pause_seconds)

    return reports
