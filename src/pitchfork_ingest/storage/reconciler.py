# pitchfork_ingest/storage/reconciler.py

"""Idempotent insert / backfill / skip decisions against storage."""

from __future__ import annotations

import logging

from pitchfork_ingest.domain.models import ParsedReview, ReconcileOutcome, StoredReview
from pitchfork_ingest.errors import UniqueConstraintError
from pitchfork_ingest.storage.base import NewReview, ReviewRepository

logger = logging.getLogger(__name__)


class UpsertReconciler:
    """Write a ParsedReview at most once per (album, author, score) key.

    Content is immutable once stored. The only field a later run may fill in
    is the catalog link, and only while it is still empty.
    """

    def __init__(self, repository: ReviewRepository) -> None:
        self._repository = repository

    async def reconcile(self, review: ParsedReview) -> ReconcileOutcome:
        existing = await self._repository.find_review_by_key(
            review.album_title,
            review.author_name,
            review.score,
        )
        artists = ", ".join(review.artist_names)

        if existing is None:
            await self._insert(review)
            logger.info(
                'Added: "%s" by %s (has_catalog_link=%s)',
                review.album_title,
                artists,
                review.catalog_uri is not None,
            )
            return ReconcileOutcome.INSERTED

        if not existing.catalog_uri and review.catalog_uri:
            await self._repository.update_review_catalog_link(existing.id, review.catalog_uri)
            logger.info('Updated: "%s" by %s', review.album_title, artists)
            return ReconcileOutcome.UPDATED

        logger.info('Skipped: "%s" by %s (already stored)', review.album_title, artists)
        return ReconcileOutcome.SKIPPED

    async def _insert(self, review: ParsedReview) -> StoredReview | None:
        data = NewReview.from_parsed(review)
        try:
            return await self._repository.create_review(data)
        except UniqueConstraintError as exc:
            await self._drop_broken_link(review, exc)

        # A concurrent writer may already have finished this review.
        existing = await self._repository.find_review_by_key(
            review.album_title,
            review.author_name,
            review.score,
        )
        if existing is not None:
            return existing

        try:
            return await self._repository.create_review(data)
        except UniqueConstraintError as exc:
            await self._drop_broken_link(review, exc)
            logger.warning(
                'Treating "%s" as already linked after a second conflict: %s',
                review.album_title,
                exc,
            )
            return None

    async def _drop_broken_link(self, review: ParsedReview, exc: UniqueConstraintError) -> None:
        if exc.review_id is None or exc.entity_id is None:
            return
        await self._repository.delete_join_row(exc.review_id, exc.entity_id)
        logger.warning(
            'Deleted broken link review_id=%s entity_id=%s for "%s"',
            exc.review_id,
            exc.entity_id,
            review.album_title,
        )
