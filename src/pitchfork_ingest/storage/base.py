# pitchfork_ingest/storage/base.py

"""Persistence interface consumed by the UpsertReconciler."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from typing import Protocol

from pitchfork_ingest.domain.models import ParsedReview, StoredReview


@dataclass(slots=True)
class NewReview:
    """Data for a review insert.

    ``label_names``, ``artist_names`` and ``genre_names`` are connected to
    existing entities by exact name, or created when missing.
    """

    album_title: str
    author_name: str
    score: float
    artist_names: list[str] = field(default_factory=list)
    label_names: list[str] = field(default_factory=list)
    genre_names: list[str] = field(default_factory=list)
    cover_image_url: str | None = None
    catalog_uri: str | None = None
    is_best_new: bool = False
    publish_date: datetime | None = None
    review_body_html: str = ""

    @classmethod
    def from_parsed(cls, review: ParsedReview) -> NewReview:
        return cls(
            album_title=review.album_title,
            author_name=review.author_name,
            score=review.score,
            artist_names=list(review.artist_names),
            label_names=list(review.label_names),
            genre_names=list(review.genre_names),
            cover_image_url=review.cover_image_url,
            catalog_uri=review.catalog_uri,
            is_best_new=review.is_best_new,
            publish_date=review.publish_date,
            review_body_html=review.review_body_html,
        )


class ReviewRepository(Protocol):
    """Storage operations the pipeline needs. Implementations own IDs."""

    async def find_review_by_key(
        self,
        album_title: str,
        author_name: str,
        score: float,
    ) -> StoredReview | None: ...

    async def create_review(self, data: NewReview) -> StoredReview:
        """Insert a review and connect-or-create its named entities.

        May raise UniqueConstraintError when a join row already exists.
        """
        ...

    async def update_review_catalog_link(self, review_id: int, catalog_uri: str) -> None: ...

    async def delete_join_row(self, review_id: int, entity_id: int) -> None: ...
