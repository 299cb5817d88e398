# pitchfork_ingest/domain/models.py

"""Core domain models for scraped reviews and catalog matches."""

from __future__ import annotations

from dataclasses import dataclass, field, replace
from datetime import datetime
from enum import Enum


@dataclass(slots=True)
class RawReviewSummary:
    """One entry from a listing page.

    Only ``detail_url`` is guaranteed. The remaining fields are hints some
    listing layouts carry; the detail page takes precedence over them.
    """

    detail_url: str
    pub_date: datetime | None = None
    album_title: str | None = None
    artist_names: list[str] = field(default_factory=list)
    cover_image_url: str | None = None
    score: float | None = None
    is_best_new: bool | None = None
    author_name: str | None = None


@dataclass(slots=True)
class ParsedReview:
    """Fully parsed content of one review page."""

    album_title: str
    artist_names: list[str]  # display order, first is the primary artist
    label_names: list[str] = field(default_factory=list)
    genre_names: list[str] = field(default_factory=list)
    cover_image_url: str | None = None
    score: float = 0.0
    is_best_new: bool = False
    author_name: str = ""
    publish_date: datetime | None = None
    review_body_html: str = ""
    detail_url: str | None = None
    catalog_uri: str | None = None

    @property
    def primary_artist(self) -> str | None:
        return self.artist_names[0] if self.artist_names else None

    @property
    def is_throttled(self) -> bool:
        """An empty body means the site served a placeholder page."""
        return not self.review_body_html.strip()

    @property
    def dedup_key(self) -> tuple[str, str, float]:
        return (self.album_title, self.author_name, self.score)

    def with_catalog_uri(self, catalog_uri: str | None) -> ParsedReview:
        return replace(self, catalog_uri=catalog_uri)


@dataclass(slots=True)
class CatalogCandidate:
    """A single album search result from the music catalog."""

    uri: str
    display_name: str
    artist_names: list[str] = field(default_factory=list)


@dataclass(slots=True)
class StoredReview:
    """Persisted view of a review as returned by a ReviewRepository."""

    id: int
    album_title: str
    author_name: str
    score: float
    catalog_uri: str | None = None
    artist_names: list[str] = field(default_factory=list)
    label_names: list[str] = field(default_factory=list)
    genre_names: list[str] = field(default_factory=list)
    cover_image_url: str | None = None
    is_best_new: bool = False
    publish_date: datetime | None = None
    review_body_html: str = ""


class ReconcileOutcome(str, Enum):
    INSERTED = "inserted"
    UPDATED = "updated"
    SKIPPED = "skipped"


def split_names(raw: str | None, *, unique: bool = False) -> list[str]:
    """Split a slash-separated string like 'Sub Pop / Domino' into names."""
    if not raw:
        return []
    names = [part.strip() for part in raw.split("/")]
    names = [name for name in names if name]
    if not unique:
        return names

    seen: set[str] = set()
    result: list[str] = []
    for name in names:
        if name in seen:
            continue
        seen.add(name)
        result.append(name)
    return result


def format_score(score: float) -> str:
    """Render a score with one decimal place below 10, otherwise as-is."""
    if score < 10:
        return f"{score:.1f}"
    return f"{score:g}"
