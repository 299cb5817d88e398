"""Smoke tests for core data models."""

from __future__ import annotations

from pitchfork_ingest.domain.models import (
    ParsedReview,
    RawReviewSummary,
    format_score,
    split_names,
)


def test_summary_creation() -> None:
    summary = RawReviewSummary(detail_url="/reviews/albums/kid-a/")
    assert summary.detail_url == "/reviews/albums/kid-a/"
    assert summary.pub_date is None
    assert summary.artist_names == []


def test_parsed_review_properties() -> None:
    review = ParsedReview(
        album_title="Kid A",
        artist_names=["Radiohead", "Thom Yorke"],
        author_name="Brent DiCrescenzo",
        score=10.0,
        review_body_html="<p>...</p>",
    )
    assert review.primary_artist == "Radiohead"
    assert review.is_throttled is False
    assert review.dedup_key == ("Kid A", "Brent DiCrescenzo", 10.0)
    assert review.catalog_uri is None

    matched = review.with_catalog_uri("spotify:album:123")
    assert matched.catalog_uri == "spotify:album:123"
    assert review.catalog_uri is None


def test_empty_body_counts_as_throttled() -> None:
    review = ParsedReview(album_title="", artist_names=[], review_body_html="  \n")
    assert review.is_throttled is True
    assert review.primary_artist is None


def test_split_names() -> None:
    assert split_names("Sub Pop / Domino") == ["Sub Pop", "Domino"]
    assert split_names(" A /  / B / A ") == ["A", "B", "A"]
    assert split_names(" A /  / B / A ", unique=True) == ["A", "B"]
    assert split_names(None) == []


def test_format_score() -> None:
    assert format_score(8.0) == "8.0"
    assert format_score(7.33) == "7.3"
    assert format_score(10.0) == "10"
