"""Tests for listing and detail page parsing."""

from __future__ import annotations

from datetime import datetime, timezone

import pytest

from stubs import THROTTLED_PAGE, detail_page, listing_dom_page, listing_item, listing_json_page

from pitchfork_ingest.domain.models import RawReviewSummary
from pitchfork_ingest.errors import ParseError
from pitchfork_ingest.scraper.parser import (
    MALFORMED_URL_DENYLIST,
    ListingPageFormat,
    detect_listing_format,
    parse_detail_page,
    parse_listing_page,
)


def test_json_listing_page() -> None:
    html = listing_json_page(
        [
            listing_item("b-album", album="B", artists="Artist One / Artist Two", score=8.5, best_new=True),
            listing_item("a-album", album="A", artists="Solo", author=" John Roe "),
        ]
    )

    assert detect_listing_format(html) is ListingPageFormat.JSON_EMBEDDED
    summaries = parse_listing_page(html, 1)

    assert [s.detail_url for s in summaries] == [
        "/reviews/albums/b-album/",
        "/reviews/albums/a-album/",
    ]
    first = summaries[0]
    assert first.album_title == "B"
    assert first.artist_names == ["Artist One", "Artist Two"]
    assert first.score == 8.5
    assert first.is_best_new is True
    assert first.cover_image_url == "https://media.test/b-album.jpg"
    assert first.pub_date == datetime(2023, 1, 5, 5, 0, tzinfo=timezone.utc)
    assert summaries[1].author_name == "John Roe"


def test_dom_card_listing_page() -> None:
    html = listing_dom_page(
        [
            {
                "url": "/reviews/albums/12345-some-record/",
                "cover": "https://media.test/some.jpg",
                "artists": ["Band", "Guest"],
                "album": "Some Record",
                "datetime": "2015-03-02T00:00:00",
            }
        ]
    )

    assert detect_listing_format(html) is ListingPageFormat.DOM_CARDS
    summaries = parse_listing_page(html, 900)

    assert len(summaries) == 1
    summary = summaries[0]
    assert summary.detail_url == "/reviews/albums/12345-some-record/"
    assert summary.album_title == "Some Record"
    assert summary.artist_names == ["Band", "Guest"]
    assert summary.cover_image_url == "https://media.test/some.jpg"
    assert summary.pub_date == datetime(2015, 3, 2)


def test_denylisted_url_is_excluded() -> None:
    items = [
        listing_item("9-first"),
        listing_item("1365-no-more-shall-we-part"),
        listing_item("8-second"),
    ]
    assert items[1]["url"] in MALFORMED_URL_DENYLIST

    summaries = parse_listing_page(listing_json_page(items), 5)

    assert len(summaries) == len(items) - 1
    assert all(s.detail_url not in MALFORMED_URL_DENYLIST for s in summaries)


def test_unknown_listing_layout_raises() -> None:
    with pytest.raises(ParseError):
        parse_listing_page("<html><body><p>Nothing here</p></body></html>", 1)


def test_broken_preloaded_state_raises() -> None:
    html = "<script>window.__PRELOADED_STATE__ = {\"transformed\": {}};</script>"
    with pytest.raises(ParseError):
        parse_listing_page(html, 1)


def test_detail_page_fields() -> None:
    review = parse_detail_page(
        detail_page(best_new=True),
        url="/reviews/albums/drill-ep/",
    )

    assert review.album_title == "Drill EP"
    assert review.artist_names == ["Radiohead"]
    assert review.label_names == ["Parlophone", "Capitol"]
    assert review.genre_names == ["Rock"]
    assert review.score == 8.1
    assert review.is_best_new is True
    assert review.author_name == "Jane Doe"
    assert review.cover_image_url == "https://media.test/detail-cover.jpg"
    assert review.publish_date == datetime(1992, 5, 5, 5, 0, tzinfo=timezone.utc)
    assert review.detail_url == "/reviews/albums/drill-ep/"
    assert review.catalog_uri is None


def test_detail_body_keeps_blurb_before_body_as_markup() -> None:
    review = parse_detail_page(detail_page())

    body = review.review_body_html
    assert body.startswith('<div class="review-blurb"><p>The first record.</p></div>\n')
    assert "<p>Great record.</p>" in body
    assert body.index("The first record.") < body.index("Great record.")


def test_detail_body_without_blurb() -> None:
    review = parse_detail_page(detail_page(blurb=""))
    assert "review-blurb" not in review.review_body_html
    assert "<p>Great record.</p>" in review.review_body_html


def test_detail_falls_back_to_listing_hints() -> None:
    summary = RawReviewSummary(
        detail_url="/reviews/albums/x/",
        album_title="Hinted Title",
        artist_names=["Hinted Artist"],
        is_best_new=True,
    )
    review = parse_detail_page(detail_page(title=None, artists=()), summary)

    assert review.album_title == "Hinted Title"
    assert review.artist_names == ["Hinted Artist"]
    assert review.is_best_new is True
    assert review.detail_url == "/reviews/albums/x/"


def test_detail_reads_json_ld() -> None:
    html = detail_page(title=None, artists=()).replace(
        "</head>",
        '<script type="application/ld+json">'
        '{"@context": "https://schema.org", "@type": "Review",'
        ' "itemReviewed": {"@type": "MusicAlbum", "name": "LD Album",'
        ' "byArtist": [{"name": "LD Artist"}]},'
        ' "reviewRating": {"ratingValue": "6.4"}}'
        "</script></head>",
    )
    review = parse_detail_page(html)

    assert review.album_title == "LD Album"
    assert review.artist_names == ["LD Artist"]
    # DOM rating wins over JSON-LD
    assert review.score == 8.1


def test_throttled_detail_page_has_empty_body() -> None:
    summary = RawReviewSummary(detail_url="/reviews/albums/x/", album_title="X")
    review = parse_detail_page(THROTTLED_PAGE, summary)

    assert review.is_throttled is True
    assert review.review_body_html == ""
    assert review.album_title == "X"


def test_detail_without_title_raises() -> None:
    with pytest.raises(ParseError):
        parse_detail_page(detail_page(title=None), url="/reviews/albums/x/")


def test_detail_without_artist_raises() -> None:
    summary = RawReviewSummary(detail_url="/reviews/albums/solo/", album_title="Solo")
    with pytest.raises(ParseError) as excinfo:
        parse_detail_page(detail_page(title="Solo", artists=()), summary)
    assert excinfo.value.url == "/reviews/albums/solo/"


def test_listing_tolerates_oddly_shaped_items() -> None:
    odd = listing_item("odd", album="Odd")
    odd["subHed"] = "Radiohead"
    odd["ratingValue"] = "8.0"
    odd["contributors"] = {"author": ["not", "a", "dict"]}
    odd["image"] = {"sources": None, "altText": "Odd"}
    html = listing_json_page([odd, listing_item("fine", album="Fine"), "junk"])

    summaries = parse_listing_page(html, 1)

    assert [s.detail_url for s in summaries] == [
        "/reviews/albums/odd/",
        "/reviews/albums/fine/",
    ]
    first = summaries[0]
    assert first.artist_names == ["Radiohead"]
    assert first.score is None
    assert first.author_name is None
    assert first.cover_image_url is None


def test_listing_with_malformed_containers_raises() -> None:
    html = listing_json_page([]).replace('"containers": [{"items": []}]', '"containers": 7')
    with pytest.raises(ParseError):
        parse_listing_page(html, 1)
