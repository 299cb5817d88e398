# src/pitchfork_ingest/scraper/parser.py

"""Parsers for Pitchfork listing and detail pages.

Listing pages come in two layouts, modelled by :class:`ListingPageFormat`:

* ``JSON_EMBEDDED``: the page assigns its whole app state to
  ``window.__PRELOADED_STATE__``; reviews live under
  ``transformed.bundle.containers[].items``.
* ``DOM_CARDS``: older markup with one ``div.review`` card per review.

The format is detected once per page and dispatched to its adapter. Adding a
layout means adding an enum member, a detector branch and an adapter.

Detail pages are read by two adapters (JSON-LD metadata and DOM markup) whose
results are merged, falling back to hints from the listing page.
"""

from __future__ import annotations

import json
import logging
import re
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any

from bs4 import BeautifulSoup, NavigableString, Tag

from pitchfork_ingest.domain.models import ParsedReview, RawReviewSummary, split_names
from pitchfork_ingest.errors import ParseError

logger = logging.getLogger(__name__)

# These detail pages break the detail parser and are never ingested.
MALFORMED_URL_DENYLIST: frozenset[str] = frozenset(
    {
        "/reviews/albums/1365-no-more-shall-we-part/",
        "/reviews/albums/5911-the-complete-studio-recordings/",
    }
)

_PRELOADED_STATE_MARKER = "window.__PRELOADED_STATE__"
_PRELOADED_STATE_RE = re.compile(r"window\.__PRELOADED_STATE__\s*=\s*")


class ListingPageFormat(str, Enum):
    JSON_EMBEDDED = "json_embedded"
    DOM_CARDS = "dom_cards"


# ---------------------------------------------------------------------------
# Listing pages
# ---------------------------------------------------------------------------


def detect_listing_format(html: str) -> ListingPageFormat:
    """Detect which listing layout a page uses.

    Raises:
        ParseError: if the page matches no known layout.
    """
    if _PRELOADED_STATE_MARKER in html:
        return ListingPageFormat.JSON_EMBEDDED

    soup = BeautifulSoup(html, "lxml")
    if soup.select_one("div.review"):
        return ListingPageFormat.DOM_CARDS

    msg = "Listing page matches no known layout."
    raise ParseError(msg)


def parse_listing_page(html: str, page_number: int) -> list[RawReviewSummary]:
    """Extract review summaries from a listing page, newest first.

    Summaries whose URL is on the malformed-URL denylist are dropped.
    """
    page_format = detect_listing_format(html)

    if page_format is ListingPageFormat.JSON_EMBEDDED:
        summaries = _parse_json_listing(html)
    else:
        summaries = _parse_dom_listing(html)

    kept = [s for s in summaries if s.detail_url not in MALFORMED_URL_DENYLIST]
    skipped = len(summaries) - len(kept)
    if skipped:
        logger.info(
            "Page %s: excluded %s denylisted review URL(s).",
            page_number,
            skipped,
        )

    logger.debug(
        "Page %s (%s): found %s review summaries.",
        page_number,
        page_format.value,
        len(kept),
    )
    return kept


def _parse_json_listing(html: str) -> list[RawReviewSummary]:
    state = _load_preloaded_state(html)

    try:
        containers = state["transformed"]["bundle"]["containers"]
    except (KeyError, TypeError) as exc:
        msg = f"Preloaded state has no review containers: missing {exc}"
        raise ParseError(msg) from exc

    if not isinstance(containers, list):
        msg = "Preloaded state containers are not a list."
        raise ParseError(msg)

    items: list[dict[str, Any]] | None = None
    for container in containers:
        if isinstance(container, dict) and isinstance(container.get("items"), list):
            items = container["items"]
            break

    if items is None:
        msg = "Preloaded state contains no review items."
        raise ParseError(msg)

    summaries: list[RawReviewSummary] = []
    for item in items:
        summary = _summary_from_json_item(item)
        if summary is not None:
            summaries.append(summary)
    return summaries


def _load_preloaded_state(html: str) -> dict[str, Any]:
    match = _PRELOADED_STATE_RE.search(html)
    if match is None:
        msg = "No preloaded state found."
        raise ParseError(msg)

    try:
        state, _end = json.JSONDecoder().raw_decode(html, match.end())
    except json.JSONDecodeError as exc:
        msg = f"Preloaded state is not valid JSON: {exc}"
        raise ParseError(msg) from exc

    if not isinstance(state, dict):
        msg = "Preloaded state is not a JSON object."
        raise ParseError(msg)
    return state


def _summary_from_json_item(item: Any) -> RawReviewSummary | None:
    if not isinstance(item, dict):
        return None

    url = item.get("url")
    if not isinstance(url, str) or not url:
        logger.warning("Skipping listing item without URL: %r", item.get("id"))
        return None

    image = _as_dict(item.get("image"))
    cover = _clean(_as_dict(_as_dict(image.get("sources")).get("lg")).get("url"))

    rating = _as_dict(item.get("ratingValue"))
    score = _to_float(rating.get("score"))
    is_best_new = rating.get("isBestNewMusic")

    authors = _as_dict(_as_dict(item.get("contributors")).get("author")).get("items")
    author_name = None
    if isinstance(authors, list) and authors and isinstance(authors[0], dict):
        author_name = _clean(authors[0].get("name"))

    sub_hed = item.get("subHed")
    artist_field = sub_hed.get("name") if isinstance(sub_hed, dict) else sub_hed

    return RawReviewSummary(
        detail_url=url,
        pub_date=_parse_datetime(item.get("pubDate")),
        album_title=_clean(image.get("altText")),
        artist_names=split_names(_clean(artist_field)),
        cover_image_url=cover,
        score=score,
        is_best_new=bool(is_best_new) if is_best_new is not None else None,
        author_name=author_name,
    )


def _parse_dom_listing(html: str) -> list[RawReviewSummary]:
    soup = BeautifulSoup(html, "lxml")

    summaries: list[RawReviewSummary] = []
    for card in soup.select("div.review"):
        link = card.select_one("a.review__link") or card.find("a", href=True)
        href = link.get("href") if link else None
        if not href:
            logger.warning("Skipping review card without link.")
            continue

        title_tag = card.select_one(".review__title-album")
        artists = [
            li.get_text(strip=True)
            for li in card.select("ul.artist-list li")
            if li.get_text(strip=True)
        ]

        time_tag = card.find("time")
        pub_date = None
        if time_tag is not None:
            pub_date = _parse_datetime(time_tag.get("datetime") or time_tag.get("title"))

        img = card.select_one(".review__artwork img") or card.find("img")

        summaries.append(
            RawReviewSummary(
                detail_url=str(href),
                pub_date=pub_date,
                album_title=title_tag.get_text(strip=True) if title_tag else None,
                artist_names=artists,
                cover_image_url=img.get("src") if img else None,
            )
        )
    return summaries


# ---------------------------------------------------------------------------
# Detail pages
# ---------------------------------------------------------------------------


@dataclass(slots=True)
class DetailFields:
    """Normalized output of a single detail-page adapter.

    Every field is optional; :func:`parse_detail_page` merges adapters.
    """

    album_title: str | None = None
    artist_names: list[str] = field(default_factory=list)
    label_names: list[str] = field(default_factory=list)
    genre_names: list[str] = field(default_factory=list)
    cover_image_url: str | None = None
    score: float | None = None
    is_best_new: bool | None = None
    author_name: str | None = None
    publish_date: datetime | None = None
    review_body_html: str = ""


def parse_detail_page(
    html: str,
    summary: RawReviewSummary | None = None,
    *,
    url: str | None = None,
) -> ParsedReview:
    """Parse a review detail page into a ParsedReview (catalog_uri unset).

    An empty ``review_body_html`` in the result means the site served a
    throttled placeholder; callers should wait and fetch again.

    Raises:
        ParseError: if the body is present but no album title or no artist
            can be found.
    """
    soup = BeautifulSoup(html, "lxml")
    dom = _detail_from_dom(soup)
    ld = _detail_from_json_ld(soup)
    hint = _detail_from_summary(summary)
    detail_url = url or (summary.detail_url if summary else None)

    album_title = _first(dom.album_title, ld.album_title, hint.album_title)

    if not dom.review_body_html:
        return ParsedReview(
            album_title=album_title or "",
            artist_names=list(hint.artist_names),
            detail_url=detail_url,
        )

    if not album_title:
        msg = "Detail page has a body but no album title."
        raise ParseError(msg, url=detail_url)

    artist_names = dom.artist_names or ld.artist_names or hint.artist_names
    if not artist_names:
        msg = f'Detail page for "{album_title}" names no artist.'
        raise ParseError(msg, url=detail_url)

    return ParsedReview(
        album_title=album_title,
        artist_names=artist_names,
        label_names=dom.label_names or ld.label_names,
        genre_names=dom.genre_names or ld.genre_names,
        cover_image_url=_first(dom.cover_image_url, ld.cover_image_url, hint.cover_image_url),
        score=_first(dom.score, ld.score, hint.score) or 0.0,
        is_best_new=bool(_first(dom.is_best_new, ld.is_best_new, hint.is_best_new)),
        author_name=_first(dom.author_name, ld.author_name, hint.author_name) or "",
        publish_date=_first(dom.publish_date, ld.publish_date, hint.publish_date),
        review_body_html=dom.review_body_html,
        detail_url=detail_url,
    )


def _detail_from_dom(soup: BeautifulSoup) -> DetailFields:
    fields = DetailFields(review_body_html=_extract_body_html(soup))

    title_tag = soup.select_one('[data-testid="ContentHeaderHed"]')
    if title_tag is not None:
        fields.album_title = _clean(title_tag.get_text(" ", strip=True))

    for artist_tag in soup.select('[class*="SplitScreenContentHeaderArtist"]'):
        for name in split_names(artist_tag.get_text(" ", strip=True)):
            if name not in fields.artist_names:
                fields.artist_names.append(name)

    fields.label_names = split_names(_text_after_label(soup, "Label:"), unique=True)
    fields.genre_names = split_names(_text_after_label(soup, "Genre:"), unique=True)

    for rating_tag in soup.select('[class*="Rating"]'):
        value = _to_float(rating_tag.get_text(strip=True))
        if value is not None and 0.0 <= value <= 10.0:
            fields.score = value
            break

    if soup.select_one('[class*="BestNewMusic"]') is not None or soup.find(
        string=re.compile(r"^\s*Best New Music\s*$")
    ):
        fields.is_best_new = True

    byline = soup.select_one('[class*="BylineName"]')
    if byline is not None:
        fields.author_name = _clean(byline.get_text(" ", strip=True).removeprefix("By "))

    og_image = soup.find("meta", attrs={"property": "og:image"})
    if og_image is not None:
        fields.cover_image_url = _clean(og_image.get("content"))

    time_tag = soup.select_one('time[datetime], [data-testid="ContentHeaderPublishDate"]')
    if time_tag is not None:
        fields.publish_date = _parse_datetime(
            time_tag.get("datetime") or time_tag.get_text(strip=True)
        )

    return fields


def _extract_body_html(soup: BeautifulSoup) -> str:
    """Concatenate the optional dek block and the body blocks as raw markup."""
    parts: list[str] = []

    blurb = soup.select_one('[class*="SplitScreenContentHeaderDekDown"]')
    if blurb is not None:
        blurb_html = blurb.decode_contents().strip()
        if blurb_html:
            parts.append(f'<div class="review-blurb">{blurb_html}</div>')

    for wrapper in soup.select('[data-testid="BodyWrapper"]'):
        body_html = wrapper.decode_contents().strip()
        if body_html:
            parts.append(body_html)

    return "\n".join(parts)


def _text_after_label(soup: BeautifulSoup, label: str) -> str | None:
    """Return the text of the first non-empty sibling after a 'Label:' node."""
    label_tag = soup.find(
        lambda tag: isinstance(tag, Tag) and tag.get_text(strip=True) == label
    )
    if label_tag is None:
        return None

    for sibling in label_tag.next_siblings:
        if isinstance(sibling, NavigableString):
            text = str(sibling).strip()
        else:
            text = sibling.get_text(" ", strip=True)
        if text:
            return text
    return None


def _detail_from_json_ld(soup: BeautifulSoup) -> DetailFields:
    fields = DetailFields()

    for script in soup.find_all("script", attrs={"type": "application/ld+json"}):
        try:
            data = json.loads(script.string or "")
        except json.JSONDecodeError:
            logger.debug("Ignoring invalid JSON-LD block.")
            continue

        review = _find_ld_review(data)
        if review is None:
            continue

        item = review.get("itemReviewed") or {}
        if isinstance(item, dict):
            fields.album_title = _clean(item.get("name"))
            fields.artist_names = _ld_names(item.get("byArtist"))
            fields.cover_image_url = _ld_image(item.get("image"))
            fields.label_names = _ld_names(item.get("recordLabel"))
            fields.genre_names = [
                g for g in (_clean(v) for v in _as_list(item.get("genre"))) if g
            ]

        rating = review.get("reviewRating") or {}
        if isinstance(rating, dict):
            fields.score = _to_float(rating.get("ratingValue"))

        authors = _ld_names(review.get("author"))
        fields.author_name = authors[0] if authors else None
        fields.publish_date = _parse_datetime(review.get("datePublished"))
        fields.cover_image_url = fields.cover_image_url or _ld_image(review.get("image"))
        break

    return fields


def _find_ld_review(data: Any) -> dict[str, Any] | None:
    for node in _as_list(data):
        if not isinstance(node, dict):
            continue
        if node.get("@type") == "Review":
            return node
        nested = _find_ld_review(node.get("@graph"))
        if nested is not None:
            return nested
    return None


def _ld_names(value: Any) -> list[str]:
    names: list[str] = []
    for entry in _as_list(value):
        name = entry.get("name") if isinstance(entry, dict) else entry
        cleaned = _clean(name) if isinstance(name, str) else None
        if cleaned and cleaned not in names:
            names.append(cleaned)
    return names


def _ld_image(value: Any) -> str | None:
    for entry in _as_list(value):
        if isinstance(entry, str):
            return entry
        if isinstance(entry, dict) and isinstance(entry.get("url"), str):
            return entry["url"]
    return None


def _detail_from_summary(summary: RawReviewSummary | None) -> DetailFields:
    if summary is None:
        return DetailFields()
    return DetailFields(
        album_title=summary.album_title,
        artist_names=list(summary.artist_names),
        cover_image_url=summary.cover_image_url,
        score=summary.score,
        is_best_new=summary.is_best_new,
        author_name=summary.author_name,
        publish_date=summary.pub_date,
    )


# ---------------------------------------------------------------------------
# Helper functions
# ---------------------------------------------------------------------------


def _first(*values):
    for value in values:
        if value is not None:
            return value
    return None


def _as_dict(value: Any) -> dict[str, Any]:
    return value if isinstance(value, dict) else {}


def _as_list(value: Any) -> list[Any]:
    if value is None:
        return []
    if isinstance(value, list):
        return value
    return [value]


def _clean(value: Any) -> str | None:
    if not isinstance(value, str):
        return None
    text = value.strip()
    return text or None


def _to_float(value: Any) -> float | None:
    """Parse scores like 8.4, '8.4' or '7,5' into a float."""
    if isinstance(value, bool) or value is None:
        return None
    if isinstance(value, (int, float)):
        return float(value)
    m = re.match(r"\s*(\d+(?:[.,]\d+)?)\s*$", str(value))
    if not m:
        return None
    return float(m.group(1).replace(",", "."))


def _parse_datetime(value: Any) -> datetime | None:
    """Parse ISO-8601 timestamps such as '2023-01-05T05:00:00.000Z'."""
    if not isinstance(value, str) or not value.strip():
        return None
    text = value.strip()
    if text.endswith("Z"):
        text = text[:-1] + "+00:00"
    try:
        return datetime.fromisoformat(text)
    except ValueError:
        logger.debug("Unparseable timestamp %r", value)
        return None
