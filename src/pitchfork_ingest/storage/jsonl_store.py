# pitchfork_ingest/storage/jsonl_store.py

"""File-backed ReviewRepository.

Layout inside the data directory::

    reviews.jsonl   one review per line, sequential integer "id", with
                    "label_ids" / "artist_ids" / "genre_ids" join lists
    labels.jsonl    {"id": int, "name": str}, names unique
    artists.jsonl   same
    genres.jsonl    same

Entity IDs come from one sequence shared by all three kinds, so a join row
is identified by (review_id, entity_id) alone. Everything is loaded on
open; each mutation rewrites the affected files.
"""

from __future__ import annotations

import asyncio
import json
import logging
import os
from collections.abc import Iterable, Iterator
from datetime import datetime
from pathlib import Path
from typing import Any

from pitchfork_ingest.domain.models import StoredReview
from pitchfork_ingest.errors import StorageError
from pitchfork_ingest.storage.base import NewReview

logger = logging.getLogger(__name__)

ENTITY_KINDS = ("labels", "artists", "genres")
REVIEW_KEY_FIELDS = ("album_title", "author_name", "score")


class JsonlReviewStore:
    def __init__(self, data_dir: Path) -> None:
        self._data_dir = Path(data_dir)
        self._lock = asyncio.Lock()

        self._reviews = _load_reviews(self._path("reviews"))
        self._entity_ids: dict[str, dict[str, int]] = {}
        self._entity_names: dict[int, str] = {}

        for kind in ENTITY_KINDS:
            by_name = _load_entities(self._path(kind))
            self._entity_ids[kind] = by_name
            for name, entity_id in by_name.items():
                self._entity_names[entity_id] = name

        self._next_review_id = max(self._reviews, default=0) + 1
        self._next_entity_id = max(self._entity_names, default=0) + 1

        logger.debug(
            "Loaded %d reviews and %d named entities from %s",
            len(self._reviews),
            len(self._entity_names),
            self._data_dir,
        )

    def _path(self, name: str) -> Path:
        return self._data_dir / f"{name}.jsonl"

    def __len__(self) -> int:
        return len(self._reviews)

    async def find_review_by_key(
        self,
        album_title: str,
        author_name: str,
        score: float,
    ) -> StoredReview | None:
        for raw in self._reviews.values():
            if (
                raw["album_title"] == album_title
                and raw["author_name"] == author_name
                and raw["score"] == score
            ):
                return self._to_stored(raw)
        return None

    async def create_review(self, data: NewReview) -> StoredReview:
        async with self._lock:
            review_id = self._next_review_id
            self._next_review_id += 1

            touched_kinds: set[str] = set()
            join_ids: dict[str, list[int]] = {}
            for kind, names in (
                ("labels", data.label_names),
                ("artists", data.artist_names),
                ("genres", data.genre_names),
            ):
                ids: list[int] = []
                for name in names:
                    entity_id, created = self._connect_or_create(kind, name)
                    if created:
                        touched_kinds.add(kind)
                    if entity_id not in ids:
                        ids.append(entity_id)
                join_ids[kind] = ids

            raw = {
                "id": review_id,
                "album_title": data.album_title,
                "author_name": data.author_name,
                "score": data.score,
                "catalog_uri": data.catalog_uri,
                "cover_image_url": data.cover_image_url,
                "is_best_new": data.is_best_new,
                "publish_date": _datetime_to_str(data.publish_date),
                "review_body_html": data.review_body_html,
                "label_ids": join_ids["labels"],
                "artist_ids": join_ids["artists"],
                "genre_ids": join_ids["genres"],
            }
            self._reviews[review_id] = raw

            for kind in sorted(touched_kinds):
                self._flush_entities(kind)
            self._flush_reviews()

        return self._to_stored(raw)

    async def update_review_catalog_link(self, review_id: int, catalog_uri: str) -> None:
        async with self._lock:
            raw = self._reviews.get(review_id)
            if raw is None:
                msg = f"No review with id={review_id}"
                raise StorageError(msg)
            raw["catalog_uri"] = catalog_uri
            self._flush_reviews()

    async def delete_join_row(self, review_id: int, entity_id: int) -> None:
        async with self._lock:
            raw = self._reviews.get(review_id)
            if raw is None:
                return
            for key in ("label_ids", "artist_ids", "genre_ids"):
                raw[key] = [i for i in raw.get(key, []) if i != entity_id]
            self._flush_reviews()

    async def get_review(self, review_id: int) -> StoredReview | None:
        raw = self._reviews.get(review_id)
        return self._to_stored(raw) if raw is not None else None

    async def list_reviews(self) -> list[StoredReview]:
        """Return all reviews in insertion (ID) order."""
        return [self._to_stored(self._reviews[i]) for i in sorted(self._reviews)]

    def export_entities(self, kind: str) -> list[dict[str, Any]]:
        """Return ``{"id", "name"}`` dicts for one entity kind, ordered by ID."""
        if kind not in ENTITY_KINDS:
            msg = f"Unknown entity kind: {kind}"
            raise ValueError(msg)
        by_name = self._entity_ids[kind]
        return [
            {"id": entity_id, "name": name}
            for name, entity_id in sorted(by_name.items(), key=lambda kv: kv[1])
        ]

    def _connect_or_create(self, kind: str, name: str) -> tuple[int, bool]:
        by_name = self._entity_ids[kind]
        existing = by_name.get(name)
        if existing is not None:
            return existing, False

        entity_id = self._next_entity_id
        self._next_entity_id += 1
        by_name[name] = entity_id
        self._entity_names[entity_id] = name
        return entity_id, True

    def _flush_reviews(self) -> None:
        _rewrite(self._path("reviews"), (self._reviews[i] for i in sorted(self._reviews)))

    def _flush_entities(self, kind: str) -> None:
        _rewrite(self._path(kind), self.export_entities(kind))

    def _to_stored(self, raw: dict[str, Any]) -> StoredReview:
        return StoredReview(
            id=raw["id"],
            album_title=raw["album_title"],
            author_name=raw["author_name"],
            score=raw["score"],
            catalog_uri=raw.get("catalog_uri"),
            artist_names=self._names(raw.get("artist_ids")),
            label_names=self._names(raw.get("label_ids")),
            genre_names=self._names(raw.get("genre_ids")),
            cover_image_url=raw.get("cover_image_url"),
            is_best_new=bool(raw.get("is_best_new", False)),
            publish_date=_parse_datetime(raw.get("publish_date")),
            review_body_html=raw.get("review_body_html", ""),
        )

    def _names(self, ids: list[int] | None) -> list[str]:
        return [self._entity_names[i] for i in ids or [] if i in self._entity_names]


def _datetime_to_str(value: datetime | None) -> str | None:
    if value is None:
        return None
    return value.isoformat()


def _parse_datetime(value: str | None) -> datetime | None:
    if not value:
        return None
    return datetime.fromisoformat(value)


def _iter_records(path: Path) -> Iterator[tuple[int, dict[str, Any]]]:
    """Yield (line number, object) for each JSON object line in ``path``.

    Blank lines are ignored; lines that are not a JSON object are logged and
    skipped so one damaged line does not make the store unreadable.
    """
    if not path.exists():
        return

    with path.open("r", encoding="utf-8") as f:
        for line_number, line in enumerate(f, start=1):
            line = line.strip()
            if not line:
                continue
            try:
                obj = json.loads(line)
            except json.JSONDecodeError as exc:
                logger.warning("Skipping invalid JSON line %d in %s: %s", line_number, path, exc)
                continue
            if not isinstance(obj, dict):
                logger.warning("Skipping non-object line %d in %s", line_number, path)
                continue
            yield line_number, obj


def _load_reviews(path: Path) -> dict[int, dict[str, Any]]:
    """Load review records by ID. A later line with the same ID wins."""
    reviews: dict[int, dict[str, Any]] = {}
    for line_number, obj in _iter_records(path):
        review_id = obj.get("id")
        if not isinstance(review_id, int) or any(k not in obj for k in REVIEW_KEY_FIELDS):
            logger.warning("Skipping review without id or key fields at %s:%d", path, line_number)
            continue
        reviews[review_id] = obj
    return reviews


def _load_entities(path: Path) -> dict[str, int]:
    """Load one entity file as a name-to-ID map."""
    by_name: dict[str, int] = {}
    for line_number, obj in _iter_records(path):
        entity_id, name = obj.get("id"), obj.get("name")
        if not isinstance(entity_id, int) or not isinstance(name, str):
            logger.warning("Skipping malformed entity at %s:%d", path, line_number)
            continue
        by_name[name] = entity_id
    return by_name


def _rewrite(path: Path, records: Iterable[dict[str, Any]]) -> None:
    """Replace ``path`` with ``records``, one JSON object per line.

    Writes go to a sibling temp file that is renamed into place, so readers
    never see a half-written file.
    """
    path.parent.mkdir(parents=True, exist_ok=True)
    tmp_path = path.with_suffix(path.suffix + ".tmp")
    with tmp_path.open("w", encoding="utf-8") as f:
        for record in records:
            f.write(json.dumps(record, ensure_ascii=False) + "\n")
    os.replace(tmp_path, path)
