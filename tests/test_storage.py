"""Tests for the JSONL store and the upsert reconciler."""

from __future__ import annotations

from datetime import datetime, timezone
from pathlib import Path

import pytest

from stubs import MemoryRepository

from pitchfork_ingest.domain.models import ParsedReview, ReconcileOutcome, StoredReview
from pitchfork_ingest.errors import StorageError, UniqueConstraintError
from pitchfork_ingest.storage.base import NewReview
from pitchfork_ingest.storage.jsonl_store import JsonlReviewStore
from pitchfork_ingest.storage.reconciler import UpsertReconciler


def make_review(**overrides) -> ParsedReview:
    values = dict(
        album_title="Kid A",
        artist_names=["Radiohead"],
        label_names=["Parlophone", "Capitol"],
        genre_names=["Rock", "Electronic"],
        cover_image_url="https://media.test/kid-a.jpg",
        score=10.0,
        is_best_new=True,
        author_name="Brent DiCrescenzo",
        publish_date=datetime(2000, 10, 2, tzinfo=timezone.utc),
        review_body_html="<p>Kid A</p>",
    )
    values.update(overrides)
    return ParsedReview(**values)


@pytest.mark.asyncio
async def test_store_round_trips_and_reuses_entities(tmp_path: Path) -> None:
    store = JsonlReviewStore(tmp_path)
    first = await store.create_review(NewReview.from_parsed(make_review()))
    second = await store.create_review(
        NewReview.from_parsed(
            make_review(
                album_title="Amnesiac",
                label_names=["Parlophone"],
                genre_names=["Rock", "Rock"],
                score=9.0,
            )
        )
    )

    assert (first.id, second.id) == (1, 2)
    assert second.genre_names == ["Rock"]
    assert [e["name"] for e in store.export_entities("labels")] == ["Parlophone", "Capitol"]

    reopened = JsonlReviewStore(tmp_path)
    assert len(reopened) == 2
    found = await reopened.find_review_by_key("Kid A", "Brent DiCrescenzo", 10.0)
    assert found is not None
    assert found.artist_names == ["Radiohead"]
    assert found.label_names == ["Parlophone", "Capitol"]
    assert found.publish_date == datetime(2000, 10, 2, tzinfo=timezone.utc)
    assert found.review_body_html == "<p>Kid A</p>"

    new = await reopened.create_review(NewReview.from_parsed(make_review(album_title="Hail", score=5.0)))
    assert new.id == 3
    assert len(reopened.export_entities("labels")) == 2


@pytest.mark.asyncio
async def test_store_delete_join_row(tmp_path: Path) -> None:
    store = JsonlReviewStore(tmp_path)
    created = await store.create_review(NewReview.from_parsed(make_review()))
    capitol_id = next(e["id"] for e in store.export_entities("labels") if e["name"] == "Capitol")

    await store.delete_join_row(created.id, capitol_id)

    stored = await store.get_review(created.id)
    assert stored is not None
    assert stored.label_names == ["Parlophone"]


@pytest.mark.asyncio
async def test_reconcile_inserts_new_review() -> None:
    repo = MemoryRepository()
    outcome = await UpsertReconciler(repo).reconcile(make_review(catalog_uri="spotify:album:1"))

    assert outcome is ReconcileOutcome.INSERTED
    assert repo.writes == [("create", "Kid A")]
    assert repo.reviews[0].catalog_uri == "spotify:album:1"


@pytest.mark.asyncio
async def test_reconcile_backfills_only_catalog_link(tmp_path: Path) -> None:
    store = JsonlReviewStore(tmp_path)
    reconciler = UpsertReconciler(store)

    assert await reconciler.reconcile(make_review()) is ReconcileOutcome.INSERTED
    before = await store.get_review(1)
    assert before is not None and before.catalog_uri is None

    changed = make_review(
        catalog_uri="spotify:album:kid-a",
        review_body_html="<p>rewritten upstream</p>",
        genre_names=["Jazz"],
    )
    assert await reconciler.reconcile(changed) is ReconcileOutcome.UPDATED

    after = await store.get_review(1)
    assert after is not None
    assert after.catalog_uri == "spotify:album:kid-a"
    before.catalog_uri = "spotify:album:kid-a"
    assert after == before
    assert len(store) == 1


@pytest.mark.asyncio
async def test_reconcile_skips_complete_review() -> None:
    repo = MemoryRepository()
    reconciler = UpsertReconciler(repo)
    await reconciler.reconcile(make_review(catalog_uri="spotify:album:1"))

    assert await reconciler.reconcile(make_review(catalog_uri="spotify:album:2")) is ReconcileOutcome.SKIPPED
    assert await reconciler.reconcile(make_review()) is ReconcileOutcome.SKIPPED
    assert repo.writes == [("create", "Kid A")]
    assert repo.reviews[0].catalog_uri == "spotify:album:1"


class ConflictingRepository(MemoryRepository):
    """Fails the first insert with a join-row conflict."""

    def __init__(self, *, leave_partial_review: bool) -> None:
        super().__init__()
        self.leave_partial_review = leave_partial_review
        self.create_attempts = 0

    async def create_review(self, data: NewReview) -> StoredReview:
        self.create_attempts += 1
        if self.create_attempts == 1:
            if self.leave_partial_review:
                await super().create_review(data)
            raise UniqueConstraintError("duplicate link", review_id=1, entity_id=42)
        return await super().create_review(data)


@pytest.mark.asyncio
async def test_conflict_with_partial_review_is_treated_as_linked() -> None:
    repo = ConflictingRepository(leave_partial_review=True)

    outcome = await UpsertReconciler(repo).reconcile(make_review())

    assert outcome is ReconcileOutcome.INSERTED
    assert repo.deleted_links == [(1, 42)]
    assert repo.create_attempts == 1
    assert len(repo.reviews) == 1


@pytest.mark.asyncio
async def test_conflict_without_review_retries_once() -> None:
    repo = ConflictingRepository(leave_partial_review=False)

    outcome = await UpsertReconciler(repo).reconcile(make_review())

    assert outcome is ReconcileOutcome.INSERTED
    assert repo.deleted_links == [(1, 42)]
    assert repo.create_attempts == 2
    assert len(repo.reviews) == 1


@pytest.mark.asyncio
async def test_store_rejects_link_update_for_unknown_review(tmp_path: Path) -> None:
    store = JsonlReviewStore(tmp_path)
    with pytest.raises(StorageError):
        await store.update_review_catalog_link(99, "spotify:album:x")


@pytest.mark.asyncio
async def test_store_skips_damaged_lines_on_open(tmp_path: Path) -> None:
    (tmp_path / "reviews.jsonl").write_text(
        '{"id": 1, "album_title": "Kid A", "author_name": "B", "score": 10.0, "artist_ids": [2]}\n'
        "not json\n"
        '{"id": 2, "album_title": "No Key Fields"}\n'
        "[1, 2]\n"
        "\n",
        encoding="utf-8",
    )
    (tmp_path / "artists.jsonl").write_text(
        '{"id": 2, "name": "Radiohead"}\n{"id": "3", "name": "Bad Id"}\n',
        encoding="utf-8",
    )

    store = JsonlReviewStore(tmp_path)

    assert len(store) == 1
    found = await store.find_review_by_key("Kid A", "B", 10.0)
    assert found is not None
    assert found.artist_names == ["Radiohead"]
    assert store.export_entities("artists") == [{"id": 2, "name": "Radiohead"}]

    created = await store.create_review(
        NewReview(album_title="Amnesiac", author_name="B", score=9.0, label_names=["Parlophone"])
    )
    assert created.id == 2
    assert store.export_entities("labels") == [{"id": 3, "name": "Parlophone"}]
    assert not list(tmp_path.glob("*.tmp"))
