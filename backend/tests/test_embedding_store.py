import asyncio
from datetime import datetime, timezone

import numpy as np
import pytest

from app.db.session import _ensure_sqlite_schema
from app.services.embedding_store import SQLModelEmbeddingStore
from app.utils.vectors import cosine_similarities, pack_vector, unpack_vector


@pytest.mark.asyncio
async def test_upsert_replaces_existing_row(session_factory):
    store = SQLModelEmbeddingStore(session_factory, model_id="multimodalembedding@001")

    first = await store.upsert("photo-1", "user-1", [1.0, 0.0, 0.0, 0.0], 4)
    second = await store.upsert("photo-1", "user-1", [0.0, 2.0, 0.0, 0.0], 4)

    assert await store.count_by_user_id("user-1") == 1
    stored = await store.find_by_photo_id("user-1", "photo-1")
    assert stored is not None
    assert np.allclose(stored.vector, [0.0, 2.0, 0.0, 0.0])
    assert stored.dimension == 4
    assert second.created_at >= first.created_at


@pytest.mark.asyncio
async def test_created_at_round_trips_as_utc(session_factory):
    store = SQLModelEmbeddingStore(session_factory)
    before = datetime.now(timezone.utc)

    written = await store.upsert("photo-1", "user-1", [0.5, 0.5], 2)
    stored = await store.find_by_photo_id("user-1", "photo-1")

    after = datetime.now(timezone.utc)
    assert stored is not None
    assert stored.created_at.tzinfo is not None
    assert stored.created_at.utcoffset().total_seconds() == 0
    assert before.replace(microsecond=0) <= stored.created_at <= after
    assert stored.created_at == written.created_at


@pytest.mark.asyncio
async def test_upsert_rejects_length_mismatch(session_factory):
    store = SQLModelEmbeddingStore(session_factory)

    with pytest.raises(ValueError):
        await store.upsert("photo-1", "user-1", [1.0, 2.0, 3.0], 4)
    assert await store.count_by_user_id("user-1") == 0


@pytest.mark.asyncio
async def test_concurrent_upserts_of_one_photo_keep_a_single_row(session_factory):
    store = SQLModelEmbeddingStore(session_factory)

    await asyncio.gather(*(store.upsert("photo-1", "user-1", [float(index), 1.0], 2) for index in range(3)))

    assert await store.count_by_user_id("user-1") == 1


@pytest.mark.asyncio
async def test_lookups_are_scoped_to_the_owner(session_factory):
    store = SQLModelEmbeddingStore(session_factory)
    await store.upsert("photo-1", "user-1", [1.0, 0.0], 2)
    await store.upsert("photo-2", "user-1", [0.0, 1.0], 2)
    await store.upsert("photo-3", "user-2", [1.0, 1.0], 2)

    mine = await store.find_by_user_id("user-1")
    assert sorted(item.photo_id for item in mine) == ["photo-1", "photo-2"]
    assert await store.existing_photo_ids("user-2") == {"photo-3"}
    assert await store.find_by_photo_id("user-2", "photo-1") is None


@pytest.mark.asyncio
async def test_delete_removes_only_the_named_embedding(session_factory):
    store = SQLModelEmbeddingStore(session_factory)
    await store.upsert("photo-1", "user-1", [1.0, 0.0], 2)
    await store.upsert("photo-2", "user-1", [0.0, 1.0], 2)

    assert await store.delete("user-1", "photo-1") is True
    assert await store.delete("user-1", "photo-1") is False
    assert await store.existing_photo_ids("user-1") == {"photo-2"}


def test_vector_packing_keeps_float32_values_and_norm():
    payload, norm = pack_vector([3.0, 4.0])
    assert len(payload) == 8
    assert norm == pytest.approx(5.0)
    assert unpack_vector(payload, 2).tolist() == [3.0, 4.0]


def test_cosine_similarities_score_zero_vectors_as_zero():
    target = np.array([1.0, 0.0])
    candidates = np.array([[2.0, 0.0], [0.0, 3.0], [0.0, 0.0], [-1.0, 0.0]])
    scores = cosine_similarities(target, candidates)
    assert scores.tolist() == pytest.approx([1.0, 0.0, 0.0, -1.0])

    with pytest.raises(ValueError):
        cosine_similarities(target, np.ones((2, 3)))


@pytest.mark.asyncio
async def test_schema_setup_adds_unique_owner_photo_index(engine):
    async with engine.begin() as conn:
        await _ensure_sqlite_schema(conn)
        await _ensure_sqlite_schema(conn)
        result = await conn.exec_driver_sql("PRAGMA index_list(photo_embeddings)")
        indexes = {row[1]: row[2] for row in result.fetchall()}

    assert indexes["ix_photo_embeddings_user_photo"] == 1
