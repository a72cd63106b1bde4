"""Per-user embedding storage contract and its SQLModel adapter.

Classes:
    StoredEmbedding: Decoded embedding record handed to the projection and clustering layers.
    EmbeddingStore: Protocol consumed by the batch orchestrator and the visualisation service.
    SQLModelEmbeddingStore: Upsert/lookup implementation on the `photo_embeddings` table.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Optional, Protocol, Sequence

import numpy as np
from sqlalchemy import func
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import async_sessionmaker
from sqlmodel import select

from app.models import PhotoEmbedding
from app.utils.vectors import pack_vector, unpack_vector

_LOGGER = logging.getLogger(__name__)


@dataclass(slots=True)
class StoredEmbedding:
    photo_id: str
    user_id: str
    vector: np.ndarray
    dimension: int
    created_at: datetime


class EmbeddingStore(Protocol):
    async def find_by_user_id(self, user_id: str) -> list[StoredEmbedding]: ...

    async def upsert(
        self,
        photo_id: str,
        user_id: str,
        vector: Sequence[float],
        dimension: int,
    ) -> StoredEmbedding: ...


def _as_utc(value: datetime) -> datetime:
    # SQLite drops the offset on the way back
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def _to_stored(record: PhotoEmbedding) -> StoredEmbedding:
    return StoredEmbedding(
        photo_id=record.photo_id,
        user_id=record.user_id,
        vector=unpack_vector(record.vector, record.dim),
        dimension=record.dim,
        created_at=_as_utc(record.created_at),
    )


class SQLModelEmbeddingStore:
    """Embedding store backed by SQLModel.

    Every operation opens its own session from the factory, so concurrent
    upserts from the batch orchestrator never share a session.
    """

    def __init__(self, session_factory: async_sessionmaker, *, model_id: Optional[str] = None) -> None:
        self._session_factory = session_factory
        self._model_id = model_id

    async def find_by_user_id(self, user_id: str) -> list[StoredEmbedding]:
        async with self._session_factory() as session:
            result = await session.exec(select(PhotoEmbedding).where(PhotoEmbedding.user_id == user_id))
            return [_to_stored(record) for record in result.all()]

    async def find_by_photo_id(self, user_id: str, photo_id: str) -> StoredEmbedding | None:
        async with self._session_factory() as session:
            record = await self._get(session, user_id, photo_id)
            return _to_stored(record) if record is not None else None

    async def existing_photo_ids(self, user_id: str) -> set[str]:
        async with self._session_factory() as session:
            result = await session.exec(
                select(PhotoEmbedding.photo_id).where(PhotoEmbedding.user_id == user_id)
            )
            return set(result.all())

    async def count_by_user_id(self, user_id: str) -> int:
        async with self._session_factory() as session:
            result = await session.exec(
                select(func.count()).select_from(PhotoEmbedding).where(PhotoEmbedding.user_id == user_id)
            )
            return int(result.one())

    async def upsert(
        self,
        photo_id: str,
        user_id: str,
        vector: Sequence[float],
        dimension: int,
    ) -> StoredEmbedding:
        if len(vector) != dimension:
            raise ValueError(f"Vector length {len(vector)} does not match dimension {dimension}")

        payload, norm = pack_vector(vector)
        async with self._session_factory() as session:
            record = await self._write(session, user_id, photo_id, payload, norm, dimension)
            if record is None:
                # lost an insert race for the same key; the row exists now
                await session.rollback()
                record = await self._write(session, user_id, photo_id, payload, norm, dimension)
                if record is None:
                    raise RuntimeError(f"Could not upsert embedding for photo {photo_id}")
            return _to_stored(record)

    async def delete(self, user_id: str, photo_id: str) -> bool:
        async with self._session_factory() as session:
            record = await self._get(session, user_id, photo_id)
            if record is None:
                return False
            await session.delete(record)
            await session.commit()
            _LOGGER.info("Deleted embedding for photo %s", photo_id)
            return True

    async def _get(self, session, user_id: str, photo_id: str) -> PhotoEmbedding | None:
        result = await session.exec(
            select(PhotoEmbedding).where(
                PhotoEmbedding.user_id == user_id,
                PhotoEmbedding.photo_id == photo_id,
            )
        )
        return result.first()

    async def _write(
        self,
        session,
        user_id: str,
        photo_id: str,
        payload: bytes,
        norm: float,
        dimension: int,
    ) -> PhotoEmbedding | None:
        now = datetime.now(timezone.utc)
        record = await self._get(session, user_id, photo_id)
        if record is None:
            record = PhotoEmbedding(
                photo_id=photo_id,
                user_id=user_id,
                dim=dimension,
                vector=payload,
                vector_norm=norm,
                model_id=self._model_id,
                created_at=now,
                updated_at=now,
            )
        else:
            record.dim = dimension
            record.vector = payload
            record.vector_norm = norm
            record.model_id = self._model_id or record.model_id
            record.created_at = now
            record.updated_at = now
        session.add(record)
        try:
            await session.commit()
        except IntegrityError:
            return None
        await session.refresh(record)
        return record
