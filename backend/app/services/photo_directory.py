"""Read-only lookups against the photo records owned by the upload service."""

from __future__ import annotations

from typing import Iterable

from sqlmodel import select
from sqlmodel.ext.asyncio.session import AsyncSession

from app.models import Photo


class PhotoDirectory:
    def __init__(self, session: AsyncSession) -> None:
        self._session = session

    async def list_by_owner(self, user_id: str) -> list[Photo]:
        result = await self._session.exec(
            select(Photo).where(Photo.user_id == user_id).order_by(Photo.created_at, Photo.id)
        )
        return list(result.all())

    async def find_owned(self, user_id: str, photo_ids: Iterable[str]) -> dict[str, Photo]:
        """Return the subset of ``photo_ids`` that exist and belong to ``user_id``."""

        ids = list(dict.fromkeys(photo_ids))
        if not ids:
            return {}
        result = await self._session.exec(
            select(Photo).where(Photo.id.in_(ids), Photo.user_id == user_id)
        )
        return {photo.id: photo for photo in result.all()}
