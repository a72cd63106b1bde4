"""Photo directory ORM model.

Classes:
    Photo: Read-only view of the photo records owned by the upload service.
"""

from __future__ import annotations

from datetime import datetime, timezone
from typing import Optional

from sqlmodel import Field, SQLModel


class Photo(SQLModel, table=True):
    __tablename__ = "photos"

    id: str = Field(primary_key=True)
    user_id: str = Field(index=True)
    image_url: str
    thumbnail_url: Optional[str] = None
    captured_at: Optional[datetime] = None
    location_id: Optional[str] = None
    created_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
