"""Photo embedding persistence model.

Classes:
    PhotoEmbedding: Persists the embedding vector generated for a photo along with dimensionality metadata.
"""

from __future__ import annotations

from datetime import datetime, timezone
from typing import Optional

from sqlalchemy import Column, Index, LargeBinary, UniqueConstraint
from sqlmodel import Field, SQLModel


class PhotoEmbedding(SQLModel, table=True):
    __tablename__ = "photo_embeddings"
    __table_args__ = (
        UniqueConstraint("user_id", "photo_id", name="uq_photo_embeddings_user_photo"),
        Index("ix_photo_embeddings_user", "user_id"),
    )

    id: Optional[int] = Field(default=None, primary_key=True)
    photo_id: str = Field(index=True)
    user_id: str
    dim: int
    vector: bytes = Field(sa_column=Column(LargeBinary, nullable=False))
    vector_norm: Optional[float] = None
    model_id: Optional[str] = None
    created_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
    updated_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
