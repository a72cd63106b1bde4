"""Request-scoped dependencies shared by the route modules."""

from __future__ import annotations

from fastapi import Depends, Header, HTTPException, Request, status
from sqlalchemy.ext.asyncio import async_sessionmaker
from sqlmodel.ext.asyncio.session import AsyncSession

from app.core.config import get_settings
from app.db.session import get_session, get_session_factory
from app.services.embedding_generator import EmbeddingGenerator
from app.services.embedding_store import SQLModelEmbeddingStore
from app.services.embeddings import EmbeddingService
from app.services.photo_directory import PhotoDirectory


async def get_current_user_id(x_user_id: str | None = Header(default=None)) -> str:
    if not x_user_id or not x_user_id.strip():
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Authentication required")
    return x_user_id.strip()


def get_embedding_generator(request: Request) -> EmbeddingGenerator:
    # set by the application lifespan, which also owns its HTTP client
    generator = getattr(request.app.state, "embedding_generator", None)
    if generator is None:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Embedding generator is not initialised",
        )
    return generator


def get_embedding_service(
    session: AsyncSession = Depends(get_session),
    session_factory: async_sessionmaker = Depends(get_session_factory),
    generator: EmbeddingGenerator = Depends(get_embedding_generator),
) -> EmbeddingService:
    settings = get_settings()
    store = SQLModelEmbeddingStore(session_factory, model_id=settings.vertex_embedding_model)
    return EmbeddingService(generator, store, PhotoDirectory(session), settings=settings)
