"""Async engine and session plumbing for the photo and embedding tables.

Attributes:
    engine (AsyncEngine): Shared async engine; SQLite via aiosqlite by default.
    SessionLocal (async_sessionmaker): Session factory used by request handlers and the embedding store.

Functions:
    init_db(): Create the tables and apply SQLite pragmas and the unique photo index.
    get_session(): Request-scoped AsyncSession dependency.
    get_session_factory(): Dependency returning the session factory for work that outlives one session.
"""

import logging
from collections.abc import AsyncGenerator
from pathlib import Path

from sqlalchemy.ext.asyncio import AsyncEngine, async_sessionmaker, create_async_engine
from sqlmodel import SQLModel
from sqlmodel.ext.asyncio.session import AsyncSession

from app.core.config import get_settings

_settings = get_settings()
_LOGGER = logging.getLogger(__name__)

_db_path = Path(_settings.database_url.replace("sqlite+aiosqlite:///", "")).resolve()
if _db_path.parent.name:
    _db_path.parent.mkdir(parents=True, exist_ok=True)


engine: AsyncEngine = create_async_engine(
    _settings.database_url,
    echo=False,
    connect_args=(
        {"check_same_thread": False, "timeout": 30}
        if _settings.database_url.startswith("sqlite")
        else {}
    ),
)

SessionLocal = async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)


async def init_db() -> None:
    async with engine.begin() as conn:
        await conn.run_sync(SQLModel.metadata.create_all)
        if _settings.database_url.startswith("sqlite"):
            await _ensure_sqlite_schema(conn)


async def get_session() -> AsyncGenerator[AsyncSession, None]:
    async with SessionLocal() as session:
        yield session


def get_session_factory() -> async_sessionmaker:
    return SessionLocal


async def _ensure_sqlite_schema(conn) -> None:
    """Switch SQLite to WAL and make sure the per-user photo key is unique."""

    try:
        await conn.exec_driver_sql("PRAGMA journal_mode=WAL")
        await conn.exec_driver_sql("PRAGMA synchronous=NORMAL")
    except Exception:
        _LOGGER.warning("Could not switch SQLite to WAL mode", exc_info=True)

    await conn.exec_driver_sql(
        "CREATE UNIQUE INDEX IF NOT EXISTS ix_photo_embeddings_user_photo ON photo_embeddings (user_id, photo_id)"
    )
