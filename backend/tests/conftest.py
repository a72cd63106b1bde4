from collections.abc import AsyncGenerator

import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient
from sqlalchemy.ext.asyncio import AsyncEngine, async_sessionmaker, create_async_engine
from sqlmodel import SQLModel
from sqlmodel.ext.asyncio.session import AsyncSession

from app.api.deps import get_embedding_generator
from app.db.session import get_session, get_session_factory
from app.main import app

from .fakes import FakeEmbeddingGenerator


@pytest.fixture(scope="session")
def anyio_backend():
    return "asyncio"


@pytest_asyncio.fixture()
async def engine(tmp_path) -> AsyncGenerator[AsyncEngine, None]:
    # file-backed so sessions opened by the store see each other's writes
    db_engine = create_async_engine(
        f"sqlite+aiosqlite:///{tmp_path / 'test.db'}",
        connect_args={"check_same_thread": False, "timeout": 30},
    )
    async with db_engine.begin() as conn:
        await conn.run_sync(SQLModel.metadata.create_all)
    try:
        yield db_engine
    finally:
        await db_engine.dispose()


@pytest.fixture()
def session_factory(engine: AsyncEngine) -> async_sessionmaker:
    return async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)


@pytest_asyncio.fixture()
async def session(session_factory: async_sessionmaker) -> AsyncGenerator[AsyncSession, None]:
    async with session_factory() as db_session:
        yield db_session


@pytest.fixture()
def fake_generator() -> FakeEmbeddingGenerator:
    return FakeEmbeddingGenerator()


@pytest_asyncio.fixture()
async def client(
    session: AsyncSession,
    session_factory: async_sessionmaker,
    fake_generator: FakeEmbeddingGenerator,
) -> AsyncGenerator[AsyncClient, None]:
    async def _override_session():
        yield session

    app.dependency_overrides[get_session] = _override_session
    app.dependency_overrides[get_session_factory] = lambda: session_factory
    app.dependency_overrides[get_embedding_generator] = lambda: fake_generator
    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://testserver") as test_client:
        yield test_client
    app.dependency_overrides.clear()
