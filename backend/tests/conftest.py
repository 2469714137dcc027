"""Pytest configuration and fixtures."""

import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine

from crosswalk.core.config import Settings
from crosswalk.core.database import Base
from crosswalk.services.crosswalk_service import CrosswalkService
from crosswalk.services.data_source import InMemoryDataSource

from factories import default_catalog, seed_database


@pytest.fixture
def settings() -> Settings:
    """Default settings, isolated from any local .env file."""
    return Settings(_env_file=None)


@pytest.fixture
def catalog() -> dict:
    return default_catalog()


@pytest.fixture
def data_source(catalog) -> InMemoryDataSource:
    return InMemoryDataSource(**catalog)


@pytest.fixture
def service(data_source, settings) -> CrosswalkService:
    """Service without a cache."""
    return CrosswalkService(data_source, settings=settings)


@pytest_asyncio.fixture
async def db_engine(tmp_path):
    """File-backed SQLite engine with the crosswalk tables.

    A file database gets a real connection pool, so checked-out
    connections can be counted.
    """
    engine = create_async_engine(f"sqlite+aiosqlite:///{tmp_path / 'crosswalk.db'}")

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    yield engine

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)
    await engine.dispose()


@pytest.fixture
def session_factory(db_engine) -> async_sessionmaker[AsyncSession]:
    return async_sessionmaker(db_engine, class_=AsyncSession, expire_on_commit=False)


@pytest_asyncio.fixture
async def seeded_session_factory(session_factory, catalog):
    """Session factory over a database holding the default catalog."""
    async with session_factory() as session:
        await seed_database(session, catalog)
    return session_factory


@pytest_asyncio.fixture
async def client(data_source, settings):
    """HTTP client against the app, reading from the in-memory catalog."""
    from crosswalk.api.deps import get_service
    from crosswalk.main import app

    app.dependency_overrides[get_service] = lambda: CrosswalkService(
        data_source, settings=settings
    )
    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as ac:
        yield ac
    app.dependency_overrides.clear()
