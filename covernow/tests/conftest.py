"""
Test configuration for CoverNow tests.

Every test gets a fresh in-memory SQLite database (aiosqlite) built straight from
Base.metadata, so no PostgreSQL, Redis, Mistral or Tavily is needed. StaticPool
keeps the single in-memory connection shared between the sessions a test opens.
"""
import pytest
import pytest_asyncio
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import StaticPool

import covernow.models  # noqa: F401
from covernow import store
from covernow.database import Base
from covernow.graph import graph as graph_module
from covernow.tests.fakes import USER_ID


@pytest_asyncio.fixture
async def engine():
    engine = create_async_engine(
        "sqlite+aiosqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield engine
    await engine.dispose()


@pytest.fixture
def session_factory(engine):
    return async_sessionmaker(bind=engine, class_=AsyncSession, expire_on_commit=False)


@pytest_asyncio.fixture
async def db(session_factory):
    async with session_factory() as session:
        yield session


@pytest_asyncio.fixture
async def profile(db):
    record = await store.create_profile(db, USER_ID, "Asha", "Rao")
    await db.commit()
    return record


@pytest_asyncio.fixture
async def conversation_id(db, profile):
    conversation = await store.create_conversation(db, USER_ID)
    await db.commit()
    return conversation["id"]


@pytest.fixture
def resources():
    """Registers fakes in the graph registry and clears them afterwards."""
    yield graph_module.set_resources
    graph_module.set_resources()
