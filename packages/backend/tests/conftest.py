"""Test fixtures: a throwaway SQLite board and a fresh app per test.

Learn: Testing pattern for async SQLAlchemy + FastAPI without a server:

1. Each test gets its own SQLite file (aiosqlite driver, NullPool), so every
   session is a real, separate connection, just like Postgres in production
2. create_app() builds a new app (and a new Broadcaster) per test, so no
   subscriber ever leaks from one test into the next
3. get_db and get_session_factory are overridden to point at that file
4. httpx's ASGITransport drives the app in-process

The event stream endpoint only returns once the stream ends, so stream
tests end it themselves with broadcaster.close_all().
"""

import asyncio

import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import NullPool

from ticketboard.db.engine import get_db, get_session_factory
from ticketboard.db.models import Base
from ticketboard.main import create_app


@pytest_asyncio.fixture()
async def engine(tmp_path):
    """A fresh SQLite database with the schema created."""
    engine = create_async_engine(
        f"sqlite+aiosqlite:///{tmp_path / 'board.db'}",
        poolclass=NullPool,
    )
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    try:
        yield engine
    finally:
        await engine.dispose()


@pytest.fixture()
def session_factory(engine):
    return async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)


@pytest_asyncio.fixture()
async def db_session(session_factory):
    """A session for service-level tests."""
    async with session_factory() as session:
        yield session


@pytest.fixture()
def app(session_factory):
    """A new app wired to the test database."""
    app = create_app()

    async def override_get_db():
        async with session_factory() as session:
            yield session

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_session_factory] = lambda: session_factory
    yield app
    app.dependency_overrides.clear()


@pytest.fixture()
def broadcaster(app):
    return app.state.broadcaster


@pytest_asyncio.fixture()
async def client(app):
    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as ac:
        yield ac


async def wait_until(predicate, timeout: float = 2.0, interval: float = 0.01):
    """Poll `predicate` until it is true; fail the test on timeout."""
    loop = asyncio.get_running_loop()
    deadline = loop.time() + timeout
    while not predicate():
        if loop.time() > deadline:
            pytest.fail("condition not met before timeout")
        await asyncio.sleep(interval)
