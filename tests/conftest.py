"""Shared fixtures: in-memory catalog, local storage on tmp_path, seeded users."""

import base64

import pytest
import pytest_asyncio
from sqlalchemy.ext.asyncio import create_async_engine
from sqlalchemy.pool import StaticPool

from musiclib.db.base import Base
from musiclib.db.session import create_session_factory
from musiclib.models import User
from musiclib.utils.sessions import UploadSessionRegistry
from musiclib.utils.storage import LocalStorage
from musiclib.utils.url_cache import UrlCache

# Smallest valid PNG (1x1, transparent)
PNG_BYTES = base64.b64decode(
    "iVBORw0KGgoAAAANSUhEUgAAAAEAAAABCAYAAAAfFcSJAAAADUlEQVR42mNkYPhfDwAChwGA60e6kgAAAABJRU5ErkJggg=="
)


class FakeClock:
    def __init__(self, now: float = 1000.0):
        self.now = now

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


@pytest.fixture
def clock():
    return FakeClock()


@pytest_asyncio.fixture
async def engine():
    engine = create_async_engine(
        "sqlite+aiosqlite://",
        poolclass=StaticPool,
        connect_args={"check_same_thread": False},
    )
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield engine
    await engine.dispose()


@pytest.fixture
def session_factory(engine):
    return create_session_factory(engine)


@pytest.fixture
def storage(tmp_path):
    return LocalStorage(tmp_path / "storage")


@pytest.fixture
def registry(clock):
    return UploadSessionRegistry(max_sessions=10, max_age=1800, clock=clock)


@pytest.fixture
def url_cache(storage, clock):
    return UrlCache(storage, cache_seconds=600, default_ttl=900, clock=clock)


@pytest_asyncio.fixture
async def users(session_factory):
    """Two regular users and one admin, keyed by username."""
    async with session_factory() as session:
        created = {
            "alice": User(username="alice", email="alice@example.com"),
            "bob": User(username="bob", email="bob@example.com"),
            "admin": User(username="admin", email="admin@example.com", is_admin=True),
        }
        session.add_all(created.values())
        await session.commit()
    return created
