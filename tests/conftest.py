"""Shared test fixtures."""

from __future__ import annotations

from collections.abc import AsyncGenerator
from datetime import datetime, timedelta, timezone

import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine

from devpath.auth.jwt import create_access_token
from devpath.database import close_db, get_engine, get_session_factory, init_db
from devpath.db.base import Base
from devpath.db.models import User
from devpath.main import create_app
from devpath.progression.locks import LocalUserLocks
from devpath.progression.orchestrator import ProgressionOrchestrator
from devpath.progression.seed import seed_catalog

FIXED_NOW = datetime(2026, 3, 2, 12, 0, tzinfo=timezone.utc)


class FakeClock:
    """Deterministic clock the orchestrator reads instead of the wall clock."""

    def __init__(self, now: datetime = FIXED_NOW) -> None:
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def advance(self, days: int = 1) -> None:
        self.now = self.now + timedelta(days=days)


async def create_user(factory: async_sessionmaker[AsyncSession], subject: str, name: str | None = None) -> int:
    """Insert a user row and return its id."""
    async with factory() as db:
        user = User(subject=subject, display_name=name, is_active=True)
        db.add(user)
        await db.commit()
        return user.id


@pytest_asyncio.fixture
async def engine(tmp_path):
    """File-backed SQLite database with all tables, one per test."""
    engine = create_async_engine(
        f"sqlite+aiosqlite:///{tmp_path / 'devpath.db'}",
        connect_args={"timeout": 30},
    )
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield engine
    await engine.dispose()


@pytest_asyncio.fixture
async def session_factory(engine) -> async_sessionmaker[AsyncSession]:
    return async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)


@pytest_asyncio.fixture
async def db_session(session_factory) -> AsyncGenerator[AsyncSession, None]:
    """Direct database session for engine-level tests and assertions."""
    async with session_factory() as session:
        yield session


@pytest_asyncio.fixture
async def seeded(session_factory) -> dict[str, int]:
    """Seed the default catalog (badges, quests, skill trees)."""
    async with session_factory() as db:
        return await seed_catalog(db)


@pytest_asyncio.fixture
async def user_id(session_factory) -> int:
    return await create_user(session_factory, "learner-1", "Ada")


@pytest.fixture
def make_user(session_factory):
    """Factory for additional users: ``await make_user(subject, name)``."""

    async def _make(subject: str, name: str | None = None) -> int:
        return await create_user(session_factory, subject, name)

    return _make


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest_asyncio.fixture
async def orchestrator(session_factory, seeded, clock) -> ProgressionOrchestrator:
    """Orchestrator over the seeded catalog."""
    return ProgressionOrchestrator(session_factory, locks=LocalUserLocks(), clock=clock)


@pytest_asyncio.fixture
async def client(tmp_path, clock) -> AsyncGenerator[AsyncClient, None]:
    """Async HTTP test client over a seeded SQLite database."""
    await init_db(f"sqlite+aiosqlite:///{tmp_path / 'api.db'}")
    async with get_engine().begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    async with get_session_factory()() as db:
        await seed_catalog(db)

    app = create_app()
    app.state.orchestrator = ProgressionOrchestrator(get_session_factory(), clock=clock)

    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as ac:
        yield ac

    await close_db()


@pytest_asyncio.fixture
async def authed_client(client: AsyncClient) -> AsyncClient:
    """Client carrying a bearer token for subject 'learner-api'."""
    token = create_access_token("learner-api", "Grace")
    client.headers["Authorization"] = f"Bearer {token}"
    return client
