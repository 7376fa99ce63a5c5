"""
Pytest configuration and fixtures for the auth service tests.

Provides:
- Async SQLite in-memory database setup
- A session store bound to that database with a controllable clock
- FastAPI app with dependency overrides
- AsyncClient for testing async endpoints
- Helpers to seed users and sessions
"""

import json
from datetime import datetime, timedelta

import pytest
import pytest_asyncio
from httpx import AsyncClient, ASGITransport
from sqlalchemy.exc import OperationalError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import StaticPool

from auth.session_store import SessionStore, get_session_store
from config import settings
from database import Base, get_db
from main import app
from models import Role, User


class ManualClock:
    """Callable clock whose time only moves when a test says so."""

    def __init__(self, start: datetime):
        self.now = start

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> datetime:
        self.now = self.now + timedelta(**kwargs)
        return self.now


@pytest.fixture
def clock():
    return ManualClock(datetime(2026, 3, 2, 9, 0, 0))


@pytest_asyncio.fixture
async def session_factory():
    """
    Fresh in-memory database per test. StaticPool keeps every session on the
    same connection, so they all see the same database.
    """
    engine = create_async_engine(
        "sqlite+aiosqlite:///:memory:",
        echo=False,
        future=True,
        poolclass=StaticPool,
    )
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    factory = async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)
    yield factory

    await engine.dispose()


@pytest.fixture
def session_store(session_factory, clock):
    return SessionStore(session_factory, clock=clock)


class BrokenSessionFactory:
    """Session factory standing in for an unreachable database."""

    def __init__(self):
        self.calls = 0

    def __call__(self):
        self.calls += 1
        raise OperationalError("SELECT 1", {}, Exception("database is down"))


@pytest.fixture
def broken_factory():
    return BrokenSessionFactory()


@pytest.fixture
def broken_store(broken_factory):
    """A session store whose every storage call fails."""
    return SessionStore(broken_factory)


@pytest_asyncio.fixture
async def async_client(session_factory, session_store):
    """
    AsyncClient pointing to the FastAPI app, with ``get_db`` and
    ``get_session_store`` overridden to use the per-test database.

    Yields:
        httpx.AsyncClient: Async HTTP client for making requests to the app.
    """

    async def override_get_db():
        async with session_factory() as session:
            yield session

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_session_store] = lambda: session_store

    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as client:
        yield client

    app.dependency_overrides.clear()


@pytest.fixture
def make_user(session_factory):
    """Factory fixture: ``await make_user(email=..., role=...)`` inserts a user."""

    async def _make_user(
        email: str = "user@example.com",
        role: Role = Role.ADMIN,
        is_active: bool = True,
        is_approved: bool = True,
        display_name: str = "Test User",
        assigned_stores=None,
        **fields,
    ) -> User:
        user = User(
            email=email,
            display_name=display_name,
            role=role.value if isinstance(role, Role) else role,
            is_active=is_active,
            is_approved=is_approved,
            assigned_stores=json.dumps(assigned_stores) if assigned_stores is not None else None,
            **fields,
        )
        async with session_factory() as db:
            db.add(user)
            await db.commit()
            await db.refresh(user)
        return user

    return _make_user


@pytest.fixture
def login_as(async_client, session_store, make_user):
    """
    Create a user with a live session and put its token in the client's
    cookie jar. Returns ``(user, token)``.
    """

    async def _login_as(role: Role = Role.ADMIN, email: str = None, **fields):
        user = await make_user(
            email=email or f"{str(role.value if isinstance(role, Role) else role).lower()}@example.com",
            role=role,
            **fields,
        )
        session = await session_store.create(user.id, "graph-access-token", "graph-refresh-token")
        async_client.cookies.set(settings.SESSION_COOKIE_NAME, session.token)
        return user, session.token

    return _login_as
