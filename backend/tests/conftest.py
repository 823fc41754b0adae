"""
Test fixtures for HoldingDash.

Each test gets a fresh in-memory SQLite database shared by every session
(``StaticPool``), the FastAPI app with ``get_db`` overridden, and an
``httpx.AsyncClient`` talking to it in-process.  Three enterprises are
seeded with the slugs the module catalog knows.
"""
import os

os.environ.setdefault("DATABASE_URL", "sqlite+aiosqlite://")
os.environ.setdefault("SCHEDULER_ENABLED", "false")

import datetime
from types import SimpleNamespace

import httpx
import pytest
import pytest_asyncio
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import StaticPool

import holdingdash.models  # noqa: F401  (registers every table on Base.metadata)
from holdingdash.database import Base, get_db
from holdingdash.main import app
from holdingdash.middleware.auth import create_access_token, hash_password

ADMIN_EMAIL = "admin@holding.test"
MEMBER_EMAIL = "member@holding.test"
PASSWORD = "secret123"

ENTERPRISES = [
    ("Deep Closer", "deep-closer"),
    ("Dubai", "dubai"),
    ("Ompleo", "ompleo"),
]


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def auth_headers(token: str) -> dict:
    """Return auth header dict for a given token."""
    return {"Authorization": f"Bearer {token}"}


async def login(client: httpx.AsyncClient, email: str, password: str = PASSWORD) -> str:
    """Login and return the JWT token."""
    r = await client.post("/api/auth/login", json={"email": email, "password": password})
    assert r.status_code == 200, f"Login failed: {r.text}"
    return r.json()["access_token"]


def record(**fields) -> SimpleNamespace:
    """A plain stand-in for a loaded row."""
    return SimpleNamespace(**fields)


# ---------------------------------------------------------------------------
# Database
# ---------------------------------------------------------------------------


@pytest_asyncio.fixture
async def engine():
    eng = create_async_engine(
        "sqlite+aiosqlite://",
        poolclass=StaticPool,
        connect_args={"check_same_thread": False},
    )
    async with eng.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield eng
    await eng.dispose()


@pytest.fixture
def session_factory(engine):
    return async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)


@pytest_asyncio.fixture
async def db(session_factory):
    async with session_factory() as session:
        yield session


@pytest_asyncio.fixture
async def client(session_factory):
    """Async HTTP client bound to the app, one DB session per request."""

    async def override_get_db():
        async with session_factory() as session:
            yield session

    app.dependency_overrides[get_db] = override_get_db
    async with httpx.AsyncClient(transport=httpx.ASGITransport(app=app), base_url="http://test") as c:
        yield c
    app.dependency_overrides.clear()


# ---------------------------------------------------------------------------
# Seed data
# ---------------------------------------------------------------------------


@pytest_asyncio.fixture
async def enterprises(db) -> dict:
    """slug -> Enterprise for the three seeded enterprises."""
    from holdingdash.models.enterprise import Enterprise

    rows = {slug: Enterprise(name=name, slug=slug) for name, slug in ENTERPRISES}
    db.add_all(rows.values())
    await db.commit()
    return rows


@pytest.fixture
def enterprise_slugs(enterprises) -> dict:
    """id -> slug, ordered by name as the service orders them."""
    return {e.id: e.slug for e in sorted(enterprises.values(), key=lambda e: e.name)}


async def _make_profile(db, email: str, role: str, first_name: str, is_active: bool = True):
    from holdingdash.models.user import Profile

    profile = Profile(
        email=email,
        password_hash=hash_password(PASSWORD),
        first_name=first_name,
        last_name="Test",
        role=role,
        is_active=is_active,
    )
    db.add(profile)
    await db.commit()
    return profile


@pytest_asyncio.fixture
async def admin(db, enterprises):
    return await _make_profile(db, ADMIN_EMAIL, "admin", "Ada")


@pytest_asyncio.fixture
async def member(db, enterprises):
    """A non-admin user with no grants at all."""
    return await _make_profile(db, MEMBER_EMAIL, "manager", "Malik")


@pytest.fixture
def admin_headers(admin) -> dict:
    return auth_headers(create_access_token(admin))


@pytest.fixture
def member_headers(member) -> dict:
    return auth_headers(create_access_token(member))


@pytest.fixture
def today() -> datetime.date:
    return datetime.date(2026, 3, 10)
