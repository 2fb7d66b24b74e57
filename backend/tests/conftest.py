"""Pytest configuration and fixtures for the onboarding progress tests.

Every test gets a fresh in-memory SQLite database (aiosqlite, StaticPool
so all sessions share one connection) created from the model metadata.
The API client overrides the session dependencies and the identity
dependency, so no PostgreSQL or token issuer is needed.
"""

import os

os.environ.setdefault("DATABASE_URL", "sqlite+aiosqlite://")

import uuid
from typing import AsyncGenerator

import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import StaticPool

import villa_onboarding.models  # noqa: F401
from villa_onboarding.auth.deps import get_current_user_id
from villa_onboarding.database import Base, get_db, get_session_factory
from villa_onboarding.main import app
from villa_onboarding.services import progress_engine
from villa_onboarding.services.step_catalog import step_definition

TEST_USER_ID = "user-0001"


# ── Test Database Setup ──────────────────────────────────────────

@pytest_asyncio.fixture
async def test_engine():
    """In-memory SQLite engine with all tables created."""
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
def session_factory(test_engine) -> async_sessionmaker:
    return async_sessionmaker(test_engine, class_=AsyncSession, expire_on_commit=False)


@pytest_asyncio.fixture
async def db_session(session_factory) -> AsyncGenerator[AsyncSession, None]:
    """Session for service-level tests (rolled back afterwards)."""
    async with session_factory() as session:
        yield session
        await session.rollback()


@pytest_asyncio.fixture
async def client(session_factory) -> AsyncGenerator[AsyncClient, None]:
    """API client bound to the test database and a fixed user."""

    async def override_get_db():
        async with session_factory() as session:
            try:
                yield session
                await session.commit()
            except Exception:
                await session.rollback()
                raise

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_session_factory] = lambda: session_factory
    app.dependency_overrides[get_current_user_id] = lambda: TEST_USER_ID

    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as ac:
        yield ac

    app.dependency_overrides.clear()


# ── Test Data Fixtures ───────────────────────────────────────────

@pytest.fixture
def villa_id() -> str:
    return str(uuid.uuid4())


@pytest_asyncio.fixture
async def progress(db_session: AsyncSession, villa_id: str):
    """Freshly initialized progress record for `villa_id`."""
    return await progress_engine.initialize(db_session, villa_id)


def required_values(step: int) -> dict:
    """A value for every required field of a step."""
    return {key: f"value-{key}" for key in step_definition(step).required_fields}


@pytest.fixture
def fill_step(db_session: AsyncSession, villa_id: str):
    """Fill every required field of a step (optionally marking it complete)."""

    async def _fill(step: int, completed: bool = False):
        return await progress_engine.apply_step_update(
            db_session, villa_id, step, required_values(step), completed_flag=completed
        )

    return _fill


# ── Test Markers ─────────────────────────────────────────────────

def pytest_configure(config):
    """Configure custom markers."""
    config.addinivalue_line("markers", "unit: Unit tests")
    config.addinivalue_line("markers", "integration: Integration tests")
    config.addinivalue_line("markers", "api: API endpoint tests")
