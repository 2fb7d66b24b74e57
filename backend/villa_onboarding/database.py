"""Database engine, session factory, and the store-access retry layer.

Every progress write runs inside one transaction opened by
`run_in_transaction()`.  Transient store failures (connection loss, lock
timeouts, serialization conflicts) are retried with exponential backoff
and jitter; once the retry budget is spent the call fails with
PersistenceFailure.  Domain errors are never retried.

Session dependencies for FastAPI:
  - get_db()               → plain request-scoped session (reads)
  - get_session_factory()  → factory handed to run_in_transaction (writes)
"""

import asyncio
import logging
import random
from collections.abc import Awaitable, Callable
from datetime import datetime, timezone
from typing import TypeVar

from sqlalchemy.dialects.postgresql import insert as pg_insert
from sqlalchemy.dialects.sqlite import insert as sqlite_insert
from sqlalchemy.exc import DBAPIError, OperationalError
from sqlalchemy.ext.asyncio import (
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)
from sqlalchemy.orm import DeclarativeBase

from villa_onboarding.config import settings
from villa_onboarding.errors import PersistenceFailure

logger = logging.getLogger(__name__)

T = TypeVar("T")

_is_sqlite = "sqlite" in settings.database_url
_engine_kwargs: dict = {"echo": False}
if _is_sqlite:
    _engine_kwargs["connect_args"] = {"check_same_thread": False}
else:
    _engine_kwargs["pool_size"] = 20
    _engine_kwargs["max_overflow"] = 10

engine = create_async_engine(settings.database_url, **_engine_kwargs)

async_session = async_sessionmaker(
    engine, class_=AsyncSession, expire_on_commit=False
)

# SQLSTATEs worth another attempt: serialization failure, deadlock
_RETRYABLE_SQLSTATES = {"40001", "40P01"}


def utcnow() -> datetime:
    """Naive UTC timestamp, matching the DateTime columns."""
    return datetime.now(timezone.utc).replace(tzinfo=None)


class Base(DeclarativeBase):
    """Declarative base for all progress-tracking models."""
    pass


# ── Session dependencies ────────────────────────────────────

async def get_db() -> AsyncSession:
    """Yield a request-scoped session; commit on success."""
    async with async_session() as session:
        try:
            yield session
            await session.commit()
        except Exception:
            await session.rollback()
            raise


def get_session_factory() -> async_sessionmaker:
    """Session factory used by write endpoints (overridden in tests)."""
    return async_session


async def insert_if_absent(
    db: AsyncSession,
    model,
    values: dict,
    index_elements: list[str],
) -> bool:
    """INSERT ... ON CONFLICT DO NOTHING. Returns True if a row was created.

    Lets two workers race on creating the same keyed row without either
    failing; the loser simply sees the winner's row.
    """
    conn = await db.connection()
    insert = pg_insert if conn.dialect.name == "postgresql" else sqlite_insert
    stmt = insert(model.__table__).values(**values).on_conflict_do_nothing(
        index_elements=index_elements
    )
    result = await conn.execute(stmt)
    return result.rowcount == 1


# ── Retry layer ─────────────────────────────────────────────

def _is_transient(exc: Exception) -> bool:
    if isinstance(exc, OperationalError):
        return True
    if isinstance(exc, DBAPIError):
        if exc.connection_invalidated:
            return True
        sqlstate = getattr(exc.orig, "sqlstate", None) or getattr(exc.orig, "pgcode", None)
        return sqlstate in _RETRYABLE_SQLSTATES
    return False


def _backoff_delay(attempt: int) -> float:
    base_delay = settings.db_retry_base_delay_ms * (2**attempt)
    jitter = random.uniform(0, base_delay * 0.1)
    return min(base_delay + jitter, settings.db_retry_max_delay_ms) / 1000


async def run_in_transaction(
    work: Callable[[AsyncSession], Awaitable[T]],
    session_factory: async_sessionmaker | None = None,
    commit_on: tuple[type[Exception], ...] = (),
) -> T:
    """Run `work` in a fresh transaction, retrying transient store failures.

    `work` may be called more than once, so it must not carry side effects
    outside the session it receives.  Exceptions listed in `commit_on` still
    commit what `work` flushed before they propagate.
    """
    factory = session_factory or async_session
    attempts = max(settings.db_retry_attempts, 1)
    last_error: Exception | None = None

    for attempt in range(attempts):
        try:
            async with factory() as session:
                try:
                    result = await work(session)
                    await session.commit()
                    return result
                except commit_on:
                    await session.commit()
                    raise
                except Exception:
                    await session.rollback()
                    raise
        except DBAPIError as e:
            if not _is_transient(e):
                raise
            last_error = e
            if attempt == attempts - 1:
                break

            delay = _backoff_delay(attempt)
            logger.warning(
                "Store error (attempt %d/%d): %s. Retrying in %.2fs",
                attempt + 1,
                attempts,
                e,
                delay,
            )
            await asyncio.sleep(delay)

    logger.error(f"Store unavailable after {attempts} attempts: {last_error}")
    raise PersistenceFailure() from last_error


async def init_db() -> None:
    """Create all tables (local dev only). Use Alembic for real deployments."""
    import villa_onboarding.models  # noqa: F401

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
