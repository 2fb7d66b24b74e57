"""Session tracker — analytics per onboarding session.

Tracks, per (villa, user, session start):
  - field and step counters, applied as idempotency-keyed deltas so a
    retried auto-save never double-counts
  - time spent and the running average time per step
  - close / submitted-for-review outcome

Sessions are observational: nothing here affects step completion, which
is owned by the progress engine.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime

from sqlalchemy import case, delete, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from villa_onboarding.database import insert_if_absent, utcnow
from villa_onboarding.errors import SessionClosed, SessionNotFound
from villa_onboarding.models.onboarding_session import OnboardingSession, SessionActivity
from villa_onboarding.services import progress_engine
from villa_onboarding.services.field_progress import normalize_timestamp
from villa_onboarding.services.step_catalog import TOTAL_STEPS, total_field_count

logger = logging.getLogger(__name__)


@dataclass
class SessionSnapshot:
    villa_id: str
    session_id: str | None
    completion_percentage: int
    current_step: int
    steps_completed: int
    steps_skipped: int
    fields_completed: int
    fields_skipped: int
    total_fields: int
    average_step_time: int | None
    estimated_minutes_remaining: int | None
    last_activity_at: datetime | None


def field_activity_key(
    step: int, field_key: str, timestamp: datetime, action: str = "field"
) -> str:
    """Idempotency key for one field change: same change, same key."""
    return f"{action}:{step}:{field_key}:{normalize_timestamp(timestamp).isoformat()}"


def _minutes_between(start: datetime, end: datetime) -> int:
    return max(int((end - start).total_seconds() // 60), 0)


def _clamped_add(column, delta: int):
    """`column + delta`, floored at zero, evaluated by the store."""
    return case((column + delta < 0, 0), else_=column + delta)


# ── Lookups ──────────────────────────────────────────────────

async def get_session(db: AsyncSession, session_id: str) -> OnboardingSession:
    result = await db.execute(
        select(OnboardingSession).where(OnboardingSession.id == session_id)
    )
    session = result.scalar_one_or_none()
    if session is None:
        raise SessionNotFound(session_id)
    return session


async def _get_open_session(db: AsyncSession, session_id: str) -> OnboardingSession:
    session = await get_session(db, session_id)
    if session.session_ended_at is not None:
        raise SessionClosed(session_id)
    return session


async def latest_open_session(
    db: AsyncSession, villa_id: str, user_id: str | None = None
) -> OnboardingSession | None:
    """Most recently active open session for a villa (optionally one user's)."""
    query = select(OnboardingSession).where(
        OnboardingSession.villa_id == villa_id,
        OnboardingSession.session_ended_at.is_(None),
    )
    if user_id is not None:
        query = query.where(OnboardingSession.user_id == user_id)
    query = query.order_by(OnboardingSession.last_activity_at.desc()).limit(1)

    result = await db.execute(query)
    return result.scalar_one_or_none()


# ── Writes ───────────────────────────────────────────────────

async def start_session(
    db: AsyncSession,
    villa_id: str,
    user_id: str,
    user_email: str | None = None,
    current_step: int = 1,
) -> OnboardingSession:
    now = utcnow()
    session = OnboardingSession(
        villa_id=villa_id,
        user_id=user_id,
        user_email=user_email,
        current_step=current_step,
        total_steps=TOTAL_STEPS,
        total_fields=total_field_count(),
        session_started_at=now,
        last_activity_at=now,
    )
    db.add(session)
    await db.flush()

    logger.info(f"Onboarding session {session.id} started for villa {villa_id} by {user_id}")
    return session


async def record_field_activity(
    db: AsyncSession,
    session_id: str,
    idempotency_key: str,
    completed_delta: int = 0,
    skipped_delta: int = 0,
) -> bool:
    """Apply field counter deltas once per idempotency key.

    Returns False when the key was already applied.
    """
    await _get_open_session(db, session_id)

    inserted = await insert_if_absent(
        db,
        SessionActivity,
        {
            "session_id": session_id,
            "idempotency_key": idempotency_key,
            "completed_delta": completed_delta,
            "skipped_delta": skipped_delta,
            "applied_at": utcnow(),
        },
        index_elements=["session_id", "idempotency_key"],
    )
    if not inserted:
        logger.debug(f"Duplicate session activity ignored: {session_id} {idempotency_key}")
        return False

    await db.execute(
        update(OnboardingSession)
        .where(OnboardingSession.id == session_id)
        .values(
            fields_completed=_clamped_add(OnboardingSession.fields_completed, completed_delta),
            fields_skipped=_clamped_add(OnboardingSession.fields_skipped, skipped_delta),
            last_activity_at=utcnow(),
        )
        .execution_options(synchronize_session=False)
    )
    return True


async def record_step_transition(
    db: AsyncSession,
    session_id: str,
    current_step: int,
    steps_completed: int,
    steps_skipped: int,
    now: datetime | None = None,
) -> OnboardingSession:
    """Refresh step counters and timing after a step moved."""
    session = await _get_open_session(db, session_id)
    await db.refresh(session)
    now = now or utcnow()

    session.current_step = current_step
    session.steps_completed = steps_completed
    session.steps_skipped = steps_skipped
    session.total_time_spent = _minutes_between(session.session_started_at, now)
    session.average_step_time = session.total_time_spent // max(steps_completed, 1)
    session.last_activity_at = now
    await db.flush()
    return session


async def close_session(
    db: AsyncSession,
    session_id: str,
    completed: bool = False,
    now: datetime | None = None,
) -> OnboardingSession:
    """End a session and freeze its counters.  Closing twice is a no-op."""
    session = await get_session(db, session_id)
    if session.session_ended_at is not None:
        return session

    await db.refresh(session)
    now = now or utcnow()
    session.session_ended_at = now
    session.is_completed = completed
    session.total_time_spent = _minutes_between(session.session_started_at, now)
    session.last_activity_at = now
    await db.flush()

    logger.info(f"Onboarding session {session_id} closed (completed={completed})")
    return session


async def mark_submitted(
    db: AsyncSession, villa_id: str, now: datetime | None = None
) -> int:
    """Close every open session of a villa as submitted for review."""
    now = now or utcnow()
    result = await db.execute(
        select(OnboardingSession).where(
            OnboardingSession.villa_id == villa_id,
            OnboardingSession.session_ended_at.is_(None),
        )
    )
    sessions = result.scalars().all()
    for session in sessions:
        session.submitted_for_review = True
        session.submitted_at = now
        session.is_completed = True
        session.session_ended_at = now
        session.total_time_spent = _minutes_between(session.session_started_at, now)
        session.last_activity_at = now
    await db.flush()

    if sessions:
        logger.info(f"Marked {len(sessions)} session(s) submitted for villa {villa_id}")
    return len(sessions)


async def purge_sessions(db: AsyncSession, older_than: datetime) -> int:
    """Delete closed sessions that ended before `older_than`.  Returns the count."""
    stale_ids = select(OnboardingSession.id).where(
        OnboardingSession.session_ended_at.is_not(None),
        OnboardingSession.session_ended_at < older_than,
    )
    await db.execute(
        delete(SessionActivity).where(SessionActivity.session_id.in_(stale_ids))
    )
    result = await db.execute(
        delete(OnboardingSession)
        .where(
            OnboardingSession.session_ended_at.is_not(None),
            OnboardingSession.session_ended_at < older_than,
        )
        .execution_options(synchronize_session=False)
    )
    await db.flush()

    logger.info(f"Purged {result.rowcount} onboarding session(s) ended before {older_than}")
    return result.rowcount


# ── Reads ────────────────────────────────────────────────────

async def snapshot(db: AsyncSession, villa_id: str) -> SessionSnapshot:
    """Progress percentage from the engine plus the latest open session."""
    progress = await progress_engine.get_progress(db, villa_id)
    summary = progress_engine.summarize(progress)
    session = await latest_open_session(db, villa_id)
    if session is not None:
        await db.refresh(session)

    steps_completed = len(summary.completed_steps)
    average = session.average_step_time if session is not None else None
    eta = None
    if average is not None:
        eta = (summary.total_steps - steps_completed) * average

    return SessionSnapshot(
        villa_id=villa_id,
        session_id=session.id if session else None,
        completion_percentage=summary.completion_percentage,
        current_step=summary.current_step,
        steps_completed=steps_completed,
        steps_skipped=session.steps_skipped if session else 0,
        fields_completed=session.fields_completed if session else 0,
        fields_skipped=session.fields_skipped if session else 0,
        total_fields=session.total_fields if session else total_field_count(),
        average_step_time=average,
        estimated_minutes_remaining=eta,
        last_activity_at=session.last_activity_at if session else None,
    )
