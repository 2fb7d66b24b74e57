"""Onboarding sessions — analytics per (villa, user, session start).

Several open sessions per villa/user are allowed (two tabs, two devices);
readers pick the most recent by `last_activity_at`.  Counter deltas are
applied through SessionActivity so a retried auto-save cannot
double-count.
"""

import uuid
from datetime import datetime

from sqlalchemy import (
    Boolean, DateTime, ForeignKey, Integer, String, UniqueConstraint,
)
from sqlalchemy.orm import Mapped, mapped_column

from villa_onboarding.database import Base, utcnow


class OnboardingSession(Base):
    __tablename__ = "onboarding_sessions"

    id: Mapped[str] = mapped_column(
        String(36), primary_key=True, default=lambda: str(uuid.uuid4())
    )
    villa_id: Mapped[str] = mapped_column(String(36), nullable=False, index=True)
    user_id: Mapped[str] = mapped_column(String(36), nullable=False, index=True)
    user_email: Mapped[str | None] = mapped_column(String(255))

    # ── Position & counters ────────────────────────────────────
    current_step: Mapped[int] = mapped_column(Integer, default=1, nullable=False)
    total_steps: Mapped[int] = mapped_column(Integer, default=10, nullable=False)
    steps_completed: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    steps_skipped: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    fields_completed: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    fields_skipped: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    total_fields: Mapped[int] = mapped_column(Integer, default=0, nullable=False)

    # ── Outcome ────────────────────────────────────────────────
    is_completed: Mapped[bool] = mapped_column(Boolean, default=False)
    submitted_for_review: Mapped[bool] = mapped_column(Boolean, default=False)
    submitted_at: Mapped[datetime | None] = mapped_column(DateTime)

    # ── Timing (minutes) ───────────────────────────────────────
    total_time_spent: Mapped[int | None] = mapped_column(Integer)
    average_step_time: Mapped[int | None] = mapped_column(Integer)

    session_started_at: Mapped[datetime] = mapped_column(
        DateTime, default=utcnow, nullable=False
    )
    last_activity_at: Mapped[datetime] = mapped_column(
        DateTime, default=utcnow, nullable=False, index=True
    )
    session_ended_at: Mapped[datetime | None] = mapped_column(DateTime)


class SessionActivity(Base):
    """Idempotency ledger: one row per counter delta applied to a session."""

    __tablename__ = "onboarding_session_activity"
    __table_args__ = (
        UniqueConstraint(
            "session_id", "idempotency_key", name="uq_session_activity_key"
        ),
    )

    id: Mapped[str] = mapped_column(
        String(36), primary_key=True, default=lambda: str(uuid.uuid4())
    )
    session_id: Mapped[str] = mapped_column(
        String(36),
        ForeignKey("onboarding_sessions.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    idempotency_key: Mapped[str] = mapped_column(String(255), nullable=False)
    completed_delta: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    skipped_delta: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    applied_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow)
