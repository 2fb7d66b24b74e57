"""Field-level progress — one row per (villa, step, field key).

Records value *presence* only; the value itself lives in the domain
record the step writes to.  `last_write_at` orders auto-saves for the
same key (last write wins, stale writes are dropped).
"""

import uuid
from datetime import datetime

from sqlalchemy import (
    Boolean, CheckConstraint, DateTime, Integer, String, Text, UniqueConstraint,
)
from sqlalchemy.orm import Mapped, mapped_column

from villa_onboarding.database import Base, utcnow


class StepFieldProgress(Base):
    __tablename__ = "step_field_progress"
    __table_args__ = (
        UniqueConstraint(
            "villa_id", "step_number", "field_key", name="uq_step_field_progress_key"
        ),
        CheckConstraint("NOT (has_value AND skipped)", name="ck_step_field_progress_exclusive"),
    )

    id: Mapped[str] = mapped_column(
        String(36), primary_key=True, default=lambda: str(uuid.uuid4())
    )
    villa_id: Mapped[str] = mapped_column(String(36), nullable=False, index=True)
    step_number: Mapped[int] = mapped_column(Integer, nullable=False)
    field_key: Mapped[str] = mapped_column(String(100), nullable=False)

    # Never both true
    has_value: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    skipped: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    skip_reason: Mapped[str | None] = mapped_column(Text)

    last_write_at: Mapped[datetime] = mapped_column(DateTime, nullable=False)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime, default=utcnow, onupdate=utcnow
    )
