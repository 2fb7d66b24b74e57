"""Coarse onboarding progress — one row per villa.

The ten step flags are a cached projection of field-level progress.
Nothing writes them except the progress engine, and only from a fresh
Aggregator verdict computed in the same transaction.
"""

import enum
import uuid
from datetime import datetime

from sqlalchemy import Boolean, DateTime, Enum as SAEnum, Integer, String
from sqlalchemy.orm import Mapped, mapped_column

from villa_onboarding.database import Base, utcnow


class OnboardingStatus(str, enum.Enum):
    NOT_STARTED = "NOT_STARTED"
    IN_PROGRESS = "IN_PROGRESS"
    COMPLETED = "COMPLETED"


class OnboardingProgress(Base):
    __tablename__ = "onboarding_progress"

    id: Mapped[str] = mapped_column(
        String(36), primary_key=True, default=lambda: str(uuid.uuid4())
    )
    villa_id: Mapped[str] = mapped_column(
        String(36), unique=True, nullable=False, index=True
    )
    current_step: Mapped[int] = mapped_column(Integer, default=1, nullable=False)
    total_steps: Mapped[int] = mapped_column(Integer, default=10, nullable=False)

    # ── Step flags (catalog order) ─────────────────────────────
    villa_info_completed: Mapped[bool] = mapped_column(Boolean, default=False)
    owner_details_completed: Mapped[bool] = mapped_column(Boolean, default=False)
    contractual_details_completed: Mapped[bool] = mapped_column(Boolean, default=False)
    bank_details_completed: Mapped[bool] = mapped_column(Boolean, default=False)
    ota_credentials_completed: Mapped[bool] = mapped_column(Boolean, default=False)
    documents_uploaded: Mapped[bool] = mapped_column(Boolean, default=False)
    staff_config_completed: Mapped[bool] = mapped_column(Boolean, default=False)
    facilities_completed: Mapped[bool] = mapped_column(Boolean, default=False)
    photos_uploaded: Mapped[bool] = mapped_column(Boolean, default=False)
    review_completed: Mapped[bool] = mapped_column(Boolean, default=False)

    status: Mapped[OnboardingStatus] = mapped_column(
        SAEnum(OnboardingStatus), default=OnboardingStatus.NOT_STARTED, nullable=False
    )

    # Set once, never cleared
    submitted_at: Mapped[datetime | None] = mapped_column(DateTime)
    completed_at: Mapped[datetime | None] = mapped_column(DateTime)

    created_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime, default=utcnow, onupdate=utcnow
    )
