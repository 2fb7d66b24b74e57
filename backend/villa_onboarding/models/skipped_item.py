"""SkippedItem — append-only log of skip decisions.

One row per skipped=true transition, written alongside the field state
change.  Rows are never updated; un-skipping does not touch the log.
Feeds the "most skipped fields" analytics and the audit trail.
"""

import enum
import uuid
from datetime import datetime

from sqlalchemy import DateTime, Enum as SAEnum, Integer, String, Text
from sqlalchemy.orm import Mapped, mapped_column

from villa_onboarding.database import Base, utcnow


class SkippedItemType(str, enum.Enum):
    STEP = "STEP"
    FIELD = "FIELD"


class SkipCategory(str, enum.Enum):
    NOT_APPLICABLE = "NOT_APPLICABLE"
    DATA_UNAVAILABLE = "DATA_UNAVAILABLE"
    LATER = "LATER"
    OPTIONAL = "OPTIONAL"
    PRIVACY_CONCERNS = "PRIVACY_CONCERNS"
    OTHER = "OTHER"


class SkippedItem(Base):
    __tablename__ = "skipped_items"

    id: Mapped[str] = mapped_column(
        String(36), primary_key=True, default=lambda: str(uuid.uuid4())
    )
    villa_id: Mapped[str] = mapped_column(String(36), nullable=False, index=True)
    item_type: Mapped[SkippedItemType] = mapped_column(
        SAEnum(SkippedItemType), nullable=False
    )
    step_number: Mapped[int] = mapped_column(Integer, nullable=False)
    # null = whole step skipped
    field_key: Mapped[str | None] = mapped_column(String(100))
    skip_reason: Mapped[str | None] = mapped_column(Text)
    skip_category: Mapped[SkipCategory] = mapped_column(
        SAEnum(SkipCategory), default=SkipCategory.OTHER, nullable=False
    )
    skipped_by: Mapped[str] = mapped_column(String(36), nullable=False, default="system")
    skipped_at: Mapped[datetime] = mapped_column(
        DateTime, default=utcnow, nullable=False, index=True
    )
