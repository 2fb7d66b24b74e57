"""Onboarding analytics — dashboard overview and per-villa detail views.

Read-only.  Session statistics come from OnboardingSession; the skip
breakdown comes from the append-only SkippedItem log; per-step status is
derived from field state by the aggregator, never stored.
"""

import enum
import logging
from dataclasses import dataclass, field
from datetime import datetime, timedelta

from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from villa_onboarding.database import utcnow
from villa_onboarding.models.onboarding_session import OnboardingSession
from villa_onboarding.models.skipped_item import SkippedItem, SkippedItemType
from villa_onboarding.services import field_progress, progress_engine, step_aggregator
from villa_onboarding.services.field_progress import FieldState
from villa_onboarding.services.step_aggregator import StepCompletion
from villa_onboarding.services.step_catalog import STEP_CATALOG

logger = logging.getLogger(__name__)

TOP_SKIPPED_FIELDS = 10
RECENTLY_COMPLETED_LIMIT = 10


class StepStatus(str, enum.Enum):
    NOT_STARTED = "NOT_STARTED"
    IN_PROGRESS = "IN_PROGRESS"
    COMPLETED = "COMPLETED"
    SKIPPED = "SKIPPED"


@dataclass
class SkippedFieldStat:
    field_key: str
    step_number: int
    skip_count: int
    by_category: dict[str, int] = field(default_factory=dict)


@dataclass
class DashboardOverview:
    sessions_in_progress: list[OnboardingSession]
    recently_completed: list[OnboardingSession]
    completed_last_7_days: int
    completed_last_30_days: int
    total_completed: int
    average_completion_time: int
    common_skipped_fields: list[SkippedFieldStat]


@dataclass
class StepDetail:
    step_number: int
    name: str
    status: StepStatus
    required: int
    satisfied: int
    fields_total: int
    fields_completed: int
    fields_skipped: int
    estimated_minutes: int
    missing_fields: list[str]


@dataclass
class VillaProgressDetail:
    summary: progress_engine.ProgressSummary
    steps: list[StepDetail]
    skipped_items: list[SkippedItem]
    estimated_time_remaining: int


def step_status(completion: StepCompletion, states: list[FieldState]) -> StepStatus:
    if completion.complete:
        return StepStatus.SKIPPED if completion.fully_skipped else StepStatus.COMPLETED
    if any(s.has_value or s.skipped for s in states):
        return StepStatus.IN_PROGRESS
    return StepStatus.NOT_STARTED


# ── Dashboard ────────────────────────────────────────────────

async def _count_completed(db: AsyncSession, since: datetime | None = None) -> int:
    query = select(func.count(OnboardingSession.id)).where(
        OnboardingSession.is_completed.is_(True)
    )
    if since is not None:
        query = query.where(OnboardingSession.session_ended_at >= since)
    result = await db.execute(query)
    return result.scalar() or 0


async def common_skipped_fields(
    db: AsyncSession, limit: int = TOP_SKIPPED_FIELDS
) -> list[SkippedFieldStat]:
    """Most frequently skipped fields, with a per-category breakdown."""
    result = await db.execute(
        select(
            SkippedItem.field_key,
            SkippedItem.step_number,
            SkippedItem.skip_category,
            func.count(SkippedItem.id),
        )
        .where(
            SkippedItem.item_type == SkippedItemType.FIELD,
            SkippedItem.field_key.is_not(None),
        )
        .group_by(SkippedItem.field_key, SkippedItem.step_number, SkippedItem.skip_category)
    )

    stats: dict[tuple[int, str], SkippedFieldStat] = {}
    for field_key, step_number, category, count in result.all():
        stat = stats.setdefault(
            (step_number, field_key),
            SkippedFieldStat(field_key=field_key, step_number=step_number, skip_count=0),
        )
        stat.skip_count += count
        stat.by_category[category.value] = stat.by_category.get(category.value, 0) + count

    ranked = sorted(
        stats.values(), key=lambda s: (-s.skip_count, s.step_number, s.field_key)
    )
    return ranked[:limit]


async def dashboard_overview(db: AsyncSession, now: datetime | None = None) -> DashboardOverview:
    now = now or utcnow()
    seven_days_ago = now - timedelta(days=7)
    thirty_days_ago = now - timedelta(days=30)

    in_progress = await db.execute(
        select(OnboardingSession)
        .where(
            OnboardingSession.is_completed.is_(False),
            OnboardingSession.session_ended_at.is_(None),
        )
        .order_by(OnboardingSession.last_activity_at.desc())
    )
    recent = await db.execute(
        select(OnboardingSession)
        .where(
            OnboardingSession.is_completed.is_(True),
            OnboardingSession.session_ended_at >= seven_days_ago,
        )
        .order_by(OnboardingSession.session_ended_at.desc())
        .limit(RECENTLY_COMPLETED_LIMIT)
    )
    average = await db.execute(
        select(func.avg(OnboardingSession.total_time_spent)).where(
            OnboardingSession.is_completed.is_(True),
            OnboardingSession.total_time_spent.is_not(None),
        )
    )
    average_minutes = average.scalar()

    return DashboardOverview(
        sessions_in_progress=list(in_progress.scalars().all()),
        recently_completed=list(recent.scalars().all()),
        completed_last_7_days=await _count_completed(db, seven_days_ago),
        completed_last_30_days=await _count_completed(db, thirty_days_ago),
        total_completed=await _count_completed(db),
        average_completion_time=round(average_minutes) if average_minutes is not None else 0,
        common_skipped_fields=await common_skipped_fields(db),
    )


# ── Villa detail ─────────────────────────────────────────────

async def villa_progress_detail(db: AsyncSession, villa_id: str) -> VillaProgressDetail:
    progress = await progress_engine.get_progress(db, villa_id)
    all_states = await field_progress.read_all(db, villa_id)

    steps: list[StepDetail] = []
    for definition in STEP_CATALOG:
        states = all_states[definition.number]
        completion = step_aggregator.evaluate(definition.number, states)
        steps.append(
            StepDetail(
                step_number=definition.number,
                name=definition.name,
                status=step_status(completion, states),
                required=completion.required,
                satisfied=completion.satisfied,
                fields_total=len(states),
                fields_completed=sum(1 for s in states if s.has_value),
                fields_skipped=sum(1 for s in states if s.skipped),
                estimated_minutes=definition.estimated_minutes,
                missing_fields=completion.missing_fields,
            )
        )

    skipped = await db.execute(
        select(SkippedItem)
        .where(SkippedItem.villa_id == villa_id)
        .order_by(SkippedItem.skipped_at.desc())
    )

    remaining = sum(
        s.estimated_minutes for s in steps if s.status == StepStatus.NOT_STARTED
    )
    return VillaProgressDetail(
        summary=progress_engine.summarize(progress),
        steps=steps,
        skipped_items=list(skipped.scalars().all()),
        estimated_time_remaining=remaining,
    )
