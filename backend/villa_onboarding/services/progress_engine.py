"""Onboarding progress engine: owns the coarse per-villa progress record.

Flow for every write:
  1. Lock the villa's OnboardingProgress row (SELECT ... FOR UPDATE).
  2. Apply field writes through the field progress store.
  3. Re-run the aggregator for the touched step and copy its verdict into
     the step flag, inside the caller's transaction.

Because every writer for a villa queues on the same row lock, the
aggregator always reads a consistent snapshot of the step's fields and
the step flags can never drift from the field table.  Nothing outside
_sync_step_flag() assigns a step flag.

State machine:
  NOT_STARTED → IN_PROGRESS   first successful progress write
  IN_PROGRESS → COMPLETED     complete(), all ten flags true
  COMPLETED is terminal; writes against it raise AlreadyCompleted.
"""

from __future__ import annotations

import logging
import uuid
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any

from sqlalchemy import delete, select
from sqlalchemy.ext.asyncio import AsyncSession

from villa_onboarding.database import insert_if_absent, utcnow
from villa_onboarding.errors import (
    AlreadyCompleted,
    AlreadyInitialized,
    IncompleteSteps,
    InvalidField,
    InvalidStep,
    ProgressNotFound,
    StepIncomplete,
)
from villa_onboarding.models.onboarding_progress import OnboardingProgress, OnboardingStatus
from villa_onboarding.models.onboarding_session import OnboardingSession, SessionActivity
from villa_onboarding.models.skipped_item import SkipCategory, SkippedItem
from villa_onboarding.models.step_field_progress import StepFieldProgress
from villa_onboarding.services import field_progress, step_aggregator
from villa_onboarding.services.field_progress import FieldWrite, WriteOutcome
from villa_onboarding.services.step_aggregator import StepCompletion, percentage
from villa_onboarding.services.step_catalog import (
    STEP_CATALOG,
    TOTAL_STEPS,
    step_definition,
)

logger = logging.getLogger(__name__)


@dataclass
class StepUpdateResult:
    progress: OnboardingProgress
    step: int
    step_complete: bool
    completion_percentage: int
    step_completion_percentage: int
    missing_fields: list[str] = field(default_factory=list)
    writes: list[FieldWrite] = field(default_factory=list)


@dataclass
class FieldSaveResult:
    progress: OnboardingProgress
    write: FieldWrite
    step_complete: bool
    completion_percentage: int


@dataclass
class SkipResult:
    progress: OnboardingProgress
    writes: list[FieldWrite]
    step_complete: bool
    completion_percentage: int


# ── Projections ──────────────────────────────────────────────

def step_flag(progress: OnboardingProgress, step: int) -> bool:
    return bool(getattr(progress, step_definition(step).completion_flag))


def completed_steps(progress: OnboardingProgress) -> list[int]:
    return [s.number for s in STEP_CATALOG if getattr(progress, s.completion_flag)]


def incomplete_steps(progress: OnboardingProgress) -> list[int]:
    return [s.number for s in STEP_CATALOG if not getattr(progress, s.completion_flag)]


def completion_percentage(progress: OnboardingProgress) -> int:
    return percentage(len(completed_steps(progress)), progress.total_steps)


@dataclass
class ProgressSummary:
    villa_id: str
    status: OnboardingStatus
    current_step: int
    total_steps: int
    completion_percentage: int
    completed_steps: list[int]
    incomplete_steps: list[int]


def summarize(progress: OnboardingProgress) -> ProgressSummary:
    return ProgressSummary(
        villa_id=progress.villa_id,
        status=progress.status,
        current_step=progress.current_step,
        total_steps=progress.total_steps,
        completion_percentage=completion_percentage(progress),
        completed_steps=completed_steps(progress),
        incomplete_steps=incomplete_steps(progress),
    )


# ── Lookups ──────────────────────────────────────────────────

async def find_progress(db: AsyncSession, villa_id: str) -> OnboardingProgress | None:
    result = await db.execute(
        select(OnboardingProgress).where(OnboardingProgress.villa_id == villa_id)
    )
    return result.scalar_one_or_none()


async def get_progress(db: AsyncSession, villa_id: str) -> OnboardingProgress:
    progress = await find_progress(db, villa_id)
    if progress is None:
        raise ProgressNotFound(villa_id)
    return progress


async def _lock_for_write(db: AsyncSession, villa_id: str) -> OnboardingProgress:
    """Load the progress row with a row lock held until the transaction ends."""
    result = await db.execute(
        select(OnboardingProgress)
        .where(OnboardingProgress.villa_id == villa_id)
        .with_for_update()
    )
    progress = result.scalar_one_or_none()
    if progress is None:
        raise ProgressNotFound(villa_id)
    if progress.status == OnboardingStatus.COMPLETED:
        raise AlreadyCompleted(villa_id)
    return progress


# ── Internal write helpers ───────────────────────────────────

async def _sync_step_flag(
    db: AsyncSession, progress: OnboardingProgress, step: int
) -> StepCompletion:
    """Recompute one step and store the verdict in its flag."""
    completion = await step_aggregator.compute_step_completion(db, progress.villa_id, step)
    flag = step_definition(step).completion_flag
    if getattr(progress, flag) != completion.complete:
        logger.debug(
            f"Step {step} flag for villa {progress.villa_id}: "
            f"{getattr(progress, flag)} -> {completion.complete}"
        )
        setattr(progress, flag, completion.complete)
    return completion


def _mark_started(progress: OnboardingProgress) -> None:
    if progress.status == OnboardingStatus.NOT_STARTED:
        progress.status = OnboardingStatus.IN_PROGRESS
        logger.info(f"Onboarding started for villa {progress.villa_id}")


# ── Public contract ──────────────────────────────────────────

async def initialize(db: AsyncSession, villa_id: str) -> OnboardingProgress:
    """Create the progress record for a villa.  Not an upsert."""
    if await find_progress(db, villa_id) is not None:
        raise AlreadyInitialized(villa_id)

    progress = OnboardingProgress(
        villa_id=villa_id,
        current_step=1,
        total_steps=TOTAL_STEPS,
        status=OnboardingStatus.NOT_STARTED,
    )
    for definition in STEP_CATALOG:
        setattr(progress, definition.completion_flag, False)
    db.add(progress)
    await db.flush()

    logger.info(f"Onboarding progress initialized for villa {villa_id}")
    return progress


async def ensure_initialized(db: AsyncSession, villa_id: str) -> tuple[OnboardingProgress, bool]:
    """Get or create the progress record.  Returns (progress, created).

    Safe when two workers open the same villa at once: the insert is a
    no-op for the loser, which then reads the winner's row.
    """
    progress = await find_progress(db, villa_id)
    if progress is not None:
        return progress, False

    values = {
        "id": str(uuid.uuid4()),
        "villa_id": villa_id,
        "current_step": 1,
        "total_steps": TOTAL_STEPS,
        "status": OnboardingStatus.NOT_STARTED,
    }
    for definition in STEP_CATALOG:
        values[definition.completion_flag] = False
    created = await insert_if_absent(db, OnboardingProgress, values, index_elements=["villa_id"])

    progress = await find_progress(db, villa_id)
    if created:
        logger.info(f"Onboarding progress initialized for villa {villa_id}")
    else:
        logger.debug(f"Progress for villa {villa_id} created concurrently; reusing it")
    return progress, created


async def apply_step_update(
    db: AsyncSession,
    villa_id: str,
    step: int,
    field_values: dict[str, Any],
    completed_flag: bool = False,
    *,
    timestamp: datetime | None = None,
) -> StepUpdateResult:
    """Record a batch of field values for one step and re-derive its flag.

    Only value presence is tracked; the values themselves are persisted by
    the domain service that owns them.  When `completed_flag` is set the
    step must actually be complete, otherwise StepIncomplete is raised
    with the missing keys and `current_step` does not move.  The field
    writes are flushed before raising; callers that want them kept commit
    on StepIncomplete.
    """
    definition = step_definition(step)
    for key in field_values:
        if key not in definition.field_keys:
            raise InvalidField(step, key)

    progress = await _lock_for_write(db, villa_id)
    ts = timestamp or utcnow()

    writes = [
        await field_progress.upsert_field(
            db, villa_id, step, key, field_progress.value_is_present(value), ts
        )
        for key, value in field_values.items()
    ]

    completion = await _sync_step_flag(db, progress, step)
    _mark_started(progress)
    if completed_flag and not completion.complete:
        logger.warning(
            f"Step {step} completion rejected for villa {villa_id}: "
            f"missing {completion.missing_fields}"
        )
        await db.flush()
        raise StepIncomplete(step, completion.missing_fields)

    if completed_flag:
        next_step = min(step + 1, progress.total_steps)
        if next_step > progress.current_step:
            progress.current_step = next_step
    await db.flush()

    return StepUpdateResult(
        progress=progress,
        step=step,
        step_complete=completion.complete,
        completion_percentage=completion_percentage(progress),
        step_completion_percentage=completion.percentage,
        missing_fields=completion.missing_fields,
        writes=writes,
    )


async def save_field(
    db: AsyncSession,
    villa_id: str,
    step: int,
    field_key: str,
    value: Any,
    timestamp: datetime | None = None,
) -> FieldSaveResult:
    """Auto-save path: one guarded field write plus flag resync."""
    step_definition(step)
    progress = await _lock_for_write(db, villa_id)

    write = await field_progress.upsert_field(
        db, villa_id, step, field_key, field_progress.value_is_present(value), timestamp
    )
    if write.outcome == WriteOutcome.DROPPED:
        completion = await step_aggregator.compute_step_completion(db, villa_id, step)
    else:
        completion = await _sync_step_flag(db, progress, step)
        _mark_started(progress)
        await db.flush()

    return FieldSaveResult(
        progress=progress,
        write=write,
        step_complete=completion.complete,
        completion_percentage=completion_percentage(progress),
    )


async def skip(
    db: AsyncSession,
    villa_id: str,
    step: int,
    field_key: str | None,
    reason: str | None = None,
    *,
    category: SkipCategory = SkipCategory.OTHER,
    skipped_by: str = "system",
    timestamp: datetime | None = None,
) -> SkipResult:
    """Skip a field, or a whole skippable step when `field_key` is None."""
    step_definition(step)
    progress = await _lock_for_write(db, villa_id)

    writes = await field_progress.mark_skipped(
        db,
        villa_id,
        step,
        field_key,
        reason,
        category=category,
        skipped_by=skipped_by,
        timestamp=timestamp,
    )
    completion = await _sync_step_flag(db, progress, step)
    _mark_started(progress)
    await db.flush()

    return SkipResult(
        progress=progress,
        writes=writes,
        step_complete=completion.complete,
        completion_percentage=completion_percentage(progress),
    )


async def unskip(
    db: AsyncSession,
    villa_id: str,
    step: int,
    field_key: str | None,
) -> SkipResult:
    step_definition(step)
    progress = await _lock_for_write(db, villa_id)

    writes = await field_progress.unmark_skipped(db, villa_id, step, field_key)
    completion = await _sync_step_flag(db, progress, step)
    await db.flush()

    return SkipResult(
        progress=progress,
        writes=writes,
        step_complete=completion.complete,
        completion_percentage=completion_percentage(progress),
    )


async def validate_step(db: AsyncSession, villa_id: str, step: int) -> StepCompletion:
    """Aggregator verdict for one step.  Does not mutate."""
    step_definition(step)
    return await step_aggregator.compute_step_completion(db, villa_id, step)


async def complete(db: AsyncSession, villa_id: str) -> OnboardingProgress:
    """Finalize onboarding.  All ten step flags must be true."""
    progress = await _lock_for_write(db, villa_id)

    missing = incomplete_steps(progress)
    if missing:
        logger.warning(f"Completion rejected for villa {villa_id}: incomplete steps {missing}")
        raise IncompleteSteps(missing)

    now = utcnow()
    progress.status = OnboardingStatus.COMPLETED
    progress.completed_at = now
    if progress.submitted_at is None:
        progress.submitted_at = now
    await db.flush()

    logger.info(f"Villa {villa_id} onboarding completed")
    return progress


async def rewind_to_step(db: AsyncSession, villa_id: str, step: int) -> OnboardingProgress:
    """Move the wizard cursor ("continue where you left off").  Flags untouched."""
    if not 1 <= step <= TOTAL_STEPS:
        raise InvalidStep(step, TOTAL_STEPS)

    progress = await _lock_for_write(db, villa_id)
    progress.current_step = step
    await db.flush()

    logger.info(f"Villa {villa_id} wizard moved to step {step}")
    return progress


async def purge_villa(db: AsyncSession, villa_id: str) -> None:
    """Delete every progress artefact for a villa (villa deletion cascade)."""
    session_ids = select(OnboardingSession.id).where(OnboardingSession.villa_id == villa_id)
    await db.execute(
        delete(SessionActivity).where(SessionActivity.session_id.in_(session_ids))
    )
    await db.execute(delete(OnboardingSession).where(OnboardingSession.villa_id == villa_id))
    await db.execute(delete(SkippedItem).where(SkippedItem.villa_id == villa_id))
    await db.execute(delete(StepFieldProgress).where(StepFieldProgress.villa_id == villa_id))
    await db.execute(delete(OnboardingProgress).where(OnboardingProgress.villa_id == villa_id))
    await db.flush()

    logger.info(f"Onboarding progress purged for villa {villa_id}")
