"""Field progress store — per (villa, step, field key) presence and skip state.

Write rules:
  - upsert_field() is last-write-wins with a monotonic guard: a write whose
    timestamp is older than the stored `last_write_at` is dropped, so an
    in-flight stale auto-save cannot clobber a newer one.  Equal
    timestamps are re-applied, which makes retries idempotent.
  - A real value always clears `skipped`; skipping always clears
    `has_value`.  The two flags are never both true.
  - Every skipped=false → true transition appends one SkippedItem row.

Callers own the transaction; nothing here commits.
"""

from __future__ import annotations

import enum
import logging
from dataclasses import dataclass
from datetime import datetime, timezone

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from villa_onboarding.database import insert_if_absent, utcnow
from villa_onboarding.errors import InvalidField, StepNotSkippable
from villa_onboarding.models.skipped_item import SkipCategory, SkippedItem, SkippedItemType
from villa_onboarding.models.step_field_progress import StepFieldProgress
from villa_onboarding.services.step_catalog import STEP_CATALOG, step_definition

logger = logging.getLogger(__name__)

_KEY_COLUMNS = ["villa_id", "step_number", "field_key"]


class WriteOutcome(str, enum.Enum):
    APPLIED = "applied"
    # Stale write ignored by the timestamp guard (ConcurrentWriteDropped)
    DROPPED = "dropped"


@dataclass(frozen=True)
class FieldState:
    step_number: int
    field_key: str
    has_value: bool
    skipped: bool
    required: bool
    skip_reason: str | None = None
    last_write_at: datetime | None = None


@dataclass(frozen=True)
class FieldWrite:
    """Result of one guarded field write, with the counter deltas it caused."""
    field_key: str
    outcome: WriteOutcome
    completed_delta: int = 0
    skipped_delta: int = 0


# ── Helpers ──────────────────────────────────────────────────

def value_is_present(value) -> bool:
    """Decide whether a submitted value counts as filled in.

    None, blank strings and empty collections are absent; False and 0 are
    legitimate answers and count as present.
    """
    if value is None:
        return False
    if isinstance(value, str):
        return bool(value.strip())
    if isinstance(value, (list, tuple, set, dict)):
        return len(value) > 0
    return True


def normalize_timestamp(ts: datetime | None) -> datetime:
    """Convert to naive UTC (the column type); None means now."""
    if ts is None:
        return utcnow()
    if ts.tzinfo is not None:
        ts = ts.astimezone(timezone.utc).replace(tzinfo=None)
    return ts


def _check_field(step: int, field_key: str) -> None:
    if field_key not in step_definition(step).field_keys:
        raise InvalidField(step, field_key)


async def _get_row(
    db: AsyncSession, villa_id: str, step: int, field_key: str
) -> StepFieldProgress | None:
    result = await db.execute(
        select(StepFieldProgress).where(
            StepFieldProgress.villa_id == villa_id,
            StepFieldProgress.step_number == step,
            StepFieldProgress.field_key == field_key,
        )
    )
    return result.scalar_one_or_none()


async def _get_or_create_row(
    db: AsyncSession, villa_id: str, step: int, field_key: str, ts: datetime
) -> StepFieldProgress:
    """Fetch the row for a key, creating it empty (stamped with `ts`) if absent."""
    row = await _get_row(db, villa_id, step, field_key)
    if row is not None:
        return row

    await insert_if_absent(
        db,
        StepFieldProgress,
        {
            "villa_id": villa_id,
            "step_number": step,
            "field_key": field_key,
            "has_value": False,
            "skipped": False,
            "last_write_at": ts,
        },
        index_elements=_KEY_COLUMNS,
    )
    return await _get_row(db, villa_id, step, field_key)


# ── Writes ───────────────────────────────────────────────────

async def upsert_field(
    db: AsyncSession,
    villa_id: str,
    step: int,
    field_key: str,
    has_value: bool,
    timestamp: datetime | None = None,
) -> FieldWrite:
    """Record value presence for one field, guarded by `timestamp`."""
    _check_field(step, field_key)
    ts = normalize_timestamp(timestamp)

    row = await _get_or_create_row(db, villa_id, step, field_key, ts)

    if ts < row.last_write_at:
        logger.debug(
            f"ConcurrentWriteDropped: villa={villa_id} step={step} field={field_key} "
            f"write_at={ts.isoformat()} stored_at={row.last_write_at.isoformat()}"
        )
        return FieldWrite(field_key, WriteOutcome.DROPPED)

    completed_delta = int(has_value) - int(row.has_value)
    skipped_delta = -int(row.skipped)

    row.has_value = has_value
    row.skipped = False
    row.skip_reason = None
    row.last_write_at = ts
    await db.flush()

    return FieldWrite(field_key, WriteOutcome.APPLIED, completed_delta, skipped_delta)


async def mark_skipped(
    db: AsyncSession,
    villa_id: str,
    step: int,
    field_key: str | None,
    reason: str | None = None,
    *,
    category: SkipCategory = SkipCategory.OTHER,
    skipped_by: str = "system",
    timestamp: datetime | None = None,
) -> list[FieldWrite]:
    """Skip one field, or the whole step when `field_key` is None.

    Whole-step skips require the step to be skippable.  One SkippedItem is
    appended per call that actually flipped something to skipped.
    """
    definition = step_definition(step)
    if field_key is None:
        if not definition.skippable:
            raise StepNotSkippable(step)
        keys = list(definition.field_keys)
        item_type = SkippedItemType.STEP
    else:
        _check_field(step, field_key)
        keys = [field_key]
        item_type = SkippedItemType.FIELD

    ts = normalize_timestamp(timestamp)
    writes: list[FieldWrite] = []

    for key in keys:
        row = await _get_or_create_row(db, villa_id, step, key, ts)
        if row.skipped:
            continue
        writes.append(
            FieldWrite(
                key,
                WriteOutcome.APPLIED,
                completed_delta=-int(row.has_value),
                skipped_delta=1,
            )
        )
        row.skipped = True
        row.has_value = False
        row.skip_reason = reason
        row.last_write_at = max(row.last_write_at, ts)

    if writes:
        db.add(
            SkippedItem(
                villa_id=villa_id,
                item_type=item_type,
                step_number=step,
                field_key=field_key,
                skip_reason=reason,
                skip_category=category,
                skipped_by=skipped_by,
                skipped_at=ts,
            )
        )
    await db.flush()

    logger.info(
        f"Skipped {'step' if field_key is None else 'field ' + field_key} "
        f"for villa {villa_id}, step {step} ({len(writes)} field(s) changed)"
    )
    return writes


async def unmark_skipped(
    db: AsyncSession,
    villa_id: str,
    step: int,
    field_key: str | None,
) -> list[FieldWrite]:
    """Clear `skipped` on one field (or every field of the step).

    `has_value` keeps whatever was recorded; the SkippedItem log is left
    untouched.
    """
    definition = step_definition(step)
    if field_key is None:
        keys = list(definition.field_keys)
    else:
        _check_field(step, field_key)
        keys = [field_key]

    writes: list[FieldWrite] = []
    for key in keys:
        row = await _get_row(db, villa_id, step, key)
        if row is None or not row.skipped:
            continue
        row.skipped = False
        row.skip_reason = None
        writes.append(FieldWrite(key, WriteOutcome.APPLIED, skipped_delta=-1))
    await db.flush()

    if writes:
        logger.info(f"Unskipped {len(writes)} field(s) for villa {villa_id}, step {step}")
    return writes


# ── Reads ────────────────────────────────────────────────────

async def read_step(db: AsyncSession, villa_id: str, step: int) -> list[FieldState]:
    """All catalog fields of a step in catalog order, never-written keys included."""
    definition = step_definition(step)
    result = await db.execute(
        select(StepFieldProgress).where(
            StepFieldProgress.villa_id == villa_id,
            StepFieldProgress.step_number == step,
        )
    )
    rows = {r.field_key: r for r in result.scalars().all()}
    return [_to_state(definition.number, key, key in definition.required_fields, rows.get(key))
            for key in definition.field_keys]


async def read_all(db: AsyncSession, villa_id: str) -> dict[int, list[FieldState]]:
    """Field states for every step of a villa, in one query."""
    result = await db.execute(
        select(StepFieldProgress).where(StepFieldProgress.villa_id == villa_id)
    )
    rows = {(r.step_number, r.field_key): r for r in result.scalars().all()}
    return {
        d.number: [
            _to_state(d.number, key, key in d.required_fields, rows.get((d.number, key)))
            for key in d.field_keys
        ]
        for d in STEP_CATALOG
    }


def _to_state(
    step: int, key: str, required: bool, row: StepFieldProgress | None
) -> FieldState:
    if row is None:
        return FieldState(step, key, has_value=False, skipped=False, required=required)
    return FieldState(
        step_number=step,
        field_key=key,
        has_value=row.has_value,
        skipped=row.skipped,
        required=required,
        skip_reason=row.skip_reason,
        last_write_at=row.last_write_at,
    )
