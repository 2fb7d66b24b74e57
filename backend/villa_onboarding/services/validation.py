"""Validation service — read-only gates for advancing and submitting."""

from dataclasses import dataclass, field

from sqlalchemy.ext.asyncio import AsyncSession

from villa_onboarding.services import progress_engine, step_aggregator
from villa_onboarding.services.step_catalog import STEP_CATALOG


@dataclass
class SubmissionCheck:
    ok: bool
    missing_steps: list[int] = field(default_factory=list)
    # Skippable steps satisfied only by explicit skips
    skipped_steps: list[int] = field(default_factory=list)


async def can_advance(db: AsyncSession, villa_id: str, step: int) -> bool:
    completion = await progress_engine.validate_step(db, villa_id, step)
    return completion.complete


async def can_submit_for_review(db: AsyncSession, villa_id: str) -> SubmissionCheck:
    """Every non-skippable step complete; skippable steps complete or skipped."""
    await progress_engine.get_progress(db, villa_id)
    completions = await step_aggregator.compute_all(db, villa_id)

    missing: list[int] = []
    skipped: list[int] = []
    for definition in STEP_CATALOG:
        completion = completions[definition.number]
        if not completion.complete:
            missing.append(definition.number)
        elif definition.skippable and completion.fully_skipped:
            skipped.append(definition.number)

    return SubmissionCheck(ok=not missing, missing_steps=missing, skipped_steps=skipped)
