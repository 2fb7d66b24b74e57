"""Step progress aggregator — derives step completion from field state.

A step is complete iff every required field is either filled in or
explicitly skipped.  Read-only: nothing here writes, so it is safe to
call from any number of concurrent workers.
"""

from __future__ import annotations

import math
from dataclasses import dataclass, field

from sqlalchemy.ext.asyncio import AsyncSession

from villa_onboarding.services import field_progress
from villa_onboarding.services.field_progress import FieldState
from villa_onboarding.services.step_catalog import step_definition


def percentage(part: int, whole: int) -> int:
    """Integer percentage, rounded half up."""
    if whole <= 0:
        return 100
    return math.floor(part * 100 / whole + 0.5)


@dataclass(frozen=True)
class StepCompletion:
    step: int
    complete: bool
    missing_fields: list[str] = field(default_factory=list)
    satisfied: int = 0
    required: int = 0
    # Every required field satisfied by skipping alone
    fully_skipped: bool = False

    @property
    def percentage(self) -> int:
        return percentage(self.satisfied, self.required)


def evaluate(step: int, states: list[FieldState]) -> StepCompletion:
    """Pure completion verdict for one step given its field states."""
    definition = step_definition(step)
    by_key = {s.field_key: s for s in states}

    missing: list[str] = []
    skipped_only = 0
    for key in definition.required_fields:
        state = by_key.get(key)
        if state is None or not (state.has_value or state.skipped):
            missing.append(key)
        elif state.skipped:
            skipped_only += 1

    required = len(definition.required_fields)
    return StepCompletion(
        step=step,
        complete=not missing,
        missing_fields=missing,
        satisfied=required - len(missing),
        required=required,
        fully_skipped=required > 0 and skipped_only == required,
    )


async def compute_step_completion(
    db: AsyncSession, villa_id: str, step: int
) -> StepCompletion:
    states = await field_progress.read_step(db, villa_id, step)
    return evaluate(step, states)


async def compute_all(db: AsyncSession, villa_id: str) -> dict[int, StepCompletion]:
    """Completion verdicts for all ten steps from a single read."""
    all_states = await field_progress.read_all(db, villa_id)
    return {step: evaluate(step, states) for step, states in all_states.items()}
