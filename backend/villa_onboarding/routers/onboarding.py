"""Onboarding progress API — thin HTTP layer over the progress engine.

Endpoints (prefix /api/onboarding):
  POST   /start                              → initialize (if absent) + start session
  GET    /{villa_id}                         → progress + latest session snapshot
  POST   /{villa_id}/step                    → batch step update (optional completion)
  PUT    /{villa_id}/field/{step}/{field_key} → auto-save one field
  GET    /{villa_id}/field-progress/{step}   → per-field state of a step
  GET    /{villa_id}/validate/{step}         → aggregator verdict for a step
  GET    /{villa_id}/submission-check        → can the villa be submitted?
  POST   /{villa_id}/skip | /unskip          → skip / unskip a field or step
  POST   /{villa_id}/complete                → finalize onboarding
  POST   /{villa_id}/rewind                  → move the wizard cursor back
  GET    /{villa_id}/detail                  → per-step detail view
  DELETE /{villa_id}                         → purge all progress artefacts
  POST   /sessions/{session_id}/close        → close a session
  GET    /dashboard/overview                 → onboarding analytics

Design:
  - Every write is stamped with server time, so the field guard compares
    timestamps from one clock.
  - Every write runs inside run_in_transaction(), which retries transient
    store failures.  The work closures only touch the session they are
    given, and timestamps are fixed before the first attempt so retries
    replay the same writes with the same idempotency keys.
  - Session tracking is optional: requests that carry a `session_id` also
    update that session's counters in the same transaction.
  - A rejected step completion still commits the field writes that came
    with it.
"""

from fastapi import APIRouter, Depends, status
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from villa_onboarding.auth.deps import get_current_user_id
from villa_onboarding.database import get_db, get_session_factory, run_in_transaction, utcnow
from villa_onboarding.errors import SessionClosed, StepIncomplete
from villa_onboarding.models.onboarding_progress import OnboardingProgress
from villa_onboarding.schemas.onboarding import (
    CloseSessionRequest,
    DashboardOverviewOut,
    FieldSaveRequest,
    FieldSaveResponse,
    FieldStateOut,
    ProgressOut,
    ProgressResponse,
    ProgressSummaryOut,
    RewindRequest,
    SessionOut,
    SessionSnapshotOut,
    SkipRequest,
    SkipResponse,
    StartRequest,
    StartResponse,
    StepUpdateRequest,
    StepUpdateResponse,
    StepValidationOut,
    SubmissionCheckOut,
    UnskipRequest,
    VillaDetailOut,
)
from villa_onboarding.services import (
    field_progress,
    onboarding_analytics,
    progress_engine,
    session_tracker,
    step_aggregator,
    validation,
)
from villa_onboarding.services.field_progress import FieldWrite, WriteOutcome, normalize_timestamp

router = APIRouter()


# ── Helpers ──────────────────────────────────────────────────

async def _track_fields(
    db: AsyncSession,
    session_id: str | None,
    step: int,
    writes: list[FieldWrite],
    ts,
    action: str = "field",
) -> None:
    if not session_id:
        return
    for write in writes:
        if write.outcome != WriteOutcome.APPLIED:
            continue
        if not (write.completed_delta or write.skipped_delta):
            continue
        await session_tracker.record_field_activity(
            db,
            session_id,
            session_tracker.field_activity_key(step, write.field_key, ts, action),
            completed_delta=write.completed_delta,
            skipped_delta=write.skipped_delta,
        )


async def _track_steps(
    db: AsyncSession, session_id: str | None, progress: OnboardingProgress
) -> None:
    if not session_id:
        return
    completions = await step_aggregator.compute_all(db, progress.villa_id)
    await session_tracker.record_step_transition(
        db,
        session_id,
        current_step=progress.current_step,
        steps_completed=len(progress_engine.completed_steps(progress)),
        steps_skipped=sum(1 for c in completions.values() if c.fully_skipped),
    )


async def _check_session(db: AsyncSession, session_id: str | None) -> None:
    """Reject a closed or unknown session before any progress is written."""
    if session_id:
        session = await session_tracker.get_session(db, session_id)
        if session.session_ended_at is not None:
            raise SessionClosed(session_id)


# ── Analytics / sessions (fixed paths first) ─────────────────

@router.get("/health")
async def onboarding_health():
    return {"status": "ok", "service": "onboarding-progress"}


@router.get("/dashboard/overview", response_model=DashboardOverviewOut)
async def dashboard_overview(
    db: AsyncSession = Depends(get_db),
    user_id: str = Depends(get_current_user_id),
):
    overview = await onboarding_analytics.dashboard_overview(db)
    return DashboardOverviewOut.model_validate(overview)


@router.post("/sessions/{session_id}/close", response_model=SessionOut)
async def close_session(
    session_id: str,
    body: CloseSessionRequest | None = None,
    factory: async_sessionmaker = Depends(get_session_factory),
    user_id: str = Depends(get_current_user_id),
):
    completed = body.completed if body else False

    async def work(db: AsyncSession):
        session = await session_tracker.close_session(db, session_id, completed=completed)
        return SessionOut.model_validate(session)

    return await run_in_transaction(work, factory)


@router.post("/start", response_model=StartResponse, status_code=status.HTTP_201_CREATED)
async def start_onboarding(
    body: StartRequest,
    factory: async_sessionmaker = Depends(get_session_factory),
    user_id: str = Depends(get_current_user_id),
):
    """Initialize progress for a villa if needed and open a new session."""

    async def work(db: AsyncSession):
        progress, created = await progress_engine.ensure_initialized(db, body.villa_id)
        session = await session_tracker.start_session(
            db,
            body.villa_id,
            user_id,
            user_email=body.user_email,
            current_step=progress.current_step,
        )
        return StartResponse(
            progress=ProgressOut.model_validate(progress),
            session=SessionOut.model_validate(session),
            created=created,
        )

    return await run_in_transaction(work, factory)


# ── Progress reads ───────────────────────────────────────────

@router.get("/{villa_id}", response_model=ProgressResponse)
async def get_progress(
    villa_id: str,
    db: AsyncSession = Depends(get_db),
    user_id: str = Depends(get_current_user_id),
):
    progress = await progress_engine.get_progress(db, villa_id)
    snapshot = await session_tracker.snapshot(db, villa_id)
    return ProgressResponse(
        progress=ProgressOut.model_validate(progress),
        summary=ProgressSummaryOut.model_validate(progress_engine.summarize(progress)),
        session=SessionSnapshotOut.model_validate(snapshot),
    )


@router.get("/{villa_id}/field-progress/{step}", response_model=list[FieldStateOut])
async def get_field_progress(
    villa_id: str,
    step: int,
    db: AsyncSession = Depends(get_db),
    user_id: str = Depends(get_current_user_id),
):
    await progress_engine.get_progress(db, villa_id)
    states = await field_progress.read_step(db, villa_id, step)
    return [FieldStateOut.model_validate(s) for s in states]


@router.get("/{villa_id}/validate/{step}", response_model=StepValidationOut)
async def validate_step(
    villa_id: str,
    step: int,
    db: AsyncSession = Depends(get_db),
    user_id: str = Depends(get_current_user_id),
):
    await progress_engine.get_progress(db, villa_id)
    completion = await progress_engine.validate_step(db, villa_id, step)
    return StepValidationOut.model_validate(completion)


@router.get("/{villa_id}/submission-check", response_model=SubmissionCheckOut)
async def submission_check(
    villa_id: str,
    db: AsyncSession = Depends(get_db),
    user_id: str = Depends(get_current_user_id),
):
    check = await validation.can_submit_for_review(db, villa_id)
    return SubmissionCheckOut.model_validate(check)


@router.get("/{villa_id}/detail", response_model=VillaDetailOut)
async def get_detail(
    villa_id: str,
    db: AsyncSession = Depends(get_db),
    user_id: str = Depends(get_current_user_id),
):
    detail = await onboarding_analytics.villa_progress_detail(db, villa_id)
    return VillaDetailOut.model_validate(detail)


# ── Progress writes ──────────────────────────────────────────

@router.post("/{villa_id}/step", response_model=StepUpdateResponse)
async def update_step(
    villa_id: str,
    body: StepUpdateRequest,
    factory: async_sessionmaker = Depends(get_session_factory),
    user_id: str = Depends(get_current_user_id),
):
    """Record field presence for a step; `completed=true` also advances.

    Completion is checked after the field writes, so a request that fills
    the last missing field and asks for completion in one go succeeds.
    """
    ts = utcnow()

    async def work(db: AsyncSession):
        await _check_session(db, body.session_id)
        result = await progress_engine.apply_step_update(
            db, villa_id, body.step, body.field_values, timestamp=ts
        )
        await _track_fields(db, body.session_id, body.step, result.writes, ts)
        if body.completed:
            result = await progress_engine.apply_step_update(
                db, villa_id, body.step, {}, completed_flag=True, timestamp=ts
            )
        await _track_steps(db, body.session_id, result.progress)
        return StepUpdateResponse(
            progress=ProgressOut.model_validate(result.progress),
            step=result.step,
            step_complete=result.step_complete,
            completion_percentage=result.completion_percentage,
            step_completion_percentage=result.step_completion_percentage,
            missing_fields=result.missing_fields,
        )

    return await run_in_transaction(work, factory, commit_on=(StepIncomplete,))


@router.put("/{villa_id}/field/{step}/{field_key}", response_model=FieldSaveResponse)
async def save_field(
    villa_id: str,
    step: int,
    field_key: str,
    body: FieldSaveRequest,
    factory: async_sessionmaker = Depends(get_session_factory),
    user_id: str = Depends(get_current_user_id),
):
    """Auto-save.  A write older than the stored one is acknowledged as ignored.

    Writes are ordered by server time like every other write path; the
    client timestamp only identifies a retried save for session counting.
    """
    ts = utcnow()
    edit_ts = normalize_timestamp(body.timestamp) if body.timestamp else ts

    async def work(db: AsyncSession):
        await _check_session(db, body.session_id)
        result = await progress_engine.save_field(db, villa_id, step, field_key, body.value, ts)
        await _track_fields(db, body.session_id, step, [result.write], edit_ts)
        return FieldSaveResponse(
            status="accepted" if result.write.outcome == WriteOutcome.APPLIED else "ignored",
            step_complete=result.step_complete,
            completion_percentage=result.completion_percentage,
        )

    return await run_in_transaction(work, factory)


@router.post("/{villa_id}/skip", response_model=SkipResponse)
async def skip(
    villa_id: str,
    body: SkipRequest,
    factory: async_sessionmaker = Depends(get_session_factory),
    user_id: str = Depends(get_current_user_id),
):
    ts = utcnow()

    async def work(db: AsyncSession):
        await _check_session(db, body.session_id)
        result = await progress_engine.skip(
            db,
            villa_id,
            body.step,
            body.field_key,
            body.reason,
            category=body.category,
            skipped_by=user_id,
            timestamp=ts,
        )
        await _track_fields(db, body.session_id, body.step, result.writes, ts, "skip")
        await _track_steps(db, body.session_id, result.progress)
        return SkipResponse(
            progress=ProgressOut.model_validate(result.progress),
            step_complete=result.step_complete,
            completion_percentage=result.completion_percentage,
            changed_fields=[w.field_key for w in result.writes],
        )

    return await run_in_transaction(work, factory)


@router.post("/{villa_id}/unskip", response_model=SkipResponse)
async def unskip(
    villa_id: str,
    body: UnskipRequest,
    factory: async_sessionmaker = Depends(get_session_factory),
    user_id: str = Depends(get_current_user_id),
):
    ts = utcnow()

    async def work(db: AsyncSession):
        await _check_session(db, body.session_id)
        result = await progress_engine.unskip(db, villa_id, body.step, body.field_key)
        await _track_fields(db, body.session_id, body.step, result.writes, ts, "unskip")
        await _track_steps(db, body.session_id, result.progress)
        return SkipResponse(
            progress=ProgressOut.model_validate(result.progress),
            step_complete=result.step_complete,
            completion_percentage=result.completion_percentage,
            changed_fields=[w.field_key for w in result.writes],
        )

    return await run_in_transaction(work, factory)


@router.post("/{villa_id}/complete", response_model=ProgressOut)
async def complete(
    villa_id: str,
    factory: async_sessionmaker = Depends(get_session_factory),
    user_id: str = Depends(get_current_user_id),
):
    """Finalize onboarding and close the villa's open sessions as submitted."""

    async def work(db: AsyncSession):
        progress = await progress_engine.complete(db, villa_id)
        await session_tracker.mark_submitted(db, villa_id, now=progress.completed_at)
        return ProgressOut.model_validate(progress)

    return await run_in_transaction(work, factory)


@router.post("/{villa_id}/rewind", response_model=ProgressOut)
async def rewind(
    villa_id: str,
    body: RewindRequest,
    factory: async_sessionmaker = Depends(get_session_factory),
    user_id: str = Depends(get_current_user_id),
):
    async def work(db: AsyncSession):
        progress = await progress_engine.rewind_to_step(db, villa_id, body.step)
        return ProgressOut.model_validate(progress)

    return await run_in_transaction(work, factory)


@router.delete("/{villa_id}", status_code=status.HTTP_204_NO_CONTENT)
async def purge(
    villa_id: str,
    factory: async_sessionmaker = Depends(get_session_factory),
    user_id: str = Depends(get_current_user_id),
):
    """Villa deletion hook: remove every progress record for the villa."""

    async def work(db: AsyncSession):
        await progress_engine.get_progress(db, villa_id)
        await progress_engine.purge_villa(db, villa_id)

    await run_in_transaction(work, factory)
