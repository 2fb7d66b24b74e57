"""Analytics tests: dashboard overview and per-villa detail."""

import uuid
from datetime import timedelta

import pytest

from villa_onboarding.database import utcnow
from villa_onboarding.models.skipped_item import SkipCategory, SkippedItemType
from villa_onboarding.services import onboarding_analytics, progress_engine, session_tracker
from villa_onboarding.services.onboarding_analytics import StepStatus


async def _finished_session(db, villa_id, ended_at, minutes, completed=True):
    session = await session_tracker.start_session(db, villa_id, "user-1")
    session.session_started_at = ended_at - timedelta(minutes=minutes)
    await db.flush()
    return await session_tracker.close_session(db, session.id, completed=completed, now=ended_at)


@pytest.mark.integration
@pytest.mark.asyncio
class TestDashboardOverview:

    async def test_empty_dashboard(self, db_session):
        overview = await onboarding_analytics.dashboard_overview(db_session)
        assert overview.sessions_in_progress == []
        assert overview.total_completed == 0
        assert overview.average_completion_time == 0
        assert overview.common_skipped_fields == []

    async def test_session_counts(self, db_session, villa_id):
        now = utcnow()
        recent = await _finished_session(db_session, villa_id, now - timedelta(days=3), 90)
        await _finished_session(db_session, villa_id, now - timedelta(days=20), 30)
        await _finished_session(db_session, villa_id, now - timedelta(days=1), 5, completed=False)
        open_session = await session_tracker.start_session(db_session, villa_id, "user-2")

        overview = await onboarding_analytics.dashboard_overview(db_session, now=now)

        assert [s.id for s in overview.sessions_in_progress] == [open_session.id]
        assert [s.id for s in overview.recently_completed] == [recent.id]
        assert overview.completed_last_7_days == 1
        assert overview.completed_last_30_days == 2
        assert overview.total_completed == 2
        assert overview.average_completion_time == 60

    async def test_common_skipped_fields(self, db_session, progress, villa_id):
        """Field skips are ranked across villas; whole-step skips are not fields."""
        other_villa = str(uuid.uuid4())
        await progress_engine.initialize(db_session, other_villa)

        await progress_engine.skip(
            db_session, villa_id, 1, "bathrooms", category=SkipCategory.LATER
        )
        await progress_engine.skip(
            db_session, other_villa, 1, "bathrooms", category=SkipCategory.NOT_APPLICABLE
        )
        await progress_engine.skip(db_session, villa_id, 1, "villaAddress")
        await progress_engine.skip(db_session, villa_id, 5, None)

        stats = await onboarding_analytics.common_skipped_fields(db_session)

        assert [(s.step_number, s.field_key, s.skip_count) for s in stats] == [
            (1, "bathrooms", 2),
            (1, "villaAddress", 1),
        ]
        assert stats[0].by_category == {"LATER": 1, "NOT_APPLICABLE": 1}
        assert stats[1].by_category == {"OTHER": 1}


@pytest.mark.integration
@pytest.mark.asyncio
class TestVillaProgressDetail:

    async def test_step_statuses_and_time_remaining(self, db_session, progress, villa_id, fill_step):
        await fill_step(1, completed=True)
        await progress_engine.apply_step_update(
            db_session, villa_id, 2, {"ownerFullName": "Jane Doe"}
        )
        await progress_engine.skip(db_session, villa_id, 5, None, "not listed yet")

        detail = await onboarding_analytics.villa_progress_detail(db_session, villa_id)
        statuses = {s.step_number: s.status for s in detail.steps}

        assert statuses[1] == StepStatus.COMPLETED
        assert statuses[2] == StepStatus.IN_PROGRESS
        assert statuses[5] == StepStatus.SKIPPED
        assert statuses[3] == StepStatus.NOT_STARTED

        step_two = detail.steps[1]
        assert step_two.fields_completed == 1
        assert step_two.missing_fields == ["ownerEmail", "ownerPhone"]

        # Steps 3, 4, 6, 7, 8, 9, 10 are untouched
        assert detail.estimated_time_remaining == 12 + 15 + 25 + 15 + 10 + 30 + 5
        assert detail.summary.completed_steps == [1, 5]

        assert len(detail.skipped_items) == 1
        assert detail.skipped_items[0].item_type == SkippedItemType.STEP
        assert detail.skipped_items[0].skip_reason == "not listed yet"

    async def test_partially_skipped_step_in_progress(self, db_session, progress, villa_id):
        await progress_engine.skip(db_session, villa_id, 7, "positions")

        detail = await onboarding_analytics.villa_progress_detail(db_session, villa_id)
        step_seven = detail.steps[6]
        assert step_seven.status == StepStatus.IN_PROGRESS
        assert step_seven.fields_skipped == 1
