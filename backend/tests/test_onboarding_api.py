"""Onboarding progress API endpoint tests."""

from datetime import datetime, timedelta, timezone

import pytest
from httpx import AsyncClient
from sqlalchemy import func, select

from villa_onboarding.auth.deps import get_current_user_id
from villa_onboarding.auth.jwt import create_access_token
from villa_onboarding.main import app
from villa_onboarding.models.onboarding_progress import OnboardingProgress
from villa_onboarding.services import progress_engine
from villa_onboarding.services.step_catalog import STEP_CATALOG

from conftest import TEST_USER_ID, required_values

BASE = "/api/onboarding"


async def _start(client: AsyncClient, villa_id: str) -> dict:
    resp = await client.post(f"{BASE}/start", json={"villa_id": villa_id})
    assert resp.status_code == 201
    return resp.json()


async def _complete_step(client: AsyncClient, villa_id: str, step: int, session_id=None):
    resp = await client.post(
        f"{BASE}/{villa_id}/step",
        json={
            "step": step,
            "field_values": required_values(step),
            "completed": True,
            "session_id": session_id,
        },
    )
    assert resp.status_code == 200, resp.text
    return resp.json()


@pytest.mark.api
@pytest.mark.asyncio
class TestStartAndRead:
    """Starting onboarding and reading progress."""

    async def test_start_creates_progress_and_session(self, client: AsyncClient, villa_id):
        data = await _start(client, villa_id)
        assert data["created"] is True
        assert data["progress"]["status"] == "NOT_STARTED"
        assert data["progress"]["current_step"] == 1
        assert data["session"]["user_id"] == TEST_USER_ID
        assert data["session"]["total_steps"] == 10

    async def test_start_again_reuses_progress(self, client: AsyncClient, villa_id):
        first = await _start(client, villa_id)
        second = await _start(client, villa_id)
        assert second["created"] is False
        assert second["session"]["id"] != first["session"]["id"]

    async def test_get_progress(self, client: AsyncClient, villa_id):
        started = await _start(client, villa_id)
        resp = await client.get(f"{BASE}/{villa_id}")
        assert resp.status_code == 200
        data = resp.json()
        assert data["summary"]["completion_percentage"] == 0
        assert data["summary"]["incomplete_steps"] == list(range(1, 11))
        assert data["session"]["session_id"] == started["session"]["id"]

    async def test_unknown_villa_returns_404(self, client: AsyncClient):
        resp = await client.get(f"{BASE}/no-such-villa")
        assert resp.status_code == 404
        assert resp.json()["error"]["code"] == "PROGRESS_NOT_FOUND"

    async def test_field_progress_lists_catalog_fields(self, client: AsyncClient, villa_id):
        await _start(client, villa_id)
        resp = await client.get(f"{BASE}/{villa_id}/field-progress/1")
        assert resp.status_code == 200
        keys = [f["field_key"] for f in resp.json()]
        assert keys == list(STEP_CATALOG[0].field_keys)


@pytest.mark.api
@pytest.mark.asyncio
class TestStepUpdates:
    """Batch step updates and auto-save."""

    async def test_complete_step_advances(self, client: AsyncClient, villa_id):
        session_id = (await _start(client, villa_id))["session"]["id"]
        data = await _complete_step(client, villa_id, 1, session_id)

        assert data["step_complete"] is True
        assert data["completion_percentage"] == 10
        assert data["progress"]["current_step"] == 2
        assert data["progress"]["status"] == "IN_PROGRESS"

        snapshot = (await client.get(f"{BASE}/{villa_id}")).json()["session"]
        assert snapshot["fields_completed"] == 2
        assert snapshot["steps_completed"] == 1

    async def test_incomplete_completion_keeps_writes(self, client: AsyncClient, villa_id):
        """A rejected completion reports missing fields but keeps what was sent."""
        await _start(client, villa_id)
        resp = await client.post(
            f"{BASE}/{villa_id}/step",
            json={"step": 1, "field_values": {"villaName": "Casa Azul"}, "completed": True},
        )

        assert resp.status_code == 422
        error = resp.json()["error"]
        assert error["code"] == "STEP_INCOMPLETE"
        assert error["details"]["missing_fields"] == ["bedrooms"]

        fields = (await client.get(f"{BASE}/{villa_id}/field-progress/1")).json()
        by_key = {f["field_key"]: f for f in fields}
        assert by_key["villaName"]["has_value"] is True

        progress = (await client.get(f"{BASE}/{villa_id}")).json()["progress"]
        assert progress["current_step"] == 1
        assert progress["villa_info_completed"] is False

    async def test_unknown_step_and_field(self, client: AsyncClient, villa_id):
        await _start(client, villa_id)

        resp = await client.post(f"{BASE}/{villa_id}/step", json={"step": 11, "field_values": {}})
        assert resp.status_code == 400
        assert resp.json()["error"]["code"] == "UNKNOWN_STEP"

        resp = await client.post(
            f"{BASE}/{villa_id}/step", json={"step": 1, "field_values": {"ownerEmail": "x@y.z"}}
        )
        assert resp.status_code == 400
        assert resp.json()["error"]["code"] == "INVALID_FIELD"

    async def test_fast_client_clock_does_not_block_later_writes(
        self, client: AsyncClient, villa_id
    ):
        """An auto-save carrying a future client time does not outrank the next step update."""
        await _start(client, villa_id)
        ahead = (datetime.now(timezone.utc) + timedelta(minutes=2)).isoformat()

        resp = await client.put(
            f"{BASE}/{villa_id}/field/1/bedrooms", json={"value": "", "timestamp": ahead}
        )
        assert resp.status_code == 200
        assert resp.json()["status"] == "accepted"

        resp = await client.post(
            f"{BASE}/{villa_id}/step",
            json={
                "step": 1,
                "field_values": {"villaName": "Casa Azul", "bedrooms": 4},
                "completed": True,
            },
        )
        assert resp.status_code == 200, resp.text
        data = resp.json()
        assert data["progress"]["current_step"] == 2
        assert data["completion_percentage"] == 10

    async def test_slow_client_clock_still_clears_skip(self, client: AsyncClient, villa_id):
        """A value saved after a skip wins even if the client clock lags."""
        await _start(client, villa_id)
        await client.post(f"{BASE}/{villa_id}/skip", json={"step": 1, "field_key": "bedrooms"})
        behind = (datetime.now(timezone.utc) - timedelta(hours=1)).isoformat()

        resp = await client.put(
            f"{BASE}/{villa_id}/field/1/bedrooms", json={"value": 3, "timestamp": behind}
        )
        assert resp.status_code == 200
        assert resp.json()["status"] == "accepted"

        fields = (await client.get(f"{BASE}/{villa_id}/field-progress/1")).json()
        bedrooms = {f["field_key"]: f for f in fields}["bedrooms"]
        assert bedrooms["has_value"] is True
        assert bedrooms["skipped"] is False

    async def test_retried_auto_save_counted_once(self, client: AsyncClient, villa_id):
        session_id = (await _start(client, villa_id))["session"]["id"]
        body = {
            "value": "Casa Azul",
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "session_id": session_id,
        }
        url = f"{BASE}/{villa_id}/field/1/villaName"

        for _ in range(2):
            resp = await client.put(url, json=body)
            assert resp.status_code == 200

        snapshot = (await client.get(f"{BASE}/{villa_id}")).json()["session"]
        assert snapshot["fields_completed"] == 1

    async def test_validate_step(self, client: AsyncClient, villa_id):
        await _start(client, villa_id)
        await client.put(f"{BASE}/{villa_id}/field/2/ownerEmail", json={"value": "a@b.co"})

        resp = await client.get(f"{BASE}/{villa_id}/validate/2")
        assert resp.status_code == 200
        data = resp.json()
        assert data["complete"] is False
        assert data["missing_fields"] == ["ownerFullName", "ownerPhone"]
        assert data["percentage"] == 33

    async def test_rewind(self, client: AsyncClient, villa_id):
        await _start(client, villa_id)
        await _complete_step(client, villa_id, 1)
        await _complete_step(client, villa_id, 2)

        resp = await client.post(f"{BASE}/{villa_id}/rewind", json={"step": 1})
        assert resp.status_code == 200
        assert resp.json()["current_step"] == 1
        assert resp.json()["owner_details_completed"] is True

        resp = await client.post(f"{BASE}/{villa_id}/rewind", json={"step": 0})
        assert resp.status_code == 400
        assert resp.json()["error"]["code"] == "INVALID_STEP"


@pytest.mark.api
@pytest.mark.asyncio
class TestSkipping:
    """Skip and unskip endpoints."""

    async def test_skip_ota_step(self, client: AsyncClient, villa_id):
        await _start(client, villa_id)
        resp = await client.post(
            f"{BASE}/{villa_id}/skip",
            json={"step": 5, "reason": "Not listed yet", "category": "NOT_APPLICABLE"},
        )
        assert resp.status_code == 200
        data = resp.json()
        assert data["step_complete"] is True
        assert data["progress"]["ota_credentials_completed"] is True
        assert set(data["changed_fields"]) == set(STEP_CATALOG[4].field_keys)

        detail = (await client.get(f"{BASE}/{villa_id}/detail")).json()
        assert detail["steps"][4]["status"] == "SKIPPED"
        assert detail["skipped_items"][0]["skipped_by"] == TEST_USER_ID

    async def test_required_step_not_skippable(self, client: AsyncClient, villa_id):
        await _start(client, villa_id)
        resp = await client.post(f"{BASE}/{villa_id}/skip", json={"step": 4})
        assert resp.status_code == 422
        assert resp.json()["error"]["code"] == "STEP_NOT_SKIPPABLE"

    async def test_skip_then_unskip_field(self, client: AsyncClient, villa_id):
        await _start(client, villa_id)
        await client.post(f"{BASE}/{villa_id}/skip", json={"step": 7, "field_key": "staffMembers"})
        assert (await client.get(f"{BASE}/{villa_id}")).json()["progress"]["staff_config_completed"]

        resp = await client.post(
            f"{BASE}/{villa_id}/unskip", json={"step": 7, "field_key": "staffMembers"}
        )
        assert resp.status_code == 200
        assert resp.json()["step_complete"] is False
        assert resp.json()["changed_fields"] == ["staffMembers"]


@pytest.mark.api
@pytest.mark.asyncio
class TestCompletion:
    """Final submission and the session lifecycle around it."""

    async def test_complete_with_missing_steps(self, client: AsyncClient, villa_id):
        await _start(client, villa_id)
        await _complete_step(client, villa_id, 1)

        resp = await client.post(f"{BASE}/{villa_id}/complete")
        assert resp.status_code == 422
        error = resp.json()["error"]
        assert error["code"] == "INCOMPLETE_STEPS"
        assert error["details"]["incomplete_steps"] == list(range(2, 11))

    async def test_full_flow(self, client: AsyncClient, villa_id):
        session_id = (await _start(client, villa_id))["session"]["id"]
        for definition in STEP_CATALOG:
            await _complete_step(client, villa_id, definition.number, session_id)

        check = (await client.get(f"{BASE}/{villa_id}/submission-check")).json()
        assert check["ok"] is True

        resp = await client.post(f"{BASE}/{villa_id}/complete")
        assert resp.status_code == 200
        data = resp.json()
        assert data["status"] == "COMPLETED"
        assert data["completed_at"] is not None
        assert data["submitted_at"] is not None

        # The open session was closed as submitted
        snapshot = (await client.get(f"{BASE}/{villa_id}")).json()["session"]
        assert snapshot["session_id"] is None
        overview = (await client.get(f"{BASE}/dashboard/overview")).json()
        assert overview["total_completed"] == 1
        assert overview["recently_completed"][0]["submitted_for_review"] is True

        resp = await client.post(
            f"{BASE}/{villa_id}/step", json={"step": 1, "field_values": {"villaName": "New"}}
        )
        assert resp.status_code == 409
        assert resp.json()["error"]["code"] == "ALREADY_COMPLETED"

    async def test_closed_session_rejected(self, client: AsyncClient, villa_id):
        session_id = (await _start(client, villa_id))["session"]["id"]

        resp = await client.post(f"{BASE}/sessions/{session_id}/close", json={"completed": False})
        assert resp.status_code == 200
        assert resp.json()["session_ended_at"] is not None

        resp = await client.put(
            f"{BASE}/{villa_id}/field/1/villaName",
            json={"value": "Casa Azul", "session_id": session_id},
        )
        assert resp.status_code == 409
        assert resp.json()["error"]["code"] == "SESSION_CLOSED"

        # Nothing was written
        fields = (await client.get(f"{BASE}/{villa_id}/field-progress/1")).json()
        assert not any(f["has_value"] for f in fields)

    async def test_close_unknown_session(self, client: AsyncClient):
        resp = await client.post(f"{BASE}/sessions/missing/close")
        assert resp.status_code == 404
        assert resp.json()["error"]["code"] == "SESSION_NOT_FOUND"

    async def test_delete_villa_progress(self, client: AsyncClient, villa_id):
        await _start(client, villa_id)
        await _complete_step(client, villa_id, 1)

        resp = await client.delete(f"{BASE}/{villa_id}")
        assert resp.status_code == 204
        assert (await client.get(f"{BASE}/{villa_id}")).status_code == 404
        assert (await client.delete(f"{BASE}/{villa_id}")).status_code == 404


@pytest.mark.api
@pytest.mark.asyncio
class TestAuthAndHealth:

    async def test_missing_token_rejected(self, client: AsyncClient, villa_id):
        app.dependency_overrides.pop(get_current_user_id)
        resp = await client.get(f"{BASE}/{villa_id}")
        assert resp.status_code == 401

    async def test_bearer_token_accepted(self, client: AsyncClient, villa_id):
        app.dependency_overrides.pop(get_current_user_id)
        headers = {"Authorization": f"Bearer {create_access_token('user-42')}"}

        resp = await client.post(f"{BASE}/start", json={"villa_id": villa_id}, headers=headers)
        assert resp.status_code == 201
        assert resp.json()["session"]["user_id"] == "user-42"

    async def test_health(self, client: AsyncClient):
        resp = await client.get("/health")
        assert resp.status_code == 200
        assert resp.json()["status"] == "ok"

    async def test_malformed_path_uses_error_envelope(self, client: AsyncClient, villa_id):
        resp = await client.put(f"{BASE}/{villa_id}/field/abc/villaName", json={"value": "x"})
        assert resp.status_code == 422
        error = resp.json()["error"]
        assert error["code"] == "VALIDATION_ERROR"
        assert error["details"]["errors"][0]["field"] == "path -> step"


@pytest.mark.api
@pytest.mark.asyncio
class TestConcurrentWriters:
    """Several sessions working on one villa."""

    async def test_start_when_progress_created_concurrently(
        self, client: AsyncClient, session_factory, monkeypatch, villa_id
    ):
        """A worker that misses the row on its first look reuses the other worker's row."""
        async with session_factory() as other:
            existing = await progress_engine.initialize(other, villa_id)
            await other.commit()

        real_find = progress_engine.find_progress
        lookups = []

        async def not_yet_visible(db, vid):
            lookups.append(vid)
            if len(lookups) == 1:
                return None
            return await real_find(db, vid)

        monkeypatch.setattr(progress_engine, "find_progress", not_yet_visible)

        resp = await client.post(f"{BASE}/start", json={"villa_id": villa_id})
        assert resp.status_code == 201, resp.text
        data = resp.json()
        assert data["created"] is False
        assert data["progress"]["current_step"] == 1

        async with session_factory() as db:
            result = await db.execute(
                select(func.count(OnboardingProgress.id)).where(
                    OnboardingProgress.villa_id == villa_id
                )
            )
            assert result.scalar() == 1
            assert (await progress_engine.get_progress(db, villa_id)).id == existing.id

    async def test_two_sessions_fill_sibling_fields(self, client: AsyncClient, villa_id):
        """Each session counts its own field; the step flag follows the combined state."""
        first = (await _start(client, villa_id))["session"]["id"]
        second = (await _start(client, villa_id))["session"]["id"]

        resp = await client.put(
            f"{BASE}/{villa_id}/field/1/villaName",
            json={"value": "Casa Azul", "session_id": first},
        )
        assert resp.json()["step_complete"] is False
        resp = await client.put(
            f"{BASE}/{villa_id}/field/1/bedrooms", json={"value": 4, "session_id": second}
        )
        assert resp.json()["step_complete"] is True

        progress = (await client.get(f"{BASE}/{villa_id}")).json()["progress"]
        validation = (await client.get(f"{BASE}/{villa_id}/validate/1")).json()
        assert progress["villa_info_completed"] is True
        assert validation["complete"] is True

        for session_id in (first, second):
            closed = (await client.post(f"{BASE}/sessions/{session_id}/close")).json()
            assert closed["fields_completed"] == 1
