"""Pydantic schemas for the onboarding progress API.

Field keys inside `field_values` are the wizard's wire keys (camelCase,
e.g. "villaName"); everything else is snake_case.  Step numbers are not
range-checked here so that the engine reports UNKNOWN_STEP consistently.
"""

from datetime import datetime
from typing import Any, Literal

from pydantic import BaseModel, Field

from villa_onboarding.models.onboarding_progress import OnboardingStatus
from villa_onboarding.models.skipped_item import SkipCategory, SkippedItemType
from villa_onboarding.services.onboarding_analytics import StepStatus


# ── Requests ────────────────────────────────────────────────

class StartRequest(BaseModel):
    villa_id: str = Field(..., min_length=1, max_length=36)
    user_email: str | None = Field(None, max_length=255)


class StepUpdateRequest(BaseModel):
    step: int
    field_values: dict[str, Any] = {}
    completed: bool = False
    session_id: str | None = None


class FieldSaveRequest(BaseModel):
    value: Any = None
    # Client-side edit time; a retry carries the same value and is counted once
    timestamp: datetime | None = None
    session_id: str | None = None


class SkipRequest(BaseModel):
    step: int
    field_key: str | None = None
    reason: str | None = Field(None, max_length=500)
    category: SkipCategory = SkipCategory.OTHER
    session_id: str | None = None


class UnskipRequest(BaseModel):
    step: int
    field_key: str | None = None
    session_id: str | None = None


class RewindRequest(BaseModel):
    step: int


class CloseSessionRequest(BaseModel):
    completed: bool = False


# ── Progress ────────────────────────────────────────────────

class ProgressOut(BaseModel):
    villa_id: str
    status: OnboardingStatus
    current_step: int
    total_steps: int
    villa_info_completed: bool
    owner_details_completed: bool
    contractual_details_completed: bool
    bank_details_completed: bool
    ota_credentials_completed: bool
    documents_uploaded: bool
    staff_config_completed: bool
    facilities_completed: bool
    photos_uploaded: bool
    review_completed: bool
    submitted_at: datetime | None = None
    completed_at: datetime | None = None
    created_at: datetime
    updated_at: datetime

    model_config = {"from_attributes": True}


class ProgressSummaryOut(BaseModel):
    villa_id: str
    status: OnboardingStatus
    current_step: int
    total_steps: int
    completion_percentage: int
    completed_steps: list[int]
    incomplete_steps: list[int]

    model_config = {"from_attributes": True}


class SessionOut(BaseModel):
    id: str
    villa_id: str
    user_id: str
    user_email: str | None = None
    current_step: int
    total_steps: int
    steps_completed: int
    steps_skipped: int
    fields_completed: int
    fields_skipped: int
    total_fields: int
    is_completed: bool
    submitted_for_review: bool
    submitted_at: datetime | None = None
    total_time_spent: int | None = None
    average_step_time: int | None = None
    session_started_at: datetime
    last_activity_at: datetime
    session_ended_at: datetime | None = None

    model_config = {"from_attributes": True}


class SessionSnapshotOut(BaseModel):
    session_id: str | None = None
    completion_percentage: int
    current_step: int
    steps_completed: int
    steps_skipped: int
    fields_completed: int
    fields_skipped: int
    total_fields: int
    average_step_time: int | None = None
    estimated_minutes_remaining: int | None = None
    last_activity_at: datetime | None = None

    model_config = {"from_attributes": True}


class StartResponse(BaseModel):
    progress: ProgressOut
    session: SessionOut
    created: bool


class ProgressResponse(BaseModel):
    progress: ProgressOut
    summary: ProgressSummaryOut
    session: SessionSnapshotOut


class StepUpdateResponse(BaseModel):
    progress: ProgressOut
    step: int
    step_complete: bool
    completion_percentage: int
    step_completion_percentage: int
    missing_fields: list[str]


class FieldSaveResponse(BaseModel):
    """`ignored` means a newer write for the same field already landed."""
    status: Literal["accepted", "ignored"]
    step_complete: bool
    completion_percentage: int


class SkipResponse(BaseModel):
    progress: ProgressOut
    step_complete: bool
    completion_percentage: int
    changed_fields: list[str]


# ── Field / step state ──────────────────────────────────────

class FieldStateOut(BaseModel):
    step_number: int
    field_key: str
    required: bool
    has_value: bool
    skipped: bool
    skip_reason: str | None = None
    last_write_at: datetime | None = None

    model_config = {"from_attributes": True}


class StepValidationOut(BaseModel):
    step: int
    complete: bool
    missing_fields: list[str]
    satisfied: int
    required: int
    percentage: int

    model_config = {"from_attributes": True}


class SubmissionCheckOut(BaseModel):
    ok: bool
    missing_steps: list[int]
    skipped_steps: list[int]

    model_config = {"from_attributes": True}


# ── Analytics ───────────────────────────────────────────────

class SkippedItemOut(BaseModel):
    id: str
    item_type: SkippedItemType
    step_number: int
    field_key: str | None = None
    skip_reason: str | None = None
    skip_category: SkipCategory
    skipped_by: str
    skipped_at: datetime

    model_config = {"from_attributes": True}


class StepDetailOut(BaseModel):
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

    model_config = {"from_attributes": True}


class VillaDetailOut(BaseModel):
    summary: ProgressSummaryOut
    steps: list[StepDetailOut]
    skipped_items: list[SkippedItemOut]
    estimated_time_remaining: int

    model_config = {"from_attributes": True}


class SkippedFieldStatOut(BaseModel):
    field_key: str
    step_number: int
    skip_count: int
    by_category: dict[str, int]

    model_config = {"from_attributes": True}


class DashboardOverviewOut(BaseModel):
    sessions_in_progress: list[SessionOut]
    recently_completed: list[SessionOut]
    completed_last_7_days: int
    completed_last_30_days: int
    total_completed: int
    average_completion_time: int
    common_skipped_fields: list[SkippedFieldStatOut]

    model_config = {"from_attributes": True}
