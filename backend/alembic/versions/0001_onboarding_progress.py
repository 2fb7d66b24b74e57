"""Create onboarding progress, field progress, skip log and session tables.

Revision ID: 0001
Revises:
Create Date: 2026-10-18
"""

revision = "0001"
down_revision = None
branch_labels = None
depends_on = None

from alembic import op
import sqlalchemy as sa

_status = sa.Enum("NOT_STARTED", "IN_PROGRESS", "COMPLETED", name="onboardingstatus")
_item_type = sa.Enum("STEP", "FIELD", name="skippeditemtype")
_skip_category = sa.Enum(
    "NOT_APPLICABLE", "DATA_UNAVAILABLE", "LATER", "OPTIONAL", "PRIVACY_CONCERNS", "OTHER",
    name="skipcategory",
)

_STEP_FLAGS = [
    "villa_info_completed",
    "owner_details_completed",
    "contractual_details_completed",
    "bank_details_completed",
    "ota_credentials_completed",
    "documents_uploaded",
    "staff_config_completed",
    "facilities_completed",
    "photos_uploaded",
    "review_completed",
]


def upgrade() -> None:
    op.create_table(
        "onboarding_progress",
        sa.Column("id", sa.String(36), primary_key=True),
        sa.Column("villa_id", sa.String(36), nullable=False),
        sa.Column("current_step", sa.Integer(), nullable=False, server_default="1"),
        sa.Column("total_steps", sa.Integer(), nullable=False, server_default="10"),
        *[sa.Column(flag, sa.Boolean(), server_default=sa.false()) for flag in _STEP_FLAGS],
        sa.Column("status", _status, nullable=False, server_default="NOT_STARTED"),
        sa.Column("submitted_at", sa.DateTime()),
        sa.Column("completed_at", sa.DateTime()),
        sa.Column("created_at", sa.DateTime(), server_default=sa.func.now()),
        sa.Column("updated_at", sa.DateTime(), server_default=sa.func.now()),
    )
    op.create_index(
        "ix_onboarding_progress_villa_id", "onboarding_progress", ["villa_id"], unique=True
    )

    op.create_table(
        "step_field_progress",
        sa.Column("id", sa.String(36), primary_key=True),
        sa.Column("villa_id", sa.String(36), nullable=False),
        sa.Column("step_number", sa.Integer(), nullable=False),
        sa.Column("field_key", sa.String(100), nullable=False),
        sa.Column("has_value", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("skipped", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("skip_reason", sa.Text()),
        sa.Column("last_write_at", sa.DateTime(), nullable=False),
        sa.Column("created_at", sa.DateTime(), server_default=sa.func.now()),
        sa.Column("updated_at", sa.DateTime(), server_default=sa.func.now()),
        sa.UniqueConstraint(
            "villa_id", "step_number", "field_key", name="uq_step_field_progress_key"
        ),
        sa.CheckConstraint(
            "NOT (has_value AND skipped)", name="ck_step_field_progress_exclusive"
        ),
    )
    op.create_index("ix_step_field_progress_villa_id", "step_field_progress", ["villa_id"])

    op.create_table(
        "skipped_items",
        sa.Column("id", sa.String(36), primary_key=True),
        sa.Column("villa_id", sa.String(36), nullable=False),
        sa.Column("item_type", _item_type, nullable=False),
        sa.Column("step_number", sa.Integer(), nullable=False),
        sa.Column("field_key", sa.String(100)),
        sa.Column("skip_reason", sa.Text()),
        sa.Column("skip_category", _skip_category, nullable=False, server_default="OTHER"),
        sa.Column("skipped_by", sa.String(36), nullable=False, server_default="system"),
        sa.Column("skipped_at", sa.DateTime(), nullable=False, server_default=sa.func.now()),
    )
    op.create_index("ix_skipped_items_villa_id", "skipped_items", ["villa_id"])
    op.create_index("ix_skipped_items_skipped_at", "skipped_items", ["skipped_at"])

    op.create_table(
        "onboarding_sessions",
        sa.Column("id", sa.String(36), primary_key=True),
        sa.Column("villa_id", sa.String(36), nullable=False),
        sa.Column("user_id", sa.String(36), nullable=False),
        sa.Column("user_email", sa.String(255)),
        sa.Column("current_step", sa.Integer(), nullable=False, server_default="1"),
        sa.Column("total_steps", sa.Integer(), nullable=False, server_default="10"),
        sa.Column("steps_completed", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("steps_skipped", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("fields_completed", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("fields_skipped", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("total_fields", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("is_completed", sa.Boolean(), server_default=sa.false()),
        sa.Column("submitted_for_review", sa.Boolean(), server_default=sa.false()),
        sa.Column("submitted_at", sa.DateTime()),
        sa.Column("total_time_spent", sa.Integer()),
        sa.Column("average_step_time", sa.Integer()),
        sa.Column("session_started_at", sa.DateTime(), nullable=False, server_default=sa.func.now()),
        sa.Column("last_activity_at", sa.DateTime(), nullable=False, server_default=sa.func.now()),
        sa.Column("session_ended_at", sa.DateTime()),
    )
    op.create_index("ix_onboarding_sessions_villa_id", "onboarding_sessions", ["villa_id"])
    op.create_index("ix_onboarding_sessions_user_id", "onboarding_sessions", ["user_id"])
    op.create_index(
        "ix_onboarding_sessions_last_activity_at", "onboarding_sessions", ["last_activity_at"]
    )

    op.create_table(
        "onboarding_session_activity",
        sa.Column("id", sa.String(36), primary_key=True),
        sa.Column(
            "session_id",
            sa.String(36),
            sa.ForeignKey("onboarding_sessions.id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column("idempotency_key", sa.String(255), nullable=False),
        sa.Column("completed_delta", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("skipped_delta", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("applied_at", sa.DateTime(), server_default=sa.func.now()),
        sa.UniqueConstraint("session_id", "idempotency_key", name="uq_session_activity_key"),
    )
    op.create_index(
        "ix_onboarding_session_activity_session_id",
        "onboarding_session_activity",
        ["session_id"],
    )


def downgrade() -> None:
    op.drop_table("onboarding_session_activity")
    op.drop_table("onboarding_sessions")
    op.drop_table("skipped_items")
    op.drop_table("step_field_progress")
    op.drop_table("onboarding_progress")
    _skip_category.drop(op.get_bind(), checkfirst=True)
    _item_type.drop(op.get_bind(), checkfirst=True)
    _status.drop(op.get_bind(), checkfirst=True)
