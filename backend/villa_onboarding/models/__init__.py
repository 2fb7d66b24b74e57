"""Aggregate model imports for Alembic auto-detection."""

from villa_onboarding.models.onboarding_progress import OnboardingProgress, OnboardingStatus  # noqa: F401
from villa_onboarding.models.step_field_progress import StepFieldProgress  # noqa: F401
from villa_onboarding.models.skipped_item import SkippedItem, SkippedItemType, SkipCategory  # noqa: F401
from villa_onboarding.models.onboarding_session import OnboardingSession, SessionActivity  # noqa: F401
