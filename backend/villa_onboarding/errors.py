"""Domain error taxonomy for the onboarding progress engine.

Every error here is an expected outcome of a progress operation, not an
infrastructure fault.  The engine raises them; the HTTP layer turns them
into structured error responses (see middleware/exceptions.py), so the
caller always receives the error code plus the missing field / step list
it needs to render guidance.

A dropped stale auto-save (ConcurrentWriteDropped) is deliberately absent:
it is reported as WriteOutcome.DROPPED by the field store, never raised.
"""

from fastapi import status


class OnboardingException(Exception):
    """Base exception for onboarding progress errors."""

    def __init__(
        self,
        message: str,
        status_code: int = status.HTTP_500_INTERNAL_SERVER_ERROR,
        error_code: str = "INTERNAL_ERROR",
        details: dict | None = None,
    ):
        self.message = message
        self.status_code = status_code
        self.error_code = error_code
        self.details = details
        super().__init__(self.message)


# ── Catalog / addressing ─────────────────────────────────────

class UnknownStep(OnboardingException):
    def __init__(self, step: int):
        self.step = step
        super().__init__(
            message=f"Unknown onboarding step: {step}",
            status_code=status.HTTP_400_BAD_REQUEST,
            error_code="UNKNOWN_STEP",
            details={"step": step},
        )


class InvalidStep(OnboardingException):
    """Step number outside the wizard range for a navigation action."""

    def __init__(self, step: int, total_steps: int):
        self.step = step
        super().__init__(
            message=f"Step {step} is outside 1..{total_steps}",
            status_code=status.HTTP_400_BAD_REQUEST,
            error_code="INVALID_STEP",
            details={"step": step},
        )


class InvalidField(OnboardingException):
    def __init__(self, step: int, field_key: str):
        self.step = step
        self.field_key = field_key
        super().__init__(
            message=f"Field '{field_key}' does not belong to step {step}",
            status_code=status.HTTP_400_BAD_REQUEST,
            error_code="INVALID_FIELD",
            details={"step": step, "field_key": field_key},
        )


class StepNotSkippable(OnboardingException):
    def __init__(self, step: int):
        self.step = step
        super().__init__(
            message=f"Step {step} cannot be skipped",
            status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
            error_code="STEP_NOT_SKIPPABLE",
            details={"step": step},
        )


# ── Transitions ──────────────────────────────────────────────

class StepIncomplete(OnboardingException):
    def __init__(self, step: int, missing_fields: list[str]):
        self.step = step
        self.missing_fields = missing_fields
        super().__init__(
            message=f"Step {step} is missing required fields: {', '.join(missing_fields)}",
            status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
            error_code="STEP_INCOMPLETE",
            details={"step": step, "missing_fields": missing_fields},
        )


class IncompleteSteps(OnboardingException):
    def __init__(self, steps: list[int]):
        self.steps = steps
        super().__init__(
            message=f"Incomplete steps: {', '.join(str(s) for s in steps)}",
            status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
            error_code="INCOMPLETE_STEPS",
            details={"incomplete_steps": steps},
        )


class AlreadyInitialized(OnboardingException):
    def __init__(self, villa_id: str):
        super().__init__(
            message=f"Onboarding progress already exists for villa {villa_id}",
            status_code=status.HTTP_409_CONFLICT,
            error_code="ALREADY_INITIALIZED",
        )


class AlreadyCompleted(OnboardingException):
    def __init__(self, villa_id: str):
        super().__init__(
            message=f"Onboarding for villa {villa_id} is already completed",
            status_code=status.HTTP_409_CONFLICT,
            error_code="ALREADY_COMPLETED",
        )


# ── Lookups ──────────────────────────────────────────────────

class ProgressNotFound(OnboardingException):
    def __init__(self, villa_id: str):
        super().__init__(
            message=f"No onboarding progress found for villa {villa_id}",
            status_code=status.HTTP_404_NOT_FOUND,
            error_code="PROGRESS_NOT_FOUND",
        )


class SessionNotFound(OnboardingException):
    def __init__(self, session_id: str):
        super().__init__(
            message=f"Onboarding session not found: {session_id}",
            status_code=status.HTTP_404_NOT_FOUND,
            error_code="SESSION_NOT_FOUND",
        )


class SessionClosed(OnboardingException):
    def __init__(self, session_id: str):
        super().__init__(
            message=f"Onboarding session {session_id} is closed",
            status_code=status.HTTP_409_CONFLICT,
            error_code="SESSION_CLOSED",
        )


# ── Store ────────────────────────────────────────────────────

class PersistenceFailure(OnboardingException):
    """The store stayed unavailable after the retry budget was spent."""

    def __init__(self, message: str = "Progress store temporarily unavailable"):
        super().__init__(
            message=message,
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            error_code="PERSISTENCE_FAILURE",
        )
