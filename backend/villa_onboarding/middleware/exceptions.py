"""Exception handlers: every error leaves the API as one JSON envelope.

    {"error": {"code": "STEP_INCOMPLETE", "message": "...", "details": {...}}}

Domain errors carry their own status, code and details (missing fields,
incomplete steps).  Store errors that escape the retry layer and anything
unexpected are logged at ERROR and answered generically.
"""

import logging

from fastapi import Request, status
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from sqlalchemy.exc import IntegrityError, OperationalError
from starlette.exceptions import HTTPException as StarletteHTTPException

from villa_onboarding.errors import OnboardingException, PersistenceFailure

logger = logging.getLogger(__name__)


def create_error_response(
    status_code: int,
    message: str,
    error_code: str,
    details: dict | None = None,
) -> JSONResponse:
    content = {"error": {"code": error_code, "message": message}}
    if details:
        content["error"]["details"] = details
    return JSONResponse(status_code=status_code, content=content)


def _request_context(request: Request) -> dict:
    return {"path": request.url.path, "method": request.method}


async def onboarding_exception_handler(
    request: Request, exc: OnboardingException
) -> JSONResponse:
    log = logger.error if isinstance(exc, PersistenceFailure) else logger.warning
    log(
        f"Onboarding error: {exc.error_code} - {exc.message}",
        extra={"error_code": exc.error_code, **_request_context(request)},
    )
    return create_error_response(exc.status_code, exc.message, exc.error_code, exc.details)


async def http_exception_handler(
    request: Request, exc: StarletteHTTPException
) -> JSONResponse:
    """404 for unknown routes, 401 from the bearer dependency."""
    response = create_error_response(
        exc.status_code, str(exc.detail), f"HTTP_{exc.status_code}"
    )
    if getattr(exc, "headers", None):
        response.headers.update(exc.headers)
    return response


async def validation_exception_handler(
    request: Request, exc: RequestValidationError
) -> JSONResponse:
    logger.warning(f"Validation error on {request.url.path}", extra=_request_context(request))
    errors = [
        {
            "field": " -> ".join(str(loc) for loc in error["loc"]),
            "message": error["msg"],
        }
        for error in exc.errors()
    ]
    return create_error_response(
        status.HTTP_422_UNPROCESSABLE_ENTITY,
        "Validation error",
        "VALIDATION_ERROR",
        {"errors": errors},
    )


async def integrity_exception_handler(
    request: Request, exc: IntegrityError
) -> JSONResponse:
    logger.error(f"Integrity error on {request.url.path}: {exc}", extra=_request_context(request))
    return create_error_response(
        status.HTTP_409_CONFLICT,
        "Conflicting progress write; reload and retry",
        "CONFLICT",
    )


async def operational_exception_handler(
    request: Request, exc: OperationalError
) -> JSONResponse:
    """Reads bypass run_in_transaction, so store outages can surface here."""
    logger.error(f"Store error on {request.url.path}: {exc}", extra=_request_context(request))
    return create_error_response(
        status.HTTP_503_SERVICE_UNAVAILABLE,
        "Progress store temporarily unavailable",
        "PERSISTENCE_FAILURE",
    )


async def general_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    logger.error(
        f"Unhandled exception on {request.url.path}: {exc}",
        extra=_request_context(request),
        exc_info=True,
    )
    return create_error_response(
        status.HTTP_500_INTERNAL_SERVER_ERROR,
        "An unexpected error occurred",
        "INTERNAL_SERVER_ERROR",
    )


def register_exception_handlers(app):
    app.add_exception_handler(OnboardingException, onboarding_exception_handler)
    app.add_exception_handler(StarletteHTTPException, http_exception_handler)
    app.add_exception_handler(RequestValidationError, validation_exception_handler)
    app.add_exception_handler(IntegrityError, integrity_exception_handler)
    app.add_exception_handler(OperationalError, operational_exception_handler)
    app.add_exception_handler(Exception, general_exception_handler)
