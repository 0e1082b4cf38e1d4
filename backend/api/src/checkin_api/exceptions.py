"""FastAPI exception handlers for converting CheckinError to HTTP responses.

Domain errors carry their own HTTP status (see checkin_core.models.errors):
- 400 Bad Request: Validation/business rule violations
- 401 Unauthorized: Authentication required or failed
- 403 Forbidden: Banned, past-due, or not permitted
- 404 Not Found: No session/resource in the expected state
- 409 Conflict: Lost a race for a resource or for the lane
- 500 Internal Server Error: Invariant violation (with diagnostics)

Usage:
    from checkin_api.exceptions import register_exception_handlers
    register_exception_handlers(app)
"""

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from starlette.status import HTTP_422_UNPROCESSABLE_ENTITY, HTTP_500_INTERNAL_SERVER_ERROR

from checkin_api.models.common import format_validation_errors
from checkin_core.models.errors import CheckinError
from checkin_core.utils.logging import get_logger

logger = get_logger(__name__)


async def checkin_error_handler(request: Request, exc: CheckinError) -> JSONResponse:
    """Convert a domain error to the standard JSON envelope and its status."""
    if exc.status_code >= HTTP_500_INTERNAL_SERVER_ERROR:
        logger.error(
            "%s on %s %s: %s", exc.code.value, request.method, request.url.path, exc.details
        )
    return JSONResponse(
        status_code=exc.status_code,
        content=exc.to_response().model_dump(mode="json"),
    )


async def request_validation_handler(
    request: Request, exc: RequestValidationError
) -> JSONResponse:
    """Wrap FastAPI's 422 body in the same envelope as domain errors."""
    return JSONResponse(
        status_code=HTTP_422_UNPROCESSABLE_ENTITY,
        content=format_validation_errors(list(exc.errors())).model_dump(mode="json"),
    )


async def generic_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    """Log an unexpected exception and return a generic 500 envelope.

    Internal details are never exposed to the client.
    """
    logger.exception("Unhandled exception: %s", exc)
    return JSONResponse(
        status_code=HTTP_500_INTERNAL_SERVER_ERROR,
        content={
            "success": False,
            "error_code": "ERR_INTERNAL",
            "message": "An unexpected error occurred",
            "details": None,
        },
    )


def register_exception_handlers(app: FastAPI) -> None:
    """Register all exception handlers with the FastAPI app."""
    app.add_exception_handler(CheckinError, checkin_error_handler)  # type: ignore[arg-type]
    app.add_exception_handler(RequestValidationError, request_validation_handler)  # type: ignore[arg-type]
    app.add_exception_handler(Exception, generic_exception_handler)
