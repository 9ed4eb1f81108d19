"""Exception taxonomy and handlers for consistent error responses.

Authorization checks never raise; these exceptions cover backend
failures, administrative write failures and denied requests at the
HTTP boundary.
"""

import logging
import traceback
from typing import Union

from fastapi import HTTPException, Request, status
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from pydantic import ValidationError
from starlette.exceptions import HTTPException as StarletteHTTPException

logger = logging.getLogger(__name__)


class ClinicAccessException(Exception):
    """Base exception for clinic access errors."""

    def __init__(
        self,
        message: str,
        status_code: int = status.HTTP_500_INTERNAL_SERVER_ERROR,
        error_code: str = "INTERNAL_ERROR",
        details: Union[dict, list, None] = None,
    ):
        self.message = message
        self.status_code = status_code
        self.error_code = error_code
        self.details = details
        super().__init__(self.message)


class PermissionDeniedError(ClinicAccessException):
    """Exception for permission denied."""

    def __init__(self, message: str = "Permission denied"):
        super().__init__(
            message=message,
            status_code=status.HTTP_403_FORBIDDEN,
            error_code="PERMISSION_DENIED",
        )


class ClinicContextError(ClinicAccessException):
    """Exception for missing or invalid clinic context."""

    def __init__(self, message: str = "Clinic context required"):
        super().__init__(
            message=message,
            status_code=status.HTTP_403_FORBIDDEN,
            error_code="CLINIC_CONTEXT_REQUIRED",
        )


class InvalidPermissionError(ClinicAccessException):
    """A permission, role or selection outside the catalog."""

    def __init__(self, message: str):
        super().__init__(
            message=message,
            status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
            error_code="INVALID_PERMISSION",
        )


class BackendError(ClinicAccessException):
    """The clinic backend could not be reached or refused a request."""

    def __init__(self, message: str, upstream_status: int | None = None):
        self.upstream_status = upstream_status
        super().__init__(
            message=message,
            status_code=status.HTTP_502_BAD_GATEWAY,
            error_code="BACKEND_ERROR",
            details={"upstream_status": upstream_status} if upstream_status else None,
        )


class GrantsClearedError(BackendError):
    """A grants replace deleted the old set but could not insert the new one.

    The member is left with no explicit grants.
    """

    def __init__(self, message: str, upstream_status: int | None = None):
        super().__init__(message, upstream_status=upstream_status)
        self.error_code = "GRANTS_CLEARED"


class PermissionSaveError(ClinicAccessException):
    """One or more administrative writes failed.

    `saved` names the parts that were persisted (no rollback is attempted),
    `failed` the parts that were not, `errors` the cause per failed part.
    `cleared` names failed parts whose old value was already deleted.
    """

    def __init__(
        self,
        saved: list[str],
        failed: list[str],
        errors: dict[str, Exception],
        cleared: list[str] | None = None,
    ):
        self.saved = saved
        self.failed = failed
        self.errors = errors
        self.cleared = cleared or []
        if saved:
            message = f"Saved {', '.join(saved)} but failed to save {', '.join(failed)}"
        else:
            message = f"Failed to save {', '.join(failed)}"
        if self.cleared:
            message += f"; {', '.join(self.cleared)} now empty"
        super().__init__(
            message=message,
            status_code=status.HTTP_502_BAD_GATEWAY,
            error_code="PARTIAL_SAVE" if saved or self.cleared else "SAVE_FAILED",
            details={
                "saved": saved,
                "failed": failed,
                "cleared": self.cleared,
                "errors": {part: str(exc) for part, exc in errors.items()},
            },
        )


def create_error_response(
    status_code: int,
    message: str,
    error_code: str = "ERROR",
    details: Union[dict, list, None] = None,
) -> JSONResponse:
    """Create standardized error response.

    Format:
    {
        "error": {
            "code": "ERROR_CODE",
            "message": "Human-readable error message",
            "details": {...}  // Optional additional details
        }
    }
    """
    content = {
        "error": {
            "code": error_code,
            "message": message,
        }
    }

    if details:
        content["error"]["details"] = details

    return JSONResponse(
        status_code=status_code,
        content=content,
    )


async def clinic_access_exception_handler(
    request: Request,
    exc: ClinicAccessException,
) -> JSONResponse:
    """Handle custom clinic access exceptions."""
    logger.warning(
        f"Clinic access exception: {exc.error_code} - {exc.message}",
        extra={
            "error_code": exc.error_code,
            "path": request.url.path,
            "method": request.method,
        },
    )

    return create_error_response(
        status_code=exc.status_code,
        message=exc.message,
        error_code=exc.error_code,
        details=exc.details,
    )


async def http_exception_handler(
    request: Request,
    exc: Union[HTTPException, StarletteHTTPException],
) -> JSONResponse:
    """Handle FastAPI HTTP exceptions."""
    if exc.status_code >= 500:
        logger.error(
            f"HTTP {exc.status_code}: {exc.detail}",
            extra={
                "path": request.url.path,
                "method": request.method,
            },
        )

    return create_error_response(
        status_code=exc.status_code,
        message=str(exc.detail),
        error_code=f"HTTP_{exc.status_code}",
    )


async def validation_exception_handler(
    request: Request,
    exc: Union[RequestValidationError, ValidationError],
) -> JSONResponse:
    """Handle Pydantic validation errors."""
    logger.warning(
        f"Validation error on {request.url.path}",
        extra={
            "path": request.url.path,
            "method": request.method,
        },
    )

    errors = []
    for error in exc.errors():
        field = " -> ".join(str(loc) for loc in error["loc"])
        errors.append({
            "field": field,
            "message": error["msg"],
            "type": error["type"],
        })

    return create_error_response(
        status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
        message="Validation error",
        error_code="VALIDATION_ERROR",
        details={"errors": errors},
    )


async def general_exception_handler(
    request: Request,
    exc: Exception,
) -> JSONResponse:
    """Handle all other unhandled exceptions."""
    logger.error(
        f"Unhandled exception on {request.url.path}: {str(exc)}",
        extra={
            "path": request.url.path,
            "method": request.method,
            "traceback": traceback.format_exc(),
        },
        exc_info=True,
    )

    return create_error_response(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        message="An unexpected error occurred. Please try again later.",
        error_code="INTERNAL_SERVER_ERROR",
    )


def register_exception_handlers(app):
    """Register all custom exception handlers with FastAPI app."""
    app.add_exception_handler(ClinicAccessException, clinic_access_exception_handler)
    app.add_exception_handler(HTTPException, http_exception_handler)
    app.add_exception_handler(StarletteHTTPException, http_exception_handler)
    app.add_exception_handler(RequestValidationError, validation_exception_handler)
    app.add_exception_handler(ValidationError, validation_exception_handler)
    app.add_exception_handler(Exception, general_exception_handler)
