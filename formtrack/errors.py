"""Error taxonomy and FastAPI exception handlers.

Every failure the service reports to a caller is an ``APIError`` subclass
carrying its HTTP status and a stable ``error`` string:

- ``ValidationError``: malformed or missing input (400)
- ``AuthorizationError``: no authenticated caller (401)
- ``ForbiddenError``: caller lacks rights to the form (403)
- ``NotFoundError``: form missing or not visible to the caller (404)
- ``StorageError``: event log or session store failure (500)
- ``ServiceUnavailableError``: a backing service was never initialised (503)

Usage:
    from formtrack.errors import ValidationError, register_exception_handlers

    raise ValidationError(detail="Form ID and action are required")
"""

import logging
from typing import Any

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from pydantic import BaseModel

logger = logging.getLogger("formtrack.errors")


class ErrorResponse(BaseModel):
    """Standard error response model."""

    error: str
    detail: str | None = None
    error_code: str | None = None
    context: dict[str, Any] | None = None


class APIError(Exception):
    """Base class for API errors."""

    status_code: int = 500
    error: str = "internal_error"
    detail: str = "An unexpected error occurred"

    def __init__(
        self,
        detail: str | None = None,
        error_code: str | None = None,
        **context: Any,
    ) -> None:
        self.detail = detail or self.__class__.detail
        self.error_code = error_code
        self.context = context if context else None
        super().__init__(self.detail)

    def to_response(self) -> ErrorResponse:
        """Convert exception to error response model."""
        return ErrorResponse(
            error=self.error,
            detail=self.detail,
            error_code=self.error_code,
            context=self.context,
        )


class ValidationError(APIError):
    """Malformed or missing input (400)."""

    status_code = 400
    error = "validation_error"
    detail = "Invalid request"


class AuthorizationError(APIError):
    """No authenticated caller (401)."""

    status_code = 401
    error = "unauthorized"
    detail = "Authentication required"


class ForbiddenError(AuthorizationError):
    """Authenticated caller without rights to the resource (403)."""

    status_code = 403
    error = "forbidden"
    detail = "Access denied"


class NotFoundError(APIError):
    """Resource not found error (404)."""

    status_code = 404
    error = "not_found"
    detail = "Resource not found"


class StorageError(APIError):
    """Event log or session store failure (500)."""

    status_code = 500
    error = "storage_error"
    detail = "Storage operation failed"


class ServiceUnavailableError(APIError):
    """Service unavailable error (503)."""

    status_code = 503
    error = "service_unavailable"
    detail = "Service temporarily unavailable"


async def api_error_handler(request: Request, exc: APIError) -> JSONResponse:
    """Handle custom API errors."""
    level = logging.ERROR if exc.status_code >= 500 else logging.WARNING
    logger.log(
        level,
        "API error: %s (status=%d, path=%s)",
        exc.detail,
        exc.status_code,
        request.url.path,
    )
    return JSONResponse(
        status_code=exc.status_code,
        content=exc.to_response().model_dump(exclude_none=True),
    )


async def request_validation_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    """Reshape framework body validation failures into the standard error body."""
    problems = []
    for err in exc.errors():
        loc = ".".join(str(p) for p in err.get("loc", ()) if p != "body")
        problems.append(f"{loc}: {err.get('msg')}" if loc else str(err.get("msg")))
    return JSONResponse(
        status_code=422,
        content=ErrorResponse(
            error=_status_to_error_type(422),
            detail="; ".join(problems) or "Invalid request body",
        ).model_dump(exclude_none=True),
    )


def _status_to_error_type(status_code: int) -> str:
    """Map HTTP status code to error type string."""
    mapping = {
        400: "validation_error",
        401: "unauthorized",
        403: "forbidden",
        404: "not_found",
        422: "validation_error",
        500: "internal_error",
        503: "service_unavailable",
    }
    return mapping.get(status_code, "error")


def register_exception_handlers(app: FastAPI) -> None:
    """Register all exception handlers with the FastAPI app."""
    app.add_exception_handler(APIError, api_error_handler)
    app.add_exception_handler(RequestValidationError, request_validation_handler)
