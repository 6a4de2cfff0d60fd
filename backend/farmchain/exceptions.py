"""Domain errors and the FastAPI handlers that render them.

The lifecycle engine raises exactly these, always before anything has been
committed:

    NotFound                a batch id does not resolve            → 404
    InvalidOperation        validation failure                     → 422
    ConcurrentModification  optimistic version check failed        → 409

Every error response has the same shape:

    {"error": {"code": "ERROR_CODE", "message": "...", "details": {...}}}
"""

import logging
from typing import Union

from fastapi import HTTPException, Request, status
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from pydantic import ValidationError
from sqlalchemy.exc import DataError, IntegrityError, OperationalError
from starlette.exceptions import HTTPException as StarletteHTTPException

logger = logging.getLogger(__name__)


class FarmChainException(Exception):
    """Base exception for FarmChain errors."""

    def __init__(
        self,
        message: str,
        status_code: int = status.HTTP_500_INTERNAL_SERVER_ERROR,
        error_code: str = "INTERNAL_ERROR",
    ):
        self.message = message
        self.status_code = status_code
        self.error_code = error_code
        super().__init__(self.message)

    @property
    def details(self) -> dict | None:
        return None


class NotFound(FarmChainException):
    """A batch (or other entity) id does not resolve."""

    def __init__(self, resource: str, identifier: str, operation: str | None = None):
        self.resource = resource
        self.identifier = identifier
        self.operation = operation
        message = f"{resource} not found: {identifier}"
        if operation:
            message = f"{message} ({operation})"
        super().__init__(
            message=message,
            status_code=status.HTTP_404_NOT_FOUND,
            error_code="RESOURCE_NOT_FOUND",
        )

    @property
    def details(self) -> dict:
        details = {"resource": self.resource, "id": self.identifier}
        if self.operation:
            details["operation"] = self.operation
        return details


class InvalidOperation(FarmChainException):
    """Validation failure; nothing was persisted."""

    def __init__(self, message: str, error_code: str = "INVALID_OPERATION"):
        super().__init__(
            message=message,
            status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
            error_code=error_code,
        )


class ConcurrentModification(FarmChainException):
    """Another transaction updated the same batch first."""

    def __init__(self, resource: str = "Batch", identifier: str | None = None):
        self.resource = resource
        self.identifier = identifier
        subject = f"{resource} {identifier}" if identifier else resource
        super().__init__(
            message=f"{subject} was modified concurrently; reload and retry",
            status_code=status.HTTP_409_CONFLICT,
            error_code="CONCURRENT_MODIFICATION",
        )


# ── Rendering ────────────────────────────────────────────────

def create_error_response(
    status_code: int,
    message: str,
    error_code: str = "ERROR",
    details: Union[dict, list, None] = None,
) -> JSONResponse:
    error = {"code": error_code, "message": message}
    if details:
        error["details"] = details
    return JSONResponse(status_code=status_code, content={"error": error})


def _context(request: Request) -> dict:
    return {"path": request.url.path, "method": request.method}


async def farmchain_exception_handler(
    request: Request,
    exc: FarmChainException,
) -> JSONResponse:
    logger.warning(
        "%s on %s %s: %s",
        exc.error_code, request.method, request.url.path, exc.message,
        extra=_context(request),
    )
    return create_error_response(
        exc.status_code, exc.message, exc.error_code, exc.details
    )


async def http_exception_handler(
    request: Request,
    exc: Union[HTTPException, StarletteHTTPException],
) -> JSONResponse:
    if exc.status_code >= 500:
        logger.error("HTTP %s: %s", exc.status_code, exc.detail, extra=_context(request))
    return create_error_response(
        exc.status_code, str(exc.detail), f"HTTP_{exc.status_code}"
    )


async def validation_exception_handler(
    request: Request,
    exc: Union[RequestValidationError, ValidationError],
) -> JSONResponse:
    """Flatten pydantic errors into ``[{field, message, type}]``."""
    logger.warning("Validation error on %s", request.url.path, extra=_context(request))
    errors = [
        {
            "field": " -> ".join(str(loc) for loc in error["loc"]),
            "message": error["msg"],
            "type": error["type"],
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
    request: Request,
    exc: IntegrityError,
) -> JSONResponse:
    """Duplicate batch ids, duplicate listings and dangling crop references."""
    logger.error("Integrity error on %s: %s", request.url.path, exc, extra=_context(request))

    reason = str(getattr(exc, "orig", exc)).lower()
    if "unique" in reason or "duplicate" in reason:
        message, error_code = "A record with this value already exists", "DUPLICATE_RECORD"
    elif "foreign key" in reason:
        message, error_code = "Referenced batch does not exist", "FOREIGN_KEY_VIOLATION"
    else:
        message, error_code = "Database constraint violation", "INTEGRITY_ERROR"

    return create_error_response(status.HTTP_422_UNPROCESSABLE_ENTITY, message, error_code)


async def data_exception_handler(
    request: Request,
    exc: DataError,
) -> JSONResponse:
    """Values the column cannot hold, e.g. an over-long id."""
    logger.error("Data error on %s: %s", request.url.path, exc, extra=_context(request))
    return create_error_response(
        status.HTTP_422_UNPROCESSABLE_ENTITY,
        "A value is too long or malformed for its field",
        "DATA_ERROR",
    )


async def operational_exception_handler(
    request: Request,
    exc: OperationalError,
) -> JSONResponse:
    logger.error("Database unavailable on %s: %s", request.url.path, exc, extra=_context(request))
    return create_error_response(
        status.HTTP_503_SERVICE_UNAVAILABLE,
        "Database temporarily unavailable. Please try again.",
        "DATABASE_UNAVAILABLE",
    )


async def general_exception_handler(
    request: Request,
    exc: Exception,
) -> JSONResponse:
    logger.error(
        "Unhandled exception on %s", request.url.path,
        extra=_context(request),
        exc_info=exc,
    )
    return create_error_response(
        status.HTTP_500_INTERNAL_SERVER_ERROR,
        "An unexpected error occurred. Please try again later.",
        "INTERNAL_SERVER_ERROR",
    )


def register_exception_handlers(app):
    """Register all error handlers with the FastAPI app."""
    app.add_exception_handler(FarmChainException, farmchain_exception_handler)
    app.add_exception_handler(HTTPException, http_exception_handler)
    app.add_exception_handler(StarletteHTTPException, http_exception_handler)
    app.add_exception_handler(RequestValidationError, validation_exception_handler)
    app.add_exception_handler(ValidationError, validation_exception_handler)
    app.add_exception_handler(IntegrityError, integrity_exception_handler)
    app.add_exception_handler(DataError, data_exception_handler)
    app.add_exception_handler(OperationalError, operational_exception_handler)
    app.add_exception_handler(Exception, general_exception_handler)
