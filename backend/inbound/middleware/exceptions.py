"""Receiving error taxonomy and the handlers that render it.

Services raise the typed errors below; the FastAPI handlers turn them into
the standard error envelope and log them.
"""

import logging
import traceback
from typing import Union

from fastapi import HTTPException, Request, status
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from pydantic import ValidationError
from sqlalchemy.exc import IntegrityError, OperationalError
from starlette.exceptions import HTTPException as StarletteHTTPException

logger = logging.getLogger(__name__)


class InboundException(Exception):
    """Base exception for receiving workflow errors."""

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


class ValidationFailure(InboundException):
    """Gate rules not met. Always carries the complete list of problems."""

    def __init__(self, errors: list[str], message: str = "Validation failed"):
        self.errors = list(errors)
        super().__init__(
            message=message,
            status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
            error_code="VALIDATION_FAILED",
            details={"errors": self.errors},
        )


class InvalidTransition(InboundException):
    """A state change the state machine does not allow."""

    def __init__(self, entity: str, current: str, target: str):
        self.entity = entity
        self.current = current
        self.target = target
        super().__init__(
            message=f"Cannot move {entity} from {current} to {target}",
            status_code=status.HTTP_409_CONFLICT,
            error_code="INVALID_TRANSITION",
            details={"entity": entity, "current": current, "target": target},
        )


class MaterializationFailure(InboundException):
    """A collaborator failed while creating inventory for one line item."""

    def __init__(self, line_index: int | None, description: str | None, reason: str):
        self.line_index = line_index
        self.description = description
        self.reason = reason
        if line_index is None:
            message = f"Could not materialize inventory: {reason}"
        else:
            message = f"Could not materialize line {line_index + 1} ({description or 'no description'}): {reason}"
        super().__init__(
            message=message,
            status_code=status.HTTP_502_BAD_GATEWAY,
            error_code="MATERIALIZATION_FAILED",
            details={
                "line_index": line_index,
                "description": description,
                "reason": reason,
            },
        )


class OverrideRequired(InboundException):
    """Closing without lines needs an elevated-privilege override."""

    def __init__(self, message: str = "Closing without line items requires an admin override"):
        super().__init__(
            message=message,
            status_code=status.HTTP_403_FORBIDDEN,
            error_code="OVERRIDE_REQUIRED",
        )


class ExceptionToggleFailure(InboundException):
    """Clearing exceptions for the "no exceptions" sentinel was rolled back."""

    def __init__(self, failed_codes: list[str]):
        self.failed_codes = failed_codes
        super().__init__(
            message=f"Could not clear all exceptions. Failed to remove: {', '.join(failed_codes)}",
            status_code=status.HTTP_409_CONFLICT,
            error_code="EXCEPTION_TOGGLE_FAILED",
            details={"failed_codes": failed_codes},
        )


class StaleShipmentError(InboundException):
    """The shipment changed since the caller last read it."""

    def __init__(self, shipment_id: str, expected: int, actual: int):
        super().__init__(
            message=f"Shipment {shipment_id} was modified (version {actual}, expected {expected})",
            status_code=status.HTTP_409_CONFLICT,
            error_code="STALE_SHIPMENT",
            details={"expected_version": expected, "actual_version": actual},
        )


class UnsavedChangesError(InboundException):
    """Pending field edits could not be written before a transition."""

    def __init__(self, fields: list[str]):
        super().__init__(
            message="Unsaved changes could not be written; retry before completing",
            status_code=status.HTTP_409_CONFLICT,
            error_code="UNSAVED_CHANGES",
            details={"fields": fields},
        )


class NonFatalSideEffectFailure(InboundException):
    """A side effect (alert, report) failed. Logged, never blocks the caller."""

    def __init__(self, effect: str, reason: str):
        self.effect = effect
        super().__init__(
            message=f"{effect} failed: {reason}",
            status_code=status.HTTP_200_OK,
            error_code="SIDE_EFFECT_FAILED",
        )


class BusinessLogicError(InboundException):
    """Exception for business logic violations."""

    def __init__(self, message: str, error_code: str = "BUSINESS_LOGIC_ERROR"):
        super().__init__(
            message=message,
            status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
            error_code=error_code,
        )


class ResourceNotFoundError(InboundException):
    """Exception for resources not found."""

    def __init__(self, resource: str, identifier: str):
        super().__init__(
            message=f"{resource} not found: {identifier}",
            status_code=status.HTTP_404_NOT_FOUND,
            error_code="RESOURCE_NOT_FOUND",
        )


class PermissionDeniedError(InboundException):
    """Exception for permission denied."""

    def __init__(self, message: str = "Permission denied"):
        super().__init__(
            message=message,
            status_code=status.HTTP_403_FORBIDDEN,
            error_code="PERMISSION_DENIED",
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


async def inbound_exception_handler(
    request: Request,
    exc: InboundException,
) -> JSONResponse:
    """Handle receiving workflow exceptions."""
    logger.warning(
        f"Receiving exception: {exc.error_code} - {exc.message}",
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
    # Log non-4xx errors
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


async def database_exception_handler(
    request: Request,
    exc: IntegrityError,
) -> JSONResponse:
    """Handle database integrity errors (unique violations, foreign key, etc.)."""
    logger.error(
        f"Database integrity error on {request.url.path}: {str(exc)}",
        extra={
            "path": request.url.path,
            "method": request.method,
        },
    )

    error_msg = str(exc.orig) if hasattr(exc, "orig") else str(exc)

    if "unique" in error_msg.lower():
        message = "A record with this value already exists"
        error_code = "DUPLICATE_RECORD"
    elif "foreign key" in error_msg.lower():
        message = "Referenced record does not exist"
        error_code = "FOREIGN_KEY_VIOLATION"
    elif "not null" in error_msg.lower():
        message = "Required field is missing"
        error_code = "NULL_VALUE_NOT_ALLOWED"
    else:
        message = "Database constraint violation"
        error_code = "INTEGRITY_ERROR"

    return create_error_response(
        status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
        message=message,
        error_code=error_code,
    )


async def operational_exception_handler(
    request: Request,
    exc: OperationalError,
) -> JSONResponse:
    """Handle database operational errors (connection issues, etc.)."""
    logger.error(
        f"Database operational error on {request.url.path}: {str(exc)}",
        extra={
            "path": request.url.path,
            "method": request.method,
        },
    )

    return create_error_response(
        status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
        message="Database temporarily unavailable. Please try again.",
        error_code="DATABASE_UNAVAILABLE",
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
    app.add_exception_handler(InboundException, inbound_exception_handler)
    app.add_exception_handler(HTTPException, http_exception_handler)
    app.add_exception_handler(StarletteHTTPException, http_exception_handler)
    app.add_exception_handler(RequestValidationError, validation_exception_handler)
    app.add_exception_handler(ValidationError, validation_exception_handler)
    app.add_exception_handler(IntegrityError, database_exception_handler)
    app.add_exception_handler(OperationalError, operational_exception_handler)
    app.add_exception_handler(Exception, general_exception_handler)
