"""
Custom exceptions and error handlers for consistent error responses.

Provides the engine error taxonomy and the global exception handlers
that render it as JSON.
"""

import logging

from fastapi import HTTPException, Request, status
from fastapi.responses import JSONResponse
from fastapi.encoders import jsonable_encoder
from fastapi.exceptions import RequestValidationError
from typing import Any, Dict, Optional

logger = logging.getLogger(__name__)


class AppException(Exception):
    """Base application exception."""

    def __init__(self, message: str, error_code: str, status_code: int = 500, details: Dict[str, Any] = None):
        self.message = message
        self.error_code = error_code
        self.status_code = status_code
        self.details = details or {}
        super().__init__(message)


class IllegalTransitionError(AppException):
    """Raised when a lifecycle event is not valid for the allocation's current state."""

    def __init__(
        self,
        allocation_id: str,
        current_status: str,
        event: str,
        reason: Optional[str] = None,
        error_code: str = "ERR_TRANSITION_001",
        details: Dict[str, Any] = None,
    ):
        message = f"Cannot apply '{event}' to allocation {allocation_id} in status '{current_status}'"
        if reason:
            message = f"{message}: {reason}"
        self.allocation_id = allocation_id
        self.current_status = current_status
        self.event = event
        self.reason = reason
        super().__init__(
            message=message,
            error_code=error_code,
            status_code=status.HTTP_409_CONFLICT,
            details={
                "allocation_id": allocation_id,
                "current_status": current_status,
                "event": event,
                "reason": reason,
                **(details or {}),
            },
        )


class DispatchRejectedError(IllegalTransitionError):
    """
    Raised when a truck may not be dispatched from its site.

    Carries a machine-readable reason code so the operator can be told
    *why* (pending permit vs pending verification vs already departed).
    """

    def __init__(self, allocation_id: str, current_status: str, reason_code: str, reason: str):
        self.reason_code = reason_code
        super().__init__(
            allocation_id=allocation_id,
            current_status=current_status,
            event="dispatch",
            reason=reason,
            error_code="ERR_TRANSITION_002",
            details={"reason_code": reason_code},
        )


class MissingMeasurementError(AppException):
    """Raised when weighing is completed without a recorded reading at the current site."""

    def __init__(self, allocation_id: str, site_id: str):
        super().__init__(
            message=f"No weighbridge reading recorded for allocation {allocation_id} at site '{site_id}'",
            error_code="ERR_MEASUREMENT_001",
            status_code=status.HTTP_409_CONFLICT,
            details={"allocation_id": allocation_id, "site_id": site_id},
        )


class InvalidMeasurementError(AppException):
    """Raised for weights or tonnages that cannot be accepted."""

    def __init__(self, message: str, details: Dict[str, Any] = None):
        super().__init__(
            message=message,
            error_code="ERR_MEASUREMENT_002",
            status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
            details=details,
        )


class InvalidAllocationError(AppException):
    """Raised for an allocation request with a blank registration or an unusable route."""

    def __init__(self, message: str, details: Dict[str, Any] = None):
        super().__init__(
            message=message,
            error_code="ERR_ALLOCATION_001",
            status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
            details=details,
        )


class ResourceNotFoundError(AppException):
    """Raised when requested resource is not found."""

    def __init__(self, resource: str, resource_id: Any = None):
        message = f"{resource} not found"
        if resource_id:
            message = f"{resource} with ID {resource_id} not found"
        super().__init__(
            message=message,
            error_code="ERR_NOT_FOUND_001",
            status_code=status.HTTP_404_NOT_FOUND,
            details={"resource": resource, "id": resource_id}
        )


class DuplicateResourceError(AppException):
    """Raised when a resource is registered twice under the same ID."""

    def __init__(self, resource: str, resource_id: Any):
        super().__init__(
            message=f"{resource} with ID {resource_id} already exists",
            error_code="ERR_DUPLICATE_001",
            status_code=status.HTTP_409_CONFLICT,
            details={"resource": resource, "id": resource_id},
        )


class CapacityViolationError(AppException):
    """Raised by a strict credit that would push a stockpile past its capacity."""

    def __init__(self, stockpile_id: str, requested_tonnes: float, available_tonnes: float):
        overflow = requested_tonnes - available_tonnes
        super().__init__(
            message=(
                f"Crediting {requested_tonnes:.2f}t to stockpile {stockpile_id} exceeds "
                f"available capacity of {available_tonnes:.2f}t by {overflow:.2f}t"
            ),
            error_code="ERR_CAPACITY_001",
            status_code=status.HTTP_409_CONFLICT,
            details={
                "stockpile_id": stockpile_id,
                "requested_tonnes": requested_tonnes,
                "available_tonnes": available_tonnes,
                "overflow_tonnes": overflow,
            },
        )


class ConfigurationError(AppException):
    """Raised at startup for settings or reference data the engine cannot run with."""

    def __init__(self, message: str, setting: Optional[str] = None):
        super().__init__(
            message=message,
            error_code="ERR_CONFIG_001",
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            details={"setting": setting} if setting else {},
        )


# Global Exception Handlers

async def app_exception_handler(request: Request, exc: AppException) -> JSONResponse:
    """Handler for custom application exceptions."""
    return JSONResponse(
        status_code=exc.status_code,
        content={
            "error_code": exc.error_code,
            "message": exc.message,
            "details": exc.details
        }
    )


async def http_exception_handler(request: Request, exc: HTTPException) -> JSONResponse:
    """Handler for FastAPI HTTPException with standardized format."""
    error_code_map = {
        400: "ERR_BAD_REQUEST",
        404: "ERR_NOT_FOUND",
        409: "ERR_CONFLICT",
        500: "ERR_INTERNAL_SERVER"
    }

    error_code = error_code_map.get(exc.status_code, "ERR_UNKNOWN")

    return JSONResponse(
        status_code=exc.status_code,
        content={
            "error_code": error_code,
            "message": exc.detail,
            "details": {}
        }
    )


async def validation_exception_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    """Handler for Pydantic validation errors."""
    return JSONResponse(
        status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
        content={
            "error_code": "ERR_VALIDATION",
            "message": "Validation error",
            "details": {
                "errors": jsonable_encoder(exc.errors())
            }
        }
    )


async def generic_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    """Handler for unhandled exceptions."""
    logger.exception("Unhandled exception: %s", type(exc).__name__)

    return JSONResponse(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        content={
            "error_code": "ERR_INTERNAL_SERVER",
            "message": "An internal server error occurred",
            "details": {}
        }
    )
