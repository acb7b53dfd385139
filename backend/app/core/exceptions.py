"""
Custom exceptions and error handlers for consistent error responses.

Provides standardized error codes and global exception handlers.
"""

import logging

from fastapi import HTTPException, Request, status
from fastapi.responses import JSONResponse
from fastapi.encoders import jsonable_encoder
from fastapi.exceptions import RequestValidationError
from typing import Any, Dict

logger = logging.getLogger("van_tracking.errors")


class AppException(Exception):
    """Base application exception."""

    def __init__(self, message: str, error_code: str, status_code: int = 500, details: Dict[str, Any] = None):
        self.message = message
        self.error_code = error_code
        self.status_code = status_code
        self.details = details or {}
        super().__init__(message)


class NoActiveRouteError(AppException):
    """Raised when an operation needs an active route and none is running."""

    def __init__(self, message: str = "No active route"):
        super().__init__(
            message=message,
            error_code="ERR_ROUTE_001",
            status_code=status.HTTP_409_CONFLICT
        )


class InvalidTransitionError(AppException):
    """Raised when a stop status change would move backwards."""

    def __init__(self, stop_id: str, current: str, requested: str):
        super().__init__(
            message=f"Stop {stop_id} cannot move from {current} to {requested}",
            error_code="ERR_ROUTE_002",
            status_code=status.HTTP_409_CONFLICT,
            details={"stop_id": stop_id, "current_status": current, "requested_status": requested}
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


class StopNotFoundError(ResourceNotFoundError):
    """Raised when a stop id is not part of the active route."""

    def __init__(self, stop_id: str):
        super().__init__("Stop", stop_id)


class NotificationNotFoundError(ResourceNotFoundError):
    """Raised when a guardian addresses a notification they do not own."""

    def __init__(self, notification_id: str):
        super().__init__("Notification", notification_id)


class PersistenceError(Exception):
    """Storage read/write failure. Absorbed at the component boundary."""


class TransportError(Exception):
    """Push delivery failure (offline, permission denied, bad response)."""


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
    logger.exception("Unhandled exception", extra={"path": request.url.path})

    return JSONResponse(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        content={
            "error_code": "ERR_INTERNAL_SERVER",
            "message": "An internal server error occurred",
            "details": {}
        }
    )
