"""Service error taxonomy and exception handlers for consistent error responses."""

from __future__ import annotations

from typing import TYPE_CHECKING, Any, cast

from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

from gig_market_service.logging import get_logger

if TYPE_CHECKING:
    from fastapi import FastAPI, Request
    from starlette.types import ExceptionHandler

__all__ = [
    "AuthorizationError",
    "ConfigurationError",
    "ConflictError",
    "PreconditionError",
    "ServiceError",
    "StateError",
    "ValidationError",
    "register_exception_handlers",
]


class ServiceError(Exception):
    """
    Operational error carrying a stable machine-readable code.

    Rendered as ``{"error": ..., "message": ..., "details": ...}`` with
    ``status_code`` as the HTTP status.
    """

    def __init__(
        self,
        error: str,
        message: str,
        status_code: int,
        details: dict[str, Any] | None = None,
    ) -> None:
        super().__init__(message)
        self.error = error
        self.message = message
        self.status_code = status_code
        self.details: dict[str, Any] = details if details is not None else {}


class ValidationError(ServiceError):
    """Invalid caller input, e.g. a non-positive amount."""

    def __init__(
        self,
        message: str,
        error: str = "INVALID_AMOUNT",
        details: dict[str, Any] | None = None,
    ) -> None:
        super().__init__(error, message, 400, details)


class ConfigurationError(ServiceError):
    """Fee or tax configuration outside its valid domain."""

    def __init__(
        self,
        message: str,
        error: str = "INVALID_FEE_CONFIG",
        details: dict[str, Any] | None = None,
    ) -> None:
        super().__init__(error, message, 500, details)


class AuthorizationError(ServiceError):
    """Actor lacks the role required for the requested operation."""

    def __init__(
        self,
        message: str,
        error: str = "FORBIDDEN",
        details: dict[str, Any] | None = None,
    ) -> None:
        super().__init__(error, message, 403, details)


class StateError(ServiceError):
    """Operation is not permitted from the entity's current status."""

    def __init__(
        self,
        message: str,
        error: str = "INVALID_STATUS",
        details: dict[str, Any] | None = None,
    ) -> None:
        super().__init__(error, message, 409, details)


class PreconditionError(ServiceError):
    """An auxiliary condition of a legal transition does not hold."""

    def __init__(
        self,
        error: str,
        message: str,
        details: dict[str, Any] | None = None,
    ) -> None:
        super().__init__(error, message, 400, details)


class ConflictError(ServiceError):
    """A concurrent writer changed the entity first."""

    def __init__(
        self,
        message: str,
        error: str = "CONFLICT",
        details: dict[str, Any] | None = None,
    ) -> None:
        super().__init__(error, message, 409, details)


async def service_error_handler(request: Request, exc: ServiceError) -> JSONResponse:
    """Handle ServiceError exceptions."""
    logger = get_logger(__name__)
    logger.warning(
        "Service error",
        extra={
            "error_code": exc.error,
            "error_kind": type(exc).__name__,
            "status_code": exc.status_code,
            "path": str(request.url.path),
        },
    )
    return JSONResponse(
        status_code=exc.status_code,
        content={"error": exc.error, "message": exc.message, "details": exc.details},
    )


async def unhandled_exception_handler(request: Request, _exc: Exception) -> JSONResponse:
    """Handle unexpected exceptions."""
    logger = get_logger(__name__)
    logger.exception("Unhandled exception", extra={"path": str(request.url.path)})
    return JSONResponse(
        status_code=500,
        content={
            "error": "internal_error",
            "message": "An unexpected error occurred",
            "details": {},
        },
    )


async def http_exception_handler(
    _request: Request,
    exc: StarletteHTTPException,
) -> JSONResponse:
    """Handle Starlette HTTP exceptions (e.g., 404/405 from router)."""
    if exc.status_code == 405:
        return JSONResponse(
            status_code=405,
            content={
                "error": "METHOD_NOT_ALLOWED",
                "message": "Method not allowed",
                "details": {},
            },
        )
    return JSONResponse(
        status_code=exc.status_code,
        content={
            "error": "HTTP_ERROR",
            "message": str(exc.detail),
            "details": {},
        },
    )


def register_exception_handlers(app: FastAPI) -> None:
    """Register all exception handlers on the app."""
    app.add_exception_handler(ServiceError, cast("ExceptionHandler", service_error_handler))
    app.add_exception_handler(Exception, unhandled_exception_handler)
    app.add_exception_handler(
        StarletteHTTPException,
        cast("ExceptionHandler", http_exception_handler),
    )
