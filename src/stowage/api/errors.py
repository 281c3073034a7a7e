"""Stowage API error handling.

Global exception handlers:
- ObjectStorageError: storage errors mapped to status codes by kind
- StowageHttpError: route-level errors with a structured envelope
- HTTPException: FastAPI/Starlette HTTP exceptions
- RequestValidationError: Pydantic validation errors
- Exception: Catch-all for unhandled exceptions (no stack traces)
"""

import logging
from typing import Any

from fastapi import HTTPException, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from pydantic import BaseModel

from stowage.api.error_model import get_error_code_for_status, make_error_response
from stowage.errors import (
    AccessDeniedError,
    ContentTypeNotAllowedError,
    FileTooLargeError,
    ObjectStorageError,
    PolicyViolationError,
    ResourceNotFoundError,
    SignedUrlExpiredError,
    StorageBackendError,
    StorageConflictError,
    StorageValidationError,
)

logger = logging.getLogger(__name__)

# Checked in order: subclasses before their base kinds.
STORAGE_ERROR_STATUS: tuple[tuple[type[ObjectStorageError], int, str], ...] = (
    (FileTooLargeError, 413, "FILE_TOO_LARGE"),
    (ContentTypeNotAllowedError, 415, "CONTENT_TYPE_NOT_ALLOWED"),
    (PolicyViolationError, 422, "POLICY_VIOLATION"),
    (StorageValidationError, 400, "VALIDATION_ERROR"),
    (ResourceNotFoundError, 404, "NOT_FOUND"),
    (StorageConflictError, 409, "CONFLICT"),
    (SignedUrlExpiredError, 403, "SIGNED_URL_EXPIRED"),
    (AccessDeniedError, 403, "ACCESS_DENIED"),
    (StorageBackendError, 502, "BACKEND_ERROR"),
)


class ErrorResponse(BaseModel):
    """Error envelope schema."""

    code: str
    message: str
    details: dict[str, Any] | None = None
    request_id: str | None = None


class StowageHttpError(Exception):
    """Route-level HTTP error with structured error envelope.

    Attributes:
        status_code: HTTP status code (e.g., 400, 403).
        code: Machine-readable error code.
        message: Human-readable error message.
        details: Optional dict with additional error context.
    """

    def __init__(
        self,
        status_code: int,
        code: str,
        message: str,
        details: dict[str, Any] | None = None,
    ) -> None:
        super().__init__(message)
        self.status_code = status_code
        self.code = code
        self.message = message
        self.details = details


def status_for_storage_error(exc: ObjectStorageError) -> tuple[int, str]:
    """Return (HTTP status, error code) for a storage error."""
    for error_type, status_code, code in STORAGE_ERROR_STATUS:
        if isinstance(exc, error_type):
            return status_code, code
    return 500, "INTERNAL_ERROR"


async def storage_error_handler(request: Request, exc: Exception) -> JSONResponse:
    """FastAPI exception handler for ObjectStorageError."""
    assert isinstance(exc, ObjectStorageError)

    status_code, code = status_for_storage_error(exc)
    details: dict[str, Any] = {}
    if exc.bucket:
        details["bucket"] = exc.bucket
    if exc.path:
        details["path"] = exc.path

    if isinstance(exc, StorageBackendError):
        logger.error("Storage backend failure: %s", exc)

    return make_error_response(
        request,
        code=code,
        message=exc.message,
        http_status=status_code,
        details=details or None,
    )


async def stowage_http_error_handler(request: Request, exc: Exception) -> JSONResponse:
    """FastAPI exception handler for StowageHttpError."""
    assert isinstance(exc, StowageHttpError)

    return make_error_response(
        request,
        code=exc.code,
        message=exc.message,
        http_status=exc.status_code,
        details=exc.details,
    )


async def http_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    """FastAPI exception handler for HTTPException."""
    assert isinstance(exc, HTTPException)

    code = get_error_code_for_status(exc.status_code)
    message = str(exc.detail) if exc.detail else f"HTTP {exc.status_code}"

    return make_error_response(
        request,
        code=code,
        message=message,
        http_status=exc.status_code,
        details=None,
    )


async def request_validation_error_handler(request: Request, exc: Exception) -> JSONResponse:
    """FastAPI exception handler for RequestValidationError.

    Reports field locations and messages only, never the rejected input.
    """
    assert isinstance(exc, RequestValidationError)

    safe_details: list[dict[str, Any]] = []
    for error in exc.errors():
        loc = error.get("loc", ())
        safe_loc = [str(part) for part in loc if part not in ("body", "query", "path")]
        safe_details.append(
            {
                "field": ".".join(safe_loc) if safe_loc else "request",
                "message": error.get("msg", "Validation error"),
            }
        )

    return make_error_response(
        request,
        code="REQUEST_VALIDATION_FAILED",
        message="Request validation failed",
        http_status=400,
        details={"errors": safe_details} if safe_details else None,
    )


async def generic_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    """Catch-all handler: 500 with a generic message, exception logged."""
    request_id = getattr(request.state, "request_id", None)

    logger.exception(
        "Unhandled exception: %s",
        type(exc).__name__,
        extra={"request_id": request_id},
    )

    return make_error_response(
        request,
        code="INTERNAL_ERROR",
        message="An internal error occurred",
        http_status=500,
        details=None,
    )
