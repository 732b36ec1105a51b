"""
Centralised error handling — exception hierarchy + FastAPI handlers.

Provides:
    • Domain-specific exception classes
    • Consistent JSON error response format
    • Automatic logging of unhandled errors
    • Request context in error responses (non-production)

Usage:
    from backend.app.core.errors import (
        GeoAlertError,
        NotFoundError,
        ThreadNotFound,
        ValidationError,
        InvalidCoordinate,
        register_error_handlers,
    )

    raise ThreadNotFound("1719330000000")
"""

from __future__ import annotations

import logging
import traceback
from typing import Any, Dict, Optional

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse

from backend.app.core.config import settings

logger = logging.getLogger(__name__)


# ═══════════════════════════════════════════════════════════════════════════
# Exception Hierarchy
# ═══════════════════════════════════════════════════════════════════════════

class GeoAlertError(Exception):
    """Base exception for all engine errors."""

    def __init__(
        self,
        message: str = "An unexpected error occurred",
        *,
        status_code: int = 500,
        error_code: str = "INTERNAL_ERROR",
        details: Optional[Dict[str, Any]] = None,
    ):
        super().__init__(message)
        self.message = message
        self.status_code = status_code
        self.error_code = error_code
        self.details = details or {}


class NotFoundError(GeoAlertError):
    """Referenced thread / notification does not exist (404)."""

    def __init__(self, resource: str, **identifiers: Any):
        details = {"resource": resource, **identifiers}
        super().__init__(
            message=f"{resource} not found",
            status_code=404,
            error_code="NOT_FOUND",
            details=details,
        )


class ThreadNotFound(NotFoundError):
    """A response or reply points at a thread with no root report (404)."""

    def __init__(self, thread_id: str):
        super().__init__("Thread", thread_id=thread_id)
        self.error_code = "THREAD_NOT_FOUND"


class ValidationError(GeoAlertError):
    """Input validation failed (422). The record is not created."""

    def __init__(self, message: str, *, field: Optional[str] = None, **details: Any):
        d = {**details}
        if field:
            d["field"] = field
        super().__init__(
            message=message,
            status_code=422,
            error_code="VALIDATION_ERROR",
            details=d,
        )


class InvalidCoordinate(ValidationError):
    """Latitude outside [-90, 90] or longitude outside [-180, 180]."""

    def __init__(self, latitude: Any, longitude: Any, reason: str = ""):
        super().__init__(
            reason or f"Invalid coordinate ({latitude}, {longitude})",
            field="coordinate",
            latitude=str(latitude),
            longitude=str(longitude),
        )
        self.error_code = "INVALID_COORDINATE"


class StorageError(GeoAlertError):
    """Persistence substrate failed (503)."""

    def __init__(self, operation: str, key: str, message: str = ""):
        super().__init__(
            message=f"Storage {operation} failed for '{key}': {message}",
            status_code=503,
            error_code="STORAGE_ERROR",
            details={"operation": operation, "key": key},
        )


class DispatchDegraded(GeoAlertError):
    """
    Fan-out was skipped; the triggering write still succeeded.

    Raised and caught inside the dispatcher only. Never surfaced to the
    caller of an append.
    """

    def __init__(self, source_id: str, reason: str):
        super().__init__(
            message=f"Dispatch degraded for {source_id}: {reason}",
            status_code=202,
            error_code="DISPATCH_DEGRADED",
            details={"source_id": source_id, "reason": reason},
        )
        self.source_id = source_id
        self.reason = reason


# ═══════════════════════════════════════════════════════════════════════════
# Error Response Builder
# ═══════════════════════════════════════════════════════════════════════════

def _build_error_response(
    status_code: int,
    error_code: str,
    message: str,
    details: Optional[Dict[str, Any]] = None,
    request: Optional[Request] = None,
) -> JSONResponse:
    """Build a consistent JSON error response."""
    body: Dict[str, Any] = {
        "error": {
            "code": error_code,
            "message": message,
            "status": status_code,
        }
    }

    if details:
        body["error"]["details"] = details

    if request and not settings.is_production:
        body["error"]["path"] = str(request.url.path)
        body["error"]["method"] = request.method

    return JSONResponse(status_code=status_code, content=body)


# ═══════════════════════════════════════════════════════════════════════════
# FastAPI Exception Handlers
# ═══════════════════════════════════════════════════════════════════════════

def register_error_handlers(app: FastAPI) -> None:
    """Register all exception handlers on the FastAPI app."""

    @app.exception_handler(GeoAlertError)
    async def handle_geo_alert_error(request: Request, exc: GeoAlertError):
        log = logger.warning if exc.status_code < 500 else logger.error
        log(
            "API Error [%s]: %s | details=%s",
            exc.error_code, exc.message, exc.details,
        )
        return _build_error_response(
            exc.status_code, exc.error_code, exc.message,
            exc.details, request,
        )

    @app.exception_handler(ValueError)
    async def handle_value_error(request: Request, exc: ValueError):
        logger.warning("ValueError: %s", exc)
        return _build_error_response(
            422, "VALIDATION_ERROR", str(exc), request=request,
        )

    @app.exception_handler(Exception)
    async def handle_unhandled(request: Request, exc: Exception):
        logger.critical(
            "Unhandled exception: %s\n%s",
            exc, traceback.format_exc(),
        )
        message = str(exc) if settings.DEBUG else "Internal server error"
        details = (
            {"traceback": traceback.format_exc().split("\n")}
            if settings.DEBUG else None
        )
        return _build_error_response(
            500, "INTERNAL_ERROR", message, details, request,
        )
