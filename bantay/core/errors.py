"""
Error taxonomy for the status pipeline, and its HTTP rendering.

    TransientFetchError   network/API failure       → degrade to safe, no write
    VersionConflictError  stale version token       → abort cycle / retry once
    NotFoundError         record absent             → valid "no data yet" state
    ConfigurationError    missing required setting  → fatal at startup
    ValidationError       bad request input         → 422 to the caller

Inside the pipeline these are outcomes, not crashes: the reconciler and
query service catch them. Only the HTTP layer turns them into responses,
all with the same envelope::

    {"error": {"code": "VERSION_CONFLICT", "message": "...", "status": 409,
               "details": {...}, "path": "/api/v1/user/safe", "method": "POST"}}

``path`` and ``method`` are omitted in production.

Usage:
    from bantay.core.errors import NotFoundError, register_error_handlers

    raise NotFoundError("Record", path="users/u-1")
"""

from __future__ import annotations

import logging
from typing import Any, ClassVar, Dict, Optional

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse

logger = logging.getLogger(__name__)


# ═══════════════════════════════════════════════════════════════════════════
# Exception Hierarchy
# ═══════════════════════════════════════════════════════════════════════════

class BantayError(Exception):
    """Base class; subclasses set ``default_status`` and ``default_code``."""

    default_status: ClassVar[int] = 500
    default_code: ClassVar[str] = "INTERNAL_ERROR"

    def __init__(
        self,
        message: str = "An unexpected error occurred",
        *,
        status_code: Optional[int] = None,
        error_code: Optional[str] = None,
        details: Optional[Dict[str, Any]] = None,
    ):
        super().__init__(message)
        self.message = message
        self.status_code = status_code or self.default_status
        self.error_code = error_code or self.default_code
        self.details = details or {}


class NotFoundError(BantayError):
    """No record at the requested path (404)."""

    default_status = 404
    default_code = "NOT_FOUND"

    def __init__(self, resource: str, **identifiers: Any):
        super().__init__(f"{resource} not found", details={"resource": resource, **identifiers})


class TransientFetchError(BantayError):
    """Upstream unreachable or returned garbage (503)."""

    default_status = 503
    default_code = "TRANSIENT_FETCH_ERROR"

    def __init__(self, service: str, message: str = "", **details: Any):
        super().__init__(
            f"Fetch from '{service}' failed: {message}",
            details={"service": service, **details},
        )
        self.service = service


class VersionConflictError(BantayError):
    """Compare-and-swap lost against a concurrent writer (409)."""

    default_status = 409
    default_code = "VERSION_CONFLICT"

    def __init__(self, path: str, expected_version: Optional[str] = None, **details: Any):
        super().__init__(
            f"Version conflict writing '{path}'",
            details={"path": path, "expected_version": expected_version, **details},
        )
        self.path = path
        self.expected_version = expected_version


class ConfigurationError(BantayError):
    """Required setting missing or invalid; raised during startup."""

    default_code = "CONFIGURATION_ERROR"

    def __init__(self, message: str, *, setting: Optional[str] = None, **details: Any):
        if setting:
            details["setting"] = setting
        super().__init__(message, details=details)


class ValidationError(BantayError):
    """Caller sent something unusable (422)."""

    default_status = 422
    default_code = "VALIDATION_ERROR"

    def __init__(self, message: str, *, field: Optional[str] = None, **details: Any):
        if field:
            details["field"] = field
        super().__init__(message, details=details)


# ═══════════════════════════════════════════════════════════════════════════
# Rendering
# ═══════════════════════════════════════════════════════════════════════════

def error_body(
    status_code: int,
    error_code: str,
    message: str,
    details: Optional[Dict[str, Any]] = None,
    request: Optional[Request] = None,
) -> Dict[str, Any]:
    from bantay.core.config import settings

    error: Dict[str, Any] = {"code": error_code, "message": message, "status": status_code}
    if details:
        error["details"] = details
    if request is not None and not settings.is_production:
        error["path"] = request.url.path
        error["method"] = request.method
    return {"error": error}


def _respond(status_code: int, error_code: str, message: str,
             details: Optional[Dict[str, Any]] = None,
             request: Optional[Request] = None) -> JSONResponse:
    return JSONResponse(
        status_code=status_code,
        content=error_body(status_code, error_code, message, details, request),
    )


def register_error_handlers(app: FastAPI) -> None:
    """Install the envelope for domain errors, request validation and crashes."""

    @app.exception_handler(BantayError)
    async def handle_bantay_error(request: Request, exc: BantayError):
        logger.log(
            logging.WARNING if exc.status_code < 500 else logging.ERROR,
            "%s on %s %s: %s", exc.error_code, request.method, request.url.path, exc.message,
            extra={"status_code": exc.status_code},
        )
        return _respond(exc.status_code, exc.error_code, exc.message, exc.details, request)

    @app.exception_handler(RequestValidationError)
    async def handle_request_validation(request: Request, exc: RequestValidationError):
        fields = [
            {"loc": ".".join(str(part) for part in err.get("loc", ())), "msg": err.get("msg", "")}
            for err in exc.errors()
        ]
        logger.info("Rejected %s %s: %s", request.method, request.url.path, fields)
        return _respond(
            422, ValidationError.default_code, "Request validation failed",
            {"fields": fields}, request,
        )

    @app.exception_handler(ValueError)
    async def handle_value_error(request: Request, exc: ValueError):
        logger.warning("ValueError on %s: %s", request.url.path, exc)
        return _respond(422, ValidationError.default_code, str(exc), request=request)

    @app.exception_handler(Exception)
    async def handle_unhandled(request: Request, exc: Exception):
        from bantay.core.config import settings

        logger.critical("Unhandled exception on %s", request.url.path, exc_info=exc)
        message = str(exc) if settings.DEBUG else "Internal server error"
        return _respond(500, "INTERNAL_ERROR", message, request=request)
