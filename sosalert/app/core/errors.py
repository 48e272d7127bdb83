"""
Centralised error handling - trigger error taxonomy + FastAPI handlers.

    code                 status  raised when
    ───────────────────  ──────  ────────────────────────────────────────
    invalid-argument     400     targetId missing, blank or malformed
    not-found            404     target record does not exist
    failed-precondition  412     no responders / no usable delivery token
    internal             500     anything unexpected (detail logged only)

Partial delivery failure is NOT an error: it is reported inside the
dispatch result.

Usage:
    from sosalert.app.core.errors import NotFoundError, register_error_handlers

    raise NotFoundError("Target user", target_id="u-123")
"""

from __future__ import annotations

import logging
from typing import Any, Dict, Optional

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

from sosalert.app.core.config import settings

logger = logging.getLogger(__name__)

GENERIC_INTERNAL_MESSAGE = "An error occurred while triggering the alert"
MISSING_TARGET_MESSAGE = "targetId is required and must be a non-empty string"


# ═══════════════════════════════════════════════════════════════════════════
# Exception Hierarchy
# ═══════════════════════════════════════════════════════════════════════════

class AlertAPIError(Exception):
    """Base for every error the trigger call reports to its caller."""

    def __init__(
        self,
        message: str = GENERIC_INTERNAL_MESSAGE,
        *,
        status_code: int = 500,
        error_code: str = "internal",
        details: Optional[Dict[str, Any]] = None,
    ):
        super().__init__(message)
        self.message = message
        self.status_code = status_code
        self.error_code = error_code
        self.details = details or {}

    def to_dict(self) -> Dict[str, Any]:
        body: Dict[str, Any] = {
            "code": self.error_code,
            "message": self.message,
            "status": self.status_code,
        }
        if self.details:
            body["details"] = self.details
        return body


class InvalidArgumentError(AlertAPIError):
    """Caller's fault; retrying the same request cannot succeed."""

    def __init__(self, message: str, *, field: Optional[str] = None, **details: Any):
        if field:
            details["field"] = field
        super().__init__(message, status_code=400, error_code="invalid-argument", details=details)


class NotFoundError(AlertAPIError):

    def __init__(self, resource: str, **identifiers: Any):
        super().__init__(
            f"{resource} not found",
            status_code=404,
            error_code="not-found",
            details={"resource": resource, **identifiers},
        )


class FailedPreconditionError(AlertAPIError):
    """State does not allow the dispatch; fixable by the caller (e.g. register responders)."""

    def __init__(self, message: str, **details: Any):
        super().__init__(message, status_code=412, error_code="failed-precondition", details=details)


class InternalError(AlertAPIError):
    """Generic message out; the real cause is only in the logs."""

    def __init__(self, message: str = GENERIC_INTERNAL_MESSAGE):
        super().__init__(message, status_code=500, error_code="internal")


class PushTransportError(Exception):
    """The push transport could not attempt the batch at all."""

    def __init__(self, provider: str, message: str = ""):
        super().__init__(f"Push provider '{provider}' unavailable: {message}")
        self.provider = provider


# ═══════════════════════════════════════════════════════════════════════════
# Error Response Builder
# ═══════════════════════════════════════════════════════════════════════════

def _error_response(exc: AlertAPIError, request: Optional[Request] = None) -> JSONResponse:
    """`{"error": {...}}` body; request path/method added outside production."""
    body = exc.to_dict()
    if request is not None and not settings.is_production:
        body["path"] = request.url.path
        body["method"] = request.method
    return JSONResponse(status_code=exc.status_code, content={"error": body})


def _validation_error(exc: RequestValidationError) -> InvalidArgumentError:
    fields = sorted({
        ".".join(str(p) for p in err.get("loc", ()) if p != "body") or "body"
        for err in exc.errors()
    })
    return InvalidArgumentError(MISSING_TARGET_MESSAGE, fields=fields)


# ═══════════════════════════════════════════════════════════════════════════
# FastAPI Exception Handlers
# ═══════════════════════════════════════════════════════════════════════════

def register_error_handlers(app: FastAPI) -> None:
    """Register all exception handlers on the FastAPI app."""

    @app.exception_handler(AlertAPIError)
    async def handle_alert_error(request: Request, exc: AlertAPIError):
        logger.log(
            logging.ERROR if exc.status_code >= 500 else logging.WARNING,
            "Trigger rejected [%s]: %s | details=%s",
            exc.error_code, exc.message, exc.details,
        )
        return _error_response(exc, request)

    @app.exception_handler(RequestValidationError)
    async def handle_validation_error(request: Request, exc: RequestValidationError):
        logger.warning("Request validation failed: %s", exc.errors())
        return _error_response(_validation_error(exc), request)

    @app.exception_handler(StarletteHTTPException)
    async def handle_http_error(request: Request, exc: StarletteHTTPException):
        code = "not-found" if exc.status_code == 404 else "invalid-argument"
        if exc.status_code >= 500:
            code = "internal"
        error = AlertAPIError(str(exc.detail), status_code=exc.status_code, error_code=code)
        return _error_response(error, request)

    @app.exception_handler(Exception)
    async def handle_unhandled(request: Request, exc: Exception):
        logger.critical("Unhandled exception on %s: %s", request.url.path, exc, exc_info=exc)
        return _error_response(InternalError(), request)
