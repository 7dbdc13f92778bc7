"""
Error types raised by the engine and the HTTP mapping for them.

    CrowdWatchError        base; carries status, code and details
    ├── NotFoundError      trigger for a document that does not exist
    ├── ValidationError    bad filter or request input
    ├── StoreLimitError    batch or ``in`` list over the backend limit
    ├── PushDeliveryError  provider refused or could not be reached
    └── AggregationError   cycle aborted; ``state`` names where

Every error renders as::

    {"error": {"code": "NOT_FOUND", "message": "...", "status": 404,
               "details": {...}}}

Usage:
    from crowdwatch.app.core.errors import NotFoundError

    raise NotFoundError("Incident", id=incident_id)
"""

from __future__ import annotations

import logging
from typing import Any, Dict, Optional

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse

from crowdwatch.app.core.config import settings

logger = logging.getLogger(__name__)


class CrowdWatchError(Exception):
    """Base exception for all application errors."""

    status_code = 500
    error_code = "INTERNAL_ERROR"

    def __init__(self, message: str, *, details: Optional[Dict[str, Any]] = None):
        super().__init__(message)
        self.message = message
        self.details = details or {}

    def to_dict(self) -> Dict[str, Any]:
        error: Dict[str, Any] = {
            "code": self.error_code,
            "message": self.message,
            "status": self.status_code,
        }
        if self.details:
            error["details"] = self.details
        return {"error": error}


class NotFoundError(CrowdWatchError):
    status_code = 404
    error_code = "NOT_FOUND"

    def __init__(self, resource: str, **identifiers: Any):
        super().__init__(f"{resource} not found", details={"resource": resource, **identifiers})


class ValidationError(CrowdWatchError):
    status_code = 422
    error_code = "VALIDATION_ERROR"

    def __init__(self, message: str, *, field: Optional[str] = None):
        super().__init__(message, details={"field": field} if field else None)


class StoreLimitError(CrowdWatchError):
    """A store call exceeded a backend limit (batch size, in-list length)."""

    error_code = "STORE_LIMIT_EXCEEDED"

    def __init__(self, limit: str, size: int, maximum: int):
        super().__init__(
            f"{limit} of {size} exceeds maximum of {maximum}",
            details={"limit": limit, "size": size, "maximum": maximum},
        )


class PushDeliveryError(CrowdWatchError):
    """A push message could not be delivered to a topic."""

    status_code = 502
    error_code = "PUSH_DELIVERY_ERROR"

    def __init__(self, topic: str, message: str = "", **details: Any):
        super().__init__(
            f"Push to topic '{topic}' failed: {message}",
            details={"topic": topic, **details},
        )


class AggregationError(CrowdWatchError):
    """An aggregation cycle was aborted in ``state``."""

    error_code = "AGGREGATION_ERROR"

    def __init__(self, state: str, message: str = ""):
        super().__init__(
            f"Aggregation cycle aborted in {state}: {message}",
            details={"state": state},
        )
        self.state = state


# ═══════════════════════════════════════════════════════════════════════════
# FastAPI Exception Handlers
# ═══════════════════════════════════════════════════════════════════════════

def _respond(request: Request, status_code: int, body: Dict[str, Any]) -> JSONResponse:
    if not settings.is_production:
        body["error"]["path"] = request.url.path
        body["error"]["method"] = request.method
    return JSONResponse(status_code=status_code, content=body)


def register_error_handlers(app: FastAPI) -> None:
    """Register the exception handlers on the FastAPI app."""

    @app.exception_handler(CrowdWatchError)
    async def handle_crowdwatch_error(request: Request, exc: CrowdWatchError):
        level = logging.WARNING if exc.status_code < 500 else logging.ERROR
        logger.log(
            level, "%s %s → %s: %s", request.method, request.url.path, exc.error_code, exc.message,
            extra={"endpoint": request.url.path, "status_code": exc.status_code},
        )
        return _respond(request, exc.status_code, exc.to_dict())

    @app.exception_handler(Exception)
    async def handle_unhandled(request: Request, exc: Exception):
        logger.exception(
            "Unhandled exception on %s %s", request.method, request.url.path,
            extra={"endpoint": request.url.path, "status_code": 500},
        )
        message = f"{type(exc).__name__}: {exc}" if settings.DEBUG else "Internal server error"
        body = {"error": {"code": "INTERNAL_ERROR", "message": message, "status": 500}}
        return _respond(request, 500, body)
