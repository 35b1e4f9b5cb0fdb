"""
Custom exception hierarchy for the streak service.

Every error carries a machine-readable `code`; streak rule violations
(not enough freezes, nothing to recover) are 409s, never silent no-ops.
Responses use one envelope: {code, message, details?, request_id?}.
"""
from __future__ import annotations

import logging
from typing import Any

from fastapi import Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from starlette import status

from app.core.logging import get_request_id

logger = logging.getLogger("streaks.errors")


# ---------------------------------------------------------------------------
# Exception classes
# ---------------------------------------------------------------------------

class StreakAppException(Exception):
    """Base class for all application-level errors."""
    http_status: int = status.HTTP_500_INTERNAL_SERVER_ERROR
    code: str = "INTERNAL_ERROR"

    def __init__(self, message: str, details: dict[str, Any] | None = None):
        self.message = message
        self.details = details or {}
        super().__init__(message)

    def to_dict(self) -> dict:
        payload: dict[str, Any] = {"code": self.code, "message": self.message}
        if self.details:
            payload["details"] = self.details
        return payload


class NotFoundError(StreakAppException):
    http_status = status.HTTP_404_NOT_FOUND
    code = "NOT_FOUND"

    def __init__(self, resource: str, resource_id: Any):
        super().__init__(
            message=f"{resource} {resource_id} not found.",
            details={"resource": resource, "id": resource_id},
        )


class ValidationError(StreakAppException):
    """Out-of-range or malformed value passed to a mutation (never coerced)."""
    http_status = status.HTTP_422_UNPROCESSABLE_ENTITY
    code = "INVALID_VALUE"

    def __init__(self, field: str, message: str, value: Any = None):
        details: dict[str, Any] = {"field": field}
        if value is not None:
            details["value"] = value
        super().__init__(message=message, details=details)


class InsufficientCurrencyError(StreakAppException):
    http_status = status.HTTP_409_CONFLICT
    code = "INSUFFICIENT_FREEZES"

    def __init__(self, available: int, required: int):
        super().__init__(
            message=f"Recovery needs {required} streak freezes but only {available} available.",
            details={"available": available, "required": required},
        )


class NoRecoveryAvailableError(StreakAppException):
    http_status = status.HTTP_409_CONFLICT
    code = "NO_RECOVERY_AVAILABLE"

    def __init__(self):
        super().__init__(message="There is no broken streak that can be recovered.")


class StreakWriteConflictError(StreakAppException):
    http_status = status.HTTP_409_CONFLICT
    code = "STREAK_WRITE_CONFLICT"

    def __init__(self, user_id: int, attempts: int):
        super().__init__(
            message=f"Streak state for user {user_id} changed concurrently; gave up after {attempts} attempts.",
            details={"user_id": user_id, "attempts": attempts},
        )


# ---------------------------------------------------------------------------
# FastAPI exception handlers
# ---------------------------------------------------------------------------

def _envelope(request: Request, status_code: int, body: dict[str, Any]) -> JSONResponse:
    # The 500 handler runs outside RequestIdMiddleware, after its context is reset.
    rid = get_request_id() or getattr(request.state, "request_id", None)
    if rid is not None:
        body["request_id"] = rid
    return JSONResponse(status_code=status_code, content=body)


async def streak_exception_handler(request: Request, exc: StreakAppException) -> JSONResponse:
    logger.info(
        "request rejected",
        extra={"path": request.url.path, "error_code": exc.code, "status": exc.http_status},
    )
    return _envelope(request, exc.http_status, exc.to_dict())


async def validation_exception_handler(
    request: Request, exc: RequestValidationError
) -> JSONResponse:
    """Schema failures: one entry per offending field, dotted path without `body`."""
    errors = [
        {
            "field": ".".join(str(part) for part in err["loc"] if part != "body"),
            "message": err["msg"],
            "type": err["type"],
        }
        for err in exc.errors()
    ]
    logger.info("request validation failed", extra={"path": request.url.path, "fields": len(errors)})
    return _envelope(
        request,
        status.HTTP_422_UNPROCESSABLE_ENTITY,
        {"code": "VALIDATION_ERROR", "message": "Request validation failed.", "details": {"errors": errors}},
    )


async def unhandled_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    logger.exception("unhandled error on %s %s", request.method, request.url.path)
    return _envelope(
        request,
        status.HTTP_500_INTERNAL_SERVER_ERROR,
        {"code": "INTERNAL_ERROR", "message": "An unexpected error occurred."},
    )
