"""
CareWatch Exceptions.

Centralized exception definitions with:
- Error codes for client handling
- HTTP status code mapping
- A single structured error envelope

Propagation policy:
- Rule evaluation and cooldown never raise on bad input.
- State-machine violations are raised to the caller as typed errors.
- Channel failures are recorded in the notification ledger and never
  reach the caller of alert creation.
"""

from datetime import datetime, timezone
from enum import StrEnum
from typing import Any, Dict, Optional

import structlog
from fastapi import Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from pydantic import BaseModel

logger = structlog.get_logger(__name__)


# ── Error codes ───────────────────────────────────────────────────────────


class ErrorCode(StrEnum):
    """Application error codes."""

    INTERNAL_ERROR = "E1000"
    VALIDATION_ERROR = "E1001"
    NOT_FOUND = "E1002"
    INVALID_TRANSITION = "E1003"
    ALREADY_RESOLVED = "E1004"

    CHANNEL_DELIVERY_FAILURE = "E5000"

    CONFIGURATION_ERROR = "E6000"


# ── Error envelope ────────────────────────────────────────────────────────


class ErrorDetail(BaseModel):
    """Detailed error information."""

    code: str
    message: str
    details: Dict[str, Any] = {}


class ErrorResponse(BaseModel):
    """
    Standard error response.

    Alert-lifecycle failures carry the alert's current state in `alert`
    so the caller never has to guess whether a transition applied.
    """

    error: ErrorDetail
    alert: Optional[Dict[str, Any]] = None
    request_id: Optional[str] = None
    timestamp: Optional[str] = None


# ── Base exception ────────────────────────────────────────────────────────


class CareWatchError(Exception):
    """Base exception for CareWatch."""

    def __init__(
        self,
        message: str,
        code: ErrorCode = ErrorCode.INTERNAL_ERROR,
        status_code: int = 500,
        details: Optional[Dict[str, Any]] = None,
    ):
        self.message = message
        self.code = code
        self.status_code = status_code
        self.details = details or {}
        # Current alert state, attached by the controller for lifecycle errors.
        self.alert: Optional[Dict[str, Any]] = None
        super().__init__(message)

    def to_response(
        self,
        request_id: Optional[str] = None,
        alert: Optional[Dict[str, Any]] = None,
    ) -> ErrorResponse:
        """Convert to error response."""
        return ErrorResponse(
            error=ErrorDetail(
                code=self.code.value,
                message=self.message,
                details=self.details,
            ),
            alert=alert if alert is not None else self.alert,
            request_id=request_id,
            timestamp=datetime.now(timezone.utc).isoformat(),
        )


# ── Specific exceptions ───────────────────────────────────────────────────


class ValidationError(CareWatchError):
    """Malformed event, contact or alert fields."""

    def __init__(
        self,
        message: str,
        field: Optional[str] = None,
        details: Optional[Dict[str, Any]] = None,
    ):
        merged = dict(details or {})
        if field:
            merged["field"] = field
        super().__init__(
            message=message,
            code=ErrorCode.VALIDATION_ERROR,
            status_code=400,
            details=merged,
        )


class NotFoundError(CareWatchError):
    """Unknown alert, contact, ledger entry or subject."""

    def __init__(
        self,
        resource: str,
        identifier: str,
        details: Optional[Dict[str, Any]] = None,
    ):
        self.resource = resource
        self.identifier = identifier
        super().__init__(
            message=f"{resource} not found: {identifier}",
            code=ErrorCode.NOT_FOUND,
            status_code=404,
            details={"resource": resource, "identifier": identifier, **(details or {})},
        )


class InvalidTransition(CareWatchError):
    """Illegal state-machine move, e.g. acknowledging a resolved alert."""

    def __init__(
        self,
        alert_id: str,
        current_status: str,
        action: str,
        code: ErrorCode = ErrorCode.INVALID_TRANSITION,
        message: Optional[str] = None,
    ):
        self.alert_id = alert_id
        self.current_status = current_status
        self.action = action
        super().__init__(
            message=message or f"Cannot {action} alert {alert_id} in status '{current_status}'",
            code=code,
            status_code=409,
            details={"alert_id": alert_id, "status": current_status, "action": action},
        )


class AlreadyResolved(InvalidTransition):
    """Resolve called on an alert that is already resolved."""

    def __init__(self, alert_id: str):
        super().__init__(
            alert_id=alert_id,
            current_status="resolved",
            action="resolve",
            code=ErrorCode.ALREADY_RESOLVED,
            message=f"Alert {alert_id} is already resolved",
        )


class ChannelDeliveryFailure(CareWatchError):
    """
    A specific notification attempt failed.

    Raised and caught inside the dispatcher; the outcome lands in the
    ledger.
    """

    def __init__(self, channel: str, reason: str, detail: str):
        self.channel = channel
        self.reason = reason
        self.detail = detail
        super().__init__(
            message=f"{channel} delivery failed ({reason}): {detail}",
            code=ErrorCode.CHANNEL_DELIVERY_FAILURE,
            status_code=502,
            details={"channel": channel, "reason": reason},
        )


class ConfigurationError(CareWatchError):
    """Invalid deployment configuration."""

    def __init__(self, message: str, setting: Optional[str] = None):
        super().__init__(
            message=message,
            code=ErrorCode.CONFIGURATION_ERROR,
            status_code=500,
            details={"setting": setting} if setting else {},
        )


# ── Exception handlers ────────────────────────────────────────────────────


async def carewatch_exception_handler(request: Request, exc: CareWatchError) -> JSONResponse:
    """Typed errors → the standard envelope, with the alert's state when known."""
    request_id = getattr(request.state, "request_id", None)
    log = logger.error if exc.status_code >= 500 else logger.warning
    log(
        "carewatch_error",
        error_code=exc.code.value,
        message=exc.message,
        status_code=exc.status_code,
        details=exc.details,
    )
    return JSONResponse(
        status_code=exc.status_code,
        content=exc.to_response(request_id).model_dump(mode="json"),
    )


async def request_validation_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    """Malformed request bodies/queries, rejected before any state change."""
    request_id = getattr(request.state, "request_id", None)
    errors = [
        {"loc": [str(part) for part in e.get("loc", ())], "msg": e.get("msg", ""), "type": e.get("type", "")}
        for e in exc.errors()
    ]
    error = CareWatchError(
        message="Request validation failed",
        code=ErrorCode.VALIDATION_ERROR,
        status_code=422,
        details={"errors": errors},
    )
    logger.info("request_validation_failed", errors=len(errors))
    return JSONResponse(
        status_code=422,
        content=error.to_response(request_id).model_dump(mode="json"),
    )


def register_exception_handlers(app) -> None:
    """Register exception handlers with the FastAPI app."""
    app.add_exception_handler(CareWatchError, carewatch_exception_handler)
    app.add_exception_handler(RequestValidationError, request_validation_handler)
