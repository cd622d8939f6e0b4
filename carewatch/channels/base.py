"""
Channel sender results.

Senders never raise for provider trouble; they return a SendResult whose
`failure` names the reason. The dispatcher records `detail` verbatim in
the notification ledger.
"""

from datetime import datetime, timezone
from enum import StrEnum
from typing import Optional

from pydantic import BaseModel, Field


class FailureReason(StrEnum):
    NOT_CONFIGURED = "not_configured"
    INVALID_RECIPIENT = "invalid_recipient"
    TIMEOUT = "timeout"
    PROVIDER_ERROR = "provider_error"
    REJECTED = "rejected"
    TRANSPORT_ERROR = "transport_error"
    CIRCUIT_OPEN = "circuit_open"


RETRYABLE_FAILURES = frozenset(
    {FailureReason.TIMEOUT, FailureReason.PROVIDER_ERROR, FailureReason.TRANSPORT_ERROR}
)


def rejection_reason(status_code: int) -> FailureReason:
    """4xx other than 429 will fail the same way again; anything else may not."""
    if 400 <= status_code < 500 and status_code != 429:
        return FailureReason.REJECTED
    return FailureReason.PROVIDER_ERROR


class SendResult(BaseModel):
    """Result of one delivery attempt."""

    success: bool
    message_id: Optional[str] = None
    failure: Optional[FailureReason] = None
    detail: str = ""
    timestamp: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))

    @classmethod
    def ok(cls, message_id: Optional[str], detail: str = "") -> "SendResult":
        return cls(success=True, message_id=message_id, detail=detail or (message_id or "sent"))

    @classmethod
    def failed(cls, failure: FailureReason, detail: str) -> "SendResult":
        return cls(success=False, failure=failure, detail=detail)


def mask_phone(phone: str) -> str:
    """+919876543210 → +91******3210 for logs."""
    if len(phone) <= 6:
        return "***"
    return phone[:3] + "*" * (len(phone) - 7) + phone[-4:]
