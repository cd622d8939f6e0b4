"""
Alerting Schemas.

Enums shared by the alert aggregate, request bodies for the alert API,
and the read models returned to callers.
"""

from datetime import datetime
from enum import StrEnum
from typing import Any, Optional

from pydantic import AliasChoices, BaseModel, Field


# ── Enums ──────────────────────────────────────────────────────────────


class EventType(StrEnum):
    FALL = "fall"
    INACTIVITY = "inactivity"
    NORMAL = "normal"
    UNKNOWN = "unknown"


class AlertType(StrEnum):
    FALL = "fall"
    INACTIVITY = "inactivity"
    MEDICAL = "medical"
    SECURITY = "security"
    WELLNESS = "wellness"
    SYSTEM = "system"
    SOS = "sos"


class AlertSeverity(StrEnum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    CRITICAL = "critical"


class AlertStatus(StrEnum):
    ACTIVE = "active"
    ACKNOWLEDGED = "acknowledged"
    RESOLVED = "resolved"
    ESCALATED = "escalated"


class NotificationChannel(StrEnum):
    EMAIL = "email"
    SMS = "sms"
    PUSH = "push"
    EMERGENCY = "emergency"       # Emergency-services line, SOS only


class NotificationStatus(StrEnum):
    PENDING = "pending"
    SENT = "sent"
    DELIVERED = "delivered"
    FAILED = "failed"


SEVERITY_PRIORITY: dict[AlertSeverity, int] = {
    AlertSeverity.LOW: 1,
    AlertSeverity.MEDIUM: 3,
    AlertSeverity.HIGH: 6,
    AlertSeverity.CRITICAL: 10,
}

OPEN_STATUSES = (AlertStatus.ACTIVE, AlertStatus.ACKNOWLEDGED)

MAX_ESCALATION_LEVEL = 3


# ── Shared value objects ───────────────────────────────────────────────


class Coordinates(BaseModel):
    lat: float = Field(ge=-90, le=90)
    lng: float = Field(ge=-180, le=180)


# ── Event ingestion ────────────────────────────────────────────────────


class ActivityEvent(BaseModel):
    """A single observation from the activity-recognition producer."""
    subject_id: str = Field(min_length=1, max_length=128)
    session_id: str = Field(min_length=1, max_length=128)
    raw_type: str = Field(
        max_length=64,
        validation_alias=AliasChoices("raw_type", "type"),
    )
    confidence: float = Field(default=0.0, ge=0.0, le=1.0)
    duration_ms: int = Field(default=0, ge=0)
    location: Optional[str] = Field(default=None, max_length=200)
    coordinates: Optional[Coordinates] = None
    observed_at: Optional[datetime] = None


class EventOutcome(BaseModel):
    normalized_type: EventType
    danger: bool
    severity: Optional[AlertSeverity] = None
    alert_id: Optional[str] = None
    notified: Optional[int] = None
    suppressed: bool = False


class MonitoringConfig(BaseModel):
    inactivity_threshold_ms: int
    cooldown_ms: int
    fall_critical_confidence: float
    fall_high_confidence: float
    auto_resolve_after_minutes: int
    response_window_minutes: int


# ── Alert requests ─────────────────────────────────────────────────────


class AlertCreateRequest(BaseModel):
    """Manual alert creation. SOS alerts go through the SOS endpoint."""
    subject_id: str = Field(min_length=1, max_length=128)
    session_id: Optional[str] = None
    alert_type: AlertType
    severity: AlertSeverity = AlertSeverity.MEDIUM
    title: str = Field(min_length=1, max_length=100)
    description: str = Field(default="", max_length=500)
    location: Optional[str] = Field(default=None, max_length=200)
    coordinates: Optional[Coordinates] = None
    auto_resolve: bool = False
    auto_resolve_after_minutes: int = Field(default=30, ge=1, le=1440)
    tags: list[str] = Field(default_factory=list)
    notify: bool = True


class AlertUpdateRequest(BaseModel):
    title: Optional[str] = Field(default=None, min_length=1, max_length=100)
    description: Optional[str] = Field(default=None, max_length=500)
    severity: Optional[AlertSeverity] = None
    tags: Optional[list[str]] = None
    auto_resolve: Optional[bool] = None
    auto_resolve_after_minutes: Optional[int] = Field(default=None, ge=1, le=1440)


class AcknowledgeRequest(BaseModel):
    user_id: str = Field(min_length=1, max_length=128)


class ResolveRequest(BaseModel):
    user_id: str = Field(min_length=1, max_length=128)


class EscalateRequest(BaseModel):
    channel: NotificationChannel
    contact_id: Optional[str] = None


class NotificationStatusUpdate(BaseModel):
    channel: NotificationChannel
    status: NotificationStatus
    response: Optional[str] = Field(default=None, max_length=1000)


class SosRequest(BaseModel):
    subject_id: str = Field(min_length=1, max_length=128)
    location: Optional[str] = Field(default=None, max_length=200)
    coordinates: Optional[Coordinates] = None
    include_emergency_call: bool = False


# ── Read models ────────────────────────────────────────────────────────


class NotificationEntryView(BaseModel):
    entry_id: str
    contact_id: Optional[str] = None
    channel: Optional[NotificationChannel] = None
    sent_at: datetime
    status: NotificationStatus
    attempts: int
    last_attempt_at: Optional[datetime] = None
    response: Optional[str] = None
    message_id: Optional[str] = None


class EscalationEntryView(BaseModel):
    level: int
    timestamp: datetime
    channel: Optional[NotificationChannel] = None
    contact_id: Optional[str] = None
    outcome: str


class AlertView(BaseModel):
    """Alert state returned by every alert-lifecycle endpoint."""
    alert_id: str
    subject_id: str
    session_id: Optional[str] = None
    alert_type: AlertType
    severity: AlertSeverity
    priority: int
    status: AlertStatus
    title: str
    description: str = ""
    location: Optional[str] = None
    coordinates: Optional[Coordinates] = None
    metadata: dict[str, Any] = Field(default_factory=dict)
    tags: list[str] = Field(default_factory=list)

    created_at: datetime
    updated_at: datetime
    acknowledged_at: Optional[datetime] = None
    acknowledged_by: Optional[str] = None
    resolved_at: Optional[datetime] = None
    resolved_by: Optional[str] = None

    escalation_level: int = 0
    escalation_history: list[EscalationEntryView] = Field(default_factory=list)
    notifications: list[NotificationEntryView] = Field(default_factory=list)

    auto_resolve: bool = False
    auto_resolve_after_minutes: int = 30
    age_in_minutes: float = 0.0
    is_overdue: bool = False


class AlertListResponse(BaseModel):
    alerts: list[AlertView]
    total: int
    limit: int
    offset: int


class AlertStats(BaseModel):
    subject_id: Optional[str] = None
    days: int
    total: int
    by_status: dict[str, int]
    by_severity: dict[str, int]
    by_type: dict[str, int]
    mean_acknowledge_minutes: Optional[float] = None


class SweepReport(BaseModel):
    auto_resolved: list[str] = Field(default_factory=list)
    escalated: list[str] = Field(default_factory=list)
