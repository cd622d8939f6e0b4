"""
Alert aggregate — the only mutation surface for an alert.

State machine:
    active       → acknowledged | escalated | resolved
    acknowledged → escalated | resolved
    escalated    → resolved
    resolved     → (terminal; re-opening means a new alert)

Invariants held here rather than by callers:
- escalation_level never decreases and never exceeds 3
- nothing is appended to the ledger or escalation history once resolved
- priority always matches severity (recomputed on every severity change)

The ledger and escalation history are private; readers get copies.
"""

import copy
import uuid
from dataclasses import dataclass, field, replace
from datetime import datetime
from typing import Any, Iterable, Optional

from carewatch.alerting.schemas import (
    MAX_ESCALATION_LEVEL,
    SEVERITY_PRIORITY,
    AlertSeverity,
    AlertStatus,
    AlertType,
    AlertView,
    Coordinates,
    EscalationEntryView,
    NotificationChannel,
    NotificationEntryView,
    NotificationStatus,
)
from carewatch.errors import AlreadyResolved, InvalidTransition, NotFoundError, ValidationError
from carewatch.services.clock import ensure_utc, parse_timestamp, utcnow

TITLE_MAX_LENGTH = 100
DESCRIPTION_MAX_LENGTH = 500
AUTO_RESOLVE_MINUTES_RANGE = (1, 1440)


def _iso(value: Optional[datetime]) -> Optional[str]:
    return value.isoformat() if value else None


# ── Ledger entries ─────────────────────────────────────────────────────


@dataclass
class NotificationEntry:
    """One notification attempt chain for a (contact, channel) pair."""
    entry_id: str
    contact_id: Optional[str]
    channel: Optional[NotificationChannel]
    sent_at: datetime
    status: NotificationStatus = NotificationStatus.PENDING
    attempts: int = 0
    last_attempt_at: Optional[datetime] = None
    response: Optional[str] = None
    message_id: Optional[str] = None

    def to_dict(self) -> dict:
        return {
            "entry_id": self.entry_id,
            "contact_id": self.contact_id,
            "channel": self.channel.value if self.channel else None,
            "sent_at": _iso(self.sent_at),
            "status": self.status.value,
            "attempts": self.attempts,
            "last_attempt_at": _iso(self.last_attempt_at),
            "response": self.response,
            "message_id": self.message_id,
        }

    @classmethod
    def from_dict(cls, data: dict) -> "NotificationEntry":
        return cls(
            entry_id=data["entry_id"],
            contact_id=data.get("contact_id"),
            channel=NotificationChannel(data["channel"]) if data.get("channel") else None,
            sent_at=parse_timestamp(data["sent_at"]),
            status=NotificationStatus(data.get("status", NotificationStatus.PENDING)),
            attempts=int(data.get("attempts", 0)),
            last_attempt_at=parse_timestamp(data.get("last_attempt_at")),
            response=data.get("response"),
            message_id=data.get("message_id"),
        )


@dataclass(frozen=True)
class EscalationEntry:
    level: int
    timestamp: datetime
    channel: Optional[NotificationChannel]
    contact_id: Optional[str]
    outcome: str

    def to_dict(self) -> dict:
        return {
            "level": self.level,
            "timestamp": _iso(self.timestamp),
            "channel": self.channel.value if self.channel else None,
            "contact_id": self.contact_id,
            "outcome": self.outcome,
        }

    @classmethod
    def from_dict(cls, data: dict) -> "EscalationEntry":
        return cls(
            level=int(data["level"]),
            timestamp=parse_timestamp(data["timestamp"]),
            channel=NotificationChannel(data["channel"]) if data.get("channel") else None,
            contact_id=data.get("contact_id"),
            outcome=data.get("outcome", ""),
        )


# ── Aggregate ──────────────────────────────────────────────────────────


@dataclass
class _AlertState:
    alert_id: str
    subject_id: str
    alert_type: AlertType
    severity: AlertSeverity
    priority: int
    status: AlertStatus
    title: str
    description: str
    created_at: datetime
    updated_at: datetime
    session_id: Optional[str] = None
    location: Optional[str] = None
    coordinates: Optional[dict] = None
    metadata: dict = field(default_factory=dict)
    tags: list = field(default_factory=list)
    auto_resolve: bool = False
    auto_resolve_after_minutes: int = 30
    acknowledged_at: Optional[datetime] = None
    acknowledged_by: Optional[str] = None
    resolved_at: Optional[datetime] = None
    resolved_by: Optional[str] = None
    escalation_level: int = 0


class Alert:
    """
    A persisted alert and its state machine.

    Build new alerts with `Alert.new(...)`, rehydrate stored ones with
    `Alert.from_record(...)`. Every change goes through a method.
    """

    def __init__(
        self,
        state: _AlertState,
        escalation_history: Iterable[EscalationEntry] = (),
        notifications: Iterable[NotificationEntry] = (),
    ):
        self._state = state
        self._history: list[EscalationEntry] = list(escalation_history)
        self._ledger: list[NotificationEntry] = [replace(e) for e in notifications]

    @classmethod
    def new(
        cls,
        subject_id: str,
        alert_type: AlertType,
        severity: AlertSeverity,
        title: str,
        description: str = "",
        session_id: Optional[str] = None,
        location: Optional[str] = None,
        coordinates: Optional[Coordinates | dict] = None,
        metadata: Optional[dict] = None,
        tags: Optional[Iterable[str]] = None,
        auto_resolve: bool = False,
        auto_resolve_after_minutes: int = 30,
        now: Optional[datetime] = None,
    ) -> "Alert":
        if not subject_id:
            raise ValidationError("subject_id is required", field="subject_id")
        _check_title(title)
        _check_description(description)
        _check_auto_resolve_minutes(auto_resolve_after_minutes)

        now = ensure_utc(now) or utcnow()
        if isinstance(coordinates, Coordinates):
            coordinates = coordinates.model_dump()

        severity = AlertSeverity(severity)
        state = _AlertState(
            alert_id=f"alert_{uuid.uuid4().hex[:16]}",
            subject_id=subject_id,
            alert_type=AlertType(alert_type),
            severity=severity,
            priority=SEVERITY_PRIORITY[severity],
            status=AlertStatus.ACTIVE,
            title=title.strip(),
            description=description or "",
            created_at=now,
            updated_at=now,
            session_id=session_id,
            location=location,
            coordinates=coordinates,
            metadata=copy.deepcopy(metadata or {}),
            tags=list(tags or []),
            auto_resolve=auto_resolve,
            auto_resolve_after_minutes=auto_resolve_after_minutes,
        )
        return cls(state)

    # ── Read access ────────────────────────────────────────────────

    @property
    def alert_id(self) -> str:
        return self._state.alert_id

    @property
    def subject_id(self) -> str:
        return self._state.subject_id

    @property
    def session_id(self) -> Optional[str]:
        return self._state.session_id

    @property
    def alert_type(self) -> AlertType:
        return self._state.alert_type

    @property
    def severity(self) -> AlertSeverity:
        return self._state.severity

    @property
    def priority(self) -> int:
        return self._state.priority

    @property
    def status(self) -> AlertStatus:
        return self._state.status

    @property
    def title(self) -> str:
        return self._state.title

    @property
    def description(self) -> str:
        return self._state.description

    @property
    def location(self) -> Optional[str]:
        return self._state.location

    @property
    def coordinates(self) -> Optional[dict]:
        return dict(self._state.coordinates) if self._state.coordinates else None

    @property
    def metadata(self) -> dict:
        return copy.deepcopy(self._state.metadata)

    @property
    def tags(self) -> tuple[str, ...]:
        return tuple(self._state.tags)

    @property
    def auto_resolve(self) -> bool:
        return self._state.auto_resolve

    @property
    def auto_resolve_after_minutes(self) -> int:
        return self._state.auto_resolve_after_minutes

    @property
    def created_at(self) -> datetime:
        return self._state.created_at

    @property
    def updated_at(self) -> datetime:
        return self._state.updated_at

    @property
    def acknowledged_at(self) -> Optional[datetime]:
        return self._state.acknowledged_at

    @property
    def acknowledged_by(self) -> Optional[str]:
        return self._state.acknowledged_by

    @property
    def resolved_at(self) -> Optional[datetime]:
        return self._state.resolved_at

    @property
    def resolved_by(self) -> Optional[str]:
        return self._state.resolved_by

    @property
    def escalation_level(self) -> int:
        return self._state.escalation_level

    @property
    def escalation_history(self) -> tuple[EscalationEntry, ...]:
        return tuple(self._history)

    @property
    def notifications(self) -> tuple[NotificationEntry, ...]:
        return tuple(replace(e) for e in self._ledger)

    @property
    def is_resolved(self) -> bool:
        return self._state.status == AlertStatus.RESOLVED

    @property
    def last_escalated_at(self) -> Optional[datetime]:
        return self._history[-1].timestamp if self._history else None

    def age_in_minutes(self, now: Optional[datetime] = None) -> float:
        now = ensure_utc(now) or utcnow()
        return (now - self._state.created_at).total_seconds() / 60.0

    def is_overdue(self, now: Optional[datetime] = None) -> bool:
        return (
            self._state.auto_resolve
            and self.age_in_minutes(now) > self._state.auto_resolve_after_minutes
        )

    # ── Transitions ────────────────────────────────────────────────

    def acknowledge(self, by_user_id: str, now: Optional[datetime] = None) -> None:
        """Record who acknowledged. Escalated alerts stay escalated."""
        if self.is_resolved:
            raise InvalidTransition(self.alert_id, self.status.value, "acknowledge")
        now = ensure_utc(now) or utcnow()
        self._state.acknowledged_at = now
        self._state.acknowledged_by = by_user_id
        if self._state.status == AlertStatus.ACTIVE:
            self._state.status = AlertStatus.ACKNOWLEDGED
        self._touch(now)

    def resolve(self, by_user_id: str, now: Optional[datetime] = None) -> None:
        if self.is_resolved:
            raise AlreadyResolved(self.alert_id)
        now = ensure_utc(now) or utcnow()
        self._state.resolved_at = now
        self._state.resolved_by = by_user_id
        self._state.status = AlertStatus.RESOLVED
        self._touch(now)

    def escalate(
        self,
        channel: Optional[NotificationChannel],
        contact_id: Optional[str],
        outcome: str = "manual",
        now: Optional[datetime] = None,
    ) -> EscalationEntry:
        """Bump the level (capped at 3) and append a history entry."""
        if self.is_resolved:
            raise InvalidTransition(self.alert_id, self.status.value, "escalate")
        now = ensure_utc(now) or utcnow()

        level = min(self._state.escalation_level + 1, MAX_ESCALATION_LEVEL)
        self._state.escalation_level = level
        entry = EscalationEntry(
            level=level,
            timestamp=now,
            channel=NotificationChannel(channel) if channel else None,
            contact_id=contact_id,
            outcome=outcome,
        )
        self._history.append(entry)
        if level >= MAX_ESCALATION_LEVEL:
            self._state.status = AlertStatus.ESCALATED
        self._touch(now)
        return entry

    def change_severity(self, severity: AlertSeverity, now: Optional[datetime] = None) -> None:
        if self.is_resolved:
            raise InvalidTransition(self.alert_id, self.status.value, "change severity of")
        severity = AlertSeverity(severity)
        self._state.severity = severity
        self._state.priority = SEVERITY_PRIORITY[severity]
        self._touch(ensure_utc(now) or utcnow())

    def edit(
        self,
        title: Optional[str] = None,
        description: Optional[str] = None,
        tags: Optional[Iterable[str]] = None,
        auto_resolve: Optional[bool] = None,
        auto_resolve_after_minutes: Optional[int] = None,
        now: Optional[datetime] = None,
    ) -> None:
        """Update descriptive fields. All checks run before anything changes."""
        if self.is_resolved:
            raise InvalidTransition(self.alert_id, self.status.value, "edit")
        if title is not None:
            _check_title(title)
        if description is not None:
            _check_description(description)
        if auto_resolve_after_minutes is not None:
            _check_auto_resolve_minutes(auto_resolve_after_minutes)

        if title is not None:
            self._state.title = title.strip()
        if description is not None:
            self._state.description = description
        if tags is not None:
            self._state.tags = list(tags)
        if auto_resolve is not None:
            self._state.auto_resolve = auto_resolve
        if auto_resolve_after_minutes is not None:
            self._state.auto_resolve_after_minutes = auto_resolve_after_minutes
        self._touch(ensure_utc(now) or utcnow())

    # ── Notification ledger ────────────────────────────────────────

    def add_notification(
        self,
        contact_id: Optional[str],
        channel: Optional[NotificationChannel],
        status: NotificationStatus = NotificationStatus.PENDING,
        response: Optional[str] = None,
        now: Optional[datetime] = None,
    ) -> NotificationEntry:
        if self.is_resolved:
            raise InvalidTransition(self.alert_id, self.status.value, "notify on")
        now = ensure_utc(now) or utcnow()
        entry = NotificationEntry(
            entry_id=f"ntf_{uuid.uuid4().hex[:12]}",
            contact_id=contact_id,
            channel=NotificationChannel(channel) if channel else None,
            sent_at=now,
            status=NotificationStatus(status),
            response=response,
        )
        if entry.status == NotificationStatus.FAILED:
            entry.attempts = 1
            entry.last_attempt_at = now
        self._ledger.append(entry)
        self._touch(now)
        return replace(entry)

    def update_notification_status(
        self,
        contact_id: Optional[str],
        channel: Optional[NotificationChannel],
        status: NotificationStatus,
        response: Optional[str] = None,
        message_id: Optional[str] = None,
        entry_id: Optional[str] = None,
        now: Optional[datetime] = None,
    ) -> NotificationEntry:
        """
        Update the most recent (contact, channel) entry, or `entry_id` when
        given. Delivery outcomes may land after resolution.
        """
        entry = self._find_entry(contact_id, channel, entry_id)
        if entry is None:
            raise NotFoundError(
                "Notification",
                entry_id or f"{contact_id}/{channel}",
                details={"alert_id": self.alert_id},
            )
        now = ensure_utc(now) or utcnow()
        entry.status = NotificationStatus(status)
        if entry.status == NotificationStatus.FAILED:
            entry.attempts += 1
        entry.last_attempt_at = now
        if response is not None:
            entry.response = response
        if message_id is not None:
            entry.message_id = message_id
        self._touch(now)
        return replace(entry)

    def _find_entry(
        self,
        contact_id: Optional[str],
        channel: Optional[NotificationChannel],
        entry_id: Optional[str],
    ) -> Optional[NotificationEntry]:
        for entry in reversed(self._ledger):
            if entry_id is not None:
                if entry.entry_id == entry_id:
                    return entry
            elif entry.contact_id == contact_id and entry.channel == channel:
                return entry
        return None

    def _touch(self, now: datetime) -> None:
        self._state.updated_at = now

    # ── Serialization ──────────────────────────────────────────────

    def to_record(self) -> dict[str, Any]:
        """Snapshot for persistence. Sharing nothing with the live aggregate."""
        s = self._state
        return {
            "alert_id": s.alert_id,
            "subject_id": s.subject_id,
            "session_id": s.session_id,
            "alert_type": s.alert_type.value,
            "severity": s.severity.value,
            "priority": s.priority,
            "status": s.status.value,
            "title": s.title,
            "description": s.description,
            "location": s.location,
            "coordinates": dict(s.coordinates) if s.coordinates else None,
            "metadata": copy.deepcopy(s.metadata),
            "tags": list(s.tags),
            "auto_resolve": s.auto_resolve,
            "auto_resolve_after_minutes": s.auto_resolve_after_minutes,
            "created_at": s.created_at,
            "updated_at": s.updated_at,
            "acknowledged_at": s.acknowledged_at,
            "acknowledged_by": s.acknowledged_by,
            "resolved_at": s.resolved_at,
            "resolved_by": s.resolved_by,
            "escalation_level": s.escalation_level,
            "escalation_history": [e.to_dict() for e in self._history],
            "notifications": [e.to_dict() for e in self._ledger],
        }

    @classmethod
    def from_record(cls, record: dict[str, Any]) -> "Alert":
        severity = AlertSeverity(record["severity"])
        state = _AlertState(
            alert_id=record["alert_id"],
            subject_id=record["subject_id"],
            session_id=record.get("session_id"),
            alert_type=AlertType(record["alert_type"]),
            severity=severity,
            priority=SEVERITY_PRIORITY[severity],
            status=AlertStatus(record["status"]),
            title=record["title"],
            description=record.get("description") or "",
            location=record.get("location"),
            coordinates=dict(record["coordinates"]) if record.get("coordinates") else None,
            metadata=copy.deepcopy(record.get("metadata") or {}),
            tags=list(record.get("tags") or []),
            auto_resolve=bool(record.get("auto_resolve", False)),
            auto_resolve_after_minutes=int(record.get("auto_resolve_after_minutes", 30)),
            created_at=parse_timestamp(record["created_at"]),
            updated_at=parse_timestamp(record.get("updated_at") or record["created_at"]),
            acknowledged_at=parse_timestamp(record.get("acknowledged_at")),
            acknowledged_by=record.get("acknowledged_by"),
            resolved_at=parse_timestamp(record.get("resolved_at")),
            resolved_by=record.get("resolved_by"),
            escalation_level=int(record.get("escalation_level", 0)),
        )
        return cls(
            state,
            escalation_history=[EscalationEntry.from_dict(e) for e in record.get("escalation_history") or []],
            notifications=[NotificationEntry.from_dict(e) for e in record.get("notifications") or []],
        )

    def to_view(self, now: Optional[datetime] = None) -> AlertView:
        s = self._state
        return AlertView(
            alert_id=s.alert_id,
            subject_id=s.subject_id,
            session_id=s.session_id,
            alert_type=s.alert_type,
            severity=s.severity,
            priority=s.priority,
            status=s.status,
            title=s.title,
            description=s.description,
            location=s.location,
            coordinates=Coordinates(**s.coordinates) if s.coordinates else None,
            metadata=copy.deepcopy(s.metadata),
            tags=list(s.tags),
            created_at=s.created_at,
            updated_at=s.updated_at,
            acknowledged_at=s.acknowledged_at,
            acknowledged_by=s.acknowledged_by,
            resolved_at=s.resolved_at,
            resolved_by=s.resolved_by,
            escalation_level=s.escalation_level,
            escalation_history=[
                EscalationEntryView(
                    level=e.level,
                    timestamp=e.timestamp,
                    channel=e.channel,
                    contact_id=e.contact_id,
                    outcome=e.outcome,
                )
                for e in self._history
            ],
            notifications=[NotificationEntryView(**e.to_dict()) for e in self._ledger],
            auto_resolve=s.auto_resolve,
            auto_resolve_after_minutes=s.auto_resolve_after_minutes,
            age_in_minutes=round(self.age_in_minutes(now), 2),
            is_overdue=self.is_overdue(now),
        )

    def __repr__(self) -> str:
        return (
            f"Alert(alert_id={self.alert_id!r}, status={self.status.value!r}, "
            f"severity={self.severity.value!r}, level={self.escalation_level})"
        )


# ── Field checks ───────────────────────────────────────────────────────


def _check_title(title: str) -> None:
    if not title or not title.strip():
        raise ValidationError("Alert title is required", field="title")
    if len(title.strip()) > TITLE_MAX_LENGTH:
        raise ValidationError(
            f"Title cannot be more than {TITLE_MAX_LENGTH} characters", field="title"
        )


def _check_description(description: Optional[str]) -> None:
    if description and len(description) > DESCRIPTION_MAX_LENGTH:
        raise ValidationError(
            f"Description cannot be more than {DESCRIPTION_MAX_LENGTH} characters",
            field="description",
        )


def _check_auto_resolve_minutes(minutes: int) -> None:
    low, high = AUTO_RESOLVE_MINUTES_RANGE
    if not low <= minutes <= high:
        raise ValidationError(
            f"auto_resolve_after_minutes must be between {low} and {high}",
            field="auto_resolve_after_minutes",
        )
