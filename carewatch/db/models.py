"""
CareWatch SQLAlchemy Models.

Ledger, escalation history, preferences and availability are stored as
JSON documents owned by their row; they are only ever rewritten whole.
"""

from datetime import datetime
from typing import Optional

from sqlalchemy import Boolean, DateTime, Float, Index, Integer, String, Text
from sqlalchemy.orm import Mapped, mapped_column

from carewatch.db.compat import JSONType
from carewatch.db.engine import Base


class AlertRow(Base):
    """Persisted alert aggregate."""

    __tablename__ = "carewatch_alerts"
    __table_args__ = (
        Index("ix_alerts_subject_created", "subject_id", "created_at"),
        Index("ix_alerts_status", "status"),
        Index("ix_alerts_priority", "priority"),
    )

    alert_id: Mapped[str] = mapped_column(String(64), primary_key=True)
    subject_id: Mapped[str] = mapped_column(String(128), nullable=False)
    session_id: Mapped[Optional[str]] = mapped_column(String(128))

    alert_type: Mapped[str] = mapped_column(String(20), nullable=False)
    severity: Mapped[str] = mapped_column(String(20), nullable=False)
    priority: Mapped[int] = mapped_column(Integer, nullable=False)
    status: Mapped[str] = mapped_column(String(20), nullable=False, default="active")

    title: Mapped[str] = mapped_column(String(100), nullable=False)
    description: Mapped[str] = mapped_column(Text, nullable=False, default="")
    location: Mapped[Optional[str]] = mapped_column(String(200))
    latitude: Mapped[Optional[float]] = mapped_column(Float)
    longitude: Mapped[Optional[float]] = mapped_column(Float)
    metadata_: Mapped[dict] = mapped_column("metadata", JSONType(), nullable=False, default=dict)
    tags: Mapped[list] = mapped_column(JSONType(), nullable=False, default=list)

    auto_resolve: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    auto_resolve_after_minutes: Mapped[int] = mapped_column(Integer, nullable=False, default=30)

    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    acknowledged_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True))
    acknowledged_by: Mapped[Optional[str]] = mapped_column(String(128))
    resolved_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True))
    resolved_by: Mapped[Optional[str]] = mapped_column(String(128))

    escalation_level: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    escalation_history: Mapped[list] = mapped_column(JSONType(), nullable=False, default=list)
    notifications: Mapped[list] = mapped_column(JSONType(), nullable=False, default=list)


class ContactRow(Base):
    """A person in a subject's care network."""

    __tablename__ = "carewatch_contacts"
    __table_args__ = (
        Index("ix_contacts_subject_type", "subject_id", "contact_type"),
        Index("ix_contacts_subject_primary", "subject_id", "is_primary"),
    )

    contact_id: Mapped[str] = mapped_column(String(64), primary_key=True)
    subject_id: Mapped[str] = mapped_column(String(128), nullable=False)
    contact_type: Mapped[str] = mapped_column(String(32), nullable=False)

    first_name: Mapped[str] = mapped_column(String(50), nullable=False)
    last_name: Mapped[str] = mapped_column(String(50), nullable=False)
    relationship: Mapped[str] = mapped_column(String(100), nullable=False)
    email: Mapped[Optional[str]] = mapped_column(String(255))
    phone: Mapped[Optional[str]] = mapped_column(String(32))
    alternate_phone: Mapped[Optional[str]] = mapped_column(String(32))

    is_primary: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)

    notification_preferences: Mapped[dict] = mapped_column(JSONType(), nullable=False, default=dict)
    alert_types: Mapped[list] = mapped_column(JSONType(), nullable=False, default=list)
    availability: Mapped[dict] = mapped_column(JSONType(), nullable=False, default=dict)
    emergency_response: Mapped[dict] = mapped_column(JSONType(), nullable=False, default=dict)
    timezone: Mapped[str] = mapped_column(String(64), nullable=False, default="UTC")
    push_user_key: Mapped[Optional[str]] = mapped_column(String(64))
    tags: Mapped[list] = mapped_column(JSONType(), nullable=False, default=list)
    notes: Mapped[Optional[str]] = mapped_column(Text)

    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
