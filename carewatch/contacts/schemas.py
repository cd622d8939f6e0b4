"""
Contact Schemas.

A contact is a person in the subject's care network. Availability and
notification preferences are the only inputs to contact selection.
"""

import re
import uuid
from datetime import datetime
from enum import StrEnum
from typing import Optional
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from pydantic import BaseModel, Field, field_validator

from carewatch.alerting.schemas import AlertType, NotificationChannel

_EMAIL_RE = re.compile(r"^[\w.+-]+@[\w-]+(\.[\w-]+)*\.\w{2,}$")
_PHONE_RE = re.compile(r"^\+?[\d\s\-()]+$")
_TIME_RE = re.compile(r"^([01]\d|2[0-3]):[0-5]\d$")

WEEKDAYS = ("monday", "tuesday", "wednesday", "thursday", "friday", "saturday", "sunday")

CONTACT_CHANNELS = (NotificationChannel.EMAIL, NotificationChannel.SMS, NotificationChannel.PUSH)


# ── Enums ──────────────────────────────────────────────────────────────


class ContactType(StrEnum):
    FAMILY_MEMBER = "family_member"
    CAREGIVER = "caregiver"
    EMERGENCY_CONTACT = "emergency_contact"
    HEALTHCARE_PROVIDER = "healthcare_provider"
    NEIGHBOR = "neighbor"


class NotificationFrequency(StrEnum):
    IMMEDIATE = "immediate"
    HOURLY = "hourly"
    DAILY = "daily"
    WEEKLY = "weekly"


# ── Preferences & availability ─────────────────────────────────────────


class ChannelPreference(BaseModel):
    enabled: bool = True
    frequency: NotificationFrequency = NotificationFrequency.IMMEDIATE


class NotificationPreferences(BaseModel):
    email: ChannelPreference = Field(default_factory=ChannelPreference)
    sms: ChannelPreference = Field(default_factory=ChannelPreference)
    push: ChannelPreference = Field(default_factory=ChannelPreference)

    def enabled_channels(self) -> list[NotificationChannel]:
        """Enabled channels in fixed email → sms → push order."""
        return [c for c in CONTACT_CHANNELS if getattr(self, c.value).enabled]


class DayAvailability(BaseModel):
    """One weekday window. Missing start/end means all day."""
    start: Optional[str] = None     # HH:MM
    end: Optional[str] = None       # HH:MM
    available: bool = True

    @field_validator("start", "end")
    @classmethod
    def _check_time(cls, value: Optional[str]) -> Optional[str]:
        if value is not None and not _TIME_RE.match(value):
            raise ValueError("time must be HH:MM (24h)")
        return value


class WeeklyAvailability(BaseModel):
    monday: Optional[DayAvailability] = None
    tuesday: Optional[DayAvailability] = None
    wednesday: Optional[DayAvailability] = None
    thursday: Optional[DayAvailability] = None
    friday: Optional[DayAvailability] = None
    saturday: Optional[DayAvailability] = None
    sunday: Optional[DayAvailability] = None

    def for_weekday(self, weekday: int) -> Optional[DayAvailability]:
        """weekday follows datetime.weekday(): Monday is 0."""
        return getattr(self, WEEKDAYS[weekday])


class EmergencyResponse(BaseModel):
    """How a contact can help on site during an emergency."""
    can_respond: bool = True
    response_time_minutes: int = Field(default=15, ge=1, le=1440)
    special_instructions: Optional[str] = Field(default=None, max_length=1000)
    access_code: Optional[str] = Field(default=None, max_length=64)


class EmergencyResponseUpdate(BaseModel):
    """Partial update; unset fields keep their stored value."""
    can_respond: Optional[bool] = None
    response_time_minutes: Optional[int] = Field(default=None, ge=1, le=1440)
    special_instructions: Optional[str] = Field(default=None, max_length=1000)
    access_code: Optional[str] = Field(default=None, max_length=64)


# ── Contact ────────────────────────────────────────────────────────────


class ContactFields(BaseModel):
    """Editable contact fields shared by create requests and stored contacts."""
    contact_type: ContactType
    first_name: str = Field(min_length=1, max_length=50)
    last_name: str = Field(min_length=1, max_length=50)
    relationship: str = Field(min_length=1, max_length=100)
    email: Optional[str] = None
    phone: Optional[str] = None
    alternate_phone: Optional[str] = None
    is_primary: bool = False
    is_active: bool = True
    notification_preferences: NotificationPreferences = Field(default_factory=NotificationPreferences)
    alert_types: list[AlertType] = Field(default_factory=list)
    availability: WeeklyAvailability = Field(default_factory=WeeklyAvailability)
    emergency_response: EmergencyResponse = Field(default_factory=EmergencyResponse)
    timezone: str = "UTC"
    push_user_key: Optional[str] = None
    tags: list[str] = Field(default_factory=list)
    notes: Optional[str] = Field(default=None, max_length=1000)

    @field_validator("first_name", "last_name", "relationship")
    @classmethod
    def _strip(cls, value: str) -> str:
        value = value.strip()
        if not value:
            raise ValueError("must not be blank")
        return value

    @field_validator("email")
    @classmethod
    def _check_email(cls, value: Optional[str]) -> Optional[str]:
        if value is None:
            return value
        value = value.strip().lower()
        if not _EMAIL_RE.match(value):
            raise ValueError("Please enter a valid email")
        return value

    @field_validator("phone", "alternate_phone")
    @classmethod
    def _check_phone(cls, value: Optional[str]) -> Optional[str]:
        if value is None:
            return value
        value = value.strip()
        if not _PHONE_RE.match(value):
            raise ValueError("Please enter a valid phone number")
        return value

    @field_validator("timezone")
    @classmethod
    def _check_timezone(cls, value: str) -> str:
        try:
            ZoneInfo(value)
        except (ZoneInfoNotFoundError, ValueError):
            raise ValueError(f"Unknown timezone: {value}")
        return value


class ContactCreateRequest(ContactFields):
    subject_id: str = Field(min_length=1, max_length=128)


class ContactUpdateRequest(BaseModel):
    """Partial update; unset fields are left alone."""
    contact_type: Optional[ContactType] = None
    first_name: Optional[str] = Field(default=None, min_length=1, max_length=50)
    last_name: Optional[str] = Field(default=None, min_length=1, max_length=50)
    relationship: Optional[str] = Field(default=None, min_length=1, max_length=100)
    email: Optional[str] = None
    phone: Optional[str] = None
    alternate_phone: Optional[str] = None
    is_primary: Optional[bool] = None
    is_active: Optional[bool] = None
    alert_types: Optional[list[AlertType]] = None
    timezone: Optional[str] = None
    push_user_key: Optional[str] = None
    tags: Optional[list[str]] = None
    notes: Optional[str] = Field(default=None, max_length=1000)


class Contact(ContactFields):
    contact_id: str = Field(default_factory=lambda: f"contact_{uuid.uuid4().hex[:12]}")
    subject_id: str
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    @property
    def full_name(self) -> str:
        return f"{self.first_name} {self.last_name}"

    def enabled_channels(self) -> list[NotificationChannel]:
        return self.notification_preferences.enabled_channels()


class ContactListResponse(BaseModel):
    contacts: list[Contact]
    total: int
