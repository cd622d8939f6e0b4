"""
Contact selection — who gets notified for an alert at a given moment.

Strict eligibility:
1. contact is active
2. the alert type is one the contact subscribed to
3. at least one channel is enabled
4. the contact's weekday window covers `at` (in the contact's timezone)

Ordering: primary contacts first, then alphabetically by name. This
order is also the escalation ladder order.

Escalation widens the criteria step by step (see `criteria_for_level`).
"""

from dataclasses import dataclass
from datetime import datetime, time
from typing import Iterable, Optional
from zoneinfo import ZoneInfo

from carewatch.alerting.schemas import AlertSeverity, AlertType
from carewatch.contacts.schemas import Contact
from carewatch.services.clock import ensure_utc


@dataclass(frozen=True)
class SelectionCriteria:
    respect_availability: bool = True
    respect_alert_types: bool = True


STRICT = SelectionCriteria()
ANY_TIME = SelectionCriteria(respect_availability=False)
EVERYONE = SelectionCriteria(respect_availability=False, respect_alert_types=False)


def criteria_for_level(level: int, severity: AlertSeverity) -> SelectionCriteria:
    """
    Escalation ladder widening.

    Level 0 is strict. Level 1 drops availability windows. Level 2+
    also drops alert-type subscriptions. Critical alerts take the widest
    criteria from their first escalation.
    """
    if level <= 0:
        return STRICT
    if severity == AlertSeverity.CRITICAL or level >= 2:
        return EVERYONE
    return ANY_TIME


def _parse_hhmm(value: str) -> time:
    hours, minutes = value.split(":")
    return time(int(hours), int(minutes))


def is_available_at(contact: Contact, at: datetime) -> bool:
    """
    Weekday/time-of-day availability, evaluated in the contact's timezone.

    No entry for the weekday → available all day. `available=False` →
    unavailable all day. Bounds are inclusive; start > end wraps midnight.
    """
    local = ensure_utc(at).astimezone(ZoneInfo(contact.timezone))
    day = contact.availability.for_weekday(local.weekday())
    if day is None:
        return True
    if not day.available:
        return False
    if not day.start or not day.end:
        return True

    start, end = _parse_hhmm(day.start), _parse_hhmm(day.end)
    now = local.time().replace(second=0, microsecond=0)
    if start <= end:
        return start <= now <= end
    return now >= start or now <= end


def is_eligible(
    contact: Contact,
    alert_type: AlertType,
    at: datetime,
    criteria: SelectionCriteria = STRICT,
) -> bool:
    if not contact.is_active:
        return False
    if not contact.enabled_channels():
        return False
    if criteria.respect_alert_types and alert_type not in contact.alert_types:
        return False
    if criteria.respect_availability and not is_available_at(contact, at):
        return False
    return True


def ladder_order(contacts: Iterable[Contact]) -> list[Contact]:
    return sorted(
        contacts,
        key=lambda c: (
            not c.is_primary,
            c.first_name.casefold(),
            c.last_name.casefold(),
            c.contact_id,
        ),
    )


def select_contacts(
    contacts: Iterable[Contact],
    alert_type: AlertType,
    at: datetime,
    criteria: Optional[SelectionCriteria] = None,
) -> list[Contact]:
    criteria = criteria or STRICT
    return ladder_order(c for c in contacts if is_eligible(c, alert_type, at, criteria))
