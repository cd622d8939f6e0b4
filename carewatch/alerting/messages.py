"""
Outbound message builders.

One `AlertMessage` carries every channel's rendering of the same alert,
so the dispatcher never formats text itself.
"""

from dataclasses import dataclass
from typing import Optional

from carewatch.alerting.aggregate import Alert
from carewatch.alerting.schemas import AlertSeverity

SMS_MAX_LENGTH = 320
PUSH_PRIORITY_EMERGENCY = 2
PUSH_PRIORITY_HIGH = 1
PUSH_PRIORITY_NORMAL = 0

SOS_EMAIL_SUBJECT = "🚨 SOS EMERGENCY ALERT"
SOS_PUSH_TITLE = "🚨 SOS EMERGENCY"


@dataclass(frozen=True)
class AlertMessage:
    subject: str
    body: str
    sms_text: str
    push_title: str
    push_message: str
    push_priority: int
    spoken_text: str = ""


def _maps_link(coordinates: Optional[dict]) -> Optional[str]:
    if not coordinates:
        return None
    return f"https://maps.google.com/?q={coordinates['lat']},{coordinates['lng']}"


def _truncate(text: str, limit: int) -> str:
    if len(text) <= limit:
        return text
    return text[: limit - 1].rstrip() + "…"


def _push_priority(severity: AlertSeverity) -> int:
    if severity in (AlertSeverity.CRITICAL, AlertSeverity.HIGH):
        return PUSH_PRIORITY_HIGH
    return PUSH_PRIORITY_NORMAL


def _email_body(alert: Alert, title: str, heading: Optional[str] = None) -> str:
    lines = [heading or title, ""]
    if alert.description:
        lines += [alert.description, ""]
    lines += [
        f"Severity: {alert.severity.value.upper()}",
        f"Type: {alert.alert_type.value}",
        f"Time: {alert.created_at.strftime('%Y-%m-%d %H:%M:%S UTC')}",
        f"Location: {alert.location or 'Unknown location'}",
    ]
    link = _maps_link(alert.coordinates)
    if link:
        lines.append(f"Map: {link}")
    lines += ["", f"Alert ID: {alert.alert_id}", "", "- CareWatch"]
    return "\n".join(lines)


def build_alert_message(alert: Alert, escalation_level: int = 0) -> AlertMessage:
    """Render a regular (or escalated re-notification) alert."""
    title = alert.title
    if escalation_level > 0:
        title = f"[ESCALATED L{escalation_level}] {title}"
    severity = alert.severity.value.upper()

    sms = f"[CareWatch] {severity}: {title}."
    if alert.description:
        sms += f" {alert.description}"
    if alert.location:
        sms += f" Location: {alert.location}"

    push_message = f"{title}\n{alert.description}" if alert.description else title

    return AlertMessage(
        subject=f"{severity} Alert: {title}",
        body=_email_body(alert, title),
        sms_text=_truncate(sms, SMS_MAX_LENGTH),
        push_title=f"{severity} Alert",
        push_message=push_message,
        push_priority=_push_priority(alert.severity),
        spoken_text=f"CareWatch alert. {alert.title}. Severity {alert.severity.value}.",
    )


def build_sos_message(alert: Alert) -> AlertMessage:
    location = alert.location or "Unknown location"
    when = alert.created_at.strftime("%Y-%m-%d %H:%M UTC")
    heading = "EMERGENCY: an SOS alert has been triggered!"

    sms = f"🚨 SOS ALERT 🚨 {heading} Location: {location}. Time: {when}. Please respond immediately."
    link = _maps_link(alert.coordinates)
    if link:
        sms += f" {link}"

    return AlertMessage(
        subject=SOS_EMAIL_SUBJECT,
        body=_email_body(alert, alert.title, heading=heading),
        sms_text=_truncate(sms, SMS_MAX_LENGTH),
        push_title=SOS_PUSH_TITLE,
        push_message=f"SOS triggered at {location}. Please respond immediately.",
        push_priority=PUSH_PRIORITY_EMERGENCY,
        spoken_text=(
            f"Emergency alert. An SOS has been triggered at {location}. "
            "This is an automated emergency call. Please respond immediately."
        ),
    )
