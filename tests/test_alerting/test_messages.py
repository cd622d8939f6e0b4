"""
Tests for outbound message rendering.

Covers:
- Regular alert text per channel
- Escalation prefix
- SMS truncation
- SOS rendering with map link and emergency push priority
"""

from datetime import datetime, timezone

from carewatch.alerting.aggregate import Alert
from carewatch.alerting.messages import SMS_MAX_LENGTH, build_alert_message, build_sos_message
from carewatch.alerting.schemas import AlertSeverity, AlertType

T0 = datetime(2026, 3, 1, 12, 0, tzinfo=timezone.utc)


def _make_alert(**overrides) -> Alert:
    data = {
        "subject_id": "subj-1",
        "alert_type": AlertType.FALL,
        "severity": AlertSeverity.CRITICAL,
        "title": "Fall suspected",
        "description": "Fall detected with 95% confidence.",
        "location": "bathroom",
        "now": T0,
    }
    data.update(overrides)
    return Alert.new(**data)


class TestAlertMessage:
    def test_channels(self):
        alert = _make_alert()
        message = build_alert_message(alert)
        assert message.subject == "CRITICAL Alert: Fall suspected"
        assert message.sms_text == (
            "[CareWatch] CRITICAL: Fall suspected. Fall detected with 95% confidence. "
            "Location: bathroom"
        )
        assert message.push_title == "CRITICAL Alert"
        assert message.push_priority == 1
        assert alert.alert_id in message.body
        assert "Location: bathroom" in message.body

    def test_low_severity_push_priority(self):
        assert build_alert_message(_make_alert(severity=AlertSeverity.MEDIUM)).push_priority == 0

    def test_escalation_prefix(self):
        message = build_alert_message(_make_alert(), escalation_level=2)
        assert message.subject == "CRITICAL Alert: [ESCALATED L2] Fall suspected"
        assert "[ESCALATED L2]" in message.sms_text

    def test_sms_truncated(self):
        message = build_alert_message(_make_alert(description="x" * 500))
        assert len(message.sms_text) == SMS_MAX_LENGTH
        assert message.sms_text.endswith("…")

    def test_map_link_in_body(self):
        alert = _make_alert(coordinates={"lat": 12.97, "lng": 77.59})
        assert "https://maps.google.com/?q=12.97,77.59" in build_alert_message(alert).body


class TestSosMessage:
    def test_rendering(self):
        alert = _make_alert(
            alert_type=AlertType.SOS,
            title="SOS Emergency Alert",
            description="",
            coordinates={"lat": 12.97, "lng": 77.59},
        )
        message = build_sos_message(alert)
        assert message.subject == "🚨 SOS EMERGENCY ALERT"
        assert message.push_title == "🚨 SOS EMERGENCY"
        assert message.push_priority == 2
        assert "bathroom" in message.sms_text
        assert "2026-03-01 12:00 UTC" in message.sms_text
        assert message.sms_text.endswith("https://maps.google.com/?q=12.97,77.59")
        assert "bathroom" in message.spoken_text

    def test_unknown_location(self):
        message = build_sos_message(_make_alert(location=None, alert_type=AlertType.SOS))
        assert "Unknown location" in message.push_message
