"""
Tests for the Notification Dispatcher.

Covers:
- One pending entry per (contact, enabled channel), then delivery
- Retry on transient failures, no retry on permanent ones
- Per-attempt timeout and sender crashes
- Retries stop once the alert is resolved
- The no-contacts ledger entry
- TaskTracker drain and crash logging
"""

import asyncio
from unittest.mock import patch

import pytest

from carewatch.alerting.aggregate import Alert
from carewatch.alerting.dispatcher import NO_CONTACTS_RESPONSE, TaskTracker
from carewatch.alerting.messages import build_alert_message
from carewatch.alerting.schemas import (
    AlertSeverity,
    AlertType,
    NotificationChannel,
    NotificationStatus,
)
from carewatch.channels.base import FailureReason, SendResult
from carewatch.channels.emergency import EMERGENCY_CONTACT_ID


async def _stored_alert(store) -> Alert:
    alert = Alert.new(
        subject_id="subj-1",
        alert_type=AlertType.FALL,
        severity=AlertSeverity.HIGH,
        title="Fall suspected",
    )
    return await store.create(alert)


async def _dispatch(dispatcher, store, contacts, **kwargs):
    alert = await _stored_alert(store)
    queued = await dispatcher.dispatch(
        alert.alert_id, contacts, build_alert_message(alert), **kwargs
    )
    await dispatcher.tasks.drain(timeout=5)
    return queued, await store.get(alert.alert_id)


def _entry(alert, channel):
    return next(e for e in alert.notifications if e.channel == channel)


# ── Fan-out ────────────────────────────────────────────────────────────


class TestFanOut:
    @pytest.mark.asyncio
    async def test_one_entry_per_enabled_channel(self, dispatcher, store, make_contact, senders):
        contact = await make_contact()
        queued, alert = await _dispatch(dispatcher, store, [contact])

        assert queued == 3
        assert {e.channel for e in alert.notifications} == {
            NotificationChannel.EMAIL,
            NotificationChannel.SMS,
            NotificationChannel.PUSH,
        }
        assert all(e.status == NotificationStatus.SENT for e in alert.notifications)
        assert all(e.contact_id == contact.contact_id for e in alert.notifications)
        assert senders.email.calls[0]["to"] == "asha@example.com"
        assert senders.sms.calls[0]["to"] == "+919876543210"
        assert senders.push.calls[0]["title"] == "HIGH Alert"

    @pytest.mark.asyncio
    async def test_entries_pending_before_delivery(self, dispatcher, store, make_contact, senders):
        senders.sms.delay = 0.2
        contact = await make_contact(notification_preferences={
            "email": {"enabled": False}, "sms": {"enabled": True}, "push": {"enabled": False},
        })
        alert = await _stored_alert(store)
        await dispatcher.dispatch(alert.alert_id, [contact], build_alert_message(alert))

        pending = await store.get(alert.alert_id)
        assert [e.status for e in pending.notifications] == [NotificationStatus.PENDING]
        await dispatcher.tasks.drain(timeout=5)
        done = await store.get(alert.alert_id)
        assert done.notifications[0].status == NotificationStatus.SENT
        assert done.notifications[0].message_id == "msg-1"

    @pytest.mark.asyncio
    async def test_only_channel(self, dispatcher, store, make_contact, senders):
        contact = await make_contact()
        queued, alert = await _dispatch(
            dispatcher, store, [contact], only_channel=NotificationChannel.SMS
        )
        assert queued == 1
        assert alert.notifications[0].channel == NotificationChannel.SMS
        assert senders.email.calls == []

    @pytest.mark.asyncio
    async def test_emergency_entry(self, dispatcher, store, senders):
        queued, alert = await _dispatch(dispatcher, store, [], include_emergency=True)
        assert queued == 1
        entry = alert.notifications[0]
        assert entry.contact_id == EMERGENCY_CONTACT_ID
        assert entry.channel == NotificationChannel.EMERGENCY
        assert entry.status == NotificationStatus.SENT
        assert len(senders.emergency.calls) == 1

    @pytest.mark.asyncio
    async def test_no_contacts(self, dispatcher, store):
        queued, alert = await _dispatch(dispatcher, store, [])
        assert queued == 0
        [entry] = alert.notifications
        assert entry.status == NotificationStatus.FAILED
        assert entry.contact_id is None
        assert entry.channel is None
        assert entry.response == NO_CONTACTS_RESPONSE

    @pytest.mark.asyncio
    async def test_resolved_alert_not_notified(self, dispatcher, store, make_contact, senders):
        contact = await make_contact()
        alert = await _stored_alert(store)
        async with store.mutate(alert.alert_id) as live:
            live.resolve("u")
        queued = await dispatcher.dispatch(alert.alert_id, [contact], build_alert_message(alert))
        assert queued == 0
        assert (await store.get(alert.alert_id)).notifications == ()
        assert senders.sms.calls == []


# ── Failures ───────────────────────────────────────────────────────────


class TestFailures:
    @pytest.mark.asyncio
    async def test_retry_then_success(self, dispatcher, store, make_contact, senders, sms_only):
        senders.sms.results = [SendResult.failed(FailureReason.PROVIDER_ERROR, "Twilio error 30001")]
        contact = await make_contact(notification_preferences=sms_only)
        _, alert = await _dispatch(dispatcher, store, [contact])

        entry = alert.notifications[0]
        assert entry.status == NotificationStatus.SENT
        assert entry.attempts == 1
        assert entry.message_id == "msg-2"
        assert len(senders.sms.calls) == 2

    @pytest.mark.asyncio
    async def test_gives_up_after_max_attempts(self, dispatcher, store, make_contact, senders, sms_only):
        senders.sms.results = [
            SendResult.failed(FailureReason.TRANSPORT_ERROR, "connection reset")
        ] * 5
        contact = await make_contact(notification_preferences=sms_only)
        _, alert = await _dispatch(dispatcher, store, [contact])

        entry = alert.notifications[0]
        assert entry.status == NotificationStatus.FAILED
        assert entry.attempts == 3
        assert entry.response == "transport_error: connection reset"
        assert len(senders.sms.calls) == 3

    @pytest.mark.asyncio
    @pytest.mark.parametrize(
        "failure",
        [
            SendResult.failed(FailureReason.INVALID_RECIPIENT, "bad number"),
            SendResult.failed(FailureReason.REJECTED, "Twilio error 20003: Authenticate"),
        ],
    )
    async def test_permanent_failure_not_retried(
        self, dispatcher, store, make_contact, senders, sms_only, failure
    ):
        senders.sms.results = [failure]
        contact = await make_contact(notification_preferences=sms_only)
        _, alert = await _dispatch(dispatcher, store, [contact])

        entry = alert.notifications[0]
        assert entry.status == NotificationStatus.FAILED
        assert entry.attempts == 1
        assert len(senders.sms.calls) == 1

    @pytest.mark.asyncio
    async def test_missing_address(self, dispatcher, store, make_contact, senders):
        contact = await make_contact(email=None)
        _, alert = await _dispatch(dispatcher, store, [contact])

        email = _entry(alert, NotificationChannel.EMAIL)
        assert email.status == NotificationStatus.FAILED
        assert email.response.startswith("invalid_recipient")
        assert _entry(alert, NotificationChannel.SMS).status == NotificationStatus.SENT

    @pytest.mark.asyncio
    async def test_timeout_is_retried(self, dispatcher, store, make_contact, senders, sms_only):
        senders.sms.delay = 1.0
        contact = await make_contact(notification_preferences=sms_only)
        _, alert = await _dispatch(dispatcher, store, [contact])

        entry = alert.notifications[0]
        assert entry.status == NotificationStatus.FAILED
        assert entry.attempts == 3
        assert entry.response.startswith("timeout")

    @pytest.mark.asyncio
    async def test_sender_crash_recorded(self, dispatcher, store, make_contact, senders, sms_only):
        senders.sms.results = [RuntimeError("boom")]
        contact = await make_contact(notification_preferences=sms_only)
        _, alert = await _dispatch(dispatcher, store, [contact])

        entry = alert.notifications[0]
        assert entry.status == NotificationStatus.FAILED
        assert entry.response == "sender_error: boom"
        assert len(senders.sms.calls) == 1

    @pytest.mark.asyncio
    async def test_channels_are_independent(self, dispatcher, store, make_contact, senders):
        senders.sms.results = [SendResult.failed(FailureReason.INVALID_RECIPIENT, "bad number")]
        senders.push.delay = 0.1
        contact = await make_contact()
        _, alert = await _dispatch(dispatcher, store, [contact])

        assert _entry(alert, NotificationChannel.SMS).status == NotificationStatus.FAILED
        assert _entry(alert, NotificationChannel.EMAIL).status == NotificationStatus.SENT
        assert _entry(alert, NotificationChannel.PUSH).status == NotificationStatus.SENT

    @pytest.mark.asyncio
    async def test_retries_stop_once_resolved(self, dispatcher, store, make_contact, senders, sms_only):
        contact = await make_contact(notification_preferences=sms_only)
        alert = await _stored_alert(store)

        async def resolve_then_fail(to, body):
            senders.sms.calls.append({"to": to, "body": body})
            async with store.mutate(alert.alert_id) as live:
                live.resolve("caregiver-1")
            return SendResult.failed(FailureReason.PROVIDER_ERROR, "503")

        senders.sms.send_sms = resolve_then_fail
        await dispatcher.dispatch(alert.alert_id, [contact], build_alert_message(alert))
        await dispatcher.tasks.drain(timeout=5)

        stored = await store.get(alert.alert_id)
        assert len(senders.sms.calls) == 1
        assert stored.notifications[0].status == NotificationStatus.FAILED
        assert stored.notifications[0].attempts == 1


# ── Task tracking ──────────────────────────────────────────────────────


class TestTaskTracker:
    @pytest.mark.asyncio
    async def test_drain_waits_for_tasks(self):
        tracker = TaskTracker()
        done = []

        async def work():
            await asyncio.sleep(0.01)
            done.append(True)

        tracker.spawn(work())
        tracker.spawn(work())
        await tracker.drain()
        assert done == [True, True]
        assert len(tracker) == 0

    @pytest.mark.asyncio
    async def test_drain_cancels_stragglers(self):
        tracker = TaskTracker()
        task = tracker.spawn(asyncio.sleep(10))
        await tracker.drain(timeout=0.05)
        assert task.cancelled()
        assert len(tracker) == 0

    @pytest.mark.asyncio
    async def test_crash_is_logged(self):
        tracker = TaskTracker()

        async def crash():
            raise ValueError("kaput")

        with patch("carewatch.alerting.dispatcher.logger") as mock_logger:
            task = tracker.spawn(crash(), name="crashy")
            await asyncio.gather(task, return_exceptions=True)
            await asyncio.sleep(0)

        mock_logger.error.assert_called_once()
        args, kwargs = mock_logger.error.call_args
        assert args[0] == "notification_task_crashed"
        assert kwargs["task"] == "crashy"
        assert len(tracker) == 0
