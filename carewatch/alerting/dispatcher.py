"""
Notification Dispatcher — fan an alert out across contacts and channels.

For every (contact, enabled channel) pair a `pending` ledger entry is
written first, then one tracked background task delivers it. Tasks are
independent: a failing SMS provider never blocks or rolls back the email
to the same contact.

Per task:
1. Up to `max_attempts` attempts, each bounded by `timeout_seconds`
2. Every failed attempt marks the entry `failed` (attempts + 1)
3. Only timeout / provider / transport failures are retried, with
   exponential backoff, and never once the alert is resolved
4. A success marks the entry `sent` with the provider's message id
"""

import asyncio
from typing import Coroutine, Iterable, Optional

import structlog

from carewatch.alerting.messages import AlertMessage
from carewatch.alerting.schemas import NotificationChannel, NotificationStatus
from carewatch.alerting.store import AlertStore
from carewatch.channels import ChannelSenders
from carewatch.channels.base import RETRYABLE_FAILURES, FailureReason, SendResult
from carewatch.channels.emergency import EMERGENCY_CONTACT_ID
from carewatch.config import settings
from carewatch.contacts.schemas import Contact
from carewatch.errors import ChannelDeliveryFailure, NotFoundError
from carewatch.services.resilience import backoff_delay

logger = structlog.get_logger(__name__)

NO_CONTACTS_RESPONSE = "No eligible contacts with an enabled notification channel"
MAX_RETRY_DELAY_SECONDS = 60.0


class TaskTracker:
    """
    Holds strong references to background tasks until they finish.

    Crashed tasks are logged from the done callback, so no failure is
    lost with an unreferenced task.
    """

    def __init__(self):
        self._tasks: set[asyncio.Task] = set()

    def spawn(self, coro: Coroutine, name: Optional[str] = None) -> asyncio.Task:
        task = asyncio.create_task(coro, name=name)
        self._tasks.add(task)
        task.add_done_callback(self._on_done)
        return task

    def _on_done(self, task: asyncio.Task) -> None:
        self._tasks.discard(task)
        if task.cancelled():
            return
        exc = task.exception()
        if exc is not None:
            logger.error(
                "notification_task_crashed",
                task=task.get_name(),
                error=str(exc),
                exc_info=exc,
            )

    async def drain(self, timeout: Optional[float] = None) -> None:
        """Wait for outstanding tasks (including ones they spawn); cancel stragglers."""
        while self._tasks:
            pending = list(self._tasks)
            done, not_done = await asyncio.wait(pending, timeout=timeout)
            self._tasks.difference_update(done)
            if not_done:
                for task in not_done:
                    task.cancel()
                await asyncio.gather(*not_done, return_exceptions=True)
                self._tasks.difference_update(not_done)
                logger.warning("notification_tasks_cancelled", count=len(not_done))
                return

    def __len__(self) -> int:
        return len(self._tasks)


class NotificationDispatcher:
    """
    Usage:
        dispatcher = NotificationDispatcher(store, ChannelSenders.from_settings())
        queued = await dispatcher.dispatch(alert.alert_id, contacts, message)
    """

    def __init__(
        self,
        store: AlertStore,
        senders: ChannelSenders,
        timeout_seconds: Optional[float] = None,
        max_attempts: Optional[int] = None,
        retry_base_delay: Optional[float] = None,
        tasks: Optional[TaskTracker] = None,
    ):
        self._store = store
        self._senders = senders
        self.timeout_seconds = (
            settings.channel_timeout_seconds if timeout_seconds is None else timeout_seconds
        )
        self.max_attempts = max(1, settings.channel_max_attempts if max_attempts is None else max_attempts)
        self.retry_base_delay = (
            settings.channel_retry_base_delay_seconds if retry_base_delay is None else retry_base_delay
        )
        self.tasks = tasks or TaskTracker()

    async def dispatch(
        self,
        alert_id: str,
        contacts: Iterable[Contact],
        message: AlertMessage,
        include_emergency: bool = False,
        only_channel: Optional[NotificationChannel] = None,
    ) -> int:
        """
        Write pending ledger entries and queue their delivery.

        Returns the number of entries queued. With nothing to send, a
        single failed entry explains why and 0 is returned.
        """
        planned: list[tuple[Optional[Contact], NotificationChannel]] = []
        for contact in contacts:
            channels = [only_channel] if only_channel else contact.enabled_channels()
            planned.extend((contact, channel) for channel in channels)
        if include_emergency:
            planned.append((None, NotificationChannel.EMERGENCY))

        queued = []
        async with self._store.mutate(alert_id) as alert:
            if alert.is_resolved:
                logger.info("dispatch_skipped_resolved", alert_id=alert_id)
                return 0
            if not planned:
                alert.add_notification(
                    None, None, status=NotificationStatus.FAILED, response=NO_CONTACTS_RESPONSE
                )
                logger.warning("no_eligible_contacts", alert_id=alert_id, subject_id=alert.subject_id)
                return 0
            for contact, channel in planned:
                contact_id = contact.contact_id if contact else EMERGENCY_CONTACT_ID
                entry = alert.add_notification(contact_id, channel)
                queued.append((contact, entry))

        for contact, entry in queued:
            self.tasks.spawn(
                self._deliver(alert_id, entry.entry_id, entry.channel, contact, message),
                name=f"notify:{alert_id}:{entry.entry_id}",
            )
            logger.info(
                "notification_queued",
                alert_id=alert_id,
                entry_id=entry.entry_id,
                contact_id=entry.contact_id,
                channel=entry.channel.value,
            )
        return len(queued)

    # ── Delivery ───────────────────────────────────────────────────

    async def _deliver(
        self,
        alert_id: str,
        entry_id: str,
        channel: NotificationChannel,
        contact: Optional[Contact],
        message: AlertMessage,
    ) -> None:
        for attempt in range(1, self.max_attempts + 1):
            try:
                result = await self._attempt(channel, contact, message)
            except ChannelDeliveryFailure as failure:
                logger.warning(
                    "notification_failed",
                    alert_id=alert_id,
                    entry_id=entry_id,
                    channel=channel.value,
                    attempt=attempt,
                    reason=failure.reason,
                    detail=failure.detail,
                )
                resolved = await self._record(
                    alert_id, entry_id, NotificationStatus.FAILED, f"{failure.reason}: {failure.detail}"
                )
                if failure.reason not in RETRYABLE_FAILURES or attempt >= self.max_attempts:
                    return
                if resolved:
                    logger.info("notification_retry_abandoned", alert_id=alert_id, entry_id=entry_id)
                    return
                await asyncio.sleep(
                    backoff_delay(attempt, self.retry_base_delay, max_delay=MAX_RETRY_DELAY_SECONDS)
                )
                continue

            await self._record(
                alert_id,
                entry_id,
                NotificationStatus.SENT,
                result.detail,
                message_id=result.message_id,
            )
            logger.info(
                "notification_sent",
                alert_id=alert_id,
                entry_id=entry_id,
                channel=channel.value,
                attempt=attempt,
                message_id=result.message_id,
            )
            return

    async def _attempt(
        self,
        channel: NotificationChannel,
        contact: Optional[Contact],
        message: AlertMessage,
    ) -> SendResult:
        """One bounded send. Raises ChannelDeliveryFailure on any failure."""
        try:
            result = await asyncio.wait_for(
                self._send(channel, contact, message), timeout=self.timeout_seconds
            )
        except asyncio.TimeoutError:
            raise ChannelDeliveryFailure(
                channel.value,
                FailureReason.TIMEOUT,
                f"no response within {self.timeout_seconds}s",
            )
        except Exception as e:
            logger.error("channel_sender_error", channel=channel.value, error=str(e), exc_info=True)
            raise ChannelDeliveryFailure(channel.value, "sender_error", str(e))

        if not result.success:
            raise ChannelDeliveryFailure(
                channel.value, result.failure or FailureReason.PROVIDER_ERROR, result.detail
            )
        return result

    async def _send(
        self,
        channel: NotificationChannel,
        contact: Optional[Contact],
        message: AlertMessage,
    ) -> SendResult:
        if channel == NotificationChannel.EMERGENCY:
            return await self._senders.emergency.send_emergency(message.sms_text, message.spoken_text)
        if channel == NotificationChannel.EMAIL:
            return await self._senders.email.send_email(contact.email or "", message.subject, message.body)
        if channel == NotificationChannel.SMS:
            return await self._senders.sms.send_sms(contact.phone or "", message.sms_text)
        if channel == NotificationChannel.PUSH:
            return await self._senders.push.send_push(
                message.push_title,
                message.push_message,
                message.push_priority,
                user_key=contact.push_user_key,
            )
        return SendResult.failed(FailureReason.NOT_CONFIGURED, f"Unsupported channel: {channel}")

    async def _record(
        self,
        alert_id: str,
        entry_id: str,
        status: NotificationStatus,
        response: str,
        message_id: Optional[str] = None,
    ) -> bool:
        """Write one attempt outcome. Returns True if the alert is resolved (or gone)."""
        try:
            async with self._store.mutate(alert_id) as alert:
                alert.update_notification_status(
                    None, None, status, response=response, message_id=message_id, entry_id=entry_id
                )
                return alert.is_resolved
        except NotFoundError:
            logger.warning("notification_entry_missing", alert_id=alert_id, entry_id=entry_id)
            return True
