"""
Escalation Controller — orchestrates the alert lifecycle.

Flows:
1. Event → classify → cooldown → create alert → strict contact
   selection → dispatch
2. Manual create / SOS → create alert → dispatch (SOS ignores
   subscriptions and availability, optionally adds emergency services)
3. Human actions → acknowledge / resolve / escalate / edit
4. Sweep (periodic) → auto-resolve overdue alerts, then escalate alerts
   whose response window has elapsed, re-dispatching to a wider set

Transitions run under the alert's lock. When one fails, the alert's
unchanged state rides along on the error for the API envelope.
"""

from contextlib import asynccontextmanager
from datetime import datetime, timedelta
from typing import AsyncIterator, Optional

import structlog

from carewatch.alerting.aggregate import Alert, EscalationEntry
from carewatch.alerting.cooldown import CooldownGate, CooldownTracker
from carewatch.alerting.dispatcher import NotificationDispatcher
from carewatch.alerting.messages import build_alert_message, build_sos_message
from carewatch.alerting.rules import RuleEvaluator, RulePolicy, alert_type_for
from carewatch.alerting.schemas import (
    MAX_ESCALATION_LEVEL,
    OPEN_STATUSES,
    ActivityEvent,
    AlertCreateRequest,
    AlertSeverity,
    AlertStats,
    AlertStatus,
    AlertType,
    AlertUpdateRequest,
    EscalateRequest,
    EventOutcome,
    EventType,
    MonitoringConfig,
    NotificationChannel,
    NotificationStatusUpdate,
    SosRequest,
    SweepReport,
)
from carewatch.alerting.store import AlertStore
from carewatch.config import settings
from carewatch.contacts.directory import ContactDirectory
from carewatch.contacts.selection import criteria_for_level
from carewatch.db.repositories.alerts import AlertQuery
from carewatch.errors import CareWatchError, InvalidTransition, NotFoundError, ValidationError
from carewatch.services.clock import ensure_utc, utcnow

logger = structlog.get_logger(__name__)

AUTO_RESOLVER = "system:auto-resolve"
SOS_TITLE = "SOS Emergency Alert"

_EVENT_TITLES = {
    EventType.FALL: "Fall suspected",
    EventType.INACTIVITY: "Prolonged inactivity detected",
}


def _describe(kind: EventType, event: ActivityEvent) -> str:
    if kind == EventType.FALL:
        text = f"Fall detected with {event.confidence:.0%} confidence."
    else:
        text = f"No movement detected for {event.duration_ms / 60000:.1f} minutes."
    if event.location:
        text += f" Last seen: {event.location}."
    return text


class EscalationController:
    def __init__(
        self,
        store: AlertStore,
        directory: ContactDirectory,
        dispatcher: NotificationDispatcher,
        rules: Optional[RuleEvaluator] = None,
        cooldown: Optional[CooldownGate] = None,
        response_window: Optional[timedelta] = None,
        ack_window: Optional[timedelta] = None,
        emergency_on_critical: Optional[bool] = None,
        auto_resolve_enabled: Optional[bool] = None,
        auto_resolve_after_minutes: Optional[int] = None,
    ):
        self.store = store
        self.directory = directory
        self.dispatcher = dispatcher
        self.rules = rules or RuleEvaluator(RulePolicy.from_settings())
        self.cooldown = cooldown or CooldownTracker.from_settings()
        self.response_window = response_window or timedelta(
            minutes=settings.escalation_response_window_minutes
        )
        self.ack_window = ack_window or timedelta(minutes=settings.escalation_ack_window_minutes)
        self.emergency_on_critical = (
            settings.escalation_emergency_on_critical
            if emergency_on_critical is None
            else emergency_on_critical
        )
        self.auto_resolve_enabled = (
            settings.auto_resolve_enabled if auto_resolve_enabled is None else auto_resolve_enabled
        )
        self.auto_resolve_after_minutes = (
            auto_resolve_after_minutes or settings.auto_resolve_after_minutes
        )

    def monitoring_config(self) -> MonitoringConfig:
        policy = self.rules.policy
        default_window = getattr(self.cooldown, "default_window", None)
        if default_window is None:
            default_window = timedelta(milliseconds=settings.alert_cooldown_ms)
        return MonitoringConfig(
            inactivity_threshold_ms=policy.inactivity_threshold_ms,
            cooldown_ms=int(default_window.total_seconds() * 1000),
            fall_critical_confidence=policy.fall_critical_confidence,
            fall_high_confidence=policy.fall_high_confidence,
            auto_resolve_after_minutes=self.auto_resolve_after_minutes,
            response_window_minutes=int(self.response_window.total_seconds() // 60),
        )

    # ── Event ingestion ────────────────────────────────────────────

    async def handle_event(self, event: ActivityEvent, now: Optional[datetime] = None) -> EventOutcome:
        now = ensure_utc(now) or utcnow()
        kind = self.rules.normalize(event.raw_type)
        danger = self.rules.is_dangerous(kind, event.duration_ms)
        logger.info(
            "event_classified",
            subject_id=event.subject_id,
            session_id=event.session_id,
            raw_type=event.raw_type,
            normalized_type=kind.value,
            danger=danger,
        )
        if not danger:
            return EventOutcome(normalized_type=kind, danger=False)

        severity = self.rules.severity_of(kind, event.confidence, event.duration_ms)
        cooldown_key = (event.subject_id, kind.value)
        if not await self.cooldown.should_fire(cooldown_key, now):
            logger.info(
                "alert_suppressed_cooldown",
                subject_id=event.subject_id,
                normalized_type=kind.value,
            )
            return EventOutcome(normalized_type=kind, danger=True, severity=severity, suppressed=True)

        try:
            alert = Alert.new(
                subject_id=event.subject_id,
                session_id=event.session_id,
                alert_type=alert_type_for(kind),
                severity=severity,
                title=_EVENT_TITLES[kind],
                description=_describe(kind, event),
                location=event.location,
                coordinates=event.coordinates,
                metadata={
                    "activity_type": kind.value,
                    "confidence": event.confidence,
                    "duration_ms": event.duration_ms,
                },
                tags=["auto", "monitoring"],
                auto_resolve=self.auto_resolve_enabled,
                auto_resolve_after_minutes=self.auto_resolve_after_minutes,
                now=now,
            )
            await self.store.create(alert)
        except Exception as e:
            await self.cooldown.release(cooldown_key, now)
            logger.error(
                "alert_create_failed",
                subject_id=event.subject_id,
                normalized_type=kind.value,
                error=str(e),
            )
            raise
        self._log_created(alert, source="event")

        contacts = await self.directory.eligible_contacts(alert.subject_id, alert.alert_type, at=now)
        notified = await self.dispatcher.dispatch(alert.alert_id, contacts, build_alert_message(alert))
        return EventOutcome(
            normalized_type=kind,
            danger=True,
            severity=severity,
            alert_id=alert.alert_id,
            notified=notified,
        )

    # ── Manual creation ────────────────────────────────────────────

    async def create_alert(self, request: AlertCreateRequest, now: Optional[datetime] = None) -> Alert:
        if request.alert_type == AlertType.SOS:
            raise ValidationError("SOS alerts are raised through the SOS endpoint", field="alert_type")
        now = ensure_utc(now) or utcnow()
        alert = Alert.new(
            subject_id=request.subject_id,
            session_id=request.session_id,
            alert_type=request.alert_type,
            severity=request.severity,
            title=request.title,
            description=request.description,
            location=request.location,
            coordinates=request.coordinates,
            tags=request.tags,
            auto_resolve=request.auto_resolve,
            auto_resolve_after_minutes=request.auto_resolve_after_minutes,
            now=now,
        )
        await self.store.create(alert)
        self._log_created(alert, source="manual")

        if request.notify:
            contacts = await self.directory.eligible_contacts(alert.subject_id, alert.alert_type, at=now)
            await self.dispatcher.dispatch(alert.alert_id, contacts, build_alert_message(alert))
        return await self.store.get(alert.alert_id)

    async def trigger_sos(self, request: SosRequest, now: Optional[datetime] = None) -> Alert:
        """Critical `sos` alert to every active contact; no rules, no cooldown."""
        now = ensure_utc(now) or utcnow()
        alert = Alert.new(
            subject_id=request.subject_id,
            alert_type=AlertType.SOS,
            severity=AlertSeverity.CRITICAL,
            title=SOS_TITLE,
            description=f"SOS triggered at {request.location or 'Unknown location'}",
            location=request.location,
            coordinates=request.coordinates,
            metadata={"include_emergency_call": request.include_emergency_call},
            tags=["sos", "emergency"],
            now=now,
        )
        await self.store.create(alert)
        self._log_created(alert, source="sos")

        contacts = await self.directory.active_contacts(alert.subject_id)
        queued = await self.dispatcher.dispatch(
            alert.alert_id,
            contacts,
            build_sos_message(alert),
            include_emergency=request.include_emergency_call,
        )
        logger.warning(
            "sos_triggered",
            alert_id=alert.alert_id,
            subject_id=alert.subject_id,
            contacts=len(contacts),
            queued=queued,
            emergency_call=request.include_emergency_call,
        )
        return await self.store.get(alert.alert_id)

    # ── Human actions ──────────────────────────────────────────────

    async def acknowledge(self, alert_id: str, user_id: str, now: Optional[datetime] = None) -> Alert:
        async with self._transition(alert_id) as alert:
            alert.acknowledge(user_id, now)
        logger.info("alert_acknowledged", alert_id=alert_id, user_id=user_id, status=alert.status.value)
        return alert

    async def resolve(self, alert_id: str, user_id: str, now: Optional[datetime] = None) -> Alert:
        async with self._transition(alert_id) as alert:
            alert.resolve(user_id, now)
        logger.info("alert_resolved", alert_id=alert_id, user_id=user_id)
        return alert

    async def escalate(
        self,
        alert_id: str,
        request: EscalateRequest,
        now: Optional[datetime] = None,
    ) -> Alert:
        """Manual escalation; a known contact is notified on the named channel."""
        contact = None
        if request.contact_id and request.channel != NotificationChannel.EMERGENCY:
            contact = await self.directory.find(request.contact_id)

        async with self._transition(alert_id) as alert:
            entry = alert.escalate(request.channel, request.contact_id, outcome="manual", now=now)
        logger.info(
            "alert_escalated",
            alert_id=alert_id,
            level=entry.level,
            channel=request.channel.value,
            contact_id=request.contact_id,
            manual=True,
        )

        message = build_alert_message(alert, escalation_level=entry.level)
        if request.channel == NotificationChannel.EMERGENCY:
            await self.dispatcher.dispatch(alert_id, [], message, include_emergency=True)
        elif contact is not None and contact.subject_id == alert.subject_id:
            await self.dispatcher.dispatch(alert_id, [contact], message, only_channel=request.channel)
        return await self.store.get(alert_id)

    async def update_notification_status(
        self,
        alert_id: str,
        contact_id: str,
        update: NotificationStatusUpdate,
        now: Optional[datetime] = None,
    ) -> Alert:
        async with self._transition(alert_id) as alert:
            alert.update_notification_status(
                contact_id, update.channel, update.status, response=update.response, now=now
            )
        logger.info(
            "notification_status_updated",
            alert_id=alert_id,
            contact_id=contact_id,
            channel=update.channel.value,
            status=update.status.value,
        )
        return alert

    async def update_alert(
        self,
        alert_id: str,
        request: AlertUpdateRequest,
        now: Optional[datetime] = None,
    ) -> Alert:
        async with self._transition(alert_id) as alert:
            alert.edit(
                title=request.title,
                description=request.description,
                tags=request.tags,
                auto_resolve=request.auto_resolve,
                auto_resolve_after_minutes=request.auto_resolve_after_minutes,
                now=now,
            )
            if request.severity is not None and request.severity != alert.severity:
                alert.change_severity(request.severity, now)
        logger.info("alert_updated", alert_id=alert_id, fields=sorted(request.model_dump(exclude_none=True)))
        return alert

    # ── Automatic escalation & sweep ───────────────────────────────

    def escalation_due(self, alert: Alert, now: datetime) -> bool:
        """Response window elapsed since the last creation/ack/escalation."""
        last_escalated = alert.last_escalated_at
        if alert.status == AlertStatus.ACTIVE:
            since = max(filter(None, (alert.created_at, last_escalated)))
            return now - since >= self.response_window
        if alert.status == AlertStatus.ACKNOWLEDGED:
            since = max(filter(None, (alert.acknowledged_at, last_escalated, alert.created_at)))
            return now - since >= self.ack_window
        return False

    async def auto_escalate(
        self,
        alert_id: str,
        now: Optional[datetime] = None,
        only_if_due: bool = False,
    ) -> Optional[EscalationEntry]:
        """
        Bump one ladder level and re-dispatch to the widened contact set.

        Returns None when the alert is no longer open (or not yet due).
        """
        now = ensure_utc(now) or utcnow()
        async with self._transition(alert_id) as alert:
            if alert.status not in OPEN_STATUSES:
                return None
            if only_if_due and not self.escalation_due(alert, now):
                return None

            next_level = min(alert.escalation_level + 1, MAX_ESCALATION_LEVEL)
            criteria = criteria_for_level(next_level, alert.severity)
            contacts = await self.directory.eligible_contacts(
                alert.subject_id, alert.alert_type, at=now, criteria=criteria
            )
            include_emergency = (
                self.emergency_on_critical
                and next_level >= MAX_ESCALATION_LEVEL
                and alert.severity == AlertSeverity.CRITICAL
            )
            planned = sum(len(c.enabled_channels()) for c in contacts) + int(include_emergency)

            first = contacts[0] if contacts else None
            entry = alert.escalate(
                channel=first.enabled_channels()[0] if first else None,
                contact_id=first.contact_id if first else None,
                outcome=f"dispatched:{planned}" if planned else "no_contacts",
                now=now,
            )

        logger.warning(
            "alert_escalated",
            alert_id=alert_id,
            level=entry.level,
            severity=alert.severity.value,
            contacts=len(contacts),
            emergency=include_emergency,
            manual=False,
        )
        await self.dispatcher.dispatch(
            alert_id,
            contacts,
            build_alert_message(alert, escalation_level=entry.level),
            include_emergency=include_emergency,
        )
        return entry

    async def auto_resolve(self, alert_id: str, now: Optional[datetime] = None) -> bool:
        now = ensure_utc(now) or utcnow()
        async with self._transition(alert_id) as alert:
            if alert.status not in OPEN_STATUSES or not alert.is_overdue(now):
                return False
            alert.resolve(AUTO_RESOLVER, now)
        logger.info(
            "alert_auto_resolved",
            alert_id=alert_id,
            age_minutes=round(alert.age_in_minutes(now), 1),
        )
        return True

    async def sweep(self, now: Optional[datetime] = None) -> SweepReport:
        """
        One idempotent pass over open alerts.

        Overdue auto-resolve alerts are resolved first; the rest escalate
        once their response window has elapsed. Alerts that changed
        under us are skipped, and one failing alert never stops the pass.
        """
        now = ensure_utc(now) or utcnow()
        report = SweepReport()
        for alert in await self.store.list_open():
            try:
                if alert.is_overdue(now):
                    if await self.auto_resolve(alert.alert_id, now):
                        report.auto_resolved.append(alert.alert_id)
                    continue
                if self.escalation_due(alert, now):
                    if await self.auto_escalate(alert.alert_id, now, only_if_due=True):
                        report.escalated.append(alert.alert_id)
            except (InvalidTransition, NotFoundError) as e:
                logger.debug("sweep_alert_skipped", alert_id=alert.alert_id, reason=e.message)
            except Exception as e:
                logger.error("sweep_alert_failed", alert_id=alert.alert_id, error=str(e), exc_info=True)

        logger.info(
            "sweep_completed",
            auto_resolved=len(report.auto_resolved),
            escalated=len(report.escalated),
        )
        return report

    # ── Queries ────────────────────────────────────────────────────

    async def get(self, alert_id: str) -> Alert:
        return await self.store.get(alert_id)

    async def list_alerts(self, query: AlertQuery) -> tuple[list[Alert], int]:
        return await self.store.list(query)

    async def active_alerts(self, subject_id: Optional[str] = None) -> list[Alert]:
        return await self.store.list_open(subject_id)

    async def overdue_alerts(self, now: Optional[datetime] = None) -> list[Alert]:
        return await self.store.overdue(now)

    async def stats(self, subject_id: Optional[str] = None, days: int = 7) -> AlertStats:
        return await self.store.stats(subject_id, days)

    # ── Internals ──────────────────────────────────────────────────

    @asynccontextmanager
    async def _transition(self, alert_id: str) -> AsyncIterator[Alert]:
        async with self.store.mutate(alert_id) as alert:
            try:
                yield alert
            except CareWatchError as exc:
                exc.alert = alert.to_view().model_dump(mode="json")
                raise

    def _log_created(self, alert: Alert, source: str) -> None:
        logger.info(
            "alert_created",
            alert_id=alert.alert_id,
            subject_id=alert.subject_id,
            alert_type=alert.alert_type.value,
            severity=alert.severity.value,
            priority=alert.priority,
            source=source,
        )
