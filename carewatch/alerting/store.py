"""
Alert Store — persistence facade with per-alert serialization.

Every read-modify-write on an alert goes through `mutate()`, which holds
that alert's lock for the whole cycle:

    async with store.mutate(alert_id) as alert:
        alert.acknowledge("user-1")
    # saved here, lock released

If the body raises, nothing is saved and the stored alert is unchanged.
"""

from __future__ import annotations

import asyncio
from collections import Counter
from contextlib import asynccontextmanager
from datetime import datetime, timedelta
from typing import AsyncIterator, Optional

import structlog

from carewatch.alerting.aggregate import Alert
from carewatch.alerting.schemas import OPEN_STATUSES, AlertStats
from carewatch.db.repositories.alerts import AlertQuery, AlertRepository
from carewatch.errors import NotFoundError
from carewatch.services.clock import ensure_utc, utcnow

logger = structlog.get_logger(__name__)


class KeyedLocks:
    """One asyncio.Lock per key, dropped once nobody holds or waits on it."""

    def __init__(self):
        self._locks: dict[str, asyncio.Lock] = {}
        self._holders: Counter[str] = Counter()

    @asynccontextmanager
    async def hold(self, key: str) -> AsyncIterator[None]:
        lock = self._locks.setdefault(key, asyncio.Lock())
        self._holders[key] += 1
        try:
            async with lock:
                yield
        finally:
            self._holders[key] -= 1
            if self._holders[key] <= 0:
                del self._holders[key]
                self._locks.pop(key, None)

    def __len__(self) -> int:
        return len(self._locks)


class AlertStore:
    def __init__(self, repository: AlertRepository):
        self._repository = repository
        self._locks = KeyedLocks()

    @property
    def repository(self) -> AlertRepository:
        return self._repository

    async def create(self, alert: Alert) -> Alert:
        async with self._locks.hold(alert.alert_id):
            await self._repository.add(alert)
        return alert

    async def get(self, alert_id: str) -> Alert:
        alert = await self._repository.get(alert_id)
        if alert is None:
            raise NotFoundError("Alert", alert_id)
        return alert

    async def find(self, alert_id: str) -> Optional[Alert]:
        return await self._repository.get(alert_id)

    @asynccontextmanager
    async def mutate(self, alert_id: str) -> AsyncIterator[Alert]:
        async with self._locks.hold(alert_id):
            alert = await self.get(alert_id)
            yield alert
            await self._repository.save(alert)

    # ── Queries ────────────────────────────────────────────────────

    async def list(self, query: AlertQuery) -> tuple[list[Alert], int]:
        return await self._repository.list(query)

    async def list_open(self, subject_id: Optional[str] = None) -> list[Alert]:
        if subject_id is None:
            return await self._repository.list_open()
        alerts, _ = await self._repository.list(
            AlertQuery(subject_id=subject_id, statuses=OPEN_STATUSES, limit=None)
        )
        return alerts

    async def overdue(self, now: Optional[datetime] = None) -> list[Alert]:
        now = ensure_utc(now) or utcnow()
        return [a for a in await self._repository.list_open() if a.is_overdue(now)]

    async def stats(
        self,
        subject_id: Optional[str] = None,
        days: int = 7,
        now: Optional[datetime] = None,
    ) -> AlertStats:
        now = ensure_utc(now) or utcnow()
        alerts, total = await self._repository.list(
            AlertQuery(
                subject_id=subject_id,
                created_after=now - timedelta(days=days),
                limit=None,
            )
        )
        ack_minutes = [
            (a.acknowledged_at - a.created_at).total_seconds() / 60.0
            for a in alerts
            if a.acknowledged_at is not None
        ]
        return AlertStats(
            subject_id=subject_id,
            days=days,
            total=total,
            by_status=dict(Counter(a.status.value for a in alerts)),
            by_severity=dict(Counter(a.severity.value for a in alerts)),
            by_type=dict(Counter(a.alert_type.value for a in alerts)),
            mean_acknowledge_minutes=(
                round(sum(ack_minutes) / len(ack_minutes), 2) if ack_minutes else None
            ),
        )
