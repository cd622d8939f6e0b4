"""
Alert repository.

Stores snapshots (`Alert.to_record()`), never live aggregates: a change
is only visible to other readers after `save()`.
"""

from __future__ import annotations

import copy
from dataclasses import dataclass
from datetime import datetime
from typing import Optional, Protocol, Sequence

from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from carewatch.alerting.aggregate import Alert
from carewatch.alerting.schemas import OPEN_STATUSES, AlertSeverity, AlertStatus, AlertType
from carewatch.db.models import AlertRow
from carewatch.services.clock import ensure_utc


@dataclass
class AlertQuery:
    subject_id: Optional[str] = None
    statuses: Optional[Sequence[AlertStatus]] = None
    severity: Optional[AlertSeverity] = None
    alert_type: Optional[AlertType] = None
    created_after: Optional[datetime] = None
    limit: Optional[int] = 20
    offset: int = 0


class AlertRepository(Protocol):
    """Protocol for alert persistence."""

    async def add(self, alert: Alert) -> None: ...

    async def get(self, alert_id: str) -> Optional[Alert]: ...

    async def save(self, alert: Alert) -> None: ...

    async def list(self, query: AlertQuery) -> tuple[list[Alert], int]: ...

    async def list_open(self) -> list[Alert]: ...


def _sort_key(record: dict):
    return (-record["priority"], -ensure_utc(record["created_at"]).timestamp())


# ── In-memory ──────────────────────────────────────────────────────────


class InMemoryAlertRepository:
    """Dict-backed repository for tests and single-process deployments."""

    def __init__(self):
        self._records: dict[str, dict] = {}

    async def add(self, alert: Alert) -> None:
        self._records[alert.alert_id] = alert.to_record()

    async def get(self, alert_id: str) -> Optional[Alert]:
        record = self._records.get(alert_id)
        return Alert.from_record(copy.deepcopy(record)) if record else None

    async def save(self, alert: Alert) -> None:
        self._records[alert.alert_id] = alert.to_record()

    async def list(self, query: AlertQuery) -> tuple[list[Alert], int]:
        matches = [r for r in self._records.values() if self._matches(r, query)]
        matches.sort(key=_sort_key)
        end = None if query.limit is None else query.offset + query.limit
        page = matches[query.offset:end]
        return [Alert.from_record(copy.deepcopy(r)) for r in page], len(matches)

    async def list_open(self) -> list[Alert]:
        alerts, _ = await self.list(AlertQuery(statuses=OPEN_STATUSES, limit=None))
        return alerts

    @staticmethod
    def _matches(record: dict, query: AlertQuery) -> bool:
        if query.subject_id and record["subject_id"] != query.subject_id:
            return False
        if query.statuses and record["status"] not in {s.value for s in query.statuses}:
            return False
        if query.severity and record["severity"] != query.severity.value:
            return False
        if query.alert_type and record["alert_type"] != query.alert_type.value:
            return False
        if query.created_after and ensure_utc(record["created_at"]) < ensure_utc(query.created_after):
            return False
        return True


# ── SQLAlchemy ─────────────────────────────────────────────────────────


_SCALAR_FIELDS = (
    "subject_id", "session_id", "alert_type", "severity", "priority", "status",
    "title", "description", "location", "tags", "auto_resolve",
    "auto_resolve_after_minutes", "created_at", "updated_at", "acknowledged_at",
    "acknowledged_by", "resolved_at", "resolved_by", "escalation_level",
    "escalation_history", "notifications",
)


def _apply(row: AlertRow, record: dict) -> None:
    for name in _SCALAR_FIELDS:
        setattr(row, name, record[name])
    row.metadata_ = record["metadata"]
    coordinates = record.get("coordinates") or {}
    row.latitude = coordinates.get("lat")
    row.longitude = coordinates.get("lng")


def _to_record(row: AlertRow) -> dict:
    record = {name: getattr(row, name) for name in _SCALAR_FIELDS}
    record["alert_id"] = row.alert_id
    record["metadata"] = copy.deepcopy(row.metadata_ or {})
    record["tags"] = list(row.tags or [])
    record["escalation_history"] = copy.deepcopy(row.escalation_history or [])
    record["notifications"] = copy.deepcopy(row.notifications or [])
    record["coordinates"] = (
        {"lat": row.latitude, "lng": row.longitude}
        if row.latitude is not None and row.longitude is not None
        else None
    )
    return record


class SqlAlertRepository:
    """Async SQLAlchemy repository; one short session per call."""

    def __init__(self, session_factory: async_sessionmaker[AsyncSession]):
        self._session_factory = session_factory

    async def add(self, alert: Alert) -> None:
        row = AlertRow(alert_id=alert.alert_id)
        _apply(row, alert.to_record())
        async with self._session_factory() as session:
            session.add(row)
            await session.commit()

    async def get(self, alert_id: str) -> Optional[Alert]:
        async with self._session_factory() as session:
            row = await session.get(AlertRow, alert_id)
            return Alert.from_record(_to_record(row)) if row else None

    async def save(self, alert: Alert) -> None:
        async with self._session_factory() as session:
            row = await session.get(AlertRow, alert.alert_id)
            if row is None:
                row = AlertRow(alert_id=alert.alert_id)
                session.add(row)
            _apply(row, alert.to_record())
            await session.commit()

    async def list(self, query: AlertQuery) -> tuple[list[Alert], int]:
        conditions = []
        if query.subject_id:
            conditions.append(AlertRow.subject_id == query.subject_id)
        if query.statuses:
            conditions.append(AlertRow.status.in_([s.value for s in query.statuses]))
        if query.severity:
            conditions.append(AlertRow.severity == query.severity.value)
        if query.alert_type:
            conditions.append(AlertRow.alert_type == query.alert_type.value)
        if query.created_after:
            conditions.append(AlertRow.created_at >= query.created_after)

        stmt = (
            select(AlertRow)
            .where(*conditions)
            .order_by(AlertRow.priority.desc(), AlertRow.created_at.desc())
            .offset(query.offset)
        )
        if query.limit is not None:
            stmt = stmt.limit(query.limit)

        async with self._session_factory() as session:
            total = (
                await session.execute(select(func.count()).select_from(AlertRow).where(*conditions))
            ).scalar_one()
            rows = (await session.execute(stmt)).scalars().all()
            return [Alert.from_record(_to_record(r)) for r in rows], total

    async def list_open(self) -> list[Alert]:
        alerts, _ = await self.list(AlertQuery(statuses=OPEN_STATUSES, limit=None))
        return alerts
