"""
Contact Directory — CRUD for a subject's care network plus the
eligibility query the escalation controller consumes.

Enforced invariant: at most one primary contact per
(subject_id, contact_type). Saving a primary contact demotes the
previous one.
"""

from __future__ import annotations

import asyncio
from datetime import datetime
from typing import Optional

import structlog

from carewatch.alerting.schemas import AlertType
from carewatch.contacts.schemas import (
    Contact,
    ContactCreateRequest,
    ContactType,
    ContactUpdateRequest,
    EmergencyResponseUpdate,
    NotificationPreferences,
    WeeklyAvailability,
)
from carewatch.contacts.selection import STRICT, SelectionCriteria, ladder_order, select_contacts
from carewatch.db.repositories.contacts import ContactQuery, ContactRepository
from carewatch.errors import NotFoundError, ValidationError
from carewatch.services.clock import utcnow

logger = structlog.get_logger(__name__)


class ContactDirectory:
    def __init__(self, repository: ContactRepository):
        self._repository = repository
        self._write_lock = asyncio.Lock()

    # ── Queries ────────────────────────────────────────────────────

    async def get(self, contact_id: str) -> Contact:
        contact = await self._repository.get(contact_id)
        if contact is None:
            raise NotFoundError("Contact", contact_id)
        return contact

    async def find(self, contact_id: str) -> Optional[Contact]:
        return await self._repository.get(contact_id)

    async def list(
        self,
        subject_id: Optional[str] = None,
        contact_type: Optional[ContactType] = None,
        active_only: bool = False,
        text: Optional[str] = None,
    ) -> list[Contact]:
        contacts = await self._repository.list(
            ContactQuery(
                subject_id=subject_id,
                contact_type=contact_type,
                active_only=active_only,
                text=text or None,
            )
        )
        return ladder_order(contacts)

    async def primary_contacts(self, subject_id: str) -> list[Contact]:
        contacts = await self._repository.list(
            ContactQuery(subject_id=subject_id, active_only=True, primary_only=True)
        )
        return ladder_order(contacts)

    async def eligible_contacts(
        self,
        subject_id: str,
        alert_type: AlertType,
        at: Optional[datetime] = None,
        criteria: SelectionCriteria = STRICT,
    ) -> list[Contact]:
        """Ordered contacts to notify for `alert_type` at time `at`."""
        contacts = await self._repository.list(
            ContactQuery(subject_id=subject_id, active_only=True)
        )
        return select_contacts(contacts, alert_type, at or utcnow(), criteria)

    async def active_contacts(self, subject_id: str) -> list[Contact]:
        """Every active contact with a channel enabled, ignoring filters."""
        contacts = await self._repository.list(
            ContactQuery(subject_id=subject_id, active_only=True)
        )
        return ladder_order(c for c in contacts if c.enabled_channels())

    # ── Writes ─────────────────────────────────────────────────────

    async def create(self, request: ContactCreateRequest) -> Contact:
        now = utcnow()
        contact = Contact(**request.model_dump(), created_at=now, updated_at=now)
        async with self._write_lock:
            if contact.is_primary:
                await self._demote_other_primaries(contact)
            await self._repository.add(contact)
        logger.info(
            "contact_created",
            contact_id=contact.contact_id,
            subject_id=contact.subject_id,
            contact_type=contact.contact_type.value,
            is_primary=contact.is_primary,
        )
        return contact

    async def update(self, contact_id: str, request: ContactUpdateRequest) -> Contact:
        changes = request.model_dump(exclude_unset=True)
        return await self._replace(contact_id, changes)

    async def set_preferences(
        self, contact_id: str, preferences: NotificationPreferences
    ) -> Contact:
        return await self._replace(
            contact_id, {"notification_preferences": preferences.model_dump()}
        )

    async def set_availability(
        self, contact_id: str, availability: WeeklyAvailability
    ) -> Contact:
        return await self._replace(contact_id, {"availability": availability.model_dump()})

    async def set_emergency_response(
        self, contact_id: str, update: EmergencyResponseUpdate
    ) -> Contact:
        current = await self.get(contact_id)
        merged = current.emergency_response.model_dump()
        merged.update(update.model_dump(exclude_unset=True))
        return await self._replace(contact_id, {"emergency_response": merged})

    async def delete(self, contact_id: str) -> None:
        """Remove future eligibility. Ledgers keep the contact_id as recorded."""
        async with self._write_lock:
            if not await self._repository.delete(contact_id):
                raise NotFoundError("Contact", contact_id)
        logger.info("contact_deleted", contact_id=contact_id)

    async def _replace(self, contact_id: str, changes: dict) -> Contact:
        async with self._write_lock:
            current = await self.get(contact_id)
            data = current.model_dump()
            data.update(changes)
            data["updated_at"] = utcnow()
            try:
                updated = Contact.model_validate(data)
            except ValueError as exc:
                raise ValidationError(str(exc), details={"contact_id": contact_id})

            promoted = updated.is_primary and (
                not current.is_primary or current.contact_type != updated.contact_type
            )
            if promoted:
                await self._demote_other_primaries(updated)
            await self._repository.save(updated)

        logger.info("contact_updated", contact_id=contact_id, fields=sorted(changes))
        return updated

    async def _demote_other_primaries(self, contact: Contact) -> None:
        others = await self._repository.list(
            ContactQuery(
                subject_id=contact.subject_id,
                contact_type=contact.contact_type,
                primary_only=True,
            )
        )
        for other in others:
            if other.contact_id == contact.contact_id:
                continue
            await self._repository.save(
                other.model_copy(update={"is_primary": False, "updated_at": utcnow()})
            )
            logger.info(
                "primary_contact_demoted",
                contact_id=other.contact_id,
                replaced_by=contact.contact_id,
            )
