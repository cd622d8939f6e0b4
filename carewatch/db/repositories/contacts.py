"""Contact repository."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Optional, Protocol

from sqlalchemy import or_, select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from carewatch.contacts.schemas import Contact, ContactType
from carewatch.db.models import ContactRow


@dataclass
class ContactQuery:
    subject_id: Optional[str] = None
    contact_type: Optional[ContactType] = None
    active_only: bool = False
    primary_only: bool = False
    text: Optional[str] = None


class ContactRepository(Protocol):
    """Protocol for contact persistence."""

    async def add(self, contact: Contact) -> None: ...

    async def get(self, contact_id: str) -> Optional[Contact]: ...

    async def save(self, contact: Contact) -> None: ...

    async def delete(self, contact_id: str) -> bool: ...

    async def list(self, query: ContactQuery) -> list[Contact]: ...


def _text_matches(contact: Contact, text: str) -> bool:
    needle = text.casefold()
    haystack = (
        contact.first_name,
        contact.last_name,
        contact.email or "",
        contact.relationship,
    )
    return any(needle in value.casefold() for value in haystack)


# ── In-memory ──────────────────────────────────────────────────────────


class InMemoryContactRepository:
    def __init__(self):
        self._contacts: dict[str, Contact] = {}

    async def add(self, contact: Contact) -> None:
        self._contacts[contact.contact_id] = contact.model_copy(deep=True)

    async def get(self, contact_id: str) -> Optional[Contact]:
        contact = self._contacts.get(contact_id)
        return contact.model_copy(deep=True) if contact else None

    async def save(self, contact: Contact) -> None:
        self._contacts[contact.contact_id] = contact.model_copy(deep=True)

    async def delete(self, contact_id: str) -> bool:
        return self._contacts.pop(contact_id, None) is not None

    async def list(self, query: ContactQuery) -> list[Contact]:
        results = []
        for contact in self._contacts.values():
            if query.subject_id and contact.subject_id != query.subject_id:
                continue
            if query.contact_type and contact.contact_type != query.contact_type:
                continue
            if query.active_only and not contact.is_active:
                continue
            if query.primary_only and not contact.is_primary:
                continue
            if query.text and not _text_matches(contact, query.text):
                continue
            results.append(contact.model_copy(deep=True))
        return results


# ── SQLAlchemy ─────────────────────────────────────────────────────────


_JSON_FIELDS = (
    "notification_preferences", "alert_types", "availability", "emergency_response", "tags",
)
_SCALAR_FIELDS = (
    "subject_id", "contact_type", "first_name", "last_name", "relationship",
    "email", "phone", "alternate_phone", "is_primary", "is_active", "timezone",
    "push_user_key", "notes", "created_at", "updated_at",
)


def _apply(row: ContactRow, contact: Contact) -> None:
    data = contact.model_dump(mode="json")
    for name in _JSON_FIELDS:
        setattr(row, name, data[name])
    for name in _SCALAR_FIELDS:
        setattr(row, name, getattr(contact, name))
    row.contact_type = contact.contact_type.value


def _to_contact(row: ContactRow) -> Contact:
    data = {name: getattr(row, name) for name in _SCALAR_FIELDS + _JSON_FIELDS}
    data["contact_id"] = row.contact_id
    return Contact.model_validate(data)


class SqlContactRepository:
    def __init__(self, session_factory: async_sessionmaker[AsyncSession]):
        self._session_factory = session_factory

    async def add(self, contact: Contact) -> None:
        row = ContactRow(contact_id=contact.contact_id)
        _apply(row, contact)
        async with self._session_factory() as session:
            session.add(row)
            await session.commit()

    async def get(self, contact_id: str) -> Optional[Contact]:
        async with self._session_factory() as session:
            row = await session.get(ContactRow, contact_id)
            return _to_contact(row) if row else None

    async def save(self, contact: Contact) -> None:
        async with self._session_factory() as session:
            row = await session.get(ContactRow, contact.contact_id)
            if row is None:
                row = ContactRow(contact_id=contact.contact_id)
                session.add(row)
            _apply(row, contact)
            await session.commit()

    async def delete(self, contact_id: str) -> bool:
        async with self._session_factory() as session:
            row = await session.get(ContactRow, contact_id)
            if row is None:
                return False
            await session.delete(row)
            await session.commit()
            return True

    async def list(self, query: ContactQuery) -> list[Contact]:
        stmt = select(ContactRow)
        if query.subject_id:
            stmt = stmt.where(ContactRow.subject_id == query.subject_id)
        if query.contact_type:
            stmt = stmt.where(ContactRow.contact_type == query.contact_type.value)
        if query.active_only:
            stmt = stmt.where(ContactRow.is_active.is_(True))
        if query.primary_only:
            stmt = stmt.where(ContactRow.is_primary.is_(True))
        if query.text:
            pattern = f"%{query.text}%"
            stmt = stmt.where(
                or_(
                    ContactRow.first_name.ilike(pattern),
                    ContactRow.last_name.ilike(pattern),
                    ContactRow.email.ilike(pattern),
                    ContactRow.relationship.ilike(pattern),
                )
            )
        async with self._session_factory() as session:
            rows = (await session.execute(stmt)).scalars().all()
            return [_to_contact(r) for r in rows]
