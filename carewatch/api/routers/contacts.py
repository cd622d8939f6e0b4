"""
Contact Directory API.

POST   /api/v1/contacts
GET    /api/v1/contacts                          — filters: subject_id, contact_type, active_only, q
GET    /api/v1/contacts/primary?subject_id=
GET    /api/v1/contacts/eligible?subject_id=&alert_type=&at=
GET    /api/v1/contacts/{contact_id}
PUT    /api/v1/contacts/{contact_id}
PUT    /api/v1/contacts/{contact_id}/preferences
PUT    /api/v1/contacts/{contact_id}/availability
PUT    /api/v1/contacts/{contact_id}/emergency-response
DELETE /api/v1/contacts/{contact_id}
"""

from datetime import datetime
from typing import Optional

from fastapi import APIRouter, Depends, Query, status

from carewatch.alerting.schemas import AlertType
from carewatch.api.deps import get_directory
from carewatch.contacts.directory import ContactDirectory
from carewatch.contacts.schemas import (
    Contact,
    ContactCreateRequest,
    ContactListResponse,
    ContactType,
    ContactUpdateRequest,
    EmergencyResponseUpdate,
    NotificationPreferences,
    WeeklyAvailability,
)

router = APIRouter(prefix="/api/v1/contacts", tags=["contacts"])


@router.post("", response_model=Contact, status_code=status.HTTP_201_CREATED)
async def create_contact(
    body: ContactCreateRequest,
    directory: ContactDirectory = Depends(get_directory),
):
    return await directory.create(body)


@router.get("", response_model=ContactListResponse)
async def list_contacts(
    subject_id: Optional[str] = None,
    contact_type: Optional[ContactType] = None,
    active_only: bool = False,
    q: Optional[str] = Query(default=None, max_length=100),
    directory: ContactDirectory = Depends(get_directory),
):
    contacts = await directory.list(subject_id, contact_type, active_only, q)
    return ContactListResponse(contacts=contacts, total=len(contacts))


@router.get("/primary", response_model=list[Contact])
async def primary_contacts(
    subject_id: str,
    directory: ContactDirectory = Depends(get_directory),
):
    return await directory.primary_contacts(subject_id)


@router.get("/eligible", response_model=list[Contact])
async def eligible_contacts(
    subject_id: str,
    alert_type: AlertType,
    at: Optional[datetime] = None,
    directory: ContactDirectory = Depends(get_directory),
):
    """Who would be notified for this alert type at `at` (default: now)."""
    return await directory.eligible_contacts(subject_id, alert_type, at)


@router.get("/{contact_id}", response_model=Contact)
async def get_contact(contact_id: str, directory: ContactDirectory = Depends(get_directory)):
    return await directory.get(contact_id)


@router.put("/{contact_id}", response_model=Contact)
async def update_contact(
    contact_id: str,
    body: ContactUpdateRequest,
    directory: ContactDirectory = Depends(get_directory),
):
    return await directory.update(contact_id, body)


@router.put("/{contact_id}/preferences", response_model=Contact)
async def update_preferences(
    contact_id: str,
    body: NotificationPreferences,
    directory: ContactDirectory = Depends(get_directory),
):
    return await directory.set_preferences(contact_id, body)


@router.put("/{contact_id}/availability", response_model=Contact)
async def update_availability(
    contact_id: str,
    body: WeeklyAvailability,
    directory: ContactDirectory = Depends(get_directory),
):
    return await directory.set_availability(contact_id, body)


@router.put("/{contact_id}/emergency-response", response_model=Contact)
async def update_emergency_response(
    contact_id: str,
    body: EmergencyResponseUpdate,
    directory: ContactDirectory = Depends(get_directory),
):
    return await directory.set_emergency_response(contact_id, body)


@router.delete("/{contact_id}")
async def delete_contact(contact_id: str, directory: ContactDirectory = Depends(get_directory)):
    await directory.delete(contact_id)
    return {"deleted": True, "contact_id": contact_id}
