"""
Test fixtures for CareWatch.

Provides:
- In-memory repositories, alert store and contact directory
- Recording fake channel senders with scripted results
- A dispatcher with fast retries, drained at teardown
- An escalation controller with fixed, explicit policy
- A contact factory and an API client wired to the fixtures
"""

import asyncio
import os
from datetime import timedelta
from typing import Optional

# Configure before anything imports carewatch.config
os.environ["ENVIRONMENT"] = "testing"
os.environ["STORAGE_BACKEND"] = "memory"
os.environ["COOLDOWN_BACKEND"] = "memory"
os.environ["SWEEP_ENABLED"] = "false"
os.environ["NOTIFICATIONS_DRY_RUN"] = "false"
os.environ["LOG_FORMAT"] = "console"

import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient

from carewatch.alerting.cooldown import CooldownTracker
from carewatch.alerting.dispatcher import NotificationDispatcher
from carewatch.alerting.escalation import EscalationController
from carewatch.alerting.rules import RuleEvaluator, RulePolicy
from carewatch.alerting.store import AlertStore
from carewatch.channels import ChannelSenders
from carewatch.channels.base import FailureReason, SendResult
from carewatch.contacts.directory import ContactDirectory
from carewatch.contacts.schemas import Contact, ContactCreateRequest
from carewatch.db.repositories import InMemoryAlertRepository, InMemoryContactRepository


class RecordingSender:
    """
    Fake channel sender.

    Records every call and replays `results` in order (a SendResult, or
    an exception to raise); once exhausted, every send succeeds. A
    missing address fails as invalid_recipient, like the real senders.
    """

    def __init__(self, results: Optional[list] = None, delay: float = 0.0):
        self.calls: list[dict] = []
        self.results = list(results or [])
        self.delay = delay

    async def _respond(self, call: dict, address: Optional[str] = "n/a") -> SendResult:
        self.calls.append(call)
        if self.delay:
            await asyncio.sleep(self.delay)
        if not address:
            return SendResult.failed(FailureReason.INVALID_RECIPIENT, "missing address")
        if self.results:
            result = self.results.pop(0)
            if isinstance(result, BaseException):
                raise result
            return result
        return SendResult.ok(f"msg-{len(self.calls)}")

    async def send_email(self, to: str, subject: str, body: str) -> SendResult:
        return await self._respond({"to": to, "subject": subject, "body": body}, to)

    async def send_sms(self, to: str, body: str) -> SendResult:
        return await self._respond({"to": to, "body": body}, to)

    async def send_push(self, title, message, priority=0, user_key=None, url=None) -> SendResult:
        return await self._respond(
            {"title": title, "message": message, "priority": priority, "user_key": user_key}
        )

    async def send_emergency(self, text: str, spoken_message: Optional[str] = None) -> SendResult:
        return await self._respond({"text": text, "spoken": spoken_message})

    async def close(self) -> None:
        pass


# ── Core fixtures ──────────────────────────────────────────────────────


@pytest.fixture
def alert_repo():
    return InMemoryAlertRepository()


@pytest.fixture
def contact_repo():
    return InMemoryContactRepository()


@pytest.fixture
def store(alert_repo):
    return AlertStore(alert_repo)


@pytest.fixture
def directory(contact_repo):
    return ContactDirectory(contact_repo)


@pytest.fixture
def senders():
    return ChannelSenders(
        email=RecordingSender(),
        sms=RecordingSender(),
        push=RecordingSender(),
        emergency=RecordingSender(),
    )


@pytest_asyncio.fixture
async def dispatcher(store, senders):
    d = NotificationDispatcher(
        store,
        senders,
        timeout_seconds=0.5,
        max_attempts=3,
        retry_base_delay=0.0,
    )
    yield d
    await d.tasks.drain(timeout=5)


@pytest.fixture
def cooldown():
    return CooldownTracker(default_window=timedelta(minutes=2))


@pytest.fixture
def controller(store, directory, dispatcher, cooldown):
    return EscalationController(
        store,
        directory,
        dispatcher,
        rules=RuleEvaluator(RulePolicy()),
        cooldown=cooldown,
        response_window=timedelta(minutes=10),
        ack_window=timedelta(minutes=60),
        emergency_on_critical=False,
        auto_resolve_enabled=False,
        auto_resolve_after_minutes=30,
    )


@pytest.fixture
def make_contact(directory):
    """Async factory: `await make_contact(first_name="Ravi", is_primary=True)`."""

    async def _make(subject_id: str = "subj-1", **overrides) -> Contact:
        data = {
            "subject_id": subject_id,
            "contact_type": "family_member",
            "first_name": "Asha",
            "last_name": "Rao",
            "relationship": "daughter",
            "email": "asha@example.com",
            "phone": "+919876543210",
            "alert_types": ["fall", "inactivity", "medical"],
        }
        data.update(overrides)
        return await directory.create(ContactCreateRequest(**data))

    return _make


SMS_ONLY = {
    "email": {"enabled": False},
    "sms": {"enabled": True},
    "push": {"enabled": False},
}


@pytest.fixture
def sms_only():
    return SMS_ONLY


# ── API ────────────────────────────────────────────────────────────────


@pytest_asyncio.fixture
async def client(controller, directory):
    """Async test client with the alerting services swapped for fixtures."""
    from carewatch.api.deps import get_controller, get_directory
    from carewatch.main import app

    app.dependency_overrides[get_controller] = lambda: controller
    app.dependency_overrides[get_directory] = lambda: directory
    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as c:
        yield c
    app.dependency_overrides.clear()
