"""
FastAPI dependencies.

The alerting services are process singletons built on first use from
settings. Tests install their own with `set_services()` or override
`get_controller` / `get_directory` through `app.dependency_overrides`.
"""

from dataclasses import dataclass
from typing import Optional

from carewatch.alerting.cooldown import CooldownGate, CooldownTracker, RedisCooldownTracker
from carewatch.alerting.dispatcher import NotificationDispatcher
from carewatch.alerting.escalation import EscalationController
from carewatch.alerting.store import AlertStore
from carewatch.channels import ChannelSenders
from carewatch.config import settings
from carewatch.contacts.directory import ContactDirectory
from carewatch.db.engine import get_session_factory
from carewatch.db.repositories import (
    AlertRepository,
    ContactRepository,
    InMemoryAlertRepository,
    InMemoryContactRepository,
    SqlAlertRepository,
    SqlContactRepository,
)
from carewatch.errors import ConfigurationError
from carewatch.services.redis_store import get_redis


@dataclass
class Services:
    store: AlertStore
    directory: ContactDirectory
    dispatcher: NotificationDispatcher
    controller: EscalationController
    senders: ChannelSenders


def _repositories() -> tuple[AlertRepository, ContactRepository]:
    backend = settings.storage_backend.lower()
    if backend == "memory":
        return InMemoryAlertRepository(), InMemoryContactRepository()
    if backend == "sql":
        factory = get_session_factory()
        return SqlAlertRepository(factory), SqlContactRepository(factory)
    raise ConfigurationError(f"Unknown storage backend: {settings.storage_backend}", setting="STORAGE_BACKEND")


def _cooldown() -> CooldownGate:
    backend = settings.cooldown_backend.lower()
    local = CooldownTracker.from_settings()
    if backend == "memory":
        return local
    if backend == "redis":
        return RedisCooldownTracker(get_redis, fallback=local)
    raise ConfigurationError(f"Unknown cooldown backend: {settings.cooldown_backend}", setting="COOLDOWN_BACKEND")


def build_services(
    alert_repository: Optional[AlertRepository] = None,
    contact_repository: Optional[ContactRepository] = None,
    senders: Optional[ChannelSenders] = None,
    cooldown: Optional[CooldownGate] = None,
    **controller_options,
) -> Services:
    if alert_repository is None or contact_repository is None:
        default_alerts, default_contacts = _repositories()
        alert_repository = alert_repository or default_alerts
        contact_repository = contact_repository or default_contacts

    store = AlertStore(alert_repository)
    directory = ContactDirectory(contact_repository)
    senders = senders or ChannelSenders.from_settings()
    dispatcher = NotificationDispatcher(store, senders)
    controller = EscalationController(
        store,
        directory,
        dispatcher,
        cooldown=cooldown or _cooldown(),
        **controller_options,
    )
    return Services(
        store=store,
        directory=directory,
        dispatcher=dispatcher,
        controller=controller,
        senders=senders,
    )


_services: Optional[Services] = None


def get_services() -> Services:
    global _services
    if _services is None:
        _services = build_services()
    return _services


def set_services(services: Optional[Services]) -> None:
    global _services
    _services = services


def get_controller() -> EscalationController:
    return get_services().controller


def get_directory() -> ContactDirectory:
    return get_services().directory
