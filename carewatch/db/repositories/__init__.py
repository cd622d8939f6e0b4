"""Alert and contact repositories: in-memory and SQLAlchemy implementations."""

from carewatch.db.repositories.alerts import (
    AlertQuery,
    AlertRepository,
    InMemoryAlertRepository,
    SqlAlertRepository,
)
from carewatch.db.repositories.contacts import (
    ContactQuery,
    ContactRepository,
    InMemoryContactRepository,
    SqlContactRepository,
)

__all__ = [
    "AlertQuery",
    "AlertRepository",
    "InMemoryAlertRepository",
    "SqlAlertRepository",
    "ContactQuery",
    "ContactRepository",
    "InMemoryContactRepository",
    "SqlContactRepository",
]
