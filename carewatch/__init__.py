"""
CareWatch — Alert Lifecycle & Escalation Engine.

Architecture:
    carewatch/
    ├── api/             # FastAPI routers (HTTP layer)
    ├── alerting/        # Rules, cooldown, alert aggregate, dispatch, escalation
    ├── contacts/        # Contact models, availability/selection, directory
    ├── channels/        # Email, SMS, push, emergency-services senders
    ├── db/              # SQLAlchemy models, engine, repositories
    ├── middleware/      # Request context, error handling
    └── services/        # Cross-cutting helpers (resilience)

Data Flow:
    activity event → Rule Evaluator → Cooldown Tracker → Alert Store
    → Contact Directory → Notification Dispatcher → ledger
    → [human action | response-window sweep] → acknowledge / resolve / escalate

Version: 1.0.0
"""

__version__ = "1.0.0"
