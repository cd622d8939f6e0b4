"""
Alert Lifecycle API.

POST  /api/v1/alerts                                   — manual alert
GET   /api/v1/alerts                                   — filtered, paginated list
GET   /api/v1/alerts/active                            — active + acknowledged
GET   /api/v1/alerts/overdue                           — past their auto-resolve deadline
GET   /api/v1/alerts/stats                             — counts and mean ack time
POST  /api/v1/alerts/sweep                             — run auto-resolve / escalation once
GET   /api/v1/alerts/{alert_id}
PATCH /api/v1/alerts/{alert_id}                        — edit fields / severity
POST  /api/v1/alerts/{alert_id}/acknowledge
POST  /api/v1/alerts/{alert_id}/resolve
POST  /api/v1/alerts/{alert_id}/escalate
PUT   /api/v1/alerts/{alert_id}/notifications/{contact_id}
"""

from typing import Optional

from fastapi import APIRouter, Depends, Query, status

from carewatch.alerting.escalation import EscalationController
from carewatch.alerting.schemas import (
    AcknowledgeRequest,
    AlertCreateRequest,
    AlertListResponse,
    AlertSeverity,
    AlertStats,
    AlertStatus,
    AlertType,
    AlertUpdateRequest,
    AlertView,
    EscalateRequest,
    NotificationStatusUpdate,
    ResolveRequest,
    SweepReport,
)
from carewatch.api.deps import get_controller
from carewatch.db.repositories.alerts import AlertQuery
from carewatch.services.clock import utcnow

router = APIRouter(prefix="/api/v1/alerts", tags=["alerts"])


@router.post("", response_model=AlertView, status_code=status.HTTP_201_CREATED)
async def create_alert(
    body: AlertCreateRequest,
    controller: EscalationController = Depends(get_controller),
):
    alert = await controller.create_alert(body)
    return alert.to_view()


@router.get("", response_model=AlertListResponse)
async def list_alerts(
    subject_id: Optional[str] = None,
    status_filter: Optional[AlertStatus] = Query(default=None, alias="status"),
    severity: Optional[AlertSeverity] = None,
    alert_type: Optional[AlertType] = None,
    limit: int = Query(default=20, ge=1, le=100),
    offset: int = Query(default=0, ge=0),
    controller: EscalationController = Depends(get_controller),
):
    """Sorted by priority, then newest first."""
    alerts, total = await controller.list_alerts(
        AlertQuery(
            subject_id=subject_id,
            statuses=[status_filter] if status_filter else None,
            severity=severity,
            alert_type=alert_type,
            limit=limit,
            offset=offset,
        )
    )
    now = utcnow()
    return AlertListResponse(
        alerts=[a.to_view(now) for a in alerts],
        total=total,
        limit=limit,
        offset=offset,
    )


@router.get("/active", response_model=list[AlertView])
async def active_alerts(
    subject_id: Optional[str] = None,
    controller: EscalationController = Depends(get_controller),
):
    now = utcnow()
    return [a.to_view(now) for a in await controller.active_alerts(subject_id)]


@router.get("/overdue", response_model=list[AlertView])
async def overdue_alerts(controller: EscalationController = Depends(get_controller)):
    now = utcnow()
    return [a.to_view(now) for a in await controller.overdue_alerts(now)]


@router.get("/stats", response_model=AlertStats)
async def alert_stats(
    subject_id: Optional[str] = None,
    days: int = Query(default=7, ge=1, le=365),
    controller: EscalationController = Depends(get_controller),
):
    return await controller.stats(subject_id, days)


@router.post("/sweep", response_model=SweepReport)
async def run_sweep(controller: EscalationController = Depends(get_controller)):
    return await controller.sweep()


@router.get("/{alert_id}", response_model=AlertView)
async def get_alert(alert_id: str, controller: EscalationController = Depends(get_controller)):
    return (await controller.get(alert_id)).to_view()


@router.patch("/{alert_id}", response_model=AlertView)
async def update_alert(
    alert_id: str,
    body: AlertUpdateRequest,
    controller: EscalationController = Depends(get_controller),
):
    return (await controller.update_alert(alert_id, body)).to_view()


@router.post("/{alert_id}/acknowledge", response_model=AlertView)
async def acknowledge_alert(
    alert_id: str,
    body: AcknowledgeRequest,
    controller: EscalationController = Depends(get_controller),
):
    return (await controller.acknowledge(alert_id, body.user_id)).to_view()


@router.post("/{alert_id}/resolve", response_model=AlertView)
async def resolve_alert(
    alert_id: str,
    body: ResolveRequest,
    controller: EscalationController = Depends(get_controller),
):
    return (await controller.resolve(alert_id, body.user_id)).to_view()


@router.post("/{alert_id}/escalate", response_model=AlertView)
async def escalate_alert(
    alert_id: str,
    body: EscalateRequest,
    controller: EscalationController = Depends(get_controller),
):
    return (await controller.escalate(alert_id, body)).to_view()


@router.put("/{alert_id}/notifications/{contact_id}", response_model=AlertView)
async def update_notification_status(
    alert_id: str,
    contact_id: str,
    body: NotificationStatusUpdate,
    controller: EscalationController = Depends(get_controller),
):
    """Delivery receipts (e.g. provider webhooks) land here."""
    return (await controller.update_notification_status(alert_id, contact_id, body)).to_view()
