"""
Event Ingestion API.

POST /api/v1/events         — classify an activity event, maybe raise an alert
GET  /api/v1/events/config  — live classification / cooldown thresholds
"""

from fastapi import APIRouter, Depends

from carewatch.alerting.escalation import EscalationController
from carewatch.alerting.schemas import ActivityEvent, EventOutcome, MonitoringConfig
from carewatch.api.deps import get_controller

router = APIRouter(prefix="/api/v1/events", tags=["events"])


@router.post("", response_model=EventOutcome)
async def ingest_event(
    body: ActivityEvent,
    controller: EscalationController = Depends(get_controller),
):
    """
    Called by the activity-recognition producer for every observation.

    Returns once the alert (if any) is stored and its notifications are
    queued; delivery continues in the background.
    """
    return await controller.handle_event(body)


@router.get("/config", response_model=MonitoringConfig)
async def monitoring_config(controller: EscalationController = Depends(get_controller)):
    return controller.monitoring_config()
