"""
SOS API.

POST /api/v1/sos — critical `sos` alert to every active contact,
                   optionally to emergency services too
"""

from fastapi import APIRouter, Depends, status

from carewatch.alerting.escalation import EscalationController
from carewatch.alerting.schemas import AlertView, SosRequest
from carewatch.api.deps import get_controller

router = APIRouter(prefix="/api/v1/sos", tags=["sos"])


@router.post("", response_model=AlertView, status_code=status.HTTP_201_CREATED)
async def trigger_sos(
    body: SosRequest,
    controller: EscalationController = Depends(get_controller),
):
    alert = await controller.trigger_sos(body)
    return alert.to_view()
