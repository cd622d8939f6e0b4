"""
Emergency-services channel.

SMS to the configured emergency number, followed by an optional voice
call. The SMS outcome is the delivery outcome; a failed call is logged.
"""

from typing import Optional

import structlog

from carewatch.channels.base import FailureReason, SendResult
from carewatch.channels.sms import TwilioSmsSender
from carewatch.config import settings

logger = structlog.get_logger(__name__)

EMERGENCY_CONTACT_ID = "emergency-services"


class EmergencySender:
    def __init__(
        self,
        sms: TwilioSmsSender,
        phone_number: Optional[str] = None,
        voice_enabled: Optional[bool] = None,
    ):
        self._sms = sms
        self._phone_number = settings.emergency_phone_number if phone_number is None else phone_number
        self._voice_enabled = settings.emergency_voice_enabled if voice_enabled is None else voice_enabled

    @property
    def is_configured(self) -> bool:
        return bool(self._phone_number)

    async def send_emergency(self, text: str, spoken_message: Optional[str] = None) -> SendResult:
        if not self.is_configured:
            logger.warning("emergency_number_not_configured")
            return SendResult.failed(FailureReason.NOT_CONFIGURED, "Emergency phone number not configured")

        result = await self._sms.send_sms(self._phone_number, text)
        logger.info("emergency_sms_attempted", success=result.success, failure=result.failure)

        if self._voice_enabled:
            call = await self._sms.place_call(self._phone_number, spoken_message or text)
            if not call.success:
                logger.error("emergency_call_failed", failure=call.failure, detail=call.detail)
        return result
