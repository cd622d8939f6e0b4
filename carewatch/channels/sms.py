"""
Twilio SMS Client.

Sends SMS (and, for emergency services, voice calls) through the Twilio
REST API over httpx. Numbers are normalised to E.164 using the
configured default country code.
"""

import re
import uuid
from typing import Optional
from xml.sax.saxutils import escape

import httpx
import structlog
from pydantic import BaseModel

from carewatch.channels.base import FailureReason, SendResult, mask_phone, rejection_reason
from carewatch.config import settings
from carewatch.services.resilience import CircuitBreaker, CircuitOpenError

logger = structlog.get_logger(__name__)

# Twilio error codes that mean "this number will never work".
_INVALID_NUMBER_CODES = {21211, 21214, 21217, 21401, 21407, 21408, 21610, 21614}

MIN_E164_DIGITS = 8


class ProviderUnavailable(Exception):
    """Provider answered with a 5xx; counts against the circuit breaker."""

    def __init__(self, status_code: int, detail: str):
        self.status_code = status_code
        super().__init__(f"HTTP {status_code}: {detail}")


def normalize_phone(raw: str, default_country_code: str = "+91") -> Optional[str]:
    """
    Normalise to E.164.

    "+1 (415) 555-0100" → "+14155550100"; "098765 43210" → "+919876543210".
    Returns None when too few digits remain to be dialable.
    """
    if not raw:
        return None
    cleaned = re.sub(r"[^\d+]", "", str(raw))
    if cleaned.startswith("+"):
        number = "+" + cleaned[1:].replace("+", "")
    else:
        number = default_country_code + cleaned.replace("+", "").lstrip("0")
    if len(number) - 1 < MIN_E164_DIGITS:
        return None
    return number


class TwilioConfig(BaseModel):
    account_sid: str = ""
    auth_token: str = ""
    from_number: str = ""
    default_country_code: str = "+91"
    timeout_seconds: float = 10.0

    @property
    def is_configured(self) -> bool:
        return bool(self.account_sid and self.auth_token and self.from_number)

    @classmethod
    def from_settings(cls) -> "TwilioConfig":
        return cls(
            account_sid=settings.twilio_account_sid,
            auth_token=settings.twilio_auth_token,
            from_number=settings.twilio_from_number,
            default_country_code=settings.sms_default_country_code,
            timeout_seconds=settings.channel_timeout_seconds,
        )


class TwilioSmsSender:
    """
    SMS client using the Twilio REST API.

    Usage:
        sender = TwilioSmsSender(config)
        result = await sender.send_sms("+14155550100", "Fall suspected")
        await sender.close()
    """

    TWILIO_API_BASE = "https://api.twilio.com/2010-04-01"

    def __init__(
        self,
        config: Optional[TwilioConfig] = None,
        dry_run: bool = False,
        transport: Optional[httpx.AsyncBaseTransport] = None,
        breaker: Optional[CircuitBreaker] = None,
    ):
        self._config = config or TwilioConfig.from_settings()
        self._dry_run = dry_run
        self._transport = transport
        self._http_client: Optional[httpx.AsyncClient] = None
        self._breaker = breaker or CircuitBreaker(
            name="twilio_api", failure_threshold=5, recovery_timeout=60.0
        )

    @property
    def is_configured(self) -> bool:
        return self._config.is_configured

    def normalize(self, phone: str) -> Optional[str]:
        return normalize_phone(phone, self._config.default_country_code)

    def _client(self) -> httpx.AsyncClient:
        if self._http_client is None:
            self._http_client = httpx.AsyncClient(
                base_url=self.TWILIO_API_BASE,
                timeout=httpx.Timeout(self._config.timeout_seconds),
                auth=(self._config.account_sid, self._config.auth_token),
                transport=self._transport,
            )
        return self._http_client

    async def close(self) -> None:
        if self._http_client is not None:
            await self._http_client.aclose()
            self._http_client = None

    # ── Sending ────────────────────────────────────────────────────

    async def send_sms(self, to: str, body: str) -> SendResult:
        number = self.normalize(to) if to else None
        if number is None:
            return SendResult.failed(
                FailureReason.INVALID_RECIPIENT,
                f"Invalid or missing phone number: {to!r}" if to else "Contact has no phone number",
            )

        if not self.is_configured:
            if self._dry_run:
                sid = f"dry-run-{uuid.uuid4().hex[:12]}"
                logger.info("sms_dry_run", to=mask_phone(number), sid=sid, length=len(body))
                return SendResult.ok(sid, detail="dry run: sms not sent")
            logger.warning("twilio_not_configured")
            return SendResult.failed(FailureReason.NOT_CONFIGURED, "Twilio credentials not configured")

        result = await self._post(
            f"/Accounts/{self._config.account_sid}/Messages.json",
            {"From": self._config.from_number, "To": number, "Body": body},
        )
        if result.success:
            logger.info("sms_sent", to=mask_phone(number), sid=result.message_id)
        return result

    async def place_call(self, to: str, spoken_message: str) -> SendResult:
        """Voice call that reads `spoken_message` aloud twice."""
        number = self.normalize(to) if to else None
        if number is None:
            return SendResult.failed(FailureReason.INVALID_RECIPIENT, f"Invalid phone number: {to!r}")
        if not self.is_configured:
            return SendResult.failed(FailureReason.NOT_CONFIGURED, "Twilio credentials not configured")

        said = escape(spoken_message)
        twiml = f'<Response><Say voice="alice">{said}</Say><Pause length="1"/><Say voice="alice">{said}</Say></Response>'
        result = await self._post(
            f"/Accounts/{self._config.account_sid}/Calls.json",
            {"From": self._config.from_number, "To": number, "Twiml": twiml},
        )
        if result.success:
            logger.info("voice_call_placed", to=mask_phone(number), sid=result.message_id)
        return result

    async def _post(self, path: str, data: dict) -> SendResult:
        try:
            response = await self._breaker.call(self._request, path, data)
        except CircuitOpenError as e:
            return SendResult.failed(FailureReason.CIRCUIT_OPEN, str(e))
        except httpx.TimeoutException as e:
            logger.warning("twilio_timeout", error=str(e))
            return SendResult.failed(FailureReason.TIMEOUT, f"Twilio request timed out: {e}")
        except ProviderUnavailable as e:
            logger.error("twilio_unavailable", status=e.status_code)
            return SendResult.failed(FailureReason.PROVIDER_ERROR, str(e))
        except httpx.HTTPError as e:
            logger.error("twilio_http_error", error=str(e))
            return SendResult.failed(FailureReason.TRANSPORT_ERROR, str(e))

        payload = _json_or_empty(response)
        if response.is_success:
            return SendResult.ok(payload.get("sid"), detail=str(payload.get("status", "queued")))

        code = payload.get("code")
        message = payload.get("message") or response.text
        logger.error("twilio_request_rejected", status=response.status_code, code=code, error=message)
        reason = (
            FailureReason.INVALID_RECIPIENT
            if code in _INVALID_NUMBER_CODES
            else rejection_reason(response.status_code)
        )
        return SendResult.failed(reason, f"Twilio error {code}: {message}")

    async def _request(self, path: str, data: dict) -> httpx.Response:
        response = await self._client().post(path, data=data)
        if response.status_code >= 500:
            raise ProviderUnavailable(response.status_code, response.text[:200])
        return response


def _json_or_empty(response: httpx.Response) -> dict:
    try:
        data = response.json()
    except ValueError:
        return {}
    return data if isinstance(data, dict) else {}
