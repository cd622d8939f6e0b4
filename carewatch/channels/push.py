"""
Pushover push notifications.

One household device key by default; a contact may carry its own
`push_user_key`.
"""

import uuid
from typing import Optional

import httpx
import structlog
from pydantic import BaseModel

from carewatch.channels.base import FailureReason, SendResult, rejection_reason
from carewatch.channels.sms import ProviderUnavailable, _json_or_empty
from carewatch.config import settings
from carewatch.services.resilience import CircuitBreaker, CircuitOpenError

logger = structlog.get_logger(__name__)

EMERGENCY_PRIORITY = 2


class PushoverConfig(BaseModel):
    app_token: str = ""
    user_key: str = ""
    timeout_seconds: float = 10.0

    @property
    def is_configured(self) -> bool:
        return bool(self.app_token)

    @classmethod
    def from_settings(cls) -> "PushoverConfig":
        return cls(
            app_token=settings.pushover_app_token,
            user_key=settings.pushover_user_key,
            timeout_seconds=settings.channel_timeout_seconds,
        )


class PushoverSender:
    PUSHOVER_API_URL = "https://api.pushover.net/1/messages.json"

    def __init__(
        self,
        config: Optional[PushoverConfig] = None,
        dry_run: bool = False,
        transport: Optional[httpx.AsyncBaseTransport] = None,
        breaker: Optional[CircuitBreaker] = None,
    ):
        self._config = config or PushoverConfig.from_settings()
        self._dry_run = dry_run
        self._transport = transport
        self._http_client: Optional[httpx.AsyncClient] = None
        self._breaker = breaker or CircuitBreaker(
            name="pushover_api", failure_threshold=5, recovery_timeout=60.0
        )

    @property
    def is_configured(self) -> bool:
        return self._config.is_configured

    def _client(self) -> httpx.AsyncClient:
        if self._http_client is None:
            self._http_client = httpx.AsyncClient(
                timeout=httpx.Timeout(self._config.timeout_seconds),
                transport=self._transport,
            )
        return self._http_client

    async def close(self) -> None:
        if self._http_client is not None:
            await self._http_client.aclose()
            self._http_client = None

    async def send_push(
        self,
        title: str,
        message: str,
        priority: int = 0,
        user_key: Optional[str] = None,
        url: Optional[str] = None,
    ) -> SendResult:
        user = user_key or self._config.user_key

        if not self.is_configured or not user:
            if self._dry_run:
                request_id = f"dry-run-{uuid.uuid4().hex[:12]}"
                logger.info("push_dry_run", title=title, priority=priority, request_id=request_id)
                return SendResult.ok(request_id, detail="dry run: push not sent")
            if not self.is_configured:
                logger.warning("pushover_not_configured")
                return SendResult.failed(FailureReason.NOT_CONFIGURED, "Pushover token not configured")
            return SendResult.failed(FailureReason.INVALID_RECIPIENT, "No Pushover user key for recipient")

        data = {
            "token": self._config.app_token,
            "user": user,
            "title": title,
            "message": message,
            "priority": str(priority),
        }
        if priority >= EMERGENCY_PRIORITY:
            # Emergency priority requires a re-alert schedule.
            data.update(retry="60", expire="3600")
        if url:
            data["url"] = url

        try:
            response = await self._breaker.call(self._request, data)
        except CircuitOpenError as e:
            return SendResult.failed(FailureReason.CIRCUIT_OPEN, str(e))
        except httpx.TimeoutException as e:
            logger.warning("pushover_timeout", error=str(e))
            return SendResult.failed(FailureReason.TIMEOUT, f"Pushover request timed out: {e}")
        except ProviderUnavailable as e:
            logger.error("pushover_unavailable", status=e.status_code)
            return SendResult.failed(FailureReason.PROVIDER_ERROR, str(e))
        except httpx.HTTPError as e:
            logger.error("pushover_http_error", error=str(e))
            return SendResult.failed(FailureReason.TRANSPORT_ERROR, str(e))

        payload = _json_or_empty(response)
        if response.is_success and payload.get("status") == 1:
            logger.info("push_sent", request_id=payload.get("request"), priority=priority)
            return SendResult.ok(payload.get("request"), detail="accepted")

        errors = payload.get("errors") or [response.text[:200]]
        detail = "; ".join(str(e) for e in errors)
        logger.error("push_rejected", status=response.status_code, error=detail)
        reason = (
            FailureReason.INVALID_RECIPIENT
            if "user" in payload and payload.get("user") == "invalid"
            else rejection_reason(response.status_code)
        )
        return SendResult.failed(reason, f"Pushover error: {detail}")

    async def _request(self, data: dict) -> httpx.Response:
        response = await self._client().post(self.PUSHOVER_API_URL, data=data)
        if response.status_code >= 500:
            raise ProviderUnavailable(response.status_code, response.text[:200])
        return response
