"""
Email sender (SMTP via aiosmtplib).

Returns the Message-ID header as the provider id.
"""

import uuid
from email.mime.text import MIMEText
from email.utils import make_msgid
from typing import Optional

import aiosmtplib
import structlog
from pydantic import BaseModel

from carewatch.channels.base import FailureReason, SendResult
from carewatch.config import settings

logger = structlog.get_logger(__name__)


class SmtpConfig(BaseModel):
    host: str = ""
    port: int = 587
    username: str = ""
    password: str = ""
    start_tls: bool = True
    from_email: str = "alerts@carewatch.local"
    timeout_seconds: float = 10.0

    @property
    def is_configured(self) -> bool:
        return bool(self.host)

    @classmethod
    def from_settings(cls) -> "SmtpConfig":
        return cls(
            host=settings.smtp_host,
            port=settings.smtp_port,
            username=settings.smtp_user,
            password=settings.smtp_password,
            start_tls=settings.smtp_start_tls,
            from_email=settings.alert_from_email,
            timeout_seconds=settings.channel_timeout_seconds,
        )


class EmailSender:
    """Sends plain-text alert emails."""

    def __init__(self, config: Optional[SmtpConfig] = None, dry_run: bool = False):
        self._config = config or SmtpConfig.from_settings()
        self._dry_run = dry_run

    @property
    def is_configured(self) -> bool:
        return self._config.is_configured

    async def send_email(self, to: str, subject: str, body: str) -> SendResult:
        if not to:
            return SendResult.failed(FailureReason.INVALID_RECIPIENT, "Contact has no email address")

        if not self.is_configured:
            if self._dry_run:
                message_id = f"dry-run-{uuid.uuid4().hex[:12]}"
                logger.info("email_dry_run", to=to, subject=subject, message_id=message_id)
                return SendResult.ok(message_id, detail="dry run: email not sent")
            logger.warning("email_not_configured")
            return SendResult.failed(FailureReason.NOT_CONFIGURED, "SMTP host not configured")

        msg = MIMEText(body, "plain", "utf-8")
        msg["Subject"] = subject
        msg["From"] = self._config.from_email
        msg["To"] = to
        msg["Message-ID"] = make_msgid(domain=self._config.from_email.split("@")[-1])

        try:
            response = await aiosmtplib.send(
                msg,
                hostname=self._config.host,
                port=self._config.port,
                username=self._config.username or None,
                password=self._config.password or None,
                start_tls=self._config.start_tls,
                timeout=self._config.timeout_seconds,
            )
        except aiosmtplib.SMTPRecipientsRefused as e:
            logger.warning("email_recipient_refused", to=to, error=str(e))
            return SendResult.failed(FailureReason.INVALID_RECIPIENT, str(e))
        except aiosmtplib.SMTPException as e:
            logger.error("email_send_failed", to=to, error=str(e))
            return SendResult.failed(FailureReason.PROVIDER_ERROR, str(e))
        except OSError as e:
            logger.error("email_transport_error", to=to, error=str(e))
            return SendResult.failed(FailureReason.TRANSPORT_ERROR, str(e))

        message_id = msg["Message-ID"]
        detail = response[1] if isinstance(response, tuple) and len(response) > 1 else "accepted"
        logger.info("email_sent", to=to, message_id=message_id)
        return SendResult.ok(message_id, detail=str(detail))
