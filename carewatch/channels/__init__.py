"""
Notification channels.

Components:
- email: SMTP via aiosmtplib
- sms: Twilio REST via httpx
- push: Pushover via httpx
- emergency: emergency-services SMS + optional voice call
"""

from dataclasses import dataclass

from carewatch.channels.email import EmailSender
from carewatch.channels.emergency import EmergencySender
from carewatch.channels.push import PushoverSender
from carewatch.channels.sms import TwilioSmsSender
from carewatch.config import settings


@dataclass
class ChannelSenders:
    email: EmailSender
    sms: TwilioSmsSender
    push: PushoverSender
    emergency: EmergencySender

    @classmethod
    def from_settings(cls) -> "ChannelSenders":
        dry_run = settings.notifications_dry_run
        sms = TwilioSmsSender(dry_run=dry_run)
        return cls(
            email=EmailSender(dry_run=dry_run),
            sms=sms,
            push=PushoverSender(dry_run=dry_run),
            emergency=EmergencySender(sms),
        )

    async def close(self) -> None:
        await self.sms.close()
        await self.push.close()
