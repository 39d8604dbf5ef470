"""
Notification Channels
====================

Channel adapters used by the alert engine. Text channels (email, Slack, SMS,
push) receive the formatted alert message; the webhook channel POSTs the raw
error context as JSON. A channel whose backend is not configured logs the
message and raises ``NotificationError``, so the alert is recorded undelivered.
"""

import asyncio
import json
import logging
import smtplib
from abc import ABC, abstractmethod
from dataclasses import dataclass
from email.message import EmailMessage
from typing import Optional

import aiohttp
from twilio.rest import Client as TwilioClient

from ..error_handling.exceptions import NotificationError
from ..error_handling.models import ErrorContext
from .rules import AlertRule, ChannelType

logger = logging.getLogger(__name__)


def format_alert_message(rule: AlertRule, error_context: ErrorContext) -> str:
    """Render the plain-text alert body."""
    return "\n".join([
        f"🚨 ALERT: {rule.name}",
        f"Severity: {error_context.severity.value.upper()}",
        f"Component: {error_context.component}",
        f"Operation: {error_context.operation}",
        f"Error: {error_context.error.message}",
        f"Time: {error_context.timestamp.isoformat()}",
        f"Campaign: {error_context.campaign_id}",
        f"Recovery Attempts: {error_context.recovery_attempts}",
    ])


class INotificationChannel(ABC):
    """Interface for notification channels."""

    channel_type: ChannelType

    @abstractmethod
    async def send(self, target: str, message: str, error_context: ErrorContext) -> None:
        """
        Deliver one notification.

        Raises:
            NotificationError: If delivery fails
        """
        pass


@dataclass
class SMTPConfig:
    host: Optional[str] = None
    port: int = 587
    username: Optional[str] = None
    password: Optional[str] = None
    from_address: str = "alerts@recoverycore.local"
    use_tls: bool = True
    timeout: float = 10.0


class EmailChannel(INotificationChannel):
    """Sends alerts over SMTP from a worker thread."""

    channel_type = ChannelType.EMAIL

    def __init__(self, config: Optional[SMTPConfig] = None):
        self.config = config or SMTPConfig()

    def _send_sync(self, target: str, subject: str, body: str):
        message = EmailMessage()
        message["Subject"] = subject
        message["From"] = self.config.from_address
        message["To"] = target
        message.set_content(body)

        with smtplib.SMTP(self.config.host, self.config.port, timeout=self.config.timeout) as smtp:
            if self.config.use_tls:
                smtp.starttls()
            if self.config.username:
                smtp.login(self.config.username, self.config.password or "")
            smtp.send_message(message)

    async def send(self, target: str, message: str, error_context: ErrorContext) -> None:
        if not self.config.host:
            logger.warning(f"Email alert to {target} not sent: {message}")
            raise NotificationError("SMTP not configured")

        subject = message.splitlines()[0] if message else "Alert"
        try:
            await asyncio.to_thread(self._send_sync, target, subject, message)
        except (smtplib.SMTPException, OSError) as e:
            raise NotificationError(f"Email to {target} failed: {e}", original_error=e)

        logger.info(f"Email alert sent to {target}")


async def _post_json(url: str, payload: str, timeout: float):
    client_timeout = aiohttp.ClientTimeout(total=timeout)
    try:
        async with aiohttp.ClientSession(timeout=client_timeout) as session:
            async with session.post(
                url,
                data=payload,
                headers={"Content-Type": "application/json"}
            ) as response:
                if response.status >= 400:
                    error_text = await response.text()
                    raise NotificationError(f"POST {url} returned {response.status}: {error_text}")
    except aiohttp.ClientError as e:
        raise NotificationError(f"POST {url} failed: {e}", original_error=e)


class SlackChannel(INotificationChannel):
    """Posts alerts to a Slack incoming webhook."""

    channel_type = ChannelType.SLACK

    def __init__(self, webhook_url: Optional[str] = None, timeout: float = 10.0):
        self.webhook_url = webhook_url
        self.timeout = timeout

    async def send(self, target: str, message: str, error_context: ErrorContext) -> None:
        url = target if target.startswith("http") else self.webhook_url
        if not url:
            logger.warning(f"Slack alert to {target} not sent: {message}")
            raise NotificationError("Slack webhook not configured")

        payload = {"text": message}
        if not target.startswith("http"):
            payload["channel"] = target

        await _post_json(url, json.dumps(payload), self.timeout)
        logger.info(f"Slack alert sent to {target}")


class WebhookChannel(INotificationChannel):
    """POSTs the error context JSON to the target URL."""

    channel_type = ChannelType.WEBHOOK

    def __init__(self, timeout: float = 10.0):
        self.timeout = timeout

    async def send(self, target: str, message: str, error_context: ErrorContext) -> None:
        await _post_json(target, json.dumps(error_context.to_dict(), default=str), self.timeout)
        logger.info(f"Webhook alert sent to {target}")


class SMSChannel(INotificationChannel):
    """Sends alerts as SMS through Twilio."""

    channel_type = ChannelType.SMS

    def __init__(self, account_sid: Optional[str] = None, auth_token: Optional[str] = None,
                 from_number: Optional[str] = None):
        self.from_number = from_number
        self.client = None
        if account_sid and auth_token:
            self.client = TwilioClient(account_sid, auth_token)

    async def send(self, target: str, message: str, error_context: ErrorContext) -> None:
        if self.client is None or not self.from_number:
            logger.warning(f"SMS alert to {target} not sent: {message}")
            raise NotificationError("Twilio not configured")

        try:
            sms = await asyncio.to_thread(
                self.client.messages.create, body=message[:1600], from_=self.from_number, to=target
            )
        except Exception as e:
            raise NotificationError(f"SMS to {target} failed: {e}", original_error=e)

        logger.info(f"SMS alert sent to {target}: {sms.sid}")


class PushChannel(INotificationChannel):
    """Log-only push channel."""

    channel_type = ChannelType.PUSH

    async def send(self, target: str, message: str, error_context: ErrorContext) -> None:
        logger.warning(f"Alert: {message}")
