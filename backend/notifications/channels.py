"""Notification channel implementations.

Each channel handles delivery for one transport (email, Slack, webhook).
The NotificationManager dispatches to the appropriate channel.
"""

import asyncio
import logging
import smtplib
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from datetime import datetime, timezone
from email.mime.multipart import MIMEMultipart
from email.mime.text import MIMEText
from typing import Any, Optional

import httpx

from core.constants import NotificationChannelType

logger = logging.getLogger(__name__)


# ─── Data Types ────────────────────────────────────────────────

@dataclass
class Notification:
    """A notification to be delivered."""
    title: str
    message: str
    channel: NotificationChannelType
    recipient: str = ""  # email address, Slack channel, webhook URL
    metadata: dict[str, Any] = field(default_factory=dict)
    created_at: str = field(default_factory=lambda: datetime.now(timezone.utc).isoformat())


@dataclass
class DeliveryResult:
    """Result of a notification delivery attempt."""
    success: bool
    channel: NotificationChannelType
    recipient: str
    message: str = ""
    error: Optional[str] = None
    delivered_at: Optional[str] = None


# ─── Base Channel ──────────────────────────────────────────────

class BaseChannel(ABC):
    """Abstract base for notification channels."""

    channel_type: NotificationChannelType

    @abstractmethod
    async def send(self, notification: Notification) -> DeliveryResult:
        """Send a notification through this channel."""
        ...

    def _failed(self, notification: Notification, error: str) -> DeliveryResult:
        logger.error(f"{self.channel_type.value} send failed: {error}")
        return DeliveryResult(
            success=False,
            channel=self.channel_type,
            recipient=notification.recipient,
            error=error,
        )

    def _delivered(self, recipient: str, message: str) -> DeliveryResult:
        return DeliveryResult(
            success=True,
            channel=self.channel_type,
            recipient=recipient,
            message=message,
            delivered_at=datetime.now(timezone.utc).isoformat(),
        )


class _HttpChannel(BaseChannel):
    """Channel that posts JSON over httpx; tests inject a mock-transport client."""

    def __init__(self, config: dict = None, client: Optional[httpx.AsyncClient] = None):
        self.config = config or {}
        self._client = client

    async def _post(self, method: str, url: str, payload: dict, headers: dict = None) -> httpx.Response:
        if self._client is not None:
            response = await self._client.request(method, url, json=payload, headers=headers)
        else:
            async with httpx.AsyncClient(timeout=self.config.get("timeout", 10)) as client:
                response = await client.request(method, url, json=payload, headers=headers)
        response.raise_for_status()
        return response


# ─── Email Channel ─────────────────────────────────────────────

class EmailChannel(BaseChannel):
    """Send notifications via SMTP email.

    Config:
        smtp_host, smtp_port, smtp_user, smtp_password,
        from_address, use_tls
    """

    channel_type = NotificationChannelType.EMAIL

    def __init__(self, config: dict = None):
        self.config = config or {}

    async def send(self, notification: Notification) -> DeliveryResult:
        """Send email notification."""
        if not self.config.get("smtp_host"):
            return self._failed(notification, "Email channel is not configured (SMTP_HOST)")
        try:
            smtp_host = self.config["smtp_host"]
            smtp_port = self.config.get("smtp_port", 587)
            smtp_user = self.config.get("smtp_user", "")
            smtp_pass = self.config.get("smtp_password", "")
            from_addr = self.config.get("from_address", "workflows@localhost")
            use_tls = self.config.get("use_tls", True)

            msg = MIMEMultipart("alternative")
            msg["Subject"] = notification.title
            msg["From"] = from_addr
            msg["To"] = notification.recipient
            msg.attach(MIMEText(notification.message, "plain"))

            # smtplib blocks; run it off the event loop
            loop = asyncio.get_running_loop()
            await loop.run_in_executor(
                None,
                lambda: self._send_smtp(
                    smtp_host, smtp_port, smtp_user, smtp_pass,
                    from_addr, notification.recipient, msg, use_tls,
                ),
            )
            return self._delivered(notification.recipient, "Email sent")

        except (smtplib.SMTPException, OSError) as e:
            return self._failed(notification, f"Email delivery failed: {e}")

    def _send_smtp(self, host, port, user, password, from_addr, to_addr, msg, use_tls):
        """Synchronous SMTP send."""
        with smtplib.SMTP(host, port) as server:
            if use_tls:
                server.starttls()
            if user and password:
                server.login(user, password)
            server.sendmail(from_addr, to_addr, msg.as_string())


# ─── Slack Channel ─────────────────────────────────────────────

class SlackChannel(_HttpChannel):
    """Send notifications to Slack via an incoming webhook.

    Config:
        webhook_url
    """

    channel_type = NotificationChannelType.SLACK

    async def send(self, notification: Notification) -> DeliveryResult:
        webhook_url = self.config.get("webhook_url")
        if not webhook_url:
            return self._failed(notification, "No Slack webhook URL configured")

        payload = {
            "channel": notification.recipient or None,
            "text": notification.title or notification.message,
            "blocks": [
                {
                    "type": "section",
                    "text": {"type": "mrkdwn", "text": notification.message},
                },
            ],
        }
        if notification.title:
            payload["blocks"].insert(0, {
                "type": "header",
                "text": {"type": "plain_text", "text": notification.title},
            })

        try:
            await self._post("POST", webhook_url, payload)
        except httpx.HTTPError as e:
            return self._failed(notification, f"Slack delivery failed: {e}")
        return self._delivered(notification.recipient, "Slack message sent")


# ─── Webhook Channel ──────────────────────────────────────────

class WebhookChannel(_HttpChannel):
    """Send notifications to an HTTP endpoint (the recipient is the URL).

    Config:
        method: HTTP method (default POST)
        headers: Additional headers
    """

    channel_type = NotificationChannelType.WEBHOOK

    async def send(self, notification: Notification) -> DeliveryResult:
        url = notification.recipient or self.config.get("url")
        if not url:
            return self._failed(notification, "No webhook URL")

        method = self.config.get("method", "POST").upper()
        headers = {
            "Content-Type": "application/json",
            "X-Workflow-Event": "notification",
            **self.config.get("headers", {}),
        }
        payload = {
            "title": notification.title,
            "message": notification.message,
            "metadata": notification.metadata,
            "timestamp": notification.created_at,
        }

        try:
            response = await self._post(method, url, payload, headers)
        except httpx.HTTPError as e:
            return self._failed(notification, f"Webhook delivery failed: {e}")
        return self._delivered(url, f"Webhook delivered (HTTP {response.status_code})")
