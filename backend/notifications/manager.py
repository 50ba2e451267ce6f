"""Notification Manager — dispatcher used by notification steps.

Implements the engine's Notifier interface: a failed delivery raises
AdapterError so the step (and, unless notifications are best effort, the
run) fails with the channel's message.
"""

import logging
from typing import Any, Optional

import httpx

from app.config import Settings
from core.constants import NotificationChannelType
from core.exceptions import AdapterError
from notifications.channels import (
    BaseChannel,
    DeliveryResult,
    EmailChannel,
    Notification,
    SlackChannel,
    WebhookChannel,
)
from workflow.interfaces import Notifier

logger = logging.getLogger(__name__)


class NotificationManager(Notifier):
    """Central notification dispatcher. Use get_notification_manager()."""

    def __init__(self):
        self._channels: dict[NotificationChannelType, BaseChannel] = {}

    def register_channel(self, channel: BaseChannel) -> None:
        """Register (or replace) a notification channel."""
        self._channels[channel.channel_type] = channel
        logger.info(f"Notification channel registered: {channel.channel_type.value}")

    def configure_from_settings(self, settings: Settings, client: Optional[httpx.AsyncClient] = None) -> None:
        """Register the email, Slack and webhook channels from app settings."""
        self.register_channel(EmailChannel({
            "smtp_host": settings.SMTP_HOST,
            "smtp_port": settings.SMTP_PORT,
            "smtp_user": settings.SMTP_USER,
            "smtp_password": settings.SMTP_PASSWORD,
            "from_address": settings.SMTP_FROM,
        }))
        self.register_channel(SlackChannel({"webhook_url": settings.SLACK_WEBHOOK_URL}, client=client))
        self.register_channel(WebhookChannel({}, client=client))

    async def deliver(self, notification: Notification) -> DeliveryResult:
        channel = self._channels.get(notification.channel)
        if not channel:
            return DeliveryResult(
                success=False,
                channel=notification.channel,
                recipient=notification.recipient,
                error=f"Channel not configured: {notification.channel.value}",
            )

        result = await channel.send(notification)
        if result.success:
            logger.info(f"Notification sent via {notification.channel.value} to {result.recipient}")
        else:
            logger.warning(f"Notification failed via {notification.channel.value}: {result.error}")
        return result

    async def send(
        self,
        channel: NotificationChannelType,
        recipient: str,
        message: str,
        title: Optional[str] = None,
        context: Optional[dict[str, Any]] = None,
    ) -> None:
        result = await self.deliver(Notification(
            title=title or "Workflow notification",
            message=message,
            channel=channel,
            recipient=recipient,
            metadata=context or {},
        ))
        if not result.success:
            raise AdapterError(result.error or f"{channel.value} delivery failed")

    def get_status(self) -> dict:
        return {"channels": sorted(c.value for c in self._channels)}


# ─── Singleton ─────────────────────────────────────────────────

_manager: Optional[NotificationManager] = None


def get_notification_manager() -> NotificationManager:
    global _manager
    if _manager is None:
        from app.config import get_settings

        _manager = NotificationManager()
        _manager.configure_from_settings(get_settings())
    return _manager
