"""Notification channels: structured log output and an HTTP webhook."""

from __future__ import annotations

import httpx

from postbridge.logging import get_logger
from postbridge.notifications.dispatcher import (
    PRIORITY_ORDER,
    Notification,
    NotificationChannel,
    NotificationKind,
    NotificationPriority,
)

log = get_logger("postbridge.notifications.channels")


class LogChannel(NotificationChannel):
    """Writes every notification to the structured log."""

    def supports_priority(self, priority: NotificationPriority) -> bool:
        return True

    async def send(self, notification: Notification) -> bool:
        emit = log.warning if notification.kind == NotificationKind.FAILURE else log.info
        emit(
            "delivery_notification",
            title=notification.title,
            message=notification.message,
            **notification.metadata,
        )
        return True


class WebhookChannel(NotificationChannel):
    """POSTs notifications as JSON to a fixed URL."""

    def __init__(
        self,
        url: str,
        min_priority: NotificationPriority = NotificationPriority.LOW,
        timeout: float = 10.0,
    ):
        """Initialize the webhook channel.

        Args:
            url: Endpoint receiving the JSON body.
            min_priority: Minimum priority level to send.
            timeout: Request timeout in seconds.
        """
        self._url = url
        self._min_priority = min_priority
        self._timeout = timeout
        self._client: httpx.AsyncClient | None = None

    async def _get_client(self) -> httpx.AsyncClient:
        if self._client is None:
            self._client = httpx.AsyncClient(timeout=self._timeout)
        return self._client

    async def close(self) -> None:
        if self._client is not None:
            await self._client.aclose()
            self._client = None

    def supports_priority(self, priority: NotificationPriority) -> bool:
        return PRIORITY_ORDER[priority] >= PRIORITY_ORDER[self._min_priority]

    async def send(self, notification: Notification) -> bool:
        client = await self._get_client()
        try:
            response = await client.post(self._url, json=notification.to_dict())
        except httpx.HTTPError as e:
            log.warning("notification_webhook_failed", url=self._url, error=str(e))
            return False
        if response.status_code >= 400:
            log.warning(
                "notification_webhook_rejected",
                url=self._url,
                status_code=response.status_code,
            )
            return False
        return True
