"""Notification dispatcher for routing delivery notices to channels.

The queue calls :meth:`NotificationDispatcher.notify`, which is
synchronous and fire-and-forget: it schedules the async dispatch on the
running loop and returns immediately, so a slow channel never holds up a
delivery.
"""

from __future__ import annotations

import asyncio
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from datetime import UTC, datetime
from enum import Enum
from typing import Any, Protocol

from postbridge.logging import get_logger

log = get_logger("postbridge.notifications.dispatcher")


class NotificationKind(str, Enum):
    """Kinds of notices the queue emits."""

    SUCCESS = "success"
    FAILURE = "failure"


class NotificationPriority(Enum):
    """Priority levels for notifications."""

    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    CRITICAL = "critical"


PRIORITY_ORDER = {
    NotificationPriority.LOW: 0,
    NotificationPriority.MEDIUM: 1,
    NotificationPriority.HIGH: 2,
    NotificationPriority.CRITICAL: 3,
}

_DEFAULT_PRIORITY = {
    NotificationKind.SUCCESS: NotificationPriority.LOW,
    NotificationKind.FAILURE: NotificationPriority.HIGH,
}


@dataclass
class Notification:
    """A notification to be sent."""

    kind: NotificationKind
    title: str
    message: str
    priority: NotificationPriority = NotificationPriority.MEDIUM
    timestamp: datetime = field(default_factory=lambda: datetime.now(tz=UTC))
    metadata: dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        return {
            "kind": self.kind.value,
            "title": self.title,
            "message": self.message,
            "priority": self.priority.value,
            "timestamp": self.timestamp.isoformat(),
            "metadata": self.metadata,
        }


class NotificationSink(Protocol):
    """What the queue needs from a notifier."""

    def notify(
        self, kind: NotificationKind, title: str, message: str, **metadata: Any
    ) -> None: ...


class NotificationChannel(ABC):
    """Abstract base class for notification channels."""

    @abstractmethod
    async def send(self, notification: Notification) -> bool:
        """Send a notification.

        Args:
            notification: The notification to send.

        Returns:
            True if sent successfully, False otherwise.
        """

    @abstractmethod
    def supports_priority(self, priority: NotificationPriority) -> bool:
        """Check if this channel supports a priority level."""


class NotificationDispatcher:
    """Dispatches notifications to registered channels.

    Supports multiple channels, per-kind filtering and priority-based
    routing.

    Args:
        enabled: When False, :meth:`notify` drops everything.
    """

    def __init__(self, enabled: bool = True) -> None:
        self._enabled = enabled
        self._channels: list[NotificationChannel] = []
        self._kind_filters: dict[NotificationKind, bool] = {}
        self._pending: set[asyncio.Task[int]] = set()

    def register_channel(self, channel: NotificationChannel) -> None:
        """Register a notification channel."""
        self._channels.append(channel)
        log.info("channel_registered", channel=channel.__class__.__name__)

    def set_kind_enabled(self, kind: NotificationKind, enabled: bool) -> None:
        """Enable or disable a notification kind."""
        self._kind_filters[kind] = enabled

    def is_kind_enabled(self, kind: NotificationKind) -> bool:
        """Check if a notification kind is enabled (default is True)."""
        return self._enabled and self._kind_filters.get(kind, True)

    def notify(
        self, kind: NotificationKind, title: str, message: str, **metadata: Any
    ) -> None:
        """Schedule a notification without waiting for delivery.

        Must be called from inside a running event loop.
        """
        kind = NotificationKind(kind)
        if not self.is_kind_enabled(kind):
            log.debug("notification_filtered", kind=kind.value)
            return
        notification = Notification(
            kind=kind,
            title=title,
            message=message,
            priority=_DEFAULT_PRIORITY[kind],
            metadata=metadata,
        )
        task = asyncio.get_running_loop().create_task(self.dispatch(notification))
        self._pending.add(task)
        task.add_done_callback(self._pending.discard)

    async def dispatch(self, notification: Notification) -> int:
        """Dispatch a notification to all appropriate channels.

        Returns:
            Number of channels that successfully received the notification.
        """
        if not self.is_kind_enabled(notification.kind):
            log.debug("notification_filtered", kind=notification.kind.value)
            return 0

        sent_count = 0
        for channel in self._channels:
            if channel.supports_priority(notification.priority):
                try:
                    if await channel.send(notification):
                        sent_count += 1
                except Exception as e:
                    log.error(
                        "channel_send_failed",
                        channel=channel.__class__.__name__,
                        error=str(e),
                    )

        if sent_count > 0:
            log.debug(
                "notification_dispatched",
                kind=notification.kind.value,
                priority=notification.priority.value,
                channels=sent_count,
            )
        else:
            log.warning(
                "notification_not_sent",
                kind=notification.kind.value,
                reason="no channels available",
            )
        return sent_count

    async def drain(self) -> None:
        """Wait for scheduled notifications to finish."""
        if self._pending:
            await asyncio.gather(*self._pending, return_exceptions=True)
