"""Delivery success and failure notifications."""

from postbridge.notifications.channels import LogChannel, WebhookChannel
from postbridge.notifications.dispatcher import (
    Notification,
    NotificationChannel,
    NotificationDispatcher,
    NotificationKind,
    NotificationPriority,
    NotificationSink,
)

__all__ = [
    "LogChannel",
    "Notification",
    "NotificationChannel",
    "NotificationDispatcher",
    "NotificationKind",
    "NotificationPriority",
    "NotificationSink",
    "WebhookChannel",
]
