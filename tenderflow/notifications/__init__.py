"""Notification sinks used for approver and action deliveries."""

from .base import NotificationSink
from .inmemory import Delivery, InMemoryNotificationSink
from .log import LoggingNotificationSink

__all__ = [
    "Delivery",
    "InMemoryNotificationSink",
    "LoggingNotificationSink",
    "NotificationSink",
]
