"""Notification sink that writes deliveries to the log."""

from __future__ import annotations

import logging
from typing import Any, Dict, Optional

from ..contracts import NotificationChannel, Principal
from .base import NotificationSink

logger = logging.getLogger(__name__)


class LoggingNotificationSink(NotificationSink):
    async def notify(
        self,
        recipient: Principal,
        channel: NotificationChannel,
        message: str,
        context: Optional[Dict[str, Any]] = None,
    ) -> None:
        address = {
            NotificationChannel.EMAIL: recipient.email,
            NotificationChannel.SMS: recipient.phone,
        }.get(channel, recipient.id)
        logger.info(f"[{channel.value}] -> {address}: {message}")
