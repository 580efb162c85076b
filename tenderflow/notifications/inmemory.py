"""In-memory notification sink for tests."""

from __future__ import annotations

from typing import Any, Dict, List, Optional

from pydantic import BaseModel, Field

from ..contracts import NotificationChannel, Principal
from .base import NotificationSink


class Delivery(BaseModel):
    recipient: Principal
    channel: NotificationChannel
    message: str
    context: Dict[str, Any] = Field(default_factory=dict)


class InMemoryNotificationSink(NotificationSink):
    """Records every delivery instead of sending it."""

    def __init__(self) -> None:
        self.deliveries: List[Delivery] = []

    async def notify(
        self,
        recipient: Principal,
        channel: NotificationChannel,
        message: str,
        context: Optional[Dict[str, Any]] = None,
    ) -> None:
        self.deliveries.append(
            Delivery(
                recipient=recipient,
                channel=channel,
                message=message,
                context=context or {},
            )
        )

    def sent_to(
        self, principal_id: str, channel: Optional[NotificationChannel] = None
    ) -> List[Delivery]:
        return [
            d
            for d in self.deliveries
            if d.recipient.id == principal_id
            and (channel is None or d.channel == channel)
        ]

    def clear(self) -> None:
        self.deliveries.clear()
