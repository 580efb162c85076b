"""Notification sink interface."""

from __future__ import annotations

import abc
from typing import Any, Dict, Optional

from ..contracts import NotificationChannel, Principal


class NotificationSink(metaclass=abc.ABCMeta):
    """Delivers messages to principals over a channel.

    Delivery is fire-and-forget from the engine's perspective: a raised
    exception is logged and recorded, never propagated into a transition.
    """

    @abc.abstractmethod
    async def notify(
        self,
        recipient: Principal,
        channel: NotificationChannel,
        message: str,
        context: Optional[Dict[str, Any]] = None,
    ) -> None:
        raise NotImplementedError
