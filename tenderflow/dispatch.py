"""Deferred side-effect dispatch.

State mutations happen under the instance lock; notifications, actions and
lifecycle events are queued meanwhile and delivered after the lock is
released, strictly in the order they were queued.
"""

from __future__ import annotations

import logging
from collections import deque
from dataclasses import dataclass
from typing import Awaitable, Callable, Deque

logger = logging.getLogger(__name__)


@dataclass
class PendingDispatch:
    label: str
    run: Callable[[], Awaitable[None]]


class DispatchQueue:
    """FIFO of side effects collected during one engine operation."""

    def __init__(self) -> None:
        self._pending: Deque[PendingDispatch] = deque()

    def enqueue(self, label: str, run: Callable[[], Awaitable[None]]) -> None:
        self._pending.append(PendingDispatch(label=label, run=run))

    def __len__(self) -> int:
        return len(self._pending)

    async def drain(self) -> int:
        """Deliver everything queued; a failing item never stops the rest."""
        delivered = 0
        while self._pending:
            item = self._pending.popleft()
            try:
                await item.run()
            except Exception:
                logger.exception(f"Dispatch of {item.label} failed")
            else:
                delivered += 1
        return delivered
