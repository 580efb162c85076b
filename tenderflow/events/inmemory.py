"""In-memory event bus for tests and single-process deployments."""

from __future__ import annotations

import asyncio
from collections import defaultdict, deque
from typing import Any, AsyncIterator, Deque, Dict, List, Optional

from ..contracts import WorkflowEvent
from .base import EventPublisher


class InMemoryEventPublisher(EventPublisher):
    """Keeps every published event and a consumable queue per event name."""

    def __init__(self) -> None:
        self._queues: Dict[str, Deque[WorkflowEvent]] = defaultdict(deque)
        self._lock = asyncio.Lock()
        self.history: List[WorkflowEvent] = []

    async def publish(self, event_name: str, payload: Dict[str, Any]) -> WorkflowEvent:
        event = WorkflowEvent(name=event_name, payload=dict(payload))
        async with self._lock:
            self._queues[event_name].append(event)
            self.history.append(event)
        return event

    def events_named(self, event_name: str) -> List[WorkflowEvent]:
        return [e for e in self.history if e.name == event_name]

    async def subscribe(
        self, event_name: str, lifespan: Optional[float] = None
    ) -> AsyncIterator[WorkflowEvent]:
        loop = asyncio.get_running_loop()
        start_time = loop.time() if lifespan else None

        while True:
            if lifespan and start_time is not None:
                if loop.time() - start_time >= lifespan:
                    break

            async with self._lock:
                event = (
                    self._queues[event_name].popleft()
                    if self._queues[event_name]
                    else None
                )
            if event is not None:
                yield event
                continue

            await asyncio.sleep(0.1)
