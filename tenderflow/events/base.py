"""Event publisher interface for workflow lifecycle and delegation events."""

from __future__ import annotations

import abc
from typing import Any, AsyncIterator, Dict, Optional

from ..contracts import WorkflowEvent


class EventPublisher(metaclass=abc.ABCMeta):
    """Abstract event bus injected into the workflow engine."""

    async def connect(self) -> None:
        """Open connection to broker (no-op by default)."""
        pass

    async def disconnect(self) -> None:
        """Close connection to broker (no-op by default)."""
        pass

    @abc.abstractmethod
    async def publish(self, event_name: str, payload: Dict[str, Any]) -> WorkflowEvent:
        """Emit ``event_name`` with ``payload`` and return the envelope sent."""
        raise NotImplementedError

    @abc.abstractmethod
    def subscribe(
        self, event_name: str, lifespan: Optional[float] = None
    ) -> AsyncIterator[WorkflowEvent]:
        """Yield events published under ``event_name``.

        Args:
            event_name: The event to listen for
            lifespan: Maximum time in seconds to keep listening. If None, runs indefinitely.
        """
        raise NotImplementedError
