"""Redis event bus for cross-process delivery."""

from __future__ import annotations

import asyncio
import logging
from typing import Any, AsyncIterator, Dict, Optional

try:
    import redis.asyncio as redis
except ImportError:
    redis = None

from pydantic import ValidationError

from ..contracts import WorkflowEvent
from .base import EventPublisher

logger = logging.getLogger(__name__)


class RedisEventPublisher(EventPublisher):
    """Pushes JSON event envelopes onto one Redis list per event name."""

    def __init__(
        self,
        host: str = "localhost",
        port: int = 6379,
        db: int = 0,
        password: Optional[str] = None,
        channel_prefix: str = "tenderflow",
    ) -> None:
        if redis is None:
            raise ImportError("redis package is required for RedisEventPublisher")

        self.host = host
        self.port = port
        self.db = db
        self.password = password
        self.channel_prefix = channel_prefix
        self._redis: Optional[Any] = None

    def _queue_name(self, event_name: str) -> str:
        return f"{self.channel_prefix}:{event_name}"

    async def connect(self) -> None:
        self._redis = redis.Redis(
            host=self.host,
            port=self.port,
            db=self.db,
            password=self.password,
            decode_responses=True,
        )
        await self._redis.ping()

    async def disconnect(self) -> None:
        if self._redis:
            await self._redis.aclose()
            self._redis = None

    async def publish(self, event_name: str, payload: Dict[str, Any]) -> WorkflowEvent:
        if not self._redis:
            await self.connect()

        event = WorkflowEvent(name=event_name, payload=dict(payload))
        await self._redis.lpush(self._queue_name(event_name), event.to_json())
        return event

    async def subscribe(
        self, event_name: str, lifespan: Optional[float] = None
    ) -> AsyncIterator[WorkflowEvent]:
        if not self._redis:
            await self.connect()

        queue_name = self._queue_name(event_name)
        loop = asyncio.get_running_loop()
        start_time = loop.time() if lifespan else None

        while True:
            if lifespan and start_time is not None:
                if loop.time() - start_time >= lifespan:
                    break

            result = await self._redis.brpop(queue_name, timeout=1)
            if result:
                _, raw = result
                try:
                    yield WorkflowEvent.from_json(raw)
                except ValidationError as e:
                    logger.warning(f"Dropping malformed event on {queue_name}: {e}")
                    continue

            await asyncio.sleep(0.01)
