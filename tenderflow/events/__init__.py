"""Event bus factory and initialization."""

from __future__ import annotations

import os
from typing import Optional

from ..config import TenderflowConfig, load_config
from .base import EventPublisher
from .inmemory import InMemoryEventPublisher


def get_event_publisher(
    backend: Optional[str] = None, config: Optional[TenderflowConfig] = None
) -> EventPublisher:
    """Factory function to get the configured event publisher."""

    config = config or load_config()
    backend = (
        backend or os.getenv("TENDERFLOW_EVENT_BUS") or config.events.backend
    ).lower()

    if backend == "inmemory":
        return InMemoryEventPublisher()
    elif backend == "redis":
        from .redis import RedisEventPublisher

        redis_conf = config.events.redis
        return RedisEventPublisher(
            host=redis_conf.host,
            port=redis_conf.port,
            db=redis_conf.db,
            password=redis_conf.password,
            channel_prefix=redis_conf.channel_prefix,
        )
    else:
        raise ValueError(f"Unsupported event bus backend: {backend}")


__all__ = ["EventPublisher", "InMemoryEventPublisher", "get_event_publisher"]
