from __future__ import annotations

import os
from typing import List, Literal, Optional

import yaml
from pydantic import BaseModel, Field

from .constants import (
    DEFAULT_POLL_INTERVAL_SECONDS,
    DEFAULT_WEBHOOK_MAX_RETRIES,
    DEFAULT_WEBHOOK_TIMEOUT_SECONDS,
)
from .contracts import Principal


class RedisConfig(BaseModel):
    """Configuration for the Redis event bus."""

    host: str = "localhost"
    port: int = 6379
    db: int = 0
    password: Optional[str] = None
    channel_prefix: str = "tenderflow"


class EventBusConfig(BaseModel):
    """Event bus configuration settings."""

    backend: Literal["inmemory", "redis"] = "inmemory"
    redis: RedisConfig = RedisConfig()


class SchedulerConfig(BaseModel):
    """Timeout scheduler settings."""

    poll_interval_seconds: float = DEFAULT_POLL_INTERVAL_SECONDS
    recovery_sweep: bool = True


class WebhookConfig(BaseModel):
    timeout_seconds: float = DEFAULT_WEBHOOK_TIMEOUT_SECONDS
    max_retries: int = DEFAULT_WEBHOOK_MAX_RETRIES


class NotificationConfig(BaseModel):
    approval_link_base: str = "http://localhost:3000"


class TenderflowConfig(BaseModel):
    """Top-level configuration model."""

    events: EventBusConfig = EventBusConfig()
    scheduler: SchedulerConfig = SchedulerConfig()
    webhooks: WebhookConfig = WebhookConfig()
    notifications: NotificationConfig = NotificationConfig()
    principals: List[Principal] = Field(default_factory=list)
    database_url: Optional[str] = None


def load_config(path: Optional[str] = None) -> TenderflowConfig:
    """Load configuration from YAML file.

    Args:
        path: Optional path to config file. Falls back to TENDERFLOW_CONFIG env
            variable or 'config.yaml' in the current directory.
    """

    config_path = path or os.getenv("TENDERFLOW_CONFIG", "config.yaml")
    if os.path.exists(config_path):
        with open(config_path) as f:
            data = yaml.safe_load(f) or {}
        config = TenderflowConfig(**data)
    else:
        config = TenderflowConfig()

    env_db_url = os.getenv("TENDERFLOW_DATABASE_URL") or os.getenv("DATABASE_URL")
    if env_db_url:
        config.database_url = env_db_url
    env_bus = os.getenv("TENDERFLOW_EVENT_BUS")
    if env_bus:
        config.events.backend = env_bus.lower()
    return config
