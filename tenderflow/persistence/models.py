"""Data models that exist only for persistence."""

from __future__ import annotations

from datetime import datetime

from pydantic import BaseModel


class DueTimer(BaseModel):
    """Persisted timeout check for an active step."""

    step_id: str
    instance_id: str
    fire_at: datetime
