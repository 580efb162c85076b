"""Repository abstraction for workflow state persistence."""

from __future__ import annotations

from datetime import datetime
from typing import Iterable, Protocol

from ..contracts import (
    InstanceStatus,
    WorkflowAction,
    WorkflowInstance,
    WorkflowStep,
    WorkflowTemplate,
)
from .models import DueTimer


class WorkflowRepository(Protocol):
    """Protocol for workflow state persistence backends.

    Backends hand out copies: mutating a returned record has no effect until
    it is saved again.
    """

    # Template store
    async def save_template(self, template: WorkflowTemplate) -> None:
        """Insert or replace a template version."""

    async def get_template(self, template_id: str) -> WorkflowTemplate | None:
        """Retrieve a template version by id."""

    async def list_templates(self, active_only: bool = False) -> list[WorkflowTemplate]:
        """Return templates, newest first."""

    # Instance store
    async def save_instance(self, instance: WorkflowInstance) -> None:
        """Insert or replace an instance."""

    async def get_instance(self, instance_id: str) -> WorkflowInstance | None:
        """Retrieve an instance by id."""

    async def list_instances(
        self,
        status: InstanceStatus | None = None,
        entity_type: str | None = None,
        entity_id: str | None = None,
        template_id: str | None = None,
    ) -> list[WorkflowInstance]:
        """Return matching instances, newest first."""

    async def delete_instance(self, instance_id: str) -> None:
        """Remove an instance with its steps, actions and timers."""

    async def save_steps(self, steps: Iterable[WorkflowStep]) -> None:
        """Insert or replace steps."""

    async def get_step(self, step_id: str) -> WorkflowStep | None:
        """Retrieve a step by id."""

    async def list_steps(self, instance_id: str) -> list[WorkflowStep]:
        """Return an instance's steps ordered by ``order``."""

    async def list_active_steps(self) -> list[WorkflowStep]:
        """Return every Active step across instances, oldest first."""

    async def save_action(self, action: WorkflowAction) -> None:
        """Insert or replace an action record."""

    async def list_actions(self, instance_id: str) -> list[WorkflowAction]:
        """Return an instance's action records in creation order."""

    # Timer table
    async def save_timer(self, timer: DueTimer) -> None:
        """Arm (or re-arm) the timer for ``timer.step_id``."""

    async def delete_timer(self, step_id: str) -> None:
        """Disarm the timer for ``step_id`` if present."""

    async def list_due_timers(self, now: datetime) -> list[DueTimer]:
        """Return timers with ``fire_at <= now``, earliest first."""

    async def list_timers(self) -> list[DueTimer]:
        """Return every armed timer."""
