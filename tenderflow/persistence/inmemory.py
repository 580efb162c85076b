"""In-memory implementation of the workflow repository."""

from __future__ import annotations

from datetime import datetime
from typing import Dict, Iterable

from ..contracts import (
    InstanceStatus,
    StepStatus,
    WorkflowAction,
    WorkflowInstance,
    WorkflowStep,
    WorkflowTemplate,
)
from .models import DueTimer
from .repository import WorkflowRepository


class InMemoryWorkflowRepository(WorkflowRepository):
    """Store workflow state in local memory.

    Useful for tests or when no database is configured. Data is not
    persisted across process restarts.
    """

    def __init__(self) -> None:
        self._templates: Dict[str, WorkflowTemplate] = {}
        self._instances: Dict[str, WorkflowInstance] = {}
        self._steps: Dict[str, WorkflowStep] = {}
        self._actions: Dict[str, WorkflowAction] = {}
        self._timers: Dict[str, DueTimer] = {}

    # ------------------------------------------------------------------
    async def save_template(self, template: WorkflowTemplate) -> None:
        self._templates[template.id] = template.model_copy(deep=True)

    async def get_template(self, template_id: str) -> WorkflowTemplate | None:
        template = self._templates.get(template_id)
        return template.model_copy(deep=True) if template else None

    async def list_templates(self, active_only: bool = False) -> list[WorkflowTemplate]:
        templates = [
            t.model_copy(deep=True)
            for t in self._templates.values()
            if t.active or not active_only
        ]
        return sorted(templates, key=lambda t: t.created_at, reverse=True)

    # ------------------------------------------------------------------
    async def save_instance(self, instance: WorkflowInstance) -> None:
        self._instances[instance.id] = instance.model_copy(deep=True)

    async def get_instance(self, instance_id: str) -> WorkflowInstance | None:
        instance = self._instances.get(instance_id)
        return instance.model_copy(deep=True) if instance else None

    async def list_instances(
        self,
        status: InstanceStatus | None = None,
        entity_type: str | None = None,
        entity_id: str | None = None,
        template_id: str | None = None,
    ) -> list[WorkflowInstance]:
        matches = [
            i.model_copy(deep=True)
            for i in self._instances.values()
            if (status is None or i.status == status)
            and (entity_type is None or i.entity_type == entity_type)
            and (entity_id is None or i.entity_id == entity_id)
            and (template_id is None or i.template_id == template_id)
        ]
        return sorted(matches, key=lambda i: i.created_at, reverse=True)

    async def delete_instance(self, instance_id: str) -> None:
        self._instances.pop(instance_id, None)
        for step_id in [s.id for s in self._steps.values() if s.instance_id == instance_id]:
            self._steps.pop(step_id)
            self._timers.pop(step_id, None)
        for action_id in [
            a.id for a in self._actions.values() if a.instance_id == instance_id
        ]:
            self._actions.pop(action_id)

    # ------------------------------------------------------------------
    async def save_steps(self, steps: Iterable[WorkflowStep]) -> None:
        for step in steps:
            self._steps[step.id] = step.model_copy(deep=True)

    async def get_step(self, step_id: str) -> WorkflowStep | None:
        step = self._steps.get(step_id)
        return step.model_copy(deep=True) if step else None

    async def list_steps(self, instance_id: str) -> list[WorkflowStep]:
        steps = [
            s.model_copy(deep=True)
            for s in self._steps.values()
            if s.instance_id == instance_id
        ]
        return sorted(steps, key=lambda s: s.order)

    async def list_active_steps(self) -> list[WorkflowStep]:
        steps = [
            s.model_copy(deep=True)
            for s in self._steps.values()
            if s.status == StepStatus.ACTIVE
        ]
        return sorted(steps, key=lambda s: s.created_at)

    # ------------------------------------------------------------------
    async def save_action(self, action: WorkflowAction) -> None:
        self._actions[action.id] = action.model_copy(deep=True)

    async def list_actions(self, instance_id: str) -> list[WorkflowAction]:
        # dicts keep insertion order, which is creation order for actions
        return [
            a.model_copy(deep=True)
            for a in self._actions.values()
            if a.instance_id == instance_id
        ]

    # ------------------------------------------------------------------
    async def save_timer(self, timer: DueTimer) -> None:
        self._timers[timer.step_id] = timer.model_copy()

    async def delete_timer(self, step_id: str) -> None:
        self._timers.pop(step_id, None)

    async def list_due_timers(self, now: datetime) -> list[DueTimer]:
        due = [t.model_copy() for t in self._timers.values() if t.fire_at <= now]
        return sorted(due, key=lambda t: t.fire_at)

    async def list_timers(self) -> list[DueTimer]:
        return sorted(
            (t.model_copy() for t in self._timers.values()), key=lambda t: t.fire_at
        )
