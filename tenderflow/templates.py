"""Versioned workflow template management."""

from __future__ import annotations

import logging
import uuid
from datetime import datetime
from typing import Any, Callable, Dict, Iterable, List, Mapping, Optional

from pydantic import ValidationError

from .contracts import (
    InstanceStatus,
    StepBlueprint,
    WorkflowTemplate,
    WorkflowType,
    utcnow,
    validate_step_orders,
)
from .errors import InvalidStateError, NotFoundError, TemplateValidationError
from .locks import KeyedLockRegistry
from .persistence import WorkflowRepository

logger = logging.getLogger(__name__)

_UPDATABLE_FIELDS = frozenset(
    {"name", "description", "type", "entity_type", "steps", "metadata"}
)


def _blueprints(steps: Iterable[StepBlueprint | Mapping[str, Any]]) -> List[StepBlueprint]:
    try:
        return [
            s if isinstance(s, StepBlueprint) else StepBlueprint.model_validate(s)
            for s in steps
        ]
    except ValidationError as e:
        raise TemplateValidationError(f"Invalid step definition: {e}") from e


class TemplateService:
    """Template store front-end.

    Reads are unrestricted; writes are serialized per template id. Updating a
    template that still has running instances freezes it and produces the
    next version instead of mutating it.
    """

    def __init__(
        self,
        repository: WorkflowRepository,
        clock: Callable[[], datetime] = utcnow,
    ) -> None:
        self._repository = repository
        self._clock = clock
        self._locks = KeyedLockRegistry()

    async def create_template(
        self,
        name: str,
        entity_type: str,
        steps: Iterable[StepBlueprint | Mapping[str, Any]],
        type: WorkflowType | str = WorkflowType.APPROVAL,
        description: str = "",
        metadata: Optional[Dict[str, Any]] = None,
    ) -> WorkflowTemplate:
        blueprints = _blueprints(steps)
        validate_step_orders(blueprints)
        now = self._clock()
        try:
            template = WorkflowTemplate(
                name=name,
                description=description,
                type=type,
                entity_type=entity_type,
                steps=sorted(blueprints, key=lambda s: s.order),
                metadata=metadata or {},
                created_at=now,
                updated_at=now,
            )
        except ValidationError as e:
            raise TemplateValidationError(f"Invalid template: {e}") from e
        await self._repository.save_template(template)
        logger.info(f"Created workflow template {template.name!r} ({template.id})")
        return template

    async def create_from_mapping(self, data: Mapping[str, Any]) -> WorkflowTemplate:
        """Create a template from a plain mapping such as a parsed YAML file."""
        unknown = set(data) - _UPDATABLE_FIELDS
        if unknown:
            raise TemplateValidationError(
                f"Unknown template fields: {sorted(unknown)}"
            )
        for required in ("name", "entity_type", "steps"):
            if required not in data:
                raise TemplateValidationError(f"Template is missing {required!r}")
        return await self.create_template(**data)

    async def get_template(self, template_id: str) -> WorkflowTemplate:
        template = await self._repository.get_template(template_id)
        if template is None:
            raise NotFoundError(
                "Workflow template not found", {"template_id": template_id}
            )
        return template

    async def list_templates(self, active_only: bool = True) -> List[WorkflowTemplate]:
        return await self._repository.list_templates(active_only=active_only)

    async def _has_running_instances(self, template_id: str) -> bool:
        for status in (InstanceStatus.ACTIVE, InstanceStatus.PENDING):
            if await self._repository.list_instances(
                status=status, template_id=template_id
            ):
                return True
        return False

    async def update_template(self, template_id: str, **updates: Any) -> WorkflowTemplate:
        unknown = set(updates) - _UPDATABLE_FIELDS
        if unknown:
            raise TemplateValidationError(
                f"Fields cannot be updated: {sorted(unknown)}"
            )
        async with self._locks.hold(template_id):
            template = await self.get_template(template_id)
            if "steps" in updates:
                updates["steps"] = _blueprints(updates["steps"])
            merged = template.model_dump()
            merged.update(updates)
            try:
                candidate = WorkflowTemplate.model_validate(merged)
            except ValidationError as e:
                raise TemplateValidationError(f"Invalid template: {e}") from e
            validate_step_orders(candidate.steps)
            candidate.steps = candidate.ordered_steps()

            now = self._clock()
            if await self._has_running_instances(template_id):
                if not template.active:
                    raise InvalidStateError(
                        "Template version is frozen", {"template_id": template_id}
                    )
                successor = candidate.model_copy(
                    update={
                        "id": str(uuid.uuid4()),
                        "version": template.version + 1,
                        "active": True,
                        "created_at": now,
                        "updated_at": now,
                    }
                )
                template.active = False
                template.updated_at = now
                await self._repository.save_template(template)
                await self._repository.save_template(successor)
                logger.info(
                    f"Template {template.name!r} has running instances; "
                    f"created version {successor.version} ({successor.id})"
                )
                return successor

            candidate.updated_at = now
            await self._repository.save_template(candidate)
            logger.info(f"Updated workflow template {candidate.id} in place")
            return candidate

    async def deactivate_template(self, template_id: str) -> WorkflowTemplate:
        async with self._locks.hold(template_id):
            template = await self.get_template(template_id)
            template.active = False
            template.updated_at = self._clock()
            await self._repository.save_template(template)
            logger.info(f"Deactivated workflow template {template_id}")
            return template
