"""Core data contracts for the tenderflow workflow engine.

Templates are immutable blueprints; instances, steps and actions are the
mutable records materialised from them. Every status field is an enum and
changes only through :func:`transition_step` / :func:`transition_instance`,
which consult explicit transition tables.
"""

from __future__ import annotations

import uuid
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, FrozenSet, List, Optional

from pydantic import BaseModel, Field

from .errors import InvalidStateError, TemplateValidationError


def _new_id() -> str:
    return str(uuid.uuid4())


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class WorkflowType(str, Enum):
    APPROVAL = "approval"
    REVIEW = "review"
    ESCALATION = "escalation"
    NOTIFICATION = "notification"
    MULTI_STAGE = "multi_stage"
    CONDITIONAL = "conditional"
    PARALLEL = "parallel"
    CUSTOM = "custom"


class InstanceStatus(str, Enum):
    PENDING = "pending"
    ACTIVE = "active"
    COMPLETED = "completed"
    REJECTED = "rejected"
    CANCELLED = "cancelled"
    SUSPENDED = "suspended"
    EXPIRED = "expired"


class StepStatus(str, Enum):
    PENDING = "pending"
    ACTIVE = "active"
    APPROVED = "approved"
    REJECTED = "rejected"
    SKIPPED = "skipped"
    EXPIRED = "expired"
    ESCALATED = "escalated"


class ActionType(str, Enum):
    APPROVAL = "approval"
    REJECTION = "rejection"
    COMMENT = "comment"
    ESCALATION = "escalation"
    DELEGATION = "delegation"
    EMAIL = "email"
    SMS = "sms"
    WEBHOOK = "webhook"
    UPDATE_FIELD = "update_field"
    CREATE_TASK = "create_task"
    CUSTOM = "custom"


SIDE_EFFECT_ACTIONS: FrozenSet[ActionType] = frozenset(
    {
        ActionType.EMAIL,
        ActionType.SMS,
        ActionType.WEBHOOK,
        ActionType.UPDATE_FIELD,
        ActionType.CREATE_TASK,
        ActionType.CUSTOM,
    }
)


class ActionTrigger(str, Enum):
    ON_ENTER = "on_enter"
    ON_EXIT = "on_exit"
    ON_APPROVE = "on_approve"
    ON_REJECT = "on_reject"
    MANUAL = "manual"
    TIMEOUT = "timeout"


STEP_TRIGGERS: FrozenSet[ActionTrigger] = frozenset(
    {
        ActionTrigger.ON_ENTER,
        ActionTrigger.ON_EXIT,
        ActionTrigger.ON_APPROVE,
        ActionTrigger.ON_REJECT,
    }
)


class ActionStatus(str, Enum):
    PENDING = "pending"
    IN_PROGRESS = "in_progress"
    COMPLETED = "completed"
    FAILED = "failed"
    CANCELLED = "cancelled"
    RETRYING = "retrying"


class ConditionOperator(str, Enum):
    EQ = "eq"
    NE = "ne"
    GT = "gt"
    LT = "lt"
    GTE = "gte"
    LTE = "lte"
    IN = "in"
    NIN = "nin"


class NotificationChannel(str, Enum):
    IN_APP = "in_app"
    EMAIL = "email"
    SMS = "sms"


TERMINAL_INSTANCE_STATUSES: FrozenSet[InstanceStatus] = frozenset(
    {
        InstanceStatus.COMPLETED,
        InstanceStatus.REJECTED,
        InstanceStatus.CANCELLED,
        InstanceStatus.EXPIRED,
    }
)

# Forward transitions. Steps never move backwards outside of a revert.
STEP_TRANSITIONS: Dict[StepStatus, FrozenSet[StepStatus]] = {
    StepStatus.PENDING: frozenset({StepStatus.ACTIVE}),
    StepStatus.ACTIVE: frozenset(
        {
            StepStatus.APPROVED,
            StepStatus.REJECTED,
            StepStatus.SKIPPED,
            StepStatus.EXPIRED,
        }
    ),
    StepStatus.APPROVED: frozenset(),
    StepStatus.REJECTED: frozenset(),
    StepStatus.SKIPPED: frozenset(),
    StepStatus.EXPIRED: frozenset(),
    StepStatus.ESCALATED: frozenset(),
}

REVERT_STEP_TRANSITIONS: Dict[StepStatus, FrozenSet[StepStatus]] = {
    StepStatus.ACTIVE: frozenset({StepStatus.PENDING}),
    StepStatus.APPROVED: frozenset({StepStatus.ACTIVE}),
    StepStatus.SKIPPED: frozenset({StepStatus.ACTIVE}),
}

INSTANCE_TRANSITIONS: Dict[InstanceStatus, FrozenSet[InstanceStatus]] = {
    InstanceStatus.PENDING: frozenset(
        {InstanceStatus.ACTIVE, InstanceStatus.CANCELLED}
    ),
    InstanceStatus.ACTIVE: frozenset(
        {
            InstanceStatus.COMPLETED,
            InstanceStatus.REJECTED,
            InstanceStatus.CANCELLED,
            InstanceStatus.SUSPENDED,
            InstanceStatus.EXPIRED,
        }
    ),
    InstanceStatus.SUSPENDED: frozenset(
        {InstanceStatus.ACTIVE, InstanceStatus.CANCELLED}
    ),
    InstanceStatus.COMPLETED: frozenset(),
    InstanceStatus.REJECTED: frozenset(),
    InstanceStatus.CANCELLED: frozenset(),
    InstanceStatus.EXPIRED: frozenset(),
}


class Condition(BaseModel):
    """Gate on a step: ``field`` is a dot-path into the instance context."""

    field: str
    operator: ConditionOperator
    value: Any = None


class ActionSpec(BaseModel):
    """Side effect fired at one of a step's trigger points."""

    type: ActionType
    trigger: ActionTrigger
    config: Dict[str, Any] = Field(default_factory=dict)


class EscalationSpec(BaseModel):
    escalate_after_hours: float
    escalate_to_role: Optional[str] = None
    escalate_to_principal_ids: Optional[List[str]] = None


class StepBlueprint(BaseModel):
    """Defines one stage of a workflow template."""

    name: str
    description: str = ""
    order: int
    approver_role: Optional[str] = None
    approver_ids: List[str] = Field(default_factory=list)
    auto_approve: bool = False
    conditions: List[Condition] = Field(default_factory=list)
    actions: List[ActionSpec] = Field(default_factory=list)
    timeout_hours: Optional[float] = None
    escalation: Optional[EscalationSpec] = None
    metadata: Dict[str, Any] = Field(default_factory=dict)


class WorkflowTemplate(BaseModel):
    """Versioned blueprint of an ordered approval sequence."""

    id: str = Field(default_factory=_new_id)
    name: str
    description: str = ""
    type: WorkflowType = WorkflowType.APPROVAL
    entity_type: str
    active: bool = True
    version: int = 1
    steps: List[StepBlueprint] = Field(default_factory=list)
    metadata: Dict[str, Any] = Field(default_factory=dict)
    created_at: datetime = Field(default_factory=utcnow)
    updated_at: datetime = Field(default_factory=utcnow)

    def ordered_steps(self) -> List[StepBlueprint]:
        return sorted(self.steps, key=lambda s: s.order)


class Principal(BaseModel):
    """A person (or service account) who can act on workflow steps."""

    id: str
    display_name: str = ""
    email: Optional[str] = None
    phone: Optional[str] = None
    role: Optional[str] = None


class WorkflowInstance(BaseModel):
    """One execution of a template version against one subject entity."""

    id: str = Field(default_factory=_new_id)
    template_id: str
    template_version: int = 1
    entity_type: str
    entity_id: str
    status: InstanceStatus = InstanceStatus.PENDING
    current_step_order: int = 0
    initiator_id: str
    context: Dict[str, Any] = Field(default_factory=dict)
    started_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None
    cancellation_reason: Optional[str] = None
    created_at: datetime = Field(default_factory=utcnow)

    @property
    def is_terminal(self) -> bool:
        return self.status in TERMINAL_INSTANCE_STATUSES


class WorkflowStep(BaseModel):
    """Mutable copy of a :class:`StepBlueprint` owned by one instance."""

    id: str = Field(default_factory=_new_id)
    instance_id: str
    name: str
    description: str = ""
    order: int
    status: StepStatus = StepStatus.PENDING
    approver_role: Optional[str] = None
    approver_ids: List[str] = Field(default_factory=list)
    auto_approve: bool = False
    conditions: List[Condition] = Field(default_factory=list)
    actions: List[ActionSpec] = Field(default_factory=list)
    timeout_hours: Optional[float] = None
    escalation: Optional[EscalationSpec] = None
    started_at: Optional[datetime] = None
    approved_by: Optional[str] = None
    approved_at: Optional[datetime] = None
    rejected_by: Optional[str] = None
    rejected_at: Optional[datetime] = None
    rejection_reason: Optional[str] = None
    comments: Optional[str] = None
    metadata: Dict[str, Any] = Field(default_factory=dict)
    created_at: datetime = Field(default_factory=utcnow)

    @classmethod
    def from_blueprint(
        cls, blueprint: StepBlueprint, instance_id: str
    ) -> "WorkflowStep":
        return cls(
            instance_id=instance_id,
            name=blueprint.name,
            description=blueprint.description,
            order=blueprint.order,
            approver_role=blueprint.approver_role,
            approver_ids=list(blueprint.approver_ids),
            auto_approve=blueprint.auto_approve,
            conditions=[c.model_copy(deep=True) for c in blueprint.conditions],
            actions=[a.model_copy(deep=True) for a in blueprint.actions],
            timeout_hours=blueprint.timeout_hours,
            escalation=(
                blueprint.escalation.model_copy(deep=True)
                if blueprint.escalation
                else None
            ),
            metadata=dict(blueprint.metadata),
        )

    def actions_for(self, trigger: ActionTrigger) -> List[ActionSpec]:
        return [a for a in self.actions if a.trigger == trigger]


class ActionResult(BaseModel):
    success: bool
    message: Optional[str] = None
    error: Optional[str] = None


class WorkflowAction(BaseModel):
    """Audit record of an executed side effect or a human decision."""

    id: str = Field(default_factory=_new_id)
    step_id: str
    instance_id: str
    type: ActionType
    trigger: ActionTrigger
    status: ActionStatus = ActionStatus.PENDING
    executed_by: str
    executed_at: Optional[datetime] = None
    retry_count: int = 0
    max_retries: int = 0
    config: Dict[str, Any] = Field(default_factory=dict)
    result: Optional[ActionResult] = None
    created_at: datetime = Field(default_factory=utcnow)


class WorkflowEvent(BaseModel):
    """Envelope published on the event bus."""

    event_id: str = Field(default_factory=_new_id)
    name: str
    payload: Dict[str, Any] = Field(default_factory=dict)
    emitted_at: datetime = Field(default_factory=utcnow)

    def to_json(self) -> str:
        return self.model_dump_json()

    @classmethod
    def from_json(cls, data: str) -> "WorkflowEvent":
        return cls.model_validate_json(data)


def validate_step_orders(steps: List[StepBlueprint]) -> None:
    """Raise :class:`TemplateValidationError` unless orders are exactly 1..N."""
    if not steps:
        raise TemplateValidationError("Workflow template must define at least one step")
    orders = [s.order for s in steps]
    duplicates = sorted({o for o in orders if orders.count(o) > 1})
    if duplicates:
        raise TemplateValidationError(
            f"Duplicate step orders: {duplicates}", {"duplicates": duplicates}
        )
    expected = list(range(1, len(steps) + 1))
    if sorted(orders) != expected:
        raise TemplateValidationError(
            "Step orders must be contiguous starting at 1",
            {"orders": sorted(orders)},
        )
    for step in steps:
        for action in step.actions:
            if action.type not in SIDE_EFFECT_ACTIONS:
                raise TemplateValidationError(
                    f"Action type {action.type.value!r} cannot be attached to a step",
                    {"step": step.name},
                )
            if action.trigger not in STEP_TRIGGERS:
                raise TemplateValidationError(
                    f"Trigger {action.trigger.value!r} is not a step trigger",
                    {"step": step.name},
                )


def transition_step(
    step: WorkflowStep, target: StepStatus, *, revert: bool = False
) -> None:
    table = REVERT_STEP_TRANSITIONS if revert else STEP_TRANSITIONS
    if target not in table.get(step.status, frozenset()):
        raise InvalidStateError(
            f"Step {step.id} cannot move from {step.status.value} to {target.value}",
            {"step_id": step.id, "status": step.status.value},
        )
    step.status = target


def transition_instance(instance: WorkflowInstance, target: InstanceStatus) -> None:
    if target not in INSTANCE_TRANSITIONS[instance.status]:
        raise InvalidStateError(
            f"Workflow {instance.id} cannot move from {instance.status.value} to {target.value}",
            {"instance_id": instance.id, "status": instance.status.value},
        )
    instance.status = target
