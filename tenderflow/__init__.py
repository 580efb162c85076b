"""tenderflow: ordered, auditable approval workflows."""

from .config import load_config
from .contracts import (
    ActionTrigger,
    ActionType,
    InstanceStatus,
    Principal,
    StepBlueprint,
    StepStatus,
    WorkflowInstance,
    WorkflowStep,
    WorkflowTemplate,
)
from .engine import WorkflowEngine
from .errors import (
    InvalidStateError,
    NotFoundError,
    TemplateValidationError,
    UnauthorizedError,
    WorkflowError,
)
from .events import get_event_publisher
from .persistence import get_repository
from .scheduler import TimeoutScheduler

__version__ = "0.1.0"
__all__ = [
    "ActionTrigger",
    "ActionType",
    "InstanceStatus",
    "InvalidStateError",
    "NotFoundError",
    "Principal",
    "StepBlueprint",
    "StepStatus",
    "TemplateValidationError",
    "TimeoutScheduler",
    "UnauthorizedError",
    "WorkflowEngine",
    "WorkflowError",
    "WorkflowInstance",
    "WorkflowStep",
    "WorkflowTemplate",
    "get_event_publisher",
    "get_repository",
    "load_config",
]
