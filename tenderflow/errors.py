"""Error hierarchy for the tenderflow workflow engine.

Structural errors abort the requested operation and reach the caller
unchanged. Side-effect failures never surface here; they are recorded on the
corresponding :class:`~tenderflow.contracts.WorkflowAction` instead.
"""

from __future__ import annotations

from enum import Enum
from typing import Any, Optional


class ErrorKind(str, Enum):
    NOT_FOUND = "not_found"
    INVALID_STATE = "invalid_state"
    UNAUTHORIZED = "unauthorized"
    VALIDATION = "validation"


class WorkflowError(Exception):
    """Base error for all tenderflow exceptions."""

    kind: ErrorKind = ErrorKind.VALIDATION
    code = "WORKFLOW_ERROR"
    http_status = 400

    def __init__(self, message: str, details: Optional[dict[str, Any]] = None):
        self.message = message
        self.details = details or {}
        super().__init__(message)

    def to_dict(self) -> dict[str, Any]:
        return {
            "error": self.code,
            "kind": self.kind.value,
            "message": self.message,
            "details": self.details,
        }


class NotFoundError(WorkflowError):
    """Template, instance, step or principal does not exist."""

    kind = ErrorKind.NOT_FOUND
    code = "NOT_FOUND"
    http_status = 404


class InvalidStateError(WorkflowError):
    """Operation is illegal for the current status."""

    kind = ErrorKind.INVALID_STATE
    code = "INVALID_STATE"
    http_status = 409


class UnauthorizedError(WorkflowError):
    """Principal is not part of the resolved approver set."""

    kind = ErrorKind.UNAUTHORIZED
    code = "UNAUTHORIZED"
    http_status = 403


class TemplateValidationError(WorkflowError):
    """Malformed template definition."""

    kind = ErrorKind.VALIDATION
    code = "VALIDATION"
    http_status = 400


__all__ = [
    "ErrorKind",
    "WorkflowError",
    "NotFoundError",
    "InvalidStateError",
    "UnauthorizedError",
    "TemplateValidationError",
]
