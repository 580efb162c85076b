"""Shared constants for the tenderflow engine."""

SYSTEM_PRINCIPAL = "system"

AUTO_APPROVE_COMMENT = "Auto-approved"
CONDITIONS_NOT_MET_COMMENT = "Conditions not met"
TIMEOUT_REJECTION_REASON = "Step timeout exceeded"

EVENT_STARTED = "workflow.started"
EVENT_COMPLETED = "workflow.completed"
EVENT_REJECTED = "workflow.rejected"
EVENT_ESCALATED = "workflow.escalated"
EVENT_CANCELLED = "workflow.cancelled"
EVENT_UPDATE_FIELD = "workflow.update_field"
EVENT_CREATE_TASK = "workflow.create_task"

DEFAULT_WEBHOOK_TIMEOUT_SECONDS = 10.0
DEFAULT_WEBHOOK_MAX_RETRIES = 3
DEFAULT_POLL_INTERVAL_SECONDS = 60.0
DEFAULT_PAGE_SIZE = 10
