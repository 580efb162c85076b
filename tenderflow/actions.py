"""Execution of side-effect actions attached to workflow steps."""

from __future__ import annotations

import logging
from functools import partial
from typing import Any, Awaitable, Callable, Dict, List, Optional

from .conditions import interpolate
from .constants import (
    DEFAULT_WEBHOOK_MAX_RETRIES,
    EVENT_CREATE_TASK,
    EVENT_UPDATE_FIELD,
    SYSTEM_PRINCIPAL,
)
from .contracts import (
    ActionResult,
    ActionSpec,
    ActionStatus,
    ActionTrigger,
    ActionType,
    NotificationChannel,
    Principal,
    WorkflowAction,
    WorkflowInstance,
    WorkflowStep,
    utcnow,
)
from .dispatch import DispatchQueue
from .events import EventPublisher
from .notifications import NotificationSink
from .persistence import WorkflowRepository
from .webhooks import WebhookDeliveryError, WebhookDispatcher

logger = logging.getLogger(__name__)

Handler = Callable[[Dict[str, Any], WorkflowInstance, WorkflowAction], Awaitable[str]]


def _recipients(value: Any) -> List[str]:
    if not value:
        return []
    if isinstance(value, str):
        return [value]
    return [str(v) for v in value]


class ActionExecutor:
    """Runs a step's actions for one trigger.

    Each action gets a :class:`WorkflowAction` record up front. Delivery is
    queued on the caller's :class:`DispatchQueue`; a failing action is logged
    and marked ``failed`` without affecting the surrounding transition.
    """

    def __init__(
        self,
        repository: WorkflowRepository,
        notifications: NotificationSink,
        events: EventPublisher,
        webhooks: Optional[WebhookDispatcher] = None,
        *,
        webhook_max_retries: int = DEFAULT_WEBHOOK_MAX_RETRIES,
        clock: Callable[[], Any] = utcnow,
    ) -> None:
        self._repository = repository
        self._notifications = notifications
        self._events = events
        self._webhooks = webhooks
        self._webhook_max_retries = webhook_max_retries
        self._clock = clock
        self._handlers: Dict[ActionType, Handler] = {
            ActionType.EMAIL: self._email,
            ActionType.SMS: self._sms,
            ActionType.WEBHOOK: self._webhook,
            ActionType.UPDATE_FIELD: self._update_field,
            ActionType.CREATE_TASK: self._create_task,
            ActionType.CUSTOM: self._custom,
        }

    async def run_actions(
        self,
        step: WorkflowStep,
        trigger: ActionTrigger,
        instance: WorkflowInstance,
        queue: DispatchQueue,
    ) -> List[WorkflowAction]:
        records: List[WorkflowAction] = []
        snapshot = instance.model_copy(deep=True)
        for spec in step.actions_for(trigger):
            record = WorkflowAction(
                step_id=step.id,
                instance_id=instance.id,
                type=spec.type,
                trigger=trigger,
                executed_by=SYSTEM_PRINCIPAL,
                max_retries=(
                    self._webhook_max_retries if spec.type == ActionType.WEBHOOK else 0
                ),
                config=dict(spec.config),
                created_at=self._clock(),
            )
            await self._repository.save_action(record)
            queue.enqueue(
                f"{spec.type.value} action of step {step.name!r}",
                partial(self.execute, record, spec, snapshot),
            )
            records.append(record)
        if records:
            logger.debug(
                f"Queued {len(records)} {trigger.value} actions for step {step.id}"
            )
        return records

    async def execute(
        self, record: WorkflowAction, spec: ActionSpec, instance: WorkflowInstance
    ) -> WorkflowAction:
        handler = self._handlers.get(spec.type)
        record.status = ActionStatus.IN_PROGRESS
        try:
            if handler is None:
                raise ValueError(f"Unsupported action type: {spec.type.value}")
            message = await handler(spec.config, instance, record)
        except Exception as e:
            logger.error(
                f"Failed to execute action {spec.type.value} for workflow "
                f"{instance.id}: {e}",
                exc_info=True,
            )
            record.status = ActionStatus.FAILED
            record.result = ActionResult(success=False, error=str(e))
        else:
            record.status = ActionStatus.COMPLETED
            record.result = ActionResult(success=True, message=message)
        record.executed_at = self._clock()
        await self._repository.save_action(record)
        return record

    # ------------------------------------------------------------------
    # Handlers
    async def _email(
        self, config: Dict[str, Any], instance: WorkflowInstance, record: WorkflowAction
    ) -> str:
        recipients = _recipients(config.get("to"))
        if not recipients:
            raise ValueError("Email action requires a 'to' address")
        subject = interpolate(config.get("subject"), instance.context)
        body = interpolate(config.get("body"), instance.context)
        message = f"{subject}\n\n{body}" if body else subject
        context = {
            **instance.context,
            "workflow_instance_id": instance.id,
            "subject": subject,
            "cc": _recipients(config.get("cc")),
            "template": config.get("template"),
        }
        for address in recipients:
            await self._notifications.notify(
                Principal(id=address, email=address),
                NotificationChannel.EMAIL,
                message,
                context,
            )
        return f"Email sent to {', '.join(recipients)}"

    async def _sms(
        self, config: Dict[str, Any], instance: WorkflowInstance, record: WorkflowAction
    ) -> str:
        recipients = _recipients(config.get("to"))
        if not recipients:
            raise ValueError("SMS action requires a 'to' number")
        message = interpolate(config.get("message"), instance.context)
        for number in recipients:
            await self._notifications.notify(
                Principal(id=number, phone=number),
                NotificationChannel.SMS,
                message,
                {"workflow_instance_id": instance.id},
            )
        return f"SMS sent to {', '.join(recipients)}"

    async def _webhook(
        self, config: Dict[str, Any], instance: WorkflowInstance, record: WorkflowAction
    ) -> str:
        url = config.get("url")
        if not url:
            raise ValueError("Webhook action requires a 'url'")
        if self._webhooks is None:
            logger.warning(f"No webhook dispatcher configured; skipping {url}")
            return "Webhook skipped: no dispatcher configured"
        payload = {
            "workflow_instance_id": instance.id,
            "entity_type": instance.entity_type,
            "entity_id": instance.entity_id,
            "context": instance.context,
            **(config.get("payload") or {}),
        }
        try:
            response = await self._webhooks.dispatch(
                url,
                payload,
                headers=config.get("headers"),
                method=config.get("method", "POST"),
            )
        except WebhookDeliveryError as e:
            record.retry_count = max(0, e.attempts - 1)
            raise
        record.retry_count = max(0, response.attempts - 1)
        return f"Webhook {url} answered {response.status_code}"

    async def _update_field(
        self, config: Dict[str, Any], instance: WorkflowInstance, record: WorkflowAction
    ) -> str:
        field = config.get("field")
        if not field:
            raise ValueError("Update-field action requires a 'field'")
        await self._events.publish(
            EVENT_UPDATE_FIELD,
            {
                "entity_type": instance.entity_type,
                "entity_id": instance.entity_id,
                "field": field,
                "value": config.get("value"),
            },
        )
        return f"Field update requested for {field}"

    async def _create_task(
        self, config: Dict[str, Any], instance: WorkflowInstance, record: WorkflowAction
    ) -> str:
        title = interpolate(config.get("title"), instance.context)
        await self._events.publish(
            EVENT_CREATE_TASK,
            {
                "title": title,
                "description": interpolate(config.get("description"), instance.context),
                "assignee_id": config.get("assignee_id"),
                "due_date": config.get("due_date"),
                "context": {
                    "workflow_instance_id": instance.id,
                    "entity_type": instance.entity_type,
                    "entity_id": instance.entity_id,
                },
            },
        )
        return f"Task creation requested: {title}"

    async def _custom(
        self, config: Dict[str, Any], instance: WorkflowInstance, record: WorkflowAction
    ) -> str:
        event_name = config.get("event_name")
        if not event_name:
            raise ValueError("Custom action requires an 'event_name'")
        await self._events.publish(
            event_name,
            {
                "workflow_instance_id": instance.id,
                "entity_type": instance.entity_type,
                "entity_id": instance.entity_id,
                **(config.get("event_data") or {}),
            },
        )
        return f"Event {event_name} emitted"
