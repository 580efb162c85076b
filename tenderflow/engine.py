"""Approval workflow engine.

The engine is the only writer of instance and step status. Each public
operation runs under the instance's lock, mutates state through the
transition tables in :mod:`tenderflow.contracts`, and queues its side effects
(actions, approver notifications, lifecycle events) for delivery once the
lock has been released.
"""

from __future__ import annotations

import logging
from datetime import datetime, timedelta
from typing import Any, Callable, Dict, List, Optional, Tuple

from .actions import ActionExecutor
from .conditions import evaluate
from .config import TenderflowConfig, load_config
from .constants import (
    AUTO_APPROVE_COMMENT,
    CONDITIONS_NOT_MET_COMMENT,
    DEFAULT_PAGE_SIZE,
    EVENT_CANCELLED,
    EVENT_COMPLETED,
    EVENT_ESCALATED,
    EVENT_REJECTED,
    EVENT_STARTED,
    SYSTEM_PRINCIPAL,
    TIMEOUT_REJECTION_REASON,
)
from .contracts import (
    ActionResult,
    ActionStatus,
    ActionTrigger,
    ActionType,
    InstanceStatus,
    NotificationChannel,
    Principal,
    StepStatus,
    WorkflowAction,
    WorkflowInstance,
    WorkflowStep,
    transition_instance,
    transition_step,
    utcnow,
)
from .dispatch import DispatchQueue
from .errors import InvalidStateError, NotFoundError, UnauthorizedError
from .events import EventPublisher, get_event_publisher
from .locks import KeyedLockRegistry
from .notifications import LoggingNotificationSink, NotificationSink
from .persistence import DueTimer, WorkflowRepository, get_repository
from .principals import ApproverResolver, InMemoryPrincipalDirectory, PrincipalDirectory
from .templates import TemplateService
from .webhooks import HttpWebhookDispatcher, WebhookDispatcher

logger = logging.getLogger(__name__)


class WorkflowEngine:
    """Drives workflow instances through their ordered approval steps."""

    def __init__(
        self,
        repository: WorkflowRepository,
        directory: PrincipalDirectory,
        notifications: NotificationSink,
        events: EventPublisher,
        webhooks: Optional[WebhookDispatcher] = None,
        *,
        clock: Callable[[], datetime] = utcnow,
        approval_link_base: str = "",
        webhook_max_retries: int = 0,
    ) -> None:
        self._repository = repository
        self._directory = directory
        self._notifications = notifications
        self._events = events
        self._clock = clock
        self._approval_link_base = approval_link_base.rstrip("/")
        self._resolver = ApproverResolver(directory)
        self._actions = ActionExecutor(
            repository,
            notifications,
            events,
            webhooks,
            webhook_max_retries=webhook_max_retries,
            clock=clock,
        )
        self._locks = KeyedLockRegistry()
        self.templates = TemplateService(repository, clock=clock)

    @classmethod
    def from_config(
        cls,
        config: Optional[TenderflowConfig] = None,
        *,
        repository: Optional[WorkflowRepository] = None,
        directory: Optional[PrincipalDirectory] = None,
        notifications: Optional[NotificationSink] = None,
        events: Optional[EventPublisher] = None,
        webhooks: Optional[WebhookDispatcher] = None,
    ) -> "WorkflowEngine":
        """Assemble an engine from configuration, overriding any collaborator."""
        config = config or load_config()
        return cls(
            repository=repository or get_repository(config=config),
            directory=directory or InMemoryPrincipalDirectory(config.principals),
            notifications=notifications or LoggingNotificationSink(),
            events=events or get_event_publisher(config=config),
            webhooks=webhooks
            or HttpWebhookDispatcher(
                timeout=config.webhooks.timeout_seconds,
                max_retries=config.webhooks.max_retries,
            ),
            approval_link_base=config.notifications.approval_link_base,
            webhook_max_retries=config.webhooks.max_retries,
        )

    @property
    def repository(self) -> WorkflowRepository:
        return self._repository

    # ------------------------------------------------------------------
    # Lifecycle operations
    async def start_workflow(
        self,
        template_id: str,
        entity_type: str,
        entity_id: str,
        initiator_id: str,
        context: Optional[Dict[str, Any]] = None,
    ) -> WorkflowInstance:
        template = await self._repository.get_template(template_id)
        if template is None or not template.active:
            raise NotFoundError(
                "Active workflow template not found", {"template_id": template_id}
            )
        if template.entity_type != entity_type:
            raise NotFoundError(
                f"Template {template_id} does not apply to {entity_type!r}",
                {"template_id": template_id, "entity_type": entity_type},
            )

        now = self._clock()
        instance = WorkflowInstance(
            template_id=template.id,
            template_version=template.version,
            entity_type=entity_type,
            entity_id=entity_id,
            initiator_id=initiator_id,
            context=dict(context or {}),
            created_at=now,
        )
        queue = DispatchQueue()
        async with self._locks.hold(instance.id):
            await self._repository.save_instance(instance)
            steps = [
                WorkflowStep.from_blueprint(blueprint, instance.id)
                for blueprint in template.ordered_steps()
            ]
            for step in steps:
                step.created_at = now
            first = steps[0]
            transition_step(first, StepStatus.ACTIVE)
            first.started_at = now
            await self._repository.save_steps(steps)

            transition_instance(instance, InstanceStatus.ACTIVE)
            instance.current_step_order = first.order
            instance.started_at = now
            await self._repository.save_instance(instance)
            logger.info(
                f"Started workflow {instance.id} from template {template.name!r} "
                f"v{template.version} for {entity_type}/{entity_id}"
            )
            self._emit(
                queue,
                EVENT_STARTED,
                {
                    "instance_id": instance.id,
                    "template_id": template.id,
                    "entity_type": entity_type,
                    "entity_id": entity_id,
                },
            )
            await self._execute_step(first, instance, queue)
        await queue.drain()
        return instance

    async def approve_step(
        self, step_id: str, approver_id: str, comments: str = ""
    ) -> WorkflowStep:
        step = await self._get_step(step_id)
        queue = DispatchQueue()
        async with self._locks.hold(step.instance_id):
            step, instance = await self._load_active(step_id)
            await self._authorize(step, approver_id)
            await self._approve(
                step, instance, approver_id, comments, ActionTrigger.MANUAL, queue
            )
        await queue.drain()
        return step

    async def reject_step(
        self, step_id: str, rejector_id: str, reason: str = ""
    ) -> WorkflowStep:
        step = await self._get_step(step_id)
        queue = DispatchQueue()
        async with self._locks.hold(step.instance_id):
            step, instance = await self._load_active(step_id)
            await self._authorize(step, rejector_id)
            await self._reject(
                step, instance, rejector_id, reason, ActionTrigger.MANUAL, queue
            )
        await queue.drain()
        return step

    async def revert(self, instance_id: str, user_id: str) -> WorkflowInstance:
        """Move the instance back one step without re-running any actions."""
        async with self._locks.hold(instance_id):
            instance = await self.get_instance(instance_id)
            if instance.status != InstanceStatus.ACTIVE:
                raise InvalidStateError(
                    f"Cannot revert a {instance.status.value} workflow",
                    {"instance_id": instance_id},
                )
            if instance.current_step_order <= 1:
                raise InvalidStateError(
                    "Cannot revert from first step", {"instance_id": instance_id}
                )
            steps = {s.order: s for s in await self._repository.list_steps(instance_id)}
            current = steps.get(instance.current_step_order)
            previous = steps.get(instance.current_step_order - 1)
            if previous is None:
                raise InvalidStateError(
                    "Previous step not found", {"instance_id": instance_id}
                )

            if current is not None:
                transition_step(current, StepStatus.PENDING, revert=True)
                current.started_at = None
                await self._repository.delete_timer(current.id)
            transition_step(previous, StepStatus.ACTIVE, revert=True)
            previous.approved_by = None
            previous.approved_at = None
            previous.comments = None
            previous.started_at = self._clock()
            await self._repository.save_steps([s for s in (current, previous) if s])
            if previous.timeout_hours:
                await self._repository.save_timer(
                    DueTimer(
                        step_id=previous.id,
                        instance_id=instance.id,
                        fire_at=previous.started_at
                        + timedelta(hours=previous.timeout_hours),
                    )
                )

            instance.current_step_order = previous.order
            await self._repository.save_instance(instance)
            await self._record_decision(
                previous,
                ActionType.COMMENT,
                user_id,
                f"Reverted to step {previous.order}",
                ActionTrigger.MANUAL,
            )
            logger.info(
                f"Workflow {instance_id} reverted to step {previous.order} by {user_id}"
            )
        return instance

    async def escalate(self, instance_id: str, user_id: str) -> WorkflowInstance:
        queue = DispatchQueue()
        async with self._locks.hold(instance_id):
            instance, step = await self._current_active_step(instance_id)
            if step.escalation is None:
                raise InvalidStateError(
                    f"Step {step.name!r} has no escalation configured",
                    {"step_id": step.id},
                )
            await self._escalate_step(step, instance, user_id, ActionTrigger.MANUAL, queue)
        await queue.drain()
        return instance

    async def escalate_step(self, step_id: str, user_id: str = SYSTEM_PRINCIPAL) -> WorkflowStep:
        step = await self._get_step(step_id)
        queue = DispatchQueue()
        async with self._locks.hold(step.instance_id):
            step, instance = await self._load_active(step_id)
            if step.escalation is None:
                raise InvalidStateError(
                    f"Step {step.name!r} has no escalation configured",
                    {"step_id": step.id},
                )
            await self._escalate_step(step, instance, user_id, ActionTrigger.MANUAL, queue)
        await queue.drain()
        return step

    async def handle_step_timeout(self, step_id: str) -> Optional[WorkflowStep]:
        """Escalate or auto-reject a step that is still Active when its timer fires."""
        step = await self._repository.get_step(step_id)
        if step is None or step.status != StepStatus.ACTIVE:
            logger.debug(f"Timeout for step {step_id} ignored; step no longer active")
            return None

        queue = DispatchQueue()
        async with self._locks.hold(step.instance_id):
            step = await self._repository.get_step(step_id)
            if step is None or step.status != StepStatus.ACTIVE:
                return None
            instance = await self._repository.get_instance(step.instance_id)
            if instance is None or instance.status != InstanceStatus.ACTIVE:
                return None
            await self._repository.delete_timer(step.id)

            if step.escalation is not None:
                started = step.started_at or step.created_at
                elapsed_hours = (self._clock() - started).total_seconds() / 3600
                if elapsed_hours >= step.escalation.escalate_after_hours:
                    await self._escalate_step(
                        step, instance, SYSTEM_PRINCIPAL, ActionTrigger.TIMEOUT, queue
                    )
                else:
                    fire_at = started + timedelta(
                        hours=step.escalation.escalate_after_hours
                    )
                    await self._repository.save_timer(
                        DueTimer(step_id=step.id, instance_id=instance.id, fire_at=fire_at)
                    )
                    logger.debug(f"Escalation of step {step.id} re-armed for {fire_at}")
            else:
                logger.info(f"Step {step.id} timed out; auto-rejecting")
                await self._reject(
                    step,
                    instance,
                    SYSTEM_PRINCIPAL,
                    TIMEOUT_REJECTION_REASON,
                    ActionTrigger.TIMEOUT,
                    queue,
                )
        await queue.drain()
        return step

    async def cancel_workflow(
        self, instance_id: str, user_id: str, reason: str = ""
    ) -> WorkflowInstance:
        queue = DispatchQueue()
        async with self._locks.hold(instance_id):
            instance = await self.get_instance(instance_id)
            if instance.status not in (InstanceStatus.ACTIVE, InstanceStatus.PENDING):
                raise InvalidStateError(
                    f"Cannot cancel a {instance.status.value} workflow",
                    {"instance_id": instance_id},
                )
            now = self._clock()
            for step in await self._repository.list_steps(instance_id):
                if step.status != StepStatus.ACTIVE:
                    continue
                transition_step(step, StepStatus.EXPIRED)
                step.comments = f"Workflow cancelled: {reason}" if reason else "Workflow cancelled"
                await self._repository.save_steps([step])
                await self._repository.delete_timer(step.id)
                await self._record_decision(
                    step, ActionType.COMMENT, user_id, step.comments, ActionTrigger.MANUAL
                )

            transition_instance(instance, InstanceStatus.CANCELLED)
            instance.cancellation_reason = reason
            instance.completed_at = now
            await self._repository.save_instance(instance)
            logger.info(f"Workflow {instance_id} cancelled by {user_id}")
            self._emit(
                queue,
                EVENT_CANCELLED,
                {
                    "instance_id": instance.id,
                    "entity_type": instance.entity_type,
                    "entity_id": instance.entity_id,
                    "reason": reason,
                    "cancelled_by": user_id,
                },
            )
        await queue.drain()
        return instance

    async def assign(
        self,
        instance_id: str,
        assigned_by: str,
        user_ids: Optional[List[str]] = None,
        role: Optional[str] = None,
    ) -> WorkflowInstance:
        """Replace the approvers of the current step and notify them."""
        queue = DispatchQueue()
        async with self._locks.hold(instance_id):
            instance, step = await self._current_active_step(instance_id)
            step.approver_ids = list(user_ids or [])
            step.approver_role = role
            await self._repository.save_steps([step])
            await self._record_decision(
                step,
                ActionType.DELEGATION,
                assigned_by,
                f"Reassigned to role={role} ids={step.approver_ids}",
                ActionTrigger.MANUAL,
            )
            approvers = await self._resolver.resolve(step)
            self._notify_approvers(step, instance, approvers, queue)
        await queue.drain()
        return instance

    # ------------------------------------------------------------------
    # Instance-level convenience operations
    async def approve_current(
        self, instance_id: str, approver_id: str, comments: str = "Approved"
    ) -> WorkflowInstance:
        _, step = await self._current_active_step(instance_id)
        await self.approve_step(step.id, approver_id, comments)
        return await self.get_instance(instance_id)

    async def reject_current(
        self, instance_id: str, rejector_id: str, reason: str = "Rejected"
    ) -> WorkflowInstance:
        _, step = await self._current_active_step(instance_id)
        await self.reject_step(step.id, rejector_id, reason)
        return await self.get_instance(instance_id)

    async def advance(
        self, instance_id: str, user_id: str, comments: str = "Advanced to next step"
    ) -> WorkflowInstance:
        return await self.approve_current(instance_id, user_id, comments)

    # ------------------------------------------------------------------
    # Queries
    async def get_instance(self, instance_id: str) -> WorkflowInstance:
        instance = await self._repository.get_instance(instance_id)
        if instance is None:
            raise NotFoundError(
                "Workflow instance not found", {"instance_id": instance_id}
            )
        return instance

    async def get_steps(self, instance_id: str) -> List[WorkflowStep]:
        await self.get_instance(instance_id)
        return await self._repository.list_steps(instance_id)

    async def get_history(self, instance_id: str) -> List[WorkflowAction]:
        await self.get_instance(instance_id)
        return await self._repository.list_actions(instance_id)

    async def get_pending_approvals(self, principal_id: str) -> List[WorkflowStep]:
        principal = await self._directory.find_by_id(principal_id)
        if principal is None:
            raise NotFoundError("Principal not found", {"principal_id": principal_id})
        return [
            step
            for step in await self._repository.list_active_steps()
            if principal_id in step.approver_ids
            or (principal.role is not None and step.approver_role == principal.role)
        ]

    async def get_workflows_by_entity(
        self, entity_type: str, entity_id: str
    ) -> List[WorkflowInstance]:
        return await self._repository.list_instances(
            entity_type=entity_type, entity_id=entity_id
        )

    async def list_instances(
        self,
        status: Optional[InstanceStatus] = None,
        entity_type: Optional[str] = None,
        template_id: Optional[str] = None,
        page: int = 1,
        limit: int = DEFAULT_PAGE_SIZE,
    ) -> Tuple[List[WorkflowInstance], int]:
        matches = await self._repository.list_instances(
            status=status, entity_type=entity_type, template_id=template_id
        )
        page = max(page, 1)
        start = (page - 1) * limit
        return matches[start : start + limit], len(matches)

    async def delete_instance(self, instance_id: str) -> None:
        async with self._locks.hold(instance_id):
            instance = await self.get_instance(instance_id)
            if instance.status == InstanceStatus.ACTIVE:
                raise InvalidStateError(
                    "Cannot delete active workflow", {"instance_id": instance_id}
                )
            await self._repository.delete_instance(instance_id)
            logger.info(f"Deleted workflow {instance_id}")

    # ------------------------------------------------------------------
    # State machine internals; callers hold the instance lock
    async def _execute_step(
        self, step: WorkflowStep, instance: WorkflowInstance, queue: DispatchQueue
    ) -> None:
        if step.conditions and not evaluate(step.conditions, instance.context):
            await self._skip_step(step, instance, CONDITIONS_NOT_MET_COMMENT, queue)
            return

        await self._actions.run_actions(step, ActionTrigger.ON_ENTER, instance, queue)

        if step.auto_approve:
            await self._approve(
                step,
                instance,
                SYSTEM_PRINCIPAL,
                AUTO_APPROVE_COMMENT,
                ActionTrigger.ON_ENTER,
                queue,
            )
            return

        approvers = await self._resolver.resolve(step)
        self._notify_approvers(step, instance, approvers, queue)

        if step.timeout_hours:
            fire_at = (step.started_at or self._clock()) + timedelta(
                hours=step.timeout_hours
            )
            await self._repository.save_timer(
                DueTimer(step_id=step.id, instance_id=instance.id, fire_at=fire_at)
            )
            logger.debug(f"Timeout for step {step.id} armed for {fire_at}")

    async def _skip_step(
        self,
        step: WorkflowStep,
        instance: WorkflowInstance,
        reason: str,
        queue: DispatchQueue,
    ) -> None:
        transition_step(step, StepStatus.SKIPPED)
        step.comments = reason
        await self._repository.save_steps([step])
        logger.info(f"Skipped step {step.order} of workflow {instance.id}: {reason}")
        await self._move_to_next_step(instance, step, queue)

    async def _approve(
        self,
        step: WorkflowStep,
        instance: WorkflowInstance,
        approver_id: str,
        comments: str,
        trigger: ActionTrigger,
        queue: DispatchQueue,
    ) -> None:
        transition_step(step, StepStatus.APPROVED)
        step.approved_by = approver_id
        step.approved_at = self._clock()
        step.comments = comments
        await self._repository.save_steps([step])
        await self._repository.delete_timer(step.id)
        await self._record_decision(step, ActionType.APPROVAL, approver_id, comments, trigger)
        logger.info(
            f"Step {step.order} of workflow {instance.id} approved by {approver_id}"
        )

        await self._actions.run_actions(step, ActionTrigger.ON_APPROVE, instance, queue)
        await self._move_to_next_step(instance, step, queue)

    async def _reject(
        self,
        step: WorkflowStep,
        instance: WorkflowInstance,
        rejector_id: str,
        reason: str,
        trigger: ActionTrigger,
        queue: DispatchQueue,
    ) -> None:
        now = self._clock()
        transition_step(step, StepStatus.REJECTED)
        step.rejected_by = rejector_id
        step.rejected_at = now
        step.rejection_reason = reason
        await self._repository.save_steps([step])
        await self._repository.delete_timer(step.id)
        await self._record_decision(step, ActionType.REJECTION, rejector_id, reason, trigger)

        await self._actions.run_actions(step, ActionTrigger.ON_REJECT, instance, queue)

        transition_instance(instance, InstanceStatus.REJECTED)
        instance.completed_at = now
        await self._repository.save_instance(instance)
        logger.info(
            f"Workflow {instance.id} rejected at step {step.order} by {rejector_id}"
        )
        self._emit(
            queue,
            EVENT_REJECTED,
            {
                "instance_id": instance.id,
                "step_id": step.id,
                "entity_type": instance.entity_type,
                "entity_id": instance.entity_id,
                "reason": reason,
            },
        )

    async def _move_to_next_step(
        self, instance: WorkflowInstance, current: WorkflowStep, queue: DispatchQueue
    ) -> None:
        await self._actions.run_actions(current, ActionTrigger.ON_EXIT, instance, queue)

        steps = await self._repository.list_steps(instance.id)
        next_step = next((s for s in steps if s.order == current.order + 1), None)

        if next_step is None:
            transition_instance(instance, InstanceStatus.COMPLETED)
            instance.completed_at = self._clock()
            await self._repository.save_instance(instance)
            logger.info(f"Workflow {instance.id} completed")
            self._emit(
                queue,
                EVENT_COMPLETED,
                {
                    "instance_id": instance.id,
                    "entity_type": instance.entity_type,
                    "entity_id": instance.entity_id,
                },
            )
            return

        transition_step(next_step, StepStatus.ACTIVE)
        next_step.started_at = self._clock()
        await self._repository.save_steps([next_step])
        instance.current_step_order = next_step.order
        await self._repository.save_instance(instance)
        await self._execute_step(next_step, instance, queue)

    async def _escalate_step(
        self,
        step: WorkflowStep,
        instance: WorkflowInstance,
        escalated_by: str,
        trigger: ActionTrigger,
        queue: DispatchQueue,
    ) -> None:
        spec = step.escalation
        now = self._clock()
        history = list(step.metadata.get("escalation_history", []))
        history.append(
            {
                "at": now.isoformat(),
                "by": escalated_by,
                "from_role": step.approver_role,
                "from_ids": list(step.approver_ids),
                "to_role": spec.escalate_to_role,
                "to_ids": list(spec.escalate_to_principal_ids or []),
            }
        )
        # Only the configured targets replace the matching approver field.
        if spec.escalate_to_role:
            step.approver_role = spec.escalate_to_role
        if spec.escalate_to_principal_ids is not None:
            step.approver_ids = list(spec.escalate_to_principal_ids)
        step.metadata = {
            **step.metadata,
            "escalated": True,
            "escalated_at": now.isoformat(),
            "escalation_history": history,
        }
        await self._repository.save_steps([step])
        await self._repository.delete_timer(step.id)
        await self._record_decision(
            step,
            ActionType.ESCALATION,
            escalated_by,
            f"Escalated to role={spec.escalate_to_role} ids={step.approver_ids}",
            trigger,
        )
        logger.info(f"Step {step.order} of workflow {instance.id} escalated")

        approvers = await self._resolver.resolve(step)
        self._notify_approvers(step, instance, approvers, queue)
        self._emit(
            queue,
            EVENT_ESCALATED,
            {
                "instance_id": instance.id,
                "step_id": step.id,
                "escalated_by": escalated_by,
            },
        )

    # ------------------------------------------------------------------
    # Helpers
    async def _get_step(self, step_id: str) -> WorkflowStep:
        step = await self._repository.get_step(step_id)
        if step is None:
            raise NotFoundError("Workflow step not found", {"step_id": step_id})
        return step

    async def _load_active(self, step_id: str) -> Tuple[WorkflowStep, WorkflowInstance]:
        """Reload a step under the lock and require it to be Active."""
        step = await self._get_step(step_id)
        if step.status != StepStatus.ACTIVE:
            raise InvalidStateError(
                "Step is not active", {"step_id": step_id, "status": step.status.value}
            )
        instance = await self.get_instance(step.instance_id)
        if instance.status != InstanceStatus.ACTIVE:
            raise InvalidStateError(
                f"Workflow is {instance.status.value}", {"instance_id": instance.id}
            )
        return step, instance

    async def _current_active_step(
        self, instance_id: str
    ) -> Tuple[WorkflowInstance, WorkflowStep]:
        instance = await self.get_instance(instance_id)
        steps = await self._repository.list_steps(instance_id)
        step = next((s for s in steps if s.order == instance.current_step_order), None)
        if (
            step is None
            or step.status != StepStatus.ACTIVE
            or instance.status != InstanceStatus.ACTIVE
        ):
            raise InvalidStateError(
                "No active step for workflow", {"instance_id": instance_id}
            )
        return instance, step

    async def _authorize(self, step: WorkflowStep, principal_id: str) -> None:
        if principal_id == SYSTEM_PRINCIPAL:
            return
        if not await self._resolver.is_authorized(step, principal_id):
            raise UnauthorizedError(
                "User not authorized to act on this step",
                {"step_id": step.id, "principal_id": principal_id},
            )

    async def _record_decision(
        self,
        step: WorkflowStep,
        action_type: ActionType,
        executed_by: str,
        message: str,
        trigger: ActionTrigger,
    ) -> WorkflowAction:
        now = self._clock()
        action = WorkflowAction(
            step_id=step.id,
            instance_id=step.instance_id,
            type=action_type,
            trigger=trigger,
            status=ActionStatus.COMPLETED,
            executed_by=executed_by,
            executed_at=now,
            result=ActionResult(success=True, message=message),
            created_at=now,
        )
        await self._repository.save_action(action)
        return action

    def _approval_link(self, instance: WorkflowInstance, step: WorkflowStep) -> str:
        return f"{self._approval_link_base}/workflows/{instance.id}/steps/{step.id}"

    def _notify_approvers(
        self,
        step: WorkflowStep,
        instance: WorkflowInstance,
        approvers: List[Principal],
        queue: DispatchQueue,
    ) -> None:
        if not approvers:
            logger.warning(f"Step {step.id} of workflow {instance.id} has no approvers")
            return
        context = {
            "workflow_instance_id": instance.id,
            "step_id": step.id,
            "step_name": step.name,
            "step_description": step.description,
            "entity_type": instance.entity_type,
            "entity_id": instance.entity_id,
            "approval_link": self._approval_link(instance, step),
        }
        send_sms = bool(step.metadata.get("send_sms"))
        for approver in approvers:
            deliveries = [
                (NotificationChannel.IN_APP, f"Please review and approve: {step.name}")
            ]
            if approver.email:
                deliveries.append(
                    (NotificationChannel.EMAIL, f"Workflow Approval Required: {step.name}")
                )
            if approver.phone and send_sms:
                deliveries.append(
                    (
                        NotificationChannel.SMS,
                        f"Workflow approval required: {step.name}. "
                        "Check your email for details.",
                    )
                )
            for channel, message in deliveries:
                queue.enqueue(
                    f"{channel.value} notification to {approver.id}",
                    self._notifier(approver, channel, message, context),
                )

    def _notifier(
        self,
        recipient: Principal,
        channel: NotificationChannel,
        message: str,
        context: Dict[str, Any],
    ) -> Callable[[], Any]:
        async def _send() -> None:
            await self._notifications.notify(
                recipient,
                channel,
                message,
                {**context, "approver_name": recipient.display_name or recipient.id},
            )

        return _send

    def _emit(self, queue: DispatchQueue, event_name: str, payload: Dict[str, Any]) -> None:
        async def _publish() -> None:
            await self._events.publish(event_name, payload)

        queue.enqueue(f"event {event_name}", _publish)
