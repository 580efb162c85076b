"""End-to-end approval scenarios driven through the workflow engine."""

import asyncio

import pytest

from tenderflow.constants import (
    EVENT_COMPLETED,
    EVENT_ESCALATED,
    EVENT_REJECTED,
    EVENT_STARTED,
)
from tenderflow.contracts import (
    ActionTrigger,
    ActionType,
    InstanceStatus,
    NotificationChannel,
    StepStatus,
)
from tenderflow.errors import InvalidStateError, NotFoundError, UnauthorizedError


async def _two_step_template(engine, **step1):
    first = {"name": "Manager review", "order": 1, "approver_ids": ["U1"], **step1}
    return await engine.templates.create_template(
        name="Purchase order",
        entity_type="purchase_order",
        steps=[first, {"name": "Finance", "order": 2, "approver_role": "FINANCE"}],
    )


async def _assert_invariants(engine, instance_id, expected_steps):
    instance = await engine.get_instance(instance_id)
    steps = await engine.get_steps(instance_id)
    assert [s.order for s in steps] == list(range(1, expected_steps + 1))
    active = [s for s in steps if s.status == StepStatus.ACTIVE]
    if instance.status == InstanceStatus.ACTIVE:
        assert len(active) == 1
        assert active[0].order == instance.current_step_order
    else:
        assert active == []


@pytest.mark.asyncio
async def test_two_step_approval_completes(engine, events, sink, clock):
    template = await _two_step_template(engine)
    instance = await engine.start_workflow(
        template.id, "purchase_order", "PO-1", "U9", {"amount": 5000}
    )
    assert instance.status == InstanceStatus.ACTIVE
    assert instance.current_step_order == 1

    steps = await engine.get_steps(instance.id)
    assert [s.status for s in steps] == [StepStatus.ACTIVE, StepStatus.PENDING]
    assert sink.sent_to("U1", NotificationChannel.IN_APP)
    await _assert_invariants(engine, instance.id, 2)

    step1 = await engine.approve_step(steps[0].id, "U1", "ok")
    assert step1.status == StepStatus.APPROVED
    assert step1.approved_by == "U1"
    steps = await engine.get_steps(instance.id)
    assert [s.status for s in steps] == [StepStatus.APPROVED, StepStatus.ACTIVE]
    await _assert_invariants(engine, instance.id, 2)

    clock.advance(hours=2)
    await engine.approve_step(steps[1].id, "U2", "ok")
    instance = await engine.get_instance(instance.id)
    assert instance.status == InstanceStatus.COMPLETED
    assert instance.completed_at == clock.now
    await _assert_invariants(engine, instance.id, 2)

    names = [e.name for e in events.history]
    assert names == [EVENT_STARTED, EVENT_COMPLETED]


@pytest.mark.asyncio
async def test_unmet_condition_skips_step_without_notifying(engine, sink):
    template = await _two_step_template(
        engine, conditions=[{"field": "amount", "operator": "gt", "value": 1000}]
    )
    instance = await engine.start_workflow(
        template.id, "purchase_order", "PO-2", "U9", {"amount": 500}
    )

    steps = await engine.get_steps(instance.id)
    assert steps[0].status == StepStatus.SKIPPED
    assert steps[0].comments == "Conditions not met"
    assert steps[1].status == StepStatus.ACTIVE
    assert instance.current_step_order == 2
    assert sink.sent_to("U1") == []
    assert sink.sent_to("U2")
    await _assert_invariants(engine, instance.id, 2)


@pytest.mark.asyncio
async def test_unmet_condition_on_only_step_completes(engine):
    template = await engine.templates.create_template(
        name="Big spend",
        entity_type="purchase_order",
        steps=[
            {
                "name": "CFO",
                "order": 1,
                "approver_ids": ["U1"],
                "conditions": [{"field": "amount", "operator": "gt", "value": 1000}],
            }
        ],
    )
    instance = await engine.start_workflow(
        template.id, "purchase_order", "PO-3", "U9", {"amount": 500}
    )
    assert instance.status == InstanceStatus.COMPLETED


@pytest.mark.asyncio
async def test_timeout_without_escalation_rejects(engine, events, clock):
    template = await _two_step_template(engine, timeout_hours=1)
    instance = await engine.start_workflow(template.id, "purchase_order", "PO-4", "U9")
    step = (await engine.get_steps(instance.id))[0]

    clock.advance(hours=1)
    await engine.handle_step_timeout(step.id)

    instance = await engine.get_instance(instance.id)
    step = (await engine.get_steps(instance.id))[0]
    assert instance.status == InstanceStatus.REJECTED
    assert step.status == StepStatus.REJECTED
    assert step.rejected_by == "system"
    assert step.rejection_reason == "Step timeout exceeded"
    assert events.events_named(EVENT_REJECTED)
    await _assert_invariants(engine, instance.id, 2)

    history = await engine.get_history(instance.id)
    rejection = [a for a in history if a.type == ActionType.REJECTION][0]
    assert rejection.trigger == ActionTrigger.TIMEOUT


@pytest.mark.asyncio
async def test_timeout_with_escalation_reassigns(engine, events, sink, clock):
    template = await _two_step_template(
        engine,
        timeout_hours=1,
        escalation={"escalate_after_hours": 1, "escalate_to_role": "MANAGER"},
    )
    instance = await engine.start_workflow(template.id, "purchase_order", "PO-5", "U9")
    step = (await engine.get_steps(instance.id))[0]

    clock.advance(hours=1)
    await engine.handle_step_timeout(step.id)

    step = (await engine.get_steps(instance.id))[0]
    assert step.status == StepStatus.ACTIVE
    assert step.approver_role == "MANAGER"
    assert step.approver_ids == ["U1"]
    assert step.metadata["escalated"] is True
    assert step.metadata["escalated_at"] == clock.now.isoformat()
    assert events.events_named(EVENT_ESCALATED)
    assert sink.sent_to("M1", NotificationChannel.IN_APP)
    await _assert_invariants(engine, instance.id, 2)


@pytest.mark.asyncio
async def test_revert_moves_back_one_step(engine):
    template = await _two_step_template(engine)
    instance = await engine.start_workflow(template.id, "purchase_order", "PO-6", "U9")
    steps = await engine.get_steps(instance.id)
    await engine.approve_step(steps[0].id, "U1", "ok")
    actions_before = len(await engine.get_history(instance.id))

    instance = await engine.revert(instance.id, "U9")

    assert instance.current_step_order == 1
    steps = await engine.get_steps(instance.id)
    assert steps[0].status == StepStatus.ACTIVE
    assert steps[0].approved_by is None
    assert steps[0].approved_at is None
    assert steps[0].comments is None
    assert steps[1].status == StepStatus.PENDING
    await _assert_invariants(engine, instance.id, 2)

    history = await engine.get_history(instance.id)
    assert len(history) == actions_before + 1
    assert history[-1].type == ActionType.COMMENT

    with pytest.raises(InvalidStateError):
        await engine.revert(instance.id, "U9")


@pytest.mark.asyncio
async def test_reject_twice_fails(engine, events):
    template = await _two_step_template(engine)
    instance = await engine.start_workflow(template.id, "purchase_order", "PO-7", "U9")
    step = (await engine.get_steps(instance.id))[0]

    await engine.reject_step(step.id, "U1", "too expensive")
    with pytest.raises(InvalidStateError):
        await engine.reject_step(step.id, "U1", "still too expensive")

    instance = await engine.get_instance(instance.id)
    assert instance.status == InstanceStatus.REJECTED
    assert len(events.events_named(EVENT_REJECTED)) == 1


@pytest.mark.asyncio
async def test_escalation_replaces_approvers(engine):
    template = await _two_step_template(
        engine,
        escalation={"escalate_after_hours": 24, "escalate_to_principal_ids": ["M1"]},
    )
    instance = await engine.start_workflow(template.id, "purchase_order", "PO-8", "U9")
    step = (await engine.get_steps(instance.id))[0]

    await engine.escalate(instance.id, "U9")

    with pytest.raises(UnauthorizedError):
        await engine.approve_step(step.id, "U1", "ok")
    approved = await engine.approve_step(step.id, "M1", "ok")
    assert approved.status == StepStatus.APPROVED


@pytest.mark.asyncio
async def test_role_only_escalation_keeps_explicit_approvers(engine, clock):
    template = await _two_step_template(
        engine,
        timeout_hours=2,
        escalation={"escalate_after_hours": 2, "escalate_to_role": "MANAGER"},
    )
    instance = await engine.start_workflow(template.id, "purchase_order", "PO-10", "U9")
    step = (await engine.get_steps(instance.id))[0]

    clock.advance(hours=2)
    await engine.handle_step_timeout(step.id)

    step = (await engine.get_steps(instance.id))[0]
    assert step.approver_role == "MANAGER"
    assert step.approver_ids == ["U1"]
    approved = await engine.approve_step(step.id, "U1", "still mine")
    assert approved.status == StepStatus.APPROVED


@pytest.mark.asyncio
async def test_id_only_escalation_keeps_approver_role(engine):
    template = await engine.templates.create_template(
        name="Payment",
        entity_type="payment",
        steps=[
            {
                "name": "Finance",
                "order": 1,
                "approver_role": "FINANCE",
                "escalation": {
                    "escalate_after_hours": 4,
                    "escalate_to_principal_ids": ["M1"],
                },
            }
        ],
    )
    instance = await engine.start_workflow(template.id, "payment", "PAY-1", "U9")

    await engine.escalate(instance.id, "U9")

    step = (await engine.get_steps(instance.id))[0]
    assert step.approver_role == "FINANCE"
    assert step.approver_ids == ["M1"]
    history = step.metadata["escalation_history"]
    assert history[0]["from_role"] == "FINANCE"
    assert history[0]["to_ids"] == ["M1"]
    approved = await engine.approve_step(step.id, "U2", "ok")
    assert approved.status == StepStatus.APPROVED


@pytest.mark.asyncio
async def test_escalate_without_config_fails(engine):
    template = await _two_step_template(engine)
    instance = await engine.start_workflow(template.id, "purchase_order", "PO-9", "U9")
    with pytest.raises(InvalidStateError):
        await engine.escalate(instance.id, "U9")


@pytest.mark.asyncio
async def test_auto_approve_only_step_completes_as_system(engine):
    template = await engine.templates.create_template(
        name="Low value",
        entity_type="purchase_order",
        steps=[{"name": "Auto", "order": 1, "auto_approve": True}],
    )
    instance = await engine.start_workflow(template.id, "purchase_order", "PO-10", "U9")
    assert instance.status == InstanceStatus.COMPLETED

    history = await engine.get_history(instance.id)
    approvals = [a for a in history if a.type == ActionType.APPROVAL]
    assert len(approvals) == 1
    assert approvals[0].executed_by == "system"
    assert approvals[0].result.message == "Auto-approved"


@pytest.mark.asyncio
async def test_auto_approve_chain_stops_at_manual_step(engine):
    template = await engine.templates.create_template(
        name="Mixed",
        entity_type="purchase_order",
        steps=[
            {"name": "Auto", "order": 1, "auto_approve": True},
            {"name": "Manual", "order": 2, "approver_ids": ["U1"]},
        ],
    )
    instance = await engine.start_workflow(template.id, "purchase_order", "PO-11", "U9")
    assert instance.status == InstanceStatus.ACTIVE
    assert instance.current_step_order == 2
    await _assert_invariants(engine, instance.id, 2)


@pytest.mark.asyncio
async def test_unauthorized_approval_leaves_step_active(engine):
    template = await _two_step_template(engine)
    instance = await engine.start_workflow(template.id, "purchase_order", "PO-12", "U9")
    step = (await engine.get_steps(instance.id))[0]

    with pytest.raises(UnauthorizedError):
        await engine.approve_step(step.id, "U3", "ok")
    step = (await engine.get_steps(instance.id))[0]
    assert step.status == StepStatus.ACTIVE


@pytest.mark.asyncio
async def test_concurrent_approvals_only_one_wins(engine):
    template = await _two_step_template(engine)
    instance = await engine.start_workflow(template.id, "purchase_order", "PO-13", "U9")
    step = (await engine.get_steps(instance.id))[0]

    results = await asyncio.gather(
        engine.approve_step(step.id, "U1", "first"),
        engine.approve_step(step.id, "U1", "second"),
        return_exceptions=True,
    )
    errors = [r for r in results if isinstance(r, Exception)]
    assert len(errors) == 1
    assert isinstance(errors[0], InvalidStateError)

    history = await engine.get_history(instance.id)
    assert len([a for a in history if a.type == ActionType.APPROVAL]) == 1
    await _assert_invariants(engine, instance.id, 2)


@pytest.mark.asyncio
async def test_start_requires_matching_active_template(engine):
    template = await _two_step_template(engine)

    with pytest.raises(NotFoundError):
        await engine.start_workflow("missing", "purchase_order", "PO-14", "U9")
    with pytest.raises(NotFoundError):
        await engine.start_workflow(template.id, "invoice", "INV-1", "U9")

    await engine.templates.deactivate_template(template.id)
    with pytest.raises(NotFoundError):
        await engine.start_workflow(template.id, "purchase_order", "PO-14", "U9")
