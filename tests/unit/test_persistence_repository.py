from datetime import datetime, timedelta, timezone

import pytest

from tenderflow.contracts import (
    ActionResult,
    ActionStatus,
    ActionTrigger,
    ActionType,
    InstanceStatus,
    StepBlueprint,
    StepStatus,
    WorkflowAction,
    WorkflowInstance,
    WorkflowStep,
    WorkflowTemplate,
)
from tenderflow.persistence import (
    DueTimer,
    InMemoryWorkflowRepository,
    SQLiteWorkflowRepository,
)

T0 = datetime(2024, 1, 1, 9, 0, tzinfo=timezone.utc)


@pytest.fixture(params=["inmemory", "sqlite"])
def repo(request, tmp_path):
    if request.param == "sqlite":
        return SQLiteWorkflowRepository(tmp_path / "wf.db")
    return InMemoryWorkflowRepository()


def _template(**kwargs) -> WorkflowTemplate:
    return WorkflowTemplate(
        name="Purchase order",
        entity_type="purchase_order",
        steps=[StepBlueprint(name="Manager", order=1, approver_ids=["U1"])],
        **kwargs,
    )


@pytest.mark.asyncio
async def test_template_store(repo):
    active = _template(created_at=T0)
    inactive = _template(active=False, version=2, created_at=T0 + timedelta(hours=1))
    await repo.save_template(active)
    await repo.save_template(inactive)

    loaded = await repo.get_template(active.id)
    assert loaded == active
    assert [t.id for t in await repo.list_templates(active_only=True)] == [active.id]
    assert [t.id for t in await repo.list_templates()] == [inactive.id, active.id]
    assert await repo.get_template("missing") is None


@pytest.mark.asyncio
async def test_instance_steps_and_actions(repo):
    instance = WorkflowInstance(
        template_id="t1",
        entity_type="purchase_order",
        entity_id="PO-1",
        initiator_id="U9",
        context={"amount": 10, "lines": [{"sku": "A"}]},
        created_at=T0,
    )
    await repo.save_instance(instance)
    steps = [
        WorkflowStep(instance_id=instance.id, name=f"s{n}", order=n, created_at=T0)
        for n in (2, 1)
    ]
    steps[1].status = StepStatus.ACTIVE
    await repo.save_steps(steps)

    instance.status = InstanceStatus.ACTIVE
    await repo.save_instance(instance)
    assert (await repo.get_instance(instance.id)).status == InstanceStatus.ACTIVE
    assert [s.order for s in await repo.list_steps(instance.id)] == [1, 2]
    assert [s.id for s in await repo.list_active_steps()] == [steps[1].id]
    assert await repo.list_instances(status=InstanceStatus.ACTIVE, entity_id="PO-1")
    assert await repo.list_instances(status=InstanceStatus.COMPLETED) == []

    first = WorkflowAction(
        step_id=steps[1].id,
        instance_id=instance.id,
        type=ActionType.EMAIL,
        trigger=ActionTrigger.ON_ENTER,
        executed_by="system",
    )
    second = WorkflowAction(
        step_id=steps[1].id,
        instance_id=instance.id,
        type=ActionType.APPROVAL,
        trigger=ActionTrigger.MANUAL,
        executed_by="U1",
    )
    await repo.save_action(first)
    await repo.save_action(second)
    first.status = ActionStatus.FAILED
    first.result = ActionResult(success=False, error="boom")
    await repo.save_action(first)

    actions = await repo.list_actions(instance.id)
    assert [a.id for a in actions] == [first.id, second.id]
    assert actions[0].result.error == "boom"

    await repo.delete_instance(instance.id)
    assert await repo.get_instance(instance.id) is None
    assert await repo.list_steps(instance.id) == []
    assert await repo.list_actions(instance.id) == []


@pytest.mark.asyncio
async def test_timer_table(repo):
    await repo.save_timer(DueTimer(step_id="s1", instance_id="i1", fire_at=T0))
    await repo.save_timer(
        DueTimer(step_id="s2", instance_id="i1", fire_at=T0 + timedelta(hours=2))
    )
    # re-arming replaces the previous fire time
    await repo.save_timer(
        DueTimer(step_id="s1", instance_id="i1", fire_at=T0 + timedelta(hours=1))
    )

    due = await repo.list_due_timers(T0 + timedelta(hours=1))
    assert [t.step_id for t in due] == ["s1"]
    assert due[0].fire_at == T0 + timedelta(hours=1)
    assert len(await repo.list_timers()) == 2

    await repo.delete_timer("s1")
    await repo.delete_timer("s1")
    assert [t.step_id for t in await repo.list_timers()] == ["s2"]


@pytest.mark.asyncio
async def test_inmemory_repository_returns_copies():
    repo = InMemoryWorkflowRepository()
    template = _template()
    await repo.save_template(template)

    loaded = await repo.get_template(template.id)
    loaded.active = False
    assert (await repo.get_template(template.id)).active is True


@pytest.mark.asyncio
async def test_sqlite_repository_survives_reopen(tmp_path):
    path = tmp_path / "wf.db"
    repo = SQLiteWorkflowRepository(path)
    template = _template()
    await repo.save_template(template)
    repo.close()

    reopened = SQLiteWorkflowRepository(path)
    assert (await reopened.get_template(template.id)).name == "Purchase order"
