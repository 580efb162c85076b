import httpx
import pytest

from tenderflow.actions import ActionExecutor
from tenderflow.contracts import (
    ActionSpec,
    ActionStatus,
    ActionTrigger,
    NotificationChannel,
    WorkflowInstance,
    WorkflowStep,
)
from tenderflow.dispatch import DispatchQueue
from tenderflow.webhooks import HttpWebhookDispatcher


def _instance():
    return WorkflowInstance(
        template_id="t1",
        entity_type="purchase_order",
        entity_id="PO-1",
        initiator_id="U9",
        context={"amount": 1200, "vendor": {"name": "Acme"}},
    )


def _step(instance, *specs):
    return WorkflowStep(
        instance_id=instance.id,
        name="Review",
        order=1,
        actions=[ActionSpec(**s) for s in specs],
    )


@pytest.mark.asyncio
async def test_actions_are_recorded_then_executed_on_drain(repo, sink, events):
    executor = ActionExecutor(repo, sink, events)
    instance = _instance()
    step = _step(
        instance,
        {"type": "sms", "trigger": "on_enter", "config": {"to": ["+1555"], "message": "{{vendor.name}} needs you"}},
        {"type": "create_task", "trigger": "on_enter", "config": {"title": "Check {{amount}}"}},
        {"type": "email", "trigger": "on_reject", "config": {"to": "x@example.com"}},
    )
    queue = DispatchQueue()

    records = await executor.run_actions(step, ActionTrigger.ON_ENTER, instance, queue)
    assert len(records) == 2
    stored = await repo.list_actions(instance.id)
    assert [a.status for a in stored] == [ActionStatus.PENDING, ActionStatus.PENDING]

    await queue.drain()
    stored = await repo.list_actions(instance.id)
    assert [a.status for a in stored] == [ActionStatus.COMPLETED, ActionStatus.COMPLETED]
    assert sink.sent_to("+1555", NotificationChannel.SMS)[0].message == "Acme needs you"
    assert events.events_named("workflow.create_task")[0].payload["title"] == "Check 1200"


@pytest.mark.asyncio
async def test_webhook_action_records_retries(repo, sink, events):
    calls = {"n": 0}

    def handler(request: httpx.Request) -> httpx.Response:
        calls["n"] += 1
        return httpx.Response(500 if calls["n"] == 1 else 200)

    webhooks = HttpWebhookDispatcher(
        max_retries=2,
        backoff_base=0,
        jitter=0,
        client=httpx.AsyncClient(transport=httpx.MockTransport(handler)),
    )
    executor = ActionExecutor(repo, sink, events, webhooks, webhook_max_retries=2)
    instance = _instance()
    step = _step(
        instance,
        {"type": "webhook", "trigger": "on_approve", "config": {"url": "https://hooks.example.com"}},
    )
    queue = DispatchQueue()
    await executor.run_actions(step, ActionTrigger.ON_APPROVE, instance, queue)
    await queue.drain()

    action = (await repo.list_actions(instance.id))[0]
    assert action.status == ActionStatus.COMPLETED
    assert action.retry_count == 1
    assert action.max_retries == 2


@pytest.mark.asyncio
async def test_webhook_without_dispatcher_is_skipped(repo, sink, events):
    executor = ActionExecutor(repo, sink, events)
    instance = _instance()
    step = _step(
        instance,
        {"type": "webhook", "trigger": "on_exit", "config": {"url": "https://hooks.example.com"}},
    )
    queue = DispatchQueue()
    await executor.run_actions(step, ActionTrigger.ON_EXIT, instance, queue)
    await queue.drain()

    action = (await repo.list_actions(instance.id))[0]
    assert action.status == ActionStatus.COMPLETED
    assert "skipped" in action.result.message
