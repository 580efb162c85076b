"""Event bus tests."""

import pytest

from tenderflow.contracts import WorkflowEvent
from tenderflow.events.inmemory import InMemoryEventPublisher


@pytest.mark.asyncio
async def test_inmemory_publisher_basic():
    """Test basic InMemoryEventPublisher publish/subscribe."""
    publisher = InMemoryEventPublisher()

    sent = await publisher.publish("workflow.started", {"instance_id": "i1"})
    await publisher.publish("workflow.completed", {"instance_id": "i1"})

    received = []
    async for event in publisher.subscribe("workflow.started", lifespan=0.3):
        received.append(event)
        break

    assert received == [sent]
    assert received[0].payload == {"instance_id": "i1"}
    assert [e.name for e in publisher.history] == [
        "workflow.started",
        "workflow.completed",
    ]
    assert len(publisher.events_named("workflow.completed")) == 1


@pytest.mark.asyncio
async def test_inmemory_subscribe_stops_after_lifespan():
    publisher = InMemoryEventPublisher()
    received = [e async for e in publisher.subscribe("nothing", lifespan=0.2)]
    assert received == []


@pytest.mark.asyncio
async def test_redis_publisher_import():
    """Test Redis publisher can be imported and configured without a server."""
    try:
        from tenderflow.events.redis import RedisEventPublisher

        publisher = RedisEventPublisher(channel_prefix="tf")
        assert publisher.host == "localhost"
        assert publisher.port == 6379
        assert publisher._queue_name("workflow.started") == "tf:workflow.started"
    except ImportError:
        pytest.fail("RedisEventPublisher should be importable")


def test_event_envelope_carries_id_and_timestamp():
    event = WorkflowEvent(name="workflow.escalated")
    assert event.event_id
    assert event.emitted_at.tzinfo is not None
