from datetime import datetime, timedelta, timezone

import pytest

from tenderflow.contracts import Principal
from tenderflow.engine import WorkflowEngine
from tenderflow.events import InMemoryEventPublisher
from tenderflow.notifications import InMemoryNotificationSink
from tenderflow.persistence import InMemoryWorkflowRepository
from tenderflow.principals import InMemoryPrincipalDirectory


class FakeClock:
    def __init__(self, start: datetime | None = None) -> None:
        self.now = start or datetime(2024, 1, 1, 9, 0, tzinfo=timezone.utc)

    def __call__(self) -> datetime:
        return self.now

    def advance(self, hours: float = 0, minutes: float = 0) -> datetime:
        self.now = self.now + timedelta(hours=hours, minutes=minutes)
        return self.now


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def directory():
    return InMemoryPrincipalDirectory(
        [
            Principal(id="U1", display_name="Uma", email="u1@example.com"),
            Principal(
                id="U2",
                display_name="Finn",
                email="u2@example.com",
                phone="+15550002",
                role="FINANCE",
            ),
            Principal(id="U3", display_name="Fay", role="FINANCE"),
            Principal(
                id="M1", display_name="Mia", email="m1@example.com", role="MANAGER"
            ),
        ]
    )


@pytest.fixture
def repo():
    return InMemoryWorkflowRepository()


@pytest.fixture
def sink():
    return InMemoryNotificationSink()


@pytest.fixture
def events():
    return InMemoryEventPublisher()


@pytest.fixture
def engine(repo, directory, sink, events, clock):
    return WorkflowEngine(
        repository=repo,
        directory=directory,
        notifications=sink,
        events=events,
        clock=clock,
        approval_link_base="https://approvals.example.com",
    )
