import itertools
import os
from datetime import UTC, datetime, timedelta

# Tests run against the in-memory store with local notifications
os.environ.setdefault("STORAGE_BACKEND", "memory")
os.environ.setdefault("NOTIFICATION_BACKEND", "local")

import pytest  # noqa: E402

from slotswap.auth.verify import auth_dependency  # noqa: E402
from slotswap.features.swaps.domain import Member, Slot, SlotStatus  # noqa: E402
from slotswap.features.swaps.notifications.events import EventBus  # noqa: E402
from slotswap.features.swaps.repository.memory import InMemorySwapStore  # noqa: E402
from slotswap.features.swaps.services.negotiation_engine import NegotiationEngine  # noqa: E402
from slotswap.features.swaps.services.slot_service import SlotService  # noqa: E402

BASE_TIME = datetime(2026, 11, 2, 9, 0, tzinfo=UTC)

ALICE = Member(id="alice", name="Alice", email="alice@example.com", current_group_id="group-1")
BOB = Member(id="bob", name="Bob", email="bob@example.com", current_group_id="group-1")
CAROL = Member(id="carol", name="Carol", email="carol@example.com", current_group_id="group-1")
DAVE = Member(id="dave", name="Dave", email="dave@example.com", current_group_id="group-2")
ERIN = Member(id="erin", name="Erin", email="erin@example.com", current_group_id=None)


@pytest.fixture
def store():
    store = InMemorySwapStore()
    for member in (ALICE, BOB, CAROL, DAVE, ERIN):
        store.members.add_member(member)
    return store


@pytest.fixture
def event_bus():
    return EventBus()


@pytest.fixture
def engine(store, event_bus):
    return NegotiationEngine(store, event_bus)


@pytest.fixture
def slot_service(store):
    return SlotService(store)


@pytest.fixture
def make_slot(store):
    counter = itertools.count(1)

    async def _make(
        owner_id: str,
        status: SlotStatus = SlotStatus.SWAPPABLE,
        group_id: str | None = "group-1",
        title: str | None = None,
    ) -> Slot:
        n = next(counter)
        start = BASE_TIME + timedelta(hours=n)
        return await store.slots.create(
            Slot(
                id=f"slot-{n}",
                title=title or f"Shift {n}",
                start_time=start,
                end_time=start + timedelta(hours=1),
                status=status,
                owner_id=owner_id,
                group_id=group_id,
            )
        )

    return _make


@pytest.fixture
def recorded_events(event_bus):
    events = []

    async def _record(event):
        events.append(event)

    event_bus.subscribe(_record)
    return events


class FakeChannel:
    def __init__(self, open_: bool = True, fail: bool = False):
        self.open = open_
        self.fail = fail
        self.sent: list[str] = []

    @property
    def is_open(self) -> bool:
        return self.open

    async def send_text(self, data: str) -> None:
        if self.fail:
            raise ConnectionError("socket gone")
        self.sent.append(data)


@pytest.fixture
def channel_factory():
    return FakeChannel


@pytest.fixture
def fake_channel():
    return FakeChannel()


class ActingUser:
    """Mutable caller identity for API tests."""

    def __init__(self, user_id: str = "alice"):
        self.id = user_id


@pytest.fixture
def acting_user():
    return ActingUser()


@pytest.fixture
def auth_override(acting_user):
    def _override():
        return {"sub": acting_user.id}

    return _override


@pytest.fixture
def apply_auth_override(auth_override):
    def _apply(app):
        app.dependency_overrides[auth_dependency] = auth_override

    return _apply
