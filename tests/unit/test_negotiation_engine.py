"""
Tests for the swap negotiation engine against the in-memory store.
"""

import asyncio
from contextlib import asynccontextmanager
from unittest.mock import AsyncMock

import pytest

from slotswap.db.helpers import DatabaseError
from slotswap.features.swaps.domain import (
    AuthorizationError,
    InternalError,
    NotFoundError,
    SlotChanges,
    SlotStatus,
    StateConflictError,
    SwapRequestStatus,
    ValidationError,
)
from slotswap.features.swaps.jobs.consistency_check_job import find_invariant_violations
from slotswap.features.swaps.notifications.events import SwapEventType
from slotswap.features.swaps.repository.memory import InMemorySlotRegistry


async def _assert_consistent(store):
    report = await find_invariant_violations(store)
    assert report.ok, report


@pytest.mark.asyncio
async def test_create_locks_both_slots_and_notifies_receiver(
    engine, store, make_slot, event_bus, recorded_events
):
    mine = await make_slot("alice")
    theirs = await make_slot("bob")

    details = await engine.create_swap_request("alice", mine.id, theirs.id)

    assert details.request.status == SwapRequestStatus.PENDING
    assert details.request.initiator_id == "alice"
    assert details.request.receiver_id == "bob"
    assert details.initiator.name == "Alice"
    assert details.receiver.email == "bob@example.com"
    assert details.initiator_slot.status == SlotStatus.SWAP_PENDING
    assert details.receiver_slot.status == SlotStatus.SWAP_PENDING
    assert (await store.slots.get(mine.id)).status == SlotStatus.SWAP_PENDING
    assert (await store.slots.get(theirs.id)).status == SlotStatus.SWAP_PENDING

    await event_bus.drain()
    assert len(recorded_events) == 1
    event = recorded_events[0]
    assert event.type == SwapEventType.NEW_SWAP_REQUEST
    assert event.recipient_id == "bob"
    assert event.data["id"] == details.request.id
    assert event.data["status"] == "PENDING"

    await _assert_consistent(store)


@pytest.mark.asyncio
async def test_accept_exchanges_owners(engine, store, make_slot, event_bus, recorded_events):
    mine = await make_slot("alice")
    theirs = await make_slot("bob")
    created = await engine.create_swap_request("alice", mine.id, theirs.id)

    details = await engine.respond_to_swap_request("bob", created.request.id, True)

    assert details.request.status == SwapRequestStatus.ACCEPTED
    offered = await store.slots.get(mine.id)
    requested = await store.slots.get(theirs.id)
    assert (offered.owner_id, offered.status) == ("bob", SlotStatus.BUSY)
    assert (requested.owner_id, requested.status) == ("alice", SlotStatus.BUSY)

    await event_bus.drain()
    assert [e.type for e in recorded_events] == [
        SwapEventType.NEW_SWAP_REQUEST,
        SwapEventType.SWAP_ACCEPTED,
    ]
    assert recorded_events[1].recipient_id == "alice"
    assert recorded_events[1].data["status"] == "ACCEPTED"

    await _assert_consistent(store)


@pytest.mark.asyncio
async def test_reject_restores_swappable_with_original_owners(
    engine, store, make_slot, event_bus, recorded_events
):
    mine = await make_slot("alice")
    theirs = await make_slot("bob")
    created = await engine.create_swap_request("alice", mine.id, theirs.id)

    details = await engine.respond_to_swap_request("bob", created.request.id, False)

    assert details.request.status == SwapRequestStatus.REJECTED
    offered = await store.slots.get(mine.id)
    requested = await store.slots.get(theirs.id)
    assert (offered.owner_id, offered.status) == ("alice", SlotStatus.SWAPPABLE)
    assert (requested.owner_id, requested.status) == ("bob", SlotStatus.SWAPPABLE)

    await event_bus.drain()
    assert recorded_events[-1].type == SwapEventType.SWAP_REJECTED
    assert recorded_events[-1].recipient_id == "alice"

    await _assert_consistent(store)


@pytest.mark.asyncio
async def test_contested_target_second_offer_conflicts(engine, store, make_slot):
    alice_slot = await make_slot("alice")
    carol_slot = await make_slot("carol")
    bob_slot = await make_slot("bob")

    await engine.create_swap_request("alice", alice_slot.id, bob_slot.id)

    with pytest.raises(StateConflictError, match="Their slot is not swappable"):
        await engine.create_swap_request("carol", carol_slot.id, bob_slot.id)

    assert (await store.slots.get(carol_slot.id)).status == SlotStatus.SWAPPABLE
    assert await store.requests.list_outgoing("carol") == []
    await _assert_consistent(store)


@pytest.mark.asyncio
async def test_self_swap_is_rejected(engine, store, make_slot):
    first = await make_slot("alice")
    second = await make_slot("alice")

    with pytest.raises(ValidationError, match="Cannot swap with yourself"):
        await engine.create_swap_request("alice", first.id, second.id)

    assert (await store.slots.get(first.id)).status == SlotStatus.SWAPPABLE
    assert (await store.slots.get(second.id)).status == SlotStatus.SWAPPABLE


@pytest.mark.asyncio
async def test_same_slot_on_both_sides_is_a_self_swap(engine, make_slot):
    slot = await make_slot("alice")

    with pytest.raises(ValidationError):
        await engine.create_swap_request("alice", slot.id, slot.id)


@pytest.mark.asyncio
async def test_create_unknown_slot(engine, make_slot):
    mine = await make_slot("alice")

    with pytest.raises(NotFoundError, match="One or both slots not found"):
        await engine.create_swap_request("alice", mine.id, "missing")


@pytest.mark.asyncio
async def test_create_with_someone_elses_slot(engine, make_slot):
    carol_slot = await make_slot("carol")
    bob_slot = await make_slot("bob")

    with pytest.raises(AuthorizationError, match="You do not own the offered slot"):
        await engine.create_swap_request("alice", carol_slot.id, bob_slot.id)


@pytest.mark.asyncio
async def test_create_across_groups(engine, make_slot):
    mine = await make_slot("alice")
    outsider = await make_slot("dave", group_id="group-2")

    with pytest.raises(AuthorizationError):
        await engine.create_swap_request("alice", mine.id, outsider.id)


@pytest.mark.asyncio
@pytest.mark.parametrize(
    ("my_status", "their_status", "message"),
    [
        (SlotStatus.BUSY, SlotStatus.SWAPPABLE, "Your slot is not swappable"),
        (SlotStatus.SWAPPABLE, SlotStatus.BUSY, "Their slot is not swappable"),
    ],
)
async def test_create_requires_swappable_slots(
    engine, store, make_slot, my_status, their_status, message
):
    mine = await make_slot("alice", status=my_status)
    theirs = await make_slot("bob", status=their_status)

    with pytest.raises(StateConflictError, match=message):
        await engine.create_swap_request("alice", mine.id, theirs.id)

    assert (await store.slots.get(mine.id)).status == my_status
    assert (await store.slots.get(theirs.id)).status == their_status


@pytest.mark.asyncio
async def test_create_requires_both_ids(engine):
    with pytest.raises(ValidationError):
        await engine.create_swap_request("alice", "", "slot-1")


@pytest.mark.asyncio
async def test_concurrent_creates_for_same_slot_have_one_winner(engine, store, make_slot):
    alice_slot = await make_slot("alice")
    carol_slot = await make_slot("carol")
    bob_slot = await make_slot("bob")

    results = await asyncio.gather(
        engine.create_swap_request("alice", alice_slot.id, bob_slot.id),
        engine.create_swap_request("carol", carol_slot.id, bob_slot.id),
        return_exceptions=True,
    )

    failures = [r for r in results if isinstance(r, Exception)]
    successes = [r for r in results if not isinstance(r, Exception)]
    assert len(successes) == 1
    assert len(failures) == 1
    assert isinstance(failures[0], StateConflictError)

    loser_slot = carol_slot if successes[0].request.initiator_id == "alice" else alice_slot
    assert (await store.slots.get(loser_slot.id)).status == SlotStatus.SWAPPABLE
    await _assert_consistent(store)


@pytest.mark.asyncio
async def test_lost_lock_rolls_back_first_slot(engine, store, make_slot, monkeypatch):
    mine = await make_slot("alice")
    theirs = await make_slot("bob")

    original_transaction = store.transaction

    def transaction_with_interference():
        ctx = original_transaction()

        class _Interfering:
            async def __aenter__(self):
                session = await ctx.__aenter__()
                # Bob pulls his slot back between the read and the lock
                await store.slots.compare_and_set(
                    theirs.id,
                    expected_status=SlotStatus.SWAPPABLE,
                    expected_owner_id="bob",
                    changes=SlotChanges(status=SlotStatus.BUSY),
                )
                return session

            async def __aexit__(self, *exc_info):
                return await ctx.__aexit__(*exc_info)

        return _Interfering()

    monkeypatch.setattr(store, "transaction", transaction_with_interference)

    with pytest.raises(StateConflictError, match="no longer swappable"):
        await engine.create_swap_request("alice", mine.id, theirs.id)

    assert (await store.slots.get(mine.id)).status == SlotStatus.SWAPPABLE
    assert (await store.slots.get(theirs.id)).status == SlotStatus.BUSY
    assert await store.requests.list_outgoing("alice") == []


@pytest.mark.asyncio
async def test_respond_unknown_request(engine):
    with pytest.raises(NotFoundError):
        await engine.respond_to_swap_request("bob", "missing", True)


@pytest.mark.asyncio
async def test_respond_by_non_receiver(engine, store, make_slot):
    mine = await make_slot("alice")
    theirs = await make_slot("bob")
    created = await engine.create_swap_request("alice", mine.id, theirs.id)

    for user_id in ("alice", "carol"):
        with pytest.raises(AuthorizationError):
            await engine.respond_to_swap_request(user_id, created.request.id, True)

    assert (await store.requests.get(created.request.id)).status == SwapRequestStatus.PENDING


@pytest.mark.asyncio
async def test_respond_requires_boolean(engine):
    with pytest.raises(ValidationError):
        await engine.respond_to_swap_request("bob", "any", "yes")


@pytest.mark.asyncio
async def test_responding_twice_keeps_first_outcome(engine, store, make_slot):
    mine = await make_slot("alice")
    theirs = await make_slot("bob")
    created = await engine.create_swap_request("alice", mine.id, theirs.id)

    await engine.respond_to_swap_request("bob", created.request.id, True)

    with pytest.raises(StateConflictError, match="already been accepted"):
        await engine.respond_to_swap_request("bob", created.request.id, False)

    assert (await store.requests.get(created.request.id)).status == SwapRequestStatus.ACCEPTED
    assert (await store.slots.get(mine.id)).owner_id == "bob"
    assert (await store.slots.get(theirs.id)).owner_id == "alice"
    await _assert_consistent(store)


@pytest.mark.asyncio
async def test_concurrent_responses_have_one_winner(engine, store, make_slot):
    mine = await make_slot("alice")
    theirs = await make_slot("bob")
    created = await engine.create_swap_request("alice", mine.id, theirs.id)

    results = await asyncio.gather(
        engine.respond_to_swap_request("bob", created.request.id, True),
        engine.respond_to_swap_request("bob", created.request.id, False),
        return_exceptions=True,
    )

    failures = [r for r in results if isinstance(r, Exception)]
    assert len(failures) == 1
    assert isinstance(failures[0], StateConflictError)

    final = await store.requests.get(created.request.id)
    assert final.status.is_terminal
    await _assert_consistent(store)


@pytest.mark.asyncio
async def test_accept_with_tampered_slot_commits_nothing(engine, store, make_slot):
    mine = await make_slot("alice")
    theirs = await make_slot("bob")
    created = await engine.create_swap_request("alice", mine.id, theirs.id)

    # Simulate an out-of-band write that breaks the lock
    await store.slots.compare_and_set(
        theirs.id,
        expected_status=SlotStatus.SWAP_PENDING,
        expected_owner_id="bob",
        changes=SlotChanges(status=SlotStatus.BUSY),
    )

    with pytest.raises(InternalError):
        await engine.respond_to_swap_request("bob", created.request.id, True)

    assert (await store.requests.get(created.request.id)).status == SwapRequestStatus.PENDING
    offered = await store.slots.get(mine.id)
    assert (offered.owner_id, offered.status) == ("alice", SlotStatus.SWAP_PENDING)


@pytest.mark.asyncio
async def test_database_errors_surface_as_internal_error(engine, store, monkeypatch):
    monkeypatch.setattr(
        store.slots,
        "get_many",
        AsyncMock(side_effect=DatabaseError("connection lost", operation="fetch_all")),
    )

    with pytest.raises(InternalError):
        await engine.create_swap_request("alice", "slot-1", "slot-2")


@pytest.mark.asyncio
async def test_lock_contention_surfaces_as_conflict(engine, store, make_slot, monkeypatch):
    mine = await make_slot("alice")
    theirs = await make_slot("bob")

    @asynccontextmanager
    async def deadlocked_transaction():
        raise DatabaseError("deadlock detected", operation="execute", contention=True)
        yield

    monkeypatch.setattr(store, "transaction", deadlocked_transaction)

    with pytest.raises(StateConflictError):
        await engine.create_swap_request("alice", mine.id, theirs.id)

    assert (await store.slots.get(mine.id)).status == SlotStatus.SWAPPABLE
    assert (await store.slots.get(theirs.id)).status == SlotStatus.SWAPPABLE


@pytest.mark.asyncio
async def test_slots_are_written_in_id_order(engine, make_slot, monkeypatch):
    theirs = await make_slot("bob")
    mine = await make_slot("alice")
    assert theirs.id < mine.id

    written = []
    original_compare_and_set = InMemorySlotRegistry.compare_and_set

    async def recording_compare_and_set(self, slot_id, **kwargs):
        written.append(slot_id)
        return await original_compare_and_set(self, slot_id, **kwargs)

    monkeypatch.setattr(InMemorySlotRegistry, "compare_and_set", recording_compare_and_set)

    created = await engine.create_swap_request("alice", mine.id, theirs.id)
    assert written == [theirs.id, mine.id]

    written.clear()
    await engine.respond_to_swap_request("bob", created.request.id, True)
    assert written == [theirs.id, mine.id]


@pytest.mark.asyncio
async def test_crossing_offers_conflict_on_the_contested_slot(engine, store, make_slot):
    theirs = await make_slot("bob")
    mine = await make_slot("alice")

    results = await asyncio.gather(
        engine.create_swap_request("alice", mine.id, theirs.id),
        engine.create_swap_request("bob", theirs.id, mine.id),
        return_exceptions=True,
    )

    winners = [r for r in results if not isinstance(r, Exception)]
    losers = [r for r in results if isinstance(r, StateConflictError)]
    assert len(winners) == 1
    assert len(losers) == 1
    await _assert_consistent(store)


@pytest.mark.asyncio
async def test_list_swappable_slots_shows_other_members_only(engine, make_slot):
    await make_slot("alice")
    bob_late = await make_slot("bob")
    await make_slot("bob", status=SlotStatus.BUSY)
    carol_slot = await make_slot("carol")
    await make_slot("dave", group_id="group-2")

    listings = await engine.list_swappable_slots("alice")

    assert [listing.slot.id for listing in listings] == [bob_late.id, carol_slot.id]
    assert [listing.owner.name for listing in listings] == ["Bob", "Carol"]
    starts = [listing.slot.start_time for listing in listings]
    assert starts == sorted(starts)


@pytest.mark.asyncio
async def test_list_swappable_slots_requires_group(engine):
    with pytest.raises(ValidationError, match="Please create or join a group first"):
        await engine.list_swappable_slots("erin")


@pytest.mark.asyncio
async def test_incoming_and_outgoing_lists(engine, make_slot):
    alice_first = await make_slot("alice")
    alice_second = await make_slot("alice")
    bob_first = await make_slot("bob")
    bob_second = await make_slot("bob")

    first = await engine.create_swap_request("alice", alice_first.id, bob_first.id)
    second = await engine.create_swap_request("alice", alice_second.id, bob_second.id)
    await engine.respond_to_swap_request("bob", first.request.id, False)

    incoming = await engine.list_incoming_requests("bob")
    outgoing = await engine.list_outgoing_requests("alice")

    assert [d.request.id for d in incoming] == [second.request.id]
    assert {d.request.id for d in outgoing} == {first.request.id, second.request.id}
    created = [d.request.created_at for d in outgoing]
    assert created == sorted(created, reverse=True)
    assert all(d.receiver.name == "Bob" for d in outgoing)
    assert await engine.list_incoming_requests("alice") == []
