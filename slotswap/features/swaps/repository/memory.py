"""
In-memory persistence for slots, swap requests and group membership.

Used for local development (STORAGE_BACKEND=memory) and tests. All data
is lost when the process exits.

Each method body runs without awaiting, so on a single event loop every
call, including a conditional update, is atomic. Transactions keep an undo
journal and restore prior values when the body raises.
"""

from collections.abc import AsyncGenerator, Iterable
from contextlib import asynccontextmanager
from dataclasses import replace
from typing import Any

from slotswap.features.swaps.domain import (
    Member,
    Slot,
    SlotChanges,
    SlotStatus,
    SwapRequest,
    SwapRequestStatus,
)
from slotswap.features.swaps.domain.models import as_utc, utc_now
from slotswap.features.swaps.repository.base import (
    MemberDirectory,
    SlotRegistry,
    StoreSession,
    SwapLedger,
    SwapStore,
)
from slotswap.infrastructure.observability.logging import get_logger

logger = get_logger(__name__)

_MISSING = object()


class _UndoJournal:
    """Records previous values so a failed transaction can be reverted."""

    def __init__(self):
        self._entries: list[tuple[dict[str, Any], str, Any]] = []

    def record(self, table: dict[str, Any], key: str) -> None:
        self._entries.append((table, key, table.get(key, _MISSING)))

    def rollback(self) -> None:
        for table, key, previous in reversed(self._entries):
            if previous is _MISSING:
                table.pop(key, None)
            else:
                table[key] = previous
        self._entries.clear()


class InMemorySlotRegistry(SlotRegistry):
    def __init__(self, table: dict[str, Slot], journal: _UndoJournal | None = None):
        self._table = table
        self._journal = journal

    def _write(self, slot_id: str, slot: Slot | None) -> None:
        if self._journal is not None:
            self._journal.record(self._table, slot_id)
        if slot is None:
            self._table.pop(slot_id, None)
        else:
            self._table[slot_id] = slot

    async def get(self, slot_id: str) -> Slot | None:
        slot = self._table.get(slot_id)
        return replace(slot) if slot else None

    async def get_many(self, slot_ids: Iterable[str]) -> dict[str, Slot]:
        return {
            slot_id: replace(self._table[slot_id])
            for slot_id in slot_ids
            if slot_id in self._table
        }

    async def create(self, slot: Slot) -> Slot:
        if slot.id in self._table:
            raise ValueError(f"Slot {slot.id} already exists")
        # Stored like a TIMESTAMPTZ column: always aware, in UTC
        stored = replace(slot, start_time=as_utc(slot.start_time), end_time=as_utc(slot.end_time))
        self._write(slot.id, stored)
        return replace(stored)

    async def compare_and_set(
        self,
        slot_id: str,
        *,
        expected_status: SlotStatus,
        expected_owner_id: str,
        changes: SlotChanges,
    ) -> bool:
        if changes.is_empty():
            raise ValueError("compare_and_set needs at least one change")

        current = self._table.get(slot_id)
        if (
            current is None
            or current.status != expected_status
            or current.owner_id != expected_owner_id
        ):
            return False

        updated = replace(
            current,
            status=changes.status or current.status,
            owner_id=changes.owner_id or current.owner_id,
            title=changes.title if changes.title is not None else current.title,
            start_time=as_utc(changes.start_time or current.start_time),
            end_time=as_utc(changes.end_time or current.end_time),
            updated_at=utc_now(),
        )
        self._write(slot_id, updated)
        return True

    async def delete_if(
        self, slot_id: str, *, expected_status: SlotStatus, expected_owner_id: str
    ) -> bool:
        current = self._table.get(slot_id)
        if (
            current is None
            or current.status != expected_status
            or current.owner_id != expected_owner_id
        ):
            return False
        self._write(slot_id, None)
        return True

    async def list_for_owner(self, owner_id: str, group_id: str) -> list[Slot]:
        slots = [
            replace(slot)
            for slot in self._table.values()
            if slot.owner_id == owner_id and slot.group_id == group_id
        ]
        return sorted(slots, key=lambda slot: slot.start_time)

    async def list_swappable(self, owner_ids: Iterable[str]) -> list[Slot]:
        owners = set(owner_ids)
        slots = [
            replace(slot)
            for slot in self._table.values()
            if slot.status == SlotStatus.SWAPPABLE and slot.owner_id in owners
        ]
        return sorted(slots, key=lambda slot: slot.start_time)

    async def list_by_status(self, status: SlotStatus) -> list[Slot]:
        slots = [replace(slot) for slot in self._table.values() if slot.status == status]
        return sorted(slots, key=lambda slot: slot.start_time)


class InMemorySwapLedger(SwapLedger):
    def __init__(self, table: dict[str, SwapRequest], journal: _UndoJournal | None = None):
        self._table = table
        self._journal = journal

    def _write(self, request: SwapRequest) -> None:
        if self._journal is not None:
            self._journal.record(self._table, request.id)
        self._table[request.id] = request

    async def get(self, request_id: str) -> SwapRequest | None:
        request = self._table.get(request_id)
        return replace(request) if request else None

    async def create(self, request: SwapRequest) -> SwapRequest:
        if request.id in self._table:
            raise ValueError(f"Swap request {request.id} already exists")
        self._write(replace(request))
        return replace(request)

    async def compare_and_set_status(
        self,
        request_id: str,
        *,
        expected_status: SwapRequestStatus,
        new_status: SwapRequestStatus,
    ) -> bool:
        current = self._table.get(request_id)
        if current is None or current.status != expected_status:
            return False
        self._write(replace(current, status=new_status, updated_at=utc_now()))
        return True

    def _newest_first(self, requests: Iterable[SwapRequest]) -> list[SwapRequest]:
        return sorted(
            (replace(request) for request in requests),
            key=lambda request: request.created_at,
            reverse=True,
        )

    async def list_incoming(self, receiver_id: str) -> list[SwapRequest]:
        return self._newest_first(
            request
            for request in self._table.values()
            if request.receiver_id == receiver_id and request.status == SwapRequestStatus.PENDING
        )

    async def list_outgoing(self, initiator_id: str) -> list[SwapRequest]:
        return self._newest_first(
            request for request in self._table.values() if request.initiator_id == initiator_id
        )

    async def list_by_status(self, status: SwapRequestStatus) -> list[SwapRequest]:
        requests = [replace(r) for r in self._table.values() if r.status == status]
        return sorted(requests, key=lambda request: request.created_at)


class InMemoryMemberDirectory(MemberDirectory):
    """Membership data seeded by the caller (tests, local development)."""

    def __init__(self):
        self._members: dict[str, Member] = {}
        self._groups: dict[str, set[str]] = {}

    def add_member(self, member: Member, group_ids: Iterable[str] = ()) -> Member:
        groups = set(group_ids)
        if member.current_group_id:
            groups.add(member.current_group_id)
        self._members[member.id] = member
        for group_id in groups:
            self._groups.setdefault(group_id, set()).add(member.id)
        return member

    async def get_member(self, user_id: str) -> Member | None:
        return self._members.get(user_id)

    async def get_members(self, user_ids: Iterable[str]) -> dict[str, Member]:
        return {
            user_id: self._members[user_id] for user_id in user_ids if user_id in self._members
        }

    async def share_group(self, user_id: str, other_user_id: str) -> bool:
        return any(
            user_id in members and other_user_id in members for members in self._groups.values()
        )

    async def list_group_member_ids(self, group_id: str) -> list[str]:
        return sorted(self._groups.get(group_id, set()))


class InMemorySwapStore(SwapStore):
    """SwapStore over plain dicts."""

    def __init__(self):
        self._slot_table: dict[str, Slot] = {}
        self._request_table: dict[str, SwapRequest] = {}
        self.slots = InMemorySlotRegistry(self._slot_table)
        self.requests = InMemorySwapLedger(self._request_table)
        self.members = InMemoryMemberDirectory()

    @asynccontextmanager
    async def transaction(self) -> AsyncGenerator[StoreSession, None]:
        journal = _UndoJournal()
        try:
            yield StoreSession(
                slots=InMemorySlotRegistry(self._slot_table, journal),
                requests=InMemorySwapLedger(self._request_table, journal),
            )
        except BaseException:
            journal.rollback()
            logger.debug("In-memory transaction rolled back")
            raise
