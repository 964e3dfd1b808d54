"""
Persistence contracts for the swap feature.

The negotiation engine talks only to these interfaces. Every write that
depends on prior state is a conditional update: it names the values the
row must still hold and reports whether it matched. A False result means
another writer got there first; callers never fall back to an
unconditional write.
"""

from abc import ABC, abstractmethod
from collections.abc import Iterable
from contextlib import AbstractAsyncContextManager
from dataclasses import dataclass

from slotswap.features.swaps.domain import (
    Member,
    Slot,
    SlotChanges,
    SlotStatus,
    SwapRequest,
    SwapRequestStatus,
)


class SlotRegistry(ABC):
    """Calendar slots keyed by id."""

    @abstractmethod
    async def get(self, slot_id: str) -> Slot | None: ...

    @abstractmethod
    async def get_many(self, slot_ids: Iterable[str]) -> dict[str, Slot]: ...

    @abstractmethod
    async def create(self, slot: Slot) -> Slot: ...

    @abstractmethod
    async def compare_and_set(
        self,
        slot_id: str,
        *,
        expected_status: SlotStatus,
        expected_owner_id: str,
        changes: SlotChanges,
    ) -> bool:
        """Apply changes only if status and owner still match; True when applied."""

    @abstractmethod
    async def delete_if(
        self, slot_id: str, *, expected_status: SlotStatus, expected_owner_id: str
    ) -> bool: ...

    @abstractmethod
    async def list_for_owner(self, owner_id: str, group_id: str) -> list[Slot]:
        """Owner's slots in a group, start time ascending."""

    @abstractmethod
    async def list_swappable(self, owner_ids: Iterable[str]) -> list[Slot]:
        """SWAPPABLE slots owned by any of owner_ids, start time ascending."""

    @abstractmethod
    async def list_by_status(self, status: SlotStatus) -> list[Slot]: ...


class SwapLedger(ABC):
    """Swap request records. Requests are never deleted."""

    @abstractmethod
    async def get(self, request_id: str) -> SwapRequest | None: ...

    @abstractmethod
    async def create(self, request: SwapRequest) -> SwapRequest: ...

    @abstractmethod
    async def compare_and_set_status(
        self,
        request_id: str,
        *,
        expected_status: SwapRequestStatus,
        new_status: SwapRequestStatus,
    ) -> bool: ...

    @abstractmethod
    async def list_incoming(self, receiver_id: str) -> list[SwapRequest]:
        """PENDING requests addressed to receiver_id, newest first."""

    @abstractmethod
    async def list_outgoing(self, initiator_id: str) -> list[SwapRequest]:
        """All requests made by initiator_id, newest first."""

    @abstractmethod
    async def list_by_status(self, status: SwapRequestStatus) -> list[SwapRequest]: ...


class MemberDirectory(ABC):
    """Read-only view of the identity and membership service."""

    @abstractmethod
    async def get_member(self, user_id: str) -> Member | None: ...

    @abstractmethod
    async def get_members(self, user_ids: Iterable[str]) -> dict[str, Member]: ...

    @abstractmethod
    async def share_group(self, user_id: str, other_user_id: str) -> bool: ...

    @abstractmethod
    async def list_group_member_ids(self, group_id: str) -> list[str]: ...


@dataclass(slots=True)
class StoreSession:
    """Slot registry and swap ledger bound to the same unit of work."""

    slots: SlotRegistry
    requests: SwapLedger


class SwapStore(ABC):
    """
    Entry point to persistence.

    `slots` and `requests` run each call on its own; `transaction()` yields a
    session whose writes commit together or not at all.
    """

    slots: SlotRegistry
    requests: SwapLedger
    members: MemberDirectory

    @abstractmethod
    def transaction(self) -> AbstractAsyncContextManager[StoreSession]: ...
