"""
Slot management for owners.

Owners create slots in their current group and toggle them between BUSY
and SWAPPABLE. A slot locked by a swap request (SWAP_PENDING) cannot be
edited or deleted until the request is answered. Edits go through the
same conditional update the negotiation engine uses, keyed on the status
that was read, so an edit never overwrites a concurrent lock.
"""

from datetime import datetime
from uuid import uuid4

from slotswap.features.swaps.domain import (
    OWNER_SETTABLE_STATUSES,
    NotFoundError,
    Slot,
    SlotChanges,
    SlotStatus,
    StateConflictError,
    ValidationError,
    as_utc,
)
from slotswap.features.swaps.repository.base import SwapStore
from slotswap.features.swaps.services.negotiation_engine import persistence_guard
from slotswap.infrastructure.observability.logging import get_logger

logger = get_logger(__name__)


class SlotService:
    def __init__(self, store: SwapStore):
        self.store = store

    async def list_my_slots(self, owner_id: str) -> list[Slot]:
        """Owner's slots in their current group, earliest first."""
        with persistence_guard("list_my_slots", owner_id):
            member = await self.store.members.get_member(owner_id)
            if member is None or not member.current_group_id:
                return []
            return await self.store.slots.list_for_owner(owner_id, member.current_group_id)

    async def create_slot(
        self,
        owner_id: str,
        title: str,
        start_time: datetime,
        end_time: datetime,
        status: SlotStatus = SlotStatus.BUSY,
    ) -> Slot:
        if status not in OWNER_SETTABLE_STATUSES:
            raise ValidationError("Status must be BUSY or SWAPPABLE", user_id=owner_id)
        if not title or not title.strip():
            raise ValidationError("Title is required", user_id=owner_id)
        start_time, end_time = as_utc(start_time), as_utc(end_time)
        if start_time >= end_time:
            raise ValidationError("Start time must be before end time", user_id=owner_id)

        with persistence_guard("create_slot", owner_id):
            member = await self.store.members.get_member(owner_id)
            if member is None or not member.current_group_id:
                raise ValidationError("Please create or join a group first", user_id=owner_id)

            slot = await self.store.slots.create(
                Slot(
                    id=str(uuid4()),
                    title=title.strip(),
                    start_time=start_time,
                    end_time=end_time,
                    status=status,
                    owner_id=owner_id,
                    group_id=member.current_group_id,
                )
            )

        logger.info("Slot created", slot_id=slot.id, owner_id=owner_id, status=slot.status.value)
        return slot

    async def update_slot(
        self,
        owner_id: str,
        slot_id: str,
        *,
        title: str | None = None,
        start_time: datetime | None = None,
        end_time: datetime | None = None,
        status: SlotStatus | None = None,
    ) -> Slot:
        if status is not None and status not in OWNER_SETTABLE_STATUSES:
            raise ValidationError("Status must be BUSY or SWAPPABLE", user_id=owner_id)
        if title is not None and not title.strip():
            raise ValidationError("Title cannot be empty", user_id=owner_id)
        if start_time is not None:
            start_time = as_utc(start_time)
        if end_time is not None:
            end_time = as_utc(end_time)

        with persistence_guard("update_slot", owner_id):
            slot = await self._get_owned_slot(owner_id, slot_id)
            if slot.status == SlotStatus.SWAP_PENDING:
                raise StateConflictError(
                    "Cannot modify a slot with a pending swap request", user_id=owner_id
                )

            new_start = start_time or as_utc(slot.start_time)
            new_end = end_time or as_utc(slot.end_time)
            if new_start >= new_end:
                raise ValidationError("Start time must be before end time", user_id=owner_id)

            changes = SlotChanges(
                status=status,
                title=title.strip() if title is not None else None,
                start_time=start_time,
                end_time=end_time,
            )
            if changes.is_empty():
                return slot

            updated = await self.store.slots.compare_and_set(
                slot_id,
                expected_status=slot.status,
                expected_owner_id=owner_id,
                changes=changes,
            )
            if not updated:
                raise StateConflictError(
                    "Slot changed while you were editing it, please refresh", user_id=owner_id
                )

            refreshed = await self.store.slots.get(slot_id)

        logger.info(
            "Slot updated",
            slot_id=slot_id,
            owner_id=owner_id,
            status=(status or slot.status).value,
        )
        return refreshed or slot

    async def delete_slot(self, owner_id: str, slot_id: str) -> None:
        with persistence_guard("delete_slot", owner_id):
            slot = await self._get_owned_slot(owner_id, slot_id)
            if slot.status == SlotStatus.SWAP_PENDING:
                raise StateConflictError(
                    "Cannot delete a slot with a pending swap request", user_id=owner_id
                )

            deleted = await self.store.slots.delete_if(
                slot_id, expected_status=slot.status, expected_owner_id=owner_id
            )
            if not deleted:
                raise StateConflictError(
                    "Slot changed while you were deleting it, please refresh", user_id=owner_id
                )

        logger.info("Slot deleted", slot_id=slot_id, owner_id=owner_id)

    async def _get_owned_slot(self, owner_id: str, slot_id: str) -> Slot:
        slot = await self.store.slots.get(slot_id)
        # Someone else's slot is reported as missing
        if slot is None or slot.owner_id != owner_id:
            raise NotFoundError("Slot not found", user_id=owner_id)
        return slot
