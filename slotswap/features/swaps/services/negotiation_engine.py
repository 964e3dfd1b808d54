"""
Swap negotiation engine.

Owns the slot and swap-request state machine:

    slot:    SWAPPABLE --create--> SWAP_PENDING --accept--> BUSY (new owner)
                                                --reject--> SWAPPABLE
    request: PENDING --accept--> ACCEPTED
                     --reject--> REJECTED

SWAP_PENDING is the lock on a slot. Every transition is a conditional
update naming the state the row must still be in, and the transitions of
one operation commit in a single transaction. A slot is therefore never
SWAP_PENDING without exactly one PENDING request referencing it.

Within a transaction slots are written in slot id order, so crossing
requests queue on each other instead of deadlocking.

Notifications are published only after the transaction commits.
"""

from collections.abc import Iterator
from contextlib import contextmanager
from typing import Any
from uuid import uuid4

from slotswap.db.helpers import DatabaseError
from slotswap.features.swaps.domain import (
    AuthorizationError,
    InternalError,
    NotFoundError,
    Slot,
    SlotChanges,
    SlotListing,
    SlotStatus,
    StateConflictError,
    SwapRequest,
    SwapRequestDetails,
    SwapRequestStatus,
    ValidationError,
)
from slotswap.features.swaps.notifications.events import EventBus, SwapEvent, SwapEventType
from slotswap.features.swaps.repository.base import StoreSession, SwapStore
from slotswap.infrastructure.observability.logging import get_logger

logger = get_logger(__name__)


@contextmanager
def persistence_guard(operation: str, user_id: str) -> Iterator[None]:
    """Surface lock contention as StateConflictError and other storage failures as InternalError."""
    try:
        yield
    except DatabaseError as e:
        if e.contention:
            logger.info(
                "Swap write aborted by a concurrent transaction",
                operation=operation,
                user_id=user_id,
                db_operation=e.operation,
            )
            raise StateConflictError(
                "Another change to these slots happened at the same time, please refresh",
                user_id=user_id,
            ) from e
        logger.error(
            "Swap persistence failure",
            operation=operation,
            user_id=user_id,
            db_operation=e.operation,
            error=str(e),
        )
        raise InternalError("Failed to save changes, please try again", user_id=user_id) from e


def _in_lock_order(*pairs: tuple[Slot, Any]) -> list[tuple[Slot, Any]]:
    """Order per-slot work by slot id; every transaction takes row locks in that order."""
    return sorted(pairs, key=lambda pair: pair[0].id)


class NegotiationEngine:
    """Creates and resolves swap requests between members of a group."""

    def __init__(self, store: SwapStore, event_bus: EventBus | None = None):
        self.store = store
        self.event_bus = event_bus or EventBus()

    async def create_swap_request(
        self, requester_id: str, my_slot_id: str, their_slot_id: str
    ) -> SwapRequestDetails:
        """
        Offer my_slot_id in exchange for their_slot_id and lock both slots.

        Raises:
            NotFoundError: either slot does not exist
            AuthorizationError: requester does not own my slot, or the owners share no group
            ValidationError: requester already owns their slot
            StateConflictError: a slot is not SWAPPABLE, or was locked concurrently
            InternalError: persistence failure
        """
        if not my_slot_id or not their_slot_id:
            raise ValidationError("Both mySlotId and theirSlotId are required", user_id=requester_id)

        with persistence_guard("create_swap_request", requester_id):
            slots = await self.store.slots.get_many([my_slot_id, their_slot_id])
            my_slot = slots.get(my_slot_id)
            their_slot = slots.get(their_slot_id)

            if my_slot is None or their_slot is None:
                raise NotFoundError("One or both slots not found", user_id=requester_id)
            if my_slot.owner_id != requester_id:
                raise AuthorizationError("You do not own the offered slot", user_id=requester_id)
            if their_slot.owner_id == requester_id:
                raise ValidationError("Cannot swap with yourself", user_id=requester_id)
            if not await self.store.members.share_group(requester_id, their_slot.owner_id):
                raise AuthorizationError(
                    "You can only swap with members of your group", user_id=requester_id
                )
            if my_slot.status != SlotStatus.SWAPPABLE:
                raise StateConflictError("Your slot is not swappable", user_id=requester_id)
            if their_slot.status != SlotStatus.SWAPPABLE:
                raise StateConflictError("Their slot is not swappable", user_id=requester_id)

            request = SwapRequest(
                id=str(uuid4()),
                status=SwapRequestStatus.PENDING,
                initiator_id=requester_id,
                receiver_id=their_slot.owner_id,
                initiator_slot_id=my_slot.id,
                receiver_slot_id=their_slot.id,
            )

            async with self.store.transaction() as session:
                for slot, conflict_message in _in_lock_order(
                    (my_slot, "Your slot is no longer swappable"),
                    (their_slot, "Their slot is no longer swappable"),
                ):
                    await self._lock_slot(session, slot, conflict_message)
                request = await session.requests.create(request)

            logger.info(
                "Swap request created",
                request_id=request.id,
                initiator_id=request.initiator_id,
                receiver_id=request.receiver_id,
                initiator_slot_id=request.initiator_slot_id,
                receiver_slot_id=request.receiver_slot_id,
            )

            details = (await self._populate([request]))[0]

        self._publish(SwapEventType.NEW_SWAP_REQUEST, request.receiver_id, details)
        return details

    async def respond_to_swap_request(
        self, responder_id: str, request_id: str, accept: bool
    ) -> SwapRequestDetails:
        """
        Accept or reject a PENDING request addressed to responder_id.

        Accepting exchanges the owners of both slots and marks them BUSY;
        rejecting returns both slots to SWAPPABLE with owners unchanged.

        Raises:
            ValidationError: accept is not a boolean
            NotFoundError: no such request
            AuthorizationError: responder is not the receiver
            StateConflictError: request already answered (including a lost race)
            InternalError: slots no longer match the request, or persistence failure
        """
        if not isinstance(accept, bool):
            raise ValidationError("accept must be a boolean", user_id=responder_id)

        new_status = SwapRequestStatus.ACCEPTED if accept else SwapRequestStatus.REJECTED

        with persistence_guard("respond_to_swap_request", responder_id):
            request = await self.store.requests.get(request_id)
            if request is None:
                raise NotFoundError("Swap request not found", user_id=responder_id)
            if request.receiver_id != responder_id:
                raise AuthorizationError(
                    "You are not authorized to respond to this request", user_id=responder_id
                )
            if request.status != SwapRequestStatus.PENDING:
                raise StateConflictError(
                    f"This request has already been {request.status.lower()}",
                    user_id=responder_id,
                )

            async with self.store.transaction() as session:
                answered = await session.requests.compare_and_set_status(
                    request_id,
                    expected_status=SwapRequestStatus.PENDING,
                    new_status=new_status,
                )
                if not answered:
                    current = await session.requests.get(request_id)
                    outcome = current.status.lower() if current else "answered"
                    raise StateConflictError(
                        f"This request has already been {outcome}", user_id=responder_id
                    )

                if accept:
                    await self._exchange_owners(session, request)
                else:
                    await self._release_slots(session, request)

            logger.info(
                "Swap request answered",
                request_id=request_id,
                responder_id=responder_id,
                status=new_status.value,
            )

            refreshed = await self.store.requests.get(request_id)
            details = (await self._populate([refreshed or request]))[0]

        event_type = SwapEventType.SWAP_ACCEPTED if accept else SwapEventType.SWAP_REJECTED
        self._publish(event_type, request.initiator_id, details)
        return details

    async def list_swappable_slots(self, viewer_id: str) -> list[SlotListing]:
        """SWAPPABLE slots of the other members of the viewer's current group."""
        with persistence_guard("list_swappable_slots", viewer_id):
            viewer = await self.store.members.get_member(viewer_id)
            if viewer is None or not viewer.current_group_id:
                raise ValidationError("Please create or join a group first", user_id=viewer_id)

            member_ids = [
                member_id
                for member_id in await self.store.members.list_group_member_ids(
                    viewer.current_group_id
                )
                if member_id != viewer_id
            ]
            if not member_ids:
                return []

            slots = await self.store.slots.list_swappable(member_ids)
            owners = await self.store.members.get_members({slot.owner_id for slot in slots})

        logger.debug("Swappable slots listed", viewer_id=viewer_id, count=len(slots))
        return [SlotListing(slot=slot, owner=owners.get(slot.owner_id)) for slot in slots]

    async def list_incoming_requests(self, user_id: str) -> list[SwapRequestDetails]:
        """PENDING requests awaiting user_id's answer, newest first."""
        with persistence_guard("list_incoming_requests", user_id):
            requests = await self.store.requests.list_incoming(user_id)
            return await self._populate(requests)

    async def list_outgoing_requests(self, user_id: str) -> list[SwapRequestDetails]:
        """Every request user_id has made, newest first."""
        with persistence_guard("list_outgoing_requests", user_id):
            requests = await self.store.requests.list_outgoing(user_id)
            return await self._populate(requests)

    async def _lock_slot(self, session: StoreSession, slot: Slot, conflict_message: str) -> None:
        locked = await session.slots.compare_and_set(
            slot.id,
            expected_status=SlotStatus.SWAPPABLE,
            expected_owner_id=slot.owner_id,
            changes=SlotChanges(status=SlotStatus.SWAP_PENDING),
        )
        if not locked:
            logger.info("Slot lock lost to a concurrent writer", slot_id=slot.id)
            raise StateConflictError(conflict_message)

    async def _read_locked_slots(
        self, session: StoreSession, request: SwapRequest
    ) -> tuple[Slot, Slot]:
        slots = await session.slots.get_many([request.initiator_slot_id, request.receiver_slot_id])
        initiator_slot = slots.get(request.initiator_slot_id)
        receiver_slot = slots.get(request.receiver_slot_id)
        if initiator_slot is None or receiver_slot is None:
            logger.error(
                "Swap request references a missing slot",
                request_id=request.id,
                initiator_slot_id=request.initiator_slot_id,
                receiver_slot_id=request.receiver_slot_id,
            )
            raise InternalError("Swap could not be completed: a slot no longer exists")
        return initiator_slot, receiver_slot

    async def _exchange_owners(self, session: StoreSession, request: SwapRequest) -> None:
        initiator_slot, receiver_slot = await self._read_locked_slots(session, request)

        for slot, new_owner_id in _in_lock_order(
            (initiator_slot, receiver_slot.owner_id),
            (receiver_slot, initiator_slot.owner_id),
        ):
            exchanged = await session.slots.compare_and_set(
                slot.id,
                expected_status=SlotStatus.SWAP_PENDING,
                expected_owner_id=slot.owner_id,
                changes=SlotChanges(status=SlotStatus.BUSY, owner_id=new_owner_id),
            )
            if not exchanged:
                logger.error(
                    "Slot changed while locked by a swap request",
                    request_id=request.id,
                    slot_id=slot.id,
                    status=slot.status.value,
                )
                raise InternalError("Swap could not be completed: slot state changed")

    async def _release_slots(self, session: StoreSession, request: SwapRequest) -> None:
        initiator_slot, receiver_slot = await self._read_locked_slots(session, request)

        for slot in sorted((initiator_slot, receiver_slot), key=lambda slot: slot.id):
            released = await session.slots.compare_and_set(
                slot.id,
                expected_status=SlotStatus.SWAP_PENDING,
                expected_owner_id=slot.owner_id,
                changes=SlotChanges(status=SlotStatus.SWAPPABLE),
            )
            if not released:
                logger.error(
                    "Slot changed while locked by a swap request",
                    request_id=request.id,
                    slot_id=slot.id,
                    status=slot.status.value,
                )
                raise InternalError("Swap could not be rejected: slot state changed")

    async def _populate(self, requests: list[SwapRequest]) -> list[SwapRequestDetails]:
        if not requests:
            return []

        slot_ids = {
            slot_id
            for request in requests
            for slot_id in (request.initiator_slot_id, request.receiver_slot_id)
        }
        user_ids = {
            user_id for request in requests for user_id in (request.initiator_id, request.receiver_id)
        }
        slots = await self.store.slots.get_many(slot_ids)
        members = await self.store.members.get_members(user_ids)

        return [
            SwapRequestDetails(
                request=request,
                initiator=members.get(request.initiator_id),
                receiver=members.get(request.receiver_id),
                initiator_slot=slots.get(request.initiator_slot_id),
                receiver_slot=slots.get(request.receiver_slot_id),
            )
            for request in requests
        ]

    def _publish(
        self, event_type: SwapEventType, recipient_id: str, details: SwapRequestDetails
    ) -> None:
        self.event_bus.publish(
            SwapEvent(type=event_type, recipient_id=recipient_id, data=details.to_dict())
        )
