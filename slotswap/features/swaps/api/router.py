"""
Swap routes.

Usage:
    1. GET  /swappable-slots             - Slots other group members offer
    2. POST /swap-request                - Offer one of your slots for one of theirs
    3. POST /swap-response/{request_id}  - Accept or reject an incoming request
    4. GET  /swap-requests/incoming      - Requests waiting for your answer
    5. GET  /swap-requests/outgoing      - Requests you have made
    6. GET/POST/PUT/DELETE /slots        - Manage your own slots

Engine errors map to HTTP by their status_code:
400 validation, 403 not your slot/request, 404 unknown id, 409 state conflict.
"""

from fastapi import APIRouter, Depends, HTTPException, status

from slotswap.auth.verify import current_user_id
from slotswap.features.swaps.api.dependencies import get_negotiation_engine, get_slot_service
from slotswap.features.swaps.api.schemas import (
    CreateSlotRequest,
    CreateSwapRequest,
    SlotDeletedResponse,
    SlotResponse,
    SwapDecisionRequest,
    SwapRequestActionResponse,
    SwapRequestResponse,
    UpdateSlotRequest,
)
from slotswap.features.swaps.domain import SwapServiceError
from slotswap.features.swaps.services.negotiation_engine import NegotiationEngine
from slotswap.features.swaps.services.slot_service import SlotService
from slotswap.infrastructure.observability.logging import get_logger

router = APIRouter(tags=["swaps"])
logger = get_logger(__name__)


def _http_error(error: SwapServiceError, operation: str, user_id: str) -> HTTPException:
    log = logger.error if error.status_code >= 500 else logger.info
    log(
        "Swap operation refused",
        operation=operation,
        user_id=user_id,
        status_code=error.status_code,
        error_type=type(error).__name__,
        error=error.message,
    )
    return HTTPException(status_code=error.status_code, detail=error.message)


@router.get("/swappable-slots", response_model=list[SlotResponse])
async def get_swappable_slots(
    user_id: str = Depends(current_user_id),
    engine: NegotiationEngine = Depends(get_negotiation_engine),
):
    """
    List SWAPPABLE slots owned by other members of the caller's group.

    Raises:
        400: Caller has no group
    """
    try:
        listings = await engine.list_swappable_slots(user_id)
    except SwapServiceError as e:
        raise _http_error(e, "list_swappable_slots", user_id) from e

    return [SlotResponse.from_listing(listing) for listing in listings]


@router.post(
    "/swap-request",
    response_model=SwapRequestActionResponse,
    status_code=status.HTTP_201_CREATED,
)
async def create_swap_request(
    request: CreateSwapRequest,
    user_id: str = Depends(current_user_id),
    engine: NegotiationEngine = Depends(get_negotiation_engine),
):
    """
    Offer mySlotId in exchange for theirSlotId.

    Both slots are locked (SWAP_PENDING) until the receiver answers.

    Raises:
        400: Same owner on both sides
        403: Offered slot is not yours, or the owners share no group
        404: Unknown slot id
        409: A slot is not SWAPPABLE
    """
    try:
        details = await engine.create_swap_request(
            user_id, request.my_slot_id, request.their_slot_id
        )
    except SwapServiceError as e:
        raise _http_error(e, "create_swap_request", user_id) from e

    return SwapRequestActionResponse(
        message="Swap request sent successfully",
        swap_request=SwapRequestResponse.from_details(details),
    )


@router.post("/swap-response/{request_id}", response_model=SwapRequestActionResponse)
async def respond_to_swap_request(
    request_id: str,
    request: SwapDecisionRequest,
    user_id: str = Depends(current_user_id),
    engine: NegotiationEngine = Depends(get_negotiation_engine),
):
    """
    Accept or reject an incoming swap request.

    Raises:
        403: Caller is not the receiver
        404: Unknown request id
        409: Request already answered
    """
    try:
        details = await engine.respond_to_swap_request(user_id, request_id, request.accept)
    except SwapServiceError as e:
        raise _http_error(e, "respond_to_swap_request", user_id) from e

    message = (
        "Swap accepted! Slots have been exchanged."
        if request.accept
        else "Swap rejected. Slots are available again."
    )
    return SwapRequestActionResponse(
        message=message, swap_request=SwapRequestResponse.from_details(details)
    )


@router.get("/swap-requests/incoming", response_model=list[SwapRequestResponse])
async def get_incoming_requests(
    user_id: str = Depends(current_user_id),
    engine: NegotiationEngine = Depends(get_negotiation_engine),
):
    try:
        requests = await engine.list_incoming_requests(user_id)
    except SwapServiceError as e:
        raise _http_error(e, "list_incoming_requests", user_id) from e

    return [SwapRequestResponse.from_details(details) for details in requests]


@router.get("/swap-requests/outgoing", response_model=list[SwapRequestResponse])
async def get_outgoing_requests(
    user_id: str = Depends(current_user_id),
    engine: NegotiationEngine = Depends(get_negotiation_engine),
):
    try:
        requests = await engine.list_outgoing_requests(user_id)
    except SwapServiceError as e:
        raise _http_error(e, "list_outgoing_requests", user_id) from e

    return [SwapRequestResponse.from_details(details) for details in requests]


@router.get("/slots", response_model=list[SlotResponse])
async def list_my_slots(
    user_id: str = Depends(current_user_id),
    slot_service: SlotService = Depends(get_slot_service),
):
    try:
        slots = await slot_service.list_my_slots(user_id)
    except SwapServiceError as e:
        raise _http_error(e, "list_my_slots", user_id) from e

    return [SlotResponse.from_domain(slot) for slot in slots]


@router.post("/slots", response_model=SlotResponse, status_code=status.HTTP_201_CREATED)
async def create_slot(
    request: CreateSlotRequest,
    user_id: str = Depends(current_user_id),
    slot_service: SlotService = Depends(get_slot_service),
):
    try:
        slot = await slot_service.create_slot(
            user_id,
            title=request.title,
            start_time=request.start_time,
            end_time=request.end_time,
            status=request.status,
        )
    except SwapServiceError as e:
        raise _http_error(e, "create_slot", user_id) from e

    return SlotResponse.from_domain(slot)


@router.put("/slots/{slot_id}", response_model=SlotResponse)
async def update_slot(
    slot_id: str,
    request: UpdateSlotRequest,
    user_id: str = Depends(current_user_id),
    slot_service: SlotService = Depends(get_slot_service),
):
    """
    Update a slot you own. Slots locked by a pending swap cannot be changed (409).
    """
    try:
        slot = await slot_service.update_slot(
            user_id,
            slot_id,
            title=request.title,
            start_time=request.start_time,
            end_time=request.end_time,
            status=request.status,
        )
    except SwapServiceError as e:
        raise _http_error(e, "update_slot", user_id) from e

    return SlotResponse.from_domain(slot)


@router.delete("/slots/{slot_id}", response_model=SlotDeletedResponse)
async def delete_slot(
    slot_id: str,
    user_id: str = Depends(current_user_id),
    slot_service: SlotService = Depends(get_slot_service),
):
    try:
        await slot_service.delete_slot(user_id, slot_id)
    except SwapServiceError as e:
        raise _http_error(e, "delete_slot", user_id) from e

    return SlotDeletedResponse(message="Slot deleted", slot_id=slot_id)
