# slotswap/features/swaps/api/schemas.py
"""
Swap API request and response models.
Used by routes for validation and output formatting.
"""

from datetime import datetime

from pydantic import AwareDatetime, BaseModel, ConfigDict, Field, StrictBool, model_validator

from slotswap.features.swaps.domain import (
    Member,
    Slot,
    SlotListing,
    SlotStatus,
    SwapRequestDetails,
    SwapRequestStatus,
)


class OwnerResponse(BaseModel):
    """Public details of a group member."""

    id: str = Field(..., description="User ID")
    name: str = Field(..., description="Display name")
    email: str = Field(..., description="Email address")

    @classmethod
    def from_domain(cls, member: Member | None) -> "OwnerResponse | None":
        if member is None:
            return None
        return cls(id=member.id, name=member.name, email=member.email)


class SlotResponse(BaseModel):
    """Response model for a calendar slot."""

    id: str = Field(..., description="Slot ID")
    title: str = Field(..., description="Slot title")
    start_time: datetime = Field(..., description="Slot start time")
    end_time: datetime = Field(..., description="Slot end time")
    status: SlotStatus = Field(..., description="BUSY, SWAPPABLE or SWAP_PENDING")
    owner_id: str = Field(..., description="Current owner")
    group_id: str | None = Field(None, description="Group the slot was created in")
    owner: OwnerResponse | None = Field(None, description="Owner details, when populated")
    created_at: datetime = Field(..., description="When the slot was created")
    updated_at: datetime = Field(..., description="When the slot was last updated")

    @classmethod
    def from_domain(cls, slot: Slot | None, owner: Member | None = None) -> "SlotResponse | None":
        if slot is None:
            return None
        return cls(
            id=slot.id,
            title=slot.title,
            start_time=slot.start_time,
            end_time=slot.end_time,
            status=slot.status,
            owner_id=slot.owner_id,
            group_id=slot.group_id,
            owner=OwnerResponse.from_domain(owner),
            created_at=slot.created_at,
            updated_at=slot.updated_at,
        )

    @classmethod
    def from_listing(cls, listing: SlotListing) -> "SlotResponse":
        return cls.from_domain(listing.slot, listing.owner)


class SwapRequestResponse(BaseModel):
    """Swap request populated with both parties and both slots."""

    id: str = Field(..., description="Swap request ID")
    status: SwapRequestStatus = Field(..., description="PENDING, ACCEPTED or REJECTED")
    initiator_id: str = Field(..., description="User who made the offer")
    receiver_id: str = Field(..., description="User whose slot was requested")
    initiator_slot_id: str = Field(..., description="Slot offered by the initiator")
    receiver_slot_id: str = Field(..., description="Slot requested from the receiver")
    initiator: OwnerResponse | None = None
    receiver: OwnerResponse | None = None
    initiator_slot: SlotResponse | None = None
    receiver_slot: SlotResponse | None = None
    created_at: datetime = Field(..., description="When the request was made")
    updated_at: datetime = Field(..., description="When the request last changed")

    @classmethod
    def from_details(cls, details: SwapRequestDetails) -> "SwapRequestResponse":
        request = details.request
        return cls(
            id=request.id,
            status=request.status,
            initiator_id=request.initiator_id,
            receiver_id=request.receiver_id,
            initiator_slot_id=request.initiator_slot_id,
            receiver_slot_id=request.receiver_slot_id,
            initiator=OwnerResponse.from_domain(details.initiator),
            receiver=OwnerResponse.from_domain(details.receiver),
            initiator_slot=SlotResponse.from_domain(details.initiator_slot),
            receiver_slot=SlotResponse.from_domain(details.receiver_slot),
            created_at=request.created_at,
            updated_at=request.updated_at,
        )


class SwapRequestActionResponse(BaseModel):
    """Response for creating or answering a swap request."""

    message: str
    swap_request: SwapRequestResponse


class CreateSwapRequest(BaseModel):
    """Request body for offering one of your slots for someone else's."""

    model_config = ConfigDict(populate_by_name=True)

    my_slot_id: str = Field(..., alias="mySlotId", min_length=1, description="Slot you offer")
    their_slot_id: str = Field(
        ..., alias="theirSlotId", min_length=1, description="Slot you want in exchange"
    )


class SwapDecisionRequest(BaseModel):
    """Request body for answering an incoming swap request."""

    accept: StrictBool = Field(..., description="true to accept, false to reject")


class CreateSlotRequest(BaseModel):
    """Request for creating a slot in the caller's current group."""

    title: str = Field(..., min_length=1, max_length=200, description="Slot title")
    start_time: AwareDatetime = Field(..., description="Slot start time, with UTC offset")
    end_time: AwareDatetime = Field(..., description="Slot end time, with UTC offset")
    status: SlotStatus = Field(default=SlotStatus.BUSY, description="BUSY or SWAPPABLE")

    @model_validator(mode="after")
    def check_interval(self) -> "CreateSlotRequest":
        if self.start_time >= self.end_time:
            raise ValueError("start_time must be before end_time")
        return self


class UpdateSlotRequest(BaseModel):
    """Request for updating a slot; omitted fields are left unchanged."""

    title: str | None = Field(None, min_length=1, max_length=200, description="New title")
    start_time: AwareDatetime | None = Field(None, description="New start time, with UTC offset")
    end_time: AwareDatetime | None = Field(None, description="New end time, with UTC offset")
    status: SlotStatus | None = Field(None, description="BUSY or SWAPPABLE")


class SlotDeletedResponse(BaseModel):
    message: str
    slot_id: str
