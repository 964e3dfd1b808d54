"""
Domain models for the swap feature.

Plain dataclasses shared by repositories, services and API layers. The
persistence layer owns the records; services hold them only for the
duration of one operation.
"""

from dataclasses import dataclass, field
from datetime import UTC, datetime
from enum import StrEnum


def utc_now() -> datetime:
    return datetime.now(UTC)


def as_utc(value: datetime) -> datetime:
    """Aware datetime in UTC; naive values are taken to be UTC already."""
    if value.tzinfo is None:
        return value.replace(tzinfo=UTC)
    return value.astimezone(UTC)


class SlotStatus(StrEnum):
    BUSY = "BUSY"
    SWAPPABLE = "SWAPPABLE"
    SWAP_PENDING = "SWAP_PENDING"


class SwapRequestStatus(StrEnum):
    PENDING = "PENDING"
    ACCEPTED = "ACCEPTED"
    REJECTED = "REJECTED"

    @property
    def is_terminal(self) -> bool:
        return self is not SwapRequestStatus.PENDING


# Statuses an owner may set directly; SWAP_PENDING is reserved for negotiation.
OWNER_SETTABLE_STATUSES = frozenset({SlotStatus.BUSY, SlotStatus.SWAPPABLE})


@dataclass(slots=True)
class Slot:
    """One calendar interval owned by exactly one user."""

    id: str
    title: str
    start_time: datetime
    end_time: datetime
    status: SlotStatus
    owner_id: str
    group_id: str | None
    created_at: datetime = field(default_factory=utc_now)
    updated_at: datetime = field(default_factory=utc_now)

    def to_dict(self) -> dict:
        """Convert to dictionary for pushed notifications."""
        return {
            "id": self.id,
            "title": self.title,
            "start_time": self.start_time.isoformat(),
            "end_time": self.end_time.isoformat(),
            "status": self.status.value,
            "owner_id": self.owner_id,
            "group_id": self.group_id,
            "created_at": self.created_at.isoformat(),
            "updated_at": self.updated_at.isoformat(),
        }


@dataclass(slots=True)
class SlotChanges:
    """
    Target values for a conditional slot update.

    Fields left as None are not touched.
    """

    status: SlotStatus | None = None
    owner_id: str | None = None
    title: str | None = None
    start_time: datetime | None = None
    end_time: datetime | None = None

    def is_empty(self) -> bool:
        return all(
            value is None
            for value in (self.status, self.owner_id, self.title, self.start_time, self.end_time)
        )


@dataclass(slots=True)
class SwapRequest:
    """A negotiation between two slots held by two different users."""

    id: str
    status: SwapRequestStatus
    initiator_id: str
    receiver_id: str
    initiator_slot_id: str
    receiver_slot_id: str
    created_at: datetime = field(default_factory=utc_now)
    updated_at: datetime = field(default_factory=utc_now)

    def references(self, slot_id: str) -> bool:
        return slot_id in (self.initiator_slot_id, self.receiver_slot_id)


@dataclass(slots=True)
class Member:
    """Read-only projection of a user from the identity service."""

    id: str
    name: str
    email: str
    current_group_id: str | None = None

    def to_dict(self) -> dict:
        return {"id": self.id, "name": self.name, "email": self.email}


@dataclass(slots=True)
class SlotListing:
    """A slot together with its owner's public details."""

    slot: Slot
    owner: Member | None


@dataclass(slots=True)
class SwapRequestDetails:
    """A swap request populated with both parties and both slots."""

    request: SwapRequest
    initiator: Member | None
    receiver: Member | None
    initiator_slot: Slot | None
    receiver_slot: Slot | None

    def to_dict(self) -> dict:
        """Convert to dictionary for pushed notifications; same keys as the REST response."""
        request = self.request
        return {
            "id": request.id,
            "status": request.status.value,
            "initiator_id": request.initiator_id,
            "receiver_id": request.receiver_id,
            "initiator_slot_id": request.initiator_slot_id,
            "receiver_slot_id": request.receiver_slot_id,
            "initiator": self.initiator.to_dict() if self.initiator else None,
            "receiver": self.receiver.to_dict() if self.receiver else None,
            "initiator_slot": self.initiator_slot.to_dict() if self.initiator_slot else None,
            "receiver_slot": self.receiver_slot.to_dict() if self.receiver_slot else None,
            "created_at": request.created_at.isoformat(),
            "updated_at": request.updated_at.isoformat(),
        }
