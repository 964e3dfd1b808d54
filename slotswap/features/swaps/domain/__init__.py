"""
Domain subpackage for the swap feature.
"""

from .errors import (
    AuthorizationError,
    InternalError,
    NotFoundError,
    StateConflictError,
    SwapServiceError,
    ValidationError,
)
from .models import (
    OWNER_SETTABLE_STATUSES,
    Member,
    Slot,
    SlotChanges,
    SlotListing,
    SlotStatus,
    SwapRequest,
    SwapRequestDetails,
    SwapRequestStatus,
    as_utc,
)

__all__ = [
    "OWNER_SETTABLE_STATUSES",
    "AuthorizationError",
    "InternalError",
    "Member",
    "NotFoundError",
    "Slot",
    "SlotChanges",
    "SlotListing",
    "SlotStatus",
    "StateConflictError",
    "SwapRequest",
    "SwapRequestDetails",
    "SwapRequestStatus",
    "SwapServiceError",
    "ValidationError",
    "as_utc",
]
