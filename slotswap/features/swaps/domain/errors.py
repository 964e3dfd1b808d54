"""
Error taxonomy for swap negotiation and slot management.

Each error carries the HTTP status the API layer answers with and whether
a client may retry after refreshing its view of the data.
"""


class SwapServiceError(Exception):
    """Base exception for swap feature operations."""

    status_code = 500
    retryable = False

    def __init__(self, message: str, *, user_id: str | None = None):
        super().__init__(message)
        self.message = message
        self.user_id = user_id


class ValidationError(SwapServiceError):
    """Missing or malformed input."""

    status_code = 400


class AuthorizationError(SwapServiceError):
    """Caller is not the party allowed to perform the action."""

    status_code = 403


class NotFoundError(SwapServiceError):
    """Slot or swap request id does not resolve."""

    status_code = 404


class StateConflictError(SwapServiceError):
    """A status precondition failed: not swappable, already responded, or a lost race."""

    status_code = 409
    retryable = True


class InternalError(SwapServiceError):
    """Persistence failure or an inconsistent stored state."""

    status_code = 500
