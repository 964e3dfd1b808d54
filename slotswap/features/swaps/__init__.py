"""
Slot swap feature package.

This vertical slice keeps every layer of slot swapping co-located (domain
models, repositories, the negotiation engine, notifications, jobs and API
routers) so contributors can navigate the feature without hunting through
global folders.
"""

# Re-export the primary building blocks for easy access.
from .api.router import router as swaps_router  # noqa: F401
from .api.websocket import router as notifications_router  # noqa: F401
from .domain.models import Slot, SlotStatus, SwapRequest, SwapRequestStatus  # noqa: F401
from .jobs.consistency_check_job import run_swap_consistency_check  # noqa: F401
from .notifications.dispatcher import NotificationDispatcher  # noqa: F401
from .services.negotiation_engine import NegotiationEngine  # noqa: F401
