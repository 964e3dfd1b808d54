"""
Process-wide swap feature objects, exposed as FastAPI dependencies.

Tests replace them through `app.dependency_overrides`.
"""

from fastapi import Depends

from slotswap.config import settings
from slotswap.features.swaps.notifications.dispatcher import NotificationDispatcher
from slotswap.features.swaps.notifications.events import EventBus
from slotswap.features.swaps.repository.base import SwapStore
from slotswap.features.swaps.repository.memory import InMemorySwapStore
from slotswap.features.swaps.repository.postgres import PostgresSwapStore
from slotswap.features.swaps.services.negotiation_engine import NegotiationEngine
from slotswap.features.swaps.services.slot_service import SlotService
from slotswap.infrastructure.observability.logging import get_logger

logger = get_logger(__name__)

event_bus = EventBus()
notification_dispatcher = NotificationDispatcher()
_swap_store: SwapStore | None = None


def get_swap_store() -> SwapStore:
    global _swap_store
    if _swap_store is None:
        if settings.uses_postgres():
            _swap_store = PostgresSwapStore()
        else:
            _swap_store = InMemorySwapStore()
        logger.info("Swap store created", backend=settings.STORAGE_BACKEND)
    return _swap_store


def get_event_bus() -> EventBus:
    return event_bus


def get_notification_dispatcher() -> NotificationDispatcher:
    return notification_dispatcher


def get_negotiation_engine(
    store: SwapStore = Depends(get_swap_store),
    bus: EventBus = Depends(get_event_bus),
) -> NegotiationEngine:
    return NegotiationEngine(store, bus)


def get_slot_service(store: SwapStore = Depends(get_swap_store)) -> SlotService:
    return SlotService(store)
