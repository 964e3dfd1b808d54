"""
Domain events published by the negotiation engine after a commit.

Publishing never waits on subscribers: each one runs as its own task and
its failures are logged, never raised back into the negotiation.
"""

import asyncio
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from enum import StrEnum
from typing import Any

from slotswap.infrastructure.observability.logging import get_logger

logger = get_logger(__name__)


class SwapEventType(StrEnum):
    NEW_SWAP_REQUEST = "NEW_SWAP_REQUEST"
    SWAP_ACCEPTED = "SWAP_ACCEPTED"
    SWAP_REJECTED = "SWAP_REJECTED"


@dataclass(slots=True, frozen=True)
class SwapEvent:
    """A state change the counterpart of a negotiation should hear about."""

    type: SwapEventType
    recipient_id: str
    data: dict[str, Any]

    def to_message(self) -> dict[str, Any]:
        """Wire shape pushed to clients."""
        return {"type": self.type.value, "data": self.data}


EventSubscriber = Callable[[SwapEvent], Awaitable[None]]


class EventBus:
    """In-process fan-out of swap events to subscribers."""

    def __init__(self):
        self._subscribers: list[EventSubscriber] = []
        self._pending: set[asyncio.Task] = set()

    def subscribe(self, subscriber: EventSubscriber) -> None:
        self._subscribers.append(subscriber)

    def unsubscribe(self, subscriber: EventSubscriber) -> None:
        if subscriber in self._subscribers:
            self._subscribers.remove(subscriber)

    def publish(self, event: SwapEvent) -> None:
        """Schedule delivery to every subscriber and return immediately."""
        if not self._subscribers:
            logger.debug("Swap event dropped - no subscribers", event_type=event.type.value)
            return

        for subscriber in list(self._subscribers):
            task = asyncio.create_task(self._deliver(subscriber, event))
            self._pending.add(task)
            task.add_done_callback(self._pending.discard)

    async def _deliver(self, subscriber: EventSubscriber, event: SwapEvent) -> None:
        try:
            await subscriber(event)
        except Exception as e:
            logger.warning(
                "Swap event subscriber failed",
                event_type=event.type.value,
                recipient_id=event.recipient_id,
                error=str(e),
                error_type=type(e).__name__,
            )

    async def drain(self) -> None:
        """Wait for in-flight deliveries (shutdown and tests)."""
        while self._pending:
            await asyncio.gather(*list(self._pending), return_exceptions=True)
