"""
Best-effort, at-most-once push delivery to connected users.

Nothing is queued for offline users and nothing is retried: persisted
state is authoritative and clients re-fetch it after reconnecting.
"""

import json
from typing import Any

from slotswap.features.swaps.notifications.channels import (
    Channel,
    ChannelRegistry,
    InMemoryChannelRegistry,
)
from slotswap.features.swaps.notifications.events import SwapEvent
from slotswap.infrastructure.observability.logging import get_logger

logger = get_logger(__name__)


class NotificationDispatcher:
    """Routes messages to the live channel registered for a user."""

    def __init__(self, registry: ChannelRegistry | None = None):
        self.registry = registry or InMemoryChannelRegistry()

    def register(self, user_id: str, channel: Channel) -> None:
        replaced = self.registry.register(user_id, channel)
        logger.info("Client identified", user_id=user_id, replaced_previous=replaced is not None)

    def unregister(self, channel: Channel) -> None:
        user_id = self.registry.unregister(channel)
        if user_id:
            logger.info("Client disconnected", user_id=user_id)

    async def notify(self, user_id: str, message: dict[str, Any]) -> bool:
        """
        Push message to user_id if they have an open channel.

        Returns:
            True if the message was handed to the channel, False if dropped.
            Never raises.
        """
        channel = self.registry.get(user_id)
        if channel is None or not channel.is_open:
            logger.debug(
                "Notification dropped - user not connected",
                user_id=user_id,
                message_type=message.get("type"),
            )
            return False

        try:
            await channel.send_text(json.dumps(message, default=str))
        except Exception as e:
            logger.warning(
                "Notification delivery failed",
                user_id=user_id,
                message_type=message.get("type"),
                error=str(e),
                error_type=type(e).__name__,
            )
            return False

        logger.info("Notification sent", user_id=user_id, message_type=message.get("type"))
        return True

    async def handle_event(self, event: SwapEvent) -> None:
        """EventBus subscriber for single-process deployments."""
        await self.notify(event.recipient_id, event.to_message())
