"""Swap notifications: domain events and real-time push delivery."""

from slotswap.features.swaps.notifications.channels import (
    Channel,
    ChannelRegistry,
    InMemoryChannelRegistry,
    WebSocketChannel,
)
from slotswap.features.swaps.notifications.dispatcher import NotificationDispatcher
from slotswap.features.swaps.notifications.events import EventBus, SwapEvent, SwapEventType

__all__ = [
    "Channel",
    "ChannelRegistry",
    "InMemoryChannelRegistry",
    "WebSocketChannel",
    "NotificationDispatcher",
    "EventBus",
    "SwapEvent",
    "SwapEventType",
]
