"""
Live push channels and the registry mapping users to them.

The registry is a cache of who is connected to this process, rebuilt as
clients reconnect. It is never a source of truth.
"""

from abc import ABC, abstractmethod
from typing import Protocol

from fastapi import WebSocket
from starlette.websockets import WebSocketState


class Channel(Protocol):
    """Anything that can push text to one connected client."""

    @property
    def is_open(self) -> bool: ...

    async def send_text(self, data: str) -> None: ...


class WebSocketChannel:
    """Channel over a FastAPI WebSocket."""

    def __init__(self, websocket: WebSocket):
        self.websocket = websocket

    @property
    def is_open(self) -> bool:
        return (
            self.websocket.client_state == WebSocketState.CONNECTED
            and self.websocket.application_state == WebSocketState.CONNECTED
        )

    async def send_text(self, data: str) -> None:
        await self.websocket.send_text(data)


class ChannelRegistry(ABC):
    """At most one channel per user id and one user id per channel; last registration wins."""

    @abstractmethod
    def register(self, user_id: str, channel: Channel) -> Channel | None:
        """
        Bind channel to user_id and return the channel it replaced, if any.

        A channel that re-identifies as another user drops its old binding.
        """

    @abstractmethod
    def unregister(self, channel: Channel) -> str | None:
        """Drop the entry pointing at channel; return its user id or None if absent."""

    @abstractmethod
    def get(self, user_id: str) -> Channel | None: ...

    @abstractmethod
    def connected_user_ids(self) -> list[str]: ...


class InMemoryChannelRegistry(ChannelRegistry):
    """Process-local registry. Operations never suspend, so each is atomic on the event loop."""

    def __init__(self):
        self._channels: dict[str, Channel] = {}

    def register(self, user_id: str, channel: Channel) -> Channel | None:
        for bound_user_id, registered in list(self._channels.items()):
            if registered is channel and bound_user_id != user_id:
                del self._channels[bound_user_id]

        previous = self._channels.get(user_id)
        self._channels[user_id] = channel
        return previous if previous is not channel else None

    def unregister(self, channel: Channel) -> str | None:
        user_ids = [
            user_id for user_id, registered in self._channels.items() if registered is channel
        ]
        for user_id in user_ids:
            del self._channels[user_id]
        return user_ids[0] if user_ids else None

    def get(self, user_id: str) -> Channel | None:
        return self._channels.get(user_id)

    def connected_user_ids(self) -> list[str]:
        return sorted(self._channels)
