"""
Cross-instance notification relay over Redis pub/sub.

With several app instances a user's socket may live on a different
process than the one that committed the swap. Every instance publishes
events to one channel and every instance listens on it, pushing to the
users connected locally. Delivery stays best-effort.
"""

import asyncio
import json

from redis.asyncio.client import PubSub

from slotswap.features.swaps.notifications.dispatcher import NotificationDispatcher
from slotswap.features.swaps.notifications.events import SwapEvent
from slotswap.infrastructure.observability.logging import get_logger
from slotswap.services.redis_client import FastRedisClient

logger = get_logger(__name__)

RECONNECT_DELAY_SECONDS = 1.0


class RedisEventRelay:
    def __init__(
        self,
        redis_client: FastRedisClient,
        dispatcher: NotificationDispatcher,
        channel_name: str,
    ):
        self.redis_client = redis_client
        self.dispatcher = dispatcher
        self.channel_name = channel_name
        self._pubsub: PubSub | None = None
        self._listener: asyncio.Task | None = None

    async def publish(self, event: SwapEvent) -> None:
        """EventBus subscriber: forward the event to every instance."""
        payload = json.dumps(
            {"recipient_id": event.recipient_id, "message": event.to_message()},
            default=str,
        )
        published = await self.redis_client.publish(self.channel_name, payload)
        if not published:
            logger.warning(
                "Swap event not relayed",
                event_type=event.type.value,
                recipient_id=event.recipient_id,
            )

    async def handle_raw_message(self, raw: str) -> bool:
        """Deliver one relayed payload to a locally connected user."""
        try:
            envelope = json.loads(raw)
            recipient_id = envelope["recipient_id"]
            message = envelope["message"]
        except (TypeError, ValueError, KeyError) as e:
            logger.warning("Ignoring malformed relay message", error=str(e))
            return False

        if not isinstance(recipient_id, str) or not isinstance(message, dict):
            logger.warning("Ignoring malformed relay message", error="unexpected payload shape")
            return False

        return await self.dispatcher.notify(recipient_id, message)

    async def start(self) -> None:
        if self._listener is not None:
            return
        self._listener = asyncio.create_task(self._listen())
        logger.info("Redis event relay started", channel=self.channel_name)

    async def _listen(self) -> None:
        while True:
            try:
                self._pubsub = await self.redis_client.pubsub()
                await self._pubsub.subscribe(self.channel_name)
                async for message in self._pubsub.listen():
                    if message.get("type") != "message":
                        continue
                    await self.handle_raw_message(message["data"])
            except asyncio.CancelledError:
                raise
            except Exception as e:
                logger.error(
                    "Redis event relay listener failed",
                    channel=self.channel_name,
                    error=str(e),
                    error_type=type(e).__name__,
                )
                await self._close_pubsub()
                await asyncio.sleep(RECONNECT_DELAY_SECONDS)

    async def _close_pubsub(self) -> None:
        if self._pubsub is None:
            return
        try:
            await self._pubsub.unsubscribe(self.channel_name)
            await self._pubsub.aclose()
        except Exception as e:
            logger.warning("Error closing Redis pubsub", error=str(e))
        finally:
            self._pubsub = None

    async def stop(self) -> None:
        if self._listener is not None:
            self._listener.cancel()
            try:
                await self._listener
            except asyncio.CancelledError:
                pass
            self._listener = None
        await self._close_pubsub()
        logger.info("Redis event relay stopped", channel=self.channel_name)
