# slotswap/services/redis_client.py
import redis.asyncio as redis
from redis.asyncio.client import PubSub
from redis.asyncio.connection import ConnectionPool

from slotswap.config import settings
from slotswap.infrastructure.observability.logging import get_logger

logger = get_logger(__name__)


class FastRedisClient:
    """Pooled Redis client used for cross-instance notification fan-out"""

    def __init__(self):
        self.pool = None
        self.client = None
        self._initialized = False

    @property
    def initialized(self) -> bool:
        return self._initialized

    async def initialize(self):
        """Initialize connection pool on startup"""
        if self._initialized:
            return

        try:
            redis_url = settings.REDIS_URL
            if not redis_url:
                raise ValueError("REDIS_URL is not set")

            logger.info("Attempting Redis connection", url_preview=redis_url[:30] + "...")

            self.pool = ConnectionPool.from_url(
                redis_url,
                max_connections=20,
                retry_on_timeout=True,
                socket_connect_timeout=10,
                health_check_interval=30,
                decode_responses=True,
            )

            self.client = redis.Redis(connection_pool=self.pool)

            result = await self.client.ping()
            logger.info("Redis ping successful", result=result)

            self._initialized = True
            logger.info("Fast Redis client initialized successfully", max_connections=20)

        except Exception as e:
            logger.error("Failed to initialize fast Redis client", error=str(e))
            self._initialized = False
            raise RuntimeError("Redis initialization failed") from e

    async def close(self):
        """Clean shutdown"""
        try:
            if self.client:
                await self.client.aclose()
            if self.pool:
                await self.pool.disconnect()
            self._initialized = False
            logger.info("Fast Redis client closed")
        except Exception as e:
            logger.error("Error closing Redis client", error=str(e))

    async def _ensure_initialized(self):
        if not self._initialized:
            logger.warning("Redis not initialized, attempting to initialize")
            await self.initialize()
            if not self._initialized:
                raise ConnectionError("Redis client not available")

    async def ping(self) -> bool:
        """Test Redis connection"""
        try:
            await self._ensure_initialized()
            result = await self.client.ping()
            return bool(result)
        except Exception as e:
            logger.error("Redis ping failed", error=str(e))
            return False

    async def publish(self, channel: str, payload: str) -> bool:
        """Publish a message - with fallback handling"""
        try:
            await self._ensure_initialized()
            receivers = await self.client.publish(channel, payload)
            logger.debug("Redis PUBLISH", channel=channel, receivers=receivers)
            return True
        except Exception as e:
            logger.error("Redis PUBLISH failed", channel=channel, error=str(e))
            return False

    async def pubsub(self) -> PubSub:
        """New pub/sub handle; the caller owns and closes it."""
        await self._ensure_initialized()
        return self.client.pubsub(ignore_subscribe_messages=True)


# Global instance
fast_redis = FastRedisClient()
