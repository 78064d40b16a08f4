import redis.asyncio as aioredis
from redis.asyncio import Redis
from typing import Optional

from appweaver.core.config import settings
from appweaver.core.logging_config import logger


def create_redis(url: str) -> Redis:
    """Build a Redis client that returns decoded strings"""
    return aioredis.from_url(
        url,
        encoding="utf-8",
        decode_responses=True
    )


class RedisClient:
    """
    Redis connections owned by a long-lived process (the API server).

    - ``redis``: main DB, used for pub/sub progress channels
    - ``state_redis``: shared-state DB holding tool batch state and completion signals

    Celery workers open their own short-lived clients per task instead, since
    every task runs its own event loop.
    """

    def __init__(self):
        self.redis: Optional[Redis] = None
        self.state_redis: Optional[Redis] = None

    async def connect(self):
        """Connect to Redis"""
        try:
            self.redis = create_redis(settings.REDIS_URL)
            self.state_redis = create_redis(settings.redis_state_url)
            await self.redis.ping()
            logger.info("Redis connected successfully")
        except Exception as e:
            logger.error(f"Redis connection error: {e}")
            raise

    async def disconnect(self):
        """Disconnect from Redis"""
        if self.redis:
            await self.redis.aclose()
            self.redis = None
        if self.state_redis:
            await self.state_redis.aclose()
            self.state_redis = None
        logger.info("Redis disconnected")


# Create Redis client instance
redis_client = RedisClient()


# Dependency
async def get_redis() -> RedisClient:
    """Get Redis client"""
    return redis_client
