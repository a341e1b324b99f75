# /nearflow/services/dedupe_service.py

import logging
from typing import Optional

import redis.asyncio as redis

from nearflow.config.settings import settings

# Guards the HTTP edge against duplicate webhook deliveries. The engine has
# its own last_message_id check; this catches duplicates before any session
# load happens.

logger = logging.getLogger(__name__)


class ProcessedMessageGuard:
    def __init__(self, redis_client, ttl_seconds: Optional[int] = None):
        self.redis = redis_client
        self.ttl_seconds = ttl_seconds or settings.processed_message_ttl_seconds

    @classmethod
    def from_url(cls, redis_url: str) -> "ProcessedMessageGuard":
        try:
            client = redis.Redis.from_url(redis_url)
        except Exception as e:
            logger.critical(f"Failed to connect to Redis at {redis_url}: {e}")
            client = None
        return cls(client)

    async def is_duplicate(self, user_key: str, message_id: Optional[str]) -> bool:
        """Marks the message as seen; True if it had already been seen."""
        if not self.redis or not message_id:
            return False
        try:
            # set(nx=True) returns True only when the key was newly created.
            return not await self.redis.set(
                f"processed:{user_key}:{message_id}", "1", ex=self.ttl_seconds, nx=True
            )
        except Exception as e:
            logger.warning(f"Duplicate check failed for message {message_id}: {e}")
            return False

    async def release(self, user_key: str, message_id: Optional[str]) -> None:
        """Forget a message so a redelivery is processed again."""
        if not self.redis or not message_id:
            return
        try:
            await self.redis.delete(f"processed:{user_key}:{message_id}")
        except Exception as e:
            logger.warning(f"Failed to release message {message_id}: {e}")

    async def close(self):
        if self.redis:
            await self.redis.aclose()
