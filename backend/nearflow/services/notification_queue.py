# /nearflow/services/notification_queue.py

import json
import logging
from datetime import datetime
from typing import Optional, Dict, Any

import redis.asyncio as redis

from nearflow.config.settings import settings
from nearflow.utils.logging import mask_user_key

# Publishes "your session expired" intents onto a Redis stream. A separate
# sender worker renders and delivers them; the sweeper never waits on delivery.

logger = logging.getLogger(__name__)


class ExpiryNotifier:
    def __init__(self, redis_client, stream_name: Optional[str] = None):
        self.redis = redis_client
        self.stream_name = stream_name or settings.expiry_stream_name

    @classmethod
    def from_url(cls, redis_url: str, stream_name: Optional[str] = None) -> "ExpiryNotifier":
        try:
            client = redis.Redis.from_url(redis_url)
        except Exception as e:
            logger.critical(f"Failed to connect to Redis at {redis_url}: {e}")
            client = None
        return cls(client, stream_name)

    async def publish_expiry(self, user_key: str, flow_id: str, step_id: Optional[str], expired_at: datetime) -> Optional[str]:
        """Adds an expiry intent to the stream. Returns the stream entry id."""
        if not self.redis:
            logger.warning(f"No Redis client, dropping expiry intent for {mask_user_key(user_key)}")
            return None
        intent: Dict[str, Any] = {
            "type": "session_expired",
            "user_key": user_key,
            "flow_id": flow_id,
            "step_id": step_id,
            "expired_at": expired_at.isoformat(),
        }
        entry_id = await self.redis.xadd(self.stream_name, {"data": json.dumps(intent)})
        logger.debug(f"Queued expiry intent for {mask_user_key(user_key)} ({flow_id})")
        return entry_id.decode() if isinstance(entry_id, bytes) else entry_id

    async def close(self):
        if self.redis:
            await self.redis.aclose()
