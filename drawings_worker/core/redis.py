"""
Redis pub/sub for realtime notifications OR silent no-op.
Controlled by FF_USE_REDIS flag.
"""

import json
import logging
from typing import Any

logger = logging.getLogger(__name__)


class Notifier:
    """Publishes realtime events. Never raises on delivery failure."""

    def __init__(self, redis_url: str, enabled: bool = True):
        self._redis_url = redis_url
        self.enabled = enabled and bool(redis_url)
        self._client = None

    async def _get_redis(self):
        if self._client is None:
            import redis.asyncio as aioredis

            self._client = aioredis.from_url(
                self._redis_url,
                decode_responses=True,
                socket_connect_timeout=5,
            )
        return self._client

    async def publish(self, channel: str, event_type: str, data: Any = None) -> bool:
        """
        Publish a realtime event. If Redis is disabled, this is a no-op.
        Returns True when the event was handed to Redis.
        """
        if not self.enabled:
            return False

        try:
            client = await self._get_redis()
            payload = json.dumps({"type": event_type, "data": data}, default=str)
            await client.publish(channel, payload)
            return True
        except Exception as e:
            # Never crash on notification failure
            logger.warning("Redis publish failed (channel=%s): %s", channel, e)
            return False

    async def notify_org(self, org_id: str, event_type: str, data: Any = None) -> bool:
        """Publish to org-scoped channel."""
        return await self.publish(f"org:{org_id}", event_type, data)

    async def close(self) -> None:
        if self._client:
            await self._client.aclose()
            self._client = None
            logger.info("Redis connection closed")
