"""
services/notification/publisher.py
Live-push channel for in-app notifications.

The lifecycle managers receive a LivePublisher instead of reaching for a
global socket/pub-sub handle, so tests can pass a recording implementation.
"""

import logging
from abc import ABC, abstractmethod
from typing import Any, Optional

import redis.asyncio as aioredis

from config import redis_client as redis_config
from config.redis_client import RedisChannels

logger = logging.getLogger(__name__)


class LivePublisher(ABC):
    @abstractmethod
    async def publish(self, user_id: str, event: str, payload: Any) -> None:
        """Push an event to the user's live channel. Absent listeners are not an error."""
        raise NotImplementedError


class NullPublisher(LivePublisher):
    """Used when no realtime channel is configured."""

    async def publish(self, user_id: str, event: str, payload: Any) -> None:
        return None


class RedisLivePublisher(LivePublisher):
    """Publishes to the per-user Redis channel consumed by the realtime gateway."""

    def __init__(self, client: aioredis.Redis):
        self.channels = RedisChannels(client)

    async def publish(self, user_id: str, event: str, payload: Any) -> None:
        receivers = await self.channels.publish(str(user_id), event, payload)
        if not receivers:
            logger.debug(f"No live listener on {self.channels.user_channel(str(user_id))}")


def get_live_publisher() -> LivePublisher:
    """FastAPI dependency: Redis publisher when Redis is up, no-op otherwise."""
    client: Optional[aioredis.Redis] = redis_config.redis_client
    if client is None:
        return NullPublisher()
    return RedisLivePublisher(client)
