"""
config/redis_client.py
Shared redis.asyncio connection. Two concerns live on it:
per-user live channels (read by the realtime gateway) and the
revoked-token keys written by the identity service.
"""

import json
from typing import Any, Optional

import redis.asyncio as aioredis

from config.settings import settings

REVOKED_TOKEN_PREFIX = "jwt_revoked:"

# Set by init_redis() during startup; None when Redis was never reached
redis_client: Optional[aioredis.Redis] = None


async def init_redis() -> aioredis.Redis:
    global redis_client
    client = aioredis.from_url(settings.REDIS_URL, encoding="utf-8", decode_responses=True)
    await client.ping()
    redis_client = client
    return client


async def close_redis() -> None:
    global redis_client
    client, redis_client = redis_client, None
    if client is not None:
        await client.aclose()


def get_redis() -> aioredis.Redis:
    """FastAPI dependency. Auth cannot check revocations without Redis."""
    if redis_client is None:
        raise RuntimeError("Redis is not connected")
    return redis_client


class RedisChannels:
    """Key and channel naming on top of a Redis client."""

    def __init__(self, client: aioredis.Redis):
        self.client = client

    @staticmethod
    def user_channel(user_id: str) -> str:
        return f"{settings.REALTIME_CHANNEL_PREFIX}{user_id}"

    async def publish(self, user_id: str, event: str, payload: Any) -> int:
        """Send {"event", "data"} to the user's channel. Returns the subscriber count."""
        envelope = json.dumps({"event": event, "data": payload}, default=str)
        return await self.client.publish(self.user_channel(user_id), envelope)

    async def is_token_revoked(self, jti: str) -> bool:
        return bool(await self.client.exists(f"{REVOKED_TOKEN_PREFIX}{jti}"))
