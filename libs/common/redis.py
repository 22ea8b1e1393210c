"""Shared async Redis client."""

from typing import Optional

import redis.asyncio as aioredis
from libs.common.config import get_settings

_client: Optional[aioredis.Redis] = None


async def get_redis() -> aioredis.Redis:
    """Return a process-wide Redis client, created on first use."""
    global _client
    if _client is None:
        settings = get_settings()
        _client = aioredis.from_url(
            settings.REDIS_URL,
            decode_responses=True,
            socket_connect_timeout=2,
            socket_timeout=2,
        )
    return _client


async def close_redis() -> None:
    global _client
    if _client is not None:
        await _client.aclose()
        _client = None
