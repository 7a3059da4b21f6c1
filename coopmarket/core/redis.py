from typing import Optional

import redis.asyncio as aioredis

from coopmarket.core.config import REDIS_URL

_redis: Optional[aioredis.Redis] = None


def get_redis() -> aioredis.Redis:
    """Shared client for the low-latency store. Connects lazily on first command."""
    global _redis
    if _redis is None:
        _redis = aioredis.from_url(REDIS_URL, decode_responses=True)
    return _redis


async def close_redis():
    global _redis
    if _redis is not None:
        await _redis.aclose()
        _redis = None
