"""
Redis client initialization and connection management.

The redis-backed key-value store keeps the active route and guardian
notifications here when STORE_BACKEND=redis.
"""

import redis.asyncio as redis
from backend.app.core.config import settings


def create_redis_client(url: str = None):
    """Build an async Redis client for the given (or configured) URL."""
    return redis.from_url(
        url or settings.redis_url,
        decode_responses=settings.redis_decode_responses,
    )


async def ping_redis(client) -> bool:
    """
    Test Redis connection.

    Returns:
        True if connection successful, False otherwise
    """
    try:
        return await client.ping()
    except Exception:
        return False
