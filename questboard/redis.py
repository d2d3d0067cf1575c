"""Redis connection for the shared verification-key cache.

Redis is optional: when it cannot be reached at startup the service keeps
running with a process-local cache instead.
"""

import redis.asyncio as aioredis
from redis.exceptions import RedisError

from questboard.logging_config import get_logger

logger = get_logger(__name__)

_redis: aioredis.Redis | None = None


async def init_redis(url: str) -> aioredis.Redis | None:
    """Connect and ping Redis. Returns None if the server is unreachable."""
    global _redis
    client = aioredis.from_url(url, decode_responses=True)
    try:
        await client.ping()
    except (RedisError, OSError) as e:
        logger.warning("redis_unavailable", url=url, error=str(e))
        await client.aclose()
        return None
    logger.info("redis_connected", url=url)
    _redis = client
    return _redis


async def close_redis() -> None:
    """Close the Redis connection, if one was opened."""
    global _redis
    if _redis is not None:
        await _redis.aclose()
        _redis = None
