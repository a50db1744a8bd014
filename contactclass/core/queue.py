from arq.connections import ArqRedis, RedisSettings, create_pool

from contactclass.config import get_config


def get_redis_settings() -> RedisSettings:
    """Get Redis settings from the queue configuration (REDIS_URL)."""
    return RedisSettings.from_dsn(get_config().queue.redis_url)


async def get_queue() -> ArqRedis:
    """Create a connection pool to the Redis queue."""
    return await create_pool(get_redis_settings())
