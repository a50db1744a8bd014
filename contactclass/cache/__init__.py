"""Response cache shared by the enrichment and AI stages."""

from __future__ import annotations

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from contactclass.cache.redis_store import RedisCacheStore
from contactclass.cache.sql_store import SqlCacheStore
from contactclass.cache.store import CacheEntry, CacheNamespace, CacheStore
from contactclass.config import AppConfig
from contactclass.exceptions import ConfigurationError


def build_cache_store(
    config: AppConfig, session_factory: async_sessionmaker[AsyncSession]
) -> CacheStore:
    """Create the cache backend selected by ``CACHE_BACKEND``.

    Raises:
        ConfigurationError: If the backend name is unknown
    """
    backend = config.cache.backend.lower()
    if backend == "database":
        return SqlCacheStore(session_factory)
    if backend == "redis":
        return RedisCacheStore.from_url(config.queue.redis_url)
    raise ConfigurationError(f"Unknown cache backend: {config.cache.backend!r}")


__all__ = [
    "CacheEntry",
    "CacheNamespace",
    "CacheStore",
    "RedisCacheStore",
    "SqlCacheStore",
    "build_cache_store",
]
