"""Redis-backed cache store.

Entries are stored as a JSON envelope with native ``SETEX`` expiry. The
envelope's ``expires_at`` is checked again on read so that a clock-skewed or
persisted Redis never serves a stale entry.
"""

from __future__ import annotations

import json
import logging
from datetime import datetime, timedelta
from typing import Any

import redis.asyncio as redis

from contactclass.cache.store import CacheEntry, CacheNamespace, CacheStore
from contactclass.models import utcnow

logger = logging.getLogger(__name__)


class RedisCacheStore(CacheStore):
    """Cache backed by redis.asyncio. Transport errors surface as misses."""

    def __init__(self, client: redis.Redis, prefix: str = "contactclass:cache"):
        self._client = client
        self._prefix = prefix

    @classmethod
    def from_url(cls, redis_url: str, prefix: str = "contactclass:cache") -> RedisCacheStore:
        client = redis.from_url(redis_url, encoding="utf-8", decode_responses=True)
        return cls(client, prefix=prefix)

    def _redis_key(self, namespace: CacheNamespace, key: str) -> str:
        return f"{self._prefix}:{CacheNamespace(namespace).value}:{key}"

    async def get(self, namespace: CacheNamespace, key: str) -> CacheEntry | None:
        redis_key = self._redis_key(namespace, key)
        try:
            raw = await self._client.get(redis_key)
        except redis.RedisError as e:
            # Log error but don't fail - cache misses are acceptable
            logger.warning(f"Redis get error for key {redis_key}: {e}")
            return None

        if not raw:
            return None

        try:
            envelope = json.loads(raw)
            entry = CacheEntry(
                payload=envelope["payload"],
                created_at=datetime.fromisoformat(envelope["created_at"]),
                expires_at=datetime.fromisoformat(envelope["expires_at"]),
                model_used=envelope.get("model_used"),
            )
        except (ValueError, KeyError, TypeError) as e:
            logger.warning(f"Discarding malformed cache entry {redis_key}: {e}")
            return None

        if entry.is_expired():
            return None
        return entry

    async def put(
        self,
        namespace: CacheNamespace,
        key: str,
        payload: Any,
        ttl: timedelta,
        model_used: str | None = None,
    ) -> None:
        redis_key = self._redis_key(namespace, key)
        now = utcnow()
        envelope = {
            "payload": payload,
            "created_at": now.isoformat(),
            "expires_at": (now + ttl).isoformat(),
            "model_used": model_used,
        }
        ttl_seconds = max(1, int(ttl.total_seconds()))

        try:
            await self._client.setex(redis_key, ttl_seconds, json.dumps(envelope))
        except redis.RedisError as e:
            logger.warning(f"Redis set error for key {redis_key}: {e}")

    async def close(self) -> None:
        await self._client.aclose()
