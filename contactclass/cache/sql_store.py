"""Database-backed cache store (``cache_entries`` table)."""

from __future__ import annotations

import logging
from datetime import timedelta
from typing import Any

from sqlalchemy import JSON, delete, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from contactclass.cache.store import CacheEntry, CacheNamespace, CacheStore
from contactclass.db.models import CacheEntryModel
from contactclass.models import utcnow

logger = logging.getLogger(__name__)


class SqlCacheStore(CacheStore):
    """Cache entries keyed by (namespace, key); expiry enforced in the query."""

    def __init__(self, session_factory: async_sessionmaker[AsyncSession]):
        self._session_factory = session_factory

    async def get(self, namespace: CacheNamespace, key: str) -> CacheEntry | None:
        query = select(CacheEntryModel).where(
            CacheEntryModel.namespace == CacheNamespace(namespace).value,
            CacheEntryModel.key == key,
            CacheEntryModel.expires_at > utcnow(),
        )
        async with self._session_factory() as session:
            row = (await session.execute(query)).scalar_one_or_none()

        if row is None:
            return None

        return CacheEntry(
            payload=row.payload,
            created_at=row.created_at,
            expires_at=row.expires_at,
            model_used=row.model_used,
        )

    async def put(
        self,
        namespace: CacheNamespace,
        key: str,
        payload: Any,
        ttl: timedelta,
        model_used: str | None = None,
    ) -> None:
        now = utcnow()
        entry = CacheEntryModel(
            namespace=CacheNamespace(namespace).value,
            key=key,
            # JSON.NULL stores a cached "no data" result as JSON null
            payload=JSON.NULL if payload is None else payload,
            model_used=model_used,
            created_at=now,
            expires_at=now + ttl,
        )

        # merge() is select-then-insert; a concurrent writer may win the insert
        for attempt in range(2):
            async with self._session_factory() as session:
                try:
                    await session.merge(entry)
                    await session.commit()
                    return
                except IntegrityError:
                    await session.rollback()
                    if attempt:
                        raise
                    logger.debug(f"Cache upsert race on {namespace}:{key}, retrying")

    async def purge_expired(self) -> int:
        """Delete expired entries.

        Returns:
            Number of rows deleted
        """
        async with self._session_factory() as session:
            result = await session.execute(
                delete(CacheEntryModel).where(CacheEntryModel.expires_at <= utcnow())
            )
            await session.commit()

        purged = result.rowcount or 0
        logger.info(f"Purged {purged} expired cache entries")
        return purged
