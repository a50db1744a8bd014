"""Cache store contract shared by the enrichment and AI stages.

The cache is a pure optimization: an expired entry is always a miss. The
Redis backend also reports transport errors as misses.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from dataclasses import dataclass
from datetime import datetime, timedelta
from enum import Enum
from typing import Any

from contactclass.models import utcnow


class CacheNamespace(str, Enum):
    ENRICHMENT = "enrichment"
    AI = "ai"


@dataclass(frozen=True)
class CacheEntry:
    """Memoized payload. ``payload`` is None for a cached "no data" result."""

    payload: Any
    created_at: datetime
    expires_at: datetime
    model_used: str | None = None

    def is_expired(self, now: datetime | None = None) -> bool:
        return self.expires_at <= (now or utcnow())


class CacheStore(ABC):
    """Key -> payload store with per-entry expiry, partitioned by namespace."""

    @abstractmethod
    async def get(self, namespace: CacheNamespace, key: str) -> CacheEntry | None:
        """Return the unexpired entry for ``key``, or None on miss."""

    @abstractmethod
    async def put(
        self,
        namespace: CacheNamespace,
        key: str,
        payload: Any,
        ttl: timedelta,
        model_used: str | None = None,
    ) -> None:
        """Upsert ``payload`` under ``key`` (last write wins)."""

    async def close(self) -> None:
        return None
