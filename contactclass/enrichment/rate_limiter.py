"""Rate limiting for enrichment providers.

Enforces a minimum delay between consecutive calls to the same provider so
that a batch never bursts against a paid API or a contact's website.
"""

from __future__ import annotations

import asyncio
import logging
import time
from typing import Dict

logger = logging.getLogger(__name__)


class RateLimiter:
    """Minimum-interval limiter keyed by provider (or domain).

    Example:
        >>> limiter = RateLimiter(delay_seconds=0.5)
        >>> await limiter.acquire("search")  # First call: no wait
        >>> await limiter.acquire("search")  # Second call: waits 0.5s
    """

    def __init__(self, delay_seconds: float = 0.2):
        """Initialize rate limiter.

        Args:
            delay_seconds: Minimum delay between calls sharing a key
        """
        self.delay = delay_seconds
        self.last_request: Dict[str, float] = {}
        self.lock = asyncio.Lock()

    async def acquire(self, key: str) -> None:
        """Wait until the limiter allows the next call for ``key``."""
        if self.delay <= 0:
            return

        async with self.lock:
            now = time.monotonic()
            last = self.last_request.get(key)

            if last is not None:
                elapsed = now - last
                if elapsed < self.delay:
                    wait = self.delay - elapsed
                    logger.debug(f"Rate limiting {key}: waiting {wait:.2f}s")
                    await asyncio.sleep(wait)

            self.last_request[key] = time.monotonic()

    def reset(self, key: str) -> None:
        self.last_request.pop(key, None)
