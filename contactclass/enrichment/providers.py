"""HTTP providers for web enrichment.

Search and places lookups are paid calls; the site metadata fetch is free.
Paid providers raise ``ProviderError`` on transport or API failure and let
the enricher decide; the site fetcher treats any failure as "no data".
"""

from __future__ import annotations

import html
import logging
import re
from dataclasses import dataclass
from typing import Any, Protocol

import httpx

from contactclass.enrichment.rate_limiter import RateLimiter
from contactclass.exceptions import ProviderError, ProviderTimeoutError

logger = logging.getLogger(__name__)

_TITLE_PATTERN = re.compile(r"<title[^>]*>([^<]+)</title>", re.IGNORECASE)
_DESCRIPTION_PATTERN = re.compile(
    r"""<meta[^>]*name=["']description["'][^>]*content=["']([^"']+)["']""", re.IGNORECASE
)


class SearchProvider(Protocol):
    name: str

    async def search(self, query: str) -> list[str]: ...


class PlacesProvider(Protocol):
    name: str

    async def lookup(self, name: str, city: str | None, country: str | None) -> list[str]: ...


@dataclass
class SiteMetadata:
    title: str | None = None
    description: str | None = None


class SiteMetadataFetcher(Protocol):
    async def fetch(self, domain: str) -> SiteMetadata | None: ...


async def _get_json(
    client: httpx.AsyncClient,
    provider: str,
    url: str,
    params: dict[str, Any],
    headers: dict[str, str] | None = None,
    timeout: float | None = None,
) -> dict[str, Any]:
    try:
        response = await client.get(url, params=params, headers=headers, timeout=timeout)
        response.raise_for_status()
        data = response.json()
    except httpx.TimeoutException as e:
        raise ProviderTimeoutError(provider, f"timed out: {e}") from e
    except httpx.HTTPStatusError as e:
        raise ProviderError(provider, f"HTTP {e.response.status_code}") from e
    except httpx.HTTPError as e:
        raise ProviderError(provider, str(e) or type(e).__name__) from e
    except ValueError as e:
        raise ProviderError(provider, f"invalid JSON: {e}") from e

    if not isinstance(data, dict):
        raise ProviderError(provider, f"unexpected JSON shape: {type(data).__name__}")
    return data


class BingSearchProvider:
    """Web search returning up to ``count`` result snippets."""

    name = "search"

    def __init__(
        self,
        api_key: str,
        client: httpx.AsyncClient,
        endpoint: str = "https://api.bing.microsoft.com/v7.0/search",
        count: int = 3,
        timeout: float = 10.0,
        rate_limiter: RateLimiter | None = None,
    ):
        self.api_key = api_key
        self.client = client
        self.endpoint = endpoint
        self.count = count
        self.timeout = timeout
        self.rate_limiter = rate_limiter or RateLimiter(0)

    async def search(self, query: str) -> list[str]:
        await self.rate_limiter.acquire(self.name)
        data = await _get_json(
            self.client,
            self.name,
            self.endpoint,
            params={"q": query, "count": self.count},
            headers={"Ocp-Apim-Subscription-Key": self.api_key},
            timeout=self.timeout,
        )
        pages = (data.get("webPages") or {}).get("value") or []
        return [
            p["snippet"]
            for p in pages[: self.count]
            if isinstance(p, dict) and p.get("snippet")
        ]


class GooglePlacesProvider:
    """Find-place lookup returning the first candidate's type tags."""

    name = "places"

    def __init__(
        self,
        api_key: str,
        client: httpx.AsyncClient,
        endpoint: str = "https://maps.googleapis.com/maps/api/place/findplacefromtext/json",
        timeout: float = 10.0,
        rate_limiter: RateLimiter | None = None,
    ):
        self.api_key = api_key
        self.client = client
        self.endpoint = endpoint
        self.timeout = timeout
        self.rate_limiter = rate_limiter or RateLimiter(0)

    async def lookup(self, name: str, city: str | None, country: str | None) -> list[str]:
        query = " ".join(p for p in (name, city, country) if p)
        await self.rate_limiter.acquire(self.name)
        data = await _get_json(
            self.client,
            self.name,
            self.endpoint,
            params={
                "input": query,
                "inputtype": "textquery",
                "fields": "types",
                "key": self.api_key,
            },
            timeout=self.timeout,
        )
        candidates = data.get("candidates") or []
        if not candidates or not isinstance(candidates[0], dict):
            return []
        return list(candidates[0].get("types") or [])


class HttpSiteMetadataFetcher:
    """Fetch a domain's home page and extract title and meta description."""

    def __init__(
        self,
        client: httpx.AsyncClient,
        timeout: float = 5.0,
        user_agent: str = "contactclass/0.1 (Compliant metadata fetcher)",
        rate_limiter: RateLimiter | None = None,
    ):
        self.client = client
        self.timeout = timeout
        self.user_agent = user_agent
        self.rate_limiter = rate_limiter or RateLimiter(0)

    async def fetch(self, domain: str) -> SiteMetadata | None:
        await self.rate_limiter.acquire(domain)
        try:
            response = await self.client.get(
                f"https://{domain}",
                headers={"User-Agent": self.user_agent},
                timeout=self.timeout,
                follow_redirects=True,
            )
        except (httpx.HTTPError, httpx.InvalidURL, UnicodeError) as e:
            logger.debug(f"Site fetch failed for {domain}: {e}")
            return None

        if not response.is_success:
            return None

        return parse_site_metadata(response.text)


def parse_site_metadata(page: str) -> SiteMetadata | None:
    """Extract title and meta description from raw HTML."""
    title_match = _TITLE_PATTERN.search(page)
    desc_match = _DESCRIPTION_PATTERN.search(page)

    title = html.unescape(title_match.group(1)).strip() if title_match else None
    description = html.unescape(desc_match.group(1)).strip() if desc_match else None

    if not title and not description:
        return None
    return SiteMetadata(title=title or None, description=description or None)
