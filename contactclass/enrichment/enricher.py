"""Staged public-web lookups for one contact.

Depth is cumulative:
1. Web search for "name city country": up to 3 snippets plus a business type
   guess from snippet keywords
2. + places category tags
3. + title/description of the e-mail domain's website (free, best effort)
"""

from __future__ import annotations

import logging
from dataclasses import dataclass

import httpx

from contactclass.config import EnrichmentConfig
from contactclass.enrichment.providers import (
    BingSearchProvider,
    GooglePlacesProvider,
    HttpSiteMetadataFetcher,
    PlacesProvider,
    SearchProvider,
    SiteMetadataFetcher,
)
from contactclass.enrichment.rate_limiter import RateLimiter
from contactclass.exceptions import ProviderError
from contactclass.models import Contact, EnrichmentPayload

logger = logging.getLogger(__name__)

# Checked in order; first hit in the first matching snippet wins
_BUSINESS_TYPES = (
    ("medical", ("clinic", "hospital", "medical")),
    ("supplier", ("supplier", "wholesale", "distributor")),
    ("client", ("client", "customer", "retail")),
)


@dataclass
class EnrichmentLookup:
    """Outcome of one contact lookup.

    ``payload`` is None when nothing usable was found. ``paid_calls`` counts
    search and places calls actually made, including failed ones.
    """

    payload: EnrichmentPayload | None
    paid_calls: int = 0


def guess_business_type(snippets: list[str]) -> str | None:
    for snippet in snippets:
        text = snippet.lower()
        for business_type, terms in _BUSINESS_TYPES:
            if any(term in text for term in terms):
                return business_type
    return None


def build_signals_summary(payload: EnrichmentPayload) -> str:
    """Short AI-context summary of whichever signals are present."""
    signals: list[str] = []

    if payload.business_type:
        signals.append(f"Business type: {payload.business_type}")
    if payload.categories:
        signals.append(f"Categories: {', '.join(payload.categories[:3])}")
    if payload.website_title:
        signals.append(f"Website: {payload.website_title[:50]}")
    if payload.search_snippets:
        signals.append(f"Found in search: {payload.search_snippets[0][:80]}...")

    return "; ".join(signals)


class ContactEnricher:
    """Runs the configured providers for one contact up to a given depth."""

    def __init__(
        self,
        search: SearchProvider | None = None,
        places: PlacesProvider | None = None,
        site_fetcher: SiteMetadataFetcher | None = None,
    ):
        self.search = search
        self.places = places
        self.site_fetcher = site_fetcher

    @property
    def has_providers(self) -> bool:
        return any((self.search, self.places, self.site_fetcher))

    @staticmethod
    def _query(contact: Contact) -> str:
        return " ".join(p for p in (contact.name, contact.city, contact.country) if p).strip()

    def paid_calls_for(self, contact: Contact, depth: int) -> int:
        """Number of paid calls ``enrich`` would make for this contact."""
        calls = 0
        if depth >= 1 and self.search is not None and self._query(contact):
            calls += 1
        if depth >= 2 and self.places is not None and contact.name and contact.city:
            calls += 1
        return calls

    async def enrich(self, contact: Contact, depth: int = 1) -> EnrichmentLookup:
        """Gather public signals for a contact.

        Provider errors are logged and treated as "no data" for that lookup;
        the call still counts as made.

        Args:
            contact: Normalized contact
            depth: 1 (search), 2 (+ places) or 3 (+ website metadata)

        Returns:
            EnrichmentLookup with a usable payload or None
        """
        domain = contact.email_domain
        payload = EnrichmentPayload(domain=domain)
        paid_calls = 0
        query = self._query(contact)

        if depth >= 1 and self.search is not None and query:
            paid_calls += 1
            try:
                snippets = await self.search.search(query)
            except ProviderError as e:
                logger.warning(f"Search lookup failed for {query!r}: {e}")
                snippets = []
            payload.search_snippets = snippets[:3]
            payload.business_type = guess_business_type(payload.search_snippets)

        if depth >= 2 and self.places is not None and contact.name and contact.city:
            paid_calls += 1
            try:
                payload.categories = await self.places.lookup(
                    contact.name, contact.city, contact.country
                )
            except ProviderError as e:
                logger.warning(f"Places lookup failed for {query!r}: {e}")

        if depth >= 3 and self.site_fetcher is not None and domain:
            metadata = await self.site_fetcher.fetch(domain)
            if metadata is not None:
                payload.website_title = metadata.title
                payload.website_description = metadata.description

        payload.signals_summary = build_signals_summary(payload)

        if not payload.is_usable:
            return EnrichmentLookup(payload=None, paid_calls=paid_calls)
        return EnrichmentLookup(payload=payload, paid_calls=paid_calls)


def build_enricher(config: EnrichmentConfig, client: httpx.AsyncClient) -> ContactEnricher:
    """Create an enricher with every provider that has credentials.

    The site fetcher needs no credentials and is enabled only at depth 3.
    """
    limiter = RateLimiter(config.rate_limit_seconds)

    search = None
    if config.search_api_key:
        search = BingSearchProvider(
            config.search_api_key,
            client,
            endpoint=config.search_endpoint,
            timeout=config.request_timeout_seconds,
            rate_limiter=limiter,
        )

    places = None
    if config.places_api_key:
        places = GooglePlacesProvider(
            config.places_api_key,
            client,
            endpoint=config.places_endpoint,
            timeout=config.request_timeout_seconds,
            rate_limiter=limiter,
        )

    site_fetcher = None
    if config.depth >= 3:
        site_fetcher = HttpSiteMetadataFetcher(
            client,
            timeout=config.site_timeout_seconds,
            user_agent=config.user_agent,
            rate_limiter=limiter,
        )

    return ContactEnricher(search=search, places=places, site_fetcher=site_fetcher)
