"""Unit tests for web enrichment providers and the contact enricher."""

from __future__ import annotations

import httpx
import pytest

from contactclass.config import EnrichmentConfig
from contactclass.enrichment.enricher import (
    ContactEnricher,
    build_enricher,
    build_signals_summary,
    guess_business_type,
)
from contactclass.enrichment.providers import (
    BingSearchProvider,
    GooglePlacesProvider,
    HttpSiteMetadataFetcher,
    parse_site_metadata,
)
from contactclass.exceptions import ProviderError, ProviderTimeoutError
from contactclass.models import Contact, EnrichmentPayload
from tests.fakes import FakePlacesProvider, FakeSearchProvider


def _client(handler) -> httpx.AsyncClient:
    return httpx.AsyncClient(transport=httpx.MockTransport(handler))


class TestBusinessTypeGuess:
    """Test snippet keyword heuristics."""

    def test_medical_snippet(self):
        assert guess_business_type(["Private dental clinic in Lyon"]) == "medical"

    def test_first_matching_snippet_wins(self):
        snippets = ["Wholesale distributor of gloves", "Hospital partner"]
        assert guess_business_type(snippets) == "supplier"

    def test_no_match(self):
        assert guess_business_type(["Welcome to our homepage"]) is None


def test_signals_summary_concatenates_present_signals():
    payload = EnrichmentPayload(
        business_type="medical",
        categories=["pharmacy", "health", "store", "point_of_interest"],
        website_title="Pharmacie du Centre",
        search_snippets=["Pharmacie du Centre, open Monday to Saturday"],
    )

    summary = build_signals_summary(payload)

    assert summary.startswith("Business type: medical; Categories: pharmacy, health, store;")
    assert "Website: Pharmacie du Centre" in summary
    assert "Found in search: Pharmacie du Centre" in summary


class TestContactEnricher:
    """Test staged lookups and paid call counting."""

    @pytest.mark.asyncio
    async def test_depth_one_search_only(self):
        search = FakeSearchProvider({"Clinique": ["Clinique Saint-Jean, medical centre"]})
        places = FakePlacesProvider(["hospital"])
        enricher = ContactEnricher(search=search, places=places)
        contact = Contact(name="Clinique Saint-Jean", city="Lyon", country="France")

        lookup = await enricher.enrich(contact, depth=1)

        assert lookup.paid_calls == 1
        assert lookup.payload is not None
        assert lookup.payload.business_type == "medical"
        assert search.queries == ["Clinique Saint-Jean Lyon France"]
        assert places.lookups == []

    @pytest.mark.asyncio
    async def test_depth_two_adds_places(self):
        enricher = ContactEnricher(search=FakeSearchProvider(), places=FakePlacesProvider(["pharmacy"]))
        contact = Contact(name="Pharmacie X", city="Nantes")

        lookup = await enricher.enrich(contact, depth=2)

        assert lookup.paid_calls == 2
        assert lookup.payload.categories == ["pharmacy"]
        assert enricher.paid_calls_for(contact, 2) == 2

    @pytest.mark.asyncio
    async def test_empty_query_makes_no_calls(self):
        search = FakeSearchProvider()
        enricher = ContactEnricher(search=search)
        contact = Contact(name="", email="someone@gmail.com")

        lookup = await enricher.enrich(contact, depth=1)

        assert lookup.paid_calls == 0
        assert lookup.payload is None
        assert search.queries == []

    @pytest.mark.asyncio
    async def test_provider_error_counts_call_and_returns_no_data(self):
        enricher = ContactEnricher(search=FakeSearchProvider(fail=True))

        lookup = await enricher.enrich(Contact(name="Acme", city="Paris"), depth=1)

        assert lookup.paid_calls == 1
        assert lookup.payload is None

    def test_has_providers(self):
        assert not ContactEnricher().has_providers
        assert ContactEnricher(search=FakeSearchProvider()).has_providers


class TestBuildEnricher:
    """Test provider selection from configuration."""

    @pytest.mark.asyncio
    async def test_no_keys_no_paid_providers(self):
        async with httpx.AsyncClient() as client:
            enricher = build_enricher(EnrichmentConfig(), client)

        assert enricher.search is None
        assert enricher.places is None
        assert enricher.site_fetcher is None

    @pytest.mark.asyncio
    async def test_depth_three_enables_site_fetcher(self):
        async with httpx.AsyncClient() as client:
            enricher = build_enricher(EnrichmentConfig(depth=3, search_api_key="k"), client)

        assert isinstance(enricher.search, BingSearchProvider)
        assert isinstance(enricher.site_fetcher, HttpSiteMetadataFetcher)


class TestProviders:
    """Test HTTP providers against a mock transport."""

    @pytest.mark.asyncio
    async def test_bing_search_returns_snippets(self):
        def handler(request: httpx.Request) -> httpx.Response:
            assert request.headers["Ocp-Apim-Subscription-Key"] == "key"
            assert request.url.params["q"] == "Acme Lyon"
            return httpx.Response(
                200,
                json={"webPages": {"value": [{"snippet": "one"}, {"snippet": "two"}, {"name": "x"}]}},
            )

        async with _client(handler) as client:
            snippets = await BingSearchProvider("key", client).search("Acme Lyon")

        assert snippets == ["one", "two"]

    @pytest.mark.asyncio
    async def test_http_error_raises_provider_error(self):
        async with _client(lambda request: httpx.Response(429)) as client:
            with pytest.raises(ProviderError) as exc_info:
                await BingSearchProvider("key", client).search("Acme")

        assert "HTTP 429" in str(exc_info.value)
        assert exc_info.value.provider == "search"

    @pytest.mark.asyncio
    async def test_timeout_raises_provider_timeout(self):
        def handler(request: httpx.Request) -> httpx.Response:
            raise httpx.ReadTimeout("slow", request=request)

        async with _client(handler) as client:
            with pytest.raises(ProviderTimeoutError):
                await GooglePlacesProvider("key", client).lookup("Acme", "Lyon", None)

    @pytest.mark.asyncio
    async def test_places_returns_first_candidate_types(self):
        def handler(request: httpx.Request) -> httpx.Response:
            return httpx.Response(
                200, json={"candidates": [{"types": ["pharmacy", "health"]}, {"types": ["store"]}]}
            )

        async with _client(handler) as client:
            types = await GooglePlacesProvider("key", client).lookup("Pharmacie", "Lyon", "France")

        assert types == ["pharmacy", "health"]

    @pytest.mark.asyncio
    async def test_site_fetcher_failure_is_no_data(self):
        def handler(request: httpx.Request) -> httpx.Response:
            raise httpx.ConnectError("refused", request=request)

        async with _client(handler) as client:
            assert await HttpSiteMetadataFetcher(client).fetch("acme.fr") is None

    @pytest.mark.asyncio
    @pytest.mark.parametrize("body", [[{"snippet": "one"}], None, "text"])
    async def test_non_object_json_raises_provider_error(self, body):
        async with _client(lambda request: httpx.Response(200, json=body)) as client:
            with pytest.raises(ProviderError) as exc_info:
                await BingSearchProvider("key", client).search("Acme")

        assert "unexpected JSON shape" in str(exc_info.value)

    @pytest.mark.asyncio
    async def test_places_non_object_json_raises_provider_error(self):
        async with _client(lambda request: httpx.Response(200, json=["pharmacy"])) as client:
            with pytest.raises(ProviderError):
                await GooglePlacesProvider("key", client).lookup("Acme", "Lyon", None)

    @pytest.mark.asyncio
    async def test_enricher_treats_non_object_json_as_no_data(self):
        async with _client(lambda request: httpx.Response(200, json=None)) as client:
            enricher = ContactEnricher(search=BingSearchProvider("key", client))
            lookup = await enricher.enrich(Contact(name="Acme", city="Lyon"), depth=1)

        assert lookup.payload is None
        assert lookup.paid_calls == 1

    @pytest.mark.asyncio
    async def test_site_fetcher_malformed_domain_is_no_data(self):
        requests = []

        def handler(request: httpx.Request) -> httpx.Response:
            requests.append(request)
            return httpx.Response(200, text="<title>never</title>")

        async with _client(handler) as client:
            assert await HttpSiteMetadataFetcher(client).fetch("ex:ample.com") is None

        assert requests == []

    @pytest.mark.asyncio
    async def test_site_fetcher_reads_metadata(self):
        page = (
            "<html><head><title>Acme &amp; Co</title>"
            '<meta name="description" content="Medical supplies wholesaler"></head></html>'
        )

        async with _client(lambda request: httpx.Response(200, text=page)) as client:
            metadata = await HttpSiteMetadataFetcher(client).fetch("acme.fr")

        assert metadata.title == "Acme & Co"
        assert metadata.description == "Medical supplies wholesaler"


def test_parse_site_metadata_without_tags():
    assert parse_site_metadata("<html><body>hello</body></html>") is None
