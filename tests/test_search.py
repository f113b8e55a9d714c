import json
import httpx
import pytest
from price_intel.schemas import SearchResult
from price_intel.search import (
    MARKETPLACE_QUERIES,
    ApifySearchClient,
    SearchNotConfiguredError,
    SearchProviderError,
    dedupe,
    prioritize,
)

COMMON_RESULTS = [
    {"url": "https://www.ebay.com/itm/1?hash=1", "title": "Agilent 7890B GC", "description": ""},
    {"url": "https://www.google.com/search?q=agilent+7890b", "title": "agilent 7890b - Google"},
    {"url": "https://www.agilent.com/library/7890b.pdf", "title": "7890B Site Prep"},
    {"url": "https://example.org/blog/gc", "title": "Gas chromatography overview"},
    {"url": "https://www.thermofisher.com/p/7890b", "title": "7890B GC"},
    {"url": "https://www.nowhere.com/p/7890b"},
]


def _client(handler):
    return ApifySearchClient(token="test-token", transport=httpx.MockTransport(handler), retry_delay=0)


def _dataset(results):
    return httpx.Response(200, json=[{"searchQuery": {}, "organicResults": results}])


@pytest.mark.asyncio
async def test_marketplace_search_fans_out_filters_and_tags():
    seen = []

    def handler(request):
        payload = json.loads(request.content)
        seen.append((request.url.params["token"], payload))
        results = list(COMMON_RESULTS)
        if "site:ebay.de" in payload["queries"]:
            results.append({"url": "https://www.ebay.de/itm/77", "title": "Agilent 7890B Gaschromatograph"})
        return _dataset(results)

    candidates = await _client(handler).find_marketplace_candidates("Agilent", "7890B")

    assert len(seen) == len(MARKETPLACE_QUERIES) == 15
    assert all(token == "test-token" for token, _ in seen)
    assert {p["countryCode"] for _, p in seen} == {"us", "gb", "de", "ca"}
    assert all('"agilent" "7890b"' in p["queries"] for _, p in seen)

    by_url = {c.url: c for c in candidates}
    assert set(by_url) == {
        "https://www.thermofisher.com/p/7890b",
        "https://www.ebay.com/itm/1?hash=1",
        "https://www.ebay.de/itm/77",
    }
    # official sellers lead the list
    assert candidates[0].url == "https://www.thermofisher.com/p/7890b"
    # first variant to return a URL owns it
    assert by_url["https://www.ebay.com/itm/1?hash=1"].origin_query == "US"
    assert by_url["https://www.ebay.de/itm/77"].origin_query == "DE-eBay"
    assert by_url["https://www.ebay.de/itm/77"].condition_hint == "used"


@pytest.mark.asyncio
async def test_marketplace_search_survives_partial_failures():
    def handler(request):
        if "kaufen" in json.loads(request.content)["queries"]:
            return httpx.Response(500, text="actor failed")
        return _dataset(COMMON_RESULTS)

    candidates = await _client(handler).find_marketplace_candidates("Agilent", "7890B")
    assert len(candidates) == 2


@pytest.mark.asyncio
async def test_marketplace_search_fails_when_every_variant_fails():
    def handler(request):
        return httpx.Response(502, text="bad gateway")

    with pytest.raises(SearchProviderError):
        await _client(handler).find_marketplace_candidates("Agilent", "7890B")


@pytest.mark.asyncio
async def test_search_requires_token():
    client = ApifySearchClient(token="")
    with pytest.raises(SearchNotConfiguredError):
        await client.find_marketplace_candidates("Agilent", "7890B")
    with pytest.raises(SearchNotConfiguredError):
        await client.find_documentation_candidates("Agilent", "7890B")


@pytest.mark.asyncio
async def test_documentation_search_filters_by_model():
    def handler(request):
        return _dataset(
            [
                {"url": "https://www.agilent.com/cs/library/usermanuals/7890b.pdf", "title": "7890B GC Manual"},
                {"url": "https://www.agilent.com/search/?q=7890b", "title": "7890B search"},
                {"url": "https://www.agilent.com/en/gc", "title": "GC systems", "description": "All models"},
            ]
        )

    results = await _client(handler).find_documentation_candidates("Agilent", "7890B")
    assert [r.url for r in results] == ["https://www.agilent.com/cs/library/usermanuals/7890b.pdf"]
    assert results[0].origin_query == "Docs"


@pytest.mark.asyncio
async def test_documentation_search_falls_back_to_google_link():
    def handler(request):
        return _dataset([])

    results = await _client(handler).find_documentation_candidates("Agilent", "7890B")
    assert len(results) == 1
    assert results[0].url.startswith("https://www.google.com/search?q=")
    assert results[0].title == "Search Google for Agilent 7890B manuals"


@pytest.mark.asyncio
async def test_transport_errors_are_retried_once():
    calls = []

    def handler(request):
        calls.append(request)
        if len(calls) == 1:
            raise httpx.ConnectError("connection reset", request=request)
        return _dataset([{"url": "https://www.agilent.com/docs/7890b", "title": "7890B manual"}])

    results = await _client(handler).find_documentation_candidates("Agilent", "7890B")
    assert len(calls) == 2
    assert results[0].url == "https://www.agilent.com/docs/7890b"


@pytest.mark.asyncio
async def test_unexpected_response_shape():
    def handler(request):
        return httpx.Response(200, json={"error": "quota"})

    with pytest.raises(SearchProviderError):
        await _client(handler).find_documentation_candidates("Agilent", "7890B")


def test_dedupe_ignores_query_string_and_case():
    results = [
        SearchResult(url="https://www.ebay.com/itm/1?a=1", title="first"),
        SearchResult(url="https://WWW.EBAY.COM/itm/1?b=2", title="second"),
        SearchResult(url="https://www.ebay.com/itm/2", title="third"),
        SearchResult(url="https://www.ebay.com/itm/2/#details", title="fourth"),
    ]
    assert [r.title for r in dedupe(results)] == ["first", "third"]


def test_prioritize_balances_and_caps():
    official = [SearchResult(url=f"https://www.fishersci.com/p/{i}", title="o") for i in range(10)]
    refurb = [SearchResult(url=f"https://www.labx.com/item/{i}", title="r") for i in range(10)]
    other = [SearchResult(url=f"https://shop{i}.example.com/p", title="x") for i in range(10)]

    prioritized = prioritize(other + refurb + official)

    assert len(prioritized) == 25
    assert [r.title for r in prioritized] == ["o"] * 8 + ["r"] * 8 + ["x"] * 9
