"""Outbound web search through the Apify Google Search Scraper actor.

Actor page: https://apify.com/apify/google-search-scraper

Each dataset item is one SERP page with an ``organicResults`` array of
``{url, title, description}`` objects. Marketplace lookups fan out over a
fixed set of locale and condition biased query variants; every result keeps
the name and condition hint of the variant that produced it.
"""
from __future__ import annotations

import asyncio
import os
from dataclasses import dataclass
from typing import Any, Dict, List, Optional
from urllib.parse import quote_plus

import httpx
from dotenv import load_dotenv

from .domains import get_domains, matches_any
from .normalize import model_variations, normalize_search_term, normalize_url
from .schemas import SearchResult
from .utils import async_retry, env_float, logger

load_dotenv()

APIFY_SEARCH_URL = (
    "https://api.apify.com/v2/acts/apify~google-search-scraper/run-sync-get-dataset-items"
)
SEARCH_TIMEOUT_SECS = env_float("SEARCH_TIMEOUT_SECS", 60)

MAX_DOCUMENTATION_RESULTS = 15
MAX_MARKETPLACE_RESULTS = 25
MAX_OFFICIAL_RESULTS = 8
MAX_REFURBISHED_RESULTS = 8

_SEARCH_PAGE_MARKERS = ("/search/", "/search?", "?page=", "?q=", "/category/", "/categories/")
_NON_COMMERCIAL_MARKERS = (
    ".pdf", "manual", "datasheet", "wikipedia", "researchgate", "youtube.com", "reddit.com", "forum",
)
_PRICE_INDICATORS_TITLE = (
    "price", "$", "€", "buy", "sale", "shop", "kaufen", "preis", "bestellen", "usd", "eur",
)
_PRICE_INDICATORS_DESCRIPTION = ("price", "$", "€")


class SearchNotConfiguredError(RuntimeError):
    """APIFY_API_TOKEN is missing; the search feature is unavailable."""


class SearchProviderError(RuntimeError):
    """The search provider failed for every query issued."""


@dataclass(frozen=True)
class QueryVariant:
    name: str
    template: str
    language: str
    country: str
    condition_hint: Optional[str] = None

    def render(self, brand: str, model: str) -> str:
        return self.template.format(brand=f'"{brand}"', model=f'"{model}"')


MARKETPLACE_QUERIES = (
    QueryVariant("US", '{brand} {model} buy price "for sale"', "en", "us"),
    QueryVariant("UK", "{brand} {model} buy price shop", "en", "gb"),
    QueryVariant("DE", "{brand} {model} kaufen preis", "de", "de"),
    QueryVariant("CA", "{brand} {model} buy price", "en", "ca"),
    QueryVariant(
        "US-Official",
        "{brand} {model} site:fishersci.com OR site:thermofisher.com OR site:vwr.com",
        "en", "us", "new",
    ),
    QueryVariant("US-New", '{brand} {model} "brand new" OR "factory sealed" price', "en", "us", "new"),
    QueryVariant("US-NewStock", '{brand} {model} new "in stock" buy', "en", "us", "new"),
    QueryVariant("US-Refurb1", "{brand} {model} refurbished OR reconditioned price", "en", "us", "refurbished"),
    QueryVariant("US-Refurb2", "{brand} {model} certified pre-owned OR renewed", "en", "us", "refurbished"),
    QueryVariant(
        "US-RefurbSites",
        "{brand} {model} site:questpair.com OR site:thelabworldgroup.com OR site:banebio.com",
        "en", "us", "refurbished",
    ),
    QueryVariant("US-Used1", '{brand} {model} used "for sale" price', "en", "us", "used"),
    QueryVariant("US-eBay", "{brand} {model} site:ebay.com price", "en", "us", "used"),
    QueryVariant(
        "US-UsedSites",
        "{brand} {model} site:labx.com OR site:dotmed.com OR site:biosurplus.com",
        "en", "us", "used",
    ),
    QueryVariant("UK-eBay", "{brand} {model} site:ebay.com", "en", "gb", "used"),
    QueryVariant("DE-eBay", "{brand} {model} site:ebay.de", "de", "de", "used"),
)

DOCUMENTATION_QUERY = QueryVariant(
    "Docs", "{brand} {model} manual OR datasheet OR specifications", "en", "us"
)


def is_search_page(url: str) -> bool:
    url = url.lower()
    return any(marker in url for marker in _SEARCH_PAGE_MARKERS)


def is_non_commercial(url: str) -> bool:
    url = url.lower()
    return any(marker in url for marker in _NON_COMMERCIAL_MARKERS)


def has_price_indicator(title: str, description: str) -> bool:
    title, description = title.lower(), description.lower()
    return any(i in title for i in _PRICE_INDICATORS_TITLE) or any(
        i in description for i in _PRICE_INDICATORS_DESCRIPTION
    )


def organic_results(dataset: Any) -> List[Dict[str, Any]]:
    if not isinstance(dataset, list):
        raise SearchProviderError("Unexpected response format from search service")
    results = []
    for page in dataset:
        if isinstance(page, dict):
            results.extend(r for r in page.get("organicResults") or [] if isinstance(r, dict))
    return results


class ApifySearchClient:
    """Async client for Google searches run through Apify."""

    def __init__(
        self,
        token: Optional[str] = None,
        timeout: float = SEARCH_TIMEOUT_SECS,
        transport: Optional[httpx.AsyncBaseTransport] = None,
        retry_delay: float = 1.0,
    ):
        self.token = token if token is not None else os.getenv("APIFY_API_TOKEN")
        self.timeout = timeout
        self.transport = transport
        self.retry_delay = retry_delay

    def _require_token(self) -> str:
        if not self.token:
            logger.warning("APIFY_API_TOKEN not configured")
            raise SearchNotConfiguredError("Search service not configured. Please contact support.")
        return self.token

    def _client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(timeout=self.timeout, transport=self.transport)

    async def run_query(self, client: httpx.AsyncClient, variant: QueryVariant, query: str) -> List[Dict[str, Any]]:
        payload = {
            "queries": query,
            "maxPagesPerQuery": 2,
            "resultsPerPage": 30,
            "languageCode": variant.language,
            "countryCode": variant.country,
            "mobileResults": False,
        }

        @async_retry(httpx.TransportError, tries=2, delay=self.retry_delay)
        async def _post():
            return await client.post(APIFY_SEARCH_URL, params={"token": self._require_token()}, json=payload)

        response = await _post()
        if response.status_code >= 400:
            raise SearchProviderError(
                f"Apify API returned {response.status_code}: {response.text[:200]}"
            )
        try:
            dataset = response.json()
        except ValueError as e:
            raise SearchProviderError(f"Invalid JSON from search service: {e}") from e
        return organic_results(dataset)

    async def find_documentation_candidates(self, brand: str, model: str) -> List[SearchResult]:
        self._require_token()
        nbrand, nmodel = normalize_search_term(brand), normalize_search_term(model)
        query = DOCUMENTATION_QUERY.render(nbrand, nmodel)
        logger.info("Searching documentation (normalized): %s", query)

        try:
            async with self._client() as client:
                organic = await self.run_query(client, DOCUMENTATION_QUERY, query)
        except httpx.HTTPError as e:
            logger.error("Documentation search error: %s", e)
            raise SearchProviderError(f"External search failed: {e}") from e
        logger.info("Documentation search returned %d organic results", len(organic))

        results = []
        for r in organic:
            url, title = r.get("url"), r.get("title")
            if not url or not title:
                continue
            if is_search_page(url):
                logger.debug("Filtered out search/category page: %s", url)
                continue
            description = r.get("description") or ""
            haystack = f"{title} {url} {description}".lower()
            if nmodel not in haystack:
                logger.debug("Filtered out - model not found in content: %s", url)
                continue
            results.append(
                SearchResult(url=url, title=title, description=description, origin_query=DOCUMENTATION_QUERY.name)
            )
            if len(results) >= MAX_DOCUMENTATION_RESULTS:
                break

        if not results:
            fallback = f"https://www.google.com/search?q={quote_plus(f'{brand} {model} manual pdf')}"
            return [
                SearchResult(
                    url=fallback,
                    title=f"Search Google for {brand} {model} manuals",
                    description="No direct links found. Click to search Google manually.",
                    origin_query=DOCUMENTATION_QUERY.name,
                )
            ]
        return results

    async def find_marketplace_candidates(self, brand: str, model: str) -> List[SearchResult]:
        self._require_token()
        nbrand, nmodel = normalize_search_term(brand), normalize_search_term(model)
        logger.info(
            "Searching %d marketplace query variants for: %s %s", len(MARKETPLACE_QUERIES), nbrand, nmodel
        )

        async with self._client() as client:
            responses = await asyncio.gather(
                *(self.run_query(client, v, v.render(nbrand, nmodel)) for v in MARKETPLACE_QUERIES),
                return_exceptions=True,
            )

        tagged = []
        failures = 0
        for variant, response in zip(MARKETPLACE_QUERIES, responses):
            if isinstance(response, SearchNotConfiguredError):
                raise response
            if isinstance(response, BaseException):
                failures += 1
                logger.warning("%s search failed: %s", variant.name, response)
                continue
            logger.debug("%s organic results: %d", variant.name, len(response))
            tagged.extend((variant, r) for r in response)

        if failures == len(MARKETPLACE_QUERIES):
            raise SearchProviderError("Marketplace search failed for every query variant")
        logger.info("Total marketplace results: %d", len(tagged))

        candidates = [
            SearchResult(
                url=r["url"],
                title=r["title"],
                description=r.get("description") or "",
                origin_query=variant.name,
                condition_hint=variant.condition_hint,
            )
            for variant, r in tagged
            if r.get("url") and r.get("title")
        ]
        filtered = [c for c in candidates if self.is_relevant_offer(c, nbrand, nmodel)]
        logger.info("Marketplace filtered results count: %d", len(filtered))
        return prioritize(dedupe(filtered))

    @staticmethod
    def is_relevant_offer(result: SearchResult, nbrand: str, nmodel: str) -> bool:
        url, title = result.url.lower(), result.title.lower()
        description = result.description.lower()
        if is_search_page(url):
            logger.debug("Filtered out search/category page: %s", result.url)
            return False

        variations = model_variations(nmodel)
        if not any(v in title or v in url or v in description for v in variations):
            logger.debug("Filtered out - model not found: %s", result.title[:60])
            return False

        if is_non_commercial(url):
            logger.debug("Skipping non-commercial page: %s", url)
            return False

        has_brand = bool(nbrand) and (nbrand in title or nbrand in url or nbrand in description)
        known_marketplace = matches_any(url, get_domains().marketplaces)
        return known_marketplace or has_price_indicator(title, description) or has_brand


def dedupe(results: List[SearchResult]) -> List[SearchResult]:
    """Drop repeated URLs ignoring query, fragment and trailing slash; the first occurrence wins."""
    seen = set()
    unique = []
    for r in results:
        key = normalize_url(r.url)
        if key in seen:
            continue
        seen.add(key)
        unique.append(r)
    return unique


def prioritize(results: List[SearchResult]) -> List[SearchResult]:
    """Balance official new sellers, refurbished/used marketplaces and the rest."""
    domains = get_domains()
    official, refurbished, other = [], [], []
    for r in results:
        if matches_any(r.url, domains.official_new_sellers):
            official.append(r)
        elif matches_any(r.url, domains.refurbished_marketplaces):
            refurbished.append(r)
        else:
            other.append(r)
    logger.info(
        "URL balance: %d official, %d refurb sites, %d other", len(official), len(refurbished), len(other)
    )
    prioritized = official[:MAX_OFFICIAL_RESULTS] + refurbished[:MAX_REFURBISHED_RESULTS] + other
    if len(prioritized) > MAX_MARKETPLACE_RESULTS:
        logger.info("Limited to %d URLs (from %d unique)", MAX_MARKETPLACE_RESULTS, len(prioritized))
    return prioritized[:MAX_MARKETPLACE_RESULTS]
