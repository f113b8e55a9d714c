"""Market price aggregation.

Listings are grouped by condition; each group yields min/max, an average
rounded half up, and the URLs that contributed. The provenance strings name
the hostnames per condition so a reader can tell real market data from an
estimate.
"""
import math
from typing import Any, Dict, List, Optional, Sequence

from .normalize import model_variations, normalize_search_term
from .schemas import ConditionPricing, ListingSource, MarketPriceResult, MarketplaceListing
from .utils import logger

CONDITIONS = ("new", "refurbished", "used")
MARKET_DATA_MARKER = "Market data"


def _unique_hosts(pricing: ConditionPricing) -> List[str]:
    hosts = []
    for s in pricing.sources:
        if s.source not in hosts:
            hosts.append(s.source)
    return hosts


def calculate_condition_pricing(listings: Sequence[MarketplaceListing]) -> Optional[ConditionPricing]:
    if not listings:
        return None
    prices = [l.price for l in listings]
    return ConditionPricing(
        min=min(prices),
        max=max(prices),
        average=math.floor(sum(prices) / len(prices) + 0.5),
        count=len(listings),
        sources=[ListingSource(url=l.url, price=l.price, source=l.source, title=l.title) for l in listings],
    )


def aggregate_listings(listings: Sequence[MarketplaceListing]) -> Optional[MarketPriceResult]:
    if not listings:
        return None
    by_condition = {
        c: calculate_condition_pricing([l for l in listings if l.condition == c]) for c in CONDITIONS
    }
    logger.info(
        "Price breakdown: %s",
        {c: (p.count if p else 0) for c, p in by_condition.items()},
    )

    summary = []
    breakdown = []
    for condition, pricing in by_condition.items():
        if pricing is None:
            continue
        hosts = ", ".join(_unique_hosts(pricing))
        summary.append(f"{pricing.count} {condition} listing(s) ({hosts})")
        breakdown.append(
            f"{condition.capitalize()}: Average of {pricing.count} listings from {hosts}"
        )

    return MarketPriceResult(
        **by_condition,
        total_listings_found=len(listings),
        source=f"{MARKET_DATA_MARKER} from " + ", ".join(summary),
        breakdown=". ".join(breakdown),
    )


def validate_listings(
    listings: Sequence[MarketplaceListing], brand: str, model: str
) -> List[MarketplaceListing]:
    """Drop listings whose page turned out to be a different product.

    A listing must mention a model variation, and either the brand or the
    full model string, in its title or URL.
    """
    nbrand, nmodel = normalize_search_term(brand), normalize_search_term(model)
    variations = model_variations(nmodel)
    full_model = [v for v in (nmodel, nmodel.replace(" ", "")) if v]
    valid = []
    for listing in listings:
        haystack = normalize_search_term(f"{listing.title} {listing.url}")
        has_model = any(v in haystack for v in variations)
        has_brand = bool(nbrand) and (nbrand in haystack or nbrand.replace(" ", "") in haystack)
        has_full_model = any(v in haystack for v in full_model)
        if has_model and (has_brand or has_full_model):
            valid.append(listing)
        else:
            logger.info("Rejected listing for %s %s: %s (%s)", brand, model, listing.title[:60], listing.url)
    return valid


async def calculate_market_price(brand: str, model: str, search, scraper) -> Optional[MarketPriceResult]:
    """Search, scrape, re-validate and aggregate. None when nothing usable was found."""
    logger.info("Starting market price calculation for %s %s", brand, model)
    candidates = await search.find_marketplace_candidates(brand, model)
    logger.info("Found %d marketplace candidates to scrape", len(candidates))
    if not candidates:
        return None

    scraped = await scraper.scrape_prices(candidates)
    validated = validate_listings(scraped, brand, model)
    logger.info("Scraped %d listings, %d passed validation", len(scraped), len(validated))
    return aggregate_listings(validated)


def format_price_ranges(result: MarketPriceResult) -> Dict[str, Any]:
    """Flat price fields plus per-condition detail, as stored in the cache row."""
    ranges: Dict[str, Any] = {}
    for condition in CONDITIONS:
        pricing = getattr(result, condition)
        ranges[f"{condition}_min"] = pricing.min if pricing else None
        ranges[f"{condition}_max"] = pricing.max if pricing else None
    ranges["total_listings_found"] = result.total_listings_found
    ranges["conditions"] = {
        c: getattr(result, c).model_dump() for c in CONDITIONS if getattr(result, c) is not None
    }
    return ranges
