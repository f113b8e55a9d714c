import asyncio
import os
import re
from dataclasses import dataclass
from typing import List, Optional, Sequence, Tuple

import httpx
from bs4 import BeautifulSoup
from dotenv import load_dotenv
from playwright.async_api import Error as PlaywrightError
from playwright.async_api import TimeoutError as PWTimeout
from playwright.async_api import async_playwright

from .domains import get_domains, matches_any
from .normalize import hostname
from .schemas import MarketplaceListing, SearchResult
from .utils import env_float, env_int, logger

# try to detect available parser; prefer lxml if installed
try:
    import lxml  # type: ignore  # noqa: F401
    _bs_parser = "lxml"
except ImportError:
    _bs_parser = "html.parser"

load_dotenv()
SCRAPE_TIMEOUT_SECS = env_float("SCRAPE_TIMEOUT_SECS", 12)
SCRAPE_CONCURRENCY = env_int("SCRAPE_CONCURRENCY", 8)
SCRAPE_RENDER_JS = os.getenv("SCRAPE_RENDER_JS", "0") == "1"
HEADLESS = os.getenv("HEADLESS", "1") == "1"
# no real lab/industrial equipment sells outside this band; anything else is a parsing error
PRICE_MIN_USD = env_float("PRICE_MIN_USD", 50)
PRICE_MAX_USD = env_float("PRICE_MAX_USD", 500000)

USER_AGENT = (
    "Mozilla/5.0 (Windows NT 10.0; Win64; x64) "
    "AppleWebKit/537.36 (KHTML, like Gecko) "
    "Chrome/131.0.0.0 Safari/537.36"
)

CURRENCY_TO_USD = {
    "USD": 1.0, "EUR": 1.08, "GBP": 1.26, "CAD": 0.74,
    "AUD": 0.65, "CHF": 1.12, "JPY": 0.0067, "CNY": 0.14,
}

# checked in order; CA$/AU$ before the bare dollar default
_CURRENCY_PATTERNS = (
    ("EUR", re.compile(r"€|\bEUR\b", re.I)),
    ("GBP", re.compile(r"£|\bGBP\b", re.I)),
    ("CAD", re.compile(r"CA\$|C\$|\bCAD\b", re.I)),
    ("AUD", re.compile(r"AU\$|A\$|\bAUD\b", re.I)),
    ("CHF", re.compile(r"\bCHF\b", re.I)),
    ("JPY", re.compile(r"¥|円|\bJPY\b", re.I)),
    ("CNY", re.compile(r"元|\bCNY\b|\bRMB\b", re.I)),
)
_CURRENCY_TOKENS = re.compile(
    r"US\s*\$|CA\$|C\$|AU\$|A\$|\b(USD|EUR|GBP|CAD|AUD|CHF|JPY|CNY|RMB)\b|[€£$¥円元]", re.I
)
_NUMBER = re.compile(r"\d+(?:[.,']\d+|\s\d{3}(?!\d))*")
_GROUPING = re.compile(r"[\s']")

PRICE_SELECTORS = (
    '[itemprop="price"]',
    ".price", ".Price",
    '[class*="price"]', '[class*="Price"]',
    "[data-price]", "#price",
    ".sale-price", ".current-price",
    ".product-price", ".listing-price",
)

# high-volume sources first try their own markup
DOMAIN_PRICE_SELECTORS = {
    "ebay": (".x-price-primary .ux-textspans", "#prcIsum", ".x-bin-price__content .ux-textspans"),
    "labx": (".listing-price", ".price-value"),
    "dotmed": ("#price", ".listing-price"),
    "fishersci": (".price .price_value", "[data-price]"),
    "amazon": (".a-price .a-offscreen", "#priceblock_ourprice"),
}

EBAY_CONDITION_SELECTORS = (
    ".x-item-condition-text .ux-textspans",
    ".vim-condition-text",
    '[data-testid="x-item-condition"]',
    ".ux-labels-values--condition .ux-textspans--SECONDARY",
)
PRODUCT_CONDITION_SELECTORS = ".product-condition, .item-condition, [class*=condition]"

REFURB_PATTERN = re.compile(
    r"refurbished|refurb|certified pre-owned|reconditioned|renewed|professionally restored|factory refurb", re.I
)
USED_PATTERN = re.compile(
    r"\bused\b|pre-owned|preowned|second.?hand|previously owned|as-is|for parts", re.I
)
NEW_PATTERN = re.compile(
    r"\bbrand new\b|new in box|factory new|factory sealed|\bunused\b|\bnib\b|\bnew\b(?!\s*listing)|unopened|sealed box",
    re.I,
)
EBAY_NEW = re.compile(r"\bnew\b|brand new|factory sealed", re.I)
EBAY_REFURB = re.compile(r"refurbished|certified|seller refurb|manufacturer refurb", re.I)
EBAY_USED = re.compile(r"\bused\b|pre-owned|open box", re.I)


@dataclass(frozen=True)
class ParsedPrice:
    amount: float
    currency: str
    usd: float


class PageFetchError(RuntimeError):
    """A single page could not be fetched; the batch carries on."""


def detect_currency(text: str) -> str:
    for code, pattern in _CURRENCY_PATTERNS:
        if pattern.search(text):
            return code
    return "USD"


def _to_float(numeric: str) -> Optional[float]:
    last_comma, last_dot = numeric.rfind(","), numeric.rfind(".")
    if last_comma > -1 and last_dot > -1:
        # whichever separator comes last is the decimal mark
        decimal, grouping = (",", ".") if last_comma > last_dot else (".", ",")
        numeric = numeric.replace(grouping, "").replace(decimal, ".")
    elif last_comma > -1 or last_dot > -1:
        sep = "," if last_comma > -1 else "."
        groups = numeric.split(sep)
        if len(groups) > 2 or len(groups[-1]) == 3:
            numeric = numeric.replace(sep, "")
        else:
            numeric = numeric.replace(sep, ".")
    try:
        return float(numeric)
    except ValueError:
        return None


def parse_price_text(text: Optional[str]) -> Optional[ParsedPrice]:
    """Parse a scraped price string and convert it to USD.

    "€1.234,56" -> 1234.56 EUR, "$1,234.56" -> 1234.56 USD,
    "1.234.567" -> 1234567 USD.
    """
    if not text:
        return None
    trimmed = text.strip()
    currency = detect_currency(trimmed)
    match = _NUMBER.search(_CURRENCY_TOKENS.sub("", trimmed))
    if not match:
        return None
    numeric = _GROUPING.sub("", match.group(0))
    amount = _to_float(numeric)
    if amount is None:
        return None
    return ParsedPrice(amount=amount, currency=currency, usd=amount * CURRENCY_TO_USD[currency])


def _element_text(el) -> str:
    text = el.get_text(" ", strip=True)
    if re.search(r"[0-9]", text):
        return text
    for attr in ("content", "data-price", "value"):
        value = el.get(attr)
        if value and re.search(r"[0-9]", str(value)):
            return str(value).strip()
    return text


def extract_price_text(soup: BeautifulSoup, host: str) -> str:
    selectors: List[str] = []
    for fragment, overrides in DOMAIN_PRICE_SELECTORS.items():
        if fragment in host:
            selectors.extend(overrides)
    selectors.extend(PRICE_SELECTORS)
    for selector in selectors:
        el = soup.select_one(selector)
        if el is None:
            continue
        text = _element_text(el)
        if text and re.search(r"[0-9]", text):
            return text
    return ""


def extract_title(soup: BeautifulSoup) -> str:
    h1 = soup.find("h1")
    if h1 and h1.get_text(strip=True):
        return h1.get_text(" ", strip=True)
    og = soup.find("meta", property="og:title")
    if og and og.get("content"):
        return og["content"].strip()
    return soup.title.string.strip() if soup.title and soup.title.string else ""


def _select_text(soup: BeautifulSoup, selectors: Sequence[str]) -> str:
    for selector in selectors:
        el = soup.select_one(selector)
        if el and el.get_text(strip=True):
            return el.get_text(" ", strip=True)
    return ""


def extract_product_text(soup: BeautifulSoup, title: str) -> str:
    """Title + meta description + condition widgets, not the whole page."""
    meta = soup.find("meta", attrs={"name": "description"})
    description = meta.get("content", "") if meta else ""
    condition = " ".join(el.get_text(" ", strip=True) for el in soup.select(PRODUCT_CONDITION_SELECTORS))
    return f"{title} {description} {condition}".lower()


def detect_condition(
    title: str, product_text: str, host: str, marketplace_condition: str = ""
) -> Tuple[str, bool]:
    """Return (condition, explicit).

    explicit is False when the condition is only a seller-type default, in
    which case a query hint may still override it.
    """
    domains = get_domains()
    title = title.lower()
    product_text = product_text.lower()
    marketplace_condition = marketplace_condition.lower()
    refurb_title = bool(REFURB_PATTERN.search(title))
    used_title = bool(USED_PATTERN.search(title))
    new_title = bool(NEW_PATTERN.search(title))

    if "ebay" in host:
        if EBAY_NEW.search(marketplace_condition):
            return "new", True
        if EBAY_REFURB.search(marketplace_condition):
            return "refurbished", True
        if EBAY_USED.search(marketplace_condition):
            return "used", True
        if new_title:
            return "new", True
        if refurb_title:
            return "refurbished", True
        if used_title:
            return "used", True
        return "used", False

    if matches_any(host, domains.used_marketplaces):
        if new_title or NEW_PATTERN.search(product_text):
            return "new", True
        if refurb_title or REFURB_PATTERN.search(product_text):
            return "refurbished", True
        if used_title:
            return "used", True
        return "used", False

    if refurb_title:
        return "refurbished", True
    if used_title:
        return "used", True
    if new_title:
        return "new", True

    if matches_any(host, domains.official_new_sellers):
        return "new", False

    if REFURB_PATTERN.search(product_text):
        return "refurbished", True
    if USED_PATTERN.search(product_text):
        return "used", True
    # everything else defaults to new
    return "new", False


def condition_hint_for(result: SearchResult) -> Optional[str]:
    """Condition suggested by the query variant, then by the result's domain."""
    domains = get_domains()
    hint = result.condition_hint
    if hint != "new":
        if matches_any(result.url, domains.refurbished_marketplaces):
            hint = "refurbished"
        elif matches_any(result.url, domains.used_hint_domains):
            hint = "used"
    return hint


class HttpPageFetcher:
    """Plain HTTP fetch; enough for server-rendered product pages."""

    def __init__(self, timeout: float = SCRAPE_TIMEOUT_SECS, transport: Optional[httpx.AsyncBaseTransport] = None):
        self.timeout = timeout
        self.transport = transport
        self._client: Optional[httpx.AsyncClient] = None

    async def __aenter__(self):
        self._client = httpx.AsyncClient(
            timeout=self.timeout,
            transport=self.transport,
            follow_redirects=True,
            headers={
                "User-Agent": USER_AGENT,
                "Accept": "text/html,application/xhtml+xml,application/xml;q=0.9,*/*;q=0.8",
                "Accept-Language": "en-US,en;q=0.9,de;q=0.8",
            },
        )
        return self

    async def __aexit__(self, *exc):
        await self._client.aclose()
        self._client = None

    async def fetch(self, url: str) -> str:
        try:
            resp = await self._client.get(url)
            resp.raise_for_status()
            return resp.text
        except (httpx.HTTPError, httpx.InvalidURL) as e:
            raise PageFetchError(f"{type(e).__name__}: {e}") from e


class BrowserPageFetcher:
    """Headless Chromium fetch for pages that render prices with JavaScript."""

    def __init__(self, timeout: float = SCRAPE_TIMEOUT_SECS, headless: bool = HEADLESS):
        self.timeout = timeout
        self.headless = headless

    async def __aenter__(self):
        self._playwright = await async_playwright().start()
        self._browser = await self._playwright.chromium.launch(headless=self.headless)
        self._context = await self._browser.new_context(user_agent=USER_AGENT)
        return self

    async def __aexit__(self, *exc):
        await self._context.close()
        await self._browser.close()
        await self._playwright.stop()

    async def fetch(self, url: str) -> str:
        page = None
        try:
            page = await self._context.new_page()
            await page.goto(url, timeout=self.timeout * 1000)
            await page.wait_for_load_state("domcontentloaded")
            return await page.content()
        except PWTimeout as e:
            raise PageFetchError(f"Timeout: {e}") from e
        except PlaywrightError as e:
            raise PageFetchError(str(e)) from e
        finally:
            if page is not None:
                await page.close()


def default_fetcher():
    return BrowserPageFetcher() if SCRAPE_RENDER_JS else HttpPageFetcher()


class ListingScraper:
    """Fetch candidate pages and turn them into priced, conditioned listings."""

    def __init__(
        self,
        fetcher_factory=default_fetcher,
        concurrency: int = SCRAPE_CONCURRENCY,
        min_price: float = PRICE_MIN_USD,
        max_price: float = PRICE_MAX_USD,
    ):
        self.fetcher_factory = fetcher_factory
        self.concurrency = max(1, concurrency)
        self.min_price = min_price
        self.max_price = max_price

    async def scrape_prices(self, candidates: Sequence[SearchResult]) -> List[MarketplaceListing]:
        if not candidates:
            return []
        logger.info("Scraping %d candidate URLs", len(candidates))
        semaphore = asyncio.Semaphore(self.concurrency)

        async with self.fetcher_factory() as fetcher:
            async def _bounded(candidate):
                async with semaphore:
                    return await self._scrape_one(fetcher, candidate)

            results = await asyncio.gather(*(_bounded(c) for c in candidates))

        listings = [r for r in results if r is not None]
        logger.info("Valid price listings found: %d of %d pages", len(listings), len(candidates))
        return listings

    async def _scrape_one(self, fetcher, candidate: SearchResult) -> Optional[MarketplaceListing]:
        try:
            html = await fetcher.fetch(candidate.url)
        except PageFetchError as e:
            logger.warning("Failed to fetch %s: %s", candidate.url, e)
            return None
        except Exception as e:
            logger.exception("Unexpected error fetching %s: %s", candidate.url, e)
            return None
        try:
            return self.parse_listing(html, candidate)
        except Exception as e:
            logger.exception("Failed to scrape %s: %s", candidate.url, e)
            return None

    def parse_listing(self, html: str, candidate: SearchResult) -> Optional[MarketplaceListing]:
        soup = BeautifulSoup(html, _bs_parser)
        host = hostname(candidate.url)
        price_text = extract_price_text(soup, host)
        parsed = parse_price_text(price_text)
        if parsed is None or parsed.usd <= 0:
            logger.debug("No price found on %s (text=%r)", candidate.url, price_text[:40])
            return None
        if parsed.usd < self.min_price or parsed.usd > self.max_price:
            logger.info("Filtered out unreasonable price %.2f from %s", parsed.usd, candidate.url)
            return None

        title = extract_title(soup) or candidate.title
        marketplace_condition = _select_text(soup, EBAY_CONDITION_SELECTORS) if "ebay" in host else ""
        condition, explicit = detect_condition(
            title, extract_product_text(soup, title), host, marketplace_condition
        )
        hint = condition_hint_for(candidate)
        if not explicit and hint and hint != condition:
            logger.debug("Applying condition hint '%s' to %s", hint, candidate.url)
            condition = hint

        return MarketplaceListing(
            url=candidate.url,
            title=title,
            price=round(parsed.usd, 2),
            condition=condition,
            source=host,
        )
