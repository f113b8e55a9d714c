import httpx
import pytest
from price_intel.schemas import SearchResult
from price_intel.scrape import (
    CURRENCY_TO_USD,
    HttpPageFetcher,
    ListingScraper,
    detect_condition,
    parse_price_text,
)

EBAY_PAGE = """
<html><head><title>eBay</title></head><body>
  <h1>Agilent 7890B GC System</h1>
  <div class="x-price-primary"><span class="ux-textspans">US $18,000.00</span></div>
  <div class="x-item-condition-text"><span class="ux-textspans">Used</span></div>
</body></html>
"""

SHOP_PAGE = """
<html><head><meta name="description" content="Benchtop centrifuge"></head><body>
  <h1>{title}</h1>
  <span class="price">{price}</span>
</body></html>
"""


def _candidate(url, hint=None, title="listing"):
    return SearchResult(url=url, title=title, origin_query="test", condition_hint=hint)


def _scraper(handler=None):
    return ListingScraper(
        fetcher_factory=lambda: HttpPageFetcher(transport=httpx.MockTransport(handler)),
        concurrency=2,
        min_price=50,
        max_price=500000,
    )


def test_parse_eu_format():
    parsed = parse_price_text("€1.234,56")
    assert parsed.currency == "EUR"
    assert parsed.amount == pytest.approx(1234.56)
    assert parsed.usd == pytest.approx(1234.56 * CURRENCY_TO_USD["EUR"])


def test_parse_us_format():
    parsed = parse_price_text("$1,234.56")
    assert parsed.currency == "USD"
    assert parsed.usd == pytest.approx(1234.56)


def test_parse_repeated_grouping():
    assert parse_price_text("1.234.567").amount == 1234567


@pytest.mark.parametrize(
    "text,amount,currency",
    [
        ("USD 2,500", 2500, "USD"),
        ("1 234,50 €", 1234.5, "EUR"),
        ("£950", 950, "GBP"),
        ("CA$1,200", 1200, "CAD"),
        ("Price: 12.50", 12.5, "USD"),
    ],
)
def test_parse_price_variants(text, amount, currency):
    parsed = parse_price_text(text)
    assert parsed.amount == pytest.approx(amount)
    assert parsed.currency == currency


@pytest.mark.parametrize("text", [None, "", "Call for price"])
def test_parse_without_number(text):
    assert parse_price_text(text) is None


def test_detect_condition_ebay():
    assert detect_condition("Agilent 7890B", "", "ebay.com", "New other (see details)") == ("new", True)
    assert detect_condition("Refurbished Agilent 7890B", "", "ebay.com") == ("refurbished", True)
    assert detect_condition("Agilent 7890B", "", "ebay.com") == ("used", False)


def test_detect_condition_used_marketplace():
    assert detect_condition("Agilent 7890B", "agilent 7890b new in box", "dotmed.com") == ("new", True)
    assert detect_condition("Agilent 7890B", "agilent 7890b", "dotmed.com") == ("used", False)


def test_detect_condition_other_sites():
    assert detect_condition("Centrifuge X4R", "", "thermofisher.com") == ("new", False)
    assert detect_condition("Centrifuge X4R", "centrifuge x4r pre-owned unit", "shop.example.com") == ("used", True)
    assert detect_condition("Used Centrifuge X4R", "", "thermofisher.com") == ("used", True)


def test_parse_listing_reads_ebay_markup():
    listing = _scraper().parse_listing(EBAY_PAGE, _candidate("https://www.ebay.com/itm/1234"))
    assert listing.price == 18000
    assert listing.condition == "used"
    assert listing.source == "ebay.com"
    assert listing.title == "Agilent 7890B GC System"


def test_explicit_condition_beats_hint():
    html = SHOP_PAGE.format(title="Refurbished Centrifuge X4R", price="$9,500")
    listing = _scraper().parse_listing(html, _candidate("https://www.thermofisher.com/p/x4r", hint="used"))
    assert listing.condition == "refurbished"


def test_hint_overrides_default_condition():
    html = SHOP_PAGE.format(title="Centrifuge X4R", price="$9,500")
    hinted = _scraper().parse_listing(html, _candidate("https://www.thermofisher.com/p/x4r", hint="used"))
    assert hinted.condition == "used"
    plain = _scraper().parse_listing(html, _candidate("https://www.thermofisher.com/p/x4r"))
    assert plain.condition == "new"


def test_price_from_attribute_and_og_title():
    html = """
    <html><head><meta property="og:title" content="Sartorius Balance">
    <meta itemprop="price" content="1500.00"></head><body></body></html>
    """
    listing = _scraper().parse_listing(html, _candidate("https://www.example-lab.com/balance"))
    assert listing.price == 1500
    assert listing.title == "Sartorius Balance"


@pytest.mark.parametrize("price", ["$12", "$1,000,000"])
def test_prices_outside_band_are_dropped(price):
    html = SHOP_PAGE.format(title="Centrifuge X4R", price=price)
    assert _scraper().parse_listing(html, _candidate("https://www.example-lab.com/x4r")) is None


@pytest.mark.asyncio
async def test_scrape_prices_isolates_failures():
    def handler(request):
        if request.url.path == "/broken":
            return httpx.Response(500, text="error")
        if request.url.path == "/noprice":
            return httpx.Response(200, text="<html><h1>Sold out</h1></html>")
        return httpx.Response(200, text=SHOP_PAGE.format(title="Centrifuge X4R", price="$4,200"))

    candidates = [
        _candidate("https://shop.example.com/broken"),
        _candidate("https://shop.example.com/noprice"),
        _candidate("https://shop.example.com/x4r"),
    ]
    listings = await _scraper(handler).scrape_prices(candidates)
    assert [listing.url for listing in listings] == ["https://shop.example.com/x4r"]
    assert listings[0].price == 4200


@pytest.mark.asyncio
async def test_scrape_prices_empty_input():
    assert await _scraper().scrape_prices([]) == []


@pytest.mark.asyncio
async def test_malformed_url_does_not_abort_batch():
    def handler(request):
        return httpx.Response(200, text=SHOP_PAGE.format(title="Centrifuge X4R", price="$4,200"))

    candidates = [_candidate("http://[::1/x"), _candidate("https://shop.example.com/x4r")]
    listings = await _scraper(handler).scrape_prices(candidates)
    assert [listing.url for listing in listings] == ["https://shop.example.com/x4r"]


class FlakyFetcher:
    async def __aenter__(self):
        return self

    async def __aexit__(self, *exc):
        return None

    async def fetch(self, url):
        if "crash" in url:
            raise KeyError("renderer state lost")
        return SHOP_PAGE.format(title="Centrifuge X4R", price="$4,200")


@pytest.mark.asyncio
async def test_unexpected_fetch_error_skips_only_that_url():
    scraper = ListingScraper(fetcher_factory=FlakyFetcher, min_price=50, max_price=500000)
    listings = await scraper.scrape_prices(
        [_candidate("https://shop.example.com/crash"), _candidate("https://shop.example.com/x4r")]
    )
    assert [listing.url for listing in listings] == ["https://shop.example.com/x4r"]
