import os

# must be set before price_intel.db is imported
os.environ["POSTGRES_URL"] = "sqlite://"

import asyncio
import pytest
from price_intel.db import Base, engine, SessionLocal
import price_intel.models  # noqa: F401
from price_intel.schemas import MarketplaceListing, PriceEstimate, SearchResult


@pytest.fixture
def db():
    Base.metadata.create_all(bind=engine)
    session = SessionLocal()
    yield session
    session.close()
    Base.metadata.drop_all(bind=engine)


class FakeSearch:
    def __init__(self, candidates=None, error=None):
        self.candidates = candidates or []
        self.error = error
        self.calls = 0

    async def find_marketplace_candidates(self, brand, model):
        self.calls += 1
        if self.error:
            raise self.error
        return list(self.candidates)

    async def find_documentation_candidates(self, brand, model):
        if self.error:
            raise self.error
        return list(self.candidates)


class FakeScraper:
    def __init__(self, listings=None, gate=None):
        self.listings = listings or []
        self.gate = gate
        self.calls = 0

    async def scrape_prices(self, candidates):
        self.calls += 1
        if self.gate is not None:
            await self.gate.wait()
        return list(self.listings)


class FakeEstimator:
    def __init__(self, estimate=None, error=None, gate=None):
        self.estimate = estimate or PriceEstimate(
            new_min=90000, new_max=120000, used_min=30000, used_max=50000,
            source="ai_estimate", breakdown="Typical GC pricing",
        )
        self.gate = gate
        self.error = error
        self.calls = 0

    async def estimate_price(self, brand, model, category, condition="used"):
        self.calls += 1
        if self.gate is not None:
            await self.gate.wait()
        if self.error:
            raise self.error
        return self.estimate


@pytest.fixture
def agilent_candidates():
    return [
        SearchResult(
            url="https://www.ebay.com/itm/1234",
            title="Agilent 7890B GC System",
            origin_query="US-eBay",
            condition_hint="used",
        ),
        SearchResult(
            url="https://www.labx.com/item/agilent-7890b/55",
            title="Agilent 7890B Gas Chromatograph",
            origin_query="US-UsedSites",
            condition_hint="used",
        ),
    ]


@pytest.fixture
def agilent_listings():
    return [
        MarketplaceListing(
            url="https://www.ebay.com/itm/1234", title="Agilent 7890B GC System",
            price=18000, condition="used", source="ebay.com",
        ),
        MarketplaceListing(
            url="https://www.labx.com/item/agilent-7890b/55", title="Agilent 7890B Gas Chromatograph",
            price=22000, condition="used", source="labx.com",
        ),
    ]


@pytest.fixture
def fake_search(agilent_candidates):
    return FakeSearch(agilent_candidates)


@pytest.fixture
def fake_scraper(agilent_listings):
    return FakeScraper(agilent_listings)


@pytest.fixture
def fake_estimator():
    return FakeEstimator()


@pytest.fixture
def gate():
    return asyncio.Event()
