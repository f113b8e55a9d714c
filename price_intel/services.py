"""Price context orchestration.

A request is answered from the cache when a valid row exists; otherwise the
generative estimator answers immediately and its result is cached for a short
time. Either way a background refresh may run the marketplace search and
scrape, upgrading the row in place once real listings are found. At most one
refresh runs per (brand, model, category) key.
"""
import asyncio
import threading
from datetime import timedelta
from typing import Awaitable, Callable, Optional, Set

from sqlalchemy.orm import Session, sessionmaker

from . import crud
from .estimator import AI_ESTIMATE_SOURCE, PriceEstimator, empty_estimate, sanitize_price_ranges
from .normalize import normalize_search_term
from .pricing import calculate_market_price, format_price_ranges
from .schemas import PriceContext, PriceEstimate
from .utils import env_int, logger

AI_CACHE_TTL = timedelta(minutes=env_int("AI_CACHE_TTL_MINUTES", 15))
MARKET_CACHE_TTL = timedelta(days=env_int("MARKET_CACHE_TTL_DAYS", 3))
MAX_CONCURRENT_REFRESHES = env_int("MAX_CONCURRENT_REFRESHES", 4)
DEFAULT_CATEGORY = "unknown"


class RefreshRegistry:
    """Keys with a refresh in flight; check-and-insert is atomic."""

    def __init__(self):
        self._lock = threading.Lock()
        self._keys: Set[str] = set()

    @staticmethod
    def key(brand: str, model: str, category: str) -> str:
        return f"{brand}_{model}_{category}".lower()

    def try_acquire(self, key: str) -> bool:
        with self._lock:
            if key in self._keys:
                return False
            self._keys.add(key)
            return True

    def release(self, key: str):
        with self._lock:
            self._keys.discard(key)

    def is_active(self, key: str) -> bool:
        with self._lock:
            return key in self._keys


class BackgroundRefresher:
    """Fire-and-forget asyncio tasks, bounded by a semaphore."""

    def __init__(self, max_concurrent: int = MAX_CONCURRENT_REFRESHES):
        self.max_concurrent = max(1, max_concurrent)
        self._semaphore: Optional[asyncio.Semaphore] = None
        self._tasks: Set[asyncio.Task] = set()

    def spawn(self, name: str, job: Callable[[], Awaitable[None]]) -> asyncio.Task:
        if self._semaphore is None:
            self._semaphore = asyncio.Semaphore(self.max_concurrent)

        async def _run():
            async with self._semaphore:
                await job()

        task = asyncio.get_running_loop().create_task(_run(), name=name)
        self._tasks.add(task)
        task.add_done_callback(self._on_done)
        return task

    def _on_done(self, task: asyncio.Task):
        self._tasks.discard(task)
        if task.cancelled():
            logger.warning("Background task %s cancelled", task.get_name())
        elif task.exception() is not None:
            logger.error("Background task %s failed", task.get_name(), exc_info=task.exception())

    async def drain(self):
        while self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)


class PriceContextService:
    def __init__(
        self,
        session_factory: sessionmaker,
        search,
        scraper,
        estimator: Optional[PriceEstimator] = None,
        registry: Optional[RefreshRegistry] = None,
        refresher: Optional[BackgroundRefresher] = None,
    ):
        self.session_factory = session_factory
        self.search = search
        self.scraper = scraper
        self.estimator = estimator or PriceEstimator()
        self.registry = registry or RefreshRegistry()
        self.refresher = refresher or BackgroundRefresher()

    # -- persistence, run off the event loop ---------------------------------

    def _read_sync(self, brand, model, category):
        db: Session = self.session_factory()
        try:
            row = crud.get_valid_price_context(db, brand, model, category)
            if row is None:
                return None
            return {
                "price_ranges": row.price_ranges,
                "price_source": row.price_source,
                "price_breakdown": row.price_breakdown,
                "has_marketplace_data": bool(row.has_marketplace_data),
            }
        finally:
            db.close()

    def _write_sync(self, data, ttl, replace_marketplace=True):
        db: Session = self.session_factory()
        try:
            crud.upsert_price_context(db, data, ttl, replace_marketplace)
        finally:
            db.close()

    async def read_cache(self, brand, model, category):
        return await asyncio.to_thread(self._read_sync, brand, model, category)

    async def write_ai_tier(self, brand, model, category, estimate: PriceEstimate):
        data = {
            "brand": brand,
            "model": model,
            "category": category,
            "price_ranges": sanitize_price_ranges(estimate.model_dump()),
            "price_source": estimate.source,
            "price_breakdown": estimate.breakdown,
            "has_marketplace_data": False,
        }
        # a refresh that finished first must not be downgraded
        await asyncio.to_thread(self._write_sync, data, AI_CACHE_TTL, False)

    async def write_marketplace_tier(self, brand, model, category, result):
        data = {
            "brand": brand,
            "model": model,
            "category": category,
            "price_ranges": format_price_ranges(result),
            "price_source": result.source,
            "price_breakdown": result.breakdown,
            "has_marketplace_data": True,
        }
        await asyncio.to_thread(self._write_sync, data, MARKET_CACHE_TTL)

    # -- public operations -----------------------------------------------------

    @staticmethod
    def normalize_key(brand, model, category):
        return (
            normalize_search_term(brand),
            normalize_search_term(model),
            normalize_search_term(category) or DEFAULT_CATEGORY,
        )

    async def estimate(self, brand, model, category, condition) -> Optional[PriceEstimate]:
        """Estimator answer, or None when the estimator failed."""
        try:
            return await self.estimator.estimate_price(brand, model, category, condition or "used")
        except Exception as e:
            logger.error("Price estimate failed for %s %s: %s", brand, model, e)
            return None

    async def get_price_context(self, brand, model, category, condition=None) -> PriceContext:
        brand, model, category = self.normalize_key(brand, model, category)
        key = self.registry.key(brand, model, category)

        cached = await self.read_cache(brand, model, category)
        if cached is not None:
            if not cached["has_marketplace_data"]:
                self.schedule_refresh(brand, model, category)
            return PriceContext(
                **sanitize_price_ranges(cached["price_ranges"]),
                source=cached["price_source"] or AI_ESTIMATE_SOURCE,
                breakdown=cached["price_breakdown"] or "",
                cached=True,
                has_marketplace_data=cached["has_marketplace_data"],
                scraping_in_background=self.registry.is_active(key),
            )

        estimate = await self.estimate(brand, model, category, condition)
        if estimate is None:
            estimate = empty_estimate()
        else:
            await self.write_ai_tier(brand, model, category, estimate)
        self.schedule_refresh(brand, model, category)
        return PriceContext(
            **estimate.model_dump(),
            cached=False,
            has_marketplace_data=False,
            scraping_in_background=self.registry.is_active(key),
        )

    def schedule_refresh(self, brand, model, category) -> bool:
        """Start a background refresh unless one is already running for the key."""
        key = self.registry.key(brand, model, category)
        if not self.registry.try_acquire(key):
            logger.debug("Refresh already in flight for %s", key)
            return False
        logger.info("Starting background marketplace refresh for %s", key)

        async def _job():
            try:
                await self.refresh_marketplace_data(brand, model, category)
            finally:
                self.registry.release(key)

        try:
            self.refresher.spawn(f"refresh:{key}", _job)
        except Exception:
            self.registry.release(key)
            raise
        return True

    async def refresh_marketplace_data(self, brand, model, category) -> bool:
        """Scrape and cache real market data; True when the row was upgraded.

        An empty or failed scrape leaves the existing row untouched.
        """
        try:
            result = await calculate_market_price(brand, model, self.search, self.scraper)
        except Exception as e:
            logger.warning("Background refresh failed for %s %s: %s", brand, model, e)
            return False
        if result is None:
            logger.info("No validated listings for %s %s, keeping cached data", brand, model)
            return False
        await self.write_marketplace_tier(brand, model, category, result)
        logger.info(
            "Cached marketplace data for %s %s (%d listings)", brand, model, result.total_listings_found
        )
        return True

    async def scrape_price_context(self, brand, model, category=None) -> PriceContext:
        """Scrape now instead of in the background.

        Search configuration and provider errors propagate; an empty result
        falls back to the estimator without caching it as market data.
        """
        brand, model, category = self.normalize_key(brand, model, category)
        cached = await self.read_cache(brand, model, category)
        if cached is not None and cached["has_marketplace_data"]:
            return PriceContext(
                **sanitize_price_ranges(cached["price_ranges"]),
                source=cached["price_source"],
                breakdown=cached["price_breakdown"] or "",
                cached=True,
                has_marketplace_data=True,
            )

        result = await calculate_market_price(brand, model, self.search, self.scraper)
        if result is None:
            estimate = await self.estimate(brand, model, category, None) or empty_estimate()
            return PriceContext(**estimate.model_dump(), cached=False, has_marketplace_data=False)

        await self.write_marketplace_tier(brand, model, category, result)
        return PriceContext(
            **sanitize_price_ranges(format_price_ranges(result)),
            source=result.source,
            breakdown=result.breakdown,
            cached=False,
            has_marketplace_data=True,
        )

    async def find_documentation(self, brand, model):
        return await self.search.find_documentation_candidates(brand, model)
