from contextlib import asynccontextmanager
from fastapi import FastAPI
from price_intel.db import Base, SessionLocal, engine
import price_intel.models  # noqa: F401 ensure models are imported so tables are known
from price_intel.api.routes import router as api_router
from price_intel.scheduler import create_scheduler
from price_intel.scrape import ListingScraper
from price_intel.search import ApifySearchClient
from price_intel.services import PriceContextService
from price_intel.utils import logger


def build_service() -> PriceContextService:
    return PriceContextService(
        session_factory=SessionLocal,
        search=ApifySearchClient(),
        scraper=ListingScraper(),
    )


@asynccontextmanager
async def lifespan(app: FastAPI):
    # Ensure database tables are created on startup
    Base.metadata.create_all(bind=engine)
    if not hasattr(app.state, "price_service"):
        app.state.price_service = build_service()
    scheduler = create_scheduler()
    scheduler.start()
    logger.info("Scheduler started")
    try:
        yield
    finally:
        scheduler.shutdown(wait=False)
        await app.state.price_service.refresher.drain()


# create FastAPI instance
app = FastAPI(title="price-intel", lifespan=lifespan)
app.include_router(api_router)
