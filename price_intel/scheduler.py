from apscheduler.schedulers.asyncio import AsyncIOScheduler
from sqlalchemy.exc import OperationalError
from .crud import purge_expired
from .db import SessionLocal
from .utils import logger, retry

@retry(OperationalError, tries=3, delay=2)
def purge_expired_entries():
    db = SessionLocal()
    try:
        removed = purge_expired(db)
        logger.info("Purged %d expired price context rows", removed)
        return removed
    finally:
        db.close()

def create_scheduler() -> AsyncIOScheduler:
    scheduler = AsyncIOScheduler()
    scheduler.add_job(purge_expired_entries, 'interval', hours=1, id="purge_expired_entries")
    return scheduler
