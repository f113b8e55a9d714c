# price_intel/crud.py
"""Persistence helpers for `PriceContextCache` rows.

Writes are single-statement upserts on the (brand, model, category) unique
key; reads treat rows past `expires_at` as absent. All timestamps are naive
UTC.
"""
from datetime import datetime, timedelta, timezone
from sqlalchemy.dialects.postgresql import insert as pg_insert
from sqlalchemy.dialects.sqlite import insert as sqlite_insert
from sqlalchemy import delete, func, or_
from sqlalchemy.orm import Session
from typing import Any, Dict, Optional
from .models import PriceContextCache

def utcnow() -> datetime:
    return datetime.now(timezone.utc).replace(tzinfo=None)

def _insert(db: Session):
    dialect = db.get_bind().dialect.name
    return sqlite_insert if dialect == "sqlite" else pg_insert

def upsert_price_context(db: Session, data: Dict[str, Any], ttl: timedelta, replace_marketplace: bool = True):
    """Insert or fully replace the row for data's (brand, model, category).

    With replace_marketplace=False an existing, unexpired marketplace row is
    left as it is.
    """
    table = PriceContextCache.__table__
    values = dict(data, expires_at=utcnow() + ttl)
    stmt = _insert(db)(table).values(**values)
    # copy all updatable columns from EXCLUDED, but override timestamps
    excluded = {
        c.name: stmt.excluded[c.name]
        for c in table.columns
        if c.name in values and c.name not in ("id", "created_at", "brand", "model", "category")
    }
    excluded["updated_at"] = func.now()
    where = None
    if not replace_marketplace:
        where = or_(table.c.has_marketplace_data.is_(False), table.c.expires_at <= utcnow())
    stmt = stmt.on_conflict_do_update(index_elements=["brand", "model", "category"], set_=excluded, where=where)
    db.execute(stmt)
    db.commit()

def get_valid_price_context(db: Session, brand: str, model: str, category: str) -> Optional[PriceContextCache]:
    return (
        db.query(PriceContextCache)
        .filter(
            PriceContextCache.brand == brand,
            PriceContextCache.model == model,
            PriceContextCache.category == category,
            PriceContextCache.expires_at > utcnow(),
        )
        .first()
    )

def purge_expired(db: Session) -> int:
    result = db.execute(delete(PriceContextCache).where(PriceContextCache.expires_at <= utcnow()))
    db.commit()
    return result.rowcount or 0
