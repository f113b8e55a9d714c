# price_intel/models.py
"""SQLAlchemy ORM models for persisted entities.

`PriceContextCache` holds one price context per normalized
(brand, model, category). AI-estimate rows and scraped marketplace rows share
the table and are told apart by `has_marketplace_data`.
"""
from sqlalchemy import Boolean, Column, Integer, Text, TIMESTAMP, JSON, func, Index, UniqueConstraint
from sqlalchemy.dialects.postgresql import JSONB
from .db import Base

class PriceContextCache(Base):
    __tablename__ = "price_context_cache"
    id = Column(Integer, primary_key=True, index=True)
    brand = Column(Text, nullable=False)
    model = Column(Text, nullable=False)
    category = Column(Text, nullable=False, default="unknown")
    price_ranges = Column(JSON().with_variant(JSONB, "postgresql"), nullable=False)
    price_source = Column(Text, nullable=False)
    price_breakdown = Column(Text)
    has_marketplace_data = Column(Boolean, nullable=False, default=False)
    created_at = Column(TIMESTAMP, server_default=func.now())
    updated_at = Column(TIMESTAMP, server_default=func.now(), onupdate=func.now())
    expires_at = Column(TIMESTAMP, nullable=False)

    __table_args__ = (
        UniqueConstraint("brand", "model", "category", name="uq_price_context_cache_key"),
    )

Index("price_context_cache_expires_at_idx", PriceContextCache.expires_at)
