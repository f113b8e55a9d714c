# tests/test_crud.py
from datetime import timedelta
from price_intel import crud
from price_intel.models import PriceContextCache

def _row(**overrides):
    data = {
        "brand": "agilent",
        "model": "7890b",
        "category": "gas chromatograph",
        "price_ranges": {"used_min": 100, "used_max": 200},
        "price_source": "ai_estimate",
        "price_breakdown": "estimate",
        "has_marketplace_data": False,
    }
    data.update(overrides)
    return data

def test_upsert_and_get(db):
    crud.upsert_price_context(db, _row(), timedelta(minutes=15))
    obj = crud.get_valid_price_context(db, "agilent", "7890b", "gas chromatograph")
    assert obj is not None
    assert obj.price_source == "ai_estimate"
    assert obj.price_ranges["used_max"] == 200
    assert obj.has_marketplace_data is False

def test_upsert_replaces_row_for_same_key(db):
    crud.upsert_price_context(db, _row(), timedelta(minutes=15))
    crud.upsert_price_context(
        db,
        _row(price_source="Market data from 1 used listing(s) (ebay.com)", has_marketplace_data=True),
        timedelta(days=3),
    )
    db.expire_all()
    assert db.query(PriceContextCache).count() == 1
    obj = crud.get_valid_price_context(db, "agilent", "7890b", "gas chromatograph")
    assert obj.has_marketplace_data is True
    assert obj.expires_at > crud.utcnow() + timedelta(days=2)

def test_expired_rows_are_absent_and_purged(db):
    crud.upsert_price_context(db, _row(), timedelta(minutes=-1))
    crud.upsert_price_context(db, _row(model="5890"), timedelta(minutes=15))
    assert crud.get_valid_price_context(db, "agilent", "7890b", "gas chromatograph") is None
    assert crud.purge_expired(db) == 1
    assert db.query(PriceContextCache).count() == 1

def test_ai_write_keeps_live_marketplace_row(db):
    crud.upsert_price_context(
        db, _row(price_source="Market data from 1 used listing(s) (ebay.com)", has_marketplace_data=True),
        timedelta(days=3),
    )
    crud.upsert_price_context(db, _row(), timedelta(minutes=15), replace_marketplace=False)
    db.expire_all()
    obj = crud.get_valid_price_context(db, "agilent", "7890b", "gas chromatograph")
    assert obj.has_marketplace_data is True
    assert obj.price_source.startswith("Market data")

def test_ai_write_replaces_expired_marketplace_row(db):
    crud.upsert_price_context(db, _row(has_marketplace_data=True), timedelta(minutes=-1))
    crud.upsert_price_context(db, _row(), timedelta(minutes=15), replace_marketplace=False)
    db.expire_all()
    obj = crud.get_valid_price_context(db, "agilent", "7890b", "gas chromatograph")
    assert obj is not None
    assert obj.has_marketplace_data is False
