import os
import sys
import asyncio
import argparse
import json
from dotenv import load_dotenv

# Load environment variables from .env
load_dotenv()

# Ensure SQLAlchemy uses the supported dialect name: convert `postgres://` to `postgresql://`
_pg = os.environ.get("POSTGRES_URL")
if _pg and _pg.startswith("postgres://"):
    os.environ["POSTGRES_URL"] = "postgresql://" + _pg[len("postgres://"):]


def parse_args(argv=None):
    parser = argparse.ArgumentParser(description="Scrape marketplace prices for one piece of equipment.")
    parser.add_argument("brand")
    parser.add_argument("model")
    parser.add_argument("category", nargs="?", default=None)
    parser.add_argument("--estimate", action="store_true", help="answer like the API does (cache first)")
    return parser.parse_args(argv)


async def run(args):
    from price_intel.db import Base, engine
    from price_intel.main import build_service

    Base.metadata.create_all(bind=engine)
    service = build_service()
    if args.estimate:
        context = await service.get_price_context(args.brand, args.model, args.category or "")
        await service.refresher.drain()
    else:
        context = await service.scrape_price_context(args.brand, args.model, args.category)
    return context


if __name__ == "__main__":
    args = parse_args()
    try:
        result = asyncio.run(run(args))
    except RuntimeError as e:
        raise SystemExit(f"Price lookup failed: {e}")
    json.dump(result.model_dump(), sys.stdout, indent=2)
    print()
