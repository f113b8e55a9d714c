"""Hand-maintained domain lists used by the classifier, search and scraper.

The lists live in ``data/domains.json`` so they can be refreshed without code
changes; ``PRICE_INTEL_DOMAINS_FILE`` points at a replacement file.
"""
import json
import os
from functools import lru_cache
from pathlib import Path
from typing import Iterable, List
from dotenv import load_dotenv
from pydantic import BaseModel
from .utils import logger

load_dotenv()

_DEFAULT_FILE = Path(__file__).resolve().parent / "data" / "domains.json"


class DomainLists(BaseModel):
    marketplaces: List[str] = []
    classifier_marketplaces: List[str] = []
    documentation_hosts: List[str] = []
    official_new_sellers: List[str] = []
    refurbished_marketplaces: List[str] = []
    used_marketplaces: List[str] = []
    used_hint_domains: List[str] = []


@lru_cache(maxsize=1)
def get_domains() -> DomainLists:
    path = Path(os.getenv("PRICE_INTEL_DOMAINS_FILE") or _DEFAULT_FILE)
    with open(path, "r", encoding="utf-8") as fh:
        data = json.load(fh)
    domains = DomainLists(**data)
    logger.debug("Loaded domain lists from %s", path)
    return domains


def matches_any(text: str, fragments: Iterable[str]) -> bool:
    text = (text or "").lower()
    return any(f in text for f in fragments)
