"""Canonical forms for search terms and URLs.

The same normalization is applied when cache keys are written and read and
when search queries are built, so "Perkin-Elmer" and "perkin  elmer" land on
one cache row and one query.
"""
import re
from typing import List
from urllib.parse import urlsplit

_SEPARATORS = re.compile(r"[-_]")
_WHITESPACE = re.compile(r"\s+")


def normalize_search_term(term) -> str:
    if not term:
        return ""
    term = _SEPARATORS.sub(" ", str(term).lower())
    return _WHITESPACE.sub(" ", term).strip()


def normalize_url(url: str) -> str:
    """Scheme + host + path, lowercased, without trailing slashes."""
    try:
        parts = urlsplit(url)
        if not parts.scheme or not parts.netloc:
            raise ValueError(url)
        base = f"{parts.scheme}://{parts.netloc}{parts.path}"
    except ValueError:
        base = url.split("?")[0].split("#")[0]
    return base.lower().rstrip("/")


def hostname(url: str) -> str:
    try:
        host = urlsplit(url).hostname or ""
    except ValueError:
        return ""
    return host.lower().removeprefix("www.")


def model_variations(normalized_model: str) -> List[str]:
    """Loose spellings of a model used to match titles and URLs.

    "centrifuge 5810 r" -> ["centrifuge 5810 r", "centrifuge5810r", "5810 r",
    "5810r", "5810"]
    """
    tokens = normalized_model.split(" ")
    candidates = [
        normalized_model,
        normalized_model.replace(" ", ""),
        " ".join(tokens[-2:]),
        "".join(tokens[-2:]),
        tokens[-1] if tokens else "",
        re.sub(r"[^0-9]", "", normalized_model),
    ]
    number = re.search(r"\d{3,}", normalized_model)
    if number:
        candidates.append(number.group(0))
    variations = []
    for v in candidates:
        if len(v) >= 3 and v not in variations:
            variations.append(v)
    return variations
