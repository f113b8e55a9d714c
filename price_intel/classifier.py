"""Documentation vs offer classification for search results.

Classification is an ordered rule table evaluated top to bottom; the first
rule whose predicate holds decides the result type. Marketplace domains come
first and cannot be reclassified as documentation.
"""
import re
from dataclasses import dataclass
from typing import Callable, Tuple, Union
from .domains import get_domains, matches_any
from .schemas import ClassificationVerdict, SearchResult

_HARDWARE_PATTERNS = [
    re.compile(
        r"\bmanual\s*(valve|pump|pipett(e|er|or)|hoist|winch|press|mixer|switch|override|jack|lift|"
        r"clamp|control|reset|toggle|gear|chain|trolley|stapler|sealer|labeler|labeller|sprayer|"
        r"crimper|pallet|stacker|shear|brake|lathe|mill|router|grinder|saw|tool|fixture|centrifuge|"
        r"balance|scale|dispenser|cutter|bender|folder|positioner|actuator|drive|feed|loader|"
        r"transfer|ejector|indexer|rotator|turner|manipulator|handler|separator|filter|screen|sieve|"
        r"crusher|blender|agitator|conveyor|force|set)\b",
        re.I,
    ),
    re.compile(
        r"\b(hand|lever|foot|air|hydraulic|pneumatic|mechanical|rotary|slide|push|pull|crank|wheel|pedal)\s+manual\b",
        re.I,
    ),
    re.compile(
        r"\bguide\s*(rail|bar|block|pin|tube|rod|bearing|roller|channel|assembly|bushing|way|track|system)\b",
        re.I,
    ),
    re.compile(r"\b(linear|slide|drawer|door)\s+guide\b", re.I),
]

_INCIDENTAL_PATTERNS = [
    re.compile(
        r"\b(includes?|comes?\s*with|sold\s*with|supplied\s*with|packaged\s*with)\s*.{0,30}(manual|guide|datasheet)\b",
        re.I,
    ),
    re.compile(r"\b(manual|datasheet)\s*(available|included|provided|enclosed)\b", re.I),
]

_DOC_PHRASES = [
    re.compile(
        r"\b(user|owner|operator|service|maintenance|repair|installation|operating|product|technical|"
        r"instruction|programming|reference|training|safety|calibration|troubleshooting)\s*(manual|handbook)\b",
        re.I,
    ),
    re.compile(
        r"\b(operating|quick\s*start|getting\s*started|setup|commissioning|configuration|maintenance|"
        r"reference|installation)\s*guide\b",
        re.I,
    ),
    re.compile(r"\b(data\s*sheet|datasheet|spec(ification)?\s*sheet)\b", re.I),
    re.compile(
        r"\b(operating|product|maintenance|installation|assembly|setup|use|usage|safety|service)\s*instructions?\b",
        re.I,
    ),
    re.compile(r"\binstructions?\s*(manual|booklet|guide|for\s*(use|model|operation))\b", re.I),
    re.compile(r"\b(operator'?s?|owner'?s?|user'?s?)\s*(handbook|manual|guide)\b", re.I),
    re.compile(r"\btechnical\s*(data|documentation|reference|specifications?|manual)\b", re.I),
    re.compile(r"\b(product\s*)?(brochure|catalog|catalogue)\b", re.I),
]

_DOC_URL_PATH = re.compile(
    r"\b(manuals?|support|resources|documentation|library|downloads?|docs?|pdf)\b", re.I
)
_OFFER_AMOUNT = re.compile(r"\$[\d,]+|€[\d,]+|[\d,]+\s*(USD|EUR|GBP)", re.I)
_OFFER_WORDS = re.compile(
    r"\b(buy\s*now|add\s*to\s*cart|order\s*now|for\s*sale|request\s*quote|quote|pre.?owned|"
    r"refurbished|auction|lot\s*#?\d*|bid|price)\b",
    re.I,
)
_MANUAL_OR_GUIDE = re.compile(r"\b(manual|guide)\b", re.I)

_SERVICE_DOC = re.compile(r"\b(service|maintenance|repair|troubleshoot)", re.I)
_DATASHEET_DOC = re.compile(r"\b(data\s*sheet|datasheet|spec\s*sheet|specification)\b", re.I)
_BROCHURE_DOC = re.compile(r"\b(brochure|catalog)", re.I)


@dataclass(frozen=True)
class Signals:
    url: str
    title: str
    description: str
    is_pdf: bool
    is_marketplace: bool
    is_doc_domain: bool
    has_doc_url_path: bool
    is_equipment_hardware: bool
    has_incidental_mention: bool
    doc_phrase_in_title: bool
    doc_phrase_in_description: bool
    has_offer_signals: bool

    @property
    def blocked_from_doc(self) -> bool:
        return self.is_marketplace or self.is_equipment_hardware or self.has_incidental_mention


def _any(patterns, text: str) -> bool:
    return any(p.search(text) for p in patterns)


def doc_type(text: str) -> str:
    if _SERVICE_DOC.search(text):
        return "service_doc"
    if _DATASHEET_DOC.search(text):
        return "datasheet"
    if _BROCHURE_DOC.search(text):
        return "brochure"
    return "manual"


def collect_signals(url: str, title: str, description: str = "") -> Signals:
    domains = get_domains()
    url = (url or "").lower()
    title = (title or "").lower()
    description = (description or "").lower()
    combined = f"{url} {title} {description}"
    doc_hosts = "|".join(re.escape(h) for h in domains.documentation_hosts) or r"(?!)"
    return Signals(
        url=url,
        title=title,
        description=description,
        is_pdf=".pdf" in url,
        is_marketplace=matches_any(url, domains.classifier_marketplaces),
        is_doc_domain=re.search(rf"\b({doc_hosts})\b", url) is not None,
        has_doc_url_path=_DOC_URL_PATH.search(url) is not None,
        is_equipment_hardware=_any(_HARDWARE_PATTERNS, title),
        has_incidental_mention=_any(_INCIDENTAL_PATTERNS, combined),
        doc_phrase_in_title=_any(_DOC_PHRASES, title),
        doc_phrase_in_description=_any(_DOC_PHRASES, description),
        has_offer_signals=bool(_OFFER_AMOUNT.search(combined) or _OFFER_WORDS.search(combined)),
    )


Verdict = Union[str, Callable[[Signals], str]]
Rule = Tuple[str, Callable[[Signals], bool], Verdict]

RULES: Tuple[Rule, ...] = (
    ("marketplace_domain", lambda s: s.is_marketplace, "offer"),
    (
        "equipment_hardware",
        lambda s: s.is_equipment_hardware,
        lambda s: "offer" if s.has_offer_signals or not s.is_pdf else "pdf_document",
    ),
    ("incidental_mention", lambda s: s.has_incidental_mention and not s.is_doc_domain, "offer"),
    (
        "doc_phrase_in_title",
        lambda s: s.doc_phrase_in_title and not s.blocked_from_doc,
        lambda s: doc_type(s.title),
    ),
    (
        "doc_phrase_in_description",
        lambda s: (
            s.doc_phrase_in_description
            and (s.has_doc_url_path or s.is_doc_domain or s.is_pdf)
            and not s.blocked_from_doc
        ),
        lambda s: doc_type(s.description),
    ),
    (
        "documentation_domain",
        lambda s: s.is_doc_domain and not s.blocked_from_doc,
        lambda s: "manual" if s.is_pdf else "web_page",
    ),
    (
        "documentation_pdf",
        lambda s: (
            s.is_pdf
            and s.has_doc_url_path
            and _MANUAL_OR_GUIDE.search(s.title) is not None
            and not s.blocked_from_doc
            and not s.has_offer_signals
        ),
        "manual",
    ),
    ("offer_signals", lambda s: s.has_offer_signals, "offer"),
    ("default", lambda s: True, lambda s: "pdf_document" if s.is_pdf else "web_page"),
)


def resolve_result_type(signals: Signals) -> Tuple[str, str]:
    """Return (rule name, result type) of the first matching rule."""
    for name, predicate, verdict in RULES:
        if predicate(signals):
            return name, verdict(signals) if callable(verdict) else verdict
    raise AssertionError("default rule must always match")


def classify_search_result(result) -> ClassificationVerdict:
    """Classify a SearchResult (or any object/dict with url, title, description)."""
    if isinstance(result, dict):
        url, title, description = result.get("url"), result.get("title"), result.get("description")
    else:
        url, title = result.url, result.title
        description = getattr(result, "description", "")
    signals = collect_signals(url or "", title or "", description or "")
    _, result_type = resolve_result_type(signals)
    return ClassificationVerdict(
        result_type=result_type,
        is_pdf=signals.is_pdf,
        is_marketplace_domain=signals.is_marketplace,
        is_equipment_hardware_term=signals.is_equipment_hardware,
        has_incidental_doc_mention=signals.has_incidental_mention,
    )
