"""OpenAI-backed price estimates and equipment image analysis.

Model output is an untrusted payload: every field is coerced into a known
type (positive number or None, string with default) before it leaves this
module, and malformed JSON degrades to nulls instead of raising.
"""
import json
import os
from typing import Any, Dict, List, Optional

from dotenv import load_dotenv
from openai import AsyncOpenAI

from .schemas import EquipmentAnalysis, PriceEstimate
from .utils import env_float, logger

load_dotenv()
OPENAI_PRICE_MODEL = os.getenv("OPENAI_PRICE_MODEL", "gpt-4o-mini")
OPENAI_VISION_MODEL = os.getenv("OPENAI_VISION_MODEL", "gpt-4o")
OPENAI_TIMEOUT_SECS = env_float("OPENAI_TIMEOUT_SECS", 30)

AI_ESTIMATE_SOURCE = "ai_estimate"
PRICE_FIELDS = (
    "new_min", "new_max", "refurbished_min", "refurbished_max", "used_min", "used_max",
)
MAX_IMAGES = 5

PRICE_PROMPT = """Estimate market price ranges for this laboratory/industrial equipment:

Brand: {brand}
Model: {model}
Category: {category}
Condition: {condition}

Provide realistic price estimates in USD based on typical market values. Return ONLY a JSON object:

{{
  "new_min": number or null,
  "new_max": number or null,
  "refurbished_min": number or null,
  "refurbished_max": number or null,
  "used_min": number or null,
  "used_max": number or null,
  "breakdown": "Brief explanation of price reasoning"
}}

Guidelines:
- Research equipment: $5K-500K+
- Industrial equipment: $10K-1M+
- Common lab equipment: $1K-50K
- Used equipment: 30-60% of new price
- Refurbished: 50-75% of new price

If you don't have enough information, return null for that price range."""

VISION_PROMPT = """Analyze these laboratory/industrial equipment images and extract:

1. Brand: Manufacturer name (look for logos, brand labels)
2. Model: Model number or name (check labels, displays, front panels)
3. Category: Equipment type (e.g., "Centrifuge", "Microscope", "HPLC", "Spectrophotometer")
4. Description: Brief description of the equipment and its condition (2-3 sentences)
5. Specifications: Technical specs visible in images (power, voltage, capacity, ...)

Return ONLY a JSON object:
{
  "brand": "string or null",
  "model": "string or null",
  "category": "string or null",
  "description": "string or null",
  "specifications": {"key": "value with units"},
  "confidence": 0-100
}

If you cannot determine a field, set it to null."""


class EstimatorNotConfiguredError(RuntimeError):
    """OPENAI_API_KEY is missing."""


def coerce_price(value: Any) -> Optional[float]:
    if isinstance(value, bool) or value is None:
        return None
    if isinstance(value, str):
        value = value.replace(",", "").replace("$", "").strip()
    try:
        number = float(value)
    except (TypeError, ValueError):
        return None
    if number != number or number <= 0 or number == float("inf"):
        return None
    return number


def coerce_text(value: Any, default: Optional[str]) -> Optional[str]:
    if isinstance(value, str) and value.strip():
        return value.strip()
    return default


def parse_json_object(content: Optional[str]) -> Dict[str, Any]:
    if not content:
        return {}
    try:
        data = json.loads(content)
    except (TypeError, ValueError):
        logger.error("Failed to parse AI response: %s", content[:200])
        return {}
    return data if isinstance(data, dict) else {}


def sanitize_price_ranges(raw: Any) -> Dict[str, Optional[float]]:
    """The six flat price fields of a stored or generated blob, coerced."""
    raw = raw if isinstance(raw, dict) else {}
    return {field: coerce_price(raw.get(field)) for field in PRICE_FIELDS}


def build_estimate(data: Dict[str, Any], breakdown_default: str = "AI-generated price estimate") -> PriceEstimate:
    return PriceEstimate(
        **sanitize_price_ranges(data),
        source=AI_ESTIMATE_SOURCE,
        breakdown=coerce_text(data.get("breakdown"), breakdown_default),
    )


def empty_estimate(reason: str = "Unable to estimate prices") -> PriceEstimate:
    return PriceEstimate(source=AI_ESTIMATE_SOURCE, breakdown=reason)


class PriceEstimator:
    """Thin async wrapper around the OpenAI chat completions API."""

    def __init__(self, client: Optional[AsyncOpenAI] = None, api_key: Optional[str] = None):
        self._client = client
        self._api_key = api_key if api_key is not None else os.getenv("OPENAI_API_KEY")

    @property
    def client(self) -> AsyncOpenAI:
        if self._client is None:
            if not self._api_key:
                raise EstimatorNotConfiguredError("OPENAI_API_KEY not set")
            self._client = AsyncOpenAI(api_key=self._api_key, timeout=OPENAI_TIMEOUT_SECS)
        return self._client

    async def _complete(self, model: str, content, max_tokens: int, temperature: float) -> Optional[str]:
        completion = await self.client.chat.completions.create(
            model=model,
            messages=[{"role": "user", "content": content}],
            max_tokens=max_tokens,
            temperature=temperature,
            response_format={"type": "json_object"},
        )
        if not completion.choices:
            return None
        return completion.choices[0].message.content

    async def estimate_price(self, brand: str, model: str, category: str, condition: str = "used") -> PriceEstimate:
        prompt = PRICE_PROMPT.format(brand=brand, model=model, category=category, condition=condition)
        content = await self._complete(OPENAI_PRICE_MODEL, prompt, max_tokens=500, temperature=0.5)
        if not content:
            return empty_estimate()
        data = parse_json_object(content)
        if not data:
            return empty_estimate("Unable to parse price estimate")
        return build_estimate(data)

    async def analyze_equipment_images(self, image_urls: List[str]) -> EquipmentAnalysis:
        if not image_urls:
            raise ValueError("At least one image URL is required for analysis")
        content = [{"type": "text", "text": VISION_PROMPT}] + [
            {"type": "image_url", "image_url": {"url": url}} for url in image_urls[:MAX_IMAGES]
        ]
        data = parse_json_object(
            await self._complete(OPENAI_VISION_MODEL, content, max_tokens=1000, temperature=0.3)
        )
        specs = data.get("specifications")
        specs = {str(k): str(v) for k, v in specs.items() if v is not None} if isinstance(specs, dict) else {}
        try:
            confidence = int(float(data.get("confidence") or 0))
        except (TypeError, ValueError):
            confidence = 0
        return EquipmentAnalysis(
            brand=coerce_text(data.get("brand"), None),
            model=coerce_text(data.get("model"), None),
            category=coerce_text(data.get("category"), None),
            description=coerce_text(data.get("description"), None),
            specifications=specs,
            confidence=min(100, max(0, confidence)),
        )
