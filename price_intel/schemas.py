from pydantic import BaseModel, ConfigDict, Field
from typing import Dict, List, Literal, Optional

Condition = Literal["new", "refurbished", "used"]
ResultType = Literal[
    "manual", "datasheet", "brochure", "service_doc", "pdf_document", "web_page", "offer"
]

class SearchResult(BaseModel):
    model_config = ConfigDict(frozen=True)
    url: str
    title: str
    description: str = ""
    origin_query: str = ""
    condition_hint: Optional[Condition] = None

class ClassificationVerdict(BaseModel):
    model_config = ConfigDict(populate_by_name=True)
    result_type: ResultType = Field(..., alias="resultType")
    is_pdf: bool = Field(..., alias="isPdf")
    is_marketplace_domain: bool = Field(..., alias="isMarketplaceDomain")
    is_equipment_hardware_term: bool = Field(..., alias="isEquipmentHardwareTerm")
    has_incidental_doc_mention: bool = Field(..., alias="hasIncidentalDocMention")

class MarketplaceListing(BaseModel):
    url: str
    title: str
    price: float
    condition: Condition
    source: str

class ListingSource(BaseModel):
    url: str
    price: float
    source: str
    title: str = ""

class ConditionPricing(BaseModel):
    min: float
    max: float
    average: int
    count: int
    sources: List[ListingSource] = []

class MarketPriceResult(BaseModel):
    new: Optional[ConditionPricing] = None
    refurbished: Optional[ConditionPricing] = None
    used: Optional[ConditionPricing] = None
    total_listings_found: int = 0
    source: str
    breakdown: str

class PriceEstimate(BaseModel):
    new_min: Optional[float] = None
    new_max: Optional[float] = None
    refurbished_min: Optional[float] = None
    refurbished_max: Optional[float] = None
    used_min: Optional[float] = None
    used_max: Optional[float] = None
    source: str = "ai_estimate"
    breakdown: str = "AI-generated price estimate"

class PriceContext(PriceEstimate):
    cached: bool = False
    has_marketplace_data: bool = False
    scraping_in_background: bool = False

class EquipmentAnalysis(BaseModel):
    brand: Optional[str] = None
    model: Optional[str] = None
    category: Optional[str] = None
    description: Optional[str] = None
    specifications: Dict[str, str] = {}
    confidence: int = 0

# request bodies

class PriceContextRequest(BaseModel):
    brand: str = Field(..., min_length=1)
    model: str = Field(..., min_length=1)
    category: str = Field(..., min_length=1)
    condition: Optional[str] = None

class ScrapeRequest(BaseModel):
    brand: str = Field(..., min_length=1)
    model: str = Field(..., min_length=1)
    category: Optional[str] = None

class DocumentationSearchRequest(BaseModel):
    brand: str = Field(..., min_length=1)
    model: str = Field(..., min_length=1)

class ClassifyRequest(BaseModel):
    url: str
    title: str
    description: Optional[str] = ""

class ImageAnalysisRequest(BaseModel):
    image_urls: List[str]

class ClassifiedResult(BaseModel):
    url: str
    title: str
    description: str = ""
    classification: ClassificationVerdict
