from fastapi import APIRouter, Depends, HTTPException, Request
from typing import List
from .. import schemas
from ..classifier import classify_search_result
from ..search import SearchNotConfiguredError, SearchProviderError
from ..services import PriceContextService
from ..utils import logger

router = APIRouter()

def get_service(request: Request) -> PriceContextService:
    return request.app.state.price_service

@router.get("/health")
def health():
    return {"status": "ok"}

@router.post("/price-context", response_model=schemas.PriceContext)
async def price_context(payload: schemas.PriceContextRequest, service: PriceContextService = Depends(get_service)):
    return await service.get_price_context(payload.brand, payload.model, payload.category, payload.condition)


@router.post("/price-context/scrape", response_model=schemas.PriceContext)
async def scrape_price_context(payload: schemas.ScrapeRequest, service: PriceContextService = Depends(get_service)):
    try:
        return await service.scrape_price_context(payload.brand, payload.model, payload.category)
    except SearchNotConfiguredError as e:
        raise HTTPException(status_code=503, detail=str(e))
    except SearchProviderError as e:
        logger.error("Price scraping error: %s", e)
        raise HTTPException(status_code=502, detail="Price scraping failed")


@router.post("/search/documentation", response_model=List[schemas.ClassifiedResult])
async def search_documentation(payload: schemas.DocumentationSearchRequest, service: PriceContextService = Depends(get_service)):
    try:
        results = await service.find_documentation(payload.brand, payload.model)
    except SearchNotConfiguredError as e:
        raise HTTPException(status_code=503, detail=str(e))
    except SearchProviderError as e:
        logger.error("Documentation search error: %s", e)
        raise HTTPException(status_code=502, detail="External search failed")
    return [
        schemas.ClassifiedResult(
            url=r.url, title=r.title, description=r.description, classification=classify_search_result(r)
        )
        for r in results
    ]


@router.post("/classify")
def classify(payload: schemas.ClassifyRequest):
    return classify_search_result(payload.model_dump()).model_dump(by_alias=True)


@router.post("/analyze-image", response_model=schemas.EquipmentAnalysis)
async def analyze_image(payload: schemas.ImageAnalysisRequest, service: PriceContextService = Depends(get_service)):
    if not payload.image_urls:
        raise HTTPException(status_code=400, detail="image_urls array is required")
    try:
        return await service.estimator.analyze_equipment_images(payload.image_urls)
    except Exception as e:
        logger.exception("AI analysis error: %s", e)
        raise HTTPException(status_code=500, detail="Analysis failed")
