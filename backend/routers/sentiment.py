"""
Boresha Reviews - Sentiment Enrichment Router

Endpoints:
- POST /api/internal/sentiment-analysis        - Drain a company backlog (internal key)
- POST /api/internal/sentiment-analysis/review - Analyze one new review (internal key)
- POST /api/sentiment/refresh                  - Schedule a background drain (admin)
- GET  /api/sentiment/drains/{company_id}      - Latest background drain status
"""

import logging
from fastapi import APIRouter, Depends, HTTPException
from fastapi.responses import JSONResponse

from database import UnknownCompanyError, get_async_db, get_company_by_id
from dependencies import (
    get_current_user,
    get_drainer,
    get_tasks,
    require_admin,
    require_internal_key,
)
from enrichment import EnrichmentDrainer, ReviewRecord
from fetch_orchestrator import is_authorized
from schemas.sentiment import DrainRequest, DrainResponse, RefreshRequest, SingleReviewRequest
from services.task_service import EnrichmentTaskService

logger = logging.getLogger(__name__)

internal_router = APIRouter(
    prefix="/api/internal",
    tags=["Internal"],
    dependencies=[Depends(require_internal_key)],
)
router = APIRouter(prefix="/api/sentiment", tags=["Sentiment"])


@internal_router.post("/sentiment-analysis", response_model=DrainResponse)
async def run_sentiment_analysis(
    body: DrainRequest,
    drainer: EnrichmentDrainer = Depends(get_drainer),
):
    """Drain the company's unanalyzed reviews and return aggregated counts."""
    if not body.company_id:
        raise HTTPException(status_code=400, detail="company_id is required")

    try:
        result = await drainer.drain(body.company_id, retry_count=body.retry_count)
    except UnknownCompanyError:
        raise HTTPException(status_code=404, detail="Company not found")
    except Exception as e:
        logger.error(f"Error in sentiment-analysis: {e}", exc_info=True)
        raise HTTPException(status_code=500, detail=str(e))

    return result.to_response()


@internal_router.post("/sentiment-analysis/review")
async def analyze_single_review(
    body: SingleReviewRequest,
    drainer: EnrichmentDrainer = Depends(get_drainer),
):
    """Analyze one review record (database-webhook payload)."""
    if body.record is None:
        raise HTTPException(status_code=400, detail="No review record in payload")

    record = ReviewRecord(
        id=body.record.id,
        content=body.record.content,
        rating=body.record.rating,
        platform_connection_id=body.record.platform_connection_id,
    )
    try:
        return await drainer.analyze_review(record)
    except Exception as e:
        logger.error(f"Error analyzing review {record.id}: {e}", exc_info=True)
        raise HTTPException(status_code=500, detail=str(e))


@router.post("/refresh", status_code=202)
async def refresh_sentiments(
    body: RefreshRequest,
    current_user: dict = Depends(require_admin),
    db=Depends(get_async_db),
    tasks: EnrichmentTaskService = Depends(get_tasks),
):
    """Start a background drain for a company (admin only)."""
    company = await get_company_by_id(db, body.company_id)
    if company is None:
        raise HTTPException(status_code=404, detail="Company not found")

    scheduled = tasks.schedule_drain(body.company_id)
    logger.info(f"Sentiment refresh requested by {current_user.get('email')} for company {body.company_id}")
    return JSONResponse(
        status_code=202,
        content={
            "success": True,
            "scheduled": scheduled,
            "message": (
                "Sentiment analysis has been started. It may take several minutes to process all reviews."
                if scheduled else
                "Sentiment analysis is already running for this company. Another pass will start when it finishes."
            ),
        },
    )


@router.get("/drains/{company_id}")
async def get_drain_status(
    company_id: str,
    current_user: dict = Depends(get_current_user),
    db=Depends(get_async_db),
    tasks: EnrichmentTaskService = Depends(get_tasks),
):
    """Latest background drain for a company (owner or admin)."""
    company = await get_company_by_id(db, company_id)
    if company is None:
        raise HTTPException(status_code=404, detail="Company not found")
    if not is_authorized(company, current_user):
        raise HTTPException(status_code=403, detail="Not authorized for this company")

    status = tasks.get_status(company_id)
    if status is None:
        return {"company_id": company_id, "status": "idle"}
    return status
