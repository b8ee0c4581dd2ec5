"""
Boresha Reviews - Review Fetch Router

Endpoints:
- POST /api/reviews/fetch - Pull fresh reviews for every active connection of a company
"""

import logging
from fastapi import APIRouter, Depends, HTTPException, Request
from slowapi import Limiter
from slowapi.util import get_remote_address

from constants import RATE_LIMIT_ENABLED, REVIEW_FETCH_RATE_LIMIT
from database import UnknownCompanyError
from dependencies import get_current_user, get_orchestrator
from fetch_orchestrator import FetchOrchestrator, NotAuthorizedError
from schemas.reviews import FetchTriggerRequest, FetchTriggerResponse

logger = logging.getLogger(__name__)

limiter = Limiter(key_func=get_remote_address, enabled=RATE_LIMIT_ENABLED)

router = APIRouter(prefix="/api/reviews", tags=["Reviews"])


@router.post("/fetch", response_model=FetchTriggerResponse, response_model_exclude_none=True)
@limiter.limit(REVIEW_FETCH_RATE_LIMIT)
async def trigger_reviews_fetch(
    request: Request,
    body: FetchTriggerRequest,
    current_user: dict = Depends(get_current_user),
    orchestrator: FetchOrchestrator = Depends(get_orchestrator),
):
    """Trigger a review fetch for a company (owner or admin, 48h cooldown)."""
    if not body.company_id:
        raise HTTPException(status_code=400, detail="company_id is required")

    try:
        result = await orchestrator.trigger(body.company_id, current_user)
    except UnknownCompanyError:
        raise HTTPException(status_code=404, detail="Company not found")
    except NotAuthorizedError as e:
        raise HTTPException(status_code=403, detail=str(e))
    except Exception as e:
        logger.error(f"Error in review fetch trigger: {e}", exc_info=True)
        raise HTTPException(status_code=500, detail=str(e))

    return result.to_response()
