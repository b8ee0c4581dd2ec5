"""
Boresha Reviews - Zembra Client Router

Endpoints:
- POST /api/zembra/client - Direct Zembra calls for one listing, selected by `mode`:
    create-review-job  create a scrape job, returns its jobId
    get-reviews        poll the job's reviews (10s/15s/20s backoff)
    listing            verify the listing exists on the network

Callers must own the company (or be admin). Provider failures are
answered with 500 and {"success": false, "error": ...}.
"""

import logging
from dataclasses import asdict

import httpx
from fastapi import APIRouter, Depends, HTTPException, Request
from fastapi.responses import JSONResponse
from slowapi import Limiter
from slowapi.util import get_remote_address

from constants import RATE_LIMIT_ENABLED, ZEMBRA_CLIENT_MODES, ZEMBRA_CLIENT_RATE_LIMIT
from database import get_async_db, get_company_by_id
from dependencies import get_current_user, get_zembra_plan, get_zembra_source
from fetch_orchestrator import is_authorized
from review_sources import ReviewSourceError
from review_sources.zembra import ZembraSource
from schemas.zembra import ZembraClientRequest

logger = logging.getLogger(__name__)

limiter = Limiter(key_func=get_remote_address, enabled=RATE_LIMIT_ENABLED)

router = APIRouter(prefix="/api/zembra", tags=["Zembra"])


@router.post("/client")
@limiter.limit(ZEMBRA_CLIENT_RATE_LIMIT)
async def zembra_client(
    request: Request,
    body: ZembraClientRequest,
    current_user: dict = Depends(get_current_user),
    db=Depends(get_async_db),
    source: ZembraSource = Depends(get_zembra_source),
    plan: dict = Depends(get_zembra_plan),
):
    """Run one Zembra client call for a company's listing."""
    if not body.mode or not body.network or not body.slug or not body.company_id:
        raise HTTPException(
            status_code=400,
            detail="Missing required parameters: mode, network, slug and company_id are required",
        )
    if body.mode not in ZEMBRA_CLIENT_MODES:
        raise HTTPException(status_code=400, detail=f"Invalid mode: {body.mode}")

    company = await get_company_by_id(db, body.company_id)
    if company is None:
        raise HTTPException(status_code=404, detail="Company not found")
    if not is_authorized(company, current_user):
        raise HTTPException(status_code=403, detail="Not authorized for this company")

    unlimited = plan.get("unlimited", False)

    try:
        if body.mode == "create-review-job":
            job_id = await source.create_review_job(
                body.network, body.slug,
                unlimited=unlimited,
                size_limit=plan.get("size_limit"),
                posted_after=body.postedAfter,
            )
            return {"success": True, "jobId": job_id}

        if body.mode == "get-reviews":
            outcome = await source.get_reviews(
                body.network, body.slug, unlimited=unlimited, posted_after=body.postedAfter
            )
            return {
                "success": True,
                "status": outcome.kind.value,
                "pending": outcome.is_pending,
                "reviews": [asdict(review) for review in outcome.reviews],
                "retryCount": outcome.attempts - 1,
            }

        listing = await source.verify_listing(body.network, body.slug)
        return {"success": True, "listing": listing}

    except (ReviewSourceError, httpx.HTTPError, ValueError) as e:
        logger.error(f"Error in Zembra client ({body.mode}) for {body.network}/{body.slug}: {e}")
        return JSONResponse(status_code=500, content={"success": False, "error": str(e)})
