"""
Boresha Reviews - Provider Webhooks Router

Endpoints:
- POST /api/webhooks/zembra - Zembra pushes completed review jobs here

The shared secret is the Zembra API token, sent in X-Zembra-Token.
Unknown listings are acknowledged with 200 so the provider does not retry.
"""

import json
import logging
import os
import secrets
from datetime import datetime
from typing import Optional

from fastapi import APIRouter, Depends, Header, Request
from fastapi.responses import JSONResponse
from pydantic import ValidationError

from database import find_connection_by_slug
from dependencies import get_review_store, get_session_factory, get_tasks
from review_sources.zembra import ZembraSource
from review_store import ReviewStoreWriter
from schemas.webhooks import ZembraWebhookPayload
from services.task_service import EnrichmentTaskService

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/webhooks", tags=["Webhooks"])


def _error(status_code: int, message: str) -> JSONResponse:
    return JSONResponse(status_code=status_code, content={"success": False, "error": message})


@router.post("/zembra")
async def zembra_webhook(
    request: Request,
    x_zembra_token: Optional[str] = Header(None),
    session_factory=Depends(get_session_factory),
    store: ReviewStoreWriter = Depends(get_review_store),
    tasks: EnrichmentTaskService = Depends(get_tasks),
):
    """Receive a page of reviews for one listing and upsert it."""
    server_token = os.getenv("ZEMBRA_API_TOKEN", "")
    if not server_token:
        logger.error("Zembra API token not configured")
        return _error(500, "Server configuration error")

    if not x_zembra_token or not secrets.compare_digest(x_zembra_token.encode(), server_token.encode()):
        logger.error("Invalid or missing Zembra webhook token")
        return _error(401, "Unauthorized")

    body = await request.body()
    if not body or not body.strip():
        logger.info("Empty Zembra webhook body, treating as liveness probe")
        return {"success": True, "message": "Webhook endpoint is active. Awaiting review data."}

    try:
        payload = ZembraWebhookPayload.model_validate(json.loads(body))
    except (ValueError, ValidationError) as e:
        logger.error(f"Failed to parse webhook payload: {e}")
        return _error(400, "Invalid JSON payload")

    if payload.type != "reviews":
        return {"success": True, "message": "Not a reviews webhook, ignoring"}

    data = payload.data
    slug = data.target.slug if data and data.target else None
    if not slug:
        return {"success": False, "error": "Webhook payload has no target slug"}

    started_at = datetime.utcnow()
    async with session_factory() as session:
        match = await find_connection_by_slug(session, slug)
    if match is None:
        logger.warning(f"No platform connection found for slug: {slug}")
        return {"success": False, "error": f"No platform connection found for slug: {slug}"}

    connection, company_id = match
    connection_id = connection.id
    job_id = data.job.jobId if data.job else None

    reviews = ZembraSource(api_key=server_token).normalize_reviews(data.reviews, default_author="Anonymous")
    logger.info(f"Transformed {len(reviews)} reviews for connection: {connection_id}")

    stats = await store.upsert_batch(connection_id, reviews)
    await store.mark_connection_synced(connection_id, job_id, stats.fetched)
    await store.record_sync(connection_id, stats, started_at)

    if stats.saved > 0 and company_id:
        tasks.schedule_drain(company_id, retry_count=0)

    return {
        "success": True,
        "message": f"Processed {stats.saved} reviews",
        "reviewsProcessed": stats.saved,
    }
