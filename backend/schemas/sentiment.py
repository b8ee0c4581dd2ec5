"""
Boresha Reviews - Sentiment Enrichment Schemas
"""

from typing import Optional
from pydantic import BaseModel


class DrainRequest(BaseModel):
    company_id: Optional[str] = None
    retry_count: int = 0


class DrainResponse(BaseModel):
    success: bool = True
    processed: int = 0
    skipped: int = 0
    errors: int = 0
    total: int = 0
    remaining: int = 0
    totalUnprocessed: int = 0
    retry_count: int = 0
    message: str = ""


class ReviewRecordIn(BaseModel):
    id: str
    content: Optional[str] = ""
    rating: Optional[float] = None
    platform_connection_id: str


class SingleReviewRequest(BaseModel):
    """Database-webhook style body: {"record": {...}}."""
    record: Optional[ReviewRecordIn] = None


class RefreshRequest(BaseModel):
    company_id: str
