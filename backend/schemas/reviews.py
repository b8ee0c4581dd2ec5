"""
Boresha Reviews - Review Fetch Schemas
"""

from typing import List, Optional
from pydantic import BaseModel


class FetchTriggerRequest(BaseModel):
    # Optional so a missing id is reported as 400, not 422
    company_id: Optional[str] = None


class FetchTriggerResponse(BaseModel):
    success: bool = True
    skipped: bool = False
    reason: Optional[str] = None
    nextEligibleAt: Optional[str] = None  # ISO-8601 UTC with trailing Z
    cooldownHours: Optional[int] = None
    locationsProcessed: Optional[int] = None
    reviewsInserted: Optional[int] = None
    warnings: Optional[List[str]] = None
    pendingConnections: Optional[List[str]] = None
