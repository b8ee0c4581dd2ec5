"""
Boresha Reviews - Zembra Client Schemas
"""

from datetime import datetime
from typing import Optional
from pydantic import BaseModel


class ZembraClientRequest(BaseModel):
    # Optional so missing parameters are reported as 400, not 422
    mode: Optional[str] = None
    network: Optional[str] = None
    slug: Optional[str] = None
    company_id: Optional[str] = None
    postedAfter: Optional[datetime] = None
