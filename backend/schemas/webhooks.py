"""
Boresha Reviews - Provider Webhook Schemas

Zembra pushes review pages with this envelope. Unknown fields are kept so
nothing the provider sends is lost before normalization.
"""

from typing import Any, Dict, List, Optional
from pydantic import BaseModel, ConfigDict


class ZembraJob(BaseModel):
    model_config = ConfigDict(extra="allow")

    jobId: Optional[str] = None
    network: Optional[str] = None


class ZembraTarget(BaseModel):
    model_config = ConfigDict(extra="allow")

    slug: Optional[str] = None
    name: Optional[str] = None


class ZembraWebhookData(BaseModel):
    model_config = ConfigDict(extra="allow")

    job: Optional[ZembraJob] = None
    target: Optional[ZembraTarget] = None
    reviews: List[Dict[str, Any]] = []


class ZembraWebhookPayload(BaseModel):
    model_config = ConfigDict(extra="allow")

    type: Optional[str] = None
    data: Optional[ZembraWebhookData] = None
