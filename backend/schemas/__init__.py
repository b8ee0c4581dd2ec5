"""
Boresha Reviews - Pydantic Schema Models

Organized by domain for use across routers.
"""

from schemas.reviews import (  # noqa: F401
    FetchTriggerRequest,
    FetchTriggerResponse,
)
from schemas.sentiment import (  # noqa: F401
    DrainRequest,
    DrainResponse,
    ReviewRecordIn,
    SingleReviewRequest,
    RefreshRequest,
)
from schemas.webhooks import (  # noqa: F401
    ZembraJob,
    ZembraTarget,
    ZembraWebhookData,
    ZembraWebhookPayload,
)
from schemas.zembra import (  # noqa: F401
    ZembraClientRequest,
)
