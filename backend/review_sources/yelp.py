"""
Boresha Reviews - Yelp Fusion Review Source

Direct pull from the Yelp Fusion API for connections on the "yelp"
network. Yelp answers synchronously, so this source never reports PENDING.

API Docs: https://docs.developer.yelp.com/reference/v3_business_reviews
Auth: Bearer token (YELP_API_KEY)
"""

import logging
from datetime import datetime
from typing import Any, Dict

from constants import YELP_API_BASE
from .base_source import BaseReviewSource, FetchOutcome, StandardReview, parse_timestamp

logger = logging.getLogger(__name__)


class YelpSource(BaseReviewSource):
    """Yelp Fusion business reviews."""

    source_name = "Yelp"
    env_key_name = "YELP_API_KEY"
    base_url = YELP_API_BASE
    description = "Yelp Fusion business reviews (newest first)"

    page_limit = 50

    async def fetch_reviews(self, network: str, slug: str) -> FetchOutcome:
        self._require_configured()
        async with self._client() as client:
            resp = await client.get(
                f"{self.base_url}/businesses/{slug}/reviews",
                params={"limit": self.page_limit, "sort_by": "newest"},
                headers=self._get_auth_headers(),
            )

        if resp.status_code >= 400:
            raise self._error_from_response("Yelp reviews request failed", resp, limit=200)

        raw_reviews = resp.json().get("reviews") or []
        reviews = self.normalize_reviews(raw_reviews)
        logger.info(f"Yelp {slug}: {len(reviews)} reviews fetched")
        if not reviews:
            return FetchOutcome.empty()
        return FetchOutcome.with_reviews(reviews)

    def normalize_review(self, raw: Dict[str, Any], default_author: str = "") -> StandardReview:
        user = raw.get("user") or {}
        # Yelp time_created is local business time "YYYY-MM-DD HH:MM:SS"
        created = (raw.get("time_created") or "").replace(" ", "T")
        return StandardReview(
            external_id=str(raw["id"]),
            author_name=user.get("name") or default_author,
            author_avatar=user.get("image_url") or None,
            rating=raw.get("rating") or 0,
            content=raw.get("text") or "",
            published_at=parse_timestamp(created, default=datetime.utcnow()),
            raw_data=raw,
        )
