"""
Boresha Reviews - Zembra Review Source

Zembra aggregates reviews from Google, Tripadvisor, Facebook and other
networks. It works job-based: a job is created (or a partial refresh is
triggered) and results are either polled or pushed to our webhook.

API Docs: https://docs.zembra.io
Auth: Bearer token (ZEMBRA_API_TOKEN), also used as the webhook shared secret
"""

import logging
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional, Tuple

import httpx

from constants import (
    SOURCE_BACKOFF_SECONDS,
    SOURCE_MAX_RETRIES,
    ZEMBRA_API_BASE,
    ZEMBRA_DEFAULT_FIELDS,
    ZEMBRA_LISTING_URL,
    ZEMBRA_MIN_SIZE_LIMIT,
    ZEMBRA_TRIGGER_URL,
)
from .base_source import (
    BaseReviewSource,
    FetchOutcome,
    OutcomeKind,
    ReviewSourceError,
    StandardReview,
    map_recommendation,
    parse_timestamp,
)

logger = logging.getLogger(__name__)


def _to_unix_ms(value: datetime) -> int:
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    return int(value.timestamp() * 1000)


class ZembraSource(BaseReviewSource):
    """Zembra source for job-based review aggregation across networks."""

    source_name = "Zembra"
    env_key_name = "ZEMBRA_API_TOKEN"
    base_url = ZEMBRA_API_BASE
    description = "Review aggregation for Google, Tripadvisor, Facebook and other networks"

    def __init__(
        self,
        api_key: Optional[str] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
        sleep=None,
        max_retries: int = SOURCE_MAX_RETRIES,
        backoff_seconds: Optional[List[float]] = None,
    ):
        super().__init__(api_key=api_key, transport=transport, sleep=sleep)
        self.max_retries = max_retries
        self.backoff_seconds = list(backoff_seconds or SOURCE_BACKOFF_SECONDS)

    # ------------------------------------------------------------------
    # Query building
    # ------------------------------------------------------------------

    def build_query(
        self,
        network: str,
        slug: str,
        unlimited: bool = False,
        size_limit: Optional[int] = None,
        posted_after: Optional[datetime] = None,
        include_size_limit: bool = False,
    ) -> List[Tuple[str, str]]:
        """Query parameters shared by job creation and review reads."""
        params = [
            ("network", network),
            ("slug", slug),
            ("monitoring", "basic" if unlimited else "none"),
            ("sortBy", "timestamp"),
            ("sortDirection", "DESC"),
        ]
        params.extend(("fields[]", name) for name in ZEMBRA_DEFAULT_FIELDS)

        # Zembra rejects size limits below its minimum
        if include_size_limit and not unlimited:
            params.append(("sizeLimit", str(max(ZEMBRA_MIN_SIZE_LIMIT, size_limit or 0))))

        if posted_after:
            params.append(("postedAfter", str(_to_unix_ms(posted_after))))

        return params

    def _backoff_for(self, attempt: int) -> float:
        if attempt < len(self.backoff_seconds):
            return self.backoff_seconds[attempt]
        return self.backoff_seconds[-1]

    # ------------------------------------------------------------------
    # Pull mode
    # ------------------------------------------------------------------

    async def create_review_job(
        self,
        network: str,
        slug: str,
        unlimited: bool = False,
        size_limit: Optional[int] = None,
        posted_after: Optional[datetime] = None,
    ) -> str:
        """Create a review scrape job and return its job id."""
        self._require_configured()
        params = self.build_query(
            network, slug,
            unlimited=unlimited,
            size_limit=size_limit,
            posted_after=posted_after,
            include_size_limit=True,
        )
        async with self._client() as client:
            resp = await client.post(self.base_url, params=params, headers=self._get_auth_headers())

        if resp.status_code >= 400:
            raise ReviewSourceError(
                f"Failed to create review job: {resp.status_code} {resp.text}",
                status_code=resp.status_code,
            )

        data = resp.json()
        job_id = ((data.get("data") or {}).get("job") or {}).get("jobId")
        if not job_id:
            raise ReviewSourceError("Zembra job response did not include a jobId")

        logger.info(f"Zembra job {job_id} created for {network}/{slug}")
        return job_id

    async def get_reviews(
        self,
        network: str,
        slug: str,
        unlimited: bool = False,
        posted_after: Optional[datetime] = None,
    ) -> FetchOutcome:
        """
        Poll the review read endpoint with a fixed backoff schedule.

        Retries up to max_retries times when the provider answers without
        reviews or the call fails. Once retries are exhausted:
        - last answer SUCCESS with zero reviews -> EMPTY
        - last answer any other status -> PENDING
        - last attempt raised -> the error propagates
        """
        self._require_configured()
        params = self.build_query(network, slug, unlimited=unlimited, posted_after=posted_after)
        attempt = 0

        while True:
            try:
                async with self._client() as client:
                    resp = await client.get(self.base_url, params=params, headers=self._get_auth_headers())

                if resp.status_code >= 400:
                    raise ReviewSourceError(
                        f"Failed to fetch reviews: {resp.status_code} {resp.text}",
                        status_code=resp.status_code,
                    )

                data = resp.json()
                status = data.get("status")
                raw_reviews = (data.get("data") or {}).get("reviews") or []

                if status == "SUCCESS" and raw_reviews:
                    return FetchOutcome.with_reviews(self.normalize_reviews(raw_reviews), attempts=attempt + 1)

                last_kind = OutcomeKind.EMPTY if status == "SUCCESS" else OutcomeKind.PENDING

                if attempt >= self.max_retries:
                    logger.info(
                        f"Zembra {network}/{slug}: no reviews after {attempt + 1} attempts ({last_kind.value})"
                    )
                    return FetchOutcome(kind=last_kind, attempts=attempt + 1)

                delay = self._backoff_for(attempt)
                logger.info(
                    f"No reviews available yet. Retrying in {delay}s "
                    f"(attempt {attempt + 1}/{self.max_retries})"
                )
            except (httpx.HTTPError, ReviewSourceError, ValueError) as e:
                if attempt >= self.max_retries:
                    raise
                delay = self._backoff_for(attempt)
                logger.warning(
                    f"Error fetching reviews (attempt {attempt + 1}). Retrying in {delay}s: {e}"
                )

            await self._sleep(delay)
            attempt += 1

    async def trigger_partial_fetch(self, network: str, slug: str) -> FetchOutcome:
        """
        Ask Zembra to refresh a listing.

        Reviews included in the response are returned directly; otherwise
        the job is PENDING and results arrive through the webhook.
        """
        self._require_configured()
        async with self._client() as client:
            resp = await client.put(
                ZEMBRA_TRIGGER_URL,
                json={"network": network, "slug": slug, "type": "partial"},
                headers={
                    "Content-Type": "application/json",
                    "Authorization": f"Bearer {self.api_key}",
                },
            )

        if resp.status_code >= 400:
            raise self._error_from_response("Zembra trigger failed", resp, limit=200)

        data: Dict[str, Any] = {}
        if "application/json" in resp.headers.get("content-type", "").lower():
            data = resp.json() or {}

        raw_reviews = data.get("reviews")
        if not isinstance(raw_reviews, list):
            raw_reviews = (data.get("data") or {}).get("reviews") if isinstance(data.get("data"), dict) else None

        if isinstance(raw_reviews, list) and raw_reviews:
            return FetchOutcome.with_reviews(self.normalize_reviews(raw_reviews))

        job_id = None
        if isinstance(data.get("data"), dict):
            job_id = (data["data"].get("job") or {}).get("jobId")
        return FetchOutcome.pending(job_id=job_id)

    async def fetch_reviews(self, network: str, slug: str) -> FetchOutcome:
        """Orchestrator entry point: partial refresh, completed by the webhook."""
        return await self.trigger_partial_fetch(network, slug)

    async def verify_listing(self, network: str, slug: str) -> Dict[str, Any]:
        """Check that a listing exists on the network and return it."""
        self._require_configured()
        async with self._client() as client:
            resp = await client.get(
                f"{ZEMBRA_LISTING_URL}/{network}/",
                params={"slug": slug},
                headers=self._get_auth_headers(),
            )

        if resp.status_code >= 400:
            raise ReviewSourceError(
                f"Failed to fetch listing: {resp.status_code} {resp.text}",
                status_code=resp.status_code,
            )

        data = resp.json()
        if data.get("status") != "SUCCESS":
            raise ReviewSourceError(data.get("message") or "Listing not found")

        listing = data.get("data")
        if not listing:
            raise ReviewSourceError("Listing not found for network")
        return listing

    # ------------------------------------------------------------------
    # Normalization
    # ------------------------------------------------------------------

    def normalize_review(self, raw: Dict[str, Any], default_author: str = "") -> StandardReview:
        """Map a Zembra review (pull response or webhook page) to StandardReview."""
        author = raw.get("author") or {}
        reply = raw.get("reply") or {}

        rating = raw.get("rating")
        if rating is None:
            rating = map_recommendation(raw.get("recommendation"))

        return StandardReview(
            external_id=str(raw["id"]),
            author_name=author.get("name") or default_author,
            author_avatar=author.get("photo") or None,
            rating=rating,
            content=raw.get("text") or "",
            title=raw.get("title") or None,
            published_at=parse_timestamp(raw.get("timestamp"), default=datetime.utcnow()),
            reply_content=reply.get("text") or None,
            reply_at=parse_timestamp(reply.get("timestamp")),
            raw_data=raw,
        )
