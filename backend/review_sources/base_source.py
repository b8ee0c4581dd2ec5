"""
Boresha Reviews - Base Review Source Abstract Class

Abstract base for all external review-source integrations. Each source
adapter inherits from this class, talks to its provider over
httpx.AsyncClient and normalizes provider payloads into StandardReview.

All sources:
- Check configuration via environment variables
- Accept an injectable httpx transport and sleep function (tests)
- Return a tri-state FetchOutcome (reviews / empty / pending) from pull calls
"""

import asyncio
import logging
import os
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Dict, Iterable, List, Optional

import httpx

logger = logging.getLogger(__name__)


# =============================================================================
# EXCEPTIONS
# =============================================================================

class ReviewSourceError(Exception):
    """Raised when a review provider call fails. Keeps the HTTP status when known."""

    def __init__(self, message: str, status_code: Optional[int] = None):
        super().__init__(message)
        self.status_code = status_code


class ReviewSourceNotConfigured(ReviewSourceError):
    """Raised when the provider credential is not set."""
    pass


# =============================================================================
# CANONICAL RECORDS
# =============================================================================

@dataclass
class StandardReview:
    """Provider-independent review record."""
    external_id: str
    author_name: str
    rating: float
    content: str
    published_at: datetime
    author_avatar: Optional[str] = None
    title: Optional[str] = None
    reply_content: Optional[str] = None
    reply_at: Optional[datetime] = None
    raw_data: Dict[str, Any] = field(default_factory=dict)

    def to_row(self, connection_id: str) -> Dict[str, Any]:
        """Column values for the reviews table."""
        return {
            "platform_connection_id": connection_id,
            "external_id": self.external_id,
            "author_name": self.author_name,
            "author_avatar_url": self.author_avatar,
            "rating": self.rating,
            "title": self.title,
            "content": self.content,
            "published_at": self.published_at,
            "reply_content": self.reply_content,
            "reply_at": self.reply_at,
            "raw_data": self.raw_data,
        }


class OutcomeKind(str, Enum):
    """What a pull-mode call learned about the provider job."""
    REVIEWS = "reviews"    # At least one review returned
    EMPTY = "empty"        # Provider confirmed zero reviews
    PENDING = "pending"    # Job not finished; results arrive later (webhook or re-poll)


@dataclass
class FetchOutcome:
    """Result of a pull-mode adapter call."""
    kind: OutcomeKind
    reviews: List[StandardReview] = field(default_factory=list)
    attempts: int = 1
    job_id: Optional[str] = None

    @classmethod
    def with_reviews(cls, reviews: List[StandardReview], attempts: int = 1) -> "FetchOutcome":
        return cls(kind=OutcomeKind.REVIEWS, reviews=list(reviews), attempts=attempts)

    @classmethod
    def empty(cls, attempts: int = 1) -> "FetchOutcome":
        return cls(kind=OutcomeKind.EMPTY, attempts=attempts)

    @classmethod
    def pending(cls, attempts: int = 1, job_id: Optional[str] = None) -> "FetchOutcome":
        return cls(kind=OutcomeKind.PENDING, attempts=attempts, job_id=job_id)

    @property
    def is_pending(self) -> bool:
        return self.kind == OutcomeKind.PENDING


# =============================================================================
# NORMALIZATION HELPERS
# =============================================================================

def parse_timestamp(value: Any, default: Optional[datetime] = None) -> Optional[datetime]:
    """
    Parse provider timestamps into naive UTC datetimes.

    Accepts ISO-8601 strings (with or without a trailing Z) and unix epoch
    values in milliseconds. Unparseable values fall back to `default`.
    """
    if value is None or value == "":
        return default

    if isinstance(value, (int, float)) or (isinstance(value, str) and value.isdigit()):
        try:
            return datetime.utcfromtimestamp(float(value) / 1000.0)
        except (OverflowError, OSError, ValueError):
            return default

    if isinstance(value, str):
        text = value.strip()
        if text.endswith("Z"):
            text = text[:-1] + "+00:00"
        try:
            parsed = datetime.fromisoformat(text)
        except ValueError:
            logger.debug(f"Unparseable timestamp: {value!r}")
            return default
        if parsed.tzinfo is not None:
            parsed = (parsed - parsed.utcoffset()).replace(tzinfo=None)
        return parsed

    return default


def map_recommendation(recommendation: Any) -> float:
    """Map a thumbs-style recommendation to a 1-5 rating (1 -> 5, -1 -> 1, else 0)."""
    try:
        value = int(recommendation)
    except (TypeError, ValueError):
        return 0
    if value == 1:
        return 5
    if value == -1:
        return 1
    return 0


# =============================================================================
# BASE SOURCE
# =============================================================================

class BaseReviewSource(ABC):
    """
    Abstract base class for review-source integrations.

    Subclasses must define class attributes:
        source_name: str - Human-readable name (e.g., "Zembra")
        env_key_name: str - Environment variable for the API token
        base_url: str - API base URL
        description: str - Brief description of the source

    And implement abstract methods:
        fetch_reviews() - Pull mode call used by the fetch orchestrator
        normalize_review() - Map one raw provider review to StandardReview
    """

    source_name: str = ""
    env_key_name: str = ""
    base_url: str = ""
    description: str = ""
    timeout: float = 30.0

    def __init__(
        self,
        api_key: Optional[str] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
        sleep=None,
    ):
        """Initialize source with API key from environment unless given."""
        self.api_key = api_key if api_key is not None else os.getenv(self.env_key_name, "")
        self._transport = transport
        self._sleep = sleep or asyncio.sleep

    @classmethod
    def is_configured(cls) -> bool:
        """Check if this source's API key is set in the environment."""
        return bool(os.getenv(cls.env_key_name, ""))

    def _require_configured(self):
        if not self.api_key:
            raise ReviewSourceNotConfigured(
                f"{self.source_name} not configured ({self.env_key_name} not set)"
            )

    def _get_auth_headers(self) -> Dict[str, str]:
        """
        Get authentication headers for API requests.

        Default: Bearer token in Authorization header.
        """
        return {
            "Accept": "application/json",
            "Authorization": f"Bearer {self.api_key}",
        }

    def _client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(timeout=self.timeout, transport=self._transport)

    @staticmethod
    def _error_from_response(prefix: str, response: httpx.Response, limit: Optional[int] = None) -> ReviewSourceError:
        body = response.text or ""
        if limit is not None:
            body = body[:limit]
        return ReviewSourceError(f"{prefix} ({response.status_code}): {body}", status_code=response.status_code)

    @abstractmethod
    async def fetch_reviews(self, network: str, slug: str) -> FetchOutcome:
        """
        Pull the latest reviews for one provider listing.

        Args:
            network: Provider network name (e.g. "google", "yelp").
            slug: Provider-side listing identifier.

        Returns:
            FetchOutcome describing reviews / confirmed empty / still pending.
        """
        pass

    @abstractmethod
    def normalize_review(self, raw: Dict[str, Any], **kwargs) -> StandardReview:
        """Map one raw provider review to a StandardReview."""
        pass

    def normalize_reviews(self, raws: Iterable[Dict[str, Any]], **kwargs) -> List[StandardReview]:
        """Normalize a list of raw reviews, dropping entries without an id."""
        normalized = []
        for raw in raws or []:
            if not isinstance(raw, dict) or not raw.get("id"):
                logger.warning(f"{self.source_name}: skipping review without id")
                continue
            normalized.append(self.normalize_review(raw, **kwargs))
        return normalized

    @classmethod
    def get_source_metadata(cls) -> Dict[str, Any]:
        """Return metadata about this source for status endpoints."""
        return {
            "name": cls.source_name,
            "env_key": cls.env_key_name,
            "configured": cls.is_configured(),
            "description": cls.description,
            "base_url": cls.base_url,
        }
