"""
Review Source Registry for Boresha Reviews.

Each source is an adapter that inherits from BaseReviewSource and maps
provider payloads to StandardReview records.

Usage:
    from review_sources import get_source

    source = get_source("google")
    outcome = await source.fetch_reviews("google", "cafe-du-port")
"""

from typing import List

from .base_source import (  # noqa: F401
    BaseReviewSource,
    FetchOutcome,
    OutcomeKind,
    ReviewSourceError,
    ReviewSourceNotConfigured,
    StandardReview,
)
from .yelp import YelpSource
from .zembra import ZembraSource

ALL_SOURCES = [
    ZembraSource,
    YelpSource,
]

# Networks served by a direct integration instead of Zembra
DIRECT_NETWORKS = {
    "yelp": YelpSource,
}


def get_source(network: str) -> BaseReviewSource:
    """
    Pick the adapter for a provider network (case-insensitive).

    Direct integrations win when their key is configured; everything else
    goes through Zembra.
    """
    source_cls = DIRECT_NETWORKS.get((network or "").lower())
    if source_cls and source_cls.is_configured():
        return source_cls()
    return ZembraSource()


def get_all_source_status() -> List[dict]:
    """Configuration status of all sources, for health checks."""
    return [S.get_source_metadata() for S in ALL_SOURCES]
