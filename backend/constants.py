"""
Boresha Reviews - Shared Constants

Centralizes version string and the tuning knobs of the review ingestion
and enrichment pipeline used across multiple modules.
"""

import os

__version__ = "1.3.0"

# =============================================================================
# REVIEW FETCH (Orchestrator + Adapters)
# =============================================================================
REVIEW_FETCH_COOLDOWN_HOURS = int(os.getenv("REVIEW_FETCH_COOLDOWN_HOURS", "48"))

# Pull-mode polling: 3 retries after the first attempt
SOURCE_MAX_RETRIES = 3
SOURCE_BACKOFF_SECONDS = [10, 15, 20]

ZEMBRA_API_BASE = "https://api.zembra.io/reviews/"
ZEMBRA_TRIGGER_URL = "https://api.zembra.io/reviews"
ZEMBRA_LISTING_URL = "https://api.zembra.io/listing"
ZEMBRA_MIN_SIZE_LIMIT = 25
ZEMBRA_DEFAULT_FIELDS = [
    "id",
    "text",
    "timestamp",
    "rating",
    "recommendation",
    "translation",
    "author",
]

ZEMBRA_CLIENT_MODES = ("create-review-job", "get-reviews", "listing")

# Account plan for Zembra jobs: unlimited monitoring, or a per-sync review cap
ZEMBRA_UNLIMITED_REVIEWS = os.getenv("ZEMBRA_UNLIMITED_REVIEWS", "false").lower() == "true"
ZEMBRA_MAX_REVIEWS_PER_SYNC = int(os.getenv("ZEMBRA_MAX_REVIEWS_PER_SYNC", "0")) or None

YELP_API_BASE = "https://api.yelp.com/v3"

# Per-endpoint HTTP limits for routes that spend provider credits
REVIEW_FETCH_RATE_LIMIT = os.getenv("REVIEW_FETCH_RATE_LIMIT", "10/minute")
ZEMBRA_CLIENT_RATE_LIMIT = os.getenv("ZEMBRA_CLIENT_RATE_LIMIT", "30/minute")
RATE_LIMIT_ENABLED = os.getenv("RATE_LIMIT_ENABLED", "true").lower() == "true"

# Webhook pushes are saved in chunks of this size
WEBHOOK_UPSERT_BATCH_SIZE = 500

# =============================================================================
# ENRICHMENT (Drainer + LLM)
# =============================================================================
DRAIN_PAGE_SIZE = 100
DRAIN_SUB_BATCH_SIZE = 5
DRAIN_MAX_RETRIES = 50
DRAIN_RETRY_DELAY_SECONDS = 10

SENTIMENT_MODEL = os.getenv("SENTIMENT_MODEL", "gpt-3.5-turbo")
SENTIMENT_TEMPERATURE = 0.3
SINGLE_REVIEW_MAX_TOKENS = 500
BATCH_MAX_TOKENS_CAP = 4000
BATCH_BASE_TOKENS = 800
BATCH_TOKENS_PER_REVIEW = 60

# Not model-derived; stored on every sentiment row
DEFAULT_CONFIDENCE = 0.85

DEFAULT_PROMPT_LANGUAGE = os.getenv("DEFAULT_PROMPT_LANGUAGE", "fr")
PROMPT_LANGUAGES = {
    "en": "English",
    "fr": "French",
}

SENTIMENT_LABELS = ("positive", "negative", "neutral", "mixed")
KEYWORD_CATEGORIES = (
    "service",
    "food",
    "ambiance",
    "price",
    "quality",
    "cleanliness",
    "staff",
    "other",
)
TOPIC_CATEGORIES = ("satisfaction", "dissatisfaction", "neutral")

# =============================================================================
# LLM RATE LIMITER
# =============================================================================
LLM_MAX_REQUESTS_PER_MINUTE = int(os.getenv("LLM_MAX_REQUESTS_PER_MINUTE", "200"))
RATE_LIMIT_WINDOW_SECONDS = 60
RATE_LIMIT_WAIT_ANCHOR_SECONDS = 61
RATE_LIMIT_JITTER_SECONDS = 2.0
RATE_LIMIT_ERROR_BACKOFF_SECONDS = 2.0
RATE_LIMIT_CLEANUP_PROBABILITY = 0.01
