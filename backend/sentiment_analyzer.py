"""
Boresha Reviews - LLM Sentiment Analyzer

Turns review text into sentiment, a 1-100 score, emoticons, keywords and
topics using an OpenAI chat completion.

Two modes:
- analyze_batch(): one call for up to DRAIN_SUB_BATCH_SIZE reviews. The
  model echoes each reviewId; results are validated and matched back.
- analyze_single(): one call for one review (webhook-triggered path).

Reviews without text never reach the model; their sentiment is derived
from the star rating.
"""

import json
import logging
import re
import time
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Sequence, Tuple

import openai
from pydantic import BaseModel, ValidationError, field_validator

from constants import (
    BATCH_BASE_TOKENS,
    BATCH_MAX_TOKENS_CAP,
    BATCH_TOKENS_PER_REVIEW,
    DEFAULT_PROMPT_LANGUAGE,
    PROMPT_LANGUAGES,
    SENTIMENT_LABELS,
    SENTIMENT_MODEL,
    SENTIMENT_TEMPERATURE,
    SINGLE_REVIEW_MAX_TOKENS,
)
from metrics import track_llm_call

logger = logging.getLogger(__name__)


class LLMProviderError(Exception):
    """Non-2xx answer (or transport failure) from the LLM provider."""

    def __init__(self, message: str, status_code: Optional[int] = None):
        super().__init__(message)
        self.status_code = status_code

    @property
    def is_rate_limited(self) -> bool:
        return self.status_code == 429


class AnalysisParseError(Exception):
    """The model answer could not be turned into analysis results."""
    pass


# =============================================================================
# RESULT MODELS
# =============================================================================

class KeywordResult(BaseModel):
    text: str
    category: str = "other"
    relevance: float = 0.5

    @field_validator("relevance", mode="before")
    @classmethod
    def _default_relevance(cls, v):
        return 0.5 if v is None else v


class TopicResult(BaseModel):
    name: str
    category: str = "neutral"
    description: str = ""
    relevance: float = 0.5

    @field_validator("relevance", mode="before")
    @classmethod
    def _default_relevance(cls, v):
        return 0.5 if v is None else v

    @field_validator("category", "description", mode="before")
    @classmethod
    def _none_to_default(cls, v, info):
        if v:
            return v
        return "neutral" if info.field_name == "category" else ""


class ReviewAnalysis(BaseModel):
    """Validated analysis of one review."""
    sentiment: str = "neutral"
    score: float = 50
    emotions: Optional[List[str]] = None
    keywords: List[KeywordResult] = []
    topics: List[TopicResult] = []

    @field_validator("sentiment", mode="before")
    @classmethod
    def _normalize_sentiment(cls, v):
        value = str(v or "").strip().lower()
        return value if value in SENTIMENT_LABELS else "neutral"

    @field_validator("score", mode="before")
    @classmethod
    def _default_score(cls, v):
        return v or 50

    @field_validator("keywords", "topics", mode="before")
    @classmethod
    def _none_to_list(cls, v):
        return v or []

    @property
    def sentiment_score(self) -> float:
        return score_to_sentiment_score(self.score)

    def emotions_payload(self) -> Optional[Dict[str, List[str]]]:
        return {"emoticons": self.emotions} if self.emotions else None


@dataclass
class BatchAnalysis:
    """Outcome of one batch call, including correlation failures."""
    results: List[Tuple[str, ReviewAnalysis]] = field(default_factory=list)
    unmatched_ids: List[str] = field(default_factory=list)  # echoed ids not in the batch
    missing_ids: List[str] = field(default_factory=list)    # batch reviews with no valid result

    @property
    def failures(self) -> int:
        return len(self.unmatched_ids) + len(self.missing_ids)


# =============================================================================
# PURE HELPERS
# =============================================================================

def score_to_sentiment_score(score: Optional[float]) -> float:
    """Map a 1-100 model score to [-1.0, 1.0]. Falsy scores map to 0."""
    if not score:
        return 0.0
    return max(-1.0, min(1.0, (score - 50) / 50))


def rating_based_analysis(rating: Optional[float]) -> ReviewAnalysis:
    """
    Deterministic sentiment for reviews without text.

    score = rating * 2 on a 10 point scale:
    below 4 negative, 4 or 6 mixed, 5 neutral, anything else positive.
    """
    score = (rating or 0) * 2
    if score < 4:
        sentiment = "negative"
    elif score == 4 or score == 6:
        sentiment = "mixed"
    elif score == 5:
        sentiment = "neutral"
    else:
        sentiment = "positive"
    return ReviewAnalysis.model_construct(
        sentiment=sentiment,
        score=score * 10,
        emotions=None,
        keywords=[],
        topics=[],
    )


def has_text(content: Optional[str]) -> bool:
    return bool(content and content.strip())


def resolve_language(language: Optional[str]) -> str:
    """Prompt language name for a user language code."""
    if language in PROMPT_LANGUAGES:
        return PROMPT_LANGUAGES[language]
    return PROMPT_LANGUAGES.get(DEFAULT_PROMPT_LANGUAGE, "French")


def _balance_brackets(text: str) -> str:
    fixed = text
    fixed += "}" * max(0, text.count("{") - text.count("}"))
    fixed += "]" * max(0, text.count("[") - text.count("]"))
    return fixed


def parse_json_array(text: str) -> List[Any]:
    """Extract the JSON array from a model answer, repairing truncation."""
    match = re.search(r"\[[\s\S]*\]", text or "")
    if not match:
        logger.error(f"Model response (first 500 chars): {(text or '')[:500]}")
        raise AnalysisParseError("No JSON array found in model response")

    raw = match.group(0)
    try:
        parsed = json.loads(raw)
    except json.JSONDecodeError as parse_error:
        logger.warning(f"JSON parse error ({len(raw)} chars), attempting repair: {parse_error}")
        try:
            parsed = json.loads(_balance_brackets(raw))
        except json.JSONDecodeError:
            raise AnalysisParseError(f"Failed to parse model response as JSON: {parse_error}")

    if not isinstance(parsed, list):
        raise AnalysisParseError("Model response is not an array")
    return parsed


def parse_json_object(text: str) -> Dict[str, Any]:
    match = re.search(r"\{[\s\S]*\}", text or "")
    if not match:
        raise AnalysisParseError("No JSON found in model response")
    try:
        parsed = json.loads(match.group(0))
    except json.JSONDecodeError as e:
        raise AnalysisParseError(f"Failed to parse model response: {e}")
    if not isinstance(parsed, dict):
        raise AnalysisParseError("Model response is not an object")
    return parsed


# =============================================================================
# PROMPTS
# =============================================================================

def build_batch_prompt(count: int, language_name: str) -> str:
    return f"""Analyze these {count} reviews and return a JSON array where each element corresponds to a review analysis.

Each analysis object MUST include:
1. reviewId: the ID from the review (CRITICAL - must match exactly)
2. sentiment: one of "positive", "negative", "neutral", or "mixed"
3. score: number from 1-100 (1=very negative, 50=neutral, 100=very positive)
4. emotions: array of emoticons representing emotions (optional)
5. keywords: array of objects with:
   - text: the keyword/phrase (MUST be 1-2 words maximum, generate in {language_name})
   - category: one of "service", "food", "ambiance", "price", "quality", "cleanliness", "staff", "other"
   - relevance: number from 0-1 indicating importance
6. topics: array of objects with:
   - name: brief topic name (MUST be 1-2 words maximum, generate in {language_name})
   - category: one of "satisfaction", "dissatisfaction", "neutral"
   - description: brief description (generate in {language_name})
   - relevance: number from 0-1

IMPORTANT:
- Return ONLY a JSON array with exactly {count} objects
- Each object MUST have the reviewId field matching the ID from the input
- All keywords, topics, and descriptions MUST be in {language_name}
- Format: [{{"reviewId": "xxx", "sentiment": "positive", ...}}, ...]"""


def build_single_prompt(language_name: str) -> str:
    return f"""Analyze this review and return a JSON object with:

1. sentiment: one of "positive", "negative", "neutral", or "mixed"
2. score: number from 1-100 (1=very negative, 50=neutral, 100=very positive)
3. emotions: array of emoticons representing emotions (optional)
4. keywords: array of objects with:
   - text: the keyword/phrase (1-2 words, in {language_name})
   - category: one of "service", "food", "ambiance", "price", "quality", "cleanliness", "staff", "other"
   - relevance: number from 0-1 indicating importance
5. topics: array of objects with:
   - name: brief topic name (in {language_name})
   - category: one of "satisfaction", "dissatisfaction", "neutral"
   - description: brief description of what customers are saying (in {language_name})
   - relevance: number from 0-1

Return ONLY the JSON object."""


def format_reviews(reviews: Sequence[Any]) -> str:
    return "\n\n".join(
        f'Review {index} (ID: {review.id}): "{review.content}"'
        for index, review in enumerate(reviews, start=1)
    )


def batch_max_tokens(count: int) -> int:
    return min(BATCH_MAX_TOKENS_CAP, BATCH_BASE_TOKENS + count * BATCH_TOKENS_PER_REVIEW)


# =============================================================================
# ANALYZER
# =============================================================================

class SentimentAnalyzer:
    """
    LLM-backed review analyzer.

    Args:
        client: AsyncOpenAI-compatible client (created lazily when omitted).
        model: Chat model id.
        rate_limiter: Object with an async gate(); awaited before each call.
    """

    def __init__(self, client=None, model: str = SENTIMENT_MODEL, rate_limiter=None):
        self._client = client
        self.model = model
        self.rate_limiter = rate_limiter

    def _get_client(self):
        if self._client is None:
            self._client = openai.AsyncOpenAI()
        return self._client

    async def _complete(self, kind: str, system_prompt: str, user_prompt: str, max_tokens: int) -> str:
        if self.rate_limiter is not None:
            await self.rate_limiter.gate()

        client = self._get_client()
        start = time.time()
        try:
            response = await client.chat.completions.create(
                model=self.model,
                messages=[
                    {"role": "system", "content": system_prompt},
                    {"role": "user", "content": user_prompt},
                ],
                temperature=SENTIMENT_TEMPERATURE,
                max_tokens=max_tokens,
            )
        except openai.APIStatusError as e:
            outcome = "rate_limited" if e.status_code == 429 else "error"
            track_llm_call(self.model, kind, outcome=outcome, duration=time.time() - start)
            raise LLMProviderError(f"OpenAI API error: {e.status_code} {e.message}", status_code=e.status_code)
        except openai.APIConnectionError as e:
            track_llm_call(self.model, kind, outcome="error", duration=time.time() - start)
            raise LLMProviderError(f"OpenAI connection error: {e}")

        track_llm_call(self.model, kind, duration=time.time() - start)
        text = response.choices[0].message.content if response.choices else None
        if not text:
            raise AnalysisParseError("No analysis returned from model")
        return text

    async def analyze_batch(self, reviews: Sequence[Any], language: Optional[str] = None) -> BatchAnalysis:
        """
        Analyze reviews (objects with id, content, rating) in one call.

        Raises LLMProviderError or AnalysisParseError for whole-batch failures.
        Per-review problems are reported in the returned BatchAnalysis.
        """
        batch = BatchAnalysis()
        with_text = [r for r in reviews if has_text(r.content)]

        for review in reviews:
            if not has_text(review.content):
                analysis = rating_based_analysis(review.rating)
                logger.info(
                    f"Review {review.id}: No content, using rating-based sentiment: "
                    f"{analysis.sentiment} (rating: {review.rating})"
                )
                batch.results.append((review.id, analysis))

        if not with_text:
            return batch

        language_name = resolve_language(language)
        text = await self._complete(
            "batch",
            build_batch_prompt(len(with_text), language_name),
            format_reviews(with_text),
            batch_max_tokens(len(with_text)),
        )
        items = parse_json_array(text)
        logger.info(f"Parsed {len(items)} results for {len(with_text)} reviews")

        expected = {r.id for r in with_text}
        matched = set()
        for item in items:
            review_id = item.get("reviewId") if isinstance(item, dict) else None
            if review_id is None or str(review_id) not in expected:
                logger.warning(f"Result with unknown reviewId {review_id!r}, counting as failure")
                batch.unmatched_ids.append(str(review_id))
                continue
            review_id = str(review_id)
            if review_id in matched:
                logger.warning(f"Duplicate result for review {review_id}, keeping the first")
                continue
            try:
                analysis = ReviewAnalysis.model_validate(item)
            except ValidationError as e:
                logger.warning(f"Invalid analysis for review {review_id}: {e}")
                continue
            matched.add(review_id)
            batch.results.append((review_id, analysis))

        for review in with_text:
            if review.id not in matched:
                logger.warning(f"No valid analysis returned for review {review.id}")
                batch.missing_ids.append(review.id)

        return batch

    async def analyze_single(self, content: str, language: Optional[str] = None) -> ReviewAnalysis:
        """Analyze one review text. Requires sentiment and score in the answer."""
        text = await self._complete(
            "single",
            build_single_prompt(resolve_language(language)),
            f'Review text: "{content}"',
            SINGLE_REVIEW_MAX_TOKENS,
        )
        data = parse_json_object(text)
        if not data.get("sentiment") or not data.get("score"):
            raise AnalysisParseError("Invalid analysis result: missing sentiment or score")
        try:
            return ReviewAnalysis.model_validate(data)
        except ValidationError as e:
            raise AnalysisParseError(f"Invalid analysis result: {e}")


_analyzer: Optional[SentimentAnalyzer] = None


def get_sentiment_analyzer() -> SentimentAnalyzer:
    """Process-wide analyzer sharing the DB-backed rate limiter."""
    global _analyzer
    if _analyzer is None:
        from database import AsyncSessionLocal
        from rate_limiter import LLMRateLimiter
        _analyzer = SentimentAnalyzer(rate_limiter=LLMRateLimiter(AsyncSessionLocal))
    return _analyzer
