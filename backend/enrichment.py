"""
Boresha Reviews - Enrichment Queue Drainer

Drains a company's backlog of reviews without sentiment analysis.

Each pass reads the backlog size and a page of the newest unanalyzed
reviews, sends them to the LLM in sub-batches, upserts one sentiment row
per review and links keywords/topics. Passes repeat with a fixed sleep
in between until the backlog is empty or the pass ceiling is reached.

Failure handling per sub-batch:
- provider 429: the sub-batch is skipped and the pass ends early
- any other provider or parse error: the sub-batch counts as errors
- keyword/topic failures: counted per review, sentiment row is kept
"""

import asyncio
import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Dict, Optional, Sequence

from sqlalchemy.exc import SQLAlchemyError

from constants import (
    DEFAULT_CONFIDENCE,
    DRAIN_MAX_RETRIES,
    DRAIN_PAGE_SIZE,
    DRAIN_RETRY_DELAY_SECONDS,
    DRAIN_SUB_BATCH_SIZE,
)
from database import (
    Review,
    SentimentAnalysis,
    count_unprocessed_reviews,
    dialect_insert,
    get_company_id_for_connection,
    get_owner_language,
    get_unprocessed_reviews,
    has_sentiment_analysis,
    new_id,
    require_company,
)
from metrics import track_drain_pass
from sentiment_analyzer import (
    AnalysisParseError,
    LLMProviderError,
    ReviewAnalysis,
    SentimentAnalyzer,
    has_text,
    rating_based_analysis,
)
from taxonomy import link_keywords, link_topics

logger = logging.getLogger(__name__)


@dataclass
class PassResult:
    backlog: int = 0
    fetched: int = 0
    processed: int = 0
    skipped: int = 0
    errors: int = 0


@dataclass
class DrainResult:
    """Aggregated counts across every pass of one drain."""
    processed: int = 0
    skipped: int = 0
    errors: int = 0
    total: int = 0
    remaining: int = 0
    total_unprocessed: int = 0
    retry_count: int = 0
    message: str = ""

    def to_response(self) -> Dict[str, Any]:
        return {
            "success": True,
            "processed": self.processed,
            "skipped": self.skipped,
            "errors": self.errors,
            "total": self.total,
            "remaining": self.remaining,
            "totalUnprocessed": self.total_unprocessed,
            "retry_count": self.retry_count,
            "message": self.message,
        }


@dataclass
class ReviewRecord:
    """The fields of a review the enrichment path needs."""
    id: str
    content: Optional[str]
    rating: Optional[float]
    platform_connection_id: str

    @classmethod
    def from_review(cls, review: Review) -> "ReviewRecord":
        return cls(
            id=review.id,
            content=review.content,
            rating=review.rating,
            platform_connection_id=review.platform_connection_id,
        )


def sentiment_row(review_id: str, analysis: ReviewAnalysis, now: datetime) -> Dict[str, Any]:
    return {
        "id": new_id(),
        "review_id": review_id,
        "sentiment": analysis.sentiment,
        "sentiment_score": analysis.sentiment_score,
        "emotions": analysis.emotions_payload(),
        "confidence": DEFAULT_CONFIDENCE,
        "created_at": now,
        "updated_at": now,
    }


def _chunks(items: Sequence[Any], size: int):
    for start in range(0, len(items), size):
        yield start // size + 1, items[start:start + size]


class EnrichmentDrainer:
    """Bounded in-process drain loop for one company's unanalyzed reviews."""

    def __init__(
        self,
        session_factory,
        analyzer: SentimentAnalyzer,
        sleep=None,
        retry_delay: float = DRAIN_RETRY_DELAY_SECONDS,
        max_retries: int = DRAIN_MAX_RETRIES,
        page_size: int = DRAIN_PAGE_SIZE,
        sub_batch_size: int = DRAIN_SUB_BATCH_SIZE,
    ):
        self.session_factory = session_factory
        self.analyzer = analyzer
        self._sleep = sleep or asyncio.sleep
        self.retry_delay = retry_delay
        self.max_retries = max_retries
        self.page_size = page_size
        self.sub_batch_size = sub_batch_size

    async def drain(self, company_id: str, retry_count: int = 0) -> DrainResult:
        """
        Drain the company backlog.

        Runs passes retry_count, retry_count + 1, ... up to max_retries,
        sleeping retry_delay between passes while reviews remain.

        Raises:
            UnknownCompanyError: company_id does not exist.
        """
        async with self.session_factory() as session:
            company = await require_company(session, company_id)
            language = await get_owner_language(session, company)

        result = DrainResult(retry_count=retry_count)
        first_pass = True

        while True:
            logger.info(
                f"Starting sentiment analysis for company {company_id} "
                f"(retry {retry_count}/{self.max_retries})"
            )
            outcome = await self._run_pass(company_id, language)
            track_drain_pass(outcome.processed, outcome.skipped, outcome.errors)

            if first_pass:
                result.total_unprocessed = outcome.backlog
                first_pass = False
            result.processed += outcome.processed
            result.skipped += outcome.skipped
            result.errors += outcome.errors
            result.total += outcome.fetched
            result.retry_count = retry_count
            result.remaining = max(0, outcome.backlog - outcome.processed)

            logger.info(
                f"Completed: {outcome.processed} processed, {outcome.skipped} skipped, "
                f"{outcome.errors} errors out of {outcome.fetched}. "
                f"{result.remaining} reviews remaining."
            )

            if outcome.fetched == 0 or result.remaining == 0:
                break
            if retry_count >= self.max_retries:
                break

            logger.info(
                f"Still {result.remaining} reviews remaining. Waiting {self.retry_delay}s "
                f"before retry {retry_count + 1}/{self.max_retries}..."
            )
            await self._sleep(self.retry_delay)
            retry_count += 1

        result.message = self._summary(result)
        return result

    def _summary(self, result: DrainResult) -> str:
        if result.total == 0:
            return "No unprocessed reviews found"
        if result.remaining == 0:
            if result.retry_count:
                return f"All reviews processed after {result.retry_count} retries!"
            return f"Processed {result.processed} reviews successfully. All reviews processed!"
        return (
            f"Processed {result.processed} reviews. {result.remaining} reviews remaining "
            f"(max retries reached)."
        )

    async def _run_pass(self, company_id: str, language: Optional[str]) -> PassResult:
        async with self.session_factory() as session:
            backlog = await count_unprocessed_reviews(session, company_id)
            page = [
                ReviewRecord.from_review(r)
                for r in await get_unprocessed_reviews(session, company_id, limit=self.page_size)
            ]

        outcome = PassResult(backlog=backlog, fetched=len(page))
        if not page:
            logger.info("No unprocessed reviews found")
            return outcome

        logger.info(f"Processing {len(page)} of {backlog} unprocessed reviews for company {company_id}")

        for batch_number, batch in _chunks(page, self.sub_batch_size):
            try:
                analysis = await self.analyzer.analyze_batch(batch, language)
            except LLMProviderError as e:
                if e.is_rate_limited:
                    logger.warning(
                        f"Rate limit hit for batch {batch_number}, skipping remaining reviews..."
                    )
                    outcome.skipped += len(batch)
                    break
                logger.error(f"Error processing batch {batch_number}: {e}")
                outcome.errors += len(batch)
                continue
            except AnalysisParseError as e:
                logger.error(f"Error processing batch {batch_number}: {e}")
                outcome.errors += len(batch)
                continue

            outcome.errors += analysis.failures
            by_id = {r.id: r for r in batch}
            results = [(by_id[review_id], result) for review_id, result in analysis.results]
            if not results:
                continue

            if not await self._upsert_sentiments(results):
                outcome.errors += len(results)
                continue

            for review, result in results:
                if await self._link_taxonomy(company_id, review, result):
                    outcome.processed += 1
                else:
                    outcome.errors += 1

        return outcome

    async def _upsert_sentiments(self, results) -> bool:
        """Idempotent upsert keyed on review_id. Returns False on failure."""
        now = datetime.utcnow()
        rows = [sentiment_row(review.id, analysis, now) for review, analysis in results]
        try:
            async with self.session_factory() as session:
                stmt = dialect_insert(session, SentimentAnalysis).values(rows)
                stmt = stmt.on_conflict_do_update(
                    index_elements=["review_id"],
                    set_={
                        "sentiment": stmt.excluded.sentiment,
                        "sentiment_score": stmt.excluded.sentiment_score,
                        "emotions": stmt.excluded.emotions,
                        "confidence": stmt.excluded.confidence,
                        "updated_at": now,
                    },
                )
                await session.execute(stmt)
                await session.commit()
        except SQLAlchemyError as e:
            logger.error(f"Error batch inserting sentiments: {e}")
            return False
        logger.info(f"Successfully inserted {len(rows)} sentiment records")
        return True

    async def _link_taxonomy(self, company_id: str, review: ReviewRecord, analysis: ReviewAnalysis) -> bool:
        try:
            async with self.session_factory() as session:
                await link_keywords(session, review.id, review.platform_connection_id, analysis.keywords)
                await link_topics(
                    session,
                    company_id,
                    review.id,
                    review.platform_connection_id,
                    analysis.topics,
                    analysis.sentiment,
                )
                await session.commit()
        except SQLAlchemyError as e:
            logger.error(f"Error processing keywords/topics for review {review.id}: {e}")
            return False
        return True

    # ------------------------------------------------------------------
    # Single-review path
    # ------------------------------------------------------------------

    async def analyze_review(self, record: ReviewRecord) -> Dict[str, Any]:
        """
        Analyze one freshly inserted review.

        Skips reviews that already have a sentiment row. Provider and parse
        errors propagate to the caller.
        """
        async with self.session_factory() as session:
            if await has_sentiment_analysis(session, record.id):
                logger.info(f"Review {record.id} already has sentiment analysis, skipping")
                return {"success": True, "message": "Review already analyzed"}
            company_id = await get_company_id_for_connection(session, record.platform_connection_id)
            language = None
            if company_id:
                company = await require_company(session, company_id)
                language = await get_owner_language(session, company)

        if has_text(record.content):
            analysis = await self.analyzer.analyze_single(record.content, language)
        else:
            analysis = rating_based_analysis(record.rating)

        if not await self._upsert_sentiments([(record, analysis)]):
            raise RuntimeError(f"Failed to insert sentiment analysis for review {record.id}")

        keywords_linked = 0
        topics_linked = 0
        async with self.session_factory() as session:
            keywords_linked = await link_keywords(
                session, record.id, record.platform_connection_id, analysis.keywords
            )
            if company_id:
                topics_linked = await link_topics(
                    session,
                    company_id,
                    record.id,
                    record.platform_connection_id,
                    analysis.topics,
                    analysis.sentiment,
                )
            await session.commit()

        logger.info(f"Review {record.id} analyzed: {analysis.sentiment} ({analysis.score})")
        return {
            "success": True,
            "reviewId": record.id,
            "sentiment": analysis.sentiment,
            "keywordsExtracted": keywords_linked,
            "topicsIdentified": topics_linked,
        }


_drainer: Optional[EnrichmentDrainer] = None


def get_enrichment_drainer() -> EnrichmentDrainer:
    global _drainer
    if _drainer is None:
        from database import AsyncSessionLocal
        from sentiment_analyzer import get_sentiment_analyzer
        _drainer = EnrichmentDrainer(AsyncSessionLocal, get_sentiment_analyzer())
    return _drainer
