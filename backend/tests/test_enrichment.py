"""
Boresha Reviews - Enrichment Drainer Tests

The analyzer is replaced by a scripted fake so pass accounting, retries
and failure handling can be checked against a real SQLite schema.

Run: python -m pytest -xvs tests/test_enrichment.py
"""

from unittest.mock import AsyncMock, MagicMock

import pytest
from sqlalchemy import select

from conftest import count_rows, seed_company, seed_reviews
from database import Keyword, SentimentAnalysis, Topic, UnknownCompanyError
from enrichment import DrainResult, EnrichmentDrainer, ReviewRecord
from sentiment_analyzer import (
    AnalysisParseError,
    BatchAnalysis,
    KeywordResult,
    LLMProviderError,
    ReviewAnalysis,
    TopicResult,
)


def _analysis(sentiment="positive", score=80):
    return ReviewAnalysis(
        sentiment=sentiment,
        score=score,
        emotions=["🙂"],
        keywords=[KeywordResult(text="service")],
        topics=[TopicResult(name="Accueil", category="satisfaction")],
    )


class FakeAnalyzer:
    """Answers every review positively unless a batch number is scripted."""

    def __init__(self, script=None):
        self.script = script or {}
        self.calls = []
        self.languages = []

    async def analyze_batch(self, reviews, language=None):
        self.calls.append([r.id for r in reviews])
        self.languages.append(language)
        action = self.script.get(len(self.calls))
        if isinstance(action, Exception):
            raise action
        if callable(action):
            return action(reviews)
        return BatchAnalysis(results=[(r.id, _analysis()) for r in reviews])

    async def analyze_single(self, content, language=None):
        self.calls.append(content)
        return _analysis("negative", 10)


def _drainer(session_factory, analyzer, **kwargs):
    kwargs.setdefault("sleep", AsyncMock())
    return EnrichmentDrainer(session_factory, analyzer, **kwargs)


class TestDrain:

    @pytest.mark.asyncio
    async def test_backlog_drained_over_passes(self, session_factory):
        ids = await seed_company(session_factory)
        await seed_reviews(session_factory, ids["connection_ids"][0], 250)
        sleep = AsyncMock()
        drainer = _drainer(session_factory, FakeAnalyzer(), sleep=sleep, retry_delay=10)

        result = await drainer.drain(ids["company_id"])

        assert result.processed == 250
        assert result.remaining == 0
        assert result.retry_count == 2
        assert result.total_unprocessed == 250
        assert result.total == 250
        assert result.message == "All reviews processed after 2 retries!"
        assert [c.args[0] for c in sleep.await_args_list] == [10, 10]
        assert await count_rows(session_factory, SentimentAnalysis) == 250

    @pytest.mark.asyncio
    async def test_single_pass_message(self, session_factory):
        ids = await seed_company(session_factory)
        await seed_reviews(session_factory, ids["connection_ids"][0], 7)
        analyzer = FakeAnalyzer()

        result = await _drainer(session_factory, analyzer).drain(ids["company_id"])

        assert result.processed == 7
        assert result.message == "Processed 7 reviews successfully. All reviews processed!"
        assert [len(call) for call in analyzer.calls] == [5, 2]
        assert analyzer.languages == ["fr", "fr"]

    @pytest.mark.asyncio
    async def test_empty_backlog(self, session_factory):
        ids = await seed_company(session_factory)

        result = await _drainer(session_factory, FakeAnalyzer()).drain(ids["company_id"])

        assert result.to_response() == {
            "success": True,
            "processed": 0,
            "skipped": 0,
            "errors": 0,
            "total": 0,
            "remaining": 0,
            "totalUnprocessed": 0,
            "retry_count": 0,
            "message": "No unprocessed reviews found",
        }

    @pytest.mark.asyncio
    async def test_rate_limit_ends_the_pass(self, session_factory):
        ids = await seed_company(session_factory)
        await seed_reviews(session_factory, ids["connection_ids"][0], 12)
        analyzer = FakeAnalyzer({2: LLMProviderError("slow down", status_code=429)})

        result = await _drainer(session_factory, analyzer, max_retries=0).drain(ids["company_id"])

        assert len(analyzer.calls) == 2
        assert result.processed == 5
        assert result.skipped == 5
        assert result.errors == 0
        assert result.remaining == 7
        assert result.message == "Processed 5 reviews. 7 reviews remaining (max retries reached)."

    @pytest.mark.asyncio
    async def test_other_failures_count_as_errors(self, session_factory):
        ids = await seed_company(session_factory)
        await seed_reviews(session_factory, ids["connection_ids"][0], 15)
        analyzer = FakeAnalyzer({
            1: LLMProviderError("upstream", status_code=500),
            2: AnalysisParseError("garbage"),
        })

        result = await _drainer(session_factory, analyzer, max_retries=0).drain(ids["company_id"])

        assert len(analyzer.calls) == 3
        assert result.errors == 10
        assert result.processed == 5

    @pytest.mark.asyncio
    async def test_unmatched_results_count_as_errors(self, session_factory):
        ids = await seed_company(session_factory)
        await seed_reviews(session_factory, ids["connection_ids"][0], 3)

        def partial(reviews):
            return BatchAnalysis(
                results=[(reviews[0].id, _analysis())],
                unmatched_ids=["not-in-batch"],
                missing_ids=[r.id for r in reviews[1:]],
            )

        result = await _drainer(session_factory, FakeAnalyzer({1: partial}), max_retries=0).drain(ids["company_id"])

        assert result.processed == 1
        assert result.errors == 3

    @pytest.mark.asyncio
    async def test_retry_count_ceiling(self, session_factory):
        ids = await seed_company(session_factory)
        await seed_reviews(session_factory, ids["connection_ids"][0], 3)
        analyzer = FakeAnalyzer({1: AnalysisParseError("garbage")})
        sleep = AsyncMock()

        result = await _drainer(session_factory, analyzer, sleep=sleep, max_retries=2).drain(
            ids["company_id"], retry_count=1
        )

        assert result.retry_count == 2
        assert result.processed == 3
        assert sleep.await_count == 1

    @pytest.mark.asyncio
    async def test_enrichment_links_taxonomy(self, session_factory):
        ids = await seed_company(session_factory)
        await seed_reviews(session_factory, ids["connection_ids"][0], 2)

        await _drainer(session_factory, FakeAnalyzer()).drain(ids["company_id"])

        async with session_factory() as session:
            topic = (await session.execute(select(Topic))).scalar_one()
            rows = (await session.execute(select(SentimentAnalysis))).scalars().all()
        assert topic.sentiment_distribution == {"positive": 2}
        assert await count_rows(session_factory, Keyword) == 1
        assert [row.sentiment_score for row in rows] == [pytest.approx(0.6)] * 2
        assert rows[0].emotions == {"emoticons": ["🙂"]}
        assert rows[0].confidence == 0.85

    @pytest.mark.asyncio
    async def test_unknown_company(self, session_factory):
        with pytest.raises(UnknownCompanyError):
            await _drainer(session_factory, FakeAnalyzer()).drain("missing")


class TestAnalyzeReview:

    @pytest.mark.asyncio
    async def test_single_review_written(self, session_factory):
        ids = await seed_company(session_factory)
        connection_id = ids["connection_ids"][0]
        (review_id,) = await seed_reviews(session_factory, connection_id, 1, content="Cold food")
        analyzer = FakeAnalyzer()

        response = await _drainer(session_factory, analyzer).analyze_review(
            ReviewRecord(id=review_id, content="Cold food", rating=1, platform_connection_id=connection_id)
        )

        assert response == {
            "success": True,
            "reviewId": review_id,
            "sentiment": "negative",
            "keywordsExtracted": 1,
            "topicsIdentified": 1,
        }
        assert analyzer.calls == ["Cold food"]

    @pytest.mark.asyncio
    async def test_already_analyzed_is_skipped(self, session_factory):
        ids = await seed_company(session_factory)
        connection_id = ids["connection_ids"][0]
        (review_id,) = await seed_reviews(session_factory, connection_id, 1)
        record = ReviewRecord(id=review_id, content="Great", rating=5, platform_connection_id=connection_id)
        drainer = _drainer(session_factory, FakeAnalyzer())

        await drainer.analyze_review(record)
        second = await drainer.analyze_review(record)

        assert second == {"success": True, "message": "Review already analyzed"}
        assert await count_rows(session_factory, SentimentAnalysis) == 1

    @pytest.mark.asyncio
    async def test_empty_review_uses_rating(self, session_factory):
        ids = await seed_company(session_factory)
        connection_id = ids["connection_ids"][0]
        (review_id,) = await seed_reviews(session_factory, connection_id, 1, content="")
        analyzer = MagicMock()

        response = await _drainer(session_factory, analyzer).analyze_review(
            ReviewRecord(id=review_id, content="", rating=5, platform_connection_id=connection_id)
        )

        assert response["sentiment"] == "positive"
        assert response["keywordsExtracted"] == 0
        analyzer.analyze_single.assert_not_called()


class TestSentimentUpsert:

    @pytest.mark.asyncio
    async def test_second_analysis_overwrites_first(self, session_factory):
        ids = await seed_company(session_factory)
        connection_id = ids["connection_ids"][0]
        (review_id,) = await seed_reviews(session_factory, connection_id, 1)
        record = ReviewRecord(id=review_id, content="Great coffee", rating=5, platform_connection_id=connection_id)
        drainer = _drainer(session_factory, FakeAnalyzer())

        assert await drainer._upsert_sentiments([(record, _analysis("positive", 90))])
        assert await drainer._upsert_sentiments([(record, _analysis("negative", 20))])

        async with session_factory() as session:
            rows = (await session.execute(select(SentimentAnalysis))).scalars().all()
        assert len(rows) == 1
        assert rows[0].review_id == review_id
        assert rows[0].sentiment == "negative"
        assert rows[0].sentiment_score == pytest.approx(-0.6)


def test_drain_result_defaults():
    assert DrainResult().to_response()["success"] is True
