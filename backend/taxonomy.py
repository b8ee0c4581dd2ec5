"""
Boresha Reviews - Keyword and Topic Taxonomy

Links an analyzed review to global keywords and company-scoped topics.

- Keywords are deduplicated by normalized text (trimmed, upper-cased).
- Topics are deduplicated by (company_id, name) exactly as the model
  returned the name; case variants are distinct topics.
- Join rows are unique per (review, keyword) and (review, topic), so
  re-running enrichment for a review never duplicates links.

Callers own the session and commit.
"""

import logging
from datetime import datetime
from typing import Iterable, List

from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession

from database import Keyword, ReviewKeyword, ReviewTopic, Topic, dialect_insert, new_id
from sentiment_analyzer import KeywordResult, TopicResult

logger = logging.getLogger(__name__)


def normalize_keyword(text: str) -> str:
    return (text or "").strip().upper()


async def _upsert_keyword(session: AsyncSession, keyword: KeywordResult) -> str:
    normalized = normalize_keyword(keyword.text)
    await session.execute(
        dialect_insert(session, Keyword)
        .values(
            id=new_id(),
            text=keyword.text.strip(),
            normalized_text=normalized,
            category=keyword.category or "other",
            language="en",
            created_at=datetime.utcnow(),
        )
        .on_conflict_do_nothing(index_elements=["normalized_text"])
    )
    result = await session.execute(select(Keyword.id).where(Keyword.normalized_text == normalized))
    return result.scalar_one()


async def link_keywords(
    session: AsyncSession,
    review_id: str,
    connection_id: str,
    keywords: Iterable[KeywordResult],
) -> int:
    """Upsert keywords and link them to the review. Returns keywords linked."""
    linked = 0
    for keyword in keywords:
        if not normalize_keyword(keyword.text):
            continue
        keyword_id = await _upsert_keyword(session, keyword)
        await session.execute(
            dialect_insert(session, ReviewKeyword)
            .values(
                id=new_id(),
                review_id=review_id,
                keyword_id=keyword_id,
                platform_connection_id=connection_id,
                frequency=1,
                relevance_score=keyword.relevance,
                created_at=datetime.utcnow(),
            )
            .on_conflict_do_nothing(index_elements=["review_id", "keyword_id"])
        )
        linked += 1
    return linked


async def _upsert_topic(
    session: AsyncSession,
    company_id: str,
    topic: TopicResult,
    sentiment: str,
    topic_names: List[str],
) -> str:
    result = await session.execute(
        select(Topic).where(Topic.company_id == company_id, Topic.name == topic.name)
    )
    existing = result.scalar_one_or_none()

    if existing is None:
        now = datetime.utcnow()
        inserted = await session.execute(
            dialect_insert(session, Topic)
            .values(
                id=new_id(),
                company_id=company_id,
                name=topic.name,
                category=topic.category or "neutral",
                description=topic.description or "",
                keywords=list(topic_names),
                occurrence_count=1,
                sentiment_distribution={sentiment: 1},
                is_active=True,
                created_at=now,
                updated_at=now,
            )
            .on_conflict_do_nothing(index_elements=["company_id", "name"])
            .returning(Topic.id)
        )
        topic_id = inserted.scalar_one_or_none()
        if topic_id is not None:
            return topic_id
        # Lost the race to a concurrent writer; fall through to the update path
        result = await session.execute(
            select(Topic).where(Topic.company_id == company_id, Topic.name == topic.name)
        )
        existing = result.scalar_one()

    distribution = dict(existing.sentiment_distribution or {})
    distribution[sentiment] = distribution.get(sentiment, 0) + 1
    merged_keywords = list(existing.keywords or [])
    for name in topic_names:
        if name not in merged_keywords:
            merged_keywords.append(name)

    await session.execute(
        update(Topic)
        .where(Topic.id == existing.id)
        .values(
            occurrence_count=Topic.occurrence_count + 1,
            sentiment_distribution=distribution,
            keywords=merged_keywords,
            updated_at=datetime.utcnow(),
        )
    )
    return existing.id


async def link_topics(
    session: AsyncSession,
    company_id: str,
    review_id: str,
    connection_id: str,
    topics: Iterable[TopicResult],
    sentiment: str,
) -> int:
    """
    Upsert company topics and link them to the review.

    The topic's sentiment_distribution bucket for this review's sentiment
    is incremented. Returns topics linked.
    """
    unique = {}
    for topic in topics:
        if topic.name and topic.name.strip() and topic.name not in unique:
            unique[topic.name] = topic
    topics = list(unique.values())
    topic_names = list(unique)
    linked = 0
    for topic in topics:
        topic_id = await _upsert_topic(session, company_id, topic, sentiment, topic_names)
        await session.execute(
            dialect_insert(session, ReviewTopic)
            .values(
                id=new_id(),
                review_id=review_id,
                topic_id=topic_id,
                platform_connection_id=connection_id,
                relevance_score=topic.relevance,
                created_at=datetime.utcnow(),
            )
            .on_conflict_do_nothing(index_elements=["review_id", "topic_id"])
        )
        linked += 1
    return linked
