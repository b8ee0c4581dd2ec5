"""
Boresha Reviews - Review Store Writer

Persists normalized StandardReview records for one platform connection.

Two write paths:
- save(): pull mode. Insert-if-absent per review; existing rows are left
  untouched. Each review is its own unit of failure.
- upsert_batch(): push mode (webhook). Chunked upsert that refreshes the
  mutable fields of reviews the provider re-sends.

Deduplication relies on the (platform_connection_id, external_id) unique
constraint, so concurrent writers cannot create duplicates.
"""

import logging
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Dict, List, Optional, Sequence

from sqlalchemy import select, update
from sqlalchemy.exc import SQLAlchemyError

from constants import WEBHOOK_UPSERT_BATCH_SIZE
from database import PlatformConnection, Review, SyncLog, dialect_insert, new_id
from metrics import track_reviews_ingested
from review_sources.base_source import StandardReview

logger = logging.getLogger(__name__)

# Fields a webhook re-delivery may change on an existing review
_MUTABLE_FIELDS = (
    "author_name",
    "author_avatar_url",
    "rating",
    "title",
    "content",
    "reply_content",
    "reply_at",
    "raw_data",
)


@dataclass
class SyncStats:
    """Outcome of writing one batch of reviews for a connection."""
    fetched: int = 0
    new: int = 0
    updated: int = 0
    duplicates: int = 0
    errors: List[str] = field(default_factory=list)

    @property
    def error_message(self) -> Optional[str]:
        return "; ".join(self.errors) if self.errors else None

    @property
    def saved(self) -> int:
        return self.new + self.updated

    def to_dict(self) -> Dict[str, Any]:
        result = {"fetched": self.fetched, "new": self.new}
        if self.updated:
            result["updated"] = self.updated
        if self.errors:
            result["errorMessage"] = self.error_message
        return result


class ReviewStoreWriter:
    """Writes reviews through a session factory (one session per call)."""

    def __init__(self, session_factory, batch_size: int = WEBHOOK_UPSERT_BATCH_SIZE):
        self.session_factory = session_factory
        self.batch_size = batch_size

    async def save(self, connection_id: str, reviews: Sequence[StandardReview], source: str = "pull") -> SyncStats:
        """
        Insert reviews that are not stored yet.

        A review already recorded for the connection counts as a duplicate,
        not an error. A failing insert is recorded and the loop moves on.
        """
        stats = SyncStats(fetched=len(reviews))

        async with self.session_factory() as session:
            for review in reviews:
                row = review.to_row(connection_id)
                row["id"] = new_id()
                stmt = (
                    dialect_insert(session, Review)
                    .values(**row)
                    .on_conflict_do_nothing(index_elements=["platform_connection_id", "external_id"])
                    .returning(Review.id)
                )
                try:
                    result = await session.execute(stmt)
                    inserted = result.first()
                    await session.commit()
                except SQLAlchemyError as e:
                    await session.rollback()
                    logger.error(f"Failed to insert review {review.external_id}: {e}")
                    stats.errors.append(f"Failed to insert review {review.external_id}: {e}")
                    continue

                if inserted:
                    stats.new += 1
                else:
                    stats.duplicates += 1

        track_reviews_ingested(source, new=stats.new, duplicate=stats.duplicates, errors=len(stats.errors))
        logger.info(
            f"Connection {connection_id}: {stats.fetched} fetched, {stats.new} new, "
            f"{stats.duplicates} already stored, {len(stats.errors)} errors"
        )
        return stats

    async def upsert_batch(self, connection_id: str, reviews: Sequence[StandardReview], source: str = "webhook") -> SyncStats:
        """Upsert reviews in chunks; a failing chunk does not stop later chunks."""
        stats = SyncStats(fetched=len(reviews))

        async with self.session_factory() as session:
            for start in range(0, len(reviews), self.batch_size):
                chunk = list(reviews[start:start + self.batch_size])
                batch_number = start // self.batch_size + 1
                # Last write wins when a page repeats an external id
                rows_by_external = {}
                now = datetime.utcnow()
                for review in chunk:
                    row = review.to_row(connection_id)
                    row.update(id=new_id(), created_at=now, updated_at=now)
                    rows_by_external[review.external_id] = row
                rows = list(rows_by_external.values())

                try:
                    existing = await session.execute(
                        select(Review.external_id).where(
                            Review.platform_connection_id == connection_id,
                            Review.external_id.in_(list(rows_by_external)),
                        )
                    )
                    existing_ids = set(existing.scalars().all())

                    stmt = dialect_insert(session, Review).values(rows)
                    set_ = {name: getattr(stmt.excluded, name) for name in _MUTABLE_FIELDS}
                    set_["updated_at"] = now
                    stmt = stmt.on_conflict_do_update(
                        index_elements=["platform_connection_id", "external_id"],
                        set_=set_,
                    )
                    await session.execute(stmt)
                    await session.commit()
                except SQLAlchemyError as e:
                    await session.rollback()
                    logger.error(f"Failed to upsert batch {batch_number}: {e}")
                    stats.errors.append(f"Failed to upsert batch {batch_number}: {e}")
                    continue

                stats.updated += len(existing_ids)
                stats.new += len(rows) - len(existing_ids)

        track_reviews_ingested(source, new=stats.new, updated=stats.updated, errors=len(stats.errors))
        logger.info(
            f"Connection {connection_id}: upserted {stats.saved} of {stats.fetched} reviews "
            f"({stats.new} new, {stats.updated} updated)"
        )
        return stats

    # ------------------------------------------------------------------
    # Connection bookkeeping (failures are logged, never raised)
    # ------------------------------------------------------------------

    async def mark_connection_synced(self, connection_id: str, job_id: Optional[str], fetch_count: int) -> None:
        """Record the last job id and fetch count on the connection."""
        now = datetime.utcnow()
        try:
            async with self.session_factory() as session:
                await session.execute(
                    update(PlatformConnection)
                    .where(PlatformConnection.id == connection_id)
                    .values(
                        connection_metadata={
                            "zembraJobId": job_id,
                            "lastFetchTime": now.isoformat(),
                            "lastFetchCount": fetch_count,
                        },
                        last_sync_at=now,
                        updated_at=now,
                    )
                )
                await session.commit()
        except SQLAlchemyError as e:
            logger.error(f"Error updating platform connection {connection_id}: {e}")

    async def record_sync(self, connection_id: str, stats: SyncStats, started_at: datetime) -> None:
        """Write the sync_logs audit row for one connection sync."""
        try:
            async with self.session_factory() as session:
                session.add(SyncLog(
                    platform_connection_id=connection_id,
                    status="failed" if stats.errors else "success",
                    reviews_fetched=stats.fetched,
                    reviews_new=stats.new,
                    reviews_updated=stats.updated,
                    error_message=stats.error_message,
                    started_at=started_at,
                    completed_at=datetime.utcnow(),
                ))
                await session.commit()
        except SQLAlchemyError as e:
            logger.error(f"Error creating sync log for connection {connection_id}: {e}")
