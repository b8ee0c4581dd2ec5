"""
Boresha Reviews - Review Fetch Orchestrator

Entry point for "refresh my reviews" on a company:

1. Authorize the caller (company owner or admin).
2. Enforce the per-company cooldown using the latest non-error fetch log.
3. Write a pending fetch log immediately so concurrent triggers see the
   cooldown.
4. Fan out over every active connection of every active location: pull
   reviews through the adapter, then store them.
5. Finalize the log and, when anything new was stored, schedule an
   enrichment drain in the background.
"""

import asyncio
import logging
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Any, Callable, Dict, List, Optional

from sqlalchemy import update
from sqlalchemy.exc import SQLAlchemyError

from constants import REVIEW_FETCH_COOLDOWN_HOURS
from database import (
    FetchCallLog,
    get_active_connections,
    get_active_locations,
    get_latest_fetch_log,
    new_id,
    require_company,
)
from review_sources import get_source
from review_sources.base_source import OutcomeKind
from review_store import ReviewStoreWriter

logger = logging.getLogger(__name__)


class NotAuthorizedError(Exception):
    """Caller is neither the company owner nor an admin."""
    pass


@dataclass
class ConnectionResult:
    connection_id: str
    inserted: int = 0
    warning: Optional[str] = None
    pending: bool = False


@dataclass
class TriggerResult:
    """Outcome of one trigger call."""
    skipped: bool = False
    reason: Optional[str] = None
    next_eligible_at: Optional[datetime] = None
    cooldown_hours: int = REVIEW_FETCH_COOLDOWN_HOURS
    locations_processed: int = 0
    reviews_inserted: int = 0
    warnings: List[str] = field(default_factory=list)
    pending_connections: List[str] = field(default_factory=list)
    log_id: Optional[str] = None

    def to_response(self) -> Dict[str, Any]:
        if self.skipped:
            return {
                "success": True,
                "skipped": True,
                "reason": self.reason,
                "nextEligibleAt": self.next_eligible_at.isoformat() + "Z" if self.next_eligible_at else None,
                "cooldownHours": self.cooldown_hours,
            }

        response = {
            "success": True,
            "skipped": False,
            "locationsProcessed": self.locations_processed,
            "reviewsInserted": self.reviews_inserted,
        }
        if self.warnings:
            response["warnings"] = self.warnings
        if self.pending_connections:
            response["pendingConnections"] = self.pending_connections
        return response


def is_authorized(company, caller: Dict[str, Any]) -> bool:
    return caller.get("role") == "admin" or (
        company.owner_id is not None and company.owner_id == caller.get("id")
    )


class FetchOrchestrator:
    """
    Args:
        session_factory: async_sessionmaker; each fan-out task opens its own session.
        source_resolver: network name -> review source adapter.
        schedule_drain: callable(company_id) fired when new reviews were stored.
        cooldown_hours: minimum hours between two fetches of one company.
    """

    def __init__(
        self,
        session_factory,
        source_resolver: Callable[[str], Any] = get_source,
        schedule_drain: Optional[Callable[[str], Any]] = None,
        cooldown_hours: int = REVIEW_FETCH_COOLDOWN_HOURS,
        clock: Optional[Callable[[], datetime]] = None,
    ):
        self.session_factory = session_factory
        self.source_resolver = source_resolver
        self.schedule_drain = schedule_drain
        self.cooldown_hours = cooldown_hours
        self.store = ReviewStoreWriter(session_factory)
        self._clock = clock or datetime.utcnow

    async def trigger(self, company_id: str, caller: Dict[str, Any]) -> TriggerResult:
        """
        Run a review fetch for every active connection of the company.

        Raises:
            UnknownCompanyError: company does not exist.
            NotAuthorizedError: caller is neither owner nor admin.
        """
        now = self._clock()
        cooldown = timedelta(hours=self.cooldown_hours)

        async with self.session_factory() as session:
            company = await require_company(session, company_id)
            if not is_authorized(company, caller):
                logger.warning(f"User {caller.get('id')} may not fetch reviews for company {company_id}")
                raise NotAuthorizedError("Not authorized to fetch reviews for this company")

            latest = await get_latest_fetch_log(session, company_id)
            if latest is not None and latest.triggered_at and now - latest.triggered_at < cooldown:
                next_eligible_at = latest.triggered_at + cooldown
                logger.info(f"Company {company_id}: fetch skipped, next eligible at {next_eligible_at}")
                return TriggerResult(
                    skipped=True,
                    reason=f"Review fetch already triggered within the last {self.cooldown_hours} hours",
                    next_eligible_at=next_eligible_at,
                    cooldown_hours=self.cooldown_hours,
                )

            log = FetchCallLog(
                id=new_id(),
                company_id=company_id,
                requested_by=caller.get("id"),
                status="pending",
                triggered_at=now,
            )
            session.add(log)
            await session.commit()
            log_id = log.id

        try:
            result = await self._fetch_all(company_id)
        except Exception as e:
            logger.error(f"Error in review fetch for company {company_id}: {e}", exc_info=True)
            await self._finish_log(log_id, status="error", error_message=str(e))
            raise

        result.log_id = log_id
        await self._finish_log(
            log_id,
            status="success",
            locations_processed=result.locations_processed,
            reviews_inserted=result.reviews_inserted,
            error_message="; ".join(result.warnings) if result.warnings else None,
        )

        if result.reviews_inserted > 0 and self.schedule_drain is not None:
            self.schedule_drain(company_id)

        logger.info(
            f"Company {company_id}: {result.locations_processed} locations, "
            f"{result.reviews_inserted} new reviews, {len(result.warnings)} warnings"
        )
        return result

    async def _fetch_all(self, company_id: str) -> TriggerResult:
        result = TriggerResult()
        jobs = []

        async with self.session_factory() as session:
            for location in await get_active_locations(session, company_id):
                connections = await get_active_connections(session, location.id)
                if not connections:
                    continue
                result.locations_processed += 1
                for connection, network in connections:
                    slug = connection.platform_location_id
                    if not network or not slug:
                        logger.warning(f"Skipping connection {connection.id}: missing network or slug")
                        result.warnings.append(f"Connection {connection.id}: missing network or slug")
                        continue
                    jobs.append((connection.id, network, slug))

        outcomes = await asyncio.gather(
            *[self._fetch_connection(cid, network, slug) for cid, network, slug in jobs]
        )

        for outcome in outcomes:
            result.reviews_inserted += outcome.inserted
            if outcome.warning:
                result.warnings.append(outcome.warning)
            if outcome.pending:
                result.pending_connections.append(outcome.connection_id)
        return result

    async def _fetch_connection(self, connection_id: str, network: str, slug: str) -> ConnectionResult:
        outcome = ConnectionResult(connection_id=connection_id)
        started_at = datetime.utcnow()
        try:
            source = self.source_resolver(network)
            fetched = await source.fetch_reviews(network, slug)

            if fetched.kind == OutcomeKind.PENDING:
                outcome.pending = True
                return outcome
            if fetched.kind == OutcomeKind.EMPTY:
                return outcome

            stats = await self.store.save(connection_id, fetched.reviews)
            await self.store.record_sync(connection_id, stats, started_at)
            outcome.inserted = stats.new
            if stats.error_message:
                outcome.warning = f"Connection {connection_id}: {stats.error_message}"
        except Exception as e:
            logger.error(f"Failed to trigger reviews for connection {connection_id}: {e}")
            outcome.warning = f"Connection {connection_id}: {e}"
        return outcome

    async def _finish_log(self, log_id: str, status: str, **values) -> None:
        try:
            async with self.session_factory() as session:
                await session.execute(
                    update(FetchCallLog)
                    .where(FetchCallLog.id == log_id)
                    .values(status=status, completed_at=datetime.utcnow(), **values)
                )
                await session.commit()
        except SQLAlchemyError as e:
            logger.error(f"Failed to update fetch log {log_id}: {e}")


_orchestrator: Optional[FetchOrchestrator] = None


def get_fetch_orchestrator() -> FetchOrchestrator:
    global _orchestrator
    if _orchestrator is None:
        from database import AsyncSessionLocal
        from services.task_service import task_service
        _orchestrator = FetchOrchestrator(AsyncSessionLocal, schedule_drain=task_service.schedule_drain)
    return _orchestrator
