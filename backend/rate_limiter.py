"""
Boresha Reviews - Shared LLM Rate Limiter

Sliding-window limiter backed by the llm_rate_limit_log table, so every
worker and process sharing the database shares the same budget.

gate() must be awaited immediately before each LLM request:
1. Count calls in the last 60s.
2. At the limit: sleep until the oldest counted call leaves the window
   (anchored at 61s). Under the limit: sleep a small random jitter.
3. Record this call.
4. About 1% of calls prune rows that left the window.
"""

import asyncio
import logging
import random
from datetime import datetime, timedelta
from typing import Callable, Optional

from sqlalchemy import delete, select
from sqlalchemy.exc import SQLAlchemyError

from constants import (
    LLM_MAX_REQUESTS_PER_MINUTE,
    RATE_LIMIT_CLEANUP_PROBABILITY,
    RATE_LIMIT_ERROR_BACKOFF_SECONDS,
    RATE_LIMIT_JITTER_SECONDS,
    RATE_LIMIT_WAIT_ANCHOR_SECONDS,
    RATE_LIMIT_WINDOW_SECONDS,
)
from database import RateLimitLog
from metrics import track_rate_limit_wait

logger = logging.getLogger(__name__)


class LLMRateLimiter:
    """DB-backed sliding-window gate for outbound LLM calls."""

    def __init__(
        self,
        session_factory,
        max_per_minute: int = LLM_MAX_REQUESTS_PER_MINUTE,
        sleep=None,
        random_fn: Optional[Callable[[], float]] = None,
        clock: Optional[Callable[[], datetime]] = None,
    ):
        self.session_factory = session_factory
        self.max_per_minute = max_per_minute
        self._sleep = sleep or asyncio.sleep
        self._random = random_fn or random.random
        self._clock = clock or datetime.utcnow

    def compute_wait(self, window_timestamps, now: datetime) -> float:
        """Seconds to wait given the timestamps currently inside the window."""
        if len(window_timestamps) < self.max_per_minute:
            return self._random() * RATE_LIMIT_JITTER_SECONDS

        oldest = min(window_timestamps)
        elapsed = (now - oldest).total_seconds()
        return max(0.0, RATE_LIMIT_WAIT_ANCHOR_SECONDS - elapsed)

    async def gate(self) -> float:
        """Wait for a slot and record the call. Returns the seconds waited."""
        now = self._clock()
        window_start = now - timedelta(seconds=RATE_LIMIT_WINDOW_SECONDS)

        try:
            async with self.session_factory() as session:
                result = await session.execute(
                    select(RateLimitLog.created_at)
                    .where(RateLimitLog.created_at >= window_start)
                    .order_by(RateLimitLog.created_at.desc())
                    .limit(self.max_per_minute)
                )
                timestamps = list(result.scalars().all())
        except SQLAlchemyError as e:
            logger.warning(f"Rate limit check failed, backing off: {e}")
            await self._sleep(RATE_LIMIT_ERROR_BACKOFF_SECONDS)
            return RATE_LIMIT_ERROR_BACKOFF_SECONDS

        wait = self.compute_wait(timestamps, now)
        if len(timestamps) >= self.max_per_minute:
            logger.info(
                f"Rate limit reached ({len(timestamps)}/{self.max_per_minute}), waiting {wait:.1f}s"
            )
        if wait > 0:
            await self._sleep(wait)
        track_rate_limit_wait(wait)

        await self._record_call()

        if self._random() < RATE_LIMIT_CLEANUP_PROBABILITY:
            await self.cleanup()

        return wait

    async def _record_call(self) -> None:
        try:
            async with self.session_factory() as session:
                session.add(RateLimitLog(created_at=self._clock()))
                await session.commit()
        except SQLAlchemyError as e:
            logger.warning(f"Failed to record LLM call in rate limit log: {e}")

    async def cleanup(self) -> int:
        """Delete log rows older than the window. Never raises."""
        cutoff = self._clock() - timedelta(seconds=RATE_LIMIT_WINDOW_SECONDS)
        try:
            async with self.session_factory() as session:
                result = await session.execute(
                    delete(RateLimitLog).where(RateLimitLog.created_at < cutoff)
                )
                await session.commit()
                return result.rowcount or 0
        except SQLAlchemyError as e:
            logger.warning(f"Rate limit log cleanup failed: {e}")
            return 0
