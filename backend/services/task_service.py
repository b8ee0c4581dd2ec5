"""
Boresha Reviews - Background Enrichment Task Service

Schedules enrichment drains as fire-and-forget asyncio tasks, at most one
running drain per company. A request that arrives while a drain is
running is remembered and served by one follow-up drain. Task state lives in an in-memory dict so the
status endpoint can report the last result or error per company.

Usage:
    from services.task_service import task_service
    task_service.schedule_drain(company_id)
    status = task_service.get_status(company_id)
"""
import asyncio
import logging
from datetime import datetime, timedelta
from typing import Any, Callable, Dict, Optional, Set

logger = logging.getLogger(__name__)


class EnrichmentTaskService:
    """Tracks one background drain per company with auto-pruning of old state."""

    def __init__(self, drainer_factory: Optional[Callable[[], Any]] = None, prune_after_hours: int = 24):
        self._drainer_factory = drainer_factory
        self._tasks: Dict[str, Dict[str, Any]] = {}
        self._running: Dict[str, asyncio.Task] = {}
        self._rerun_requested: Set[str] = set()
        self._prune_after = timedelta(hours=prune_after_hours)

    def _get_drainer(self):
        if self._drainer_factory is None:
            from enrichment import get_enrichment_drainer
            self._drainer_factory = get_enrichment_drainer
        return self._drainer_factory()

    def is_running(self, company_id: str) -> bool:
        task = self._running.get(company_id)
        return task is not None and not task.done()

    def schedule_drain(self, company_id: str, retry_count: int = 0) -> bool:
        """
        Start a background drain for the company.

        Returns False when a drain is already running for it; the request is
        then queued and one more drain starts after the running one finishes.
        Must be called from inside a running event loop.
        """
        if self.is_running(company_id):
            self._rerun_requested.add(company_id)
            self._tasks[company_id]["rerun_requested"] = True
            logger.info(f"Drain already running for company {company_id}, queued a follow-up run")
            return False

        self._tasks[company_id] = {
            "company_id": company_id,
            "status": "running",
            "started_at": datetime.utcnow().isoformat(),
            "completed_at": None,
            "result": None,
            "error": None,
            "rerun_requested": False,
        }
        self._running[company_id] = asyncio.create_task(self._run(company_id, retry_count))
        logger.info(f"Scheduled sentiment drain for company {company_id}")
        self.prune()
        return True

    async def _run(self, company_id: str, retry_count: int):
        cancelled = False
        try:
            result = await self._get_drainer().drain(company_id, retry_count=retry_count)
        except asyncio.CancelledError:
            cancelled = True
            self.mark_completed(company_id, error="cancelled")
            raise
        except Exception as e:
            logger.error(f"Background drain failed for company {company_id}: {e}", exc_info=True)
            self.mark_completed(company_id, error=str(e))
        else:
            self.mark_completed(company_id, result=result.to_response())
        finally:
            self._running.pop(company_id, None)
            rerun = company_id in self._rerun_requested
            self._rerun_requested.discard(company_id)
            if rerun and not cancelled:
                logger.info(f"Starting queued follow-up drain for company {company_id}")
                self.schedule_drain(company_id)

    def mark_completed(self, company_id: str, result: Any = None, error: str = None):
        """Mark a company's drain as completed or failed."""
        task = self._tasks.get(company_id)
        if task is None:
            return
        if error:
            task["status"] = "failed"
            task["error"] = error
        else:
            task["status"] = "completed"
            task["result"] = result
        task["completed_at"] = datetime.utcnow().isoformat()

    def get_status(self, company_id: str) -> Optional[Dict[str, Any]]:
        """Latest drain state for a company, or None if none was scheduled."""
        return self._tasks.get(company_id)

    async def wait(self, company_id: str) -> None:
        """Wait for the running drain of a company, including a queued follow-up."""
        while True:
            task = self._running.get(company_id)
            if task is None:
                return
            await asyncio.gather(task, return_exceptions=True)

    def prune(self):
        """Drop finished entries older than the threshold."""
        cutoff = datetime.utcnow() - self._prune_after
        stale_ids = [
            cid
            for cid, task in self._tasks.items()
            if task.get("status") in ("completed", "failed")
            and task.get("completed_at")
            and datetime.fromisoformat(task["completed_at"]) < cutoff
        ]
        for cid in stale_ids:
            del self._tasks[cid]
        if stale_ids:
            logger.debug("Pruned %d stale drain entries", len(stale_ids))

    async def shutdown(self):
        """Cancel running drains (application shutdown)."""
        self._rerun_requested.clear()
        running = [t for t in self._running.values() if not t.done()]
        for task in running:
            task.cancel()
        if running:
            await asyncio.gather(*running, return_exceptions=True)
            logger.info(f"Cancelled {len(running)} running drains")

    def count(self) -> int:
        """Return the number of running drains."""
        return sum(1 for t in self._running.values() if not t.done())


# Singleton instance
task_service = EnrichmentTaskService()


def get_task_service() -> EnrichmentTaskService:
    return task_service
