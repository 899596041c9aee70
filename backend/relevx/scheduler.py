"""Research Scheduler — periodic execution of due projects using asyncio.

Every `check_interval_minutes`, finds active projects whose next_run_at has
been reached (never early) and runs them in batches of `max_concurrent_runs`.
The same project is never started twice concurrently: the orchestrator refuses
projects already marked `running`.
"""

from __future__ import annotations

import asyncio
import logging
from datetime import datetime

from relevx.config import settings
from relevx.db.store import ResearchStore
from relevx.models.project import utcnow
from relevx.models.research import ResearchResult

logger = logging.getLogger(__name__)


class ResearchScheduler:
    """Runs due research projects on a configurable interval.

    Usage:
        scheduler = ResearchScheduler(store)
        await scheduler.start()
        # ... process runs ...
        scheduler.stop()
    """

    def __init__(
        self,
        store: ResearchStore,
        runner=None,
        check_interval_minutes: float | None = None,
        max_concurrent_runs: int | None = None,
        enabled: bool | None = None,
        startup_delay_seconds: float = 60.0,
    ) -> None:
        if runner is None:
            from relevx.engine.runtime import execute_research_for_project

            async def runner(user_id: str, project_id: str) -> ResearchResult:
                return await execute_research_for_project(user_id, project_id, store=store)

        self.store = store
        self.runner = runner
        self.check_interval_seconds = (
            check_interval_minutes or settings.scheduler_check_interval_minutes
        ) * 60
        self.max_concurrent_runs = max(1, max_concurrent_runs or settings.scheduler_max_concurrent_runs)
        self.enabled = settings.scheduler_enabled if enabled is None else enabled
        self.startup_delay_seconds = startup_delay_seconds
        self._task: asyncio.Task | None = None
        self._running = False
        self.last_check_at: datetime | None = None

    async def start(self) -> None:
        """Start the scheduler as a background task."""
        if not self.enabled:
            logger.info("Research scheduler disabled")
            return

        if self._running:
            logger.warning("Research scheduler already running")
            return

        self._running = True
        self._task = asyncio.create_task(self._loop())
        logger.info(
            "Research scheduler started (check interval: %.1f min, max concurrent: %d)",
            self.check_interval_seconds / 60,
            self.max_concurrent_runs,
        )

    def stop(self) -> None:
        """Stop the scheduler."""
        self._running = False
        if self._task and not self._task.done():
            self._task.cancel()
            logger.info("Research scheduler stopped")

    async def _loop(self) -> None:
        """Main scheduling loop: short startup delay, then check on every interval."""
        await asyncio.sleep(self.startup_delay_seconds)
        while self._running:
            try:
                await self.check_and_run()
                await asyncio.sleep(self.check_interval_seconds)
                if not self._running:
                    break
            except asyncio.CancelledError:
                break
            except Exception as e:
                logger.error("Research scheduler error: %s", e, exc_info=True)
                await asyncio.sleep(60)

    async def check_and_run(self, now: datetime | None = None) -> list[ResearchResult]:
        """Run every project whose next_run_at is at or before `now`. Returns the outcomes."""
        now = now or utcnow()
        self.last_check_at = now
        due = self.store.list_due_projects(now)
        if not due:
            logger.debug("No projects due")
            return []
        logger.info("Found %d due projects", len(due))

        results: list[ResearchResult] = []
        for start in range(0, len(due), self.max_concurrent_runs):
            batch = due[start:start + self.max_concurrent_runs]
            outcomes = await asyncio.gather(
                *(self.runner(p.user_id, p.id) for p in batch),
                return_exceptions=True,
            )
            for project, outcome in zip(batch, outcomes):
                if isinstance(outcome, BaseException):
                    logger.error("Research run for project %s raised: %s", project.id, outcome)
                    continue
                if outcome.success:
                    logger.info(
                        "Project %s: %d results in %d iterations",
                        project.id, len(outcome.relevant_results), outcome.iterations_used,
                    )
                else:
                    logger.warning("Project %s failed: %s", project.id, outcome.error)
                results.append(outcome)
        return results

    @property
    def is_running(self) -> bool:
        return self._running and self._task is not None and not self._task.done()

    def get_status(self) -> dict:
        """Get scheduler status for health checks."""
        return {
            "enabled": self.enabled,
            "running": self.is_running,
            "check_interval_minutes": self.check_interval_seconds / 60,
            "max_concurrent_runs": self.max_concurrent_runs,
            "last_check_at": self.last_check_at.isoformat() if self.last_check_at else None,
        }
