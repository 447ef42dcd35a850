"""Periodic correlation refresh daemon."""

import asyncio
from pathlib import Path

import structlog
from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.interval import IntervalTrigger

from symptom_insights.analysis.engine import now_ms
from symptom_insights.config import Settings
from symptom_insights.daemon.jobs import needs_analysis, refresh_correlations
from symptom_insights.models import CorrelationResult

logger = structlog.get_logger()

REFRESH_JOB_ID = "refresh_correlations"


class SchedulerService:
    """
    Keeps the dashboard correlations fresh.

    A check runs every ``analysis_check_minutes`` and re-runs the analysis
    once the last successful refresh is older than
    ``analysis_interval_hours``. A failed refresh leaves the previous results
    and timestamp in place, so the next check retries it.
    """

    def __init__(
        self,
        settings: Settings | None = None,
        config_path: Path | None = None,
    ) -> None:
        self.settings = settings or Settings()
        self.config_path = config_path
        self.scheduler = AsyncIOScheduler()
        self.last_refreshed_at: int | None = None
        self.latest_results: list[CorrelationResult] = []
        self._startup_task: asyncio.Task | None = None
        self._setup_jobs()

    def _setup_jobs(self) -> None:
        self.scheduler.add_job(
            self.refresh_if_stale,
            trigger=IntervalTrigger(minutes=self.settings.analysis_check_minutes),
            id=REFRESH_JOB_ID,
            name="Refresh Stale Correlations",
            replace_existing=True,
            # One analysis at a time; a late check is folded into the next one
            max_instances=1,
            coalesce=True,
        )

    @property
    def is_stale(self) -> bool:
        return needs_analysis(
            self.last_refreshed_at,
            max_age_hours=self.settings.analysis_interval_hours,
        )

    async def refresh(self) -> bool:
        """Run one refresh. Returns whether it succeeded."""
        try:
            results = await refresh_correlations(self.config_path)
        except Exception as e:
            logger.warning("Keeping previous correlations", error=str(e))
            return False

        self.latest_results = results
        self.last_refreshed_at = now_ms()
        return True

    async def refresh_if_stale(self) -> bool:
        if not self.is_stale:
            logger.debug("Correlations are fresh", last_refreshed_at=self.last_refreshed_at)
            return False
        return await self.refresh()

    def start(self) -> None:
        logger.info(
            "Starting correlation scheduler",
            check_minutes=self.settings.analysis_check_minutes,
            max_age_hours=self.settings.analysis_interval_hours,
        )
        self.scheduler.start()

    def stop(self) -> None:
        logger.info("Stopping correlation scheduler")
        self.scheduler.shutdown()

    async def run_forever(self) -> None:
        """Run until cancelled, refreshing once at startup."""
        self.start()
        self._startup_task = asyncio.get_running_loop().create_task(self.refresh())

        try:
            while True:
                await asyncio.sleep(1)
        except (KeyboardInterrupt, asyncio.CancelledError):
            self.stop()
