"""Background correlation jobs."""

import asyncio
import time
import uuid
from collections.abc import Callable
from pathlib import Path
from dataclasses import dataclass
from enum import Enum

import structlog

from symptom_insights.analysis.engine import CorrelationEngine, now_ms
from symptom_insights.config import MS_PER_HOUR, Settings, load_engine_config
from symptom_insights.database import Database
from symptom_insights.models import CorrelationResult
from symptom_insights.repositories import PostgresEventRepository

logger = structlog.get_logger()

DEFAULT_MAX_AGE_HOURS = 24
DEFAULT_MAX_HISTORY = 20


class JobStatus(str, Enum):
    PENDING = "pending"
    RUNNING = "running"
    COMPLETED = "completed"
    FAILED = "failed"


@dataclass
class CorrelationJob:
    """State of one background analysis run."""

    id: str
    window_days: int
    status: JobStatus = JobStatus.PENDING
    result: list[CorrelationResult] | None = None
    error: str | None = None
    started_at: int | None = None
    completed_at: int | None = None

    @property
    def is_finished(self) -> bool:
        return self.status in (JobStatus.COMPLETED, JobStatus.FAILED)


JobListener = Callable[[CorrelationJob], None]


class JobTracker:
    """
    Runs correlation analyses as asyncio tasks and tracks their state.

    A job only carries a result once it has completed; a failed job carries
    the error message instead. Only the most recent ``max_history`` finished
    jobs are kept.
    """

    def __init__(
        self,
        clock: Callable[[], int] | None = None,
        max_history: int = DEFAULT_MAX_HISTORY,
    ):
        self.clock = clock or now_ms
        self.max_history = max_history
        self._jobs: dict[str, CorrelationJob] = {}
        self._tasks: dict[str, asyncio.Task] = {}
        self._listeners: dict[str, list[JobListener]] = {}

    def start(self, engine: CorrelationEngine, window_days: int = 90) -> str:
        """Schedule an analysis on the running loop and return its job id."""
        job = CorrelationJob(
            id=f"job_{int(time.time() * 1000)}_{uuid.uuid4().hex[:9]}",
            window_days=window_days,
            started_at=self.clock(),
        )
        self._jobs[job.id] = job
        self._notify(job)

        task = asyncio.get_running_loop().create_task(self._run(job, engine))
        self._tasks[job.id] = task
        task.add_done_callback(lambda _: self._tasks.pop(job.id, None))
        return job.id

    async def _run(self, job: CorrelationJob, engine: CorrelationEngine) -> None:
        job.status = JobStatus.RUNNING
        self._notify(job)

        try:
            results = await engine.run_correlation_analysis(job.window_days)
        except Exception as e:
            job.status = JobStatus.FAILED
            job.error = str(e) or type(e).__name__
            job.completed_at = self.clock()
            logger.error("Correlation job failed", job_id=job.id, error=job.error)
        else:
            job.result = results
            job.status = JobStatus.COMPLETED
            job.completed_at = self.clock()
            logger.info("Correlation job completed", job_id=job.id, results=len(results))

        self._notify(job)
        self._prune()

    def _prune(self) -> None:
        finished = [job_id for job_id, job in self._jobs.items() if job.is_finished]
        for job_id in finished[: max(0, len(finished) - self.max_history)]:
            del self._jobs[job_id]
            self._listeners.pop(job_id, None)

    def get(self, job_id: str) -> CorrelationJob | None:
        return self._jobs.get(job_id)

    async def wait(self, job_id: str) -> CorrelationJob:
        """Wait for a job to finish and return its final state."""
        job = self._jobs.get(job_id)
        if job is None:
            raise KeyError(job_id)
        task = self._tasks.get(job_id)
        if task is not None:
            await asyncio.shield(task)
        return job

    def subscribe(self, job_id: str, callback: JobListener) -> Callable[[], None]:
        """Register a callback for job updates. Returns an unsubscribe function."""
        self._listeners.setdefault(job_id, []).append(callback)

        def unsubscribe() -> None:
            listeners = self._listeners.get(job_id)
            if listeners and callback in listeners:
                listeners.remove(callback)
                if not listeners:
                    del self._listeners[job_id]

        return unsubscribe

    @property
    def last_completed_at(self) -> int | None:
        """Completion time of the most recent successful job."""
        times = [
            job.completed_at
            for job in self._jobs.values()
            if job.status == JobStatus.COMPLETED and job.completed_at is not None
        ]
        return max(times, default=None)

    def _notify(self, job: CorrelationJob) -> None:
        for listener in list(self._listeners.get(job.id, ())):
            try:
                listener(job)
            except Exception as e:
                logger.warning("Job listener failed", job_id=job.id, error=str(e))


def needs_analysis(
    last_analyzed_at: int | None,
    now: int | None = None,
    max_age_hours: float = DEFAULT_MAX_AGE_HOURS,
) -> bool:
    """Check whether stored correlations are missing or stale."""
    if last_analyzed_at is None:
        return True
    now = now_ms() if now is None else now
    return (now - last_analyzed_at) / MS_PER_HOUR > max_age_hours


async def refresh_correlations(
    config_path: Path | None = None,
) -> list[CorrelationResult]:
    """
    Job: Recompute correlations from Postgres.

    Args:
        config_path: Engine YAML; defaults to ``engine.yaml`` in the
            configured config directory when that file exists

    Returns:
        Ranked dashboard results

    Raises:
        Whatever the load or analysis raised, after logging it
    """
    logger.info("Starting correlation refresh job")
    settings = Settings()
    db = Database(settings.database_url, settings.db_pool_size)

    try:
        if config_path is None:
            default_path = settings.config_dir / "engine.yaml"
            config_path = default_path if default_path.exists() else None
        config = load_engine_config(config_path) if config_path else None

        await db.connect()
        engine = CorrelationEngine(PostgresEventRepository(db), config)
        results = await engine.run_correlation_analysis(settings.default_window_days)
        top = engine.rank(results)

    except Exception as e:
        logger.error("Correlation refresh job failed", error=str(e))
        raise

    finally:
        await db.close()

    logger.info(
        "Correlation refresh completed",
        results=len(results),
        top=[f"{r.cause_label} -> {r.effect_label}" for r in top],
    )
    return top
