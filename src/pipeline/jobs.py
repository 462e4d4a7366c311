"""
Background job runner.

Long operations (multi-page review fetches, all-phase generation) are
recorded as ``BackgroundJob`` rows and run as asyncio tasks. The caller gets
the job id back at once and polls the row. There is no resume: a job whose
process went away is swept to ``failed`` once it has been idle longer than
``STALE_JOB_MINUTES``.
"""

import asyncio
from datetime import datetime, timedelta
from typing import Any, Awaitable, Callable, Optional

from pydantic import BaseModel as PydanticBaseModel

from src.config.settings import Settings, get_settings
from src.models.schemas import BackgroundJob, JobStatus, utc_now
from src.storage.store import Store
from src.utils.logger import get_logger
from src.utils.retry import NotFoundError

logger = get_logger(__name__)

JobFactory = Callable[[], Awaitable[Any]]

STALE_JOB_ERROR = "Timed out"


def _as_result(value: Any) -> Optional[dict[str, Any]]:
    if value is None:
        return None
    if isinstance(value, PydanticBaseModel):
        return value.model_dump(mode="json")
    if isinstance(value, dict):
        return value
    return {"value": value}


class BackgroundJobRunner:
    """Dispatches coroutines as tracked background jobs."""

    def __init__(self, store: Store, settings: Optional[Settings] = None):
        self.store = store
        self.settings = settings or get_settings()
        self._tasks: dict[str, asyncio.Task] = {}

    async def dispatch(
        self,
        kind: str,
        factory: JobFactory,
        params: Optional[dict[str, Any]] = None,
    ) -> str:
        """
        Record a pending job and start it in the background.

        Args:
            kind: Job kind, e.g. ``fetch_reviews``
            factory: Zero-argument callable returning the awaitable to run
            params: Request parameters stored on the job row

        Returns:
            The job id, before the work has started
        """
        job = await self.store.insert_job(
            BackgroundJob(kind=kind, status=JobStatus.PENDING.value, params=dict(params or {}))
        )
        self._tasks[job.id] = asyncio.create_task(self._run(job.id, factory))
        logger.info("Background job dispatched", job_id=job.id, kind=kind)
        return job.id

    async def _run(self, job_id: str, factory: JobFactory) -> None:
        await self.store.update_job(job_id, {"status": JobStatus.RUNNING.value})
        try:
            result = await factory()
        except Exception as e:
            logger.error("Background job failed", job_id=job_id, error=str(e))
            await self.store.update_job(
                job_id,
                {"status": JobStatus.FAILED.value, "error": str(e) or type(e).__name__},
            )
            return
        await self.store.update_job(
            job_id,
            {"status": JobStatus.COMPLETED.value, "result": _as_result(result), "error": None},
        )
        logger.info("Background job completed", job_id=job_id)

    async def sweep_stale(self, now: Optional[datetime] = None) -> list[str]:
        """Fail every unfinished job idle for longer than the stale window."""
        cutoff = (now or utc_now()) - timedelta(minutes=self.settings.stale_job_minutes)
        swept = []
        for job in await self.store.list_jobs():
            if job.is_terminal or job.updated_at >= cutoff:
                continue
            await self.store.update_job(
                job.id, {"status": JobStatus.FAILED.value, "error": STALE_JOB_ERROR}
            )
            swept.append(job.id)
        if swept:
            logger.warning("Stale background jobs failed", count=len(swept), job_ids=swept)
        return swept

    async def get_job(self, job_id: str) -> BackgroundJob:
        await self.sweep_stale()
        job = await self.store.get_job(job_id)
        if job is None:
            raise NotFoundError("Job", job_id)
        return job

    async def list_jobs(self) -> list[BackgroundJob]:
        await self.sweep_stale()
        return await self.store.list_jobs()

    async def wait_for(self, job_id: str) -> BackgroundJob:
        """Block until a job dispatched by this runner has finished."""
        task = self._tasks.get(job_id)
        if task is not None:
            await task
            self._tasks.pop(job_id, None)
        job = await self.store.get_job(job_id)
        if job is None:
            raise NotFoundError("Job", job_id)
        return job


__all__ = ["JobFactory", "STALE_JOB_ERROR", "BackgroundJobRunner"]
