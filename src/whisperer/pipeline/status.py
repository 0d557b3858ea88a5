"""Job status service and the timeout housekeeping sweep.

Status reads go straight to the database, so a poll never sees a state
older than the last committed transition. The sweep runs every
``housekeeping_interval_seconds``; a job over budget may therefore show
``processing`` for up to that long before it is forced to ``error``.
"""

import asyncio
import logging
from datetime import datetime, timedelta
from typing import TYPE_CHECKING, Optional
from uuid import UUID

from whisperer.config import Settings, settings as default_settings
from whisperer.models import JobHistory, JobState, JobStatus, utcnow
from whisperer.storage import Database, DocumentRepository, JobRepository

if TYPE_CHECKING:
    from .runner import JobRunner

logger = logging.getLogger(__name__)


class JobStatusService:
    """Answers status polls and expires jobs that ran out of time."""

    def __init__(
        self,
        database: Database,
        settings: Optional[Settings] = None,
        runner: Optional["JobRunner"] = None,
    ):
        self.database = database
        self.settings = settings or default_settings
        self.runner = runner

    async def get_status(self, job_id: UUID) -> JobStatus:
        """Current state and progress of a job. Raises NotFoundError."""
        async with self.database.session() as session:
            job = await JobRepository(session).require(job_id)
        return job.status()

    async def history(self, document_id: UUID) -> list[JobHistory]:
        """Every job of a document with its status events, newest job first."""
        async with self.database.session() as session:
            await DocumentRepository(session).require(document_id)
            return await JobRepository(session).history(document_id)

    async def expire_stale_jobs(self, now: Optional[datetime] = None) -> list[UUID]:
        """Force jobs older than the timeout budget to ``error``.

        Returns the ids of the jobs this sweep expired.
        """
        timeout = self.settings.job_timeout_seconds
        cutoff = (now or utcnow()) - timedelta(seconds=timeout)
        expired = []
        async with self.database.session() as session:
            jobs = JobRepository(session)
            for job in await jobs.list_expired(cutoff):
                moved = await jobs.transition(
                    job.id,
                    JobState.ERROR,
                    error=f"timeout: job exceeded {timeout:g}s while {job.state.value}",
                )
                if moved:
                    expired.append(job.id)
                    logger.warning("Expired job=%s document=%s (%s)", job.id, job.document_id, job.state.value)

        if self.runner is not None:
            for job_id in expired:
                await self.runner.cancel(job_id)
        return expired


class Housekeeper:
    """Background loop running the timeout sweep."""

    def __init__(self, status: JobStatusService, interval: Optional[float] = None):
        self.status = status
        self.interval = interval or status.settings.housekeeping_interval_seconds
        self._task: Optional[asyncio.Task] = None

    def start(self) -> None:
        if self._task is None or self._task.done():
            self._task = asyncio.create_task(self._loop(), name="housekeeper")

    async def stop(self) -> None:
        if self._task is None:
            return
        self._task.cancel()
        await asyncio.gather(self._task, return_exceptions=True)
        self._task = None

    async def _loop(self) -> None:
        while True:
            await asyncio.sleep(self.interval)
            try:
                await self.status.expire_stale_jobs()
            except Exception:
                logger.exception("Timeout sweep failed; will retry in %.0fs", self.interval)
