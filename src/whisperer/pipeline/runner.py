"""Job runner - drives one job from queued to a terminal state.

Stages and the progress they report:

    10  processing (worker called)
    10-50  worker progress, scaled
    50  draft validated and stored
    80  reconciliation done
    100 record published, job complete

Each job runs in its own asyncio task under a wall-clock budget. Whatever
happens inside, the job ends ``complete`` or ``error``; it is never left
``processing``.
"""

import asyncio
import logging
from typing import Optional
from uuid import UUID

import pydantic

from whisperer.config import Settings, settings as default_settings
from whisperer.errors import (
    InvalidTransition,
    ReconciliationError,
    WorkerError,
    WorkerTimeout,
)
from whisperer.models import Document, DraftRecord, Job, JobKind, JobState
from whisperer.reconcile import ReconciliationEngine
from whisperer.storage import Database, DocumentRepository, ExtractionStore, JobRepository

from .corrections import apply_overrides
from .worker import ExtractionWorker

logger = logging.getLogger(__name__)

PROGRESS_STARTED = 10
PROGRESS_EXTRACTED = 50
PROGRESS_RECONCILED = 80


class JobRunner:
    """Runs jobs as background tasks.

    Args:
        database: Database holding jobs and documents
        store: Extraction store for drafts and records
        worker: Extraction worker
        engine: Reconciliation engine
        settings: Timeout and retry settings
    """

    def __init__(
        self,
        database: Database,
        store: ExtractionStore,
        worker: ExtractionWorker,
        engine: ReconciliationEngine,
        settings: Optional[Settings] = None,
    ):
        self.database = database
        self.store = store
        self.worker = worker
        self.engine = engine
        self.settings = settings or default_settings
        self._tasks: dict[UUID, asyncio.Task] = {}

    @property
    def active_jobs(self) -> list[UUID]:
        return list(self._tasks)

    def launch(self, job_id: UUID) -> asyncio.Task:
        """Start a job in the background. Launching a running job is a no-op."""
        task = self._tasks.get(job_id)
        if task is not None and not task.done():
            return task
        task = asyncio.create_task(self.run(job_id), name=f"job-{job_id}")
        self._tasks[job_id] = task
        task.add_done_callback(lambda _: self._tasks.pop(job_id, None))
        return task

    async def wait(self, job_id: UUID) -> None:
        """Block until a launched job's task finishes."""
        task = self._tasks.get(job_id)
        if task is not None:
            await asyncio.gather(task, return_exceptions=True)

    async def cancel(self, job_id: UUID) -> bool:
        """Cancel a job's task, if this process is running it."""
        task = self._tasks.get(job_id)
        if task is None or task.done():
            return False
        task.cancel()
        await asyncio.gather(task, return_exceptions=True)
        logger.info("Cancelled task for job=%s", job_id)
        return True

    async def shutdown(self) -> None:
        """Fail and cancel every job still running in this process."""
        job_ids = list(self._tasks)
        for job_id in job_ids:
            await self._fail(job_id, "internal error: service shut down before the job finished")
        for job_id in job_ids:
            await self.cancel(job_id)

    async def run(self, job_id: UUID) -> None:
        """Run one job to a terminal state. Never raises except on cancellation."""
        timeout = self.settings.job_timeout_seconds
        try:
            await asyncio.wait_for(self._execute(job_id), timeout=timeout)
        except asyncio.TimeoutError:
            await self._fail(job_id, f"timeout: job exceeded {timeout:g}s")
        except WorkerTimeout as exc:
            await self._fail(job_id, f"timeout: {exc}")
        except WorkerError as exc:
            await self._fail(job_id, f"extraction failed: {exc}")
        except ReconciliationError as exc:
            await self._fail(job_id, f"reconciliation failed: {exc}")
        except InvalidTransition as exc:
            # Someone else (the timeout sweep) already finished the job
            logger.warning("Job=%s ended elsewhere: %s", job_id, exc)
        except Exception as exc:
            logger.exception("Job=%s crashed", job_id)
            await self._fail(job_id, f"internal error: {type(exc).__name__}: {exc}")

    async def _execute(self, job_id: UUID) -> None:
        async with self.database.session() as session:
            jobs = JobRepository(session)
            job = await jobs.require(job_id)
            document = await DocumentRepository(session).require(job.document_id)
            started = await jobs.transition(
                job_id, JobState.PROCESSING, progress=PROGRESS_STARTED, message=f"{job.kind.value} started"
            )
        if not started:
            logger.info("Job=%s is %s; not starting", job_id, job.state.value)
            return
        logger.info("Job=%s (%s) processing document=%s", job_id, job.kind.value, document.id)

        if job.kind == JobKind.RECONCILE:
            draft = await self._corrected_draft(job)
        else:
            draft = await self._extract(job, document)

        await self.store.save_draft(document.id, job_id, draft)
        await self._advance(job_id, PROGRESS_EXTRACTED)

        record = self.engine.reconcile(draft, document.id, job_id)
        await self._advance(job_id, PROGRESS_RECONCILED)

        await self.store.publish(record)
        logger.info("Job=%s complete for document=%s", job_id, document.id)

    async def _extract(self, job: Job, document: Document) -> DraftRecord:
        """Call the worker, retrying plain failures up to the configured limit."""
        source = await asyncio.to_thread(_read_bytes, document.source_path)

        async def report(progress: int) -> None:
            scaled = PROGRESS_STARTED + (PROGRESS_EXTRACTED - PROGRESS_STARTED) * max(0, min(100, progress)) // 100
            await self._advance(job.id, scaled)

        retries = max(0, self.settings.max_auto_retries)
        for attempt in range(retries + 1):
            async with self.database.session() as session:
                attempts = await JobRepository(session).record_attempt(job.id)
            try:
                raw = await self.worker.extract(document, source, report)
                break
            except WorkerTimeout:
                raise
            except WorkerError as exc:
                if attempt >= retries:
                    raise
                logger.warning(
                    "Worker failed for job=%s (attempt %d), retrying: %s", job.id, attempts, exc
                )

        try:
            return DraftRecord.model_validate(raw)
        except pydantic.ValidationError as exc:
            raise WorkerError(f"malformed draft: {exc.error_count()} invalid field(s)") from exc

    async def _corrected_draft(self, job: Job) -> DraftRecord:
        draft = await self.store.published_draft(job.document_id)
        if draft is None:
            raise ReconciliationError("no stored draft to correct")
        overrides = (job.corrections or {}).get("overrides") or {}
        try:
            return apply_overrides(draft, overrides)
        except Exception as exc:
            raise ReconciliationError(f"corrections could not be applied: {exc}") from exc

    async def _advance(self, job_id: UUID, progress: int) -> None:
        async with self.database.session() as session:
            await JobRepository(session).advance(job_id, progress)

    async def _fail(self, job_id: UUID, message: str) -> None:
        async with self.database.session() as session:
            moved = await JobRepository(session).transition(job_id, JobState.ERROR, error=message)
        if moved:
            logger.error("Job=%s failed: %s", job_id, message)
        else:
            logger.info("Job=%s already terminal; dropped error %r", job_id, message)


def _read_bytes(path: str) -> bytes:
    with open(path, "rb") as f:
        return f.read()
