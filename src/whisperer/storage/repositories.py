"""Repository layer for database CRUD operations."""

import logging
from datetime import datetime
from typing import Optional, Sequence
from uuid import UUID

from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession

from whisperer.errors import NotFoundError
from whisperer.models import (
    IN_FLIGHT_STATES,
    Document,
    Job,
    JobEvent,
    JobHistory,
    JobState,
    allowed_sources,
    utcnow,
)

from .orm_models import DocumentORM, JobEventORM, JobORM

logger = logging.getLogger(__name__)


class DocumentRepository:
    """Repository for Document operations."""

    def __init__(self, session: AsyncSession):
        self.session = session

    async def create(self, doc: Document) -> Document:
        """Create a new document record."""
        orm_doc = DocumentORM(
            id=doc.id,
            content_hash=doc.content_hash,
            filename=doc.filename,
            source_path=doc.source_path,
            page_count=doc.page_count,
            size_bytes=doc.size_bytes,
            uploaded_at=doc.uploaded_at,
            created_at=doc.created_at,
        )
        self.session.add(orm_doc)
        await self.session.flush()
        return doc

    async def get_by_id(self, doc_id: UUID) -> Optional[Document]:
        """Get document by ID."""
        orm_doc = await self.session.get(DocumentORM, doc_id)
        return Document.model_validate(orm_doc) if orm_doc else None

    async def require(self, doc_id: UUID) -> Document:
        """Get document by ID or raise NotFoundError."""
        doc = await self.get_by_id(doc_id)
        if doc is None:
            raise NotFoundError(f"document {doc_id} not found")
        return doc

    async def get_by_hash(self, content_hash: str) -> Optional[Document]:
        """Get document by content hash (deduplication)."""
        result = await self.session.execute(
            select(DocumentORM).where(DocumentORM.content_hash == content_hash)
        )
        orm_doc = result.scalar_one_or_none()
        return Document.model_validate(orm_doc) if orm_doc else None

    async def published_job_id(self, doc_id: UUID) -> Optional[UUID]:
        """Job whose record is currently published for the document."""
        result = await self.session.execute(
            select(DocumentORM.published_job_id).where(DocumentORM.id == doc_id)
        )
        return result.scalar_one_or_none()

    async def lock(self, doc_id: UUID) -> DocumentORM:
        """Row-lock a document for the rest of the transaction.

        SQLite has no row locks; there the statement is a plain select.
        """
        result = await self.session.execute(
            select(DocumentORM).where(DocumentORM.id == doc_id).with_for_update()
        )
        orm_doc = result.scalar_one_or_none()
        if orm_doc is None:
            raise NotFoundError(f"document {doc_id} not found")
        return orm_doc


class JobRepository:
    """Repository for Job operations.

    State changes are compare-and-set updates: a write only lands if the
    row is still in a state the job state machine allows it to leave.
    """

    def __init__(self, session: AsyncSession):
        self.session = session

    async def create(self, job: Job) -> Job:
        """Create a new job record with its initial status event."""
        orm_job = JobORM(
            id=job.id,
            document_id=job.document_id,
            kind=job.kind,
            state=job.state,
            progress=job.progress,
            attempts=job.attempts,
            corrections=job.corrections,
            created_at=job.created_at,
            updated_at=job.updated_at,
        )
        self.session.add(orm_job)
        self.session.add(
            JobEventORM(
                job_id=job.id,
                state=job.state,
                progress=job.progress,
                message=f"{job.kind.value} job created",
            )
        )
        await self.session.flush()
        return job

    async def get_by_id(self, job_id: UUID) -> Optional[Job]:
        """Get job by ID, always reading the current row."""
        result = await self.session.execute(
            select(JobORM)
            .where(JobORM.id == job_id)
            .execution_options(populate_existing=True)
        )
        orm_job = result.scalar_one_or_none()
        return Job.model_validate(orm_job) if orm_job else None

    async def require(self, job_id: UUID) -> Job:
        """Get job by ID or raise NotFoundError."""
        job = await self.get_by_id(job_id)
        if job is None:
            raise NotFoundError(f"job {job_id} not found")
        return job

    async def get_in_flight(self, doc_id: UUID) -> Optional[Job]:
        """The queued or processing job for a document, if any."""
        result = await self.session.execute(
            select(JobORM)
            .where(JobORM.document_id == doc_id)
            .where(JobORM.state.in_(IN_FLIGHT_STATES))
            .order_by(JobORM.created_at.desc())
            .limit(1)
        )
        orm_job = result.scalar_one_or_none()
        return Job.model_validate(orm_job) if orm_job else None

    async def list_for_document(self, doc_id: UUID) -> Sequence[Job]:
        """All jobs for a document, newest first."""
        result = await self.session.execute(
            select(JobORM)
            .where(JobORM.document_id == doc_id)
            .order_by(JobORM.created_at.desc())
        )
        return [Job.model_validate(j) for j in result.scalars().all()]

    async def list_expired(self, cutoff: datetime, limit: int = 100) -> Sequence[Job]:
        """Non-terminal jobs created before ``cutoff``."""
        result = await self.session.execute(
            select(JobORM)
            .where(JobORM.state.in_(IN_FLIGHT_STATES))
            .where(JobORM.created_at < cutoff)
            .order_by(JobORM.created_at)
            .limit(limit)
        )
        return [Job.model_validate(j) for j in result.scalars().all()]

    async def events(self, job_id: UUID) -> Sequence[JobEvent]:
        """Status history of a job, oldest first."""
        result = await self.session.execute(
            select(JobEventORM)
            .where(JobEventORM.job_id == job_id)
            .order_by(JobEventORM.id)
        )
        return [JobEvent.model_validate(e) for e in result.scalars().all()]

    async def history(self, doc_id: UUID) -> list[JobHistory]:
        """Jobs of a document with their status events."""
        return [
            JobHistory(job=job, events=list(await self.events(job.id)))
            for job in await self.list_for_document(doc_id)
        ]

    async def transition(
        self,
        job_id: UUID,
        target: JobState,
        *,
        progress: Optional[int] = None,
        error: Optional[str] = None,
        message: Optional[str] = None,
    ) -> bool:
        """Move a job to ``target`` if the state machine allows it.

        Returns False, without writing anything, when the job is already in
        a state that cannot reach ``target`` (e.g. it was timed out).
        """
        now = utcnow()
        values = {"state": target, "updated_at": now}
        if target == JobState.PROCESSING:
            values["started_at"] = now
        if target.is_terminal:
            values["finished_at"] = now
        if target == JobState.ERROR:
            values["error_message"] = error or "unknown error"
        if progress is not None:
            values["progress"] = progress

        result = await self.session.execute(
            update(JobORM)
            .where(JobORM.id == job_id)
            .where(JobORM.state.in_(allowed_sources(target)))
            .values(**values)
        )
        if result.rowcount != 1:
            return False

        current = await self.session.execute(
            select(JobORM.progress).where(JobORM.id == job_id)
        )
        self.session.add(
            JobEventORM(
                job_id=job_id,
                state=target,
                progress=current.scalar_one(),
                message=error if target == JobState.ERROR else message,
                created_at=now,
            )
        )
        await self.session.flush()
        return True

    async def advance(self, job_id: UUID, progress: int) -> bool:
        """Raise progress of an in-flight job. Never lowers it."""
        progress = max(0, min(100, int(progress)))
        result = await self.session.execute(
            update(JobORM)
            .where(JobORM.id == job_id)
            .where(JobORM.state.in_(IN_FLIGHT_STATES))
            .where(JobORM.progress < progress)
            .values(progress=progress, updated_at=utcnow())
        )
        return result.rowcount == 1

    async def record_attempt(self, job_id: UUID) -> int:
        """Bump and return the attempt counter."""
        await self.session.execute(
            update(JobORM)
            .where(JobORM.id == job_id)
            .values(attempts=JobORM.attempts + 1, updated_at=utcnow())
        )
        result = await self.session.execute(
            select(JobORM.attempts).where(JobORM.id == job_id)
        )
        return result.scalar_one()
