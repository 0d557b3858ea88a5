"""Extraction store - the durable, per-document record of pipeline output.

Holds worker drafts, reconciled records and (via the job tables) status
history. It is the only shared mutable resource in the pipeline; every
write to a document's records goes through here under that document's
lock.

Atomic publish: a record row is always written as one JSON document in one
transaction together with the job's move to complete and the document's
``published_job_id`` pointer, so a reader sees either the previous complete
record or the new one. The pointer only ever names a complete job.
"""

import asyncio
import logging
import weakref
from contextlib import asynccontextmanager
from typing import AsyncIterator, Optional
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from whisperer.errors import InvalidTransition
from whisperer.models import DraftRecord, ExtractionRecord, JobState, utcnow

from .database import Database
from .orm_models import DocumentORM, ExtractionDraftORM, ExtractionRecordORM
from .repositories import DocumentRepository, JobRepository

logger = logging.getLogger(__name__)


class ExtractionStore:
    """Durable store for drafts and reconciled records, keyed by document."""

    def __init__(self, database: Database):
        self.database = database
        # Entries disappear once no writer holds the lock.
        self._locks: "weakref.WeakValueDictionary[UUID, asyncio.Lock]" = (
            weakref.WeakValueDictionary()
        )

    @asynccontextmanager
    async def document_lock(self, document_id: UUID) -> AsyncIterator[None]:
        """Serialize writers for one document; other documents are unaffected."""
        lock = self._locks.get(document_id)
        if lock is None:
            lock = asyncio.Lock()
            self._locks[document_id] = lock
        async with lock:
            yield

    # -- reads --------------------------------------------------------------

    async def get(self, document_id: UUID) -> Optional[ExtractionRecord]:
        """The currently published record for a document, or None."""
        async with self.database.session() as session:
            result = await session.execute(
                select(ExtractionRecordORM.payload)
                .join(
                    DocumentORM,
                    (DocumentORM.id == ExtractionRecordORM.document_id)
                    & (DocumentORM.published_job_id == ExtractionRecordORM.job_id),
                )
                .where(DocumentORM.id == document_id)
            )
            payload = result.scalar_one_or_none()
        return ExtractionRecord.model_validate(payload) if payload else None

    async def get_for_job(self, job_id: UUID) -> Optional[ExtractionRecord]:
        """The record written by a specific job, published or not."""
        async with self.database.session() as session:
            result = await session.execute(
                select(ExtractionRecordORM.payload).where(
                    ExtractionRecordORM.job_id == job_id
                )
            )
            payload = result.scalar_one_or_none()
        return ExtractionRecord.model_validate(payload) if payload else None

    async def get_draft(self, job_id: UUID) -> Optional[DraftRecord]:
        """The draft a job reconciled."""
        async with self.database.session() as session:
            result = await session.execute(
                select(ExtractionDraftORM.payload).where(
                    ExtractionDraftORM.job_id == job_id
                )
            )
            payload = result.scalar_one_or_none()
        return DraftRecord.model_validate(payload) if payload else None

    async def published_draft(self, document_id: UUID) -> Optional[DraftRecord]:
        """The draft behind the currently published record."""
        async with self.database.session() as session:
            job_id = await DocumentRepository(session).published_job_id(document_id)
        if job_id is None:
            return None
        return await self.get_draft(job_id)

    # -- writes -------------------------------------------------------------

    async def save_draft(
        self, document_id: UUID, job_id: UUID, draft: DraftRecord
    ) -> None:
        """Durably write a job's draft. Re-saving replaces it."""
        payload = draft.model_dump(mode="json", by_alias=True)
        async with self.document_lock(document_id):
            async with self.database.session() as session:
                result = await session.execute(
                    select(ExtractionDraftORM).where(ExtractionDraftORM.job_id == job_id)
                )
                row = result.scalar_one_or_none()
                if row is None:
                    session.add(
                        ExtractionDraftORM(
                            document_id=document_id, job_id=job_id, payload=payload
                        )
                    )
                else:
                    row.payload = payload
        logger.debug("Draft stored for document=%s job=%s", document_id, job_id)

    async def put(self, record: ExtractionRecord) -> None:
        """Idempotent upsert keyed by document + job.

        The record only becomes the document's published record if its job
        is already complete; otherwise it is stored but not served.
        """
        async with self.document_lock(record.document_id):
            async with self.database.session() as session:
                await DocumentRepository(session).lock(record.document_id)
                await self._upsert(session, record)
                job = await JobRepository(session).require(record.job_id)
                if job.state == JobState.COMPLETE:
                    await self._point_at(session, record)
                else:
                    logger.info(
                        "Stored record for job=%s (%s) without publishing it",
                        record.job_id,
                        job.state.value,
                    )

    async def publish(self, record: ExtractionRecord) -> None:
        """Write the record and mark its job complete in one transaction.

        The job is only reported complete once the record is durable; if
        the job already left processing (timed out) nothing is written and
        InvalidTransition is raised.
        """
        async with self.document_lock(record.document_id):
            async with self.database.session() as session:
                await DocumentRepository(session).lock(record.document_id)
                await self._upsert(session, record)
                moved = await JobRepository(session).transition(
                    record.job_id,
                    JobState.COMPLETE,
                    progress=100,
                    message="record published",
                )
                if not moved:
                    raise InvalidTransition(
                        f"job {record.job_id} is no longer processing; record discarded"
                    )
                await self._point_at(session, record)
        logger.info(
            "Published record document=%s job=%s", record.document_id, record.job_id
        )

    async def _upsert(self, session: AsyncSession, record: ExtractionRecord) -> None:
        payload = record.to_payload()
        result = await session.execute(
            select(ExtractionRecordORM)
            .where(ExtractionRecordORM.document_id == record.document_id)
            .where(ExtractionRecordORM.job_id == record.job_id)
        )
        row = result.scalar_one_or_none()
        if row is None:
            session.add(
                ExtractionRecordORM(
                    document_id=record.document_id,
                    job_id=record.job_id,
                    payload=payload,
                )
            )
        else:
            row.payload = payload
            row.updated_at = utcnow()
        await session.flush()

    async def _point_at(self, session: AsyncSession, record: ExtractionRecord) -> None:
        doc = await session.get(DocumentORM, record.document_id)
        doc.published_job_id = record.job_id
        await session.flush()
