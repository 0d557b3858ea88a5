"""Ingestion gateway - accepts uploads and creates jobs.

Submission policy:

- identical bytes whose document already has a published record return
  that record's job handle (``deduplicated=True``); no extraction runs;
- identical bytes while a job for the document is in flight join that job;
- otherwise a new job is queued and handed to the runner.

Explicit re-extraction and corrections for a document with a job in flight
are rejected with JobConflictError.
"""

import asyncio
import hashlib
import logging
from typing import Any, Optional
from uuid import UUID

import fitz  # PyMuPDF
from sqlalchemy.exc import IntegrityError

from whisperer.config import Settings, settings as default_settings
from whisperer.errors import (
    JobConflictError,
    NotFoundError,
    PayloadTooLarge,
    UnsupportedMediaType,
    ValidationError,
)
from whisperer.models import Document, Job, JobHandle, JobKind, JobState
from whisperer.storage import Database, DocumentRepository, ExtractionStore, JobRepository

from .corrections import apply_overrides
from .runner import JobRunner

logger = logging.getLogger(__name__)

PDF_MAGIC = b"%PDF-"
PDF_CONTENT_TYPES = {"application/pdf", "application/x-pdf", "application/octet-stream"}


def compute_content_hash(data: bytes) -> str:
    """SHA-256 hex digest of the uploaded bytes, used for deduplication."""
    return hashlib.sha256(data).hexdigest()


def count_pdf_pages(data: bytes) -> int:
    """Open the upload with PyMuPDF and return its page count."""
    try:
        with fitz.open(stream=data, filetype="pdf") as pdf_doc:
            page_count = pdf_doc.page_count
    except Exception as exc:
        raise ValidationError(f"upload is not a readable PDF: {exc}") from exc
    if page_count < 1:
        raise ValidationError("upload is a PDF with no pages")
    return page_count


def validate_upload(
    data: bytes, content_type: Optional[str], max_bytes: int
) -> None:
    """Reject empty, oversized and non-PDF uploads."""
    if not data:
        raise ValidationError("upload is empty")
    if len(data) > max_bytes:
        raise PayloadTooLarge(f"upload is {len(data)} bytes; limit is {max_bytes}")
    if content_type and content_type.split(";")[0].strip().lower() not in PDF_CONTENT_TYPES:
        raise UnsupportedMediaType(f"expected a PDF upload, got {content_type}")
    if not data.startswith(PDF_MAGIC):
        raise UnsupportedMediaType("upload does not start with a PDF header")


class IngestionGateway:
    """Accepts document uploads and hands new jobs to the runner."""

    def __init__(
        self,
        database: Database,
        store: ExtractionStore,
        runner: JobRunner,
        settings: Optional[Settings] = None,
    ):
        self.database = database
        self.store = store
        self.runner = runner
        self.settings = settings or default_settings

    async def submit(
        self,
        data: bytes,
        filename: Optional[str] = None,
        content_type: Optional[str] = None,
    ) -> JobHandle:
        """Validate and register an upload. Returns immediately."""
        validate_upload(data, content_type, self.settings.max_upload_bytes)
        page_count = count_pdf_pages(data)
        content_hash = compute_content_hash(data)
        filename = filename or f"{content_hash[:12]}.pdf"
        source_path = await asyncio.to_thread(self._store_bytes, content_hash, data)

        try:
            handle, job_to_launch = await self._register(
                content_hash, filename, source_path, page_count, len(data)
            )
        except IntegrityError:
            # A concurrent upload of the same bytes created the document first
            logger.info("Concurrent upload for hash=%s; retrying lookup", content_hash[:12])
            handle, job_to_launch = await self._register(
                content_hash, filename, source_path, page_count, len(data)
            )

        if job_to_launch is not None:
            self.runner.launch(job_to_launch)
        return handle

    async def reextract(self, document_id: UUID) -> JobHandle:
        """Queue a fresh extraction for an existing document."""
        job = await self._create_job(document_id, JobKind.EXTRACT)
        self.runner.launch(job.id)
        return self._handle(job)

    async def correct(
        self, document_id: UUID, overrides: dict[str, Any], note: Optional[str] = None
    ) -> JobHandle:
        """Queue re-reconciliation of the published draft with field overrides."""
        if not overrides:
            raise ValidationError("no corrections supplied")
        draft = await self.store.published_draft(document_id)
        if draft is None:
            raise NotFoundError(f"document {document_id} has no completed extraction to correct")
        # Reject bad paths now rather than failing the job later
        apply_overrides(draft, overrides)
        corrections = {"overrides": overrides, "note": note}
        job = await self._create_job(
            document_id, JobKind.RECONCILE, corrections=corrections, require_published=True
        )
        self.runner.launch(job.id)
        return self._handle(job)

    async def _register(
        self,
        content_hash: str,
        filename: str,
        source_path: str,
        page_count: int,
        size_bytes: int,
    ) -> tuple[JobHandle, Optional[UUID]]:
        async with self.database.session() as session:
            documents = DocumentRepository(session)
            document = await documents.get_by_hash(content_hash)
            if document is None:
                document = await documents.create(
                    Document(
                        content_hash=content_hash,
                        filename=filename,
                        source_path=source_path,
                        page_count=page_count,
                        size_bytes=size_bytes,
                    )
                )
                job = await JobRepository(session).create(Job(document_id=document.id, kind=JobKind.EXTRACT))
                logger.info("Registered document=%s pages=%d", document.id, page_count)
                logger.info("Queued extract job=%s for document=%s", job.id, document.id)
                return self._handle(job), job.id

        return await self._register_existing(document)

    async def _register_existing(self, document: Document) -> tuple[JobHandle, Optional[UUID]]:
        # The in-flight check and the job insert must not interleave with
        # another upload, re-extraction or publish for the same document.
        async with self.store.document_lock(document.id):
            async with self.database.session() as session:
                documents = DocumentRepository(session)
                jobs = JobRepository(session)
                await documents.lock(document.id)

                published = await documents.published_job_id(document.id)
                if published is not None:
                    job = await jobs.require(published)
                    logger.info("Duplicate upload of document=%s; returning job=%s", document.id, job.id)
                    return self._handle(job, deduplicated=True), None
                in_flight = await jobs.get_in_flight(document.id)
                if in_flight is not None:
                    logger.info("Upload joins in-flight job=%s for document=%s", in_flight.id, document.id)
                    return self._handle(in_flight, deduplicated=True), None

                job = await jobs.create(Job(document_id=document.id, kind=JobKind.EXTRACT))
        logger.info("Queued extract job=%s for document=%s", job.id, document.id)
        return self._handle(job), job.id

    async def _create_job(
        self,
        document_id: UUID,
        kind: JobKind,
        corrections: Optional[dict[str, Any]] = None,
        require_published: bool = False,
    ) -> Job:
        async with self.store.document_lock(document_id):
            async with self.database.session() as session:
                documents = DocumentRepository(session)
                jobs = JobRepository(session)
                await documents.lock(document_id)
                if require_published and await documents.published_job_id(document_id) is None:
                    raise NotFoundError(f"document {document_id} has no completed extraction to correct")
                in_flight = await jobs.get_in_flight(document_id)
                if in_flight is not None:
                    raise JobConflictError(
                        f"document {document_id} already has job {in_flight.id} {in_flight.state.value}"
                    )
                job = await jobs.create(Job(document_id=document_id, kind=kind, corrections=corrections))
        logger.info("Queued %s job=%s for document=%s", kind.value, job.id, document_id)
        return job

    def _store_bytes(self, content_hash: str, data: bytes) -> str:
        upload_dir = self.settings.upload_path
        upload_dir.mkdir(parents=True, exist_ok=True)
        path = upload_dir / f"{content_hash}.pdf"
        if not path.exists():
            tmp_path = path.with_suffix(".part")
            tmp_path.write_bytes(data)
            tmp_path.replace(path)
        return str(path.resolve())

    @staticmethod
    def _handle(job: Job, deduplicated: bool = False) -> JobHandle:
        return JobHandle(
            job_id=job.id,
            document_id=job.document_id,
            state=job.state,
            deduplicated=deduplicated,
            poll_url=f"/jobs/{job.id}/status",
        )
