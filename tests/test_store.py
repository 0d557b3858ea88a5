"""Tests for the database-backed extraction store."""

import asyncio
from datetime import date
from uuid import uuid4

import pytest

from whisperer.errors import InvalidTransition, NotFoundError
from whisperer.models import Document, Job, JobState
from whisperer.reconcile import ReconciliationEngine
from whisperer.storage import Database, DocumentRepository, ExtractionStore, JobRepository


@pytest.fixture
async def database(settings):
    database = Database(settings.database_url)
    await database.init()
    yield database
    await database.close()


@pytest.fixture
def store(database):
    return ExtractionStore(database)


async def make_job(database, state=JobState.PROCESSING):
    """Insert a document plus one job and move the job to ``state``."""
    document = Document(
        content_hash=uuid4().hex * 2,
        filename="om.pdf",
        source_path="/tmp/om.pdf",
        page_count=3,
        size_bytes=100,
    )
    async with database.session() as session:
        await DocumentRepository(session).create(document)
        job = await JobRepository(session).create(Job(document_id=document.id))
        if state != JobState.QUEUED:
            await JobRepository(session).transition(job.id, JobState.PROCESSING, progress=10)
        if state.is_terminal:
            await JobRepository(session).transition(job.id, state, error="boom")
    return document, job


class TestJobRepository:
    """Tests for compare-and-set job updates."""

    async def test_terminal_state_is_stable(self, database):
        _, job = await make_job(database, JobState.ERROR)
        async with database.session() as session:
            jobs = JobRepository(session)
            assert not await jobs.transition(job.id, JobState.COMPLETE)
            assert not await jobs.transition(job.id, JobState.PROCESSING)
            current = await jobs.require(job.id)

        assert current.state == JobState.ERROR
        assert current.error_message == "boom"

    async def test_progress_never_decreases(self, database):
        _, job = await make_job(database)
        async with database.session() as session:
            jobs = JobRepository(session)
            assert await jobs.advance(job.id, 60)
            assert not await jobs.advance(job.id, 30)
            assert (await jobs.require(job.id)).progress == 60

    async def test_history_records_transitions(self, database):
        document, job = await make_job(database, JobState.ERROR)
        async with database.session() as session:
            history = await JobRepository(session).history(document.id)

        assert len(history) == 1
        states = [event.state for event in history[0].events]
        assert states == [JobState.QUEUED, JobState.PROCESSING, JobState.ERROR]

    async def test_require_unknown(self, database):
        async with database.session() as session:
            with pytest.raises(NotFoundError):
                await JobRepository(session).require(uuid4())


class TestExtractionStore:
    """Tests for draft storage and atomic publish."""

    async def test_nothing_published_until_publish(self, database, store, draft):
        document, job = await make_job(database)
        await store.save_draft(document.id, job.id, draft)

        assert await store.get(document.id) is None
        assert await store.get_draft(job.id) == draft

    async def test_publish_marks_job_complete(self, database, store, draft):
        document, job = await make_job(database)
        record = ReconciliationEngine().reconcile(draft, document.id, job.id, as_of=date(2025, 9, 1))
        await store.publish(record)

        published = await store.get(document.id)
        assert published == record
        async with database.session() as session:
            current = await JobRepository(session).require(job.id)
        assert current.state == JobState.COMPLETE
        assert current.progress == 100

    async def test_publish_after_timeout_is_discarded(self, database, store, draft):
        document, job = await make_job(database)
        async with database.session() as session:
            await JobRepository(session).transition(job.id, JobState.ERROR, error="timeout: too slow")

        record = ReconciliationEngine().reconcile(draft, document.id, job.id)
        with pytest.raises(InvalidTransition):
            await store.publish(record)

        assert await store.get(document.id) is None
        assert await store.get_for_job(job.id) is None

    async def test_put_is_idempotent(self, database, store, draft):
        document, job = await make_job(database)
        record = ReconciliationEngine().reconcile(draft, document.id, job.id, as_of=date(2025, 9, 1))
        await store.put(record)
        await store.put(record)

        # Stored for the job, but not served while the job is still processing
        assert await store.get_for_job(job.id) == record
        assert await store.get(document.id) is None

        async with database.session() as session:
            assert await JobRepository(session).transition(job.id, JobState.COMPLETE, progress=100)
        await store.put(record)

        assert await store.get(document.id) == record

    async def test_put_for_failed_job_is_never_served(self, database, store, draft):
        document, job = await make_job(database, JobState.ERROR)
        await store.put(ReconciliationEngine().reconcile(draft, document.id, job.id))

        assert await store.get(document.id) is None
        assert await store.published_draft(document.id) is None

    async def test_readers_see_whole_records(self, database, store, draft):
        """Concurrent readers see no record or a complete one, never a partial one."""
        document, job = await make_job(database)
        record = ReconciliationEngine().reconcile(draft, document.id, job.id)
        seen = []

        async def reader():
            for _ in range(20):
                seen.append(await store.get(document.id))
                await asyncio.sleep(0)

        await asyncio.gather(reader(), store.publish(record), reader())

        for value in seen:
            assert value is None or (value.checks and value.totals.noi is not None)
        assert await store.get(document.id) == record

    async def test_published_draft_follows_pointer(self, database, store, draft):
        document, job = await make_job(database)
        await store.save_draft(document.id, job.id, draft)
        assert await store.published_draft(document.id) is None

        await store.publish(ReconciliationEngine().reconcile(draft, document.id, job.id))
        assert await store.published_draft(document.id) == draft
