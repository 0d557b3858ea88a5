"""Tests for job execution, retries, timeouts and the housekeeping sweep."""

from datetime import timedelta
from uuid import uuid4

import pytest

from conftest import BlockingWorker, FlakyWorker, StubWorker, run_to_end
from whisperer.errors import NotFoundError, WorkerError, WorkerTimeout
from whisperer.models import Job, JobState, utcnow
from whisperer.pipeline import PipelineServices
from whisperer.storage import JobRepository


@pytest.fixture
async def make_services(settings):
    """Factory for started services with a given worker and setting overrides."""
    started = []

    async def factory(worker, **overrides):
        services = PipelineServices(settings.model_copy(update=overrides), worker=worker)
        await services.start(housekeeping=False)
        started.append(services)
        return services

    yield factory
    for services in started:
        await services.close()


class TestRunner:
    """Tests for the happy path and failure mapping."""

    async def test_progress_is_monotonic(self, services, pdf_bytes):
        handle = await services.gateway.submit(pdf_bytes, "om.pdf")
        await run_to_end(services, handle.job_id)

        history = await services.status.history(handle.document_id)
        progress = [event.progress for event in history[0].events]
        assert progress == sorted(progress)
        assert progress[-1] == 100

    async def test_worker_error_marks_job_error(self, make_services, pdf_bytes):
        worker = StubWorker(error=WorkerError("OCR backend crashed"))
        services = await make_services(worker, max_auto_retries=0)
        handle = await services.gateway.submit(pdf_bytes, "om.pdf")

        status = await run_to_end(services, handle.job_id)
        assert status.state == JobState.ERROR
        assert status.error.startswith("extraction failed:")
        assert "OCR backend crashed" in status.error
        assert await services.store.get(handle.document_id) is None

    async def test_worker_error_retried_once(self, make_services, pdf_bytes):
        worker = FlakyWorker(failures=1)
        services = await make_services(worker, max_auto_retries=1)
        handle = await services.gateway.submit(pdf_bytes, "om.pdf")

        status = await run_to_end(services, handle.job_id)
        assert status.state == JobState.COMPLETE
        assert worker.calls == 2
        async with services.database.session() as session:
            assert (await JobRepository(session).require(handle.job_id)).attempts == 2

    async def test_retries_are_bounded(self, make_services, pdf_bytes):
        worker = FlakyWorker(failures=5)
        services = await make_services(worker, max_auto_retries=1)
        handle = await services.gateway.submit(pdf_bytes, "om.pdf")

        status = await run_to_end(services, handle.job_id)
        assert status.state == JobState.ERROR
        assert worker.calls == 2

    async def test_worker_timeout_not_retried(self, make_services, pdf_bytes):
        worker = StubWorker(error=WorkerTimeout("no answer from worker"))
        services = await make_services(worker, max_auto_retries=3)
        handle = await services.gateway.submit(pdf_bytes, "om.pdf")

        status = await run_to_end(services, handle.job_id)
        assert status.state == JobState.ERROR
        assert "timeout" in status.error
        assert worker.calls == 1

    async def test_malformed_draft_is_rejected(self, make_services, pdf_bytes):
        worker = StubWorker(payload={"rentRoll": [{"tenantName": "No unit id"}]})
        services = await make_services(worker, max_auto_retries=0)
        handle = await services.gateway.submit(pdf_bytes, "om.pdf")

        status = await run_to_end(services, handle.job_id)
        assert status.state == JobState.ERROR
        assert "malformed draft" in status.error

    async def test_terminal_status_is_stable(self, services, pdf_bytes):
        handle = await services.gateway.submit(pdf_bytes, "om.pdf")
        first = await run_to_end(services, handle.job_id)
        for _ in range(3):
            assert await services.status.get_status(handle.job_id) == first

    async def test_unknown_job(self, services):
        with pytest.raises(NotFoundError):
            await services.status.get_status(uuid4())


class TestTimeouts:
    """A worker that never answers never leaves a job processing."""

    async def test_job_budget_forces_timeout(self, make_services, pdf_bytes):
        worker = BlockingWorker()
        services = await make_services(worker, job_timeout_seconds=0.3)
        handle = await services.gateway.submit(pdf_bytes, "om.pdf")

        status = await run_to_end(services, handle.job_id)
        assert status.state == JobState.ERROR
        assert "timeout" in status.error
        assert await services.store.get(handle.document_id) is None

    async def test_sweep_expires_stale_jobs(self, services, pdf_bytes):
        handle = await services.gateway.submit(pdf_bytes, "om.pdf")
        await run_to_end(services, handle.job_id)

        stale = Job(document_id=handle.document_id, created_at=utcnow() - timedelta(hours=1))
        async with services.database.session() as session:
            await JobRepository(session).create(stale)

        expired = await services.status.expire_stale_jobs()

        assert expired == [stale.id]
        status = await services.status.get_status(stale.id)
        assert status.state == JobState.ERROR
        assert status.error.startswith("timeout:")
        # Completed jobs are left alone
        assert (await services.status.get_status(handle.job_id)).state == JobState.COMPLETE

    async def test_sweep_cancels_running_task(self, make_services, pdf_bytes):
        worker = BlockingWorker()
        services = await make_services(worker, job_timeout_seconds=60)
        handle = await services.gateway.submit(pdf_bytes, "om.pdf")
        await worker.started.wait()

        expired = await services.status.expire_stale_jobs(now=utcnow() + timedelta(seconds=61))

        assert expired == [handle.job_id]
        assert handle.job_id not in services.runner.active_jobs
        status = await services.status.get_status(handle.job_id)
        assert status.state == JobState.ERROR
        assert "timeout" in status.error

    async def test_shutdown_fails_running_jobs(self, make_services, pdf_bytes):
        worker = BlockingWorker()
        services = await make_services(worker)
        handle = await services.gateway.submit(pdf_bytes, "om.pdf")
        await worker.started.wait()

        await services.runner.shutdown()

        status = await services.status.get_status(handle.job_id)
        assert status.state == JobState.ERROR
        assert "shut down" in status.error
