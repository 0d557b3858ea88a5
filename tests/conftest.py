"""Pytest configuration and fixtures."""

import asyncio
import copy

import fitz  # PyMuPDF
import pytest

from whisperer.config import Settings
from whisperer.errors import WorkerError
from whisperer.models import DraftRecord, JobState
from whisperer.pipeline import ExtractionWorker, PipelineServices, sample_draft


def make_pdf(pages: int = 3, text: str = "Operating Memorandum") -> bytes:
    """Build a small real PDF with one line of text per page."""
    pdf_doc = fitz.open()
    for number in range(1, pages + 1):
        page = pdf_doc.new_page()
        page.insert_text((72, 72), f"{text} - page {number}")
    data = pdf_doc.tobytes()
    pdf_doc.close()
    return data


def short_t12_draft(months: int = 10) -> dict:
    """Draft with ``months`` T-12 months and NOI / debt service = 1.15."""
    t12_lines = []
    for i in range(months):
        month = f"2024-{i + 1:02d}"
        t12_lines.append({"month": month, "category": "Income", "subcategory": "Rent", "amount": 100000, "sourcePage": 2})
        t12_lines.append({"month": month, "category": "Expense", "subcategory": "Repairs", "amount": -31000, "sourcePage": 2})
    return {
        "totals": {
            "gpr": 1050000,
            "vacancy": 50000,
            "egi": 1000000,
            "opex": 310000,
            "noi": 690000,
            "annualDebtService": 600000,
            "dscr": "1.15x",
            "sourcePages": {"noi": 1, "annualDebtService": 3},
        },
        "t12Lines": t12_lines,
        "rentRoll": [
            {"unitId": "A1", "tenantName": "Northwind Traders", "sqft": 1000, "startDate": "2023-01-01",
             "endDate": "2028-12-31", "baseRent": 2500, "sourcePage": 3},
            {"unitId": "A2", "tenantName": "Contoso Dental", "sqft": 800, "startDate": "2022-05-01",
             "endDate": "2027-04-30", "baseRent": 2000, "sourcePage": 3},
            {"unitId": "A3", "tenantName": "Fabrikam Books", "sqft": 900, "startDate": "2024-03-01",
             "endDate": "2029-02-28", "baseRent": 2200, "sourcePage": 3},
        ],
    }


class StubWorker(ExtractionWorker):
    """Returns a fixed payload (or raises) and counts its calls."""

    name = "stub"

    def __init__(self, payload=None, error=None, delay=0.0):
        self.payload = payload if payload is not None else sample_draft()
        self.error = error
        self.delay = delay
        self.calls = 0

    async def extract(self, document, source, report_progress=None):
        self.calls += 1
        if self.delay:
            await asyncio.sleep(self.delay)
        if report_progress is not None:
            await report_progress(50)
            await report_progress(100)
        if self.error is not None:
            raise self.error
        return copy.deepcopy(self.payload)


class FlakyWorker(StubWorker):
    """Fails the first ``failures`` calls with WorkerError."""

    def __init__(self, failures: int = 1, **kwargs):
        super().__init__(**kwargs)
        self.failures = failures

    async def extract(self, document, source, report_progress=None):
        self.calls += 1
        if self.calls <= self.failures:
            raise WorkerError(f"transient failure {self.calls}")
        return copy.deepcopy(self.payload)


class BlockingWorker(StubWorker):
    """Waits for ``release`` before answering; never answers if it is not set."""

    def __init__(self, **kwargs):
        super().__init__(**kwargs)
        self.release = asyncio.Event()
        self.started = asyncio.Event()

    async def extract(self, document, source, report_progress=None):
        self.calls += 1
        self.started.set()
        await self.release.wait()
        return copy.deepcopy(self.payload)


@pytest.fixture
def settings(tmp_path):
    """Settings pointing at a throwaway SQLite database and upload dir."""
    return Settings(
        _env_file=None,
        database_url_override=f"sqlite+aiosqlite:///{tmp_path / 'whisperer.db'}",
        upload_dir=str(tmp_path / "uploads"),
        job_timeout_seconds=10.0,
        housekeeping_interval_seconds=0.2,
    )


@pytest.fixture
def pdf_bytes():
    return make_pdf()


@pytest.fixture
def draft():
    """The sample draft, validated."""
    return DraftRecord.model_validate(sample_draft())


@pytest.fixture
def short_draft():
    return DraftRecord.model_validate(short_t12_draft())


@pytest.fixture
def worker():
    return StubWorker()


@pytest.fixture
async def services(settings, worker):
    """Started pipeline services without the background sweep."""
    services = PipelineServices(settings, worker=worker)
    await services.start(housekeeping=False)
    yield services
    await services.close()


async def run_to_end(services: PipelineServices, job_id):
    """Wait for a launched job and return its final status."""
    await services.runner.wait(job_id)
    status = await services.status.get_status(job_id)
    assert status.state in (JobState.COMPLETE, JobState.ERROR)
    return status
