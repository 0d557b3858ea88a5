"""Extraction worker boundary.

The OCR/NLP extraction itself is an external collaborator. The pipeline
only needs ``extract()``: given a Document and its bytes, return the raw
draft dict or raise WorkerError. Progress is reported through the
callback as 0-100 of the worker's own work.
"""

import asyncio
import logging
from abc import ABC, abstractmethod
from typing import Any, Awaitable, Callable, Optional

import httpx

from whisperer.config import Settings
from whisperer.errors import WorkerError, WorkerTimeout
from whisperer.models import Document

logger = logging.getLogger(__name__)

ProgressCallback = Callable[[int], Awaitable[None]]


async def _ignore_progress(progress: int) -> None:
    return None


class ExtractionWorker(ABC):
    """Turns document bytes into a draft extraction."""

    name: str = "worker"

    @abstractmethod
    async def extract(
        self,
        document: Document,
        source: bytes,
        report_progress: ProgressCallback = _ignore_progress,
    ) -> dict[str, Any]:
        """Return the raw draft payload for ``document``."""


class SampleExtractionWorker(ExtractionWorker):
    """Returns a fixed operating-memorandum draft.

    Used for demos and local runs where no extraction service is
    available. ``delay`` simulates extraction time.
    """

    name = "sample"

    def __init__(self, delay: float = 0.0):
        self.delay = delay

    async def extract(self, document, source, report_progress=_ignore_progress):
        steps = 4
        for step in range(1, steps + 1):
            if self.delay:
                await asyncio.sleep(self.delay / steps)
            await report_progress(step * 100 // steps)
        return sample_draft()


def sample_draft() -> dict[str, Any]:
    """A complete T-12 / rent roll / debt draft in the worker's wire format."""
    months = [
        "2024-09", "2024-10", "2024-11", "2024-12", "2025-01", "2025-02",
        "2025-03", "2025-04", "2025-05", "2025-06", "2025-07", "2025-08",
    ]
    t12_lines = []
    for month in months:
        t12_lines.append(
            {"month": month, "category": "Income", "subcategory": "Base Rent", "amount": 120000, "sourcePage": 6}
        )
        t12_lines.append(
            {"month": month, "category": "Expense", "subcategory": "Utilities", "amount": -30000, "sourcePage": 7}
        )
    return {
        "totals": {
            "gpr": "$1,520,000",
            "vacancy": "$80,000",
            "egi": "$1,440,000",
            "opex": "$360,000",
            "noi": "$1,080,000",
            "annualDebtService": "$860,000",
            "dscr": "1.26x",
            "sourcePages": {"gpr": 5, "egi": 5, "opex": 5, "noi": 5, "annualDebtService": 12},
        },
        "t12Lines": t12_lines,
        "rentRoll": [
            {"unitId": "101", "tenantName": "Acme Corp", "sqft": 1200, "startDate": "2023-06-01",
             "endDate": "2026-05-31", "baseRent": 3500, "sourcePage": 9},
            {"unitId": "102", "tenantName": "BlueMart", "sqft": 980, "startDate": "2024-02-01",
             "endDate": "2027-01-31", "baseRent": 2900, "sourcePage": 9},
            {"unitId": "103", "tenantName": "Cafe Uno", "sqft": 650, "startDate": "2022-11-15",
             "endDate": "2025-11-14", "baseRent": 2100, "sourcePage": 9},
        ],
        "debtTerms": {
            "lender": "Sample Bank", "principal": 4800000, "rateType": "Floating", "index": "SOFR",
            "spreadBps": 275, "allInRate": "7.1%", "amortizationMonths": 300, "ioMonths": 12,
            "maturityDate": "2030-08-01", "rateCap": "3.50% cap thru 2027", "sourcePage": 12,
        },
        "covenants": [
            {"type": "DSCR", "threshold": ">= 1.20x", "frequency": "Quarterly"},
            {"type": "LTV", "threshold": "<= 65%", "frequency": "Quarterly"},
        ],
        "assumptions": [
            {"text": "Vacancy normalized to 5% per sponsor note", "sourceRefs": [{"page": 18}]},
        ],
        "ocrConfidence": {"t12": 0.97, "rentRoll": 0.94},
    }


class HttpExtractionWorker(ExtractionWorker):
    """Client for an external extraction service.

    Protocol: ``POST /extractions`` (multipart PDF) returns ``{"id"}``;
    ``GET /extractions/{id}`` returns ``{"state", "progress", "result",
    "error"}`` and is polled until the state is ``complete`` or ``error``.
    ``DELETE /extractions/{id}`` cancels remote work when the job is
    abandoned.
    """

    name = "http"

    def __init__(
        self,
        base_url: str,
        poll_interval: float = 2.0,
        request_timeout: float = 30.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.base_url = base_url.rstrip("/")
        self.poll_interval = poll_interval
        self.request_timeout = request_timeout
        self._transport = transport

    def _client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(
            base_url=self.base_url,
            timeout=self.request_timeout,
            transport=self._transport,
        )

    async def extract(self, document, source, report_progress=_ignore_progress):
        extraction_id = None
        async with self._client() as client:
            try:
                response = await client.post(
                    "/extractions",
                    files={"file": (document.filename, source, "application/pdf")},
                    data={"document_id": str(document.id)},
                )
                response.raise_for_status()
                extraction_id = response.json()["id"]
                logger.info("Worker accepted document=%s as extraction=%s", document.id, extraction_id)

                while True:
                    response = await client.get(f"/extractions/{extraction_id}")
                    response.raise_for_status()
                    body = response.json()
                    state = body.get("state")
                    if state == "complete":
                        result = body.get("result")
                        if not isinstance(result, dict):
                            raise WorkerError("worker completed without a result payload")
                        return result
                    if state == "error":
                        raise WorkerError(body.get("error") or "worker reported an error")
                    await report_progress(int(body.get("progress") or 0))
                    await asyncio.sleep(self.poll_interval)

            except asyncio.CancelledError:
                if extraction_id is not None:
                    await self._cancel_remote(client, extraction_id)
                raise
            except httpx.TimeoutException as exc:
                raise WorkerTimeout(f"worker request timed out: {exc}") from exc
            except (httpx.HTTPStatusError, httpx.RequestError) as exc:
                raise WorkerError(f"worker request failed: {exc}") from exc
            except (KeyError, ValueError) as exc:
                raise WorkerError(f"unreadable worker response: {exc}") from exc

    async def _cancel_remote(self, client: httpx.AsyncClient, extraction_id: str) -> None:
        try:
            await client.delete(f"/extractions/{extraction_id}")
            logger.info("Cancelled remote extraction=%s", extraction_id)
        except httpx.HTTPError as exc:
            logger.warning("Could not cancel remote extraction=%s: %s", extraction_id, exc)


def build_worker(settings: Settings) -> ExtractionWorker:
    """Worker selected by ``settings.worker_backend``."""
    if settings.worker_backend == "http":
        return HttpExtractionWorker(
            settings.worker_url, poll_interval=settings.worker_poll_interval_seconds
        )
    if settings.worker_backend == "sample":
        return SampleExtractionWorker()
    raise ValueError(f"unknown worker backend: {settings.worker_backend!r}")
