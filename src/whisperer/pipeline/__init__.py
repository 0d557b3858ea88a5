"""Extraction pipeline: ingestion, job execution, status and housekeeping.

Flow:
1. IngestionGateway - validate upload, deduplicate by content hash, queue job
2. JobRunner - call the extraction worker, store the draft, reconcile, publish
3. JobStatusService - answer polls, expire jobs over their time budget
"""

from .corrections import apply_overrides, parse_path
from .gateway import IngestionGateway, compute_content_hash, count_pdf_pages, validate_upload
from .runner import JobRunner
from .services import PipelineServices
from .status import Housekeeper, JobStatusService
from .worker import (
    ExtractionWorker,
    HttpExtractionWorker,
    SampleExtractionWorker,
    build_worker,
    sample_draft,
)

__all__ = [
    # Ingestion
    "IngestionGateway",
    "compute_content_hash",
    "count_pdf_pages",
    "validate_upload",
    # Execution
    "JobRunner",
    "apply_overrides",
    "parse_path",
    # Status
    "JobStatusService",
    "Housekeeper",
    # Workers
    "ExtractionWorker",
    "HttpExtractionWorker",
    "SampleExtractionWorker",
    "build_worker",
    "sample_draft",
    # Wiring
    "PipelineServices",
]
