"""Request and response bodies of the HTTP API."""

from typing import Any, Optional

from pydantic import BaseModel, Field


class CorrectionRequest(BaseModel):
    """Reviewer overrides, keyed by dotted path (``totals.noi``)."""

    overrides: dict[str, Any] = Field(..., min_length=1)
    note: Optional[str] = Field(None, max_length=2000)


class ErrorDetail(BaseModel):
    error: str
    message: str


class ErrorResponse(BaseModel):
    detail: ErrorDetail


class HealthResponse(BaseModel):
    status: str = "ok"
    worker: str
    active_jobs: int
