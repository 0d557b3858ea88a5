"""Document-level models."""

from datetime import datetime
from typing import Optional
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field

from .base import BaseIRModel, JobState, utcnow


class Document(BaseIRModel):
    """
    One uploaded PDF.

    Immutable once created. The bytes live at ``source_path``; the
    ``content_hash`` (SHA-256) is the deduplication key.
    """

    model_config = ConfigDict(from_attributes=True, frozen=True)

    content_hash: str = Field(..., min_length=64, max_length=64)
    filename: str
    source_path: str = Field(..., description="Where the uploaded bytes are kept")
    page_count: int = Field(..., ge=1)
    size_bytes: int = Field(..., ge=0)
    uploaded_at: datetime = Field(default_factory=utcnow)


class JobHandle(BaseModel):
    """What the ingestion gateway hands back to the uploader."""

    job_id: UUID
    document_id: UUID
    state: JobState
    deduplicated: bool = Field(
        default=False,
        description="True when an earlier job for identical bytes was returned",
    )
    poll_url: Optional[str] = None
