"""Base models and common types for Property Whisperer."""

from datetime import datetime, timezone
from enum import Enum
from typing import Optional
from uuid import UUID, uuid4

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel


def utcnow() -> datetime:
    """Naive UTC timestamp, the form stored in every timestamp column."""
    return datetime.now(timezone.utc).replace(tzinfo=None)


class JobState(str, Enum):
    """Lifecycle state of an extraction job."""

    QUEUED = "queued"
    PROCESSING = "processing"
    COMPLETE = "complete"
    ERROR = "error"

    @property
    def is_terminal(self) -> bool:
        return self in (JobState.COMPLETE, JobState.ERROR)


class JobKind(str, Enum):
    """What a job does once it starts."""

    EXTRACT = "extract"  # worker extraction, then reconciliation
    RECONCILE = "reconcile"  # re-reconcile the stored draft with corrections


class CheckStatus(str, Enum):
    """Outcome of a reconciliation check."""

    PASS = "pass"
    WARN = "warn"
    FAIL = "fail"


class BaseIRModel(BaseModel):
    """Base class for persisted pipeline models with common fields."""

    model_config = ConfigDict(from_attributes=True)

    id: UUID = Field(default_factory=uuid4)
    created_at: datetime = Field(default_factory=utcnow)


class RecordModel(BaseModel):
    """Base class for extraction payload models.

    Fields are snake_case in Python and camelCase on the wire; both forms
    are accepted on input.
    """

    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        from_attributes=True,
    )


class SourceRef(RecordModel):
    """A pointer back into the source PDF."""

    page: int = Field(..., ge=1)
    snippet: Optional[str] = None
