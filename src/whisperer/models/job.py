"""Job models and the job state machine.

    queued ──▶ processing ──▶ complete
       │            │
       └────────────┴───────▶ error

Terminal states (complete, error) have no outgoing transitions.
"""

from datetime import datetime
from typing import Any, Optional
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field

from whisperer.errors import InvalidTransition

from .base import BaseIRModel, JobKind, JobState, utcnow


TRANSITIONS: dict[JobState, frozenset[JobState]] = {
    JobState.QUEUED: frozenset({JobState.PROCESSING, JobState.ERROR}),
    JobState.PROCESSING: frozenset({JobState.COMPLETE, JobState.ERROR}),
    JobState.COMPLETE: frozenset(),
    JobState.ERROR: frozenset(),
}

IN_FLIGHT_STATES = (JobState.QUEUED, JobState.PROCESSING)


def allowed_sources(target: JobState) -> tuple[JobState, ...]:
    """States from which ``target`` may be entered."""
    return tuple(s for s, targets in TRANSITIONS.items() if target in targets)


def check_transition(source: JobState, target: JobState) -> None:
    """Raise InvalidTransition unless source -> target is a legal move."""
    if target not in TRANSITIONS[source]:
        raise InvalidTransition(f"job cannot move from {source.value} to {target.value}")


class JobStatus(BaseModel):
    """Status payload returned to polling clients."""

    job_id: UUID
    document_id: UUID
    state: JobState
    progress: int = Field(..., ge=0, le=100)
    error: Optional[str] = None


class Job(BaseIRModel):
    """One extraction (or re-reconciliation) attempt for a Document."""

    document_id: UUID
    kind: JobKind = JobKind.EXTRACT
    state: JobState = JobState.QUEUED
    progress: int = Field(default=0, ge=0, le=100)
    error_message: Optional[str] = None
    attempts: int = Field(default=0, ge=0)
    corrections: Optional[dict[str, Any]] = None
    started_at: Optional[datetime] = None
    finished_at: Optional[datetime] = None
    updated_at: datetime = Field(default_factory=utcnow)

    @property
    def is_terminal(self) -> bool:
        return self.state.is_terminal

    @property
    def is_in_flight(self) -> bool:
        return self.state in IN_FLIGHT_STATES

    def can_transition_to(self, target: JobState) -> bool:
        return target in TRANSITIONS[self.state]

    def status(self) -> JobStatus:
        """Project the job onto the polling payload."""
        return JobStatus(
            job_id=self.id,
            document_id=self.document_id,
            state=self.state,
            progress=self.progress,
            error=self.error_message if self.state == JobState.ERROR else None,
        )


class JobEvent(BaseModel):
    """One entry of a job's status history."""

    model_config = ConfigDict(from_attributes=True)

    job_id: UUID
    state: JobState
    progress: int
    message: Optional[str] = None
    created_at: datetime


class JobHistory(BaseModel):
    """A job together with its status history, newest job first in listings."""

    job: Job
    events: list[JobEvent] = Field(default_factory=list)
