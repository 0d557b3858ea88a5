"""Pydantic models for the extraction and reconciliation pipeline.

Model Hierarchy:
- Document → Jobs → JobEvents (status history)
- Job → DraftRecord (worker output) → ExtractionRecord (reconciled, published)
"""

from .base import (
    BaseIRModel,
    CheckStatus,
    JobKind,
    JobState,
    RecordModel,
    SourceRef,
    utcnow,
)
from .document import (
    Document,
    JobHandle,
)
from .job import (
    IN_FLIGHT_STATES,
    TRANSITIONS,
    Job,
    JobEvent,
    JobHistory,
    JobStatus,
    allowed_sources,
    check_transition,
)
from .record import (
    Assumption,
    Check,
    Covenant,
    DebtTerms,
    DerivedValue,
    DraftAssumption,
    DraftCovenant,
    DraftDebtTerms,
    DraftRecord,
    DraftRentRollEntry,
    DraftT12Line,
    DraftTotals,
    ExtractionRecord,
    Metrics,
    ProvenanceEntry,
    RentRollEntry,
    T12Line,
    Totals,
)

__all__ = [
    # Base types
    "BaseIRModel",
    "CheckStatus",
    "JobKind",
    "JobState",
    "RecordModel",
    "SourceRef",
    "utcnow",
    # Document
    "Document",
    "JobHandle",
    # Job
    "IN_FLIGHT_STATES",
    "TRANSITIONS",
    "Job",
    "JobEvent",
    "JobHistory",
    "JobStatus",
    "allowed_sources",
    "check_transition",
    # Draft
    "DraftAssumption",
    "DraftCovenant",
    "DraftDebtTerms",
    "DraftRecord",
    "DraftRentRollEntry",
    "DraftT12Line",
    "DraftTotals",
    # Record
    "Assumption",
    "Check",
    "Covenant",
    "DebtTerms",
    "DerivedValue",
    "ExtractionRecord",
    "Metrics",
    "ProvenanceEntry",
    "RentRollEntry",
    "T12Line",
    "Totals",
]
