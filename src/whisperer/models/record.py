"""Extraction payload models.

Two families live here:

- ``Draft*`` models describe what the extraction worker hands back. They
  are deliberately loose (numbers may arrive as ``"$1,250,000.00"``) and
  are only checked for shape.
- The remaining models describe the reconciled ``ExtractionRecord``.
  Monetary amounts are integers in minor units (cents); ratios and rates
  are floats rounded for display and comparison.
"""

from datetime import date, datetime
from typing import Optional, Union
from uuid import UUID

from pydantic import ConfigDict, Field

from .base import CheckStatus, RecordModel, SourceRef, utcnow


RawValue = Union[int, float, str, None]


# ---------------------------------------------------------------------------
# Worker draft
# ---------------------------------------------------------------------------


class DraftModel(RecordModel):
    """Worker output fields; anything unknown is dropped."""

    model_config = ConfigDict(extra="ignore")


class DraftTotals(DraftModel):
    gpr: RawValue = None
    vacancy: RawValue = None
    egi: RawValue = None
    opex: RawValue = None
    noi: RawValue = None
    annual_debt_service: RawValue = None
    dscr: RawValue = None
    source_pages: dict[str, int] = Field(
        default_factory=dict, description="Total name -> page it was read from"
    )


class DraftT12Line(DraftModel):
    month: Optional[str] = None
    category: str = ""
    subcategory: Optional[str] = None
    amount: RawValue = None
    source_page: Optional[int] = None


class DraftRentRollEntry(DraftModel):
    unit_id: Union[str, int]
    tenant_name: Optional[str] = None
    sqft: RawValue = None
    start_date: Optional[str] = None
    end_date: Optional[str] = None
    base_rent: RawValue = None
    escalations: Optional[str] = None
    source_page: Optional[int] = None


class DraftDebtTerms(DraftModel):
    lender: Optional[str] = None
    principal: RawValue = None
    rate_type: Optional[str] = None
    index: Optional[str] = None
    spread_bps: RawValue = None
    all_in_rate: RawValue = None
    amortization_months: RawValue = None
    io_months: RawValue = None
    maturity_date: Optional[str] = None
    rate_cap: Optional[str] = None
    source_page: Optional[int] = None


class DraftCovenant(DraftModel):
    type: str
    threshold: Optional[str] = None
    frequency: Optional[str] = None


class DraftAssumption(DraftModel):
    text: str
    source_refs: list[SourceRef] = Field(default_factory=list)


class DraftRecord(DraftModel):
    """Structured draft produced by the extraction worker.

    ``checks`` and ``confidences`` are never accepted from the worker;
    they are produced by reconciliation only.
    """

    totals: DraftTotals = Field(default_factory=DraftTotals)
    t12_lines: list[DraftT12Line] = Field(default_factory=list)
    rent_roll: list[DraftRentRollEntry] = Field(default_factory=list)
    debt_terms: Optional[DraftDebtTerms] = None
    covenants: list[DraftCovenant] = Field(default_factory=list)
    assumptions: list[DraftAssumption] = Field(default_factory=list)
    ocr_confidence: dict[str, float] = Field(
        default_factory=dict, description="Optional per-section OCR confidence hints"
    )


# ---------------------------------------------------------------------------
# Reconciled record
# ---------------------------------------------------------------------------


class Totals(RecordModel):
    gpr: Optional[int] = None
    vacancy: Optional[int] = None
    egi: Optional[int] = None
    opex: Optional[int] = None
    noi: Optional[int] = None
    annual_debt_service: Optional[int] = None
    dscr: Optional[float] = None


class T12Line(RecordModel):
    month: Optional[str] = Field(None, description="YYYY-MM")
    category: str
    subcategory: Optional[str] = None
    amount: Optional[int] = None
    source_page: Optional[int] = None


class RentRollEntry(RecordModel):
    unit_id: str
    tenant_name: Optional[str] = None
    sqft: Optional[int] = None
    start_date: Optional[date] = None
    end_date: Optional[date] = None
    base_rent: Optional[int] = None
    escalations: Optional[str] = None
    source_page: Optional[int] = None


class DebtTerms(RecordModel):
    lender: Optional[str] = None
    principal: Optional[int] = None
    rate_type: Optional[str] = None
    index: Optional[str] = None
    spread_bps: Optional[int] = None
    all_in_rate: Optional[float] = None
    amortization_months: Optional[int] = None
    io_months: Optional[int] = None
    maturity_date: Optional[date] = None
    rate_cap: Optional[str] = None
    source_page: Optional[int] = None


class Covenant(RecordModel):
    type: str
    threshold: Optional[str] = None
    frequency: Optional[str] = None


class Assumption(RecordModel):
    text: str
    source_refs: list[SourceRef] = Field(default_factory=list)


class Check(RecordModel):
    id: str
    label: str
    status: CheckStatus
    detail: Optional[str] = None


class DerivedValue(RecordModel):
    """A worker-reported figure next to its independent recomputation."""

    field: str
    reported: Optional[float] = None
    recomputed: Optional[float] = None
    delta_pct: Optional[float] = None
    agrees: Optional[bool] = Field(
        None, description="None when either side is missing"
    )


class ProvenanceEntry(RecordModel):
    """Which source page backs which published figure."""

    field: str
    value: Union[int, float, str, None] = None
    source_page: int = Field(..., ge=1)


class Metrics(RecordModel):
    walt_years: Optional[float] = None
    unit_count: int = 0
    total_sqft: Optional[int] = None


class ExtractionRecord(RecordModel):
    """The reconciled, published result of one job."""

    document_id: UUID
    job_id: UUID
    totals: Totals = Field(default_factory=Totals)
    t12_lines: list[T12Line] = Field(default_factory=list)
    rent_roll: list[RentRollEntry] = Field(default_factory=list)
    debt_terms: Optional[DebtTerms] = None
    covenants: list[Covenant] = Field(default_factory=list)
    assumptions: list[Assumption] = Field(default_factory=list)
    checks: list[Check] = Field(default_factory=list)
    confidences: dict[str, float] = Field(default_factory=dict)
    derived: list[DerivedValue] = Field(default_factory=list)
    metrics: Metrics = Field(default_factory=Metrics)
    provenance: list[ProvenanceEntry] = Field(default_factory=list)
    unknown_fields: list[str] = Field(
        default_factory=list, description="Values dropped as invalid during normalization"
    )
    reconciled_at: datetime = Field(default_factory=utcnow)

    def check(self, check_id: str) -> Optional[Check]:
        """Look up a check by id."""
        for check in self.checks:
            if check.id == check_id:
                return check
        return None

    def to_payload(self) -> dict:
        """JSON-ready dict using wire (camelCase) names."""
        return self.model_dump(mode="json", by_alias=True)
