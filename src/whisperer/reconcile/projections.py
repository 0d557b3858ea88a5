"""Read-only projections of a published record for downstream screens.

The deal wizard and submission form copy these fields into their own
state; the canonical record is never handed out for mutation.
"""

from typing import Optional

from pydantic import BaseModel, Field

from whisperer.models import DebtTerms, ExtractionRecord

from .derived import largest_tenant_share
from .policy import ReconciliationPolicy


class DealSummary(BaseModel):
    """Fields the deal wizard pre-fills, plus the Deal Quality Index."""

    egi: Optional[int] = None
    opex: Optional[int] = None
    noi: Optional[int] = None
    annual_debt_service: Optional[int] = None
    dscr: Optional[float] = None
    walt_years: Optional[float] = None
    debt: Optional[DebtTerms] = None
    deal_quality_index: int = Field(..., ge=0, le=100)
    needs_review: list[str] = Field(
        default_factory=list, description="Sections below the review confidence"
    )


REVIEW_CONFIDENCE = 0.95


def deal_quality_index(record: ExtractionRecord, policy: Optional[ReconciliationPolicy] = None) -> int:
    """Score a deal 0-100 from coverage, debt structure, tenancy and data quality.

    The concentration penalty applies exactly when the tenant-concentration
    check warns, using the same policy limit.
    """
    policy = policy or ReconciliationPolicy()
    score = 70
    totals = record.totals

    dscr = totals.dscr or 0.0
    if dscr >= 1.40:
        score += 8
    elif dscr >= 1.20:
        score += 4
    elif dscr >= 1.10:
        score += 1
    else:
        score -= 8

    debt = record.debt_terms
    if debt and (debt.rate_type or "").lower() == "floating" and not debt.rate_cap:
        score -= 5

    share = largest_tenant_share(record.rent_roll)
    if share is not None and share > policy.tenant_concentration_limit:
        score -= 5

    rent_roll_conf = record.confidences.get("rentRoll")
    if rent_roll_conf is not None and rent_roll_conf < REVIEW_CONFIDENCE:
        score -= 2
    t12_conf = record.confidences.get("t12")
    if t12_conf is not None and t12_conf < REVIEW_CONFIDENCE:
        score -= 1

    return max(0, min(100, round(score)))


def deal_summary(record: ExtractionRecord, policy: Optional[ReconciliationPolicy] = None) -> DealSummary:
    totals = record.totals
    return DealSummary(
        egi=totals.egi,
        opex=totals.opex,
        noi=totals.noi,
        annual_debt_service=totals.annual_debt_service,
        dscr=totals.dscr,
        walt_years=record.metrics.walt_years,
        debt=record.debt_terms.model_copy() if record.debt_terms else None,
        deal_quality_index=deal_quality_index(record, policy),
        needs_review=sorted(
            section for section, score in record.confidences.items() if score < REVIEW_CONFIDENCE
        ),
    )
