"""Reconciliation: normalization, derived-field math, rule checks, confidence."""

from .confidence import compute_confidences, section_confidence
from .derived import derive_metrics, derive_totals, largest_tenant_share, within_tolerance
from .engine import ReconciliationEngine, build_provenance
from .normalize import (
    NormalizedRecord,
    format_money,
    normalize_draft,
    parse_date,
    parse_money,
    parse_month,
    parse_rate,
    parse_ratio,
)
from .policy import ReconciliationPolicy
from .projections import DealSummary, deal_quality_index, deal_summary
from .rules import RULES, Rule, register_rule

__all__ = [
    "NormalizedRecord",
    "normalize_draft",
    "parse_date",
    "parse_money",
    "parse_month",
    "parse_rate",
    "parse_ratio",
    "format_money",
    "derive_metrics",
    "derive_totals",
    "largest_tenant_share",
    "within_tolerance",
    "compute_confidences",
    "section_confidence",
    "ReconciliationEngine",
    "build_provenance",
    "ReconciliationPolicy",
    "DealSummary",
    "deal_quality_index",
    "deal_summary",
    "RULES",
    "Rule",
    "register_rule",
]
