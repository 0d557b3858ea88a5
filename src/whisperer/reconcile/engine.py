"""Reconciliation engine.

Turns a worker draft into a published-ready ExtractionRecord:

1. normalize raw values (unreadable values become unknown, never guessed)
2. recompute derived totals and compare them with reported ones
3. run the registered rule set
4. score per-section confidence

Any unexpected exception is wrapped in ReconciliationError, which the job
runner records on the job. Checks that fail are a normal outcome.
"""

import logging
from datetime import date
from typing import Optional, Sequence
from uuid import UUID

from pydantic.alias_generators import to_camel

from whisperer.errors import ReconciliationError
from whisperer.models import Check, DraftRecord, ExtractionRecord, ProvenanceEntry, utcnow

from .confidence import compute_confidences
from .derived import derive_metrics, derive_totals
from .normalize import NormalizedRecord, normalize_draft
from .policy import ReconciliationPolicy
from .rules import RULES, Rule

logger = logging.getLogger(__name__)


class ReconciliationEngine:
    """Validates and cross-checks worker drafts."""

    def __init__(
        self,
        policy: Optional[ReconciliationPolicy] = None,
        rules: Optional[Sequence[Rule]] = None,
    ):
        self.policy = policy or ReconciliationPolicy()
        self.rules = list(RULES if rules is None else rules)

    def reconcile(
        self,
        draft: DraftRecord,
        document_id: UUID,
        job_id: UUID,
        as_of: Optional[date] = None,
    ) -> ExtractionRecord:
        """Reconcile one draft. Raises ReconciliationError if the engine breaks."""
        reconciled_at = utcnow()
        try:
            normalized = normalize_draft(draft)
            derive_totals(normalized, self.policy.tolerance_pct)
            derive_metrics(normalized, as_of or reconciled_at.date())
            checks = self.run_rules(normalized)
            confidences = compute_confidences(normalized, self.policy.t12_required_months)
            record = ExtractionRecord(
                document_id=document_id,
                job_id=job_id,
                totals=normalized.totals,
                t12_lines=normalized.t12_lines,
                rent_roll=normalized.rent_roll,
                debt_terms=normalized.debt_terms,
                covenants=normalized.covenants,
                assumptions=normalized.assumptions,
                checks=checks,
                confidences=confidences,
                derived=list(normalized.derived.values()),
                metrics=normalized.metrics,
                provenance=build_provenance(normalized),
                unknown_fields=normalized.unknown_fields,
                reconciled_at=reconciled_at,
            )
        except ReconciliationError:
            raise
        except Exception as exc:
            logger.exception("Reconciliation failed for job=%s", job_id)
            raise ReconciliationError(f"{type(exc).__name__}: {exc}") from exc

        logger.info(
            "Reconciled job=%s checks=%s",
            job_id,
            {c.id: c.status.value for c in record.checks},
        )
        return record

    def run_rules(self, record: NormalizedRecord) -> list[Check]:
        checks = []
        seen = set()
        for rule in self.rules:
            check = rule(record, self.policy)
            if check is None:
                continue
            if check.id in seen:
                raise ReconciliationError(f"rule {rule.__name__} produced duplicate check id {check.id!r}")
            seen.add(check.id)
            checks.append(check)
        return checks


def build_provenance(record: NormalizedRecord) -> list[ProvenanceEntry]:
    """Audit trail: which source page backs which figure."""
    entries = []
    for name, page in sorted(record.total_source_pages.items()):
        snake = _snake(name)
        value = getattr(record.totals, snake, None)
        entries.append(ProvenanceEntry(field=f"totals.{to_camel(snake)}", value=value, source_page=page))
    for i, line in enumerate(record.t12_lines):
        if line.source_page:
            entries.append(ProvenanceEntry(field=f"t12Lines[{i}].amount", value=line.amount, source_page=line.source_page))
    for i, row in enumerate(record.rent_roll):
        if row.source_page:
            entries.append(ProvenanceEntry(field=f"rentRoll[{i}].baseRent", value=row.base_rent, source_page=row.source_page))
    if record.debt_terms and record.debt_terms.source_page:
        entries.append(
            ProvenanceEntry(field="debtTerms.principal", value=record.debt_terms.principal, source_page=record.debt_terms.source_page)
        )
    for i, assumption in enumerate(record.assumptions):
        for ref in assumption.source_refs:
            entries.append(ProvenanceEntry(field=f"assumptions[{i}]", value=ref.snippet, source_page=ref.page))
    return entries


def _snake(name: str) -> str:
    return "".join(f"_{c.lower()}" if c.isupper() else c for c in name)
