"""Tests for the deal-summary projection."""

from uuid import uuid4

from whisperer.models import DebtTerms, ExtractionRecord, RentRollEntry, Totals
from whisperer.reconcile import ReconciliationEngine, ReconciliationPolicy, deal_quality_index, deal_summary


def record(**kwargs) -> ExtractionRecord:
    return ExtractionRecord(document_id=uuid4(), job_id=uuid4(), **kwargs)


class TestDealQualityIndex:
    """Tests for the Deal Quality Index."""

    def test_strong_coverage(self):
        assert deal_quality_index(record(totals=Totals(dscr=1.5))) == 78

    def test_weak_coverage(self):
        assert deal_quality_index(record(totals=Totals(dscr=1.0))) == 62

    def test_uncapped_floating_and_concentration_penalties(self):
        rec = record(
            totals=Totals(dscr=1.25),
            debt_terms=DebtTerms(rate_type="Floating"),
            rent_roll=[
                RentRollEntry(unit_id="1", base_rent=9000),
                RentRollEntry(unit_id="2", base_rent=1000),
            ],
        )
        assert deal_quality_index(rec) == 64

    def test_concentration_groups_units_by_tenant(self):
        rec = record(
            totals=Totals(dscr=1.5),
            rent_roll=[
                RentRollEntry(unit_id="1", tenant_name="Acme Corp", base_rent=3000),
                RentRollEntry(unit_id="2", tenant_name="Acme Corp", base_rent=3000),
                RentRollEntry(unit_id="3", tenant_name="BlueMart", base_rent=3000),
                RentRollEntry(unit_id="4", tenant_name="Cafe Uno", base_rent=3000),
            ],
        )
        assert deal_quality_index(rec) == 73
        assert deal_quality_index(rec, ReconciliationPolicy(tenant_concentration_limit=0.6)) == 78

    def test_low_confidence_penalties(self):
        rec = record(totals=Totals(dscr=1.5), confidences={"rentRoll": 0.5, "t12": 0.9})
        assert deal_quality_index(rec) == 75


class TestDealSummary:
    """Tests for the projection itself."""

    def test_summary_copies_fields(self, draft):
        rec = ReconciliationEngine().reconcile(draft, uuid4(), uuid4())
        summary = deal_summary(rec)

        assert summary.noi == rec.totals.noi
        assert summary.dscr == rec.totals.dscr
        assert summary.walt_years == rec.metrics.walt_years
        assert 0 <= summary.deal_quality_index <= 100

    def test_summary_does_not_share_debt_terms(self, draft):
        rec = ReconciliationEngine().reconcile(draft, uuid4(), uuid4())
        summary = deal_summary(rec)
        summary.debt.lender = "Changed"
        assert rec.debt_terms.lender == "Sample Bank"
