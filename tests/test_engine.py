"""Tests for the reconciliation engine and its rules."""

from datetime import date
from uuid import uuid4

import pytest

from conftest import short_t12_draft
from whisperer.errors import ReconciliationError
from whisperer.models import Check, CheckStatus, DraftRecord
from whisperer.reconcile import (
    RULES,
    ReconciliationEngine,
    ReconciliationPolicy,
    register_rule,
)


def reconcile(payload: dict, policy: ReconciliationPolicy = None, as_of: date = date(2025, 9, 1)):
    engine = ReconciliationEngine(policy)
    return engine.reconcile(DraftRecord.model_validate(payload), uuid4(), uuid4(), as_of=as_of)


def statuses(record) -> dict:
    return {check.id: check.status for check in record.checks}


class TestShortT12LowCoverage:
    """Ten T-12 months and a 1.15 DSCR against a 1.25 minimum."""

    @pytest.fixture
    def record(self):
        return reconcile(short_t12_draft(months=10), ReconciliationPolicy(dscr_minimum=1.25))

    def test_month_coverage_warns(self, record):
        check = record.check("t12-months")
        assert check.status == CheckStatus.WARN
        assert "Only 10 of 12 months" in check.detail

    def test_dscr_below_minimum_warns(self, record):
        check = record.check("dscr-adequate")
        assert check.status == CheckStatus.WARN
        assert "1.15" in check.detail
        assert "1.25" in check.detail

    def test_dscr_is_exact(self, record):
        assert record.totals.dscr == 1.15

    def test_derived_totals_agree(self, record):
        assert record.check("noi-consistency").status == CheckStatus.PASS
        assert record.check("egi-consistency").status == CheckStatus.PASS
        assert record.check("egi-t12-tieout").status == CheckStatus.PASS
        assert record.check("opex-t12-tieout").status == CheckStatus.PASS


class TestSampleDraft:
    """The canned sample draft reconciles cleanly apart from concentration."""

    def test_checks(self, draft):
        record = ReconciliationEngine().reconcile(draft, uuid4(), uuid4(), as_of=date(2025, 9, 1))
        result = statuses(record)

        assert result["t12-months"] == CheckStatus.PASS
        assert result["noi-consistency"] == CheckStatus.PASS
        assert result["dscr-adequate"] == CheckStatus.PASS
        assert result["covenant-dscr"] == CheckStatus.PASS
        assert result["floating-rate-cap"] == CheckStatus.PASS
        assert result["rent-roll-dates"] == CheckStatus.PASS
        assert result["tenant-concentration"] == CheckStatus.WARN
        assert record.totals.noi == 108000000
        assert record.totals.dscr == 1.26

    def test_check_ids_are_unique(self, draft):
        record = ReconciliationEngine().reconcile(draft, uuid4(), uuid4())
        ids = [check.id for check in record.checks]
        assert len(ids) == len(set(ids))

    def test_provenance_points_at_pages(self, draft):
        record = ReconciliationEngine().reconcile(draft, uuid4(), uuid4())
        fields = {entry.field: entry for entry in record.provenance}

        assert fields["totals.noi"].source_page == 5
        assert fields["totals.noi"].value == 108000000
        assert fields["totals.annualDebtService"].source_page == 12
        assert fields["debtTerms.principal"].source_page == 12

    def test_walt(self, draft):
        record = ReconciliationEngine().reconcile(draft, uuid4(), uuid4(), as_of=date(2025, 9, 1))
        assert record.metrics.unit_count == 3
        assert record.metrics.total_sqft == 2830
        assert 0 < record.metrics.walt_years < 2


class TestDerivedFieldLaw:
    """NOI either equals EGI - OpEx or is flagged."""

    def test_noi_mismatch_fails_and_keeps_both_values(self):
        payload = short_t12_draft(months=12)
        payload["totals"]["noi"] = 750000
        record = reconcile(payload)

        check = record.check("noi-consistency")
        assert check.status == CheckStatus.FAIL
        # Reported value is kept, recomputed value sits next to it
        assert record.totals.noi == 75000000
        noi = next(d for d in record.derived if d.field == "noi")
        assert noi.reported == 75000000
        assert noi.recomputed == 69000000
        assert noi.agrees is False

    def test_noi_within_tolerance_passes(self):
        payload = short_t12_draft(months=12)
        payload["totals"]["noi"] = 692000  # 0.29% off
        record = reconcile(payload)
        assert record.check("noi-consistency").status == CheckStatus.PASS

    def test_missing_noi_is_recomputed(self):
        payload = short_t12_draft(months=12)
        del payload["totals"]["noi"]
        record = reconcile(payload)
        assert record.totals.noi == 69000000
        assert record.check("noi-consistency") is None

    def test_dscr_recomputed_when_missing(self):
        payload = short_t12_draft(months=12)
        del payload["totals"]["dscr"]
        record = reconcile(payload)
        assert record.totals.dscr == 1.15


class TestRules:
    """Individual rule outcomes."""

    def test_month_gap_names_missing_months(self):
        payload = short_t12_draft(months=12)
        payload["t12Lines"] = [l for l in payload["t12Lines"] if l["month"] not in ("2024-04", "2024-05")]
        check = reconcile(payload).check("t12-months")

        assert check.status == CheckStatus.WARN
        assert "2024-04" in check.detail
        assert "2024-05" in check.detail

    def test_duplicate_lines_warn(self):
        payload = short_t12_draft(months=12)
        payload["t12Lines"].append(dict(payload["t12Lines"][0]))
        record = reconcile(payload)
        assert record.check("t12-duplicates").status == CheckStatus.WARN
        # Not merged
        assert len(record.t12_lines) == 25

    def test_zero_debt_service_is_flagged_not_crashed(self):
        payload = short_t12_draft(months=12)
        payload["totals"]["annualDebtService"] = 0
        record = reconcile(payload)

        assert record.totals.dscr is None
        check = record.check("dscr-adequate")
        assert check.status == CheckStatus.WARN
        assert "undefined" in check.detail

    def test_negative_noi_fails(self):
        payload = short_t12_draft(months=12)
        payload["totals"].update(opex=1200000, noi=-200000)
        record = reconcile(payload)
        assert record.check("noi-positive").status == CheckStatus.FAIL

    def test_negative_noi_explained_by_covenant_warns(self):
        payload = short_t12_draft(months=12)
        payload["totals"].update(opex=1200000, noi=-200000)
        payload["covenants"] = [{"type": "Interest reserve", "threshold": "12 months", "frequency": "Monthly"}]
        record = reconcile(payload)
        assert record.check("noi-positive").status == CheckStatus.WARN

    def test_lease_end_before_start_fails(self):
        payload = short_t12_draft(months=12)
        payload["rentRoll"][1]["endDate"] = "2021-01-01"
        check = reconcile(payload).check("rent-roll-dates")
        assert check.status == CheckStatus.FAIL
        assert "A2" in check.detail

    def test_covenant_breach_fails(self):
        payload = short_t12_draft(months=12)
        payload["covenants"] = [{"type": "DSCR", "threshold": ">= 1.30x", "frequency": "Quarterly"}]
        assert reconcile(payload).check("covenant-dscr").status == CheckStatus.FAIL

    def test_uncapped_floating_rate_warns(self):
        payload = short_t12_draft(months=12)
        payload["debtTerms"] = {"lender": "Bank", "rateType": "floating", "principal": 1000000}
        assert reconcile(payload).check("floating-rate-cap").status == CheckStatus.WARN

    def test_concentration_never_names_tenant(self):
        payload = short_t12_draft(months=12)
        payload["rentRoll"][0]["baseRent"] = 50000
        check = reconcile(payload).check("tenant-concentration")
        assert check.status == CheckStatus.WARN
        assert "Northwind" not in check.detail

    def test_policy_threshold_is_configurable(self):
        record = reconcile(short_t12_draft(months=12), ReconciliationPolicy(dscr_minimum=1.10))
        assert record.check("dscr-adequate").status == CheckStatus.PASS


class TestEngine:
    """Engine behavior around the rule set."""

    def test_reconcile_is_deterministic(self, draft):
        engine = ReconciliationEngine()
        doc_id, job_id = uuid4(), uuid4()
        first = engine.reconcile(draft, doc_id, job_id, as_of=date(2025, 9, 1))
        second = engine.reconcile(draft, doc_id, job_id, as_of=date(2025, 9, 1))

        assert first.checks == second.checks
        assert first.confidences == second.confidences
        assert first.totals == second.totals

    def test_custom_rule_is_additive(self, draft):
        def always_warn(record, policy):
            return Check(id="custom", label="Custom", status=CheckStatus.WARN)

        engine = ReconciliationEngine(rules=[*RULES, always_warn])
        record = engine.reconcile(draft, uuid4(), uuid4())

        assert record.check("custom").status == CheckStatus.WARN
        assert record.check("t12-months") is not None

    def test_broken_rule_raises_reconciliation_error(self, draft):
        def broken(record, policy):
            raise ZeroDivisionError("boom")

        engine = ReconciliationEngine(rules=[broken])
        with pytest.raises(ReconciliationError, match="ZeroDivisionError"):
            engine.reconcile(draft, uuid4(), uuid4())

    def test_duplicate_check_id_is_an_engine_error(self, draft):
        def dup(record, policy):
            return Check(id="same", label="Same", status=CheckStatus.PASS)

        engine = ReconciliationEngine(rules=[dup, dup])
        with pytest.raises(ReconciliationError, match="duplicate"):
            engine.reconcile(draft, uuid4(), uuid4())

    def test_register_rule_appends(self):
        before = len(RULES)

        def extra(record, policy):
            return None

        try:
            assert register_rule(extra) is extra
            assert RULES[-1] is extra
            assert len(RULES) == before + 1
        finally:
            RULES.remove(extra)
