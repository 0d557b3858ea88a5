"""Tests for value normalization."""

from datetime import date

import pytest

from whisperer.models import DraftRecord
from whisperer.reconcile import (
    format_money,
    normalize_draft,
    parse_date,
    parse_money,
    parse_month,
    parse_rate,
    parse_ratio,
)


class TestParseMoney:
    """Tests for monetary parsing into cents."""

    @pytest.mark.parametrize(
        "raw, cents",
        [
            (1250000, 125000000),
            ("$1,250,000.00", 125000000),
            ("1,234.565", 123457),
            ("(3,000)", -300000),
            ("-45.10", -4510),
            ("USD 12", 1200),
            (0.1, 10),
        ],
    )
    def test_parses_amounts(self, raw, cents):
        assert parse_money(raw) == cents

    @pytest.mark.parametrize("raw", [None, "", "n/a", "about 5k", True])
    def test_unreadable_is_unknown(self, raw):
        assert parse_money(raw) is None

    def test_format_money(self):
        assert format_money(123456) == "$1,234.56"
        assert format_money(-500) == "-$5.00"
        assert format_money(None) == "n/a"


class TestRatiosAndRates:
    """Tests for ratio and interest-rate parsing."""

    def test_ratio_suffix(self):
        assert parse_ratio("1.15x") == 1.15
        assert parse_ratio("1.255") == 1.26

    def test_ratio_rounds_half_up(self):
        assert parse_ratio(1.125) == 1.13

    def test_rate_percent_forms(self):
        assert parse_rate("7.1%") == 0.071
        assert parse_rate(7.1) == 0.071
        assert parse_rate(0.065) == 0.065

    def test_negative_rate_is_unknown(self):
        assert parse_rate("-2%") is None


class TestDates:
    """Tests for date and month parsing."""

    def test_date_formats(self):
        assert parse_date("2026-05-31") == date(2026, 5, 31)
        assert parse_date("05/31/2026") == date(2026, 5, 31)
        assert parse_date("May 31, 2026") == date(2026, 5, 31)

    def test_out_of_range_year_is_unknown(self):
        assert parse_date("3024-01-01") is None
        assert parse_date("1850-01-01") is None

    def test_month_labels(self):
        assert parse_month("Jan 2025") == "2025-01"
        assert parse_month("2025-01") == "2025-01"
        assert parse_month("01/2025") == "2025-01"
        assert parse_month("2025-01-15") == "2025-01"
        assert parse_month("sometime") is None


class TestNormalizeDraft:
    """Tests for whole-draft normalization."""

    def test_invalid_values_become_unknown(self):
        draft = DraftRecord.model_validate(
            {
                "totals": {"noi": "not a number", "egi": "$100"},
                "rentRoll": [
                    {"unitId": 7, "tenantName": "  Some   Tenant ", "sqft": -50, "endDate": "2999-01-01"},
                ],
            }
        )
        record = normalize_draft(draft)

        assert record.reported.noi is None
        assert record.reported.egi == 10000
        row = record.rent_roll[0]
        assert row.unit_id == "7"
        assert row.tenant_name == "Some Tenant"
        assert row.sqft is None
        assert row.end_date is None
        assert record.unknown_fields == ["totals.noi", "rentRoll[0].sqft", "rentRoll[0].endDate"]

    def test_t12_lines_sorted_by_month_then_category(self):
        draft = DraftRecord.model_validate(
            {
                "t12Lines": [
                    {"month": "Feb 2025", "category": "Income", "amount": 1},
                    {"month": "Jan 2025", "category": "Income", "amount": 2},
                    {"month": "Jan 2025", "category": "Expense", "amount": -3},
                ]
            }
        )
        lines = normalize_draft(draft).t12_lines

        assert [(l.month, l.category) for l in lines] == [
            ("2025-01", "Expense"),
            ("2025-01", "Income"),
            ("2025-02", "Income"),
        ]

    def test_worker_checks_are_ignored(self):
        """Checks and confidences only ever come from reconciliation."""
        draft = DraftRecord.model_validate(
            {"checks": [{"id": "fake", "status": "pass"}], "confidences": {"totals": 1.0}}
        )
        assert not hasattr(draft, "checks")

    def test_ocr_hints_are_clamped(self):
        draft = DraftRecord.model_validate({"ocrConfidence": {"t12": 1.7, "rentRoll": -0.2}})
        record = normalize_draft(draft)
        assert record.ocr_confidence == {"t12": 1.0, "rentRoll": 0.0}
