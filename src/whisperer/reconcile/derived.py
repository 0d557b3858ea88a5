"""Independent recomputation of derived totals.

Worker-reported totals are never overwritten. Each derived figure is
recomputed from leaf values and stored next to the reported one as a
``DerivedValue``; the final ``totals`` use the reported figure when there
is one and fall back to the recomputed figure otherwise.
"""

from collections import defaultdict
from datetime import date
from decimal import Decimal
from typing import Optional, Union

from whisperer.models import DerivedValue, Metrics, RentRollEntry, T12Line, Totals

from .normalize import NormalizedRecord, round_ratio


Number = Union[int, float]

INCOME_CATEGORIES = ("income", "revenue", "rent")
EXPENSE_CATEGORIES = ("expense", "opex", "operating")


def is_income(line: T12Line) -> bool:
    return line.category.lower().startswith(INCOME_CATEGORIES)


def is_expense(line: T12Line) -> bool:
    return line.category.lower().startswith(EXPENSE_CATEGORIES)


def within_tolerance(reported: Number, recomputed: Number, tolerance_pct: float) -> bool:
    """True when the two values differ by at most ``tolerance_pct`` percent."""
    diff = abs(Decimal(str(reported)) - Decimal(str(recomputed)))
    if diff == 0:
        return True
    base = max(abs(Decimal(str(reported))), abs(Decimal(str(recomputed))))
    return diff * 100 <= Decimal(str(tolerance_pct)) * base


def compare(
    name: str,
    reported: Optional[Number],
    recomputed: Optional[Number],
    tolerance_pct: float,
) -> DerivedValue:
    """Build the side-by-side comparison for one derived field."""
    if reported is None or recomputed is None:
        return DerivedValue(field=name, reported=reported, recomputed=recomputed)
    diff = abs(Decimal(str(reported)) - Decimal(str(recomputed)))
    base = max(abs(Decimal(str(reported))), abs(Decimal(str(recomputed))))
    delta_pct = float(round(diff * 100 / base, 2)) if base else 0.0
    return DerivedValue(
        field=name,
        reported=reported,
        recomputed=recomputed,
        delta_pct=delta_pct,
        agrees=within_tolerance(reported, recomputed, tolerance_pct),
    )


def t12_income(lines: list[T12Line]) -> Optional[int]:
    amounts = [line.amount for line in lines if is_income(line) and line.amount is not None]
    return sum(amounts) if amounts else None


def t12_expenses(lines: list[T12Line]) -> Optional[int]:
    """Expense total as a positive figure; statements sign expenses either way."""
    amounts = [abs(line.amount) for line in lines if is_expense(line) and line.amount is not None]
    return sum(amounts) if amounts else None


def coverage_ratio(noi: Optional[int], debt_service: Optional[int]) -> Optional[float]:
    """NOI / annual debt service; undefined when debt service is missing or zero."""
    if noi is None or not debt_service:
        return None
    return round_ratio(Decimal(noi) / Decimal(debt_service))


def largest_tenant_share(rent_roll: list[RentRollEntry]) -> Optional[float]:
    """Largest single tenant's share of positive base rent, or None.

    Rows are grouped by tenant name; rows without a name count per unit.
    """
    rent_by_tenant: dict[str, int] = defaultdict(int)
    for row in rent_roll:
        if row.base_rent and row.base_rent > 0:
            rent_by_tenant[row.tenant_name or f"unit {row.unit_id}"] += row.base_rent
    total = sum(rent_by_tenant.values())
    if not total:
        return None
    return max(rent_by_tenant.values()) / total


def derive_totals(record: NormalizedRecord, tolerance_pct: float) -> None:
    """Fill ``record.totals`` and ``record.derived`` from the normalized values."""
    reported = record.reported
    derived: dict[str, DerivedValue] = {}

    gpr_less_vacancy = None
    if reported.gpr is not None and reported.vacancy is not None:
        gpr_less_vacancy = reported.gpr - abs(reported.vacancy)
    income = t12_income(record.t12_lines)
    expenses = t12_expenses(record.t12_lines)

    derived["egi"] = compare("egi", reported.egi, gpr_less_vacancy, tolerance_pct)
    derived["egi_t12"] = compare("egi_t12", reported.egi, income, tolerance_pct)
    derived["opex_t12"] = compare("opex_t12", reported.opex, expenses, tolerance_pct)

    egi = _first(reported.egi, gpr_less_vacancy, income)
    opex = _first(reported.opex, expenses)

    noi_recomputed = egi - opex if egi is not None and opex is not None else None
    derived["noi"] = compare("noi", reported.noi, noi_recomputed, tolerance_pct)
    noi = _first(reported.noi, noi_recomputed)

    dscr_recomputed = coverage_ratio(noi, reported.annual_debt_service)
    derived["dscr"] = compare("dscr", reported.dscr, dscr_recomputed, tolerance_pct)
    # A reported DSCR against zero debt service is meaningless
    if reported.annual_debt_service == 0:
        dscr = None
    else:
        dscr = _first(reported.dscr, dscr_recomputed)

    record.totals = Totals(
        gpr=reported.gpr,
        vacancy=reported.vacancy,
        egi=egi,
        opex=opex,
        noi=noi,
        annual_debt_service=reported.annual_debt_service,
        dscr=dscr,
    )
    record.derived = derived


def derive_metrics(record: NormalizedRecord, as_of: date) -> None:
    """Rent-roll metrics: WALT (years, weighted by base rent), units, area."""
    weighted = Decimal(0)
    weight = Decimal(0)
    for row in record.rent_roll:
        if row.end_date is None or not row.base_rent or row.base_rent < 0:
            continue
        remaining_years = max(Decimal(0), Decimal((row.end_date - as_of).days) / Decimal("365.25"))
        weighted += remaining_years * row.base_rent
        weight += row.base_rent
    sqft = [row.sqft for row in record.rent_roll if row.sqft is not None]
    record.metrics = Metrics(
        walt_years=round_ratio(weighted / weight) if weight else None,
        unit_count=len({row.unit_id for row in record.rent_roll}),
        total_sqft=sum(sqft) if sqft else None,
    )


def _first(*values):
    for value in values:
        if value is not None:
            return value
    return None
