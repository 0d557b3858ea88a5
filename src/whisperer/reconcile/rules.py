"""Reconciliation rule set.

Each rule is a plain function ``(NormalizedRecord, ReconciliationPolicy)
-> Optional[Check]`` registered with ``@register_rule``. Rules are
independent: they read the normalized record, never mutate it, and never
depend on another rule's output. Returning None means the rule does not
apply to this record (e.g. no rent roll was extracted).
"""

import re
from collections import Counter
from typing import Callable, Optional

from whisperer.models import Check, CheckStatus

from .derived import largest_tenant_share
from .normalize import NormalizedRecord, format_money
from .policy import ReconciliationPolicy


Rule = Callable[[NormalizedRecord, ReconciliationPolicy], Optional[Check]]

RULES: list[Rule] = []

# Text in covenants/assumptions that explains a negative NOI
NOI_EXPLANATION_RE = re.compile(
    r"lease[- ]?up|stabiliz|operating deficit|interest reserve|debt service reserve|negative noi|renovation",
    re.IGNORECASE,
)
_THRESHOLD_RE = re.compile(r"(\d+(?:\.\d+)?)")


def register_rule(rule: Rule) -> Rule:
    """Add a rule to the default rule set."""
    RULES.append(rule)
    return rule


def _check(check_id: str, label: str, status: CheckStatus, detail: Optional[str] = None) -> Check:
    return Check(id=check_id, label=label, status=status, detail=detail)


def _month_index(month: str) -> int:
    year, mon = month.split("-")
    return int(year) * 12 + int(mon) - 1


def _month_label(index: int) -> str:
    return f"{index // 12:04d}-{index % 12 + 1:02d}"


# ---------------------------------------------------------------------------
# T-12
# ---------------------------------------------------------------------------


@register_rule
def t12_month_coverage(record: NormalizedRecord, policy: ReconciliationPolicy) -> Optional[Check]:
    """Expect ``t12_required_months`` distinct, contiguous months."""
    label = f"T-12 has {policy.t12_required_months} months"
    months = sorted({line.month for line in record.t12_lines if line.month})
    if not months:
        return _check("t12-months", label, CheckStatus.WARN, "No T-12 months extracted")

    first, last = _month_index(months[0]), _month_index(months[-1])
    present = {_month_index(m) for m in months}
    missing = [_month_label(i) for i in range(first, last + 1) if i not in present]

    problems = []
    if len(months) < policy.t12_required_months:
        problems.append(f"Only {len(months)} of {policy.t12_required_months} months present")
    if missing:
        problems.append("missing months: " + ", ".join(missing))
    if problems:
        return _check("t12-months", label, CheckStatus.WARN, "; ".join(problems))
    return _check(
        "t12-months", label, CheckStatus.PASS, f"{len(months)} months ({months[0]} to {months[-1]})"
    )


@register_rule
def t12_duplicate_lines(record: NormalizedRecord, policy: ReconciliationPolicy) -> Optional[Check]:
    """Same month + category + subcategory appearing twice is flagged, not merged."""
    if not record.t12_lines:
        return None
    keys = Counter(
        (line.month, line.category.lower(), (line.subcategory or "").lower())
        for line in record.t12_lines
    )
    duplicates = sorted(
        f"{month or 'unknown month'} {category}{'/' + sub if sub else ''}"
        for (month, category, sub), count in keys.items()
        if count > 1
    )
    label = "T-12 lines are unique"
    if duplicates:
        return _check("t12-duplicates", label, CheckStatus.WARN, "Duplicate lines: " + "; ".join(duplicates))
    return _check("t12-duplicates", label, CheckStatus.PASS)


# ---------------------------------------------------------------------------
# Derived totals
# ---------------------------------------------------------------------------


def _comparison_check(
    record: NormalizedRecord,
    name: str,
    check_id: str,
    label: str,
    mismatch: CheckStatus,
    describe: Callable[[float, float], str],
    policy: ReconciliationPolicy,
) -> Optional[Check]:
    comparison = record.comparison(name)
    if comparison is None or comparison.agrees is None:
        return None
    if comparison.agrees:
        return _check(check_id, label, CheckStatus.PASS)
    detail = (
        f"{describe(comparison.reported, comparison.recomputed)} "
        f"({comparison.delta_pct:.2f}% apart, tolerance {policy.tolerance_pct:g}%)"
    )
    return _check(check_id, label, mismatch, detail)


@register_rule
def noi_consistency(record: NormalizedRecord, policy: ReconciliationPolicy) -> Optional[Check]:
    return _comparison_check(
        record,
        "noi",
        "noi-consistency",
        "NOI equals EGI less OpEx",
        CheckStatus.FAIL,
        lambda rep, rec: f"Reported NOI {format_money(int(rep))} vs EGI - OpEx {format_money(int(rec))}",
        policy,
    )


@register_rule
def egi_consistency(record: NormalizedRecord, policy: ReconciliationPolicy) -> Optional[Check]:
    return _comparison_check(
        record,
        "egi",
        "egi-consistency",
        "EGI equals GPR less vacancy",
        CheckStatus.WARN,
        lambda rep, rec: f"Reported EGI {format_money(int(rep))} vs GPR - vacancy {format_money(int(rec))}",
        policy,
    )


@register_rule
def egi_t12_tieout(record: NormalizedRecord, policy: ReconciliationPolicy) -> Optional[Check]:
    return _comparison_check(
        record,
        "egi_t12",
        "egi-t12-tieout",
        "EGI ties to T-12 income",
        CheckStatus.WARN,
        lambda rep, rec: f"Reported EGI {format_money(int(rep))} vs T-12 income {format_money(int(rec))}",
        policy,
    )


@register_rule
def opex_t12_tieout(record: NormalizedRecord, policy: ReconciliationPolicy) -> Optional[Check]:
    return _comparison_check(
        record,
        "opex_t12",
        "opex-t12-tieout",
        "OpEx ties to T-12 expenses",
        CheckStatus.WARN,
        lambda rep, rec: f"Reported OpEx {format_money(int(rep))} vs T-12 expenses {format_money(int(rec))}",
        policy,
    )


@register_rule
def dscr_consistency(record: NormalizedRecord, policy: ReconciliationPolicy) -> Optional[Check]:
    return _comparison_check(
        record,
        "dscr",
        "dscr-consistency",
        "DSCR equals NOI / debt service",
        CheckStatus.WARN,
        lambda rep, rec: f"Reported DSCR {rep:.2f} vs recomputed {rec:.2f}",
        policy,
    )


@register_rule
def noi_positive(record: NormalizedRecord, policy: ReconciliationPolicy) -> Optional[Check]:
    """Negative NOI fails unless a covenant or assumption explains it."""
    label = "NOI is positive"
    noi = record.totals.noi
    if noi is None:
        return _check("noi-positive", label, CheckStatus.WARN, "NOI could not be determined")
    if noi >= 0:
        return _check("noi-positive", label, CheckStatus.PASS)
    texts = [a.text for a in record.assumptions]
    texts += [" ".join(filter(None, (c.type, c.threshold))) for c in record.covenants]
    if any(NOI_EXPLANATION_RE.search(text) for text in texts):
        return _check(
            "noi-positive",
            label,
            CheckStatus.WARN,
            f"NOI is negative ({format_money(noi)}); explained by covenant or assumption",
        )
    return _check("noi-positive", label, CheckStatus.FAIL, f"NOI is negative ({format_money(noi)})")


# ---------------------------------------------------------------------------
# Debt
# ---------------------------------------------------------------------------


@register_rule
def dscr_adequate(record: NormalizedRecord, policy: ReconciliationPolicy) -> Optional[Check]:
    label = f"DSCR at least {policy.dscr_minimum:.2f}"
    debt_service = record.totals.annual_debt_service
    if debt_service is None:
        return _check("dscr-adequate", label, CheckStatus.WARN, "Annual debt service not found")
    if debt_service == 0:
        return _check(
            "dscr-adequate", label, CheckStatus.WARN, "DSCR undefined: annual debt service is zero"
        )
    dscr = record.totals.dscr
    if dscr is None:
        return _check("dscr-adequate", label, CheckStatus.WARN, "DSCR could not be determined")
    if dscr < policy.dscr_minimum:
        return _check(
            "dscr-adequate",
            label,
            CheckStatus.WARN,
            f"DSCR {dscr:.2f} is below the {policy.dscr_minimum:.2f} minimum",
        )
    return _check(
        "dscr-adequate", label, CheckStatus.PASS, f"DSCR {dscr:.2f} vs {policy.dscr_minimum:.2f} minimum"
    )


@register_rule
def covenant_dscr(record: NormalizedRecord, policy: ReconciliationPolicy) -> Optional[Check]:
    """Compare DSCR with any DSCR covenant threshold found in the loan docs."""
    dscr = record.totals.dscr
    if dscr is None:
        return None
    thresholds = []
    for covenant in record.covenants:
        if "dscr" not in covenant.type.lower() or not covenant.threshold:
            continue
        match = _THRESHOLD_RE.search(covenant.threshold)
        if match:
            thresholds.append(float(match.group(1)))
    if not thresholds:
        return None
    required = max(thresholds)
    label = "DSCR meets loan covenant"
    if dscr < required:
        return _check(
            "covenant-dscr", label, CheckStatus.FAIL, f"DSCR {dscr:.2f} breaches the {required:.2f} covenant"
        )
    return _check("covenant-dscr", label, CheckStatus.PASS, f"DSCR {dscr:.2f} vs {required:.2f} covenant")


@register_rule
def floating_rate_cap(record: NormalizedRecord, policy: ReconciliationPolicy) -> Optional[Check]:
    terms = record.debt_terms
    if terms is None or not terms.rate_type or terms.rate_type.lower() != "floating":
        return None
    label = "Floating-rate debt is capped"
    if terms.rate_cap:
        return _check("floating-rate-cap", label, CheckStatus.PASS, terms.rate_cap)
    return _check("floating-rate-cap", label, CheckStatus.WARN, "Floating-rate loan with no rate cap found")


# ---------------------------------------------------------------------------
# Rent roll
# ---------------------------------------------------------------------------


@register_rule
def rent_roll_dates(record: NormalizedRecord, policy: ReconciliationPolicy) -> Optional[Check]:
    if not record.rent_roll:
        return None
    label = "Lease end dates follow start dates"
    bad_units = [
        row.unit_id
        for row in record.rent_roll
        if row.start_date and row.end_date and row.end_date < row.start_date
    ]
    if bad_units:
        return _check(
            "rent-roll-dates", label, CheckStatus.FAIL, "End before start for units: " + ", ".join(bad_units)
        )
    return _check("rent-roll-dates", label, CheckStatus.PASS)


@register_rule
def rent_roll_units(record: NormalizedRecord, policy: ReconciliationPolicy) -> Optional[Check]:
    if not record.rent_roll:
        return None
    label = "Rent roll units are unique"
    counts = Counter(row.unit_id for row in record.rent_roll)
    repeated = sorted(unit for unit, count in counts.items() if count > 1)
    if repeated:
        return _check(
            "rent-roll-units", label, CheckStatus.WARN, "Units listed more than once: " + ", ".join(repeated)
        )
    return _check("rent-roll-units", label, CheckStatus.PASS)


@register_rule
def tenant_concentration(record: NormalizedRecord, policy: ReconciliationPolicy) -> Optional[Check]:
    """Largest single tenant's share of base rent. Never names the tenant."""
    share = largest_tenant_share(record.rent_roll)
    if share is None:
        return None
    label = f"No tenant above {policy.tenant_concentration_limit:.0%} of base rent"
    detail = f"Largest tenant holds {share:.0%} of base rent"
    if share > policy.tenant_concentration_limit:
        return _check("tenant-concentration", label, CheckStatus.WARN, detail)
    return _check("tenant-concentration", label, CheckStatus.PASS, detail)


# ---------------------------------------------------------------------------
# Normalization
# ---------------------------------------------------------------------------


@register_rule
def normalized_values(record: NormalizedRecord, policy: ReconciliationPolicy) -> Optional[Check]:
    label = "All extracted values were readable"
    if record.unknown_fields:
        return _check(
            "normalized-values",
            label,
            CheckStatus.WARN,
            "Treated as unknown: " + ", ".join(record.unknown_fields),
        )
    return _check("normalized-values", label, CheckStatus.PASS)
