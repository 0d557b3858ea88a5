"""Normalization of raw worker values.

Every parser returns None for values it cannot read with confidence;
nothing here guesses. Money is returned as integer cents.
"""

import re
from dataclasses import dataclass, field
from datetime import date, datetime
from decimal import ROUND_HALF_UP, Decimal, InvalidOperation
from typing import Optional

from whisperer.models import (
    Assumption,
    Covenant,
    DebtTerms,
    DraftRecord,
    DerivedValue,
    Metrics,
    RentRollEntry,
    T12Line,
    Totals,
)


# Dates outside this window are treated as OCR noise
MIN_YEAR = 1900
MAX_YEAR = 2100

DATE_FORMATS = ("%Y-%m-%d", "%m/%d/%Y", "%m/%d/%y", "%m-%d-%Y", "%d %b %Y", "%b %d, %Y", "%B %d, %Y")
MONTH_FORMATS = ("%Y-%m", "%b %Y", "%B %Y", "%b-%y", "%m/%Y", "%Y/%m")

_CURRENCY_RE = re.compile(r"[$€£,\s]|USD", re.IGNORECASE)
_PAREN_NEGATIVE_RE = re.compile(r"^\((.*)\)$")
_RATIO_SUFFIX_RE = re.compile(r"x$", re.IGNORECASE)

CENT = Decimal("0.01")


def _to_decimal(value) -> Optional[Decimal]:
    """Coerce an int/float/str to Decimal, stripping currency decoration."""
    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, int):
        return Decimal(value)
    if isinstance(value, float):
        return Decimal(repr(value))
    text = str(value).strip()
    if not text:
        return None
    negative = False
    paren = _PAREN_NEGATIVE_RE.match(text)
    if paren:
        negative = True
        text = paren.group(1)
    text = _CURRENCY_RE.sub("", text)
    if text.startswith("-"):
        negative = not negative
        text = text[1:]
    try:
        number = Decimal(text)
    except InvalidOperation:
        return None
    if not number.is_finite():
        return None
    return -number if negative else number


def parse_money(value) -> Optional[int]:
    """Parse a monetary amount in major units into integer cents.

    >>> parse_money("$1,250,000.50")
    125000050
    >>> parse_money("(3,000)")
    -300000
    """
    number = _to_decimal(value)
    if number is None:
        return None
    return int((number * 100).quantize(Decimal("1"), rounding=ROUND_HALF_UP))


def parse_count(value) -> Optional[int]:
    """Parse a non-negative whole quantity (sqft, months, bps)."""
    number = _to_decimal(value)
    if number is None or number < 0:
        return None
    return int(number.quantize(Decimal("1"), rounding=ROUND_HALF_UP))


def parse_ratio(value) -> Optional[float]:
    """Parse a coverage ratio such as ``"1.15x"`` to 2 decimal places."""
    if isinstance(value, str):
        value = _RATIO_SUFFIX_RE.sub("", value.strip())
    number = _to_decimal(value)
    if number is None:
        return None
    return round_ratio(number)


def parse_rate(value) -> Optional[float]:
    """Parse an interest rate to a fraction. ``"7.1%"`` and ``7.1`` both give 0.071."""
    is_percent = isinstance(value, str) and value.strip().endswith("%")
    if isinstance(value, str):
        value = value.strip().rstrip("%")
    number = _to_decimal(value)
    if number is None or number < 0:
        return None
    if is_percent or number > 1:
        number = number / 100
    return float(number.quantize(Decimal("0.00001"), rounding=ROUND_HALF_UP))


def round_ratio(number) -> float:
    """Round a ratio to 2 decimal places, half up, as all ratios are displayed."""
    return float(Decimal(str(number)).quantize(CENT, rounding=ROUND_HALF_UP))


def parse_date(value) -> Optional[date]:
    """Parse a calendar date; out-of-range years are unknown."""
    if value is None:
        return None
    if isinstance(value, date):
        parsed = value
    else:
        text = str(value).strip()
        parsed = None
        for fmt in DATE_FORMATS:
            try:
                parsed = datetime.strptime(text, fmt).date()
                break
            except ValueError:
                continue
        if parsed is None:
            return None
    if not MIN_YEAR <= parsed.year <= MAX_YEAR:
        return None
    return parsed


def parse_month(value) -> Optional[str]:
    """Normalize a T-12 month label to ``YYYY-MM``."""
    if value is None:
        return None
    text = str(value).strip()
    for fmt in MONTH_FORMATS:
        try:
            parsed = datetime.strptime(text, fmt)
        except ValueError:
            continue
        if MIN_YEAR <= parsed.year <= MAX_YEAR:
            return f"{parsed.year:04d}-{parsed.month:02d}"
        return None
    full_date = parse_date(text)
    if full_date:
        return f"{full_date.year:04d}-{full_date.month:02d}"
    return None


def clean_text(value) -> Optional[str]:
    if value is None:
        return None
    text = " ".join(str(value).split())
    return text or None


@dataclass
class NormalizedRecord:
    """Draft values after normalization, plus derived figures.

    ``reported`` holds the worker's totals exactly as read; ``totals`` is
    filled in by derivation (reported values win, gaps are recomputed).
    """

    reported: Totals
    t12_lines: list[T12Line]
    rent_roll: list[RentRollEntry]
    debt_terms: Optional[DebtTerms]
    covenants: list[Covenant]
    assumptions: list[Assumption]
    total_source_pages: dict[str, int] = field(default_factory=dict)
    ocr_confidence: dict[str, float] = field(default_factory=dict)
    unknown_fields: list[str] = field(default_factory=list)
    totals: Totals = field(default_factory=Totals)
    derived: dict[str, DerivedValue] = field(default_factory=dict)
    metrics: Metrics = field(default_factory=Metrics)

    def comparison(self, name: str) -> Optional[DerivedValue]:
        return self.derived.get(name)


class _Normalizer:
    """Collects the paths of values that could not be normalized."""

    def __init__(self):
        self.unknown: list[str] = []

    def track(self, path: str, raw, parsed):
        if raw not in (None, "") and parsed is None:
            self.unknown.append(path)
        return parsed

    def totals(self, draft: DraftRecord) -> Totals:
        raw = draft.totals
        values = {}
        for name in ("gpr", "vacancy", "egi", "opex", "noi", "annual_debt_service"):
            values[name] = self.track(f"totals.{name}", getattr(raw, name), parse_money(getattr(raw, name)))
        values["dscr"] = self.track("totals.dscr", raw.dscr, parse_ratio(raw.dscr))
        return Totals(**values)

    def t12_line(self, index: int, line) -> T12Line:
        prefix = f"t12Lines[{index}]"
        return T12Line(
            month=self.track(f"{prefix}.month", line.month, parse_month(line.month)),
            category=clean_text(line.category) or "Uncategorized",
            subcategory=clean_text(line.subcategory),
            amount=self.track(f"{prefix}.amount", line.amount, parse_money(line.amount)),
            source_page=line.source_page,
        )

    def rent_roll_entry(self, index: int, row) -> RentRollEntry:
        prefix = f"rentRoll[{index}]"
        return RentRollEntry(
            unit_id=str(row.unit_id).strip(),
            tenant_name=clean_text(row.tenant_name),
            sqft=self.track(f"{prefix}.sqft", row.sqft, parse_count(row.sqft)),
            start_date=self.track(f"{prefix}.startDate", row.start_date, parse_date(row.start_date)),
            end_date=self.track(f"{prefix}.endDate", row.end_date, parse_date(row.end_date)),
            base_rent=self.track(f"{prefix}.baseRent", row.base_rent, parse_money(row.base_rent)),
            escalations=clean_text(row.escalations),
            source_page=row.source_page,
        )

    def debt_terms(self, raw) -> Optional[DebtTerms]:
        if raw is None:
            return None
        return DebtTerms(
            lender=clean_text(raw.lender),
            principal=self.track("debtTerms.principal", raw.principal, parse_money(raw.principal)),
            rate_type=clean_text(raw.rate_type),
            index=clean_text(raw.index),
            spread_bps=self.track("debtTerms.spreadBps", raw.spread_bps, parse_count(raw.spread_bps)),
            all_in_rate=self.track("debtTerms.allInRate", raw.all_in_rate, parse_rate(raw.all_in_rate)),
            amortization_months=self.track(
                "debtTerms.amortizationMonths", raw.amortization_months, parse_count(raw.amortization_months)
            ),
            io_months=self.track("debtTerms.ioMonths", raw.io_months, parse_count(raw.io_months)),
            maturity_date=self.track("debtTerms.maturityDate", raw.maturity_date, parse_date(raw.maturity_date)),
            rate_cap=clean_text(raw.rate_cap),
            source_page=raw.source_page,
        )


def _t12_sort_key(line: T12Line):
    return (line.month or "9999-99", line.category.lower(), (line.subcategory or "").lower())


def normalize_draft(draft: DraftRecord) -> NormalizedRecord:
    """Normalize a worker draft. Invalid values become None and are listed."""
    normalizer = _Normalizer()
    reported = normalizer.totals(draft)
    t12_lines = sorted(
        (normalizer.t12_line(i, line) for i, line in enumerate(draft.t12_lines)),
        key=_t12_sort_key,
    )
    rent_roll = [normalizer.rent_roll_entry(i, row) for i, row in enumerate(draft.rent_roll)]
    debt_terms = normalizer.debt_terms(draft.debt_terms)
    covenants = [
        Covenant(type=clean_text(c.type) or "unspecified", threshold=clean_text(c.threshold), frequency=clean_text(c.frequency))
        for c in draft.covenants
    ]
    assumptions = [
        Assumption(text=clean_text(a.text) or "", source_refs=a.source_refs)
        for a in draft.assumptions
        if clean_text(a.text)
    ]
    ocr_confidence = {
        section: min(1.0, max(0.0, float(score)))
        for section, score in draft.ocr_confidence.items()
    }
    return NormalizedRecord(
        reported=reported,
        t12_lines=t12_lines,
        rent_roll=rent_roll,
        debt_terms=debt_terms,
        covenants=covenants,
        assumptions=assumptions,
        total_source_pages={
            name: page for name, page in draft.totals.source_pages.items() if page >= 1
        },
        ocr_confidence=ocr_confidence,
        unknown_fields=normalizer.unknown,
    )


def format_money(cents: Optional[int]) -> str:
    """Render integer cents for display, e.g. ``$1,234.56``."""
    if cents is None:
        return "n/a"
    sign = "-" if cents < 0 else ""
    return f"{sign}${abs(cents) / 100:,.2f}"
