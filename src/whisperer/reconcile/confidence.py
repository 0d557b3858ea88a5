"""Per-section confidence scores.

A section's score is a weighted mean of up to three factors:

- presence: fraction of required fields the worker supplied,
- agreement: fraction of derived-value comparisons within tolerance,
- OCR hint: the worker's own confidence for the section, if supplied.

Factors that do not apply to a section are left out and the remaining
weights renormalized. The function is pure: identical input gives
identical scores.
"""

from typing import Optional

from .normalize import NormalizedRecord


PRESENCE_WEIGHT = 0.5
AGREEMENT_WEIGHT = 0.3
OCR_WEIGHT = 0.2

TOTALS_REQUIRED = ("gpr", "egi", "opex", "noi", "annual_debt_service")
T12_REQUIRED = ("month", "category", "amount")
RENT_ROLL_REQUIRED = ("unit_id", "tenant_name", "sqft", "start_date", "end_date", "base_rent")
DEBT_REQUIRED = ("lender", "principal", "rate_type", "all_in_rate", "amortization_months", "maturity_date")
COVENANT_REQUIRED = ("type", "threshold", "frequency")

# Derived comparisons that speak to each section
SECTION_COMPARISONS = {
    "totals": ("egi", "noi", "dscr"),
    "t12": ("egi_t12", "opex_t12"),
}

# Worker OCR hints may use either spelling
SECTION_HINT_KEYS = {
    "totals": ("totals",),
    "t12": ("t12", "t12Lines", "t12_lines"),
    "rentRoll": ("rentRoll", "rent_roll"),
    "debtTerms": ("debtTerms", "debt_terms"),
    "covenants": ("covenants",),
    "assumptions": ("assumptions",),
}


def _fraction_present(obj, fields: tuple[str, ...]) -> float:
    present = sum(1 for name in fields if getattr(obj, name, None) not in (None, ""))
    return present / len(fields)


def _mean(values: list[float]) -> float:
    return sum(values) / len(values) if values else 0.0


def _presence(record: NormalizedRecord, section: str, required_months: int) -> float:
    if section == "totals":
        return _fraction_present(record.reported, TOTALS_REQUIRED)
    if section == "t12":
        if not record.t12_lines:
            return 0.0
        months = {line.month for line in record.t12_lines if line.month}
        coverage = min(1.0, len(months) / required_months) if required_months else 1.0
        return _mean([_fraction_present(line, T12_REQUIRED) for line in record.t12_lines]) * coverage
    if section == "rentRoll":
        return _mean([_fraction_present(row, RENT_ROLL_REQUIRED) for row in record.rent_roll])
    if section == "debtTerms":
        return _fraction_present(record.debt_terms, DEBT_REQUIRED) if record.debt_terms else 0.0
    if section == "covenants":
        return _mean([_fraction_present(c, COVENANT_REQUIRED) for c in record.covenants])
    if section == "assumptions":
        return _mean([1.0 if a.source_refs else 0.5 for a in record.assumptions])
    raise KeyError(section)


def _agreement(record: NormalizedRecord, section: str) -> Optional[float]:
    outcomes = [
        record.derived[name].agrees
        for name in SECTION_COMPARISONS.get(section, ())
        if name in record.derived and record.derived[name].agrees is not None
    ]
    if not outcomes:
        return None
    return sum(1 for ok in outcomes if ok) / len(outcomes)


def _ocr_hint(record: NormalizedRecord, section: str) -> Optional[float]:
    for key in SECTION_HINT_KEYS[section]:
        if key in record.ocr_confidence:
            return record.ocr_confidence[key]
    return None


def section_confidence(record: NormalizedRecord, section: str, required_months: int = 12) -> float:
    factors = [(PRESENCE_WEIGHT, _presence(record, section, required_months))]
    agreement = _agreement(record, section)
    if agreement is not None:
        factors.append((AGREEMENT_WEIGHT, agreement))
    hint = _ocr_hint(record, section)
    if hint is not None:
        factors.append((OCR_WEIGHT, hint))
    total_weight = sum(weight for weight, _ in factors)
    score = sum(weight * value for weight, value in factors) / total_weight
    return round(min(1.0, max(0.0, score)), 4)


def compute_confidences(record: NormalizedRecord, required_months: int = 12) -> dict[str, float]:
    """Confidence per section, keyed by the record's wire section names."""
    return {
        section: section_confidence(record, section, required_months)
        for section in SECTION_HINT_KEYS
    }
