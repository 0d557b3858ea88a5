"""Tenant-name masking applied where records leave the pipeline.

Every outward path (entities API, audit export, proof PDF) goes
through ``mask_record``. The pseudonym is a deterministic 32-bit string
hash of the name: the same tenant always gets the same label and two
different tenants get different labels, but the label cannot be turned
back into the name by the API consumer. It is display-only
de-identification, not a security control; a keyed scheme would be needed
for that.
"""

import re
from typing import Callable, Optional

from whisperer.models import ExtractionRecord

PSEUDONYM_PREFIX = "Tenant "
_DIGITS = "0123456789abcdefghijklmnopqrstuvwxyz"


def _string_hash(text: str) -> int:
    """32-bit rolling hash (h * 31 + c), signed like Java's String.hashCode."""
    h = 0
    for char in text:
        h = (h * 31 + ord(char)) & 0xFFFFFFFF
    return h - 0x100000000 if h >= 0x80000000 else h


def _base36(number: int) -> str:
    if number == 0:
        return "0"
    digits = []
    while number:
        number, rem = divmod(number, 36)
        digits.append(_DIGITS[rem])
    return "".join(reversed(digits))


def mask_tenant_name(name: Optional[str]) -> Optional[str]:
    """Deterministic pseudonym for a tenant name, e.g. ``Tenant 1x8k2q``."""
    if not name:
        return name
    return PSEUDONYM_PREFIX + _base36(abs(_string_hash(name)))[:6]


def tenant_names(record: ExtractionRecord) -> list[str]:
    """Distinct tenant names of the rent roll, longest first."""
    return sorted(
        {row.tenant_name for row in record.rent_roll if row.tenant_name},
        key=lambda name: (-len(name), name),
    )


def name_scrubber(names: list[str]) -> Callable[[Optional[str]], Optional[str]]:
    """Replace every occurrence of any of ``names`` with its pseudonym.

    All names are matched in a single pass, so a pseudonym inserted for one
    name is never rewritten by another name it happens to contain.
    """
    pseudonyms: dict[str, str] = {}
    for name in names:
        pseudonyms.setdefault(name.lower(), mask_tenant_name(name))
    if not pseudonyms:
        return lambda text: text

    pattern = re.compile(
        "|".join(re.escape(name) for name in sorted(pseudonyms, key=len, reverse=True)),
        re.IGNORECASE,
    )

    def replace(match: re.Match) -> str:
        found = match.group(0)
        return pseudonyms.get(found.lower()) or mask_tenant_name(found)

    def scrub(text: Optional[str]) -> Optional[str]:
        if not text:
            return text
        return pattern.sub(replace, text)

    return scrub


def mask_record(record: ExtractionRecord) -> ExtractionRecord:
    """Copy of the record with every tenant name replaced by its pseudonym.

    Names are also scrubbed from free text (assumptions, snippets,
    covenants, T-12 categories, escalation clauses) where a worker may have
    echoed them.
    """
    names = tenant_names(record)
    masked = record.model_copy(deep=True)
    for row in masked.rent_roll:
        row.tenant_name = mask_tenant_name(row.tenant_name)
    if not names:
        return masked

    scrub = name_scrubber(names)
    for row in masked.rent_roll:
        row.escalations = scrub(row.escalations)
    for assumption in masked.assumptions:
        assumption.text = scrub(assumption.text)
        for ref in assumption.source_refs:
            ref.snippet = scrub(ref.snippet)
    for covenant in masked.covenants:
        covenant.type = scrub(covenant.type)
        covenant.threshold = scrub(covenant.threshold)
    for line in masked.t12_lines:
        line.category = scrub(line.category)
        line.subcategory = scrub(line.subcategory)
    for check in masked.checks:
        check.detail = scrub(check.detail)
    for entry in masked.provenance:
        if isinstance(entry.value, str):
            entry.value = scrub(entry.value)
    return masked


def public_payload(record: ExtractionRecord) -> dict:
    """The only JSON form of a record that may leave the pipeline."""
    return mask_record(record).to_payload()
