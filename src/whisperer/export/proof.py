"""Annotated proof PDF: the source document with every published figure
stamped onto the page it was read from.

Tenant names printed in the source are redacted and overwritten with their
pseudonyms before stamping. Annotations are drawn into the page content
(not PDF annotation objects, which carry creation timestamps) and document
metadata is fixed, so the same source and record always produce the same
bytes.
"""

import logging
from collections import defaultdict

import fitz  # PyMuPDF

from whisperer.masking import mask_record, mask_tenant_name, tenant_names
from whisperer.models import ExtractionRecord, ProvenanceEntry
from whisperer.reconcile import format_money

logger = logging.getLogger(__name__)

FIXED_PDF_DATE = "D:19800101000000Z"
STAMP_HEIGHT = 14
STAMP_FONT_SIZE = 6.5
STAMP_COLOR = (0.75, 0.1, 0.1)
SUMMARY_PAGE_SIZE = (612, 792)  # US Letter


def format_value(entry: ProvenanceEntry) -> str:
    """Display form of a provenance value."""
    value = entry.value
    if value is None:
        return "unknown"
    if isinstance(value, str):
        return value
    if entry.field.endswith("dscr"):
        return f"{value:.2f}x"
    if isinstance(value, int):
        return format_money(value)
    return str(value)


def _stamp_lines(entries: list[ProvenanceEntry]) -> list[str]:
    return [f"{entry.field}: {format_value(entry)}" for entry in entries]


def _stamp_page(page: fitz.Page, lines: list[str]) -> None:
    """Write the provenance lines in a bordered box along the top margin."""
    width = page.rect.width
    height = STAMP_HEIGHT * max(1, (len(lines) + 2) // 3)
    rect = fitz.Rect(18, 4, width - 18, 4 + height)
    page.draw_rect(rect, color=STAMP_COLOR, width=0.6)
    text = "   |   ".join(lines)
    page.insert_textbox(
        fitz.Rect(rect.x0 + 3, rect.y0 + 2, rect.x1 - 3, rect.y1 - 1),
        text,
        fontsize=STAMP_FONT_SIZE,
        fontname="helv",
        color=STAMP_COLOR,
    )


def _redact_names(page: fitz.Page, names: list[str]) -> int:
    """Overwrite tenant names in the page text with their pseudonyms."""
    redacted: list[fitz.Rect] = []
    for name in names:
        pseudonym = mask_tenant_name(name)
        for rect in page.search_for(name):
            # Longer names go first; skip hits inside an already redacted name
            if any(rect.intersects(done) for done in redacted):
                continue
            page.add_redact_annot(
                rect,
                text=pseudonym,
                fontname="helv",
                fontsize=max(4.0, rect.height * 0.7),
            )
            redacted.append(rect)
    if redacted:
        page.apply_redactions()
    return len(redacted)


def _summary_page(pdf_doc: fitz.Document, record: ExtractionRecord) -> None:
    page = pdf_doc.new_page(width=SUMMARY_PAGE_SIZE[0], height=SUMMARY_PAGE_SIZE[1])
    lines = [
        "Reconciliation summary",
        f"Document: {record.document_id}",
        f"Job: {record.job_id}",
        f"Reconciled at: {record.reconciled_at.isoformat()}",
        "",
        "Checks:",
    ]
    lines += [f"  [{c.status.value.upper()}] {c.label}: {c.detail or ''}" for c in record.checks]
    lines += ["", "Section confidence:"]
    lines += [f"  {name}: {score:.2f}" for name, score in sorted(record.confidences.items())]
    if record.unknown_fields:
        lines += ["", "Unreadable values (left unknown):"]
        lines += [f"  {path}" for path in record.unknown_fields]
    page.insert_textbox(
        fitz.Rect(48, 48, SUMMARY_PAGE_SIZE[0] - 48, SUMMARY_PAGE_SIZE[1] - 48),
        "\n".join(lines),
        fontsize=9,
        fontname="helv",
    )


def build_proof_pdf(source: bytes, record: ExtractionRecord) -> bytes:
    """Mask tenant names in the source PDF, stamp masked provenance onto it
    and append a summary page.

    Entries pointing past the last page are listed on the summary only.
    """
    masked = mask_record(record)
    names = tenant_names(record)
    by_page: dict[int, list[ProvenanceEntry]] = defaultdict(list)
    for entry in masked.provenance:
        by_page[entry.source_page].append(entry)

    with fitz.open(stream=source, filetype="pdf") as pdf_doc:
        page_count = pdf_doc.page_count
        if names:
            hits = sum(_redact_names(page, names) for page in pdf_doc)
            logger.debug("Redacted %d tenant name(s) in document=%s", hits, record.document_id)
        for page_number in sorted(by_page):
            if page_number > page_count:
                logger.warning(
                    "Provenance for document=%s cites page %d of %d",
                    record.document_id,
                    page_number,
                    page_count,
                )
                continue
            _stamp_page(pdf_doc[page_number - 1], _stamp_lines(by_page[page_number]))

        _summary_page(pdf_doc, masked)
        pdf_doc.set_metadata(
            {
                "title": f"Provenance proof {record.document_id}",
                "author": "",
                "subject": f"job {record.job_id}",
                "keywords": "",
                "creator": "property-whisperer",
                "producer": "property-whisperer",
                "creationDate": FIXED_PDF_DATE,
                "modDate": FIXED_PDF_DATE,
            }
        )
        return pdf_doc.tobytes(garbage=3, deflate=True, no_new_id=True)
