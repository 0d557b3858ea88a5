"""Audit and proof export for published records."""

from .audit import AuditExporter, build_bundle
from .proof import build_proof_pdf, format_value

__all__ = [
    "AuditExporter",
    "build_bundle",
    "build_proof_pdf",
    "format_value",
]
