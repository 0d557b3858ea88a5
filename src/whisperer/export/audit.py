"""Audit bundle export.

The bundle is a zip of:

- ``record.json``      the published record, tenant names masked
- ``provenance.json``  which source page backs which figure
- ``proof.pdf``        the source PDF stamped with those figures
- ``manifest.json``    SHA-256 of every other member

Member order, timestamps and JSON key order are fixed, so exporting the
same published record twice yields identical bytes.
"""

import asyncio
import hashlib
import io
import json
import logging
import zipfile
from typing import Any
from uuid import UUID

from whisperer.errors import NotFoundError
from whisperer.masking import mask_record
from whisperer.models import Document, ExtractionRecord
from whisperer.storage import Database, DocumentRepository, ExtractionStore

from .proof import build_proof_pdf

logger = logging.getLogger(__name__)

ZIP_EPOCH = (1980, 1, 1, 0, 0, 0)
BUNDLE_VERSION = 1


def _json_bytes(data: Any) -> bytes:
    return (json.dumps(data, indent=2, sort_keys=True, ensure_ascii=False) + "\n").encode("utf-8")


def _sha256(data: bytes) -> str:
    return hashlib.sha256(data).hexdigest()


def build_bundle(document: Document, record: ExtractionRecord, proof: bytes) -> bytes:
    """Assemble the zip bytes for one document's published record."""
    masked = mask_record(record)
    members = {
        "record.json": _json_bytes(masked.to_payload()),
        "provenance.json": _json_bytes(
            {
                "documentId": str(document.id),
                "filename": document.filename,
                "contentHash": document.content_hash,
                "pageCount": document.page_count,
                "entries": [e.model_dump(mode="json", by_alias=True) for e in masked.provenance],
            }
        ),
        "proof.pdf": proof,
    }
    manifest = {
        "bundleVersion": BUNDLE_VERSION,
        "documentId": str(record.document_id),
        "jobId": str(record.job_id),
        "sourceSha256": document.content_hash,
        "files": {name: _sha256(data) for name, data in sorted(members.items())},
    }
    members["manifest.json"] = _json_bytes(manifest)

    buffer = io.BytesIO()
    with zipfile.ZipFile(buffer, "w") as archive:
        for name in sorted(members):
            info = zipfile.ZipInfo(name, date_time=ZIP_EPOCH)
            info.compress_type = zipfile.ZIP_DEFLATED
            info.external_attr = 0o644 << 16
            archive.writestr(info, members[name])
    return buffer.getvalue()


class AuditExporter:
    """Builds audit bundles and proof PDFs for published records."""

    def __init__(self, database: Database, store: ExtractionStore):
        self.database = database
        self.store = store

    async def export(self, document_id: UUID) -> bytes:
        """Zip bundle for the document's published record. Raises NotFoundError."""
        document, record = await self._published(document_id)
        source = await self._source_bytes(document)
        proof = await asyncio.to_thread(build_proof_pdf, source, record)
        bundle = await asyncio.to_thread(build_bundle, document, record, proof)
        logger.info("Exported audit bundle document=%s job=%s (%d bytes)", document_id, record.job_id, len(bundle))
        return bundle

    async def proof(self, document_id: UUID) -> bytes:
        """Annotated proof PDF for the document's published record."""
        document, record = await self._published(document_id)
        source = await self._source_bytes(document)
        return await asyncio.to_thread(build_proof_pdf, source, record)

    async def _published(self, document_id: UUID) -> tuple[Document, ExtractionRecord]:
        async with self.database.session() as session:
            document = await DocumentRepository(session).require(document_id)
        record = await self.store.get(document_id)
        if record is None:
            raise NotFoundError(f"document {document_id} has no completed extraction")
        return document, record

    @staticmethod
    async def _source_bytes(document: Document) -> bytes:
        try:
            return await asyncio.to_thread(_read_bytes, document.source_path)
        except FileNotFoundError as exc:
            raise NotFoundError(f"source PDF for document {document.id} is missing") from exc


def _read_bytes(path: str) -> bytes:
    with open(path, "rb") as f:
        return f.read()
