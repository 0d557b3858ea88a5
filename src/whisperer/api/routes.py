"""HTTP routes.

- ``POST /documents``                     upload a PDF, returns a job handle (202)
- ``GET  /jobs/{job_id}/status``          poll a job
- ``GET  /documents/{doc_id}/entities``   published record, tenant names masked
- ``GET  /documents/{doc_id}/audit.zip``  audit bundle
- ``GET  /documents/{doc_id}/proof.pdf``  annotated source PDF
- ``GET  /documents/{doc_id}/deal-summary``
- ``GET  /documents/{doc_id}/jobs``       job history
- ``POST /documents/{doc_id}/reextract``
- ``POST /documents/{doc_id}/corrections``
"""

from uuid import UUID

from fastapi import APIRouter, Depends, File, Request, Response, UploadFile, status

from whisperer.errors import NotFoundError
from whisperer.export import AuditExporter
from whisperer.masking import mask_record, public_payload
from whisperer.models import JobHandle, JobHistory
from whisperer.pipeline import PipelineServices
from whisperer.reconcile import DealSummary, deal_summary

from .schemas import CorrectionRequest, ErrorResponse, HealthResponse

ERROR_RESPONSES = {
    404: {"model": ErrorResponse},
    409: {"model": ErrorResponse},
}

router = APIRouter()


def get_services(request: Request) -> PipelineServices:
    return request.app.state.services


def get_exporter(request: Request) -> AuditExporter:
    return request.app.state.exporter


@router.get("/health", response_model=HealthResponse)
async def health(services: PipelineServices = Depends(get_services)):
    return HealthResponse(worker=services.worker.name, active_jobs=len(services.runner.active_jobs))


@router.post(
    "/documents",
    response_model=JobHandle,
    status_code=status.HTTP_202_ACCEPTED,
    responses={
        400: {"model": ErrorResponse},
        413: {"model": ErrorResponse},
        415: {"model": ErrorResponse},
    },
)
async def upload_document(
    file: UploadFile = File(...),
    services: PipelineServices = Depends(get_services),
):
    data = await file.read(services.settings.max_upload_bytes + 1)
    return await services.gateway.submit(data, file.filename, file.content_type)


@router.get("/jobs/{job_id}/status", responses=ERROR_RESPONSES)
async def job_status(job_id: UUID, services: PipelineServices = Depends(get_services)):
    job_status = await services.status.get_status(job_id)
    return job_status.model_dump(mode="json", exclude_none=True)


@router.get("/documents/{doc_id}/entities", responses=ERROR_RESPONSES)
async def document_entities(doc_id: UUID, services: PipelineServices = Depends(get_services)):
    record = await services.store.get(doc_id)
    if record is None:
        raise NotFoundError(f"document {doc_id} has no completed extraction")
    return public_payload(record)


@router.get("/documents/{doc_id}/deal-summary", response_model=DealSummary, responses=ERROR_RESPONSES)
async def document_deal_summary(doc_id: UUID, services: PipelineServices = Depends(get_services)):
    record = await services.store.get(doc_id)
    if record is None:
        raise NotFoundError(f"document {doc_id} has no completed extraction")
    return deal_summary(mask_record(record), services.engine.policy)


@router.get("/documents/{doc_id}/jobs", response_model=list[JobHistory], responses=ERROR_RESPONSES)
async def document_jobs(doc_id: UUID, services: PipelineServices = Depends(get_services)):
    return await services.status.history(doc_id)


@router.get("/documents/{doc_id}/audit.zip", responses=ERROR_RESPONSES)
async def document_audit_bundle(doc_id: UUID, exporter: AuditExporter = Depends(get_exporter)):
    bundle = await exporter.export(doc_id)
    return Response(
        content=bundle,
        media_type="application/zip",
        headers={"Content-Disposition": f'attachment; filename="{doc_id}-audit.zip"'},
    )


@router.get("/documents/{doc_id}/proof.pdf", responses=ERROR_RESPONSES)
async def document_proof(doc_id: UUID, exporter: AuditExporter = Depends(get_exporter)):
    proof = await exporter.proof(doc_id)
    return Response(
        content=proof,
        media_type="application/pdf",
        headers={"Content-Disposition": f'inline; filename="{doc_id}-proof.pdf"'},
    )


@router.post(
    "/documents/{doc_id}/reextract",
    response_model=JobHandle,
    status_code=status.HTTP_202_ACCEPTED,
    responses=ERROR_RESPONSES,
)
async def reextract_document(doc_id: UUID, services: PipelineServices = Depends(get_services)):
    return await services.gateway.reextract(doc_id)


@router.post(
    "/documents/{doc_id}/corrections",
    response_model=JobHandle,
    status_code=status.HTTP_202_ACCEPTED,
    responses={**ERROR_RESPONSES, 400: {"model": ErrorResponse}},
)
async def correct_document(
    doc_id: UUID,
    body: CorrectionRequest,
    services: PipelineServices = Depends(get_services),
):
    return await services.gateway.correct(doc_id, body.overrides, body.note)
