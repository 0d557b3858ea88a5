"""FastAPI application factory."""

import logging
from contextlib import asynccontextmanager
from typing import AsyncGenerator, Optional

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse

from whisperer import __version__
from whisperer.config import Settings, settings as default_settings
from whisperer.errors import (
    InvalidTransition,
    JobConflictError,
    NotFoundError,
    PayloadTooLarge,
    UnsupportedMediaType,
    ValidationError,
    WhispererError,
)
from whisperer.export import AuditExporter
from whisperer.pipeline import ExtractionWorker, PipelineServices

from .routes import router

logger = logging.getLogger(__name__)

# Most specific first
ERROR_STATUS = [
    (PayloadTooLarge, 413),
    (UnsupportedMediaType, 415),
    (ValidationError, 400),
    (NotFoundError, 404),
    (JobConflictError, 409),
    (InvalidTransition, 409),
]


def status_for(exc: WhispererError) -> int:
    for exc_type, code in ERROR_STATUS:
        if isinstance(exc, exc_type):
            return code
    return 500


async def handle_pipeline_error(request: Request, exc: WhispererError) -> JSONResponse:
    code = status_for(exc)
    if code >= 500:
        logger.error("Unhandled pipeline error on %s %s: %s", request.method, request.url.path, exc)
    return JSONResponse(
        status_code=code,
        content={"detail": {"error": type(exc).__name__, "message": str(exc)}},
    )


def create_app(
    settings: Optional[Settings] = None,
    worker: Optional[ExtractionWorker] = None,
    housekeeping: bool = True,
) -> FastAPI:
    """Build the API around a fresh set of pipeline services."""
    settings = settings or default_settings

    @asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
        services = PipelineServices(settings, worker=worker)
        await services.start(housekeeping=housekeeping)
        app.state.services = services
        app.state.exporter = AuditExporter(services.database, services.store)
        logger.info("API ready on worker=%s", services.worker.name)
        yield
        await services.close()

    app = FastAPI(
        title="Property Whisperer",
        description="Extraction and reconciliation of operating memoranda, T-12s and rent rolls",
        version=__version__,
        lifespan=lifespan,
    )
    app.add_exception_handler(WhispererError, handle_pipeline_error)
    app.include_router(router)
    return app
