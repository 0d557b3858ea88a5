"""Wiring of the pipeline components for one process."""

import logging
from typing import Optional

from whisperer.config import Settings, settings as default_settings
from whisperer.reconcile import ReconciliationEngine, ReconciliationPolicy
from whisperer.storage import Database, ExtractionStore

from .gateway import IngestionGateway
from .runner import JobRunner
from .status import Housekeeper, JobStatusService
from .worker import ExtractionWorker, build_worker

logger = logging.getLogger(__name__)


class PipelineServices:
    """Database, store, runner, gateway and status service sharing one config."""

    def __init__(
        self,
        settings: Optional[Settings] = None,
        worker: Optional[ExtractionWorker] = None,
        database: Optional[Database] = None,
    ):
        self.settings = settings or default_settings
        self.database = database or Database.from_settings(self.settings)
        self.store = ExtractionStore(self.database)
        self.worker = worker or build_worker(self.settings)
        self.engine = ReconciliationEngine(ReconciliationPolicy.from_settings(self.settings))
        self.runner = JobRunner(self.database, self.store, self.worker, self.engine, self.settings)
        self.gateway = IngestionGateway(self.database, self.store, self.runner, self.settings)
        self.status = JobStatusService(self.database, self.settings, self.runner)
        self.housekeeper = Housekeeper(self.status)

    async def start(self, housekeeping: bool = True) -> None:
        """Create tables and start the timeout sweep."""
        await self.database.init()
        if housekeeping:
            self.housekeeper.start()
        logger.info("Pipeline started (worker=%s)", self.worker.name)

    async def close(self) -> None:
        await self.housekeeper.stop()
        await self.runner.shutdown()
        await self.database.close()
        logger.info("Pipeline stopped")
