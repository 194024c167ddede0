"""Orchestrator wiring configuration, throttle, runs and the destination client."""

import asyncio
import time
from typing import Any, Dict, List, Optional, Sequence

import httpx

from elementa.destination.api_client import WooCommerceApiClient
from elementa.destination.state_store import StateStore, create_state_store
from elementa.destination.throttle import AdaptiveThrottle
from elementa.models.config import ConnectionConfig, SyndicationConfig
from elementa.models.data_models import (
    ChunkStats,
    ChunkWorkUnit,
    CleanupRun,
    CleanupStatus,
    CleanupType,
    CleanupWorkUnit,
    ImportRun,
    ImportStatus,
)
from elementa.models.exceptions import CleanupConflictError, ElementaError
from elementa.monitoring.logger import StructuredLogger
from elementa.pipeline.chunk_processor import ChunkProcessor
from elementa.pipeline.cleanup import CleanupRunner, CleanupService
from elementa.pipeline.feed_reader import read_feed_chunks
from elementa.pipeline.runs import InMemoryRunRepository, RunRepository


class SyndicationOrchestrator:
    """Entry point for scheduler-delivered work: imports, chunks and cleanups."""

    def __init__(
        self,
        config: SyndicationConfig,
        repository: Optional[RunRepository] = None,
        store: Optional[StateStore] = None,
        throttle: Optional[AdaptiveThrottle] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
        logger: Optional[StructuredLogger] = None,
    ):
        """
        Initialize orchestrator.

        Args:
            config: Syndication configuration
            repository: Run persistence (in-memory by default)
            store: Shared throttle state (Redis when configured, else in-memory)
            throttle: Prebuilt throttle, overrides store
            transport: httpx transport for every destination client
            logger: Structured logger
        """
        self.config = config
        self.logger = logger or StructuredLogger(level=config.log_level)
        self.repository = repository or InMemoryRunRepository()
        self.store = store or create_state_store(config.redis_url)
        self.throttle = throttle or AdaptiveThrottle.from_config(config, self.store, logger=self.logger)
        self.transport = transport
        self.chunk_processor = ChunkProcessor(self.throttle, config, logger=self.logger)
        self.cleanup_service = CleanupService(self.repository, config, logger=self.logger)
        self.cleanup_runner = CleanupRunner(self.repository, self.throttle, config, logger=self.logger)

    def api_client(self, connection: ConnectionConfig) -> WooCommerceApiClient:
        return WooCommerceApiClient(
            connection.destination,
            self.throttle,
            connect_timeout=self.config.connect_timeout,
            read_timeout=self.config.read_timeout,
            transport=self.transport,
            logger=self.logger,
        )

    def _save_import(self, run: ImportRun) -> None:
        self.repository.save_import_run(run)
        self.logger.import_status(
            run.id, run.connection_id, run.status.value,
            processed=run.processed_records, created=run.created_records,
            updated=run.updated_records, deleted=run.deleted_records,
            failed=run.failed_records, skipped=run.skipped_records,
            error_message=run.error_message,
        )

    async def run_import(
        self,
        connection_id: int,
        records: Optional[Sequence[Dict[str, Any]]] = None,
        reconcile_stale: bool = False,
    ) -> ImportRun:
        """
        Run a full import for one connection.

        Records are read from the connection's feed in chunks unless given.
        The run is bounded by import_timeout; a timeout or fatal error marks
        it failed with the partial counters kept.

        Args:
            connection_id: Connection to import
            records: Pre-read raw records, bypassing the feed file
            reconcile_stale: Delete listings not seen during this import

        Returns:
            The finalized ImportRun
        """
        connection = self.config.connection(connection_id)
        run = ImportRun(id=self.repository.next_id(), connection_id=connection_id)
        self._save_import(run)

        if not connection.is_active:
            run.error_message = "Connection is inactive"
            run.transition(ImportStatus.FAILED)
            self._save_import(run)
            return run

        started_at = int(time.time())
        run.transition(ImportStatus.PROCESSING)
        self._save_import(run)

        try:
            async with self.api_client(connection) as client:
                await asyncio.wait_for(
                    self._import_records(connection, records, client, run),
                    timeout=self.config.import_timeout,
                )
                if reconcile_stale:
                    await self._reconcile(connection, client, run, started_at)
        except asyncio.TimeoutError:
            run.error_message = f"Import exceeded {self.config.import_timeout}s"
            run.transition(ImportStatus.FAILED)
            self._save_import(run)
            return run
        except ElementaError as exc:
            run.error_message = str(exc)
            run.transition(ImportStatus.FAILED)
            self._save_import(run)
            return run
        except Exception as exc:
            self.logger.error("import_crashed", import_run_id=run.id, connection_id=connection_id,
                              error_type=type(exc).__name__, error=str(exc))
            run.error_message = f"{type(exc).__name__}: {exc}"
            run.transition(ImportStatus.FAILED)
            self._save_import(run)
            return run

        run.transition(ImportStatus.COMPLETED)
        self._save_import(run)
        return run

    async def _import_records(
        self,
        connection: ConnectionConfig,
        records: Optional[Sequence[Dict[str, Any]]],
        client: WooCommerceApiClient,
        run: ImportRun,
    ) -> None:
        if records is not None:
            chunks = [
                list(records[i:i + self.config.chunk_size])
                for i in range(0, len(records), self.config.chunk_size)
            ]
        else:
            if connection.feed is None:
                raise ElementaError("Connection has no feed configured",
                                    context={"connection_id": connection.id})
            chunks = read_feed_chunks(connection.feed, self.config.chunk_size)

        for chunk in chunks:
            await self.chunk_processor.process(connection, chunk, client, run)
            self.repository.save_import_run(run)

    async def _reconcile(
        self,
        connection: ConnectionConfig,
        client: WooCommerceApiClient,
        run: ImportRun,
        cutoff_timestamp: int,
    ) -> None:
        try:
            cleanup = self.cleanup_service.schedule_stale_cleanup(
                connection.id, cutoff_timestamp=cutoff_timestamp
            )
        except CleanupConflictError as exc:
            self.logger.warning("reconcile_skipped", import_run_id=run.id, **exc.to_dict())
            return
        cleanup = await self.cleanup_runner.execute(cleanup, connection, client)
        if cleanup.status == CleanupStatus.COMPLETED:
            run.deleted_records += cleanup.products_processed

    async def handle_chunk(self, unit: ChunkWorkUnit, import_run: Optional[ImportRun] = None) -> ChunkStats:
        """Process one scheduler-delivered chunk."""
        connection = self.config.connection(unit.connection_id)
        async with self.api_client(connection) as client:
            return await self.chunk_processor.process(connection, unit.records, client, import_run)

    async def run_cleanup(
        self,
        unit: CleanupWorkUnit,
        run_type: CleanupType = CleanupType.CONNECTION,
        cutoff_timestamp: Optional[int] = None,
    ) -> CleanupRun:
        """
        Create and execute a cleanup run for a scheduler-delivered unit.

        Raises:
            CleanupConflictError: If a run is already active for the connection
        """
        self.config.connection(unit.connection_id)
        if run_type == CleanupType.STALE:
            run = self.cleanup_service.schedule_stale_cleanup(
                unit.connection_id, cutoff_timestamp=cutoff_timestamp, dry_run=unit.dry_run
            )
        else:
            run = self.cleanup_service.create_run(unit.connection_id, run_type, dry_run=unit.dry_run)
        return await self.execute_cleanup(run)

    async def execute_cleanup(self, run: CleanupRun) -> CleanupRun:
        connection = self.config.connection(run.connection_id)
        async with self.api_client(connection) as client:
            return await self.cleanup_runner.execute(run, connection, client)

    def active_connections(self) -> List[ConnectionConfig]:
        return [c for c in self.config.connections if c.is_active]
