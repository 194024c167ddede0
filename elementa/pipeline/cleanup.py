"""Bulk deletion and reconciliation of syndicated products."""

import time
from datetime import datetime, timedelta, timezone
from typing import Callable, Iterable, List, Optional

from elementa.destination.api_client import ApiClient
from elementa.destination.throttle import AdaptiveThrottle, destination_key
from elementa.models.config import ConnectionConfig, SyndicationConfig
from elementa.models.data_models import CleanupRun, CleanupStatus, CleanupType
from elementa.models.exceptions import CleanupConflictError
from elementa.monitoring.logger import StructuredLogger
from elementa.pipeline.runs import RunRepository


class CleanupService:
    """
    Creates, cancels and prunes cleanup runs.

    Connection and feed deletion call the explicit on_*_deleted hooks; there
    are no implicit triggers.
    """

    def __init__(
        self,
        repository: RunRepository,
        config: Optional[SyndicationConfig] = None,
        logger: Optional[StructuredLogger] = None,
        now: Callable[[], float] = time.time,
    ):
        self.repository = repository
        self.config = config or SyndicationConfig()
        self.logger = logger or StructuredLogger(level=self.config.log_level)
        self._now = now

    def create_run(
        self,
        connection_id: int,
        run_type: CleanupType = CleanupType.CONNECTION,
        dry_run: bool = False,
        cutoff_timestamp: Optional[int] = None,
    ) -> CleanupRun:
        """
        Create a pending run.

        Raises:
            CleanupConflictError: If a non-terminal run exists for the connection
        """
        active = self.repository.active_cleanup_runs(connection_id)
        if active:
            raise CleanupConflictError(
                "A cleanup run is already active for this connection",
                context={"connection_id": connection_id, "cleanup_run_id": active[0].id,
                         "status": active[0].status.value},
            )

        run = CleanupRun(
            id=self.repository.next_id(),
            connection_id=connection_id,
            type=run_type,
            dry_run=dry_run,
            cutoff_timestamp=cutoff_timestamp,
        )
        self.repository.save_cleanup_run(run)
        self.logger.cleanup_status(run.id, connection_id, run.status.value,
                                   type=run_type.value, dry_run=dry_run)
        return run

    def cancel(self, run_id: int) -> CleanupRun:
        """
        Request cancellation.

        Pending runs are cancelled immediately; running runs stop after the
        batch in progress. Terminal runs are returned unchanged.
        """
        run = self.repository.get_cleanup_run(run_id)
        if run is None:
            raise KeyError(f"Unknown cleanup run: {run_id}")
        if not run.can_be_cancelled:
            return run

        run.cancel_requested = True
        if run.status == CleanupStatus.PENDING:
            run.transition(CleanupStatus.CANCELLED)
        self.repository.save_cleanup_run(run)
        self.logger.cleanup_status(run.id, run.connection_id, run.status.value, cancel_requested=True)
        return run

    def on_connection_deleted(self, connection_id: int, dry_run: bool = False) -> CleanupRun:
        return self.create_run(connection_id, CleanupType.CONNECTION, dry_run=dry_run)

    def on_feed_deleted(
        self, feed_id: int, connections: Iterable[ConnectionConfig], dry_run: bool = False
    ) -> List[CleanupRun]:
        """Create a feed cleanup run for every connection of the deleted feed."""
        runs = []
        for connection in connections:
            if connection.feed_id != feed_id:
                continue
            try:
                runs.append(self.create_run(connection.id, CleanupType.FEED, dry_run=dry_run))
            except CleanupConflictError as exc:
                self.logger.warning("cleanup_conflict", feed_id=feed_id, **exc.to_dict())
        return runs

    def schedule_stale_cleanup(
        self, connection_id: int, cutoff_timestamp: Optional[int] = None, dry_run: bool = False
    ) -> CleanupRun:
        """Create a run removing listings not seen since cutoff_timestamp."""
        if cutoff_timestamp is None:
            cutoff_timestamp = int(self._now()) - self.config.stale_after_days * 86400
        return self.create_run(
            connection_id, CleanupType.STALE, dry_run=dry_run, cutoff_timestamp=cutoff_timestamp
        )

    def prune(self, retention_days: Optional[int] = None) -> int:
        """Delete terminal runs older than the retention period."""
        days = retention_days if retention_days is not None else self.config.cleanup_retention_days
        cutoff = datetime.fromtimestamp(self._now(), tz=timezone.utc) - timedelta(days=days)
        removed = self.repository.prune_cleanup_runs(cutoff)
        self.logger.log("cleanup_runs_pruned", retention_days=days, removed=removed)
        return removed


class CleanupRunner:
    """
    Executes one cleanup run against the destination.

    Listing happens once; deletion proceeds in batches sized by the
    throttle's adaptive batch size (capped by cleanup_max_batch_size).
    Cancellation is polled after each batch, never within one.
    """

    def __init__(
        self,
        repository: RunRepository,
        throttle: AdaptiveThrottle,
        config: Optional[SyndicationConfig] = None,
        logger: Optional[StructuredLogger] = None,
    ):
        self.repository = repository
        self.throttle = throttle
        self.config = config or SyndicationConfig()
        self.logger = logger or StructuredLogger(level=self.config.log_level)

    def _finish(self, run: CleanupRun, status: CleanupStatus, errors: List[str]) -> CleanupRun:
        if errors:
            run.error_summary = "; ".join(errors)
        run.transition(status)
        self.repository.save_cleanup_run(run)
        self.logger.cleanup_status(
            run.id, run.connection_id, run.status.value,
            products_found=run.products_found, products_processed=run.products_processed,
            products_failed=run.products_failed, error_summary=run.error_summary,
        )
        return run

    def _cancel_requested(self, run: CleanupRun) -> bool:
        stored = self.repository.get_cleanup_run(run.id)
        if stored is not None and stored.cancel_requested:
            run.cancel_requested = True
        return run.cancel_requested

    async def _list(self, run: CleanupRun, api_client: ApiClient) -> List[int]:
        if run.type == CleanupType.STALE:
            return await api_client.find_stale_products(run.connection_id, run.cutoff_timestamp or 0)
        return await api_client.find_products_by_connection(run.connection_id)

    async def execute(
        self, run: CleanupRun, connection: ConnectionConfig, api_client: ApiClient
    ) -> CleanupRun:
        """Run listing and batched deletion; returns the run in its final state."""
        stored = self.repository.get_cleanup_run(run.id)
        if stored is not None:
            run = stored
        if run.is_terminal:
            return run

        run.transition(CleanupStatus.RUNNING)
        self.repository.save_cleanup_run(run)
        self.logger.cleanup_status(run.id, run.connection_id, run.status.value,
                                   type=run.type.value, dry_run=run.dry_run)

        try:
            product_ids = await self._list(run, api_client)
        except Exception as exc:
            return self._finish(run, CleanupStatus.FAILED, [f"Listing failed: {exc}"])

        run.products_found = len(product_ids)
        cancelled = self._cancel_requested(run)
        self.repository.save_cleanup_run(run)

        if cancelled:
            return self._finish(run, CleanupStatus.CANCELLED, [])

        if run.dry_run:
            self.logger.log("cleanup_dry_run", cleanup_run_id=run.id,
                            connection_id=run.connection_id, products_found=run.products_found)
            return self._finish(run, CleanupStatus.COMPLETED, [])

        destination = destination_key(connection.destination.url)
        errors: List[str] = []
        consecutive_failures = 0
        batch_number = 0
        position = 0

        while position < len(product_ids):
            try:
                batch_size = min(
                    await self.throttle.batch_size(destination), self.config.cleanup_max_batch_size
                )
            except Exception as exc:
                errors.append(f"Throttle state unavailable: {exc}")
                return self._finish(run, CleanupStatus.FAILED, errors)

            batch = product_ids[position:position + max(1, batch_size)]
            position += len(batch)
            batch_number += 1

            try:
                result = await api_client.delete_products(batch)
            except Exception as exc:
                consecutive_failures += 1
                run.products_failed += len(batch)
                errors.append(f"Batch {batch_number}: {exc}")
                self.logger.cleanup_batch(run.id, len(batch), 0, len(batch))
            else:
                consecutive_failures = 0
                run.products_processed += result.processed
                run.products_failed += result.errors
                self.logger.cleanup_batch(run.id, len(batch), result.processed, result.errors)

            if consecutive_failures >= self.config.cleanup_max_batch_failures:
                return self._finish(run, CleanupStatus.FAILED, errors)

            if self._cancel_requested(run):
                return self._finish(run, CleanupStatus.CANCELLED, errors)

            self.repository.save_cleanup_run(run)

        return self._finish(run, CleanupStatus.COMPLETED, errors)
