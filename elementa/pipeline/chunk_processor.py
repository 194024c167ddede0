"""Chunk processor running Filter -> Categorise -> Transform -> Syndicate."""

import asyncio
from typing import Any, Dict, List, Optional, Sequence

from elementa.destination.api_client import ApiClient
from elementa.destination.throttle import AdaptiveThrottle, destination_key
from elementa.models.config import ConnectionConfig, SyndicationConfig
from elementa.models.data_models import ChunkStats, ImportRun, RecordOutcome, RecordOutcomeType
from elementa.monitoring.logger import StructuredLogger
from elementa.processor import (
    CategoryNormalizer,
    FilterService,
    SyndicationService,
    TransformationService,
)


class ChunkProcessor:
    """
    Processes one bounded chunk of raw records for a connection.

    The chunk is consumed in slices of min(chunk_size, adaptive batch size),
    re-reading the batch size before each slice so distress observed while
    the chunk runs shrinks the remaining slices. Records in a slice are
    syndicated concurrently, bounded by a per-destination semaphore and by
    the throttle's admission limiter inside the API client.
    """

    def __init__(
        self,
        throttle: AdaptiveThrottle,
        config: Optional[SyndicationConfig] = None,
        filters: Optional[FilterService] = None,
        normalizer: Optional[CategoryNormalizer] = None,
        transformer: Optional[TransformationService] = None,
        syndicator: Optional[SyndicationService] = None,
        logger: Optional[StructuredLogger] = None,
    ):
        self.throttle = throttle
        self.config = config or SyndicationConfig()
        self.logger = logger or StructuredLogger(level=self.config.log_level)
        self.filters = filters or FilterService(self.logger)
        self.normalizer = normalizer or CategoryNormalizer(self.logger)
        self.transformer = transformer or TransformationService(self.logger)
        self.syndicator = syndicator or SyndicationService(self.logger)
        self._semaphores: Dict[str, asyncio.Semaphore] = {}

    def _semaphore(self, destination: str) -> asyncio.Semaphore:
        if destination not in self._semaphores:
            self._semaphores[destination] = asyncio.Semaphore(
                self.config.max_concurrent_imports_per_destination
            )
        return self._semaphores[destination]

    async def process(
        self,
        connection: ConnectionConfig,
        records: Sequence[Dict[str, Any]],
        api_client: ApiClient,
        import_run: Optional[ImportRun] = None,
    ) -> ChunkStats:
        """
        Process a chunk of raw records.

        No single record failure aborts the chunk; outcomes are counted and,
        when an ImportRun is given, appended to its log in record order.
        """
        stats = ChunkStats(received=len(records))
        destination = destination_key(connection.destination.url)
        semaphore = self._semaphore(destination)

        position = 0
        while position < len(records):
            batch_size = await self.throttle.batch_size(destination)
            slice_size = max(1, min(self.config.chunk_size, batch_size))
            batch = records[position:position + slice_size]
            position += len(batch)
            stats.slice_sizes.append(len(batch))

            outcomes: List[RecordOutcome] = await asyncio.gather(
                *(self._process_record(connection, record, api_client, semaphore) for record in batch)
            )
            for outcome in outcomes:
                self._count(stats, outcome)
                if import_run is not None:
                    import_run.record(outcome)

        self.logger.log(
            "chunk_processed", connection_id=connection.id, received=stats.received,
            created=stats.created, updated=stats.updated, filtered=stats.filtered,
            skipped=stats.skipped, failed=stats.failed, slices=stats.slice_sizes,
        )
        return stats

    @staticmethod
    def _count(stats: ChunkStats, outcome: RecordOutcome) -> None:
        if outcome.outcome == RecordOutcomeType.CREATED:
            stats.created += 1
        elif outcome.outcome == RecordOutcomeType.UPDATED:
            stats.updated += 1
        elif outcome.outcome == RecordOutcomeType.FILTERED:
            stats.filtered += 1
        elif outcome.outcome == RecordOutcomeType.SKIPPED:
            stats.skipped += 1
        else:
            stats.failed += 1

    async def _process_record(
        self,
        connection: ConnectionConfig,
        record: Dict[str, Any],
        api_client: ApiClient,
        semaphore: asyncio.Semaphore,
    ) -> RecordOutcome:
        sku_field = connection.field_mappings.get("sku")
        source_identifier = record.get(sku_field) if sku_field else None

        try:
            if not self.filters.passes(record, connection.filtering_rules):
                return RecordOutcome(source_identifier, RecordOutcomeType.FILTERED, "filtering_rules")

            category_map = connection.category_map
            category_id = None
            if connection.category_source_field:
                category_id = self.normalizer.normalize(
                    record.get(connection.category_source_field),
                    connection.category_delimiter,
                    category_map,
                )
                # Normalized categories never fall back to token matching
                if category_id is None:
                    self.logger.record_skipped(
                        "no_category_match", source_identifier=source_identifier,
                        connection_id=connection.id,
                    )
                    return RecordOutcome(source_identifier, RecordOutcomeType.SKIPPED, "no_category_match")

            payload = self.transformer.transform(
                record,
                connection.field_mappings,
                category_map,
                category_id=category_id,
            )
            if not payload:
                return RecordOutcome(source_identifier, RecordOutcomeType.SKIPPED, "transform_rejected")

            async with semaphore:
                result = await self.syndicator.syndicate(payload, connection, api_client)
        except Exception as exc:
            self.logger.error(
                "record_failed", connection_id=connection.id,
                source_identifier=source_identifier, error=str(exc),
            )
            return RecordOutcome(source_identifier, RecordOutcomeType.FAILED, str(exc))

        if result is None:
            if not payload.get("sku"):
                return RecordOutcome(source_identifier, RecordOutcomeType.SKIPPED, "missing_sku")
            return RecordOutcome(source_identifier, RecordOutcomeType.FAILED, "syndication_failed")

        outcome = RecordOutcomeType.CREATED if result.created else RecordOutcomeType.UPDATED
        return RecordOutcome(result.source_identifier, outcome)
