"""Core data models for the feed syndication pipeline."""

from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, List, Optional

from elementa.models.exceptions import InvalidTransitionError


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class FilterOperator(Enum):
    """Operators available to connection filtering rules."""
    EQUALS = "equals"
    NOT_EQUALS = "not_equals"
    CONTAINS = "contains"
    NOT_CONTAINS = "not_contains"
    GREATER_THAN = "greater_than"
    LESS_THAN = "less_than"
    IS_EMPTY = "is_empty"
    IS_NOT_EMPTY = "is_not_empty"


class ImportStatus(Enum):
    """Import run states."""
    PENDING = "pending"
    PROCESSING = "processing"
    COMPLETED = "completed"
    FAILED = "failed"


class CleanupStatus(Enum):
    """Cleanup run states."""
    PENDING = "pending"
    RUNNING = "running"
    COMPLETED = "completed"
    FAILED = "failed"
    CANCELLED = "cancelled"


class CleanupType(Enum):
    """What triggered a cleanup run."""
    CONNECTION = "connection"
    FEED = "feed"
    STALE = "stale"


class RecordOutcomeType(Enum):
    """Per-record result recorded in an import run log."""
    CREATED = "created"
    UPDATED = "updated"
    FILTERED = "filtered"
    SKIPPED = "skipped"
    FAILED = "failed"


IMPORT_TRANSITIONS = {
    ImportStatus.PENDING: {ImportStatus.PROCESSING, ImportStatus.FAILED},
    ImportStatus.PROCESSING: {ImportStatus.COMPLETED, ImportStatus.FAILED},
    ImportStatus.COMPLETED: set(),
    ImportStatus.FAILED: set(),
}

CLEANUP_TRANSITIONS = {
    CleanupStatus.PENDING: {CleanupStatus.RUNNING, CleanupStatus.CANCELLED, CleanupStatus.FAILED},
    CleanupStatus.RUNNING: {CleanupStatus.COMPLETED, CleanupStatus.FAILED, CleanupStatus.CANCELLED},
    CleanupStatus.COMPLETED: set(),
    CleanupStatus.FAILED: set(),
    CleanupStatus.CANCELLED: set(),
}

TERMINAL_CLEANUP_STATUSES = frozenset(
    {CleanupStatus.COMPLETED, CleanupStatus.FAILED, CleanupStatus.CANCELLED}
)


@dataclass
class ThrottleState:
    """Snapshot of the shared throttle state for one destination."""
    destination: str
    recovering: bool
    recovery_time: float
    batch_size: int
    admission_limit: int
    admission_window: float


@dataclass
class RecordOutcome:
    """Outcome of one raw feed record."""
    source_identifier: Optional[str]
    outcome: RecordOutcomeType
    reason: Optional[str] = None


@dataclass
class SyndicationRecord:
    """Observability record of one syndicated product.

    The destination's own metadata is the source of truth for idempotency;
    this record is never used to decide between create and update.
    """
    connection_id: int
    source_identifier: str
    destination_product_id: Optional[int]
    content_hash: str
    created: bool


@dataclass
class UpsertResult:
    """Result of ApiClient.upsert_products."""
    success: bool
    total_created: int = 0
    total_updated: int = 0
    failed: List[Dict[str, Any]] = field(default_factory=list)
    ids: Dict[str, int] = field(default_factory=dict)


@dataclass
class BatchDeleteResult:
    """Result of ApiClient.delete_products."""
    processed: int
    errors: int


@dataclass
class ChunkStats:
    """Counters for one processed chunk."""
    received: int = 0
    filtered: int = 0
    skipped: int = 0
    created: int = 0
    updated: int = 0
    failed: int = 0
    slice_sizes: List[int] = field(default_factory=list)

    @property
    def processed(self) -> int:
        return self.received


@dataclass
class ChunkWorkUnit:
    """Work unit delivered by the scheduler to the chunk processor."""
    connection_id: int
    feed_id: int
    records: List[Dict[str, Any]]


@dataclass
class CleanupWorkUnit:
    """Work unit delivered by the scheduler to the cleanup runner."""
    connection_id: int
    dry_run: bool = False


@dataclass
class ImportRun:
    """One execution of the import pipeline for a connection."""
    id: int
    connection_id: int
    status: ImportStatus = ImportStatus.PENDING
    processed_records: int = 0
    created_records: int = 0
    updated_records: int = 0
    deleted_records: int = 0
    failed_records: int = 0
    skipped_records: int = 0
    log: List[RecordOutcome] = field(default_factory=list)
    started_at: Optional[datetime] = None
    finished_at: Optional[datetime] = None
    error_message: Optional[str] = None

    def transition(self, status: ImportStatus) -> None:
        if status not in IMPORT_TRANSITIONS[self.status]:
            raise InvalidTransitionError(
                f"Import run cannot move from {self.status.value} to {status.value}",
                context={"import_run_id": self.id},
            )
        self.status = status
        if status == ImportStatus.PROCESSING:
            self.started_at = utcnow()
        elif status in (ImportStatus.COMPLETED, ImportStatus.FAILED):
            self.finished_at = utcnow()

    def record(self, outcome: RecordOutcome) -> None:
        """Append an outcome and bump the matching counter."""
        self.log.append(outcome)
        self.processed_records += 1
        if outcome.outcome == RecordOutcomeType.CREATED:
            self.created_records += 1
        elif outcome.outcome == RecordOutcomeType.UPDATED:
            self.updated_records += 1
        elif outcome.outcome == RecordOutcomeType.FAILED:
            self.failed_records += 1
        else:
            self.skipped_records += 1


@dataclass
class CleanupRun:
    """One execution of bulk deletion / reconciliation for a connection."""
    id: int
    connection_id: int
    type: CleanupType = CleanupType.CONNECTION
    status: CleanupStatus = CleanupStatus.PENDING
    dry_run: bool = False
    products_found: int = 0
    products_processed: int = 0
    products_failed: int = 0
    error_summary: Optional[str] = None
    cancel_requested: bool = False
    cutoff_timestamp: Optional[int] = None
    created_at: datetime = field(default_factory=utcnow)
    started_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None

    @property
    def is_terminal(self) -> bool:
        return self.status in TERMINAL_CLEANUP_STATUSES

    @property
    def can_be_cancelled(self) -> bool:
        return self.status in (CleanupStatus.PENDING, CleanupStatus.RUNNING)

    @property
    def duration_seconds(self) -> Optional[float]:
        if not self.started_at or not self.completed_at:
            return None
        return (self.completed_at - self.started_at).total_seconds()

    @property
    def success_rate(self) -> Optional[float]:
        """Percentage of found products that were processed."""
        if self.products_found == 0:
            return None
        return (self.products_processed / self.products_found) * 100

    def transition(self, status: CleanupStatus) -> None:
        if status not in CLEANUP_TRANSITIONS[self.status]:
            raise InvalidTransitionError(
                f"Cleanup run cannot move from {self.status.value} to {status.value}",
                context={"cleanup_run_id": self.id},
            )
        self.status = status
        if status == CleanupStatus.RUNNING:
            self.started_at = utcnow()
        elif status in TERMINAL_CLEANUP_STATUSES:
            self.completed_at = utcnow()
