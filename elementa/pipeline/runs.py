"""Persistence contract for import and cleanup runs."""

import copy
import itertools
from datetime import datetime
from typing import Dict, List, Optional, Protocol

from elementa.models.data_models import CleanupRun, ImportRun


class RunRepository(Protocol):
    """Storage for run records; the real backend lives outside this package."""

    def next_id(self) -> int:
        ...

    def save_import_run(self, run: ImportRun) -> None:
        ...

    def get_import_run(self, run_id: int) -> Optional[ImportRun]:
        ...

    def save_cleanup_run(self, run: CleanupRun) -> None:
        ...

    def get_cleanup_run(self, run_id: int) -> Optional[CleanupRun]:
        ...

    def active_cleanup_runs(self, connection_id: int) -> List[CleanupRun]:
        ...

    def list_cleanup_runs(self, connection_id: Optional[int] = None) -> List[CleanupRun]:
        ...

    def prune_cleanup_runs(self, older_than: datetime) -> int:
        """Delete terminal runs created before older_than; return the count."""
        ...


class InMemoryRunRepository:
    """
    In-process repository.

    Runs are stored and returned as copies so callers observe the same
    reload semantics they would against a database.
    """

    def __init__(self):
        self._ids = itertools.count(1)
        self._imports: Dict[int, ImportRun] = {}
        self._cleanups: Dict[int, CleanupRun] = {}

    def next_id(self) -> int:
        return next(self._ids)

    def save_import_run(self, run: ImportRun) -> None:
        self._imports[run.id] = copy.deepcopy(run)

    def get_import_run(self, run_id: int) -> Optional[ImportRun]:
        run = self._imports.get(run_id)
        return copy.deepcopy(run) if run else None

    def list_import_runs(self, connection_id: Optional[int] = None) -> List[ImportRun]:
        return [
            copy.deepcopy(run) for run in self._imports.values()
            if connection_id is None or run.connection_id == connection_id
        ]

    def save_cleanup_run(self, run: CleanupRun) -> None:
        self._cleanups[run.id] = copy.deepcopy(run)

    def get_cleanup_run(self, run_id: int) -> Optional[CleanupRun]:
        run = self._cleanups.get(run_id)
        return copy.deepcopy(run) if run else None

    def active_cleanup_runs(self, connection_id: int) -> List[CleanupRun]:
        return [
            copy.deepcopy(run) for run in self._cleanups.values()
            if run.connection_id == connection_id and not run.is_terminal
        ]

    def list_cleanup_runs(self, connection_id: Optional[int] = None) -> List[CleanupRun]:
        return [
            copy.deepcopy(run) for run in self._cleanups.values()
            if connection_id is None or run.connection_id == connection_id
        ]

    def prune_cleanup_runs(self, older_than: datetime) -> int:
        expired = [
            run_id for run_id, run in self._cleanups.items()
            if run.is_terminal and run.created_at < older_than
        ]
        for run_id in expired:
            del self._cleanups[run_id]
        return len(expired)
