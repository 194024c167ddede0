"""JSON report writer for import and cleanup runs.

Example output structure:
{
    "import_runs": [
        {
            "id": 1,
            "connection_id": 7,
            "status": "completed",
            "counters": {"processed": 120, "created": 80, ...},
            "started_at": "2026-01-01T00:00:00+00:00",
            "finished_at": "2026-01-01T00:02:11+00:00",
            "error_message": null,
            "log": [{"source_identifier": "S1", "outcome": "created", "reason": null}]
        }
    ],
    "cleanup_runs": [...]
}
"""

import json
from datetime import datetime
from pathlib import Path
from typing import Any, Dict, Iterable, Optional

from elementa.models.data_models import CleanupRun, ImportRun


def _iso(value: Optional[datetime]) -> Optional[str]:
    return value.isoformat() if value else None


class JSONOutputFormatter:
    """Formats run records as JSON-serialisable dictionaries."""

    def __init__(self, include_log: bool = True):
        self.include_log = include_log

    def format(
        self,
        import_runs: Iterable[ImportRun] = (),
        cleanup_runs: Iterable[CleanupRun] = (),
    ) -> Dict[str, Any]:
        return {
            "import_runs": [self.format_import_run(run) for run in import_runs],
            "cleanup_runs": [self.format_cleanup_run(run) for run in cleanup_runs],
        }

    def format_import_run(self, run: ImportRun) -> Dict[str, Any]:
        data = {
            "id": run.id,
            "connection_id": run.connection_id,
            "status": run.status.value,
            "counters": {
                "processed": run.processed_records,
                "created": run.created_records,
                "updated": run.updated_records,
                "deleted": run.deleted_records,
                "failed": run.failed_records,
                "skipped": run.skipped_records,
            },
            "started_at": _iso(run.started_at),
            "finished_at": _iso(run.finished_at),
            "error_message": run.error_message,
        }
        if self.include_log:
            data["log"] = [
                {
                    "source_identifier": entry.source_identifier,
                    "outcome": entry.outcome.value,
                    "reason": entry.reason,
                }
                for entry in run.log
            ]
        return data

    def format_cleanup_run(self, run: CleanupRun) -> Dict[str, Any]:
        success_rate = run.success_rate
        return {
            "id": run.id,
            "connection_id": run.connection_id,
            "type": run.type.value,
            "status": run.status.value,
            "dry_run": run.dry_run,
            "products_found": run.products_found,
            "products_processed": run.products_processed,
            "products_failed": run.products_failed,
            "success_rate": round(success_rate, 2) if success_rate is not None else None,
            "duration_seconds": run.duration_seconds,
            "error_summary": run.error_summary,
            "started_at": _iso(run.started_at),
            "completed_at": _iso(run.completed_at),
        }

    def save(
        self,
        path: str = "out/report.json",
        import_runs: Iterable[ImportRun] = (),
        cleanup_runs: Iterable[CleanupRun] = (),
    ) -> None:
        """
        Save formatted runs to a JSON file.

        Creates parent directories if they don't exist.
        """
        output_path = Path(path)
        output_path.parent.mkdir(parents=True, exist_ok=True)

        formatted_data = self.format(import_runs, cleanup_runs)

        with open(output_path, 'w', encoding='utf-8') as f:
            json.dump(formatted_data, f, indent=2, ensure_ascii=False)
