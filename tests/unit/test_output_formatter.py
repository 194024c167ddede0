"""Unit tests for the JSON run report formatter."""

import json

from elementa.models.data_models import (
    CleanupRun,
    CleanupStatus,
    ImportRun,
    ImportStatus,
    RecordOutcome,
    RecordOutcomeType,
)
from elementa.pipeline.output import JSONOutputFormatter


def completed_import_run():
    run = ImportRun(id=1, connection_id=7)
    run.transition(ImportStatus.PROCESSING)
    run.record(RecordOutcome("S1", RecordOutcomeType.CREATED))
    run.record(RecordOutcome("S2", RecordOutcomeType.SKIPPED, "no_category_match"))
    run.transition(ImportStatus.COMPLETED)
    return run


def failed_cleanup_run():
    run = CleanupRun(id=2, connection_id=7, products_found=3, products_processed=1, products_failed=2)
    run.transition(CleanupStatus.RUNNING)
    run.error_summary = "Batch 1: boom"
    run.transition(CleanupStatus.FAILED)
    return run


class TestJSONOutputFormatter:

    def test_import_run(self):
        data = JSONOutputFormatter().format(import_runs=[completed_import_run()])

        run = data["import_runs"][0]
        assert run["status"] == "completed"
        assert run["counters"] == {
            "processed": 2, "created": 1, "updated": 0, "deleted": 0, "failed": 0, "skipped": 1,
        }
        assert run["log"][1] == {"source_identifier": "S2", "outcome": "skipped", "reason": "no_category_match"}
        assert run["started_at"].endswith("+00:00")
        assert data["cleanup_runs"] == []

    def test_log_can_be_excluded(self):
        data = JSONOutputFormatter(include_log=False).format(import_runs=[completed_import_run()])
        assert "log" not in data["import_runs"][0]

    def test_cleanup_run(self):
        run = JSONOutputFormatter().format(cleanup_runs=[failed_cleanup_run()])["cleanup_runs"][0]

        assert run["status"] == "failed"
        assert run["type"] == "connection"
        assert run["success_rate"] == 33.33
        assert run["error_summary"] == "Batch 1: boom"
        assert run["duration_seconds"] is not None

    def test_save_creates_directories(self, tmp_path):
        path = tmp_path / "nested" / "report.json"

        JSONOutputFormatter().save(str(path), import_runs=[completed_import_run()],
                                   cleanup_runs=[failed_cleanup_run()])

        data = json.loads(path.read_text(encoding="utf-8"))
        assert len(data["import_runs"]) == 1
        assert len(data["cleanup_runs"]) == 1
