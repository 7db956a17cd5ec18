from __future__ import annotations

from csv_importer.domain.models import ParseIssue
from csv_importer.domain.reporting.collector import ReportCollector, asdict_report
from csv_importer.domain.reporting.models import DiagnosticStage
from csv_importer.errors import EmptyFileError


def test_status_success_without_errors():
    collector = ReportCollector(run_id="r1", command="process")
    collector.add_rows(10)
    collector.add_batch()
    collector.finish(duration_ms=5)

    data = asdict_report(collector.build())
    assert data["status"] == "SUCCESS"
    assert data["summary"]["rows_total"] == 10
    assert data["summary"]["batches_total"] == 1
    assert data["meta"]["duration_ms"] == 5


def test_consumer_errors_make_run_partial():
    collector = ReportCollector(run_id="r1", command="process")
    collector.add_rows(2)
    collector.add_error(RuntimeError("db down"), DiagnosticStage.CONSUMER)
    collector.finish()

    data = asdict_report(collector.build())
    assert data["status"] == "PARTIAL"
    assert data["summary"]["consumer_failures"] == 1
    assert data["summary"]["by_stage"]["consumer"]["errors_total"] == 1
    assert data["diagnostics"][0] == {
        "severity": "error",
        "stage": "consumer",
        "code": "UNEXPECTED_ERROR",
        "message": "db down",
        "row": None,
    }


def test_app_error_code_and_failed_status():
    collector = ReportCollector(run_id="r1", command="preview")
    collector.add_error(EmptyFileError(), DiagnosticStage.PREVIEW)
    collector.finish()

    envelope = collector.build()
    assert envelope.status == "FAILED"
    assert envelope.diagnostics[0].code == "FILE_EMPTY"


def test_diagnostics_truncated_at_limit():
    collector = ReportCollector(run_id="r1", command="preview", items_limit=1)
    issue = ParseIssue(type="FieldMismatch", code="TooFewFields", message="short", row=3)
    collector.add_issue(issue)
    collector.add_issue(issue)

    assert len(collector.diagnostics) == 1
    assert collector.meta.items_truncated is True
    assert collector.summary.warnings_total == 2
