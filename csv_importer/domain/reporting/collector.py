from __future__ import annotations

from dataclasses import asdict
from datetime import datetime
from typing import Any

from csv_importer.domain.error_codes import ErrorCode
from csv_importer.domain.models import ParseIssue
from csv_importer.domain.reporting.models import (
    DiagnosticStage,
    ReportDiagnostic,
    ReportEnvelope,
    ReportMeta,
    ReportSummary,
)
from csv_importer.errors import AppError


class ReportCollector:
    """
    Назначение/ответственность:
        Единый сборщик отчётов для команд preview/process.
    """

    def __init__(self, run_id: str, command: str, started_at: str | None = None, items_limit: int | None = 100) -> None:
        self.meta = ReportMeta(
            run_id=run_id,
            command=command,
            started_at=started_at or _now_iso(),
            items_limit=items_limit,
        )
        self.summary = ReportSummary()
        self.diagnostics: list[ReportDiagnostic] = []
        self.context: dict[str, Any] = {}
        self.status: str | None = None

    def set_context(self, name: str, value: dict[str, Any]) -> None:
        self.context[name] = value

    def add_rows(self, count: int) -> None:
        self.summary.rows_total += count
        self.summary.chunks_total += 1

    def add_batch(self) -> None:
        self.summary.batches_total += 1

    def add_issue(self, issue: ParseIssue, stage: DiagnosticStage = DiagnosticStage.PARSE) -> None:
        self.summary.warnings_total += 1
        self._count_stage(stage, "warnings_total")
        self._store(ReportDiagnostic(severity="warning", stage=stage, code=issue.code, message=issue.message, row=issue.row))

    def add_error(self, error: BaseException, stage: DiagnosticStage) -> None:
        self.summary.errors_total += 1
        if stage == DiagnosticStage.CONSUMER:
            self.summary.consumer_failures += 1
        self._count_stage(stage, "errors_total")
        code = error.code if isinstance(error, AppError) else ErrorCode.from_exception(error).value
        self._store(ReportDiagnostic(severity="error", stage=stage, code=code, message=str(error)))

    def finish(self, finished_at: str | None = None, duration_ms: int | None = None) -> None:
        self.meta.finished_at = finished_at or _now_iso()
        self.meta.duration_ms = duration_ms
        if self.status is None:
            self.status = self._derive_status()

    def build(self) -> ReportEnvelope:
        return ReportEnvelope(
            status=self.status or self._derive_status(),
            meta=self.meta,
            summary=self.summary,
            diagnostics=self.diagnostics,
            context=self.context,
        )

    def _store(self, diagnostic: ReportDiagnostic) -> None:
        limit = self.meta.items_limit
        if limit is not None and len(self.diagnostics) >= limit:
            self.meta.items_truncated = True
            return
        self.diagnostics.append(diagnostic)

    def _derive_status(self) -> str:
        if self.summary.errors_total == 0:
            return "SUCCESS"
        if self.summary.rows_total > 0:
            return "PARTIAL"
        return "FAILED"

    def _count_stage(self, stage: DiagnosticStage, field: str) -> None:
        key = stage.value if isinstance(stage, DiagnosticStage) else str(stage)
        entry = self.summary.by_stage.setdefault(key, {"errors_total": 0, "warnings_total": 0})
        entry[field] += 1


def _now_iso() -> str:
    return datetime.now().astimezone().isoformat()


def asdict_report(envelope: ReportEnvelope) -> dict[str, Any]:
    """
    Назначение:
        Сериализация отчёта в dict (enum -> строковое значение).
    """
    return {
        "status": envelope.status,
        "meta": asdict(envelope.meta),
        "summary": asdict(envelope.summary),
        "diagnostics": [
            {**asdict(diag), "stage": diag.stage.value if isinstance(diag.stage, DiagnosticStage) else diag.stage}
            for diag in envelope.diagnostics
        ],
        "context": envelope.context,
    }
