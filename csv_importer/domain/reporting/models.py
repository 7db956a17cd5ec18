from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any


class DiagnosticStage(str, Enum):
    """Этап, на котором возникла диагностика."""

    SOURCE = "source"
    PARSE = "parse"
    PREVIEW = "preview"
    MAPPING = "mapping"
    CONSUMER = "consumer"


@dataclass
class ReportMeta:
    """
    Назначение:
        Универсальные метаданные запуска команды.
    """

    run_id: str
    command: str
    started_at: str
    source: str | None = None
    finished_at: str | None = None
    duration_ms: int | None = None
    items_limit: int | None = None
    items_truncated: bool = False


@dataclass
class ReportSummary:
    """
    Назначение:
        Унифицированные счётчики выполнения.
    """

    rows_total: int = 0
    chunks_total: int = 0
    batches_total: int = 0
    errors_total: int = 0
    warnings_total: int = 0
    consumer_failures: int = 0
    by_stage: dict[str, dict[str, int]] = field(default_factory=dict)


@dataclass(frozen=True)
class ReportDiagnostic:
    severity: str
    stage: DiagnosticStage
    code: str
    message: str
    row: int | None = None


@dataclass
class ReportEnvelope:
    """
    Назначение:
        Корневой объект отчёта.
    """

    status: str
    meta: ReportMeta
    summary: ReportSummary
    diagnostics: list[ReportDiagnostic] = field(default_factory=list)
    context: dict[str, Any] = field(default_factory=dict)
