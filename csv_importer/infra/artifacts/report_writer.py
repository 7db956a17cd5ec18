from __future__ import annotations

import json
import time
from pathlib import Path
from typing import Any

from csv_importer.domain.reporting.collector import ReportCollector, asdict_report


class RunReportWriter:
    """
    Назначение/ответственность:
        Отчёт одного запуска команды: создаётся до чтения CSV, наполняется
        use-case'ами и пишется в <reportDir>/report_<command>_<runId>.json.

    Контракт:
        - meta.source: путь или URL CSV, как его передал пользователь.
        - duration_ms считается по monotonic от создания до write().
        - runtime-контекст: файл лога, каталог отчётов, параметры разбора.
    """

    def __init__(
        self,
        runId: str,
        command: str,
        source: str | None,
        configSources: list[str],
        reportDir: str,
    ) -> None:
        self.report = ReportCollector(run_id=runId, command=command)
        self.report.meta.source = source
        if configSources:
            self.report.set_context("config", {"sources": configSources})
        self.reportDir = Path(reportDir)
        self.path = self.reportDir / f"report_{command}_{runId}.json"
        self._startMonotonic = time.monotonic()

    def write(self, logFile: str | None, parser: dict[str, Any] | None = None) -> str:
        durationMs = int((time.monotonic() - self._startMonotonic) * 1000)
        runtime: dict[str, Any] = {"log_file": logFile, "report_dir": str(self.reportDir)}
        if parser is not None:
            runtime["parser"] = parser
        self.report.set_context("runtime", runtime)
        self.report.finish(duration_ms=durationMs)

        self.reportDir.mkdir(parents=True, exist_ok=True)
        data = asdict_report(self.report.build())
        with open(self.path, "w", encoding="utf-8") as f:
            json.dump(data, f, ensure_ascii=False, indent=2)
        return str(self.path)
