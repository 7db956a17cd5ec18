from __future__ import annotations

import asyncio
import logging
from pathlib import Path

import typer

from csv_importer.common.run_id import resolve_run_id
from csv_importer.common.sanitize import printableCell
from csv_importer.config.config import ConsumerErrorPolicy, Settings, loadSettings
from csv_importer.domain.fields import FieldAssignmentMap, FieldSpec, check_required_assigned, preview_columns
from csv_importer.domain.models import BatchInfo, PreviewFailure, Record
from csv_importer.domain.reporting.models import DiagnosticStage
from csv_importer.errors import AppError, AssignmentError, BatchConsumerError, SourceError
from csv_importer.infra.artifacts.report_writer import RunReportWriter
from csv_importer.infra.logging.setup import (
    closeCommandLogger,
    createCommandLogger,
    logEvent,
    mapLogLevel,
    teeStdStreams,
)
from csv_importer.usecases.preview_usecase import PreviewUseCase
from csv_importer.usecases.process_usecase import ProcessUseCase

app = typer.Typer(no_args_is_help=True, add_completion=False)

_URL_PREFIXES = ("http://", "https://")


def ensureDir(path: str) -> None:
    Path(path).mkdir(parents=True, exist_ok=True)


def isUrl(csvPath: str) -> bool:
    return csvPath.lower().startswith(_URL_PREFIXES)


def requireCsv(csvPath: str | None) -> None:
    """
    Назначение:
        Базовая проверка входного CSV (путь или http(s) URL).

    Поведение:
        - Если csvPath не задан или локальный файл не существует: exit code 2.
        - URL не проверяется заранее: ошибки сети приходят при чтении.
    """
    if not csvPath:
        typer.echo("ERROR: --csv is required", err=True)
        raise typer.Exit(code=2)

    if isUrl(csvPath):
        return

    p = Path(csvPath)
    if not p.exists() or not p.is_file():
        typer.echo(f"ERROR: CSV file not found: {csvPath}", err=True)
        raise typer.Exit(code=2)


def printRunHeader(runId: str, command: str, settings: Settings, sources: list[str]) -> None:
    typer.echo(
        f"run_id={runId} command={command} encoding={settings.encoding} "
        f"delimiter={settings.delimiter!r} newline={settings.newline!r} chunk_size={settings.chunk_size} "
        f"sources={sources} log_level={settings.log_level}"
    )


def parserSettings(settings: Settings) -> dict:
    return {
        "encoding": settings.encoding,
        "delimiter": settings.delimiter,
        "newline": settings.newline,
        "chunk_size": settings.chunk_size,
    }


def runWithReport(
    ctx: typer.Context,
    commandName: str,
    csvPath: str | None,
    runner,
) -> None:
    """
    Назначение:
        Унифицированная обвязка выполнения команд:
        - создаёт логгер + файл лога
        - создаёт отчёт запуска
        - валидирует входной CSV
        - дублирует stdout/stderr в лог
        - гарантирует запись отчёта

    Поведение:
        - Нет CSV: ошибка в лог и report, exit code 2.
        - Иначе exit code возвращает runner(logger, report).
    """
    runId = ctx.obj["runId"]
    settings: Settings = ctx.obj["settings"]
    sources = ctx.obj["sources"]

    logger, logFilePath = createCommandLogger(
        commandName=commandName,
        logDir=settings.log_dir,
        runId=runId,
        logLevel=settings.log_level,
    )
    writer = RunReportWriter(
        runId=runId,
        command=commandName,
        source=csvPath,
        configSources=sources,
        reportDir=settings.report_dir,
    )
    report = writer.report

    exitCode: int | None = None
    try:
        with teeStdStreams(logger, runId):
            try:
                logEvent(logger, logging.INFO, runId, "core", "Command started")
                printRunHeader(runId, commandName, settings, sources)

                try:
                    requireCsv(csvPath)
                except typer.Exit:
                    logEvent(logger, logging.ERROR, runId, "source", "CSV is missing or not accessible")
                    report.status = "FAILED"
                    exitCode = 2
                else:
                    exitCode = runner(logger, report)
            finally:
                reportPath = writer.write(logFilePath, parserSettings(settings))
                logEvent(logger, logging.INFO, runId, "report", f"Report written: {reportPath}")
    finally:
        closeCommandLogger(logger)

    if exitCode is not None:
        raise typer.Exit(code=exitCode)


def runPreviewCommand(ctx: typer.Context, csvPath: str | None) -> None:
    runId = ctx.obj["runId"]
    settings: Settings = ctx.obj["settings"]

    def execute(logger, report) -> int:
        usecase = PreviewUseCase(settings.parser_options(), logger=logger, run_id=runId)
        outcome = asyncio.run(usecase.run(csvPath))

        if isinstance(outcome, PreviewFailure):
            report.add_error(outcome.error, DiagnosticStage.PREVIEW)
            report.status = "FAILED"
            typer.echo(f"ERROR: preview failed: {outcome.error}", err=True)
            return 1

        filled = [row for row in outcome.first_rows if row]
        report.add_rows(len(filled))
        if outcome.parse_warning is not None:
            report.add_issue(outcome.parse_warning, DiagnosticStage.PREVIEW)
        report.set_context(
            "preview",
            {
                "rows": [list(row) for row in outcome.first_rows],
                "is_single_line": outcome.is_single_line,
                "warning_count": outcome.warning_count,
                "first_warning": outcome.parse_warning.to_dict() if outcome.parse_warning else None,
            },
        )

        for number, row in enumerate(outcome.first_rows, start=1):
            cells = " | ".join(printableCell(cell) for cell in row)
            typer.echo(f"{number}: {cells}")
        for column in preview_columns(outcome):
            typer.echo(f"column {column.index}: " + ", ".join(printableCell(v, 20) for v in column.values if v))
        typer.echo(f"single_line={outcome.is_single_line} warnings={outcome.warning_count}")
        if outcome.parse_warning is not None:
            warning = outcome.parse_warning
            typer.echo(f"WARNING: {warning.code}: {warning.message} (row={warning.row})")
        return 0

    runWithReport(ctx=ctx, commandName="preview", csvPath=csvPath, runner=execute)


def runProcessCommand(
    ctx: typer.Context,
    csvPath: str | None,
    fieldSpecs: list[str],
    hasHeader: bool,
    requiredFields: list[str],
    failOnConsumerError: bool,
) -> None:
    runId = ctx.obj["runId"]
    settings: Settings = ctx.obj["settings"]
    policy = ConsumerErrorPolicy.FAIL if failOnConsumerError else settings.consumer_error_policy

    def execute(logger, report) -> int:
        try:
            assignments = FieldAssignmentMap.parse(fieldSpecs)
            fields = [FieldSpec(name=name) for name in requiredFields]
            fields += [FieldSpec(name=name, optional=True) for name in assignments if name not in requiredFields]
            check_required_assigned(fields, assignments)
        except ValueError as exc:
            logEvent(logger, logging.ERROR, runId, "mapping", f"Invalid field assignment: {exc}")
            report.status = "FAILED"
            typer.echo(f"ERROR: invalid --field value: {exc}", err=True)
            return 2
        except AssignmentError as exc:
            logEvent(logger, logging.ERROR, runId, "mapping", f"{exc.message}: {', '.join(exc.missing)}")
            report.add_error(exc, DiagnosticStage.MAPPING)
            report.status = "FAILED"
            typer.echo(f"ERROR: {exc.message}: {', '.join(exc.missing)}", err=True)
            return 2

        report.set_context(
            "process",
            {
                "fields": dict(assignments.assigned),
                "has_header": hasHeader,
                "consumer_error_policy": policy.value,
            },
        )

        def onProgress(delta: int) -> None:
            logEvent(logger, logging.DEBUG, runId, "process", f"Progress +{delta}")

        def onBatch(records: list[Record], info: BatchInfo) -> None:
            logEvent(logger, logging.INFO, runId, "consumer", f"Batch start={info.start_index} size={len(records)}")

        usecase = ProcessUseCase(
            settings.parser_options(),
            consumer_error_policy=policy,
            logger=logger,
            run_id=runId,
            report=report,
        )
        try:
            summary = asyncio.run(usecase.run(csvPath, assignments, hasHeader, onProgress, onBatch))
        except BatchConsumerError as exc:
            typer.echo(f"ERROR: {exc.message} (start_index={exc.start_index})", err=True)
            report.status = "FAILED"
            return 1
        except SourceError as exc:
            typer.echo(f"ERROR: {exc.message}", err=True)
            report.status = "FAILED"
            return 1
        except AppError as exc:
            logEvent(logger, logging.ERROR, runId, "process", f"Processing failed: {exc}")
            typer.echo(f"ERROR: {exc.message}", err=True)
            report.status = "FAILED"
            return 1

        typer.echo(
            f"rows={summary.rows_processed} batches={summary.batches_delivered} "
            f"chunks={summary.chunks_seen} consumer_errors={len(summary.consumer_errors)}"
        )
        return 0

    runWithReport(ctx=ctx, commandName="process", csvPath=csvPath, runner=execute)


@app.callback()
def main(
    ctx: typer.Context,
    config: str | None = typer.Option(None, "--config", help="Path to config.yml"),
    runId: str | None = typer.Option(None, "--run-id", help="Run identifier (UUID). If omitted, generated."),
    logLevel: str | None = typer.Option(None, "--log-level", help="Log level: ERROR|WARN|INFO|DEBUG"),
    logDir: str | None = typer.Option(None, "--log-dir", help="Directory for logs."),
    reportDir: str | None = typer.Option(None, "--report-dir", help="Directory for reports."),
    encoding: str | None = typer.Option(None, "--encoding", help="Source text encoding"),
    delimiter: str | None = typer.Option(None, "--delimiter", help="Field delimiter (\\t allowed). If omitted, guessed."),
    newline: str | None = typer.Option(None, "--newline", help="Line ending: \\n, \\r or \\r\\n. If omitted, guessed."),
    quoteChar: str | None = typer.Option(None, "--quote-char", help="Quote character"),
    escapeChar: str | None = typer.Option(None, "--escape-char", help="Escape character inside quoted fields"),
    comments: str | None = typer.Option(None, "--comments", help="Comment line prefix"),
    skipEmptyLines: str | None = typer.Option(None, "--skip-empty-lines", help="true|false|greedy"),
    chunkSize: int | None = typer.Option(None, "--chunk-size", help="Source read size in bytes"),
):
    """
    Назначение:
        Глобальная инициализация CLI:
        - генерирует/принимает run_id
        - загружает настройки (CLI > ENV > config > defaults)
        - создаёт каталоги log/report
        - сохраняет всё в ctx.obj для подкоманд
    """
    try:
        runId = resolve_run_id(runId)
    except ValueError as exc:
        typer.echo(f"ERROR: {exc}", err=True)
        raise typer.Exit(code=2)

    cliOverrides = {
        "log_level": logLevel,
        "log_dir": logDir,
        "report_dir": reportDir,
        "encoding": encoding,
        "delimiter": delimiter,
        "newline": newline,
        "quote_char": quoteChar,
        "escape_char": escapeChar,
        "comments": comments,
        "skip_empty_lines": skipEmptyLines,
        "chunk_size": chunkSize,
    }
    try:
        loaded = loadSettings(config_path=config, cli_overrides=cliOverrides)
        loaded.settings.parser_options()
        mapLogLevel(loaded.settings.log_level)
    except ValueError as exc:
        typer.echo(f"ERROR: invalid settings: {exc}", err=True)
        raise typer.Exit(code=2)

    ensureDir(loaded.settings.log_dir)
    ensureDir(loaded.settings.report_dir)

    ctx.obj = {
        "runId": runId,
        "settings": loaded.settings,
        "sources": loaded.sources_used,
        "configPath": config,
    }


@app.command("preview")
def preview(
    ctx: typer.Context,
    csv: str | None = typer.Option(None, "--csv", help="Path or http(s) URL of the input CSV"),
):
    runPreviewCommand(ctx, csv)


@app.command("process")
def process(
    ctx: typer.Context,
    csv: str | None = typer.Option(None, "--csv", help="Path or http(s) URL of the input CSV"),
    field: list[str] | None = typer.Option(None, "--field", help="Column assignment NAME=INDEX (repeatable)"),
    hasHeader: bool = typer.Option(False, "--has-header/--no-header", help="First row is a header"),
    require: list[str] | None = typer.Option(None, "--require", help="Field that must be assigned (repeatable)"),
    failOnConsumerError: bool = typer.Option(
        False,
        "--fail-on-consumer-error",
        help="Abort the run on the first failed batch",
    ),
):
    runProcessCommand(
        ctx,
        csvPath=csv,
        fieldSpecs=list(field or []),
        hasHeader=hasHeader,
        requiredFields=list(require or []),
        failOnConsumerError=failOnConsumerError,
    )


if __name__ == "__main__":
    app()
