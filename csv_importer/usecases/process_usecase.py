from __future__ import annotations

import asyncio
import inspect
import logging
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, Iterable, Mapping

from csv_importer.config.config import ConsumerErrorPolicy, ParserOptions
from csv_importer.domain.fields import (
    ColumnAssignment,
    FieldAssignmentMap,
    FieldSpec,
    check_required_assigned,
)
from csv_importer.domain.models import BatchInfo, Record
from csv_importer.domain.reporting.collector import ReportCollector
from csv_importer.domain.reporting.models import DiagnosticStage
from csv_importer.domain.reporting.progress import ProgressCallback, ProgressTracker, RunState, StreamingRun
from csv_importer.domain.transform.normalizer import normalize_row
from csv_importer.errors import BatchConsumerError, SourceError
from csv_importer.infra.logging.setup import getLibraryLogger, logEvent
from csv_importer.infra.sources.byte_source import ByteSource, describe_source, open_source
from csv_importer.infra.sources.csv_tokenizer import CsvTokenizer, ParsedChunk

BatchCallback = Callable[[list[Record], BatchInfo], "Awaitable[None] | None"]


@dataclass
class ProcessSummary:
    rows_processed: int = 0
    batches_delivered: int = 0
    chunks_seen: int = 0
    consumer_errors: list[BaseException] = field(default_factory=list)


class ProcessUseCase:
    """
    Назначение/ответственность:
        Потоковая обработка CSV: чанк за чанком превращает строки в записи
        по назначению колонок и отдаёт батчи потребителю с обратным давлением.

    Контракт:
        - На каждый чанк: пауза источника и токенизатора, пропуск заголовка (один раз),
          снятие BOM с первой строки запуска, построение записей, on_progress(len(batch)).
        - Непустой батч отдаётся on_batch(records, BatchInfo) в отдельной задаче;
          пустой батч потребителю не отдаётся.
        - Когда задача потребителя завершилась (успешно или нет), источник и токенизатор
          возобновляются ровно один раз, в этом порядке.
        - start_index батчей монотонен и без разрывов: start_index(n+1) = start_index(n) + len(batch n).
        - Фатальная ошибка источника/токенизатора пробрасывается из run() сразу.
        - Ошибка потребителя: COLLECT: логируется и копится, обработка продолжается;
          FAIL: токенизатор прерывается, run() бросает BatchConsumerError.
    """

    def __init__(
        self,
        options: ParserOptions,
        consumer_error_policy: ConsumerErrorPolicy = ConsumerErrorPolicy.COLLECT,
        logger: logging.Logger | None = None,
        run_id: str = "-",
        report: ReportCollector | None = None,
    ) -> None:
        self.options = options
        self.consumer_error_policy = ConsumerErrorPolicy(consumer_error_policy)
        self.logger = logger or getLibraryLogger()
        self.run_id = run_id
        self.report = report

    async def run(
        self,
        source: Any,
        field_assignments: Mapping[str, ColumnAssignment | int | None],
        has_headers: bool,
        on_progress: ProgressCallback | None,
        on_batch: BatchCallback,
        *,
        fields: Iterable[FieldSpec] | None = None,
    ) -> ProcessSummary:
        assignments = (
            field_assignments
            if isinstance(field_assignments, FieldAssignmentMap)
            else FieldAssignmentMap(field_assignments)
        )
        if fields is not None:
            check_required_assigned(fields, assignments)

        name = describe_source(source)
        try:
            stream = open_source(source, self.options.encoding, self.options.chunk_size)
        except SourceError as exc:
            logEvent(self.logger, logging.ERROR, self.run_id, "source", f"Cannot open {name}: {exc}")
            self._report_error(exc, DiagnosticStage.SOURCE)
            raise

        logEvent(
            self.logger,
            logging.INFO,
            self.run_id,
            "process",
            f"Processing {name}: has_headers={has_headers} assigned={len(assignments.assigned)} "
            f"policy={self.consumer_error_policy.value}",
        )
        return await _StreamingRunner(self, stream, assignments, has_headers, on_progress, on_batch).run()

    def _report_error(self, exc: BaseException, stage: DiagnosticStage) -> None:
        if self.report is not None:
            self.report.add_error(exc, stage)


class _StreamingRunner:
    """Один запуск потоковой обработки (одноразовый)."""

    def __init__(
        self,
        usecase: ProcessUseCase,
        stream: ByteSource,
        assignments: FieldAssignmentMap,
        has_headers: bool,
        on_progress: ProgressCallback | None,
        on_batch: BatchCallback,
    ) -> None:
        self.usecase = usecase
        self.stream = stream
        self.assignments = assignments
        self.on_batch = on_batch
        self.state = StreamingRun(skip_line=has_headers)
        self.progress = ProgressTracker(on_progress)
        self.tokenizer = CsvTokenizer(stream, usecase.options)
        self.inflight: asyncio.Future | None = None
        self.fatal_consumer_error: BatchConsumerError | None = None

    def _log(self, level: int, component: str, message: str) -> None:
        logEvent(self.usecase.logger, level, self.usecase.run_id, component, message)

    async def run(self) -> ProcessSummary:
        try:
            summary = await self.tokenizer.run(self._on_chunk)
        except Exception as exc:
            if not self.state.finished:
                self.state.enter(RunState.FAILED)
            stage = DiagnosticStage.SOURCE if isinstance(exc, SourceError) else DiagnosticStage.PARSE
            self._log(logging.ERROR, stage.value, f"Streaming failed: {exc}")
            self.usecase._report_error(exc, stage)
            raise
        finally:
            if self.inflight is not None and not self.inflight.done():
                self.inflight.cancel()
            await self.stream.close()

        if self.fatal_consumer_error is not None:
            self.state.enter(RunState.FAILED)
            raise self.fatal_consumer_error from self.fatal_consumer_error.__cause__

        self.state.enter(RunState.COMPLETED)
        self._log(
            logging.INFO,
            "process",
            f"Processing finished: rows={self.state.processed_count} chunks={self.progress.chunks_seen} "
            f"batches={self.progress.batches_delivered} consumer_errors={len(self.state.consumer_errors)} "
            f"delimiter={summary.delimiter!r}",
        )
        return ProcessSummary(
            rows_processed=self.state.processed_count,
            batches_delivered=self.progress.batches_delivered,
            chunks_seen=self.progress.chunks_seen,
            consumer_errors=list(self.state.consumer_errors),
        )

    def _on_chunk(self, chunk: ParsedChunk, parser: CsvTokenizer) -> None:
        run = self.state
        run.enter(RunState.CHUNK_RECEIVED)
        self.stream.pause()
        parser.pause()

        # построчные замечания в потоковом режиме не агрегируются
        self._log(
            logging.DEBUG,
            "parse",
            f"Chunk at char {chunk.cursor}: rows={len(chunk.rows)} issues_ignored={len(chunk.issues)}",
        )

        records: list[Record] = []
        for raw in chunk.rows:
            row = normalize_row(raw, run)
            if run.skip_line:
                run.skip_line = False
                continue
            records.append(self.assignments.build_record(row))

        info = BatchInfo(start_index=run.processed_count)
        run.processed_count += len(records)
        self.progress.report(len(records))
        if self.usecase.report is not None:
            self.usecase.report.add_rows(len(records))

        run.enter(RunState.AWAITING_CONSUMER)
        if not records:
            self._resume(parser)
            return

        self.progress.batch_delivered()
        if self.usecase.report is not None:
            self.usecase.report.add_batch()
        self._log(logging.DEBUG, "consumer", f"Batch start={info.start_index} size={len(records)}")
        task = asyncio.ensure_future(self._consume(records, info))
        self.inflight = task
        task.add_done_callback(lambda done: self._on_consumed(done, info, parser))

    async def _consume(self, records: list[Record], info: BatchInfo) -> None:
        result = self.on_batch(records, info)
        if inspect.isawaitable(result):
            await result

    def _on_consumed(self, task: asyncio.Future, info: BatchInfo, parser: CsvTokenizer) -> None:
        self.inflight = None
        if self.state.finished:
            return
        if not task.cancelled():
            exc = task.exception()
            if exc is not None:
                self._consumer_failed(exc, info, parser)
        self._resume(parser)

    def _consumer_failed(self, exc: BaseException, info: BatchInfo, parser: CsvTokenizer) -> None:
        self.state.consumer_errors.append(exc)
        self.usecase._report_error(exc, DiagnosticStage.CONSUMER)
        if self.usecase.consumer_error_policy == ConsumerErrorPolicy.FAIL:
            self._log(logging.ERROR, "consumer", f"Batch at {info.start_index} failed, aborting: {exc!r}")
            if self.fatal_consumer_error is None:
                error = BatchConsumerError(f"Batch consumer failed: {exc}", start_index=info.start_index)
                error.__cause__ = exc
                self.fatal_consumer_error = error
            parser.abort()
            return
        self._log(logging.WARNING, "consumer", f"Batch at {info.start_index} failed: {exc!r}")

    def _resume(self, parser: CsvTokenizer) -> None:
        self.state.enter(RunState.RESUMING)
        self.stream.resume()
        parser.resume()
        self.state.enter(RunState.IDLE)


async def process_file(
    source: Any,
    options: ParserOptions | None,
    field_assignments: Mapping[str, ColumnAssignment | int | None],
    has_headers: bool,
    on_progress: ProgressCallback | None,
    on_batch: BatchCallback,
    *,
    consumer_error_policy: ConsumerErrorPolicy = ConsumerErrorPolicy.COLLECT,
    logger: logging.Logger | None = None,
    run_id: str = "-",
) -> ProcessSummary:
    usecase = ProcessUseCase(
        options or ParserOptions(),
        consumer_error_policy=consumer_error_policy,
        logger=logger,
        run_id=run_id,
    )
    return await usecase.run(source, field_assignments, has_headers, on_progress, on_batch)
