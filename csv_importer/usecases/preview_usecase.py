from __future__ import annotations

import logging
from typing import Any

from csv_importer.common.sanitize import clipText
from csv_importer.config.config import ParserOptions
from csv_importer.domain.models import (
    PREVIEW_ROW_COUNT,
    ParseIssue,
    PreviewFailure,
    PreviewOutcome,
    PreviewReport,
    RawRow,
)
from csv_importer.domain.transform.normalizer import normalize_row
from csv_importer.errors import EmptyFileError
from csv_importer.infra.logging.setup import getLibraryLogger, logEvent
from csv_importer.infra.sources.byte_source import ByteSource, describe_source, open_source
from csv_importer.infra.sources.csv_tokenizer import CsvTokenizer, ParsedChunk


class _PreviewAccumulator:
    def __init__(self) -> None:
        self.rows: list[RawRow] = []
        self.skip_bom = True
        self.first_chunk: str | None = None
        self.first_warning: ParseIssue | None = None
        self.warning_count = 0

    @property
    def full(self) -> bool:
        return len(self.rows) >= PREVIEW_ROW_COUNT


class PreviewUseCase:
    """
    Назначение/ответственность:
        Быстрый предпросмотр первых PREVIEW_ROW_COUNT строк файла
        для выбора формата и назначения колонок.

    Контракт:
        - run() никогда не бросает исключений (кроме отмены задачи):
          любая ошибка превращается в PreviewFailure.
        - Пустой файл -> PreviewFailure(EmptyFileError), даже если токенизатор молчит.
        - Первое нефатальное замечание токенизатора -> parse_warning, разбор продолжается.
        - По достижении лимита источник ставится на паузу, токенизатор прерывается явно.
    """

    def __init__(self, options: ParserOptions, logger: logging.Logger | None = None, run_id: str = "-") -> None:
        self.options = options
        self.logger = logger or getLibraryLogger()
        self.run_id = run_id

    async def run(self, source: Any) -> PreviewOutcome:
        name = describe_source(source)
        try:
            outcome = await self._run(source, name)
        except Exception as exc:
            logEvent(self.logger, logging.ERROR, self.run_id, "preview", f"Preview of {name} failed: {exc}")
            return PreviewFailure(source=source, error=exc)
        if isinstance(outcome, PreviewFailure):
            logEvent(self.logger, logging.WARNING, self.run_id, "preview", f"Preview of {name} failed: {outcome.error}")
        return outcome

    async def _run(self, source: Any, name: str) -> PreviewOutcome:
        try:
            stream = open_source(source, self.options.encoding, self.options.chunk_size)
        except Exception as exc:
            logEvent(self.logger, logging.ERROR, self.run_id, "source", f"Cannot open {name}: {exc}")
            return PreviewFailure(source=source, error=exc)

        acc = _PreviewAccumulator()
        try:
            await self._collect(stream, acc)
        finally:
            await stream.close()

        if not acc.rows:
            return PreviewFailure(source=source, error=EmptyFileError())

        is_single_line = len(acc.rows) == 1
        rows = [tuple(row) for row in acc.rows]
        while len(rows) < PREVIEW_ROW_COUNT:
            rows.append(())

        logEvent(
            self.logger,
            logging.INFO,
            self.run_id,
            "preview",
            f"Preview of {name}: rows={len(acc.rows)} single_line={is_single_line} warnings={acc.warning_count}",
        )
        return PreviewReport(
            source=source,
            first_chunk=acc.first_chunk or "",
            first_rows=tuple(rows),
            is_single_line=is_single_line,
            parse_warning=acc.first_warning,
            warning_count=acc.warning_count,
        )

    async def _collect(self, stream: ByteSource, acc: _PreviewAccumulator) -> None:
        tokenizer = CsvTokenizer(stream, self.options, preview=PREVIEW_ROW_COUNT)

        def before_first_chunk(text: str) -> None:
            acc.first_chunk = text
            logEvent(self.logger, logging.DEBUG, self.run_id, "parse", f"First chunk: {clipText(text, 200)!r}")

        def on_chunk(chunk: ParsedChunk, parser: CsvTokenizer) -> None:
            for raw in chunk.rows:
                if acc.full:
                    break
                acc.rows.append(normalize_row(raw, acc))

            if chunk.issues:
                acc.warning_count += len(chunk.issues)
                if acc.first_warning is None:
                    acc.first_warning = chunk.issues[0]

            if acc.full:
                # токенизатор не останавливает источник сам
                stream.pause()
                parser.abort()

        await tokenizer.run(on_chunk, before_first_chunk=before_first_chunk)


async def parse_preview(
    source: Any,
    options: ParserOptions | None = None,
    logger: logging.Logger | None = None,
    run_id: str = "-",
) -> PreviewOutcome:
    return await PreviewUseCase(options or ParserOptions(), logger=logger, run_id=run_id).run(source)
