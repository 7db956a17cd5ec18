from __future__ import annotations

import asyncio
from dataclasses import dataclass, field
from typing import Callable

from csv_importer.config.config import ParserOptions
from csv_importer.domain.error_codes import IssueCode, IssueType
from csv_importer.domain.models import ParseIssue, RawRow
from csv_importer.infra.sources.byte_source import ByteSource
from csv_importer.infra.sources.csv_utils import (
    RecordSplitter,
    guess_delimiter,
    guess_line_ending,
    is_empty_row,
)

# если за столько символов не встретилось перевода строки, диалект определяется по тому, что есть
_PRELUDE_LIMIT = 64 * 1024


@dataclass
class ParsedChunk:
    """
    Назначение:
        Результат разбора одного чанка источника.

    Поля:
        rows: list[RawRow]
            Строки в порядке файла.
        issues: list[ParseIssue]
            Нефатальные замечания, относящиеся к этим строкам.
        cursor: int
            Сколько символов текста прочитано к концу чанка.
    """

    rows: list[RawRow]
    issues: list[ParseIssue] = field(default_factory=list)
    cursor: int = 0


@dataclass
class TokenizerSummary:
    rows_emitted: int = 0
    chunks_emitted: int = 0
    aborted: bool = False
    truncated: bool = False
    delimiter: str | None = None
    newline: str | None = None


ChunkHandler = Callable[[ParsedChunk, "CsvTokenizer"], None]
FirstChunkHandler = Callable[[str], None]


class CsvTokenizer:
    """
    Назначение/ответственность:
        Разбор CSV поверх потока чанков: режет текст на записи, делит их на ячейки
        и отдаёт строки обработчику чанк за чанком (push-модель).

    Контракт:
        - run() вызывает on_chunk(chunk, tokenizer) ровно один раз на каждый чанк источника,
          в том числе на чанк, не завершивший ни одной записи (rows=[]).
        - Хвост в конце ввода отдаётся отдельным чанком, только если в нём есть строки или замечания.
        - Ни одна запись не отбрасывается молча: пропускаются только комментарии
          и пустые строки по skip_empty_lines.
        - pause() не даёт тянуть следующий чанк до resume(). Источник при этом
          не приостанавливается: это делает вызывающий.
        - abort() завершает run() и гарантирует, что больше строк не будет.
        - preview=N: после N строк разбор завершается (truncated=True).
        - Фатальные ошибки источника пробрасываются из run(); обычное окончание
          ввода возвращает TokenizerSummary.
        - Экземпляр одноразовый.
    """

    def __init__(self, source: ByteSource, options: ParserOptions, preview: int | None = None):
        if preview is not None and preview <= 0:
            raise ValueError(f"preview must be a positive row count, got {preview}")
        self._source = source
        self._options = options
        self._preview = preview
        self._resumed = asyncio.Event()
        self._resumed.set()
        self._aborted = False
        self._started = False
        self._prelude = ""
        self._splitter: RecordSplitter | None = None
        self._expected_fields: int | None = None
        self._pending_issues: list[ParseIssue] = []
        self._cursor = 0
        self.summary = TokenizerSummary()

    @property
    def paused(self) -> bool:
        return not self._resumed.is_set()

    @property
    def aborted(self) -> bool:
        return self._aborted

    def pause(self) -> None:
        self._resumed.clear()

    def resume(self) -> None:
        self._resumed.set()

    def abort(self) -> None:
        self._aborted = True
        # разбудить run(), если он ждёт resume()
        self._resumed.set()

    async def run(self, on_chunk: ChunkHandler, before_first_chunk: FirstChunkHandler | None = None) -> TokenizerSummary:
        if self._started:
            raise RuntimeError("CsvTokenizer instances are single-use")
        self._started = True

        chunks = self._source.chunks()
        first = True
        try:
            async for text in chunks:
                if self._aborted:
                    break
                if first:
                    first = False
                    if before_first_chunk is not None:
                        before_first_chunk(text)
                # каждый чанк источника отдаётся, даже если он не завершил ни одной записи
                stop = self._emit(self._feed(text), None, on_chunk)
                await self._resumed.wait()
                if stop or self._aborted:
                    break
            else:
                if not self._aborted:
                    records, open_record = self._finish()
                    if records or self._pending_issues:
                        self._emit(records, open_record, on_chunk)
                        await self._resumed.wait()
        finally:
            await chunks.aclose()

        self.summary.aborted = self._aborted
        return self.summary

    def _feed(self, text: str) -> list[str]:
        self._cursor += len(text)
        if self._splitter is None:
            self._prelude += text
            if not self._prelude_ready():
                return []
            text, self._prelude = self._prelude, ""
            self._resolve_dialect(text)
        return self._splitter.feed(text)

    def _finish(self) -> tuple[list[str], str | None]:
        records: list[str] = []
        if self._splitter is None:
            if not self._prelude:
                return [], None
            text, self._prelude = self._prelude, ""
            self._resolve_dialect(text)
            records.extend(self._splitter.feed(text))
        tail, open_record = self._splitter.finish()
        records.extend(tail)
        return records, open_record

    def _prelude_ready(self) -> bool:
        opts = self._options
        if opts.delimiter is not None and opts.newline is not None:
            return True
        text = self._prelude
        if len(text) >= _PRELUDE_LIMIT:
            return True
        if "\n" in text:
            return True
        cr = text.find("\r")
        return cr != -1 and cr < len(text) - 1

    def _resolve_dialect(self, sample: str) -> None:
        opts = self._options
        newline = opts.newline or guess_line_ending(sample, opts.quote_char)
        delimiter = opts.delimiter
        if delimiter is None:
            delimiter = guess_delimiter(sample, opts.delimiters_to_guess, newline)
            if delimiter is None:
                delimiter = ","
                self._pending_issues.append(
                    ParseIssue(
                        type=IssueType.DELIMITER.value,
                        code=IssueCode.UNDETECTABLE_DELIMITER.value,
                        message="Unable to auto-detect delimiting character; defaulted to ','",
                    )
                )
        self._splitter = RecordSplitter(newline, delimiter, opts.quote_char, opts.escape_char)
        self.summary.delimiter = delimiter
        self.summary.newline = newline

    def _emit(self, records: list[str], open_record: str | None, on_chunk: ChunkHandler) -> bool:
        """
        Назначение:
            Разбирает записи чанка и отдаёт их обработчику.

        Входные данные:
            open_record: str | None
                Запись с незакрытой кавычкой (сравнивается по идентичности объекта).

        Выходные данные:
            bool
                True, если разбор нужно завершить (достигнут лимит preview или abort()).
        """
        rows: list[RawRow] = []
        issues, self._pending_issues = self._pending_issues, []
        truncated = False
        comments = self._options.comments

        for record in records:
            row_index = self.summary.rows_emitted + len(rows)
            if record is open_record:
                issues.append(
                    ParseIssue(
                        type=IssueType.QUOTES.value,
                        code=IssueCode.MISSING_QUOTES.value,
                        message="Quoted field unterminated",
                        row=row_index,
                    )
                )
            if comments and record.startswith(comments):
                continue
            row = self._splitter.cells(record)
            if is_empty_row(row, self._options.skip_empty_lines):
                continue
            self._check_field_count(row, row_index, issues)
            rows.append(row)
            if self._preview is not None and self.summary.rows_emitted + len(rows) >= self._preview:
                truncated = True
                break

        self.summary.rows_emitted += len(rows)
        self.summary.chunks_emitted += 1
        self.summary.truncated = truncated
        on_chunk(ParsedChunk(rows=rows, issues=issues, cursor=self._cursor), self)
        return truncated or self._aborted

    def _check_field_count(self, row: RawRow, row_index: int, issues: list[ParseIssue]) -> None:
        if not row:
            return
        if self._expected_fields is None:
            self._expected_fields = len(row)
            return
        if len(row) == self._expected_fields:
            return
        too_few = len(row) < self._expected_fields
        issues.append(
            ParseIssue(
                type=IssueType.FIELD_MISMATCH.value,
                code=(IssueCode.TOO_FEW_FIELDS if too_few else IssueCode.TOO_MANY_FIELDS).value,
                message=(
                    f"Too {'few' if too_few else 'many'} fields: "
                    f"expected {self._expected_fields} fields but parsed {len(row)}"
                ),
                row=row_index,
            )
        )
