from __future__ import annotations

import csv
import re
from typing import Iterable, Sequence

from csv_importer.domain.models import RawRow

# объём текста, по которому угадываются перевод строки и разделитель
GUESS_SAMPLE_LIMIT = 1024 * 1024


def is_empty_row(row: Sequence[str], mode: bool | str) -> bool:
    if mode == "greedy":
        return "".join(row).strip() == ""
    if mode:
        return len(row) == 0 or (len(row) == 1 and row[0] == "")
    return False


def _strip_quoted(text: str, quote_char: str) -> str:
    q = re.escape(quote_char)
    return re.sub(f"{q}(.*?){q}", "", text, flags=re.DOTALL)


def guess_line_ending(sample: str, quote_char: str = '"') -> str:
    """
    Назначение:
        Угадывает перевод строки по началу текста (содержимое в кавычках не учитывается).

    Алгоритм:
        - Нет \\r или \\n встречается раньше \\r -> \\n.
        - Иначе \\r\\n, если не меньше половины фрагментов после \\r начинаются с \\n, иначе \\r.
    """
    text = _strip_quoted(sample[:GUESS_SAMPLE_LIMIT], quote_char)
    by_cr = text.split("\r")
    by_lf = text.split("\n")
    lf_first = len(by_lf) > 1 and len(by_lf[0]) < len(by_cr[0])
    if len(by_cr) == 1 or lf_first:
        return "\n"
    with_lf = sum(1 for part in by_cr if part.startswith("\n"))
    return "\r\n" if with_lf >= len(by_cr) / 2 else "\r"


def guess_delimiter(sample: str, candidates: Iterable[str], newline: str = "\n") -> str | None:
    """
    Назначение:
        Угадывает разделитель среди кандидатов через csv.Sniffer.

    Выходные данные:
        str | None
            None, если разделитель определить не удалось.
    """
    allowed = "".join(candidates)
    if not allowed:
        return None
    sample = sample[:GUESS_SAMPLE_LIMIT]
    cut = sample.rfind(newline)
    if cut > 0:
        sample = sample[:cut]
    if newline != "\n":
        sample = sample.replace(newline, "\n")
    try:
        dialect = csv.Sniffer().sniff(sample, delimiters=allowed)
    except csv.Error:
        return None
    if dialect.delimiter not in allowed:
        return None
    return dialect.delimiter


class RecordSplitter:
    """
    Назначение/ответственность:
        Режет поступающий текст на полные записи с учётом кавычек:
        перевод строки внутри поля в кавычках не завершает запись,
        даже если поле пересекает границу чанков.

    Инварианты/гарантии:
        - Состояние сканирования (позиция, «внутри кавычек», «начало поля»)
          сохраняется между вызовами feed(); уже просканированный текст повторно не сканируется.
        - Неоднозначные символы в конце буфера (кавычка, escape, \\r у \\r\\n)
          ждут следующего чанка.
        - Переводы строки, отличные от выбранного, остаются содержимым записи.
    """

    def __init__(self, newline: str, delimiter: str, quote_char: str, escape_char: str | None = None):
        self.newline = newline
        self.delimiter = delimiter
        self.quote_char = quote_char
        self.escape_char = escape_char if escape_char and escape_char != quote_char else None
        self._buffer = ""
        self._pos = 0
        self._in_quotes = False
        self._field_start = True

    def feed(self, text: str) -> list[str]:
        self._buffer += text
        return self._scan(final=False)

    def finish(self) -> tuple[list[str], str | None]:
        """
        Назначение:
            Досканировать хвост в конце ввода.

        Выходные данные:
            (records, open_record)
                open_record: запись из records, оставшаяся с открытой кавычкой, иначе None.
        """
        records = self._scan(final=True)
        open_record = None
        if self._buffer:
            if self._in_quotes:
                open_record = self._buffer
            records.append(self._buffer)
        self._buffer = ""
        self._pos = 0
        self._in_quotes = False
        self._field_start = True
        return records, open_record

    def cells(self, record: str) -> RawRow:
        """
        Назначение:
            Разбирает полную запись на ячейки по тем же правилам кавычек и escape,
            по которым запись была выделена.

        Поведение:
            - Пустая запись даёт пустой список.
            - \\r и \\n вне кавычек (если это не выбранный перевод строки) остаются в ячейке.
            - Незакрытая кавычка: ячейка продолжается до конца записи.
            - Текст после закрывающей кавычки дописывается в ту же ячейку.
        """
        if not record:
            return []
        q = self.quote_char
        esc = self.escape_char
        delim = self.delimiter
        row: list[str] = []
        cell: list[str] = []
        in_quotes = False
        field_start = True
        i = 0
        n = len(record)

        while i < n:
            ch = record[i]
            if in_quotes:
                if esc is not None and ch == esc:
                    cell.append(record[i + 1 : i + 2])
                    i += 2
                    continue
                if ch == q:
                    if esc is None and i + 1 < n and record[i + 1] == q:
                        cell.append(q)
                        i += 2
                        continue
                    in_quotes = False
                    i += 1
                    continue
                cell.append(ch)
                i += 1
                continue

            if ch == delim:
                row.append("".join(cell))
                cell = []
                field_start = True
                i += 1
                continue
            if esc is not None and ch == esc:
                cell.append(record[i + 1 : i + 2])
                field_start = False
                i += 2
                continue
            if ch == q and field_start:
                in_quotes = True
                field_start = False
                i += 1
                continue
            cell.append(ch)
            field_start = False
            i += 1

        row.append("".join(cell))
        return row

    def _scan(self, final: bool) -> list[str]:
        buf = self._buffer
        n = len(buf)
        i = self._pos
        start = 0
        records: list[str] = []
        nl = self.newline
        nl_first = nl[0]
        q = self.quote_char
        esc = self.escape_char
        delim = self.delimiter

        # быстрый путь: дальше нет ни кавычек, ни escape
        if not self._in_quotes and buf.find(q, i) == -1 and (esc is None or buf.find(esc, i) == -1):
            j = buf.find(nl, i)
            while j != -1:
                records.append(buf[start:j])
                start = j + len(nl)
                j = buf.find(nl, start)
            resume = max(start, i)
            stop = n
            if len(nl) == 2 and not final and n > resume and buf[-1] == nl_first:
                stop = n - 1
            if stop > resume:
                self._field_start = buf[stop - 1] == delim
            elif records:
                self._field_start = True
            i = stop

        while i < n:
            ch = buf[i]
            if self._in_quotes:
                if esc is not None and ch == esc:
                    if i + 1 >= n and not final:
                        break
                    i += 2
                    continue
                if ch == q:
                    if i + 1 >= n:
                        if not final:
                            break
                        self._in_quotes = False
                        i += 1
                        continue
                    if esc is None and buf[i + 1] == q:
                        i += 2
                        continue
                    self._in_quotes = False
                    i += 1
                    continue
                i += 1
                continue

            if ch == nl_first:
                if len(nl) == 2:
                    if i + 1 >= n:
                        if not final:
                            break
                        self._field_start = False
                        i += 1
                        continue
                    if buf[i + 1] != nl[1]:
                        self._field_start = False
                        i += 1
                        continue
                records.append(buf[start:i])
                i += len(nl)
                start = i
                self._field_start = True
                continue

            if esc is not None and ch == esc:
                if i + 1 >= n and not final:
                    break
                i += 2
                self._field_start = False
                continue

            if ch == q and self._field_start:
                self._in_quotes = True
                self._field_start = False
                i += 1
                continue

            self._field_start = ch == delim
            i += 1

        self._buffer = buf[start:]
        self._pos = max(0, min(i, n) - start)
        return records
