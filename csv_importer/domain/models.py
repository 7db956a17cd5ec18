from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Dict, List, Union

# Количество строк предпросмотра (всегда ровно столько строк в PreviewReport)
PREVIEW_ROW_COUNT = 5

RawRow = List[str]
Record = Dict[str, str]


@dataclass(frozen=True)
class ParseIssue:
    """
    Назначение:
        Нефатальное замечание токенизатора по конкретной строке.

    Поля:
        type: str
            Группа (Quotes|Delimiter|FieldMismatch|Row).
        code: str
            Код замечания (MissingQuotes, TooFewFields, ...).
        message: str
        row: int | None
            Индекс строки (с нуля) в порядке выдачи токенизатором.
    """

    type: str
    code: str
    message: str
    row: int | None = None

    def to_dict(self) -> dict[str, Any]:
        return {"type": self.type, "code": self.code, "message": self.message, "row": self.row}


@dataclass(frozen=True)
class PreviewReport:
    """
    Назначение:
        Успешный результат предпросмотра файла.

    Инварианты/гарантии:
        - first_rows содержит ровно PREVIEW_ROW_COUNT строк (недостающие: пустые кортежи).
        - is_single_line вычислен до дополнения пустыми строками.
        - parse_warning: первое нефатальное замечание, warning_count: общее число замечаний.
    """

    source: Any
    first_chunk: str
    first_rows: tuple[tuple[str, ...], ...]
    is_single_line: bool
    parse_warning: ParseIssue | None = None
    warning_count: int = 0

    @property
    def ok(self) -> bool:
        return True


@dataclass(frozen=True)
class PreviewFailure:
    """
    Назначение:
        Неуспешный результат предпросмотра: исходный ресурс и ошибка.
    """

    source: Any
    error: BaseException

    @property
    def ok(self) -> bool:
        return False


PreviewOutcome = Union[PreviewReport, PreviewFailure]


@dataclass(frozen=True)
class BatchInfo:
    """Сколько записей было выдано потребителю до этого батча."""

    start_index: int
