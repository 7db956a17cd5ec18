from __future__ import annotations

from collections.abc import Mapping
from dataclasses import dataclass
from typing import Iterable, Iterator, Sequence, Union

from csv_importer.domain.models import PreviewReport, Record
from csv_importer.errors import AssignmentError


@dataclass(frozen=True)
class Assigned:
    """Полю назначена колонка с индексом index (с нуля)."""

    index: int

    def __post_init__(self) -> None:
        if isinstance(self.index, bool) or not isinstance(self.index, int):
            raise ValueError(f"Column index must be an integer, got {self.index!r}")
        if self.index < 0:
            raise ValueError(f"Column index must be non-negative, got {self.index}")


@dataclass(frozen=True)
class Unassigned:
    """Колонка полю не назначена; поле никогда не заполняется."""


UNASSIGNED = Unassigned()

ColumnAssignment = Union[Assigned, Unassigned]


def _to_assignment(value: ColumnAssignment | int | None) -> ColumnAssignment:
    if value is None:
        return UNASSIGNED
    if isinstance(value, (Assigned, Unassigned)):
        return value
    return Assigned(value)


class FieldAssignmentMap(Mapping):
    """
    Назначение/ответственность:
        Неизменяемое отображение «имя поля -> назначенная колонка».

    Инварианты/гарантии:
        - Индексы не обязаны быть уникальными или идущими подряд.
        - Unassigned-поле никогда не попадает в запись.
        - Порядок полей сохраняется (порядок ключей в записи совпадает с ним).
    """

    def __init__(self, assignments: Mapping[str, ColumnAssignment | int | None] | None = None):
        items = dict(assignments or {})
        self._items: dict[str, ColumnAssignment] = {
            str(name): _to_assignment(value) for name, value in items.items()
        }
        self._assigned: tuple[tuple[str, int], ...] = tuple(
            (name, value.index) for name, value in self._items.items() if isinstance(value, Assigned)
        )

    @classmethod
    def parse(cls, specs: Iterable[str]) -> "FieldAssignmentMap":
        """
        Назначение:
            Разбор назначений из CLI-формата NAME=INDEX (пустой INDEX: поле без колонки).
        """
        items: dict[str, int | None] = {}
        for spec in specs:
            name, sep, raw_index = spec.partition("=")
            name = name.strip()
            if not sep or not name:
                raise ValueError(f"Invalid field assignment '{spec}', expected NAME=INDEX")
            if name in items:
                raise ValueError(f"Field '{name}' is assigned more than once")
            raw_index = raw_index.strip()
            if raw_index == "":
                items[name] = None
                continue
            try:
                items[name] = int(raw_index)
            except ValueError:
                raise ValueError(f"Invalid column index for field '{name}': {raw_index!r}") from None
        return cls(items)

    def __getitem__(self, name: str) -> ColumnAssignment:
        return self._items[name]

    def __iter__(self) -> Iterator[str]:
        return iter(self._items)

    def __len__(self) -> int:
        return len(self._items)

    def __repr__(self) -> str:
        return f"FieldAssignmentMap({self._items!r})"

    @property
    def assigned(self) -> tuple[tuple[str, int], ...]:
        return self._assigned

    def build_record(self, row: Sequence[str]) -> Record:
        record: Record = {}
        row_len = len(row)
        for name, index in self._assigned:
            if index < row_len:
                record[name] = row[index]
        return record


@dataclass(frozen=True)
class FieldSpec:
    """
    Назначение:
        Описание целевого поля импорта.
    """

    name: str
    label: str | None = None
    optional: bool = False


def check_required_assigned(fields: Iterable[FieldSpec], assignments: Mapping[str, ColumnAssignment]) -> None:
    """
    Назначение:
        Проверяет, что всем обязательным полям назначена колонка.

    Поведение:
        - Бросает AssignmentError со списком неназначенных обязательных полей.
    """
    missing = [
        spec.name
        for spec in fields
        if not spec.optional and not isinstance(assignments.get(spec.name, UNASSIGNED), Assigned)
    ]
    if missing:
        raise AssignmentError("Please assign all required fields", missing=missing)


@dataclass(frozen=True)
class PreviewColumn:
    index: int
    values: tuple[str, ...]


def preview_columns(report: PreviewReport) -> list[PreviewColumn]:
    """
    Назначение:
        Колонки для выбора назначений: по одной на ячейку первой строки предпросмотра.
        Значения колонки берутся из всех строк предпросмотра ("" для коротких строк).
    """
    if not report.first_rows:
        return []
    width = len(report.first_rows[0])
    return [
        PreviewColumn(
            index=index,
            values=tuple(row[index] if index < len(row) else "" for row in report.first_rows),
        )
        for index in range(width)
    ]
