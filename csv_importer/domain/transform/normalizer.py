from __future__ import annotations

from typing import Any, Iterable, Protocol

from csv_importer.domain.models import RawRow

BOM_CHAR = "\ufeff"


class BomFlag(Protocol):
    """
    Назначение:
        Владелец флага «первая строка ещё не проверена на BOM».
    """

    skip_bom: bool


def coerce_cells(row: Iterable[Any]) -> RawRow:
    """Нестроковые значения ячеек превращаются в пустые строки."""
    return [item if isinstance(item, str) else "" for item in row]


def strip_leading_bom(row: RawRow, state: BomFlag) -> RawRow:
    """
    Назначение:
        Удаляет BOM из первой ячейки первой строки (на месте).

    Поведение:
        - Удаляется ровно один ведущий U+FEFF, даже если ячейка становится пустой.
        - Флаг снимается всегда, даже если строка пустая или BOM не найден.
        - Последующие строки не проверяются.
    """
    if not state.skip_bom:
        return row
    state.skip_bom = False
    if row and row[0].startswith(BOM_CHAR):
        row[0] = row[0][1:]
    return row


def normalize_row(raw: Iterable[Any], state: BomFlag) -> RawRow:
    return strip_leading_bom(coerce_cells(raw), state)
