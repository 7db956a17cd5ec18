from __future__ import annotations

_ELLIPSIS = "..."


def clipText(value: str, limit: int) -> str:
    """Обрезает текст до limit символов; обрезка помечается многоточием, если оно помещается."""
    if len(value) <= limit:
        return value
    if limit <= len(_ELLIPSIS):
        return value[:limit]
    return value[: limit - len(_ELLIPSIS)] + _ELLIPSIS


def printableCell(value: str, limit: int = 40) -> str:
    """
    Назначение:
        Видимое представление ячейки CSV для консоли.

    Поведение:
        - Управляющие символы (переводы строки внутри ячейки, BOM, табуляция) экранируются.
        - Результат не длиннее limit символов.
    """
    if not value.isprintable():
        value = value.encode("unicode_escape").decode("ascii")
    return clipText(value, limit)
