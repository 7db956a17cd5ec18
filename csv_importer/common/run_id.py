from __future__ import annotations

import re
import uuid

# run_id входит в имена файлов лога и отчёта
_RUN_ID_RE = re.compile(r"[A-Za-z0-9][A-Za-z0-9._-]{0,63}")


def generate_run_id() -> str:
    return str(uuid.uuid4())


def resolve_run_id(value: str | None) -> str:
    """
    Назначение:
        Возвращает run_id запуска: переданный пользователем или новый UUID.

    Поведение:
        - Пустое значение -> generate_run_id().
        - Значение, непригодное для имени файла (слэши, пробелы, >64 символов) -> ValueError.
    """
    if not value:
        return generate_run_id()
    if not _RUN_ID_RE.fullmatch(value):
        raise ValueError(f"Invalid run id {value!r}: use letters, digits, '.', '_' or '-' (max 64)")
    return value
