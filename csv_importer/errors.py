from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Dict

from csv_importer.domain.error_codes import ErrorCode


@dataclass
class AppError(Exception):
    """
    Унифицированная ошибка приложения.
    """

    category: str
    code: str
    message: str
    retryable: bool = False
    details: Dict[str, Any] = field(default_factory=dict)

    def __post_init__(self) -> None:
        super().__init__(self.message)

    def __str__(self) -> str:
        return self.message

    def to_dict(self) -> Dict[str, Any]:
        return {
            "category": self.category,
            "code": self.code,
            "message": self.message,
            "retryable": self.retryable,
            "details": self.details or {},
        }


class SourceError(AppError):
    """
    Назначение:
        Ошибка источника байтов (открытие, чтение, декодирование).
        Для потоковой обработки считается фатальной.
    """

    def __init__(
        self,
        message: str,
        code: str = ErrorCode.SOURCE_IO,
        retryable: bool = False,
        details: dict | None = None,
    ):
        super().__init__(
            category="source",
            code=str(code.value if isinstance(code, ErrorCode) else code),
            message=message,
            retryable=retryable,
            details=details or {},
        )


class UnsupportedSourceError(SourceError):
    """
    Назначение:
        Ресурс не поддерживает ни потоковое чтение, ни материализацию в памяти.
    """

    def __init__(self, message: str, code: str = ErrorCode.SOURCE_UNSUPPORTED, details: dict | None = None):
        super().__init__(message, code=code, details=details)


class SourceReadError(SourceError):
    """Сбой чтения или декодирования уже открытого источника."""


class EmptyFileError(AppError):
    def __init__(self, message: str = "File is empty"):
        super().__init__(category="preview", code=ErrorCode.FILE_EMPTY.value, message=message)


class AssignmentError(AppError):
    """
    Назначение:
        Некорректное назначение колонок полям (не назначены обязательные поля и т.п.).
    """

    def __init__(self, message: str, missing: list[str] | None = None):
        super().__init__(
            category="mapping",
            code=ErrorCode.REQUIRED_FIELD_UNASSIGNED.value,
            message=message,
            details={"missing": list(missing or [])},
        )
        self.missing = list(missing or [])


class BatchConsumerError(AppError):
    """
    Назначение:
        Потребитель батча завершился ошибкой при политике FAIL.
    Контракт:
        - start_index указывает на батч, обработка которого упала.
        - __cause__ содержит исходное исключение потребителя.
    """

    def __init__(self, message: str, start_index: int):
        super().__init__(
            category="consumer",
            code=ErrorCode.CONSUMER_FAILED.value,
            message=message,
            details={"start_index": start_index},
        )
        self.start_index = start_index


__all__ = [
    "AppError",
    "SourceError",
    "UnsupportedSourceError",
    "SourceReadError",
    "EmptyFileError",
    "AssignmentError",
    "BatchConsumerError",
]
