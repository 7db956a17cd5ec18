from __future__ import annotations

from enum import Enum


class ErrorCode(str, Enum):
    """
    Назначение:
        Единая таксономия кодов ошибок импорта (источник, разбор, маппинг, потребитель).
    """

    SOURCE_UNSUPPORTED = "SOURCE_UNSUPPORTED"
    ENCODING_UNSUPPORTED = "ENCODING_UNSUPPORTED"
    SOURCE_IO = "SOURCE_IO"
    DECODE_FAILED = "DECODE_FAILED"
    FILE_EMPTY = "FILE_EMPTY"
    REQUIRED_FIELD_UNASSIGNED = "REQUIRED_FIELD_UNASSIGNED"
    CONSUMER_FAILED = "CONSUMER_FAILED"
    UNEXPECTED_ERROR = "UNEXPECTED_ERROR"

    @classmethod
    def from_exception(cls, exc: BaseException) -> "ErrorCode":
        """
        Назначение:
            Подбор кода по исключению, пришедшему не из AppError.
        """
        if isinstance(exc, UnicodeDecodeError):
            return cls.DECODE_FAILED
        if isinstance(exc, OSError):
            return cls.SOURCE_IO
        return cls.UNEXPECTED_ERROR


class IssueType(str, Enum):
    """Тип нефатального замечания токенизатора."""

    QUOTES = "Quotes"
    DELIMITER = "Delimiter"
    FIELD_MISMATCH = "FieldMismatch"


class IssueCode(str, Enum):
    MISSING_QUOTES = "MissingQuotes"
    UNDETECTABLE_DELIMITER = "UndetectableDelimiter"
    TOO_FEW_FIELDS = "TooFewFields"
    TOO_MANY_FIELDS = "TooManyFields"
