from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
import os
import yaml

DEFAULT_CHUNK_SIZE = 10000
DEFAULT_ENCODING = "utf-8"
DEFAULT_DELIMITERS_TO_GUESS: tuple[str, ...] = (",", "\t", "|", ";", "\x1e", "\x1f")
ALLOWED_NEWLINES = ("\n", "\r", "\r\n")


class ConsumerErrorPolicy(str, Enum):
    """
    Назначение:
        Что делать, если потребитель батча упал.
        COLLECT: собрать ошибку и продолжить, FAIL: остановить запуск.
    """

    COLLECT = "collect"
    FAIL = "fail"


@dataclass(frozen=True)
class ParserOptions:
    """
    Назначение:
        Набор опций токенизатора (неизменяем на время запуска).

    Поля:
        delimiter: str | None
            Разделитель; None: автоопределение среди delimiters_to_guess.
        newline: str | None
            Перевод строки; None: автоопределение по первой строке.
        escape_char: str | None
            None: экранирование удвоением quote_char.
        skip_empty_lines: bool | str
            False | True | "greedy".
    """

    delimiter: str | None = None
    newline: str | None = None
    quote_char: str = '"'
    escape_char: str | None = None
    comments: str | None = None
    skip_empty_lines: bool | str = False
    delimiters_to_guess: tuple[str, ...] = DEFAULT_DELIMITERS_TO_GUESS
    chunk_size: int = DEFAULT_CHUNK_SIZE
    encoding: str = DEFAULT_ENCODING

    def __post_init__(self) -> None:
        if self.delimiter is not None and len(self.delimiter) != 1:
            raise ValueError(f"delimiter must be a single character, got {self.delimiter!r}")
        if self.newline is not None and self.newline not in ALLOWED_NEWLINES:
            raise ValueError(f"newline must be one of \\n, \\r, \\r\\n, got {self.newline!r}")
        if len(self.quote_char) != 1:
            raise ValueError(f"quote_char must be a single character, got {self.quote_char!r}")
        if self.delimiter is not None and (self.delimiter in "\r\n" or self.delimiter == self.quote_char):
            raise ValueError(f"delimiter {self.delimiter!r} clashes with newline or quote_char")
        if self.escape_char is not None and len(self.escape_char) != 1:
            raise ValueError(f"escape_char must be a single character, got {self.escape_char!r}")
        if self.comments == "":
            raise ValueError("comments marker must not be empty")
        if self.skip_empty_lines not in (False, True, "greedy"):
            raise ValueError(f"skip_empty_lines must be true, false or 'greedy', got {self.skip_empty_lines!r}")
        if any(len(d) != 1 for d in self.delimiters_to_guess):
            raise ValueError("delimiters_to_guess must contain single characters")
        if isinstance(self.chunk_size, bool) or not isinstance(self.chunk_size, int) or self.chunk_size <= 0:
            raise ValueError(f"chunk_size must be a positive integer, got {self.chunk_size!r}")
        if not self.encoding:
            raise ValueError("encoding must not be empty")


@dataclass(frozen=True)
class Settings:
    # Paths
    log_dir: str = "./logs"
    report_dir: str = "./reports"

    # Logging
    log_level: str = "INFO"

    # Parser
    encoding: str = DEFAULT_ENCODING
    delimiter: str | None = None
    newline: str | None = None
    quote_char: str = '"'
    escape_char: str | None = None
    comments: str | None = None
    skip_empty_lines: bool | str = False
    delimiters_to_guess: tuple[str, ...] = field(default=DEFAULT_DELIMITERS_TO_GUESS)
    chunk_size: int = DEFAULT_CHUNK_SIZE

    # Processing
    consumer_error_policy: ConsumerErrorPolicy = ConsumerErrorPolicy.COLLECT

    def parser_options(self) -> ParserOptions:
        return ParserOptions(
            delimiter=self.delimiter,
            newline=self.newline,
            quote_char=self.quote_char,
            escape_char=self.escape_char,
            comments=self.comments,
            skip_empty_lines=self.skip_empty_lines,
            delimiters_to_guess=self.delimiters_to_guess,
            chunk_size=self.chunk_size,
            encoding=self.encoding,
        )


@dataclass(frozen=True)
class LoadedSettings:
    settings: Settings
    sources_used: list[str]


def _read_yaml_config(path: Path) -> dict:
    if not path.exists():
        return {}
    if not path.is_file():
        return {}
    with path.open("r", encoding="utf-8") as f:
        data = yaml.safe_load(f) or {}
        if not isinstance(data, dict):
            return {}
        return data


def _env_get(name: str) -> str | None:
    v = os.getenv(name)
    if v is None or v.strip() == "":
        return None
    return v.strip()


def _decode_escapes(v: str | None) -> str | None:
    """
    Назначение:
        Разворачивает экранирование из ENV/CLI: "\\t" -> TAB, "\\r\\n" -> CRLF.
    """
    if v is None:
        return None
    return v.replace("\\t", "\t").replace("\\r", "\r").replace("\\n", "\n")


def parse_int(v: str | int | None) -> int | None:
    if v is None:
        return None
    return int(v)


def parse_bool(v: str | None) -> bool | None:
    if v is None:
        return None
    vv = v.lower()
    if vv in ("1", "true", "yes", "y"):
        return True
    if vv in ("0", "false", "no", "n"):
        return False
    raise ValueError(f"Invalid boolean value: {v}")


def parse_skip_empty_lines(v: str | bool | None) -> bool | str | None:
    if v is None or isinstance(v, bool):
        return v
    if v.strip().lower() == "greedy":
        return "greedy"
    return parse_bool(v)


ENV_NAMES = {
    "log_dir": "CSV_IMPORTER_LOG_DIR",
    "report_dir": "CSV_IMPORTER_REPORT_DIR",
    "log_level": "CSV_IMPORTER_LOG_LEVEL",
    "encoding": "CSV_IMPORTER_ENCODING",
    "delimiter": "CSV_IMPORTER_DELIMITER",
    "newline": "CSV_IMPORTER_NEWLINE",
    "quote_char": "CSV_IMPORTER_QUOTE_CHAR",
    "escape_char": "CSV_IMPORTER_ESCAPE_CHAR",
    "comments": "CSV_IMPORTER_COMMENTS",
    "skip_empty_lines": "CSV_IMPORTER_SKIP_EMPTY_LINES",
    "chunk_size": "CSV_IMPORTER_CHUNK_SIZE",
    "consumer_error_policy": "CSV_IMPORTER_CONSUMER_ERROR_POLICY",
}

# значения, где допустимы escape-последовательности (\t, \r\n и т.п.)
_ESCAPED_KEYS = ("delimiter", "newline", "quote_char", "escape_char")


def loadSettings(
    config_path: str | None,
    cli_overrides: dict,
) -> LoadedSettings:
    """
    Priority: CLI > ENV > config > defaults
    """
    sources: list[str] = []
    defaults = Settings()

    # 1) config file
    cfg: dict = {}
    if config_path:
        cfg = _read_yaml_config(Path(config_path))
        if cfg:
            sources.append("config")

    # 2) env
    env = {key: _env_get(name) for key, name in ENV_NAMES.items()}
    if any(v is not None for v in env.values()):
        sources.append("env")

    # merge config -> env -> cli
    merged = {
        "log_dir": cfg.get("log_dir", defaults.log_dir),
        "report_dir": cfg.get("report_dir", defaults.report_dir),
        "log_level": cfg.get("log_level", defaults.log_level),
        "encoding": cfg.get("encoding", defaults.encoding),
        "delimiter": cfg.get("delimiter", defaults.delimiter),
        "newline": cfg.get("newline", defaults.newline),
        "quote_char": cfg.get("quote_char", defaults.quote_char),
        "escape_char": cfg.get("escape_char", defaults.escape_char),
        "comments": cfg.get("comments", defaults.comments),
        "skip_empty_lines": cfg.get("skip_empty_lines", defaults.skip_empty_lines),
        "delimiters_to_guess": tuple(cfg.get("delimiters_to_guess", defaults.delimiters_to_guess)),
        "chunk_size": cfg.get("chunk_size", defaults.chunk_size),
        "consumer_error_policy": cfg.get("consumer_error_policy", defaults.consumer_error_policy),
    }

    # apply env
    for key in ("log_dir", "report_dir", "log_level", "encoding", "comments", "consumer_error_policy"):
        if env[key] is not None:
            merged[key] = env[key]
    for key in _ESCAPED_KEYS:
        if env[key] is not None:
            merged[key] = _decode_escapes(env[key])
    if env["skip_empty_lines"] is not None:
        merged["skip_empty_lines"] = parse_skip_empty_lines(env["skip_empty_lines"])
    if env["chunk_size"] is not None:
        merged["chunk_size"] = parse_int(env["chunk_size"])

    # 3) apply CLI overrides (only those explicitly passed)
    if any(v is not None for v in cli_overrides.values()):
        sources.append("cli")

    for k, v in cli_overrides.items():
        if v is None:
            continue
        if k in _ESCAPED_KEYS and isinstance(v, str):
            v = _decode_escapes(v)
        elif k == "skip_empty_lines":
            v = parse_skip_empty_lines(v)
        merged[k] = v

    settings = Settings(
        log_dir=merged["log_dir"],
        report_dir=merged["report_dir"],
        log_level=merged["log_level"],
        encoding=merged["encoding"],
        delimiter=merged["delimiter"],
        newline=merged["newline"],
        quote_char=merged["quote_char"],
        escape_char=merged["escape_char"],
        comments=merged["comments"],
        skip_empty_lines=parse_skip_empty_lines(merged["skip_empty_lines"]),
        delimiters_to_guess=merged["delimiters_to_guess"],
        chunk_size=parse_int(merged["chunk_size"]),
        consumer_error_policy=ConsumerErrorPolicy(merged["consumer_error_policy"]),
    )

    return LoadedSettings(settings=settings, sources_used=sources)
