from __future__ import annotations

import logging
import sys
from contextlib import contextmanager
from pathlib import Path
from typing import Iterable, Iterator, TextIO

LIBRARY_LOGGER_NAME = "csvImporter"

# сторонние логгеры, чьи записи попадают в лог команды (URL-источники читаются через httpx)
CAPTURED_LOGGERS = ("httpx",)

LOG_FORMAT = "%(asctime)s %(levelname)s runId=%(runId)s comp=%(component)s msg=%(message)s"
LOG_DATE_FORMAT = "%Y-%m-%dT%H:%M:%S%z"

LOG_LEVELS = {
    "ERROR": logging.ERROR,
    "WARN": logging.WARNING,
    "WARNING": logging.WARNING,
    "INFO": logging.INFO,
    "DEBUG": logging.DEBUG,
}


class RunContextFilter(logging.Filter):
    """
    Назначение:
        Дополняет запись полями runId и component, если их нет.
        Для записей сторонних логгеров (httpx) component = имя логгера.
    """

    def __init__(self, runId: str, defaultComponent: str = "core"):
        super().__init__()
        self.runId = runId
        self.defaultComponent = defaultComponent

    def filter(self, record: logging.LogRecord) -> bool:
        if not hasattr(record, "runId"):
            record.runId = self.runId
        if not hasattr(record, "component"):
            own = record.name == LIBRARY_LOGGER_NAME or record.name.startswith(LIBRARY_LOGGER_NAME + ".")
            record.component = self.defaultComponent if own else record.name
        return True


class LogTee:
    """
    Назначение:
        Замена sys.stdout/sys.stderr на время команды: пишет в исходный поток
        и построчно дублирует непустые строки в лог команды.

    Поведение:
        - Незавершённая строка копится до перевода строки или flush().
    """

    def __init__(self, primary: TextIO, logger: logging.Logger, level: int, runId: str, component: str):
        self.primary = primary
        self.logger = logger
        self.level = level
        self.runId = runId
        self.component = component
        self._pending = ""

    def write(self, s: str) -> int:
        written = self.primary.write(s)
        if s:
            *lines, self._pending = (self._pending + s).split("\n")
            for line in lines:
                self._log(line)
        return written

    def flush(self) -> None:
        self.primary.flush()
        line, self._pending = self._pending, ""
        self._log(line)

    def _log(self, line: str) -> None:
        if line.strip():
            logEvent(self.logger, self.level, self.runId, self.component, line.rstrip())


@contextmanager
def teeStdStreams(logger: logging.Logger, runId: str) -> Iterator[None]:
    """
    Назначение:
        На время блока дублирует stdout (INFO) и stderr (ERROR) в лог команды.
        Исходные потоки восстанавливаются всегда.
    """
    originalStdout, originalStderr = sys.stdout, sys.stderr
    sys.stdout = LogTee(originalStdout, logger, logging.INFO, runId, "stdout")
    sys.stderr = LogTee(originalStderr, logger, logging.ERROR, runId, "stderr")
    try:
        yield
    finally:
        try:
            sys.stdout.flush()
            sys.stderr.flush()
        finally:
            sys.stdout, sys.stderr = originalStdout, originalStderr


def mapLogLevel(levelName: str) -> int:
    """
    Назначение:
        Преобразует строковый уровень логирования (ERROR|WARN|INFO|DEBUG) в logging level.
    """
    value = (levelName or "").strip().upper()
    if value not in LOG_LEVELS:
        raise ValueError(f"Unsupported log level: {levelName}")
    return LOG_LEVELS[value]


def createCommandLogger(
    commandName: str,
    logDir: str,
    runId: str,
    logLevel: str,
    captureLoggers: Iterable[str] = CAPTURED_LOGGERS,
) -> tuple[logging.Logger, str]:
    """
    Назначение:
        Создаёт логгер команды с файлом <logDir>/<command>_<runId>.log.

    Поведение:
        - Тот же файловый хендлер вешается на captureLoggers; их записи
          проходят по их собственному уровню и уровню команды.
        - Хендлеры снимаются closeCommandLogger().

    Выходные данные:
        (logger, logFilePath)
    """
    level = mapLogLevel(logLevel)
    Path(logDir).mkdir(parents=True, exist_ok=True)
    logFilePath = str(Path(logDir) / f"{commandName}_{runId}.log")

    logger = logging.getLogger(f"{LIBRARY_LOGGER_NAME}.{commandName}.{runId}")
    closeCommandLogger(logger)
    logger.propagate = False
    logger.setLevel(level)

    fileHandler = logging.FileHandler(logFilePath, encoding="utf-8")
    fileHandler.setLevel(level)
    fileHandler.setFormatter(logging.Formatter(fmt=LOG_FORMAT, datefmt=LOG_DATE_FORMAT))
    fileHandler.addFilter(RunContextFilter(runId=runId))
    logger.addHandler(fileHandler)
    for name in captureLoggers:
        logging.getLogger(name).addHandler(fileHandler)

    return logger, logFilePath


def closeCommandLogger(logger: logging.Logger, captureLoggers: Iterable[str] = CAPTURED_LOGGERS) -> None:
    """Снимает и закрывает файловые хендлеры команды, в том числе со сторонних логгеров."""
    captured = [logging.getLogger(name) for name in captureLoggers]
    for handler in list(logger.handlers):
        for other in captured:
            other.removeHandler(handler)
        logger.removeHandler(handler)
        handler.close()


def getLibraryLogger() -> logging.Logger:
    """Логгер по умолчанию для use-case'ов, вызванных вне CLI."""
    return logging.getLogger(LIBRARY_LOGGER_NAME)


def logEvent(logger: logging.Logger, level: int, runId: str, component: str, message: str) -> None:
    logger.log(level, message, extra={"runId": runId, "component": component})
