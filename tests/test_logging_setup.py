import io
import logging

import pytest

from csv_importer.infra.logging.setup import LogTee, closeCommandLogger, createCommandLogger, logEvent, mapLogLevel


def _read(path):
    with open(path, encoding="utf-8") as f:
        return f.read()


def test_map_log_level_accepts_warn_alias():
    assert mapLogLevel("warn") == logging.WARNING
    assert mapLogLevel(" Warning ") == logging.WARNING
    assert mapLogLevel("DEBUG") == logging.DEBUG
    with pytest.raises(ValueError):
        mapLogLevel("LOUD")


def test_command_logger_writes_run_fields(tmp_path):
    logger, path = createCommandLogger("preview", str(tmp_path), "log1", "INFO")
    try:
        logEvent(logger, logging.INFO, "log1", "parse", "first chunk read")
        logger.debug("hidden")
        logger.info("no component")
    finally:
        closeCommandLogger(logger)

    text = _read(path)
    assert path.endswith("preview_log1.log")
    assert "INFO runId=log1 comp=parse msg=first chunk read" in text
    assert "runId=log1 comp=core msg=no component" in text
    assert "hidden" not in text
    assert logger.handlers == []


def test_captured_logger_goes_to_command_log_until_closed(tmp_path):
    captured = ("csvImporterTests.http",)
    foreign = logging.getLogger(captured[0])

    logger, path = createCommandLogger("process", str(tmp_path), "log2", "INFO", captureLoggers=captured)
    try:
        foreign.warning("server closed connection")
    finally:
        closeCommandLogger(logger, captureLoggers=captured)
    foreign.warning("after close")

    text = _read(path)
    assert "runId=log2 comp=csvImporterTests.http msg=server closed connection" in text
    assert "after close" not in text
    assert foreign.handlers == []


def test_log_tee_mirrors_complete_lines(tmp_path):
    logger, path = createCommandLogger("process", str(tmp_path), "log3", "INFO")
    primary = io.StringIO()
    tee = LogTee(primary, logger, logging.INFO, "log3", "stdout")
    try:
        tee.write("rows=2 ")
        tee.write("batches=1\n\npartial")
        tee.flush()
    finally:
        closeCommandLogger(logger)

    assert primary.getvalue() == "rows=2 batches=1\n\npartial"
    mirrored = [line.split("msg=", 1)[1] for line in _read(path).splitlines() if "comp=stdout" in line]
    assert mirrored == ["rows=2 batches=1", "partial"]
