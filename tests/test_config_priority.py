import json

import pytest
from typer.testing import CliRunner

from csv_importer.config.config import ConsumerErrorPolicy, loadSettings
from csv_importer.main import app

runner = CliRunner()


def test_priority_cli_over_env_over_config(tmp_path, monkeypatch):
    cfg = tmp_path / "config.yml"
    cfg.write_text(
        "\n".join([
            "chunk_size: 100",
            'delimiter: ";"',
            'log_level: "DEBUG"',
            "consumer_error_policy: fail",
        ]),
        encoding="utf-8",
    )

    # ENV overrides config
    monkeypatch.setenv("CSV_IMPORTER_CHUNK_SIZE", "200")
    monkeypatch.setenv("CSV_IMPORTER_DELIMITER", "\\t")

    # CLI overrides env
    loaded = loadSettings(str(cfg), {"chunk_size": 300, "delimiter": None})

    assert loaded.settings.chunk_size == 300
    assert loaded.settings.delimiter == "\t"
    assert loaded.settings.log_level == "DEBUG"
    assert loaded.settings.consumer_error_policy == ConsumerErrorPolicy.FAIL
    assert loaded.sources_used == ["config", "env", "cli"]


def test_defaults_without_sources():
    loaded = loadSettings(None, {})
    options = loaded.settings.parser_options()

    assert loaded.sources_used == []
    assert options.chunk_size == 10000
    assert options.encoding == "utf-8"
    assert options.delimiter is None
    assert options.skip_empty_lines is False


def test_skip_empty_lines_accepts_greedy(monkeypatch):
    monkeypatch.setenv("CSV_IMPORTER_SKIP_EMPTY_LINES", "greedy")
    assert loadSettings(None, {}).settings.skip_empty_lines == "greedy"


def test_invalid_parser_option_is_rejected():
    loaded = loadSettings(None, {"delimiter": '"'})
    with pytest.raises(ValueError):
        loaded.settings.parser_options()


def test_cli_header_shows_merged_settings(tmp_path, monkeypatch):
    monkeypatch.chdir(tmp_path)
    csv_path = tmp_path / "people.csv"
    csv_path.write_text("id\tname\n1\tAnn\n", encoding="utf-8")
    monkeypatch.setenv("CSV_IMPORTER_CHUNK_SIZE", "200")

    result = runner.invoke(
        app,
        ["--delimiter", "\\t", "--chunk-size", "300", "--run-id", "cfg-run", "preview", "--csv", str(csv_path)],
    )

    assert result.exit_code == 0, result.output
    assert "delimiter='\\t'" in result.output
    assert "chunk_size=300" in result.output
    report = json.loads((tmp_path / "reports" / "report_preview_cfg-run.json").read_text(encoding="utf-8"))
    assert report["context"]["config"]["sources"] == ["env", "cli"]


def test_cli_rejects_invalid_settings(tmp_path, monkeypatch):
    monkeypatch.chdir(tmp_path)
    result = runner.invoke(app, ["--chunk-size", "0", "preview", "--csv", "x.csv"])
    assert result.exit_code == 2
