import json

from typer.testing import CliRunner

from csv_importer.main import app

runner = CliRunner()


def _write_csv(tmp_path, text="id,name,email\n1,Ann,ann@x.com\n2,Bo,bo@x.com\n"):
    path = tmp_path / "people.csv"
    path.write_text(text, encoding="utf-8")
    return path


def _report(tmp_path, command, run_id):
    return json.loads((tmp_path / "reports" / f"report_{command}_{run_id}.json").read_text(encoding="utf-8"))


def test_help_shows_commands():
    result = runner.invoke(app, ["--help"])
    assert result.exit_code == 0
    assert "preview" in result.output
    assert "process" in result.output


def test_preview_requires_csv(tmp_path, monkeypatch):
    monkeypatch.chdir(tmp_path)
    result = runner.invoke(app, ["--run-id", "r0", "preview"])
    assert result.exit_code == 2
    assert _report(tmp_path, "preview", "r0")["status"] == "FAILED"


def test_preview_prints_rows_and_writes_report(tmp_path, monkeypatch):
    monkeypatch.chdir(tmp_path)
    path = _write_csv(tmp_path)

    result = runner.invoke(app, ["--run-id", "r1", "preview", "--csv", str(path)])

    assert result.exit_code == 0, result.output
    assert "1: id | name | email" in result.output
    assert "2: 1 | Ann | ann@x.com" in result.output
    assert "single_line=False" in result.output
    report = _report(tmp_path, "preview", "r1")
    assert report["status"] == "SUCCESS"
    assert report["summary"]["rows_total"] == 3
    assert report["context"]["preview"]["rows"][3] == []
    assert (tmp_path / "logs" / "preview_r1.log").exists()


def test_preview_of_empty_file_fails(tmp_path, monkeypatch):
    monkeypatch.chdir(tmp_path)
    path = _write_csv(tmp_path, text="")

    result = runner.invoke(app, ["--run-id", "r2", "preview", "--csv", str(path)])

    assert result.exit_code == 1
    assert "File is empty" in result.output
    report = _report(tmp_path, "preview", "r2")
    assert report["status"] == "FAILED"
    assert report["diagnostics"][0]["code"] == "FILE_EMPTY"


def test_process_streams_batches(tmp_path, monkeypatch):
    monkeypatch.chdir(tmp_path)
    path = _write_csv(tmp_path)

    result = runner.invoke(
        app,
        [
            "--run-id", "r3", "process", "--csv", str(path),
            "--field", "id=0", "--field", "email=2", "--field", "phone=",
            "--has-header", "--require", "email",
        ],
    )

    assert result.exit_code == 0, result.output
    assert "rows=2 batches=1" in result.output
    report = _report(tmp_path, "process", "r3")
    assert report["status"] == "SUCCESS"
    assert report["summary"]["batches_total"] == 1
    assert report["context"]["process"]["fields"] == {"id": 0, "email": 2}


def test_process_requires_assigned_fields(tmp_path, monkeypatch):
    monkeypatch.chdir(tmp_path)
    path = _write_csv(tmp_path)

    result = runner.invoke(
        app,
        ["--run-id", "r4", "process", "--csv", str(path), "--field", "id=0", "--require", "email"],
    )

    assert result.exit_code == 2
    assert "Please assign all required fields: email" in result.output
    assert _report(tmp_path, "process", "r4")["diagnostics"][0]["code"] == "REQUIRED_FIELD_UNASSIGNED"


def test_process_rejects_malformed_field(tmp_path, monkeypatch):
    monkeypatch.chdir(tmp_path)
    path = _write_csv(tmp_path)
    result = runner.invoke(app, ["process", "--csv", str(path), "--field", "id"])
    assert result.exit_code == 2


def test_process_missing_file(tmp_path, monkeypatch):
    monkeypatch.chdir(tmp_path)
    result = runner.invoke(app, ["process", "--csv", str(tmp_path / "none.csv"), "--field", "id=0"])
    assert result.exit_code == 2


def test_console_output_is_mirrored_into_log(tmp_path, monkeypatch):
    monkeypatch.chdir(tmp_path)
    path = _write_csv(tmp_path)

    result = runner.invoke(app, ["--run-id", "r5", "preview", "--csv", str(path)])

    assert result.exit_code == 0, result.output
    log = (tmp_path / "logs" / "preview_r5.log").read_text(encoding="utf-8")
    assert "runId=r5 comp=stdout msg=1: id | name | email" in log
    assert "comp=report msg=Report written" in log
    runtime = _report(tmp_path, "preview", "r5")["context"]["runtime"]
    assert runtime["log_file"].endswith("preview_r5.log")
    assert runtime["parser"]["chunk_size"] > 0


def test_invalid_log_level_is_rejected(tmp_path, monkeypatch):
    monkeypatch.chdir(tmp_path)
    result = runner.invoke(app, ["--log-level", "LOUD", "preview", "--csv", "people.csv"])
    assert result.exit_code == 2
    assert "Unsupported log level" in result.output


def test_unsafe_run_id_is_rejected(tmp_path, monkeypatch):
    monkeypatch.chdir(tmp_path)
    result = runner.invoke(app, ["--run-id", "../escape", "preview", "--csv", "people.csv"])
    assert result.exit_code == 2
    assert not (tmp_path / "reports").exists() or not list((tmp_path / "reports").iterdir())
