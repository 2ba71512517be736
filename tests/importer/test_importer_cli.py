import json
from pathlib import Path

from flask import Flask

from registry_app.importer import IMPORTER_EXTENSION_KEY, init_importer
from registry_app.importer.contracts import get_hierarchy_supported_headers
from registry_app.models import Controller, ImportRun, ImportRunStatus, Site, db

HEADER = ",".join(get_hierarchy_supported_headers())


def _write_csv(tmp_path: Path, *lines: str, name: str = "hierarchy.csv") -> Path:
    csv_file = tmp_path / name
    csv_file.write_text("\n".join([HEADER, *lines]) + "\n", encoding="utf-8")
    return csv_file


def _valid_lines():
    return (
        "Plant A,Line 1,001,Robot 1,ROBOT,PLC_001,Spot welder,ABB,IRC5,10.0.0.1,1.0",
        "Plant A,Line 1,001,Robot 1,ROBOT,PLC_002,Handler,ABB,IRC5,,",
    )


def _json_tail(output: str) -> dict:
    return json.loads(output[output.index("{"):])


def test_importer_disabled_registers_stub_cli():
    app = Flask(__name__)
    app.config.update(TESTING=True, IMPORTER_ENABLED=False)
    init_importer(app)

    assert app.extensions[IMPORTER_EXTENSION_KEY]["enabled"] is False
    result = app.test_cli_runner().invoke(args=["importer"])
    assert result.exit_code != 0
    assert "Importer commands are unavailable" in result.output


def test_importer_enabled_records_state(app):
    state = app.extensions[IMPORTER_EXTENSION_KEY]

    assert state["enabled"] is True
    assert state["background_threshold"] == 1000
    assert state["max_upload_bytes"] == 10 * 1024 * 1024
    assert "importer" in app.cli.commands


def test_template_command_writes_header_and_sample(runner, tmp_path):
    output = tmp_path / "template.csv"

    result = runner.invoke(args=["importer", "template", "--output", str(output)])

    assert result.exit_code == 0, result.output
    assert output.read_text(encoding="utf-8").splitlines()[0] == HEADER


def test_validate_command_reports_row_errors(runner, tmp_path):
    csv_path = _write_csv(tmp_path, "Plant A,Line 1,001,Robot 1,LASER,PLC_001,d,m,x,,")

    result = runner.invoke(args=["importer", "validate", "--file", str(csv_path), "--json"])

    assert result.exit_code == 1
    payload = json.loads(result.output)
    assert payload["is_valid"] is False
    assert payload["row_errors"][0]["row"] == 2


def test_validate_command_passes_clean_file(runner, tmp_path):
    csv_path = _write_csv(tmp_path, *_valid_lines())

    result = runner.invoke(args=["importer", "validate", "--file", str(csv_path)])

    assert result.exit_code == 0, result.output
    assert "Validation passed." in result.output


def test_run_command_imports_and_emits_summary(app, runner, tmp_path):
    csv_path = _write_csv(tmp_path, *_valid_lines(), name="plant a.csv")

    result = runner.invoke(
        args=["importer", "run", "--file", str(csv_path), "--create-missing", "--user", "ops", "--summary-json"]
    )

    assert result.exit_code == 0, result.output
    payload = _json_tail(result.output)
    assert payload["success"] is True
    assert payload["created_entities"] == {"sites": 1, "cells": 1, "equipment": 1, "controllers": 2}

    run = db.session.get(ImportRun, payload["run_id"])
    assert run.status == ImportRunStatus.COMPLETED
    assert run.initiated_by == "ops"
    assert run.source_filename == "plant_a.csv"
    assert db.session.query(Controller).count() == 2


def test_run_command_validate_only_writes_nothing(runner, tmp_path):
    csv_path = _write_csv(tmp_path, *_valid_lines())

    result = runner.invoke(
        args=["importer", "run", "--file", str(csv_path), "--create-missing", "--validate-only", "--summary-json"]
    )

    assert result.exit_code == 0, result.output
    assert _json_tail(result.output)["validate_only"] is True
    assert db.session.query(Site).count() == 0
    assert db.session.query(ImportRun).count() == 0


def test_run_command_rejects_bad_header(runner, tmp_path):
    csv_path = tmp_path / "broken.csv"
    csv_path.write_text("site_name,cell_name\nPlant A,Line 1\n", encoding="utf-8")

    result = runner.invoke(args=["importer", "run", "--file", str(csv_path)])

    assert result.exit_code != 0
    assert "Missing required headers" in result.output


def test_run_command_reports_missing_hierarchy(runner, tmp_path):
    csv_path = _write_csv(tmp_path, *_valid_lines())

    result = runner.invoke(args=["importer", "run", "--file", str(csv_path)])

    assert result.exit_code == 0, result.output
    assert "failed_rows         : 2" in result.output
    assert "Site 'Plant A' not found" in result.output


def test_run_command_rejects_oversized_upload(runner, tmp_path, monkeypatch):
    monkeypatch.setattr("registry_app.importer.cli.get_max_upload_bytes", lambda app=None: 16)
    csv_path = _write_csv(tmp_path, *_valid_lines())

    result = runner.invoke(args=["importer", "run", "--file", str(csv_path)])

    assert result.exit_code != 0
    assert "maximum allowed size" in result.output


def test_export_command_streams_csv(runner, hierarchy_factory):
    hierarchy_factory(tag_id="PLC_001", description="=cmd", make="ABB", model="IRC5")

    result = runner.invoke(args=["importer", "export", "--site", "Plant A"])

    assert result.exit_code == 0, result.output
    lines = result.output.splitlines()
    assert lines[0] == HEADER
    assert lines[1].startswith("Plant A,Line 1,001,Robot 1,ROBOT,PLC_001,'=cmd,ABB,IRC5")


def test_export_command_rejects_bad_type(runner):
    result = runner.invoke(args=["importer", "export", "--type", "LASER"])

    assert result.exit_code != 0
    assert "Invalid equipment type" in result.output


def test_runs_command_lists_history(runner, run_factory):
    run_factory(initiated_by="alice", source_filename="first.csv")
    run_factory(initiated_by="bob", source_filename="second.csv", status=ImportRunStatus.FAILED)

    result = runner.invoke(args=["importer", "runs", "--status", "failed", "--json"])

    assert result.exit_code == 0, result.output
    payload = json.loads(result.output)
    assert payload["total"] == 1
    assert payload["items"][0]["source_filename"] == "second.csv"


def test_runs_command_prints_stats(runner, run_factory):
    run_factory(total_rows=10, failed_rows=2)
    run_factory(status=ImportRunStatus.FAILED, total_rows=4, failed_rows=4)

    result = runner.invoke(args=["importer", "runs", "--stats", "--json"])

    assert result.exit_code == 0, result.output
    assert json.loads(result.output) == {
        "total": 2,
        "statuses": {"completed": 1, "failed": 1},
        "rows_total": 14,
        "rows_failed": 6,
    }


def test_status_command_lists_created_ids(runner, tmp_path):
    csv_path = _write_csv(tmp_path, *_valid_lines())
    imported = runner.invoke(
        args=["importer", "run", "--file", str(csv_path), "--create-missing", "--summary-json"]
    )
    run_id = _json_tail(imported.output)["run_id"]

    result = runner.invoke(args=["importer", "status", str(run_id), "--json"])

    assert result.exit_code == 0, result.output
    payload = json.loads(result.output)
    controller_ids = sorted(controller.id for controller in db.session.query(Controller).all())
    assert payload["status"] == "completed"
    assert sorted(payload["created_entity_ids"]["controllers"]) == controller_ids
    assert len(payload["created_entity_ids"]["sites"]) == 1


def test_status_command_reports_unknown_run(runner):
    result = runner.invoke(args=["importer", "status", "999"])

    assert result.exit_code != 0
    assert "Import run 999 not found." in result.output
