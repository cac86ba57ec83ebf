from __future__ import annotations

import json
import os
import time
from datetime import date
from io import BytesIO

import pytest
from openpyxl import load_workbook

from civic_app.importer.pipeline.import_log import ImportLogRecorder
from civic_app.importer.pipeline.position_history import AssignPositionRequest, PositionHistoryStore
from civic_app.importer.utils import resolve_upload_directory
from civic_app.models import ElectionStatus, ImportLog, ImportLogStatus, Jurisdiction, db


@pytest.fixture
def workbook_path(tmp_path, make_workbook, make_row):
    path = tmp_path / "politicians.xlsx"
    path.write_bytes(
        make_workbook(
            [
                make_row("Juan Dela Cruz", "Governor", "province", "Cebu"),
                make_row("Pedro Reyes", "Govenor", "province", "Bohol"),
                make_row("Ana Lopez", "Mayor", "city", "Cebu City"),
            ]
        )
    )
    return path


def test_validate_prints_errors_and_exits_nonzero(runner, reference, workbook_path):
    result = runner.invoke(args=["importer", "validate", str(workbook_path)])

    assert result.exit_code == 1
    assert "Rows: 3  valid: 2  invalid: 1" in result.output
    assert "row 3 [position]" in result.output
    assert "did you mean: Governor" in result.output


def test_validate_json_for_clean_file(runner, reference, tmp_path, make_workbook, make_row):
    path = tmp_path / "clean.xlsx"
    path.write_bytes(make_workbook([make_row("Juan Dela Cruz", "Governor", "province", "Cebu")]))

    result = runner.invoke(args=["importer", "validate", str(path), "--json"])

    assert result.exit_code == 0, result.output
    assert json.loads(result.output)["valid_rows"] == 1


def test_validate_malformed_file(runner, reference, tmp_path, make_workbook):
    path = tmp_path / "broken.xlsx"
    path.write_bytes(make_workbook([{"Name": "Juan"}], headers=("Name",)))

    result = runner.invoke(args=["importer", "validate", str(path)])

    assert result.exit_code != 0
    assert "Missing required columns" in result.output


def test_run_inline_then_status(runner, reference, workbook_path):
    result = runner.invoke(args=["importer", "run", str(workbook_path), "--inline"])

    assert result.exit_code == 0, result.output
    payload = json.loads(result.output)
    assert payload["queued"] is False
    assert payload["result"]["successful_imports"] == 2
    assert "errors" not in payload["result"]

    status = runner.invoke(args=["importer", "status", str(payload["import_log_id"])])
    assert status.exit_code == 0, status.output
    summary = json.loads(status.output)
    assert summary["status"] == "completed"
    assert summary["failed_imports"] == 1


def test_run_unknown_election(runner, reference, workbook_path):
    result = runner.invoke(args=["importer", "run", str(workbook_path), "--inline", "--election-id", "999"])

    assert result.exit_code != 0
    assert "Election 999 not found" in result.output


def test_status_unknown_log(runner):
    result = runner.invoke(args=["importer", "status", "999"])

    assert result.exit_code != 0
    assert "Import log 999 not found" in result.output


def test_error_report_and_template_written_to_disk(runner, reference, workbook_path, tmp_path):
    payload = json.loads(runner.invoke(args=["importer", "run", str(workbook_path), "--inline"]).output)
    report_path = tmp_path / "errors.xlsx"
    template_path = tmp_path / "template.xlsx"

    report = runner.invoke(args=["importer", "error-report", str(payload["import_log_id"]), str(report_path)])
    template = runner.invoke(args=["importer", "template", str(template_path)])

    assert report.exit_code == 0, report.output
    assert template.exit_code == 0, template.output
    assert "Error Details" in load_workbook(BytesIO(report_path.read_bytes())).sheetnames
    assert "Valid Parties" in load_workbook(BytesIO(template_path.read_bytes())).sheetnames


def test_cancel_command(runner, import_log_factory):
    pending = import_log_factory()
    finished = import_log_factory("done.xlsx")
    ImportLogRecorder().finalize(finished)

    requested = runner.invoke(args=["importer", "cancel", str(pending.id)])
    already = runner.invoke(args=["importer", "cancel", str(finished.id)])

    assert f"Cancellation requested for import {pending.id}." in requested.output
    assert "already completed" in already.output
    db.session.expire_all()
    assert db.session.get(ImportLog, pending.id).cancel_requested is True
    assert db.session.get(ImportLog, finished.id).status is ImportLogStatus.COMPLETED


def test_cleanup_uploads_removes_stale_files(app, runner):
    upload_dir = resolve_upload_directory(app)
    stale = upload_dir / "stale.xlsx"
    fresh = upload_dir / "fresh.xlsx"
    stale.write_bytes(b"old")
    fresh.write_bytes(b"new")
    old = time.time() - 5 * 24 * 3600
    os.utime(stale, (old, old))

    result = runner.invoke(args=["importer", "cleanup-uploads", "--max-age-hours", "24"])

    assert result.exit_code == 0, result.output
    assert "Removed 1 upload file(s)" in result.output
    assert not stale.exists()
    assert fresh.exists()


def test_election_commands(runner, reference, politician_factory):
    PositionHistoryStore().assign_position(
        AssignPositionRequest(
            politician_factory("Juan Dela Cruz").id,
            reference.positions.governor.id,
            Jurisdiction.province(reference.provinces.cebu.id),
            date(2022, 6, 30),
        ),
        commit=True,
    )
    election_id = str(reference.election.id)
    governor_id = str(reference.positions.governor.id)

    archived = runner.invoke(args=["importer", "election", "archive", election_id, "--position-id", governor_id])
    assert archived.exit_code == 0, archived.output
    assert "Archived 1 current holder(s)" in archived.output

    completed = runner.invoke(args=["importer", "election", "complete", election_id])
    assert completed.exit_code == 0, completed.output
    assert "is completed" in completed.output

    cancelled = runner.invoke(args=["importer", "election", "cancel", election_id])
    assert cancelled.exit_code != 0
    assert "cannot move from completed to cancelled" in cancelled.output

    db.session.expire_all()
    assert reference.election.status is ElectionStatus.COMPLETED


def test_commands_refuse_when_disabled(app, runner, workbook_path):
    app.config["IMPORTER_ENABLED"] = False

    result = runner.invoke(args=["importer", "validate", str(workbook_path)])

    assert result.exit_code != 0
    assert "Importer is disabled" in result.output


def test_election_stats_command(runner, reference):
    result = runner.invoke(args=["importer", "election", "stats", str(reference.election.id)])
    missing = runner.invoke(args=["importer", "election", "stats", "999"])

    assert result.exit_code == 0, result.output
    payload = json.loads(result.output)
    assert payload["election_id"] == reference.election.id
    assert payload["status"] == "scheduled"
    assert payload["positions_archived"] == 0
    assert missing.exit_code != 0
    assert "Election 999 not found" in missing.output
