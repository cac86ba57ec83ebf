from __future__ import annotations

import pytest

from civic_app.importer.pipeline.import_log import ImportLogRecorder
from civic_app.importer.tasks import ingest_positions
from civic_app.importer.utils import persist_bytes
from civic_app.models import ImportLog, ImportLogStatus, db


def test_ingest_task_runs_queued_import(app, reference, make_workbook, make_row, import_log_factory):
    path = persist_bytes(
        make_workbook(
            [
                make_row("Juan Dela Cruz", "Governor", "province", "Cebu"),
                make_row("Pedro Reyes", "Govenor", "province", "Bohol"),
            ]
        ),
        app,
        filename="queued.xlsx",
    )
    log = import_log_factory("queued.xlsx")

    payload = ingest_positions.run(import_log_id=log.id, file_path=str(path))

    assert payload["status"] == "completed"
    assert payload["successful_imports"] == 1
    assert payload["error_count"] == 1
    assert "errors" not in payload
    assert not path.exists()


def test_ingest_task_marks_log_failed_when_file_missing(app, import_log_factory, tmp_path):
    log = import_log_factory("gone.xlsx")

    with pytest.raises(FileNotFoundError):
        ingest_positions.run(import_log_id=log.id, file_path=str(tmp_path / "gone.xlsx"))

    db.session.expire_all()
    failed = db.session.get(ImportLog, log.id)
    assert failed.status is ImportLogStatus.FAILED
    assert "Import file not found" in ImportLogRecorder().get(log.id).error_log
