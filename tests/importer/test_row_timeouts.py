from __future__ import annotations

import threading

import pytest
from sqlalchemy import func, select

from civic_app.importer.adapters import read_import_rows
from civic_app.importer.errors import RowTimeout
from civic_app.importer.pipeline.import_pipeline import ImportPipeline, RowWorker
from civic_app.importer.pipeline.validation import RowValidator, ValidatedRow
from civic_app.models import Politician, db


class _StallingValidator(RowValidator):
    """Blocks on the given spreadsheet rows until ``release`` is set."""

    def __init__(self, stall_rows, release: threading.Event):
        super().__init__()
        self.stall_rows = set(stall_rows)
        self.release = release
        self.stalled: list[int] = []

    def validate(self, row):
        if row.row_number in self.stall_rows:
            self.stalled.append(row.row_number)
            self.release.wait(timeout=10)
            return ValidatedRow(source=row)
        return super().validate(row)


@pytest.fixture
def release(app):
    event = threading.Event()
    yield event
    event.set()


@pytest.fixture
def four_rows(make_row):
    return [
        make_row("Juan Dela Cruz", "Governor", "province", "Cebu"),
        make_row("Pedro Reyes", "Governor", "province", "Bohol"),
        make_row("Ana Lopez", "Mayor", "city", "Cebu City"),
        make_row("Carmen Garcia", "Mayor", "city", "Iloilo City"),
    ]


def test_stuck_row_fails_alone_in_commit_mode(app, reference, release, four_rows, make_workbook, import_log_factory):
    validator = _StallingValidator({3}, release)
    pipeline = ImportPipeline(app=app, validator=validator, row_timeout=0.5, transient_retries=1)

    result = pipeline.run(import_log_factory(), make_workbook(four_rows))

    assert result.counters.successful_imports == 3
    assert result.counters.failed_imports == 1
    assert [(error.row, error.field) for error in result.errors] == [(3, "row")]
    assert result.errors[0].message == "Row 3 validation timed out after 0.5 seconds"
    assert validator.stalled == [3, 3]
    names = db.session.execute(select(Politician.name).order_by(Politician.name)).scalars().all()
    assert names == ["Ana Lopez", "Carmen Garcia", "Juan Dela Cruz"]


def test_stuck_row_without_retries(app, reference, release, four_rows, make_workbook, import_log_factory):
    validator = _StallingValidator({2}, release)
    pipeline = ImportPipeline(app=app, validator=validator, row_timeout=0.5, transient_retries=0)

    result = pipeline.run(import_log_factory(), make_workbook(four_rows))

    assert result.counters.successful_imports == 3
    assert [error.row for error in result.errors] == [2]
    assert validator.stalled == [2]
    assert db.session.execute(select(func.count()).select_from(Politician)).scalar_one() == 3


@pytest.mark.parametrize(("stall_rows", "max_workers"), [({3}, 1), ({3, 4}, 2), ({2, 3, 4, 5}, 2)])
def test_parallel_validation_times_out_only_stuck_rows(
    app, reference, release, four_rows, make_workbook, stall_rows, max_workers
):
    rows, _ = read_import_rows(make_workbook(four_rows))
    validator = _StallingValidator(stall_rows, release)

    result = validator.validate_rows(rows, max_workers=max_workers, timeout=0.5, app=app)

    assert [row.row_number for row in result.rows] == [2, 3, 4, 5]
    assert {error.row for error in result.errors} == stall_rows
    assert all(error.message == "Row validation timed out after 0.5 seconds" for error in result.errors)
    assert result.valid_rows == 4 - len(stall_rows)
    assert sorted(validator.stalled) == sorted(stall_rows)


def test_validate_with_timeout_raises_row_timeout(app, reference, release, four_rows, make_workbook):
    rows, _ = read_import_rows(make_workbook(four_rows))
    validator = _StallingValidator({2}, release)
    worker = RowWorker()
    try:
        with pytest.raises(RowTimeout, match="Row 2 validation timed out"):
            validator.validate_with_timeout(rows[0], timeout=0.2, executor=worker.get(), app=app)
        worker.discard()

        validated = validator.validate_with_timeout(rows[1], timeout=5, executor=worker.get(), app=app)
    finally:
        worker.discard()

    assert validated.is_valid
    assert validated.position.name == "Governor"


def test_configured_timeout_and_workers_keep_row_order(app, reference, four_rows, make_row, make_workbook):
    rows = four_rows + [make_row("Pedro Santos", "Govenor", "province", "Iloilo")]
    content = make_workbook(rows)
    sequential = ImportPipeline().validate(content)
    app.config.update(IMPORTER_ROW_TIMEOUT_SECONDS=10, IMPORTER_VALIDATION_WORKERS=3)

    pipeline = ImportPipeline.from_app(app)
    parallel = pipeline.validate(content)

    assert (pipeline.row_timeout, pipeline.max_workers) == (10.0, 3)
    assert [row.row_number for row in parallel.rows] == [2, 3, 4, 5, 6]
    assert [(e.row, e.field, e.message) for e in parallel.errors] == [
        (e.row, e.field, e.message) for e in sequential.errors
    ]
    assert parallel.valid_rows == 4
