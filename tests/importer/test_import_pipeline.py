from __future__ import annotations

from datetime import date

import pytest
from sqlalchemy import func, select

from civic_app.importer.errors import TransientStoreError
from civic_app.importer.pipeline.import_log import ImportLogRecorder
from civic_app.importer.pipeline.import_pipeline import ImportPipeline
from civic_app.importer.pipeline.position_history import PositionHistoryStore
from civic_app.importer.pipeline.progress import ListProgressSink
from civic_app.importer.pipeline.service import ImportService
from civic_app.models import (
    EndedReason,
    ImportLog,
    ImportLogStatus,
    Jurisdiction,
    Politician,
    PositionHistoryEntry,
    db,
)


def _entry_count() -> int:
    return db.session.execute(select(func.count()).select_from(PositionHistoryEntry)).scalar_one()


@pytest.fixture
def ten_rows(make_row):
    return [
        make_row("Juan Dela Cruz", "Governor", "province", "Cebu", party="NP"),
        make_row("Maria Santos", "Vice Governor", "province", "Cebu", party="Liberal Party"),
        make_row("Pedro Reyes", "Govenor", "province", "Bohol"),
        make_row("Ana Lopez", "Mayor", "city", "Cebu City", party="PDP"),
        make_row("Jose Mercado", "Vice Mayor", "city", "Cebu City"),
        make_row("Carmen Garcia", "Mayor", "city", "Iloilo City", party="Independent"),
        make_row("Luis Tan", "Barangay Captain", "barangay", "Lahug"),
        make_row("Rosa Lim", "Senator", "national", None, term_start="2019-06-30"),
        make_row("Miguel Cruz", "House Representative", "district", "Cebu 1st District"),
        make_row("Elena Ramos", "Governor", "province", "Iloilo", birth_date="1968-03-02"),
    ]


def test_commit_run_continues_past_bad_row(reference, ten_rows, make_workbook, import_log_factory):
    log = import_log_factory()
    sink = ListProgressSink()

    result = ImportPipeline().run(log, make_workbook(ten_rows), progress=sink)

    assert result.status is ImportLogStatus.COMPLETED
    assert result.total_rows == 10
    assert result.counters.successful_imports == 9
    assert result.counters.failed_imports == 1
    assert result.counters.politicians_created == 9
    assert result.counters.positions_archived == 0
    assert len(result.errors) == 1
    error = result.errors[0]
    assert error.row == 4
    assert error.field == "position"
    assert "Governor" in error.suggestions
    assert _entry_count() == 9

    stored = db.session.get(ImportLog, log.id)
    assert stored.status is ImportLogStatus.COMPLETED
    assert stored.processed_rows == 10
    assert stored.successful_imports == 9
    assert stored.failed_imports == 1
    assert stored.validation_errors[0]["row"] == 4
    assert stored.failed_rows_json[0]["row"] == 4
    assert stored.failed_rows_json[0]["values"]["Position"] == "Govenor"
    assert stored.source_headers_json[0] == "Name"
    assert stored.completed_at is not None

    assert len(sink.updates) == 10
    assert sink.updates[2].message.startswith("Row 4: Position 'Govenor' not found")
    assert sink.updates[0].message == "Row 2: ok"
    assert sink.last.processed_rows == 10
    assert sink.last.percent_complete == 100.0


def test_imported_rows_populate_politicians(reference, ten_rows, make_workbook, import_log_factory):
    ImportPipeline().run(import_log_factory(), make_workbook(ten_rows))

    juan = db.session.execute(select(Politician).where(Politician.slug == "juan-dela-cruz")).scalar_one()
    assert juan.position_id == reference.positions.governor.id
    assert juan.party_id == reference.parties.np.id
    carmen = db.session.execute(select(Politician).where(Politician.slug == "carmen-garcia")).scalar_one()
    assert carmen.party_id is None
    elena = db.session.execute(select(Politician).where(Politician.slug == "elena-ramos")).scalar_one()
    assert elena.birth_date == date(1968, 3, 2)

    store = PositionHistoryStore()
    holder = store.get_current_holder(reference.positions.senator.id, Jurisdiction.national())
    assert holder.politician.name == "Rosa Lim"
    assert holder.term_start == date(2019, 6, 30)


def test_reimport_is_idempotent(reference, ten_rows, make_workbook, import_log_factory):
    content = make_workbook(ten_rows)
    ImportPipeline().run(import_log_factory(), content)

    second = ImportPipeline().run(import_log_factory("again.xlsx"), content)

    assert second.counters.successful_imports == 9
    assert second.counters.politicians_created == 0
    assert second.counters.politicians_updated == 9
    assert _entry_count() == 9


def test_election_import_archives_previous_holder(reference, make_row, make_workbook, import_log_factory):
    ImportPipeline().run(
        import_log_factory(),
        make_workbook([make_row("Juan Dela Cruz", "Governor", "province", "Cebu")]),
    )

    election = reference.election
    log = import_log_factory("results.xlsx", election_id=election.id)
    result = ImportPipeline().run(
        log,
        make_workbook([make_row("Maria Clara", "Governor", "province", "Cebu", term_start="2025-06-30")]),
    )

    assert result.counters.positions_archived == 1
    assert db.session.get(ImportLog, log.id).positions_archived == 1
    timeline = PositionHistoryStore().get_timeline(
        db.session.execute(select(Politician.id).where(Politician.slug == "juan-dela-cruz")).scalar_one()
    )
    assert timeline.current is None
    past = timeline.past_entries[0]
    assert past.ended_reason is EndedReason.ELECTION
    assert past.term_end == election.election_date


def test_backdated_row_fails_without_stopping(reference, make_row, make_workbook, import_log_factory):
    rows = [
        make_row("Juan Dela Cruz", "Governor", "province", "Cebu", term_start="2022-06-30"),
        make_row("Maria Santos", "Governor", "province", "Cebu", term_start="2021-01-01"),
        make_row("Ana Lopez", "Mayor", "city", "Cebu City"),
    ]

    result = ImportPipeline().run(import_log_factory(), make_workbook(rows))

    assert result.counters.successful_imports == 2
    assert result.counters.failed_imports == 1
    assert result.errors[0].row == 3
    assert result.errors[0].field == "row"


def test_cancellation_between_rows(reference, ten_rows, make_workbook, import_log_factory):
    log = import_log_factory()
    sink = ListProgressSink()
    calls = {"count": 0}

    def _cancel_after_three() -> bool:
        calls["count"] += 1
        return calls["count"] > 3

    result = ImportPipeline().run(log, make_workbook(ten_rows), progress=sink, is_cancelled=_cancel_after_three)

    assert result.cancelled
    assert result.status is ImportLogStatus.COMPLETED
    assert result.counters.processed_rows == 3
    stored = db.session.get(ImportLog, log.id)
    assert stored.processed_rows == 3
    assert stored.cancelled_at is not None
    assert stored.status is ImportLogStatus.COMPLETED
    assert sink.last.message == "Import cancelled after 3 rows"


def test_cancel_requested_on_log_stops_before_first_row(reference, ten_rows, make_workbook, import_log_factory):
    log = import_log_factory()
    ImportLogRecorder().request_cancel(log.id)

    result = ImportPipeline().run(log, make_workbook(ten_rows))

    assert result.cancelled
    assert result.counters.processed_rows == 0
    assert _entry_count() == 0


def test_missing_columns_fail_the_run(reference, make_workbook, import_log_factory):
    log = import_log_factory()
    content = make_workbook(
        [{"Name": "Juan", "Position": "Governor", "Jurisdiction Type": "province", "Jurisdiction Name": "Cebu"}],
        headers=("Name", "Position", "Jurisdiction Type", "Jurisdiction Name"),
    )

    result = ImportPipeline().run(log, content)

    assert result.status is ImportLogStatus.FAILED
    assert "Term Start" in result.error_message
    stored = db.session.get(ImportLog, log.id)
    assert stored.status is ImportLogStatus.FAILED
    assert "Missing required columns" in stored.error_log


def test_unreadable_file_fails_the_run(reference, import_log_factory):
    log = import_log_factory()

    result = ImportPipeline().run(log, b"definitely not a workbook")

    assert result.status is ImportLogStatus.FAILED
    assert db.session.get(ImportLog, log.id).status is ImportLogStatus.FAILED


class _FlakyStore(PositionHistoryStore):
    def __init__(self, failures: int):
        super().__init__()
        self.failures = failures
        self.calls = 0

    def assign_position(self, request, *, commit=False):
        self.calls += 1
        if self.calls <= self.failures:
            raise TransientStoreError("database is locked")
        return super().assign_position(request, commit=commit)


class _BlindStore(PositionHistoryStore):
    def get_current_holder(self, position_id, jurisdiction):
        return None


def test_unique_index_conflict_fails_only_that_row(reference, make_row, make_workbook, import_log_factory):
    pipeline = ImportPipeline(store=_BlindStore())

    result = pipeline.run(
        import_log_factory(),
        make_workbook(
            [
                make_row("Juan Dela Cruz", "Governor", "province", "Cebu"),
                make_row("Maria Santos", "Governor", "province", "Cebu", term_start="2023-01-01"),
                make_row("Ana Lopez", "Mayor", "city", "Cebu City"),
            ]
        ),
    )

    assert result.counters.successful_imports == 2
    assert result.counters.failed_imports == 1
    error = result.errors[0]
    assert (error.row, error.field) == (3, "row")
    assert error.message.startswith("Could not assign position")
    names = db.session.execute(select(Politician.name).order_by(Politician.name)).scalars().all()
    assert names == ["Ana Lopez", "Juan Dela Cruz"]
    assert _entry_count() == 2


def test_transient_errors_are_retried(reference, make_row, make_workbook, import_log_factory):
    store = _FlakyStore(failures=1)
    pipeline = ImportPipeline(store=store, transient_retries=1)

    result = pipeline.run(
        import_log_factory(),
        make_workbook([make_row("Juan Dela Cruz", "Governor", "province", "Cebu")]),
    )

    assert result.counters.successful_imports == 1
    assert store.calls == 2


def test_transient_errors_fail_row_after_retries(reference, make_row, make_workbook, import_log_factory):
    store = _FlakyStore(failures=5)
    pipeline = ImportPipeline(store=store, transient_retries=1)

    result = pipeline.run(
        import_log_factory(),
        make_workbook(
            [
                make_row("Juan Dela Cruz", "Governor", "province", "Cebu"),
                make_row("Ana Lopez", "Mayor", "city", "Cebu City"),
            ]
        ),
    )

    assert result.counters.failed_imports == 2
    assert result.errors[0].field == "row"
    assert result.errors[0].message == "database is locked"
    assert db.session.execute(select(func.count()).select_from(Politician)).scalar_one() == 0


def test_validate_only_writes_no_position_data(reference, ten_rows, make_workbook, import_log_factory):
    log = import_log_factory(dry_run=True)

    result = ImportPipeline().run(log, make_workbook(ten_rows), validate_only=True)

    assert result.validate_only
    assert result.counters.successful_imports == 9
    assert result.counters.failed_imports == 1
    assert _entry_count() == 0
    assert db.session.execute(select(func.count()).select_from(Politician)).scalar_one() == 0
    stored = db.session.get(ImportLog, log.id)
    assert stored.dry_run
    assert stored.status is ImportLogStatus.COMPLETED
    assert len(stored.validation_errors) == 1


def test_service_validate_import_creates_no_log(reference, ten_rows, make_workbook):
    result = ImportService().validate_import(make_workbook(ten_rows))

    assert result.total_rows == 10
    assert result.invalid_rows == 1
    assert db.session.execute(select(func.count()).select_from(ImportLog)).scalar_one() == 0


def test_service_start_import_inline_cleans_upload(app, reference, ten_rows, make_workbook):
    from civic_app.importer.utils import resolve_upload_directory

    started = ImportService().start_import(make_workbook(ten_rows), "politicians.xlsx", inline=True)

    assert not started.queued
    assert started.run.counters.successful_imports == 9
    assert started.log.status is ImportLogStatus.COMPLETED
    assert list(resolve_upload_directory(app).iterdir()) == []
    payload = started.to_dict()
    assert payload["result"]["successful_imports"] == 9


def test_service_start_import_unknown_election(reference, ten_rows, make_workbook):
    from sqlalchemy.exc import NoResultFound

    with pytest.raises(NoResultFound):
        ImportService().start_import(make_workbook(ten_rows), "politicians.xlsx", election_id=999, inline=True)
