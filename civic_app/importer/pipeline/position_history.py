"""
Position history store.

The store owns every write to ``PositionHistoryEntry`` and is the only place
that enforces "at most one current holder per (position, jurisdiction)".
Writes for one key are serialized by an in-process lock and, on PostgreSQL, a
transaction-scoped advisory lock; the partial unique index on the table is
the last line that turns a lost race into a ``ConstraintViolation``.
"""

from __future__ import annotations

import threading
import zlib
from contextlib import contextmanager
from dataclasses import dataclass, field
from datetime import date, datetime
from typing import Any, Iterator, Mapping, Sequence

from flask import current_app, has_app_context
from sqlalchemy import select, text
from sqlalchemy.exc import DBAPIError, IntegrityError, OperationalError
from sqlalchemy.orm import Session
from sqlalchemy.orm.exc import NoResultFound

from civic_app.importer.errors import ConstraintViolation, FieldValidationError, TransientStoreError
from civic_app.importer.metrics import record_assignment
from civic_app.models import (
    ElectionEvent,
    EndedReason,
    GovernmentPosition,
    Jurisdiction,
    PoliticalParty,
    Politician,
    PositionHistoryEntry,
    db,
)

UNSET: Any = object()


class KeyedLock:
    """Reference-counted mutex per string key."""

    def __init__(self) -> None:
        self._guard = threading.Lock()
        self._locks: dict[str, list] = {}

    @contextmanager
    def hold(self, key: str) -> Iterator[None]:
        with self._guard:
            slot = self._locks.setdefault(key, [threading.Lock(), 0])
            slot[1] += 1
        lock: threading.Lock = slot[0]
        lock.acquire()
        try:
            yield
        finally:
            lock.release()
            with self._guard:
                slot[1] -= 1
                if slot[1] == 0:
                    self._locks.pop(key, None)

    def __len__(self) -> int:
        with self._guard:
            return len(self._locks)


_KEY_LOCKS = KeyedLock()


def holder_lock_key(position_id: int, jurisdiction: Jurisdiction) -> str:
    return f"{position_id}|{jurisdiction.key}"


def advisory_lock_id(lock_key: str) -> int:
    """Stable signed 64-bit id for ``pg_advisory_xact_lock``."""

    digest = zlib.crc32(lock_key.encode("utf-8"))
    high = zlib.adler32(lock_key.encode("utf-8"))
    value = (high << 32) | digest
    return value - (1 << 64) if value >= (1 << 63) else value


def _parse_date(value: object | None, field_name: str) -> date | None:
    if value is None or value == "":
        return None
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    try:
        return date.fromisoformat(str(value).strip())
    except ValueError as exc:
        raise FieldValidationError(
            f"Invalid date '{value}' for {field_name}. Expected YYYY-MM-DD",
            field=field_name,
            value=value,
        ) from exc


def _parse_jurisdiction(value: object | None) -> Jurisdiction:
    if isinstance(value, Jurisdiction):
        return value
    try:
        if isinstance(value, Mapping):
            if value.get("key"):
                return Jurisdiction.from_key(str(value["key"]))
            ref_id = value.get("id")
            return Jurisdiction(value.get("kind"), int(ref_id) if ref_id is not None else None)
        if isinstance(value, str) and value.strip():
            return Jurisdiction.from_key(value)
    except (TypeError, ValueError) as exc:
        raise FieldValidationError(str(exc), field="jurisdiction", value=value) from exc
    raise FieldValidationError("Jurisdiction is required", field="jurisdiction", value=value)


def _parse_int(value: object | None, field_name: str, *, required: bool = False) -> int | None:
    if value is None or value == "":
        if required:
            raise FieldValidationError(f"{field_name} is required", field=field_name, value=value)
        return None
    try:
        return int(value)
    except (TypeError, ValueError) as exc:
        raise FieldValidationError(f"{field_name} must be an integer", field=field_name, value=value) from exc


def coerce_ended_reason(value: EndedReason | str | None) -> EndedReason:
    if value is None or value == "":
        return EndedReason.TERM_EXPIRED
    if isinstance(value, EndedReason):
        return value
    try:
        return EndedReason(str(value).strip().lower())
    except ValueError as exc:
        valid = ", ".join(reason.value for reason in EndedReason)
        raise FieldValidationError(
            f"Invalid ended reason '{value}'. Expected one of: {valid}",
            field="ended_reason",
            value=value,
        ) from exc


@dataclass(slots=True)
class AssignPositionRequest:
    """Everything needed to place a politician in a position."""

    politician_id: int
    position_id: int
    jurisdiction: Jurisdiction
    term_start: date
    party_id: int | None = None
    term_end: date | None = None
    election_id: int | None = None
    with_history: bool = False
    import_log_id: int | None = None
    created_by: int | None = None

    @classmethod
    def coerce(cls, payload: Mapping[str, Any]) -> "AssignPositionRequest":
        """Build a request from a JSON/CLI payload, raising ``FieldValidationError`` on bad input."""

        term_start = _parse_date(payload.get("term_start"), "term_start")
        if term_start is None:
            raise FieldValidationError("term_start is required", field="term_start")
        with_history = payload.get("with_history", False)
        if isinstance(with_history, str):
            with_history = with_history.strip().lower() in {"1", "true", "yes", "on"}
        return cls(
            politician_id=_parse_int(payload.get("politician_id"), "politician_id", required=True),
            position_id=_parse_int(payload.get("position_id"), "position_id", required=True),
            jurisdiction=_parse_jurisdiction(payload.get("jurisdiction")),
            term_start=term_start,
            party_id=_parse_int(payload.get("party_id"), "party_id"),
            term_end=_parse_date(payload.get("term_end"), "term_end"),
            election_id=_parse_int(payload.get("election_id"), "election_id"),
            with_history=bool(with_history),
            created_by=_parse_int(payload.get("created_by"), "created_by"),
        )


@dataclass(slots=True)
class AssignmentOutcome:
    """Result of ``assign_position``."""

    entry: PositionHistoryEntry
    created: bool
    superseded: PositionHistoryEntry | None = None

    @property
    def outcome(self) -> str:
        if self.superseded is not None:
            return "superseded"
        return "created" if self.created else "updated"


@dataclass
class PoliticianPositionTimeline:
    """A politician's current entries and their past entries, newest first."""

    politician_id: int
    current_entries: list[PositionHistoryEntry] = field(default_factory=list)
    past_entries: list[PositionHistoryEntry] = field(default_factory=list)

    @property
    def current(self) -> PositionHistoryEntry | None:
        return self.current_entries[0] if self.current_entries else None

    def to_dict(self) -> dict[str, Any]:
        current = self.current
        return {
            "politician_id": self.politician_id,
            "current": current.to_dict() if current is not None else None,
            "current_entries": [entry.to_dict() for entry in self.current_entries],
            "past": [entry.to_dict() for entry in self.past_entries],
        }


class PositionHistoryStore:
    """Facade over ``PositionHistoryEntry`` writes and reads."""

    def __init__(self, session: Session | None = None, *, key_locks: KeyedLock | None = None):
        self.session: Session = session or db.session
        self.key_locks = key_locks or _KEY_LOCKS

    # ------------------------------------------------------------------
    # Locking and error translation
    # ------------------------------------------------------------------

    @contextmanager
    def locked(self, position_id: int, jurisdiction: Jurisdiction) -> Iterator[None]:
        """Serialize writers for one (position, jurisdiction) key."""

        lock_key = holder_lock_key(position_id, jurisdiction)
        with self.key_locks.hold(lock_key):
            self._acquire_advisory_lock(lock_key)
            yield

    def _acquire_advisory_lock(self, lock_key: str) -> None:
        bind = self.session.get_bind()
        if bind.dialect.name != "postgresql":
            return
        self.session.execute(text("SELECT pg_advisory_xact_lock(:lock_id)"), {"lock_id": advisory_lock_id(lock_key)})

    @contextmanager
    def _translate_errors(self, action: str) -> Iterator[None]:
        try:
            yield
        except IntegrityError as exc:
            self.session.rollback()
            record_assignment("conflict")
            raise ConstraintViolation(f"Could not {action}: {exc.orig}") from exc
        except OperationalError as exc:
            self.session.rollback()
            raise TransientStoreError(f"Could not {action}: {exc.orig}") from exc
        except DBAPIError as exc:
            self.session.rollback()
            if exc.connection_invalidated:
                raise TransientStoreError(f"Could not {action}: connection lost") from exc
            raise

    def _log(self, message: str, *args: object, **extra: object) -> None:
        if has_app_context():
            current_app.logger.info(message, *args, extra=extra)

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    def get_entry(self, entry_id: int) -> PositionHistoryEntry:
        entry = self.session.get(PositionHistoryEntry, entry_id)
        if entry is None:
            raise NoResultFound(f"Position history entry {entry_id} not found.")
        return entry

    def get_current_holder(self, position_id: int, jurisdiction: Jurisdiction) -> PositionHistoryEntry | None:
        """Return the current entry for ``(position_id, jurisdiction)``, if any."""

        statement = select(PositionHistoryEntry).where(
            PositionHistoryEntry.position_id == position_id,
            PositionHistoryEntry.jurisdiction_key == jurisdiction.key,
            PositionHistoryEntry.is_current.is_(True),
        )
        return self.session.execute(statement).scalars().first()

    def get_position_holders(
        self,
        position_id: int,
        *,
        jurisdiction: Jurisdiction | None = None,
        current_only: bool = True,
    ) -> list[PositionHistoryEntry]:
        statement = select(PositionHistoryEntry).where(PositionHistoryEntry.position_id == position_id)
        if jurisdiction is not None:
            statement = statement.where(PositionHistoryEntry.jurisdiction_key == jurisdiction.key)
        if current_only:
            statement = statement.where(PositionHistoryEntry.is_current.is_(True))
        statement = statement.order_by(PositionHistoryEntry.term_start.desc(), PositionHistoryEntry.id.desc())
        return list(self.session.execute(statement).scalars())

    def get_timeline(self, politician_id: int) -> PoliticianPositionTimeline:
        """
        Return a politician's history split into current and past entries.

        Both lists are ordered by ``term_start`` descending.

        Raises:
            NoResultFound: when the politician does not exist.
        """
        if self.session.get(Politician, politician_id) is None:
            raise NoResultFound(f"Politician {politician_id} not found.")
        statement = (
            select(PositionHistoryEntry)
            .where(PositionHistoryEntry.politician_id == politician_id)
            .order_by(PositionHistoryEntry.term_start.desc(), PositionHistoryEntry.id.desc())
        )
        timeline = PoliticianPositionTimeline(politician_id=politician_id)
        for entry in self.session.execute(statement).scalars():
            if entry.is_current:
                timeline.current_entries.append(entry)
            else:
                timeline.past_entries.append(entry)
        return timeline

    # ------------------------------------------------------------------
    # Writes
    # ------------------------------------------------------------------

    def assign_position(self, request: AssignPositionRequest, *, commit: bool = False) -> AssignmentOutcome:
        """
        Create or supersede the current holder of a position.

        Args:
            request: Assignment details.
            commit: Commit while the key lock is still held. Callers that
                batch several writes in one transaction leave this off and
                commit themselves.

        Returns:
            AssignmentOutcome with the current entry and any entry it ended.

        Raises:
            NoResultFound: when a referenced politician, position, party, or election is missing.
            ConstraintViolation: when the write would break term ordering or current-holder uniqueness.
            TransientStoreError: on lock timeouts or dropped connections.
        """
        if request.term_end is not None and request.term_end < request.term_start:
            raise ConstraintViolation(
                f"Term end {request.term_end.isoformat()} is before term start {request.term_start.isoformat()}."
            )
        politician = self._require(Politician, request.politician_id, "Politician")
        self._require(GovernmentPosition, request.position_id, "Position")
        if request.party_id is not None:
            self._require(PoliticalParty, request.party_id, "Party")
        election = self._require(ElectionEvent, request.election_id, "Election") if request.election_id else None

        with self._translate_errors("assign position"):
            with self.locked(request.position_id, request.jurisdiction):
                outcome = self._assign_locked(request, politician, election)
                if commit:
                    self.session.commit()

        record_assignment(outcome.outcome)
        self._log(
            "Position %s assigned to politician %s (%s)",
            request.position_id,
            request.politician_id,
            outcome.outcome,
            position_id=request.position_id,
            politician_id=request.politician_id,
            jurisdiction_key=request.jurisdiction.key,
            importer_log_id=request.import_log_id,
        )
        return outcome

    def _assign_locked(
        self,
        request: AssignPositionRequest,
        politician: Politician,
        election: ElectionEvent | None,
    ) -> AssignmentOutcome:
        current = self.get_current_holder(request.position_id, request.jurisdiction)

        if current is None:
            entry = self._insert(request)
            self._point_politician(politician, request)
            return AssignmentOutcome(entry=entry, created=True)

        same_holder = current.politician_id == request.politician_id
        if same_holder and (not request.with_history or current.term_start == request.term_start):
            current.party_id = request.party_id
            current.term_start = request.term_start
            current.term_end = request.term_end
            if request.election_id is not None:
                current.election_id = request.election_id
            if request.import_log_id is not None:
                current.import_log_id = request.import_log_id
            self._point_politician(politician, request)
            self.session.flush()
            return AssignmentOutcome(entry=current, created=False)

        if request.term_start < current.term_start:
            raise ConstraintViolation(
                f"New term start {request.term_start.isoformat()} is before the current holder's "
                f"term start {current.term_start.isoformat()}."
            )

        end_date = request.term_start
        if election is not None and election.election_date >= current.term_start:
            end_date = election.election_date
        if election is not None:
            reason = EndedReason.ELECTION
        elif same_holder:
            reason = EndedReason.TERM_EXPIRED
        else:
            reason = EndedReason.REPLACED

        current.is_current = False
        current.term_end = end_date
        current.ended_reason = reason
        current.ended_by_election_id = election.id if election is not None else None
        self.session.flush()

        entry = self._insert(request)
        self._point_politician(politician, request)
        return AssignmentOutcome(entry=entry, created=True, superseded=current)

    def _insert(self, request: AssignPositionRequest) -> PositionHistoryEntry:
        entry = PositionHistoryEntry(
            politician_id=request.politician_id,
            position_id=request.position_id,
            party_id=request.party_id,
            term_start=request.term_start,
            term_end=request.term_end,
            is_current=True,
            election_id=request.election_id,
            import_log_id=request.import_log_id,
            created_by=request.created_by,
        )
        entry.jurisdiction = request.jurisdiction
        self.session.add(entry)
        self.session.flush()
        return entry

    @staticmethod
    def _point_politician(politician: Politician, request: AssignPositionRequest) -> None:
        politician.position_id = request.position_id
        politician.party_id = request.party_id

    def end_term(
        self,
        entry_id: int,
        end_date: date,
        ended_reason: EndedReason | str | None = EndedReason.TERM_EXPIRED,
        *,
        commit: bool = False,
    ) -> PositionHistoryEntry:
        """End a current entry administratively."""

        reason = coerce_ended_reason(ended_reason)
        entry = self.get_entry(entry_id)
        with self._translate_errors("end term"):
            with self.locked(entry.position_id, entry.jurisdiction):
                self.session.refresh(entry)
                if not entry.is_current:
                    raise ConstraintViolation(f"Position history entry {entry_id} has already ended.")
                if end_date < entry.term_start:
                    raise ConstraintViolation(
                        f"End date {end_date.isoformat()} is before term start {entry.term_start.isoformat()}."
                    )
                entry.is_current = False
                entry.term_end = end_date
                entry.ended_reason = reason
                self.session.flush()
                if commit:
                    self.session.commit()

        self._log(
            "Position history entry %s ended (%s)",
            entry_id,
            reason.value,
            position_history_entry_id=entry_id,
            jurisdiction_key=entry.jurisdiction_key,
        )
        return entry

    def end_entries(
        self,
        entries: Sequence[PositionHistoryEntry],
        end_date: date,
        ended_reason: EndedReason,
        *,
        election_id: int | None = None,
    ) -> int:
        """End several current entries in the caller's transaction; returns how many changed."""

        ended = 0
        with self._translate_errors("end terms"):
            for entry in entries:
                with self.locked(entry.position_id, entry.jurisdiction):
                    if not entry.is_current:
                        continue
                    entry.is_current = False
                    entry.term_end = max(end_date, entry.term_start)
                    entry.ended_reason = ended_reason
                    entry.ended_by_election_id = election_id
                    ended += 1
                    self.session.flush()
        return ended

    def update_entry(
        self,
        entry_id: int,
        *,
        party_id: int | None = UNSET,
        term_start: date | None = None,
        term_end: date | None = UNSET,
        commit: bool = False,
    ) -> PositionHistoryEntry:
        """Correct an entry in place without creating history."""

        entry = self.get_entry(entry_id)
        new_start = term_start or entry.term_start
        new_end = entry.term_end if term_end is UNSET else term_end
        if new_end is not None and new_end < new_start:
            raise ConstraintViolation(
                f"Term end {new_end.isoformat()} is before term start {new_start.isoformat()}."
            )
        if party_id is not UNSET and party_id is not None:
            self._require(PoliticalParty, party_id, "Party")

        with self._translate_errors("update entry"):
            if party_id is not UNSET:
                entry.party_id = party_id
            entry.term_start = new_start
            entry.term_end = new_end
            self.session.flush()
            if commit:
                self.session.commit()
        return entry

    def _require(self, model: type, record_id: int, label: str):
        record = self.session.get(model, record_id)
        if record is None:
            raise NoResultFound(f"{label} {record_id} not found.")
        return record
