"""
Election event lifecycle helpers.

An election moves scheduled -> in_progress -> completed, or is cancelled.
Archiving the current holders of the contested positions is what moves it
into ``in_progress``; the results import then fills the positions again.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Iterable

from flask import current_app, has_app_context
from sqlalchemy import func, select
from sqlalchemy.exc import NoResultFound
from sqlalchemy.orm import Session

from civic_app.importer.errors import ConstraintViolation
from civic_app.importer.pipeline.position_history import PositionHistoryStore
from civic_app.models import (
    ElectionEvent,
    ElectionStatus,
    EndedReason,
    ImportLog,
    ImportLogStatus,
    PositionHistoryEntry,
    db,
)


@dataclass(slots=True)
class ArchiveResult:
    election_id: int
    archived: int
    position_ids: tuple[int, ...]


@dataclass(slots=True)
class ElectionStatistics:
    election_id: int
    election_name: str
    status: ElectionStatus
    total_positions: int
    entries_created: int
    positions_archived: int
    politicians_imported: int
    import_logs: int

    def to_dict(self) -> dict[str, object]:
        return {
            "election_id": self.election_id,
            "election_name": self.election_name,
            "status": self.status.value,
            "total_positions": self.total_positions,
            "entries_created": self.entries_created,
            "positions_archived": self.positions_archived,
            "politicians_imported": self.politicians_imported,
            "import_logs": self.import_logs,
        }


class ElectionEventService:
    """Transitions election events and archives the holders they replace."""

    def __init__(self, session: Session | None = None, *, store: PositionHistoryStore | None = None) -> None:
        self.session: Session = session or db.session
        self.store = store or PositionHistoryStore(self.session)

    def get(self, election_id: int) -> ElectionEvent:
        election = self.session.get(ElectionEvent, election_id)
        if election is None:
            raise NoResultFound(f"Election {election_id} not found.")
        return election

    def archive_current_holders(self, election_id: int, position_ids: Iterable[int]) -> ArchiveResult:
        """
        End every current entry for ``position_ids`` with ``ended_reason=election``.

        The term end is the election date. The election moves to
        ``in_progress``; archiving for a completed or cancelled election is a
        ``ConstraintViolation``.
        """
        election = self.get(election_id)
        self._transition(election, ElectionStatus.IN_PROGRESS)
        wanted = tuple(sorted({int(position_id) for position_id in position_ids}))
        entries: list[PositionHistoryEntry] = []
        if wanted:
            entries = list(
                self.session.execute(
                    select(PositionHistoryEntry)
                    .where(
                        PositionHistoryEntry.position_id.in_(wanted),
                        PositionHistoryEntry.is_current.is_(True),
                    )
                    .order_by(PositionHistoryEntry.id)
                ).scalars()
            )
        archived = self.store.end_entries(
            entries,
            election.election_date,
            EndedReason.ELECTION,
            election_id=election.id,
        )
        self.session.commit()
        if has_app_context():
            current_app.logger.info(
                "Election %s archived %s current holders",
                election.id,
                archived,
                extra={"election_id": election.id, "position_ids": list(wanted)},
            )
        return ArchiveResult(election_id=election.id, archived=archived, position_ids=wanted)

    def complete_election(self, election_id: int) -> ElectionEvent:
        election = self.get(election_id)
        self._transition(election, ElectionStatus.COMPLETED)
        self.session.commit()
        return election

    def cancel_election(self, election_id: int) -> ElectionEvent:
        election = self.get(election_id)
        self._transition(election, ElectionStatus.CANCELLED)
        self.session.commit()
        return election

    def get_statistics(self, election_id: int) -> ElectionStatistics:
        """
        Summarize what an election changed.

        ``total_positions`` and ``entries_created`` count entries the election
        created; ``positions_archived`` counts entries it ended, whether by
        archiving or by supersession during its results import.
        ``politicians_imported`` sums successful rows of its completed,
        non-dry-run imports.
        """
        election = self.get(election_id)
        created = self.session.execute(
            select(
                func.count(PositionHistoryEntry.id),
                func.count(func.distinct(PositionHistoryEntry.position_id)),
            ).where(PositionHistoryEntry.election_id == election.id)
        ).one()
        archived = self.session.execute(
            select(func.count(PositionHistoryEntry.id)).where(
                PositionHistoryEntry.ended_by_election_id == election.id,
                PositionHistoryEntry.ended_reason == EndedReason.ELECTION,
            )
        ).scalar_one()
        imports = self.session.execute(
            select(
                func.count(ImportLog.id),
                func.coalesce(func.sum(ImportLog.successful_imports), 0),
            ).where(
                ImportLog.election_id == election.id,
                ImportLog.status == ImportLogStatus.COMPLETED,
                ImportLog.dry_run.is_(False),
            )
        ).one()
        return ElectionStatistics(
            election_id=election.id,
            election_name=election.name,
            status=election.status,
            total_positions=int(created[1]),
            entries_created=int(created[0]),
            positions_archived=int(archived),
            politicians_imported=int(imports[1]),
            import_logs=int(imports[0]),
        )

    @staticmethod
    def _transition(election: ElectionEvent, status: ElectionStatus) -> None:
        if not election.can_transition_to(status):
            raise ConstraintViolation(
                f"Election {election.id} cannot move from {election.status.value} to {status.value}."
            )
        election.status = status
