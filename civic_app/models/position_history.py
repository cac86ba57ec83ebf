"""
Position history ledger.

Entries are append-mostly: a term is ended (``is_current`` flipped off with an
end date and reason) or superseded, never deleted. At most one entry per
(position, jurisdiction) may be current; the partial unique index below backs
the store-level locking so a racing writer fails loudly instead of producing
two current holders.
"""

from __future__ import annotations

from datetime import date

from sqlalchemy import CheckConstraint, Enum, ForeignKey, Index, text
from sqlalchemy.orm import Mapped, mapped_column, relationship

from .base import BaseModel, db
from .enums import EndedReason
from .jurisdiction import Jurisdiction, JurisdictionKind


class PositionHistoryEntry(BaseModel):
    """One politician's tenure in a position for a jurisdiction."""

    __tablename__ = "politician_position_history"

    id: Mapped[int] = mapped_column(primary_key=True)
    politician_id: Mapped[int] = mapped_column(ForeignKey("politicians.id"), nullable=False, index=True)
    position_id: Mapped[int] = mapped_column(ForeignKey("government_positions.id"), nullable=False, index=True)
    party_id: Mapped[int | None] = mapped_column(ForeignKey("political_parties.id"), nullable=True)
    jurisdiction_kind: Mapped[JurisdictionKind] = mapped_column(
        Enum(JurisdictionKind, name="jurisdiction_kind_enum"),
        nullable=False,
    )
    jurisdiction_id: Mapped[int | None] = mapped_column(db.Integer, nullable=True)
    jurisdiction_key: Mapped[str] = mapped_column(db.String(64), nullable=False, index=True)
    term_start: Mapped[date] = mapped_column(db.Date, nullable=False)
    term_end: Mapped[date | None] = mapped_column(db.Date, nullable=True)
    is_current: Mapped[bool] = mapped_column(db.Boolean, nullable=False, default=True, index=True)
    ended_reason: Mapped[EndedReason | None] = mapped_column(
        Enum(EndedReason, name="ended_reason_enum"),
        nullable=True,
    )
    election_id: Mapped[int | None] = mapped_column(ForeignKey("election_events.id"), nullable=True, index=True)
    ended_by_election_id: Mapped[int | None] = mapped_column(
        ForeignKey("election_events.id"),
        nullable=True,
        index=True,
    )
    import_log_id: Mapped[int | None] = mapped_column(
        ForeignKey("politician_import_logs.id", ondelete="SET NULL"),
        nullable=True,
        index=True,
    )
    created_by: Mapped[int | None] = mapped_column(db.Integer, nullable=True)

    politician = relationship("Politician", back_populates="position_history")
    position = relationship("GovernmentPosition")
    party = relationship("PoliticalParty")
    election = relationship("ElectionEvent", foreign_keys=[election_id])

    __table_args__ = (
        Index(
            "uq_position_history_current_holder",
            "position_id",
            "jurisdiction_key",
            unique=True,
            sqlite_where=text("is_current = 1"),
            postgresql_where=text("is_current"),
        ),
        Index("idx_position_history_politician_start", "politician_id", "term_start"),
        CheckConstraint(
            "term_end IS NULL OR term_end >= term_start",
            name="ck_position_history_term_order",
        ),
        CheckConstraint(
            "(jurisdiction_kind = 'NATIONAL' AND jurisdiction_id IS NULL) "
            "OR (jurisdiction_kind != 'NATIONAL' AND jurisdiction_id IS NOT NULL)",
            name="ck_position_history_jurisdiction_variant",
        ),
    )

    def __repr__(self) -> str:
        state = "current" if self.is_current else "ended"
        return f"<PositionHistoryEntry {self.id} politician={self.politician_id} {self.jurisdiction_key} {state}>"

    @property
    def jurisdiction(self) -> Jurisdiction:
        return Jurisdiction(self.jurisdiction_kind, self.jurisdiction_id)

    @jurisdiction.setter
    def jurisdiction(self, value: Jurisdiction) -> None:
        self.jurisdiction_kind = value.kind
        self.jurisdiction_id = value.ref_id
        self.jurisdiction_key = value.key

    def to_dict(self) -> dict[str, object]:
        return {
            "id": self.id,
            "politician_id": self.politician_id,
            "politician_name": self.politician.name if self.politician is not None else None,
            "position_id": self.position_id,
            "position_name": self.position.name if self.position is not None else None,
            "party_id": self.party_id,
            "party_name": self.party.name if self.party is not None else None,
            "jurisdiction": self.jurisdiction.as_dict(),
            "term_start": self.term_start.isoformat() if self.term_start else None,
            "term_end": self.term_end.isoformat() if self.term_end else None,
            "is_current": self.is_current,
            "ended_reason": self.ended_reason.value if self.ended_reason else None,
            "election_id": self.election_id,
            "ended_by_election_id": self.ended_by_election_id,
            "import_log_id": self.import_log_id,
            "created_by": self.created_by,
        }
