# civic_app/models/election.py

from sqlalchemy import Enum

from .base import BaseModel, db
from .enums import ElectionStatus

ALLOWED_STATUS_TRANSITIONS = {
    ElectionStatus.SCHEDULED: {ElectionStatus.IN_PROGRESS, ElectionStatus.CANCELLED},
    ElectionStatus.IN_PROGRESS: {ElectionStatus.COMPLETED, ElectionStatus.CANCELLED},
    ElectionStatus.COMPLETED: set(),
    ElectionStatus.CANCELLED: set(),
}


class ElectionEvent(BaseModel):
    """Election that triggers a batch of position changes"""

    __tablename__ = "election_events"

    id = db.Column(db.Integer, primary_key=True)
    name = db.Column(db.String(255), nullable=False)
    election_date = db.Column(db.Date, nullable=False, index=True)
    level = db.Column(db.String(50), nullable=False, default="national")
    status = db.Column(
        Enum(ElectionStatus, name="election_status_enum"),
        default=ElectionStatus.SCHEDULED,
        nullable=False,
        index=True,
    )
    description = db.Column(db.Text, nullable=True)

    def __repr__(self):
        return f"<ElectionEvent {self.name} {self.election_date}>"

    def can_transition_to(self, status):
        """Return True when the lifecycle allows moving to ``status``"""
        if status == self.status:
            return True
        return status in ALLOWED_STATUS_TRANSITIONS.get(self.status, set())
