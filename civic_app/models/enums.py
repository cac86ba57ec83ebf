# civic_app/models/enums.py
"""
Enums for reference and position history models.
"""

from enum import Enum as PyEnum


class PositionLevel(PyEnum):
    """Government level a position belongs to"""

    NATIONAL = "national"
    REGIONAL = "regional"
    PROVINCIAL = "provincial"
    CITY = "city"
    MUNICIPAL = "municipal"
    BARANGAY = "barangay"


class PositionBranch(PyEnum):
    """Branch of government"""

    EXECUTIVE = "executive"
    LEGISLATIVE = "legislative"
    JUDICIAL = "judicial"


class ElectionStatus(PyEnum):
    """Election event lifecycle"""

    SCHEDULED = "scheduled"
    IN_PROGRESS = "in_progress"
    COMPLETED = "completed"
    CANCELLED = "cancelled"


class EndedReason(PyEnum):
    """Why a position history entry stopped being current"""

    TERM_EXPIRED = "term_expired"
    RESIGNED = "resigned"
    REPLACED = "replaced"
    ELECTION = "election"
    DECEASED = "deceased"
    OTHER = "other"
