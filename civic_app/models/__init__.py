# civic_app/models/__init__.py
"""
Database models package
"""

from .base import BaseModel, db
from .election import ElectionEvent
from .enums import ElectionStatus, EndedReason, PositionBranch, PositionLevel
from .importer import ImportLog, ImportLogStatus
from .jurisdiction import Jurisdiction, JurisdictionKind
from .position_history import PositionHistoryEntry
from .reference import (
    Barangay,
    CityMunicipality,
    CongressionalDistrict,
    GovernmentPosition,
    PoliticalParty,
    Politician,
    Province,
    Region,
)

__all__ = [
    "db",
    "BaseModel",
    # Reference data
    "Region",
    "Province",
    "CityMunicipality",
    "Barangay",
    "CongressionalDistrict",
    "GovernmentPosition",
    "PoliticalParty",
    "Politician",
    "ElectionEvent",
    # Position history
    "Jurisdiction",
    "JurisdictionKind",
    "PositionHistoryEntry",
    # Enums
    "PositionLevel",
    "PositionBranch",
    "ElectionStatus",
    "EndedReason",
    # Importer
    "ImportLog",
    "ImportLogStatus",
]
