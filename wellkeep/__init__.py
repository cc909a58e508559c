"""
wellkeep: local persistence, schema migration and backup/restore for
personal wellness data.
"""

from .api import Wellkeep
from .backup import BackupCodec, BackupEnvelope
from .bus import ChangeEvent, ChangeKind, PersistenceChangeBus
from .document_store import DocumentStore
from .errors import (
    CorruptionError,
    DuplicateDocumentError,
    IOFailure,
    MigrationError,
    ValidationError,
    VersionMismatchError,
    WellkeepError,
)
from .models import (
    AssessmentType,
    ClinicalAssessment,
    Goal,
    GoalCategory,
    Habit,
    HabitFrequency,
    HabitMaturity,
    JournalEntry,
    JournalEntryType,
    Milestone,
    PulseEntry,
    PulseType,
    SeverityLevel,
    Status,
    Win,
    WinCategory,
    WinSource,
)
from .restore import RestoreCoordinator, RestoreResult
from .schema import CURRENT_SCHEMA_VERSION

__version__ = "0.3.0"

__all__ = [
    "Wellkeep",
    "BackupCodec",
    "BackupEnvelope",
    "ChangeEvent",
    "ChangeKind",
    "PersistenceChangeBus",
    "DocumentStore",
    "RestoreCoordinator",
    "RestoreResult",
    "CURRENT_SCHEMA_VERSION",
    "WellkeepError",
    "IOFailure",
    "CorruptionError",
    "ValidationError",
    "VersionMismatchError",
    "MigrationError",
    "DuplicateDocumentError",
    "Goal",
    "GoalCategory",
    "Status",
    "Milestone",
    "Habit",
    "HabitFrequency",
    "HabitMaturity",
    "JournalEntry",
    "JournalEntryType",
    "PulseEntry",
    "PulseType",
    "Win",
    "WinSource",
    "WinCategory",
    "ClinicalAssessment",
    "AssessmentType",
    "SeverityLevel",
]
