"""Domain models for the guest import and transport matching core.

Guest / CanonicalRow are the roster records, ImportDiff and friends describe a
pending import, AuditRecord is the persisted provenance trail and the transport
module covers vehicles, schedules and the per-event reference tables.
"""

from .alert import Alert, CellIssue, CellValidationResult, ColumnStats, Severity
from .audit import AuditRecord
from .diff import ApplyResult, FieldChange, ImportDiff, ModifiedGuest, RowError
from .error_record import ErrorRecord
from .guest import REQUIRED_FIELDS, CanonicalField, CanonicalRow, Guest
from .import_session import ImportPreview, ImportReport, ImportStatus
from .transport import (
    Assignment,
    Direction,
    MatchTier,
    RankedCandidate,
    ScheduleStatus,
    TimeCorrection,
    TransportGroup,
    TransportGroupMatch,
    TransportPlan,
    TransportSchedule,
    Vehicle,
    VehicleRecommendation,
    VehicleType,
)

__all__ = [
    # Roster
    "CanonicalField",
    "CanonicalRow",
    "Guest",
    "REQUIRED_FIELDS",
    # Diff / apply
    "FieldChange",
    "ModifiedGuest",
    "RowError",
    "ImportDiff",
    "ApplyResult",
    "AuditRecord",
    # Quality
    "Alert",
    "CellIssue",
    "CellValidationResult",
    "ColumnStats",
    "Severity",
    "ErrorRecord",
    # Session
    "ImportPreview",
    "ImportReport",
    "ImportStatus",
    # Transport
    "Assignment",
    "Direction",
    "MatchTier",
    "RankedCandidate",
    "ScheduleStatus",
    "TimeCorrection",
    "TransportGroup",
    "TransportGroupMatch",
    "TransportPlan",
    "TransportSchedule",
    "Vehicle",
    "VehicleRecommendation",
    "VehicleType",
]
