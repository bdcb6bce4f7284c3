from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum

from .alert import Alert, CellValidationResult
from .diff import ApplyResult, ImportDiff

"""Import session lifecycle models.

State transitions:
    pending → previewed → applying → (completed | failed)
    pending | previewed → cancelled

Cancelling never touches the store; the diff is read-only until apply.
"""

__all__ = [
    "ImportStatus",
    "ImportPreview",
    "ImportReport",
]


class ImportStatus(Enum):
    PENDING = "pending"
    PREVIEWED = "previewed"
    APPLYING = "applying"
    COMPLETED = "completed"
    FAILED = "failed"
    CANCELLED = "cancelled"

    @property
    def is_terminal(self) -> bool:
        return self in (ImportStatus.COMPLETED, ImportStatus.FAILED, ImportStatus.CANCELLED)


@dataclass(frozen=True)
class ImportPreview:
    """Everything a reviewer needs before approving an apply."""
    diff: ImportDiff
    alerts: list[Alert]
    cell_validation: CellValidationResult


@dataclass(frozen=True)
class ImportReport:
    """Outcome of one import session (SUMMARY line input)."""
    session_id: str
    filename: str
    status: ImportStatus
    total_rows: int
    diff_counts: dict[str, int]
    result: ApplyResult | None = None
    start_time: datetime | None = None
    end_time: datetime | None = None
    error: str | None = None  # 失敗理由
    alerts: list[Alert] = field(default_factory=list)

    @property
    def elapsed_seconds(self) -> float:
        if self.start_time is None or self.end_time is None:
            return 0.0
        return (self.end_time - self.start_time).total_seconds()
