from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any

"""Advisory data-quality models.

CellIssue / CellValidationResult come from per-cell type inference over the raw
spreadsheet. Alert comes from the heuristics run over a computed diff. Neither
blocks an import.
"""

__all__ = [
    "Severity",
    "SEVERITY_ORDER",
    "CellIssue",
    "ColumnStats",
    "CellValidationResult",
    "Alert",
]


class Severity(str, Enum):
    ERROR = "error"
    WARNING = "warning"
    INFO = "info"


SEVERITY_ORDER = {Severity.ERROR: 0, Severity.WARNING: 1, Severity.INFO: 2}


@dataclass(frozen=True)
class CellIssue:
    row: int  # spreadsheet row; 0 = column-level issue
    column: str
    value: Any
    expected_type: str
    actual_type: str
    message: str
    severity: Severity


@dataclass
class ColumnStats:
    total_values: int = 0
    null_count: int = 0
    type_distribution: dict[str, int] = field(default_factory=dict)
    suspicious_values: int = 0


@dataclass(frozen=True)
class CellValidationResult:
    total_cells: int
    issue_count: int  # before truncation
    issues: list[CellIssue]
    column_stats: dict[str, ColumnStats]

    @property
    def error_count(self) -> int:
        return sum(1 for i in self.issues if i.severity is Severity.ERROR)


@dataclass(frozen=True)
class Alert:
    type: Severity
    title: str
    description: str
    count: int
    items: list[str] = field(default_factory=list)
    overflow: int = 0  # count - len(items)
