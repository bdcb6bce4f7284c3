from __future__ import annotations

import logging
import math
import re
from collections.abc import Sequence
from datetime import date, datetime, time
from typing import Any

from ..models.alert import SEVERITY_ORDER, CellIssue, CellValidationResult, ColumnStats, Severity
from .transformers import EMAIL_REGEX

"""Cell type inference and advisory cell validation.

detect_cell_type() classifies a single raw value, infer_column_type() guesses
what a column should hold from its header, and validate_cells() compares the
two for every cell. The result is advisory only; it never blocks an import.
"""

__all__ = [
    "MAX_ISSUES",
    "detect_cell_type",
    "infer_column_type",
    "validate_cells",
]

logger = logging.getLogger(__name__)

MAX_ISSUES = 50

_DATE_PATTERNS = (
    re.compile(r"^\d{1,2}/\d{1,2}/\d{2,4}(\s+\d{1,2}:\d{2}(:\d{2})?)?$"),
    re.compile(r"^\d{4}-\d{2}-\d{2}"),
    re.compile(r"^\d{1,2}/[A-Za-z]{3}/\d{4}$"),  # 18/Jan/2026
)
_TIME_PATTERNS = (
    re.compile(r"^\d{1,2}:\d{2}(:\d{2})?$"),
    re.compile(r"^-?\d{1,2}:\d{2}$"),  # -0:10 のような時間差入力
)
_INTEGER = re.compile(r"^-?\d+$")
_DECIMAL = re.compile(r"^-?\d+\.\d+$")

_BOOLEAN_WORDS = frozenset({"yes", "no", "true", "false", "y", "n", "0", "1"})
_NULL_WORDS = frozenset({"null", "n/a", "na", "none", "-"})

# expected type -> detected types accepted without an issue
_BENIGN = {
    "text": frozenset({"text", "email", "number"}),
    "date": frozenset({"text"}),
    "time": frozenset({"text"}),
    "number": frozenset({"text"}),
}


def detect_cell_type(value: Any) -> str:
    """Return one of empty/email/date/time/number/decimal/boolean/null/text."""
    if value is None:
        return "empty"
    if isinstance(value, bool):
        return "boolean"
    if isinstance(value, (datetime, date)):
        return "date"
    if isinstance(value, time):
        return "time"
    if isinstance(value, int):
        return "number"
    if isinstance(value, float):
        if math.isnan(value):
            return "empty"
        return "number" if value.is_integer() else "decimal"

    s = str(value).strip()
    if not s:
        return "empty"
    if EMAIL_REGEX.match(s):
        return "email"
    if any(p.match(s) for p in _DATE_PATTERNS):
        return "date"
    if any(p.match(s) for p in _TIME_PATTERNS):
        return "time"
    if _INTEGER.match(s):
        return "number"
    if _DECIMAL.match(s):
        return "decimal"
    lowered = s.lower()
    if lowered in _BOOLEAN_WORDS:
        return "boolean"
    if lowered in _NULL_WORDS:
        return "null"
    return "text"


def infer_column_type(header: str) -> str | None:
    """Guess the expected type of a column from its header. None = unconstrained."""
    name = header.lower()
    if "email" in name or "e-mail" in name:
        return "email"
    if any(k in name for k in ("date", "check-in", "check-out", "checkin", "checkout")):
        return "date"
    if "time" in name:
        return "time"
    if any(k in name for k in ("arrival", "departure", "start", "completion", "when")):
        return "date"
    if "name" in name or "first" in name or "last" in name:
        return "text"
    if "id" in name:
        return "number"
    if "count" in name or "number" in name or "qty" in name:
        return "number"
    return None


def _classify(expected: str, actual: str, value: Any) -> tuple[Severity, str]:
    if expected == "email":
        return Severity.ERROR, f'Expected email but found {actual}: "{value}"'
    if expected == "text" and actual == "date":
        return Severity.WARNING, f'Unexpected date in text column: "{value}"'
    if expected == "date" and actual == "email":
        return Severity.ERROR, f'Expected date but found email: "{value}"'
    if expected == "number" and actual == "email":
        return Severity.ERROR, f'Expected number but found email: "{value}"'
    return Severity.INFO, f"Possible data type mismatch: expected {expected}, found {actual}"


def validate_cells(rows: Sequence[dict[str, Any]], columns: Sequence[str]) -> CellValidationResult:
    """Compare detected vs expected type for every cell.

    Row numbers are spreadsheet rows (header = 1, first data row = 2). Issues are
    sorted error → warning → info, then by row, and truncated to MAX_ISSUES;
    `issue_count` keeps the pre-truncation total.
    """
    issues: list[CellIssue] = []
    stats: dict[str, ColumnStats] = {c: ColumnStats() for c in columns}
    expected_types = {c: infer_column_type(c) for c in columns}
    total_cells = 0

    for idx, row in enumerate(rows):
        row_num = idx + 2
        for column in columns:
            total_cells += 1
            value = row.get(column)
            actual = detect_cell_type(value)
            expected = expected_types[column]
            st = stats[column]
            st.total_values += 1
            if actual == "empty":
                st.null_count += 1
            st.type_distribution[actual] = st.type_distribution.get(actual, 0) + 1

            if expected is None or actual in ("empty", "null") or actual == expected:
                continue
            if actual in _BENIGN.get(expected, frozenset()):
                continue
            st.suspicious_values += 1
            severity, message = _classify(expected, actual, value)
            issues.append(
                CellIssue(
                    row=row_num,
                    column=column,
                    value=value,
                    expected_type=expected,
                    actual_type=actual,
                    message=message,
                    severity=severity,
                )
            )

    for column, st in stats.items():
        types = sorted(
            ((t, n) for t, n in st.type_distribution.items() if t not in ("empty", "null")),
            key=lambda tn: -tn[1],
        )
        if len(types) > 2:
            listing = ", ".join(f"{t}({n})" for t, n in types)
            issues.append(
                CellIssue(
                    row=0,
                    column=column,
                    value=None,
                    expected_type="consistent",
                    actual_type="mixed",
                    message=f"Column has mixed data types: {listing}",
                    severity=Severity.INFO,
                )
            )

    issues.sort(key=lambda i: (SEVERITY_ORDER[i.severity], i.row))
    if issues:
        logger.debug("cell validation: %d issue(s) over %d cells", len(issues), total_cells)
    return CellValidationResult(
        total_cells=total_cells,
        issue_count=len(issues),
        issues=issues[:MAX_ISSUES],
        column_stats=stats,
    )
