from __future__ import annotations

from collections.abc import Callable
from dataclasses import dataclass
from typing import Any

from ..excel.transformers import is_valid_email
from ..models.alert import Alert, Severity
from ..models.diff import ImportDiff
from ..models.guest import CRITICAL_FIELDS, CanonicalField, CanonicalRow

"""Import analyzer: advisory data-quality heuristics over a computed diff.

Each heuristic is independent and contributes at most one Alert. Alerts are
informational for the reviewer and never block apply.
"""

__all__ = [
    "AnalyzerThresholds",
    "analyze_diff",
]


@dataclass(frozen=True)
class AnalyzerThresholds:
    large_batch_threshold: int = 50
    removal_threshold: int = 10
    max_example_items: int = 5


def _alert(
    severity: Severity, title: str, description: str, items: list[str], limit: int, count: int | None = None
) -> Alert:
    total = len(items) if count is None else count
    shown = items[:limit]
    return Alert(
        type=severity,
        title=title,
        description=description,
        count=total,
        items=shown,
        overflow=max(0, total - len(shown)),
    )


def _name(get: Callable[[CanonicalField], Any]) -> str:
    first = get(CanonicalField.FIRST_NAME) or ""
    last = get(CanonicalField.LAST_NAME) or ""
    return f"{first} {last}"


def analyze_diff(diff: ImportDiff, thresholds: AnalyzerThresholds | None = None) -> list[Alert]:
    t = thresholds or AnalyzerThresholds()
    limit = t.max_example_items
    alerts: list[Alert] = []
    n_added, n_removed = len(diff.added), len(diff.removed)

    if n_added > t.large_batch_threshold:
        alerts.append(_alert(
            Severity.WARNING,
            "Large Import Batch",
            f"Adding {n_added} new guests at once. Consider reviewing in smaller batches.",
            [], limit, count=n_added,
        ))

    if n_removed > t.removal_threshold and n_removed > n_added:
        alerts.append(_alert(
            Severity.WARNING,
            "High Removal Rate",
            f"{n_removed} guests will be removed. This is more than the {n_added} being added.",
            [], limit, count=n_removed,
        ))

    # 追加行 + 変更適用後の既存ゲスト
    merged: list[Callable[[CanonicalField], Any]] = [r.get for r in diff.added]
    merged += [m.merged_value for m in diff.modified]
    date_issues = []
    for get in merged:
        arrival, departure = get(CanonicalField.ARRIVAL_DATE), get(CanonicalField.DEPARTURE_DATE)
        if arrival and departure and str(arrival) > str(departure):
            date_issues.append(f"{_name(get)}: Arrival after departure")
    if date_issues:
        alerts.append(_alert(
            Severity.ERROR,
            "Date Inconsistencies",
            f"{len(date_issues)} guest(s) have arrival dates after departure dates.",
            date_issues, limit,
        ))

    missing_flight = []
    for row in diff.added:
        name = _name(row.get)
        if row.get(CanonicalField.NEEDS_ARRIVAL_TRANSFER) and not row.get(CanonicalField.ARRIVAL_FLIGHT_NUMBER):
            missing_flight.append(f"{name}: Needs arrival transfer but no flight")
        if row.get(CanonicalField.NEEDS_DEPARTURE_TRANSFER) and not row.get(CanonicalField.DEPARTURE_FLIGHT_NUMBER):
            missing_flight.append(f"{name}: Needs departure transfer but no flight")
    if missing_flight:
        alerts.append(_alert(
            Severity.WARNING,
            "Missing Flight Information",
            f"{len(missing_flight)} guest(s) need transfer but have no flight info.",
            missing_flight, limit,
        ))

    # 比較は大文字小文字を無視、表示は最初に出現した表記
    name_counts: dict[str, int] = {}
    first_spelling: dict[str, str] = {}
    for get in [r.get for r in diff.added] + [g.get for g in diff.unchanged]:
        name = _name(get)
        key = name.lower()
        first_spelling.setdefault(key, name)
        name_counts[key] = name_counts.get(key, 0) + 1
    duplicates = [first_spelling[k] for k, c in name_counts.items() if c > 1]
    if duplicates:
        alerts.append(_alert(
            Severity.INFO,
            "Potential Duplicate Names",
            f"{len(duplicates)} name(s) appear multiple times. Verify these are different people.",
            duplicates, limit,
        ))

    invalid_emails = [
        f"{r.full_name}: {r.email}" for r in diff.added if r.email and not is_valid_email(r.email)
    ]
    if invalid_emails:
        alerts.append(_alert(
            Severity.ERROR,
            "Invalid Email Format",
            f"{len(invalid_emails)} guest(s) have invalid email addresses.",
            invalid_emails, limit,
        ))

    critical = [
        m.existing.full_name for m in diff.modified if any(c.field in CRITICAL_FIELDS for c in m.changes)
    ]
    if critical:
        alerts.append(_alert(
            Severity.INFO,
            "Critical Field Updates",
            f"{len(critical)} guest(s) have changes to important fields (dates, flights, email).",
            critical, limit,
        ))

    same_day = [
        _name(r.get) for r in diff.added
        if _same_day(r)
    ]
    if same_day:
        alerts.append(_alert(
            Severity.INFO,
            "Same-Day Trips",
            f"{len(same_day)} guest(s) arrive and depart on the same day.",
            same_day, limit,
        ))

    return alerts


def _same_day(row: CanonicalRow) -> bool:
    arrival = row.get(CanonicalField.ARRIVAL_DATE)
    departure = row.get(CanonicalField.DEPARTURE_DATE)
    return bool(arrival) and arrival == departure
