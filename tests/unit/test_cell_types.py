from __future__ import annotations

from datetime import date, datetime, time

import pytest

from guestops.excel.cell_types import MAX_ISSUES, detect_cell_type, infer_column_type, validate_cells
from guestops.models.alert import Severity


@pytest.mark.parametrize(
    "value,expected",
    [
        (None, "empty"),
        ("", "empty"),
        ("   ", "empty"),
        (float("nan"), "empty"),
        (True, "boolean"),
        (3, "number"),
        (3.0, "number"),
        (3.5, "decimal"),
        (date(2026, 1, 18), "date"),
        (datetime(2026, 1, 18, 9, 0), "date"),
        (time(9, 0), "time"),
        ("a@b.co", "email"),
        ("18/01/2026", "date"),
        ("2026-01-18", "date"),
        ("18/Jan/2026", "date"),
        ("09:30", "time"),
        ("42", "number"),
        ("4.2", "decimal"),
        ("yes", "boolean"),
        ("N/A", "null"),
        ("hello", "text"),
    ],
)
def test_detect_cell_type(value, expected):
    assert detect_cell_type(value) == expected


@pytest.mark.parametrize(
    "header,expected",
    [
        ("Email", "email"),
        ("E-mail Address", "email"),
        ("Arrival Date", "date"),
        ("Hotel Check-in", "date"),
        ("Arrival Time", "time"),
        ("Arrival Flight", "date"),
        ("First Name", "text"),
        ("Guest ID", "number"),
        ("Pax Count", "number"),
        ("Notes", None),
    ],
)
def test_infer_column_type(header, expected):
    assert infer_column_type(header) == expected


def test_validate_cells_classifies_and_sorts():
    columns = ["Email", "First Name", "Arrival Date", "Guest ID"]
    rows = [
        {"Email": "ann@example.com", "First Name": "18/01/2026", "Arrival Date": "18/01/2026", "Guest ID": "7"},
        {"Email": "hello", "First Name": "Bob", "Arrival Date": "bob@example.com", "Guest ID": "abc"},
    ]
    result = validate_cells(rows, columns)

    assert result.total_cells == 8
    severities = [i.severity for i in result.issues]
    assert severities == sorted(severities, key=[Severity.ERROR, Severity.WARNING, Severity.INFO].index)

    by_column = {i.column: i for i in result.issues}
    assert by_column["Email"].severity is Severity.ERROR
    assert by_column["Email"].message == 'Expected email but found text: "hello"'
    assert by_column["Email"].row == 3
    assert by_column["Arrival Date"].message == 'Expected date but found email: "bob@example.com"'
    assert by_column["First Name"].severity is Severity.WARNING
    assert by_column["First Name"].row == 2
    # 数値列の text は許容
    assert "Guest ID" not in by_column
    assert result.error_count == 2


def test_validate_cells_ignores_empty_and_null_cells():
    rows = [{"Email": None, "Arrival Date": "N/A"}, {"Email": "", "Arrival Date": "-"}]
    result = validate_cells(rows, ["Email", "Arrival Date"])
    assert result.issues == []
    assert result.column_stats["Email"].null_count == 2
    assert result.column_stats["Arrival Date"].null_count == 0
    assert result.column_stats["Arrival Date"].type_distribution == {"null": 2}


def test_validate_cells_truncates_but_counts_all():
    rows = [{"Email": f"bad-{i}"} for i in range(MAX_ISSUES + 10)]
    result = validate_cells(rows, ["Email"])
    assert result.issue_count == MAX_ISSUES + 10
    assert len(result.issues) == MAX_ISSUES
    assert result.column_stats["Email"].suspicious_values == MAX_ISSUES + 10


def test_validate_cells_reports_mixed_column_types():
    rows = [{"Notes": 1}, {"Notes": "hello"}, {"Notes": "2026-01-18"}, {"Notes": None}]
    result = validate_cells(rows, ["Notes"])
    assert len(result.issues) == 1
    issue = result.issues[0]
    assert issue.row == 0
    assert issue.actual_type == "mixed"
    assert issue.severity is Severity.INFO
    assert issue.message.startswith("Column has mixed data types:")
