from __future__ import annotations

from datetime import datetime
from pathlib import Path

import pytest

from guestops.excel.reader import ParseError, parse_spreadsheet, read_spreadsheet_file


def test_parse_xlsx_first_sheet(xlsx_builder, roster_rows):
    sheet = parse_spreadsheet(xlsx_builder(roster_rows), "roster.xlsx")
    assert sheet.sheet_name == "Guests"
    assert sheet.columns == ["Email", "First Name", "Last Name", "Arrival Date", "Arrival Flight"]
    assert len(sheet) == 3
    assert sheet.rows[0]["Email"] == "ann@example.com"
    # "N/A" はそのまま (null sentinel はマッピング段階で処理)
    assert sheet.rows[2]["Arrival Flight"] == "N/A"


def test_blank_rows_and_empty_cells(xlsx_builder):
    rows = [
        {"Email": "a@x.com", "Guest ID": 7, "Arrived": datetime(2026, 1, 18, 9, 30)},
        {"Email": None, "Guest ID": None, "Arrived": None},
        {"Email": "b@x.com", "Guest ID": None, "Arrived": None},
    ]
    sheet = parse_spreadsheet(xlsx_builder(rows), "r.xlsx")
    assert len(sheet) == 2
    first, second = sheet.rows
    assert first["Guest ID"] == 7
    assert isinstance(first["Arrived"], datetime)
    assert second["Guest ID"] is None


def test_parse_csv_with_duplicate_and_blank_headers():
    data = b"Email,Email,\nx@y.com,z@y.com,1\n,,\n"
    sheet = parse_spreadsheet(data, "r.csv")
    assert sheet.sheet_name == "csv"
    assert sheet.columns == ["Email", "Email_1", "Column 3"]
    assert sheet.rows == [{"Email": "x@y.com", "Email_1": "z@y.com", "Column 3": "1"}]


def test_csv_keeps_na_strings():
    sheet = parse_spreadsheet(b"Email,Flight\na@x.com,NA\n", "r.csv")
    assert sheet.rows[0]["Flight"] == "NA"


@pytest.mark.parametrize(
    "payload,message",
    [
        (b"", "empty file"),
        (b"Email,First Name\n", "no data rows found"),
        (b"PK\x03\x04not really a workbook", "failed to parse spreadsheet"),
    ],
)
def test_parse_errors(payload, message):
    with pytest.raises(ParseError, match=message):
        parse_spreadsheet(payload, "bad.xlsx")


def test_read_spreadsheet_file(tmp_path: Path, xlsx_builder, roster_rows):
    p = tmp_path / "roster.xlsx"
    p.write_bytes(xlsx_builder(roster_rows))
    assert len(read_spreadsheet_file(p)) == 3
    with pytest.raises(ParseError, match="cannot read file"):
        read_spreadsheet_file(tmp_path / "missing.xlsx")
