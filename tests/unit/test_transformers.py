from __future__ import annotations

from datetime import date, datetime, time

import pandas as pd
import pytest

from guestops.excel.transformers import (
    format_date_as_canonical,
    is_valid_email,
    transform_boolean,
    transform_date,
    transform_text,
    transform_time,
    transformer_for_field,
)


@pytest.mark.parametrize(
    "raw,expected",
    [
        ("18/01/2026", "2026-01-18"),
        ("1/2/2026", "2026-02-01"),
        ("2026-01-18", "2026-01-18"),
        ("2026-01-18T09:30:00", "2026-01-18"),
        ("18/Jan/2026", "2026-01-18"),
        ("18-jan-2026", "2026-01-18"),
        ("18/01/2026 14:05", "2026-01-18"),
        (" 18/01/2026 ", "2026-01-18"),
    ],
)
def test_transform_date_dmy(raw, expected):
    assert transform_date(raw) == expected


def test_transform_date_mdy_order():
    assert transform_date("1/2/2026", date_order="mdy") == "2026-01-02"


def test_transform_date_swaps_when_only_other_order_is_valid():
    # 18 は月になり得ないので dmy 指定でも入れ替え
    assert transform_date("1/18/2026", date_order="dmy") == "2026-01-18"
    assert transform_date("18/1/2026", date_order="mdy") == "2026-01-18"


@pytest.mark.parametrize("raw", ["31/02/2026", "2026-13-01", "hello", "", "   ", None, True, "18/Foo/2026"])
def test_transform_date_invalid_returns_none(raw):
    assert transform_date(raw) is None


def test_transform_date_native_types():
    assert transform_date(date(2026, 1, 5)) == "2026-01-05"
    assert transform_date(datetime(2026, 1, 5, 23, 59)) == "2026-01-05"
    assert transform_date(pd.Timestamp("2026-01-05 08:00")) == "2026-01-05"


def test_date_round_trip_is_identity():
    for d in (date(2026, 1, 1), date(2024, 2, 29), date(1999, 12, 31)):
        assert transform_date(format_date_as_canonical(d)) == format_date_as_canonical(d)


@pytest.mark.parametrize(
    "raw,expected",
    [("9:05", "09:05"), ("14:30:59", "14:30"), ("23:59", "23:59"), ("07:00 (local)", "07:00")],
)
def test_transform_time(raw, expected):
    assert transform_time(raw) == expected


def test_transform_time_native_and_invalid():
    assert transform_time(time(6, 59)) == "06:59"
    assert transform_time(datetime(2026, 1, 1, 23, 0)) == "23:00"
    assert transform_time("24:00") is None
    assert transform_time("12:60") is None
    assert transform_time("noon") is None
    assert transform_time(None) is None


@pytest.mark.parametrize("raw", ["yes", "TRUE", " y ", "1", 1, 1.0, True])
def test_transform_boolean_true(raw):
    assert transform_boolean(raw) is True


@pytest.mark.parametrize("raw", ["no", "False", "N", "0", 0, False])
def test_transform_boolean_false(raw):
    assert transform_boolean(raw) is False


@pytest.mark.parametrize("raw", ["maybe", "", None, 2])
def test_transform_boolean_unknown(raw):
    assert transform_boolean(raw) is None


def test_transform_text():
    assert transform_text("  Anne  ") == "Anne"
    assert transform_text("   ") is None
    assert transform_text(12345.0) == "12345"
    assert transform_text(12.5) == "12.5"
    assert transform_text(7) == "7"
    assert transform_text(date(2026, 1, 18)) == "2026-01-18"
    # 大文字小文字はそのまま
    assert transform_text("JOHN@X.COM") == "JOHN@X.COM"


def test_transformer_for_field_dispatch():
    assert transformer_for_field("arrival_date")("18/01/2026") == "2026-01-18"
    assert transformer_for_field("arrival_date", "mdy")("01/02/2026") == "2026-01-02"
    assert transformer_for_field("departure_time")("7:5") is None
    assert transformer_for_field("departure_time")("7:05") == "07:05"
    assert transformer_for_field("needs_arrival_transfer")("Yes") is True
    assert transformer_for_field("is_duplicate")("no") is False
    assert transformer_for_field("first_name")(" Ann ") == "Ann"


def test_is_valid_email():
    assert is_valid_email("a@b.co")
    assert is_valid_email(" a@b.co ")
    assert not is_valid_email("not-an-email")
    assert not is_valid_email("a@b")
    assert not is_valid_email("a b@c.com")
    assert not is_valid_email(None)
