from __future__ import annotations

import re
from collections.abc import Callable
from datetime import date, datetime, time
from typing import Any

from ..models.guest import field_kind

"""Field transformers: raw cell value -> canonical representation.

All transformers are total. Unparseable input yields None instead of raising,
so a single bad cell never aborts a mapping pass.

Canonical forms:
- date: YYYY-MM-DD
- time: HH:MM (24h, zero padded)
- boolean: True / False
- text: trimmed str
"""

__all__ = [
    "DATE_ORDERS",
    "EMAIL_REGEX",
    "is_valid_email",
    "format_date_as_canonical",
    "transform_date",
    "transform_time",
    "transform_boolean",
    "transform_text",
    "transformer_for_field",
]

EMAIL_REGEX = re.compile(r"^[^\s@]+@[^\s@]+\.[^\s@]+$")

DATE_ORDERS = ("dmy", "mdy")

_ISO_DATE = re.compile(r"^(\d{4})-(\d{1,2})-(\d{1,2})(?:[T\s].*)?$")
_SLASH_DATE = re.compile(r"^(\d{1,2})/(\d{1,2})/(\d{4})(?:\s+\d{1,2}:\d{2}(?::\d{2})?)?$")
_MON_DATE = re.compile(r"^(\d{1,2})[/\-\s]([A-Za-z]{3})[/\-\s](\d{4})$")
_TIME = re.compile(r"^(\d{1,2}):(\d{2})(?::(\d{2}))?")

_MONTHS = {
    "jan": 1, "feb": 2, "mar": 3, "apr": 4, "may": 5, "jun": 6,
    "jul": 7, "aug": 8, "sep": 9, "oct": 10, "nov": 11, "dec": 12,
}

TRUE_VALUES = frozenset({"yes", "true", "1", "y"})
FALSE_VALUES = frozenset({"no", "false", "0", "n"})


def is_valid_email(value: Any) -> bool:
    if not isinstance(value, str):
        return False
    return EMAIL_REGEX.match(value.strip()) is not None


def format_date_as_canonical(d: date) -> str:
    if isinstance(d, datetime):
        d = d.date()
    return f"{d.year:04d}-{d.month:02d}-{d.day:02d}"


def _safe_date(year: int, month: int, day: int) -> str | None:
    try:
        return format_date_as_canonical(date(year, month, day))
    except ValueError:
        return None


def _day_month(first: int, second: int, date_order: str) -> tuple[int, int]:
    day, month = (first, second) if date_order == "dmy" else (second, first)
    # 片方の読み順でしか成立しない値は入れ替える (例: dmy で 1/18/2026)
    if month > 12 and day <= 12:
        day, month = month, day
    return day, month


def transform_date(value: Any, date_order: str = "dmy") -> str | None:
    """Normalize a date cell to YYYY-MM-DD.

    Accepts native date/datetime (incl. pandas Timestamp), ISO prefixed strings,
    `D/M/YYYY` and `D/Mon/YYYY`. `date_order` decides how `a/b/YYYY` is read
    when both parts could be a month; a value only valid in the other order is
    swapped. Impossible calendar dates return None.
    """
    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, (datetime, date)):
        return format_date_as_canonical(value)
    if not isinstance(value, str):
        return None
    s = value.strip()
    if not s:
        return None

    m = _ISO_DATE.match(s)
    if m:
        return _safe_date(int(m.group(1)), int(m.group(2)), int(m.group(3)))

    m = _SLASH_DATE.match(s)
    if m:
        day, month = _day_month(int(m.group(1)), int(m.group(2)), date_order)
        return _safe_date(int(m.group(3)), month, day)

    m = _MON_DATE.match(s)
    if m:
        month = _MONTHS.get(m.group(2).lower())
        if month is None:
            return None
        return _safe_date(int(m.group(3)), month, int(m.group(1)))

    return None


def transform_time(value: Any) -> str | None:
    """Extract HH:MM from a native time or a leading `H:MM[:SS]` string."""
    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, (datetime, time)):
        return f"{value.hour:02d}:{value.minute:02d}"
    if not isinstance(value, str):
        return None
    m = _TIME.match(value.strip())
    if not m:
        return None
    hour, minute = int(m.group(1)), int(m.group(2))
    if hour > 23 or minute > 59:
        return None
    return f"{hour:02d}:{minute:02d}"


def transform_boolean(value: Any) -> bool | None:
    """Map yes/true/1/y and no/false/0/n. Anything else is unknown (None)."""
    if value is None:
        return None
    if isinstance(value, bool):
        return value
    if isinstance(value, (int, float)):
        if value == 1:
            return True
        if value == 0:
            return False
        return None
    s = str(value).strip().lower()
    if s in TRUE_VALUES:
        return True
    if s in FALSE_VALUES:
        return False
    return None


def transform_text(value: Any) -> str | None:
    if value is None:
        return None
    if isinstance(value, str):
        s = value.strip()
        return s or None
    if isinstance(value, bool):
        return str(value).lower()
    if isinstance(value, float) and value.is_integer():
        # Excel の数値セル (例: 予約番号 12345.0)
        return str(int(value))
    if isinstance(value, (datetime, date)):
        return format_date_as_canonical(value)
    if isinstance(value, time):
        return f"{value.hour:02d}:{value.minute:02d}"
    return str(value).strip() or None


def transformer_for_field(name: str, date_order: str = "dmy") -> Callable[[Any], Any]:
    kind = field_kind(name)
    if kind == "date":
        return lambda v: transform_date(v, date_order)
    if kind == "time":
        return transform_time
    if kind == "boolean":
        return transform_boolean
    return transform_text
