from __future__ import annotations

import re
from dataclasses import dataclass, field, fields
from datetime import datetime
from enum import Enum
from typing import Any

from .transport import Direction

"""Guest roster domain models.

CanonicalField is the closed set of attributes every import source maps into.
CanonicalRow is the intermediate, per-spreadsheet-row record produced by the
column mapper (known fields + an `extra` bucket for anything else).
Guest is the strongly typed authoritative entity owned by the store.

Declaration order of CanonicalField matters: the first-fit auto mapper scans
fields in this order.
"""

__all__ = [
    "CanonicalField",
    "REQUIRED_FIELDS",
    "CRITICAL_FIELDS",
    "CanonicalRow",
    "Guest",
    "field_kind",
]


class CanonicalField(str, Enum):
    EMAIL = "email"
    SALUTATION = "salutation"
    FIRST_NAME = "first_name"
    LAST_NAME = "last_name"
    AXIS_EMAIL = "axis_email"
    REPORTING_LEVEL_1 = "reporting_level_1"
    REPORTING_LEVEL_2 = "reporting_level_2"
    REPORTING_LEVEL_3 = "reporting_level_3"
    FUNCTION = "function"
    LOCATION = "location"
    ARRIVAL_DATE = "arrival_date"
    ARRIVAL_TIME = "arrival_time"
    ARRIVAL_FLIGHT_NUMBER = "arrival_flight_number"
    ARRIVAL_AIRPORT = "arrival_airport"
    ARRIVAL_FLIGHT_ROUTE = "arrival_flight_route"
    DEPARTURE_DATE = "departure_date"
    DEPARTURE_TIME = "departure_time"
    DEPARTURE_FLIGHT_NUMBER = "departure_flight_number"
    DEPARTURE_AIRPORT = "departure_airport"
    DEPARTURE_FLIGHT_ROUTE = "departure_flight_route"
    HOTEL_CHECKIN_DATE = "hotel_checkin_date"
    HOTEL_CHECKOUT_DATE = "hotel_checkout_date"
    HOTEL_CONFIRMATION_NUMBER = "hotel_confirmation_number"
    EXTEND_STAY_BEFORE = "extend_stay_before"
    EXTEND_STAY_AFTER = "extend_stay_after"
    EARLY_CHECKIN = "early_checkin"
    LATE_CHECKOUT = "late_checkout"
    NEEDS_ARRIVAL_TRANSFER = "needs_arrival_transfer"
    NEEDS_DEPARTURE_TRANSFER = "needs_departure_transfer"
    REGISTRATION_STATUS = "registration_status"
    TRAVEL_TYPE = "travel_type"
    IS_DUPLICATE = "is_duplicate"
    IS_REMOVED = "is_removed"

    @property
    def label(self) -> str:
        return self.value.replace("_", " ").title()

    @property
    def required(self) -> bool:
        return self in REQUIRED_FIELDS

    @classmethod
    def parse(cls, name: str) -> CanonicalField:
        """Resolve `first_name`, `firstName` or `FIRST_NAME` to a member.

        Raises ValueError for unknown names.
        """
        key = re.sub(r"(?<=[a-z])(?=[A-Z0-9])", "_", name.strip()).lower()
        try:
            return cls(key)
        except ValueError:
            raise ValueError(f"unknown canonical field: {name!r}") from None


REQUIRED_FIELDS: tuple[CanonicalField, ...] = (
    CanonicalField.EMAIL,
    CanonicalField.FIRST_NAME,
    CanonicalField.LAST_NAME,
)

# 変更時にレビュー担当へ通知するフィールド
CRITICAL_FIELDS: frozenset[CanonicalField] = frozenset({
    CanonicalField.EMAIL,
    CanonicalField.ARRIVAL_DATE,
    CanonicalField.DEPARTURE_DATE,
    CanonicalField.ARRIVAL_FLIGHT_NUMBER,
    CanonicalField.DEPARTURE_FLIGHT_NUMBER,
})


def field_kind(name: str) -> str:
    """Classify a field name as date / time / boolean / text by naming convention."""
    lowered = name.lower()
    if "date" in lowered:
        return "date"
    if "time" in lowered:
        return "time"
    if lowered.startswith(("needs_", "extend_", "is_")):
        return "boolean"
    return "text"


@dataclass(frozen=True)
class CanonicalRow:
    """One spreadsheet row after column mapping and transformation."""
    row_number: int  # spreadsheet row (header = 1)
    values: dict[CanonicalField, Any]
    extra: dict[str, Any] = field(default_factory=dict)  # mapped targets outside CanonicalField
    raw_values: dict[str, Any] = field(default_factory=dict)  # source cells (debug)
    unparsed: dict[CanonicalField, Any] = field(default_factory=dict)  # typed cells the transformer rejected

    def get(self, f: CanonicalField, default: Any = None) -> Any:
        return self.values.get(f, default)

    def has(self, f: CanonicalField) -> bool:
        return f in self.values

    @property
    def email(self) -> str | None:
        v = self.values.get(CanonicalField.EMAIL)
        if v is None:
            return None
        v = str(v).strip()
        return v or None

    @property
    def full_name(self) -> str:
        first = self.values.get(CanonicalField.FIRST_NAME) or ""
        last = self.values.get(CanonicalField.LAST_NAME) or ""
        return f"{first} {last}".strip()

    def as_dict(self) -> dict[str, Any]:
        out = {f.value: v for f, v in self.values.items()}
        out.update(self.extra)
        return out


@dataclass(frozen=True)
class Guest:
    """Authoritative guest record. Identity key is email (case-insensitive)."""
    id: str
    email: str
    first_name: str
    last_name: str
    salutation: str | None = None
    axis_email: str | None = None
    reporting_level_1: str | None = None
    reporting_level_2: str | None = None
    reporting_level_3: str | None = None
    function: str | None = None
    location: str | None = None
    arrival_date: str | None = None  # YYYY-MM-DD
    arrival_time: str | None = None  # HH:MM
    arrival_flight_number: str | None = None
    arrival_airport: str | None = None
    arrival_flight_route: str | None = None
    departure_date: str | None = None
    departure_time: str | None = None
    departure_flight_number: str | None = None
    departure_airport: str | None = None
    departure_flight_route: str | None = None
    hotel_checkin_date: str | None = None
    hotel_checkout_date: str | None = None
    hotel_confirmation_number: str | None = None
    extend_stay_before: bool | None = False
    extend_stay_after: bool | None = False
    early_checkin: str | None = None
    late_checkout: str | None = None
    needs_arrival_transfer: bool | None = None
    needs_departure_transfer: bool | None = None
    registration_status: str | None = "pending"
    travel_type: str | None = None
    is_duplicate: bool | None = False
    is_removed: bool | None = False
    # フライト検証結果 (外部ステータス取得時に更新)
    arrival_verified_time: str | None = None
    arrival_flight_status: str | None = None
    arrival_time_mismatch: bool = False
    departure_verified_time: str | None = None
    departure_flight_status: str | None = None
    departure_time_mismatch: bool = False
    version: int = 1
    created_at: datetime | None = None
    updated_at: datetime | None = None
    deleted_at: datetime | None = None

    def get(self, f: CanonicalField) -> Any:
        return getattr(self, f.value)

    @property
    def full_name(self) -> str:
        return f"{self.first_name} {self.last_name}".strip()

    @property
    def is_deleted(self) -> bool:
        return self.deleted_at is not None

    def flight_number(self, direction: Direction) -> str | None:
        return getattr(self, f"{direction.value}_flight_number")

    def flight_date(self, direction: Direction) -> str | None:
        return getattr(self, f"{direction.value}_date")

    def flight_time(self, direction: Direction) -> str | None:
        return getattr(self, f"{direction.value}_time")

    def verified_time(self, direction: Direction) -> str | None:
        return getattr(self, f"{direction.value}_verified_time")

    def flight_status(self, direction: Direction) -> str | None:
        return getattr(self, f"{direction.value}_flight_status")

    def time_mismatch(self, direction: Direction) -> bool:
        return bool(getattr(self, f"{direction.value}_time_mismatch"))

    def needs_transfer(self, direction: Direction) -> bool:
        return bool(getattr(self, f"needs_{direction.value}_transfer"))

    @classmethod
    def column_names(cls) -> list[str]:
        return [f.name for f in fields(cls)]
