from __future__ import annotations

import logging
import math
from collections.abc import Iterable, Mapping, Sequence
from typing import Any

import numpy as np
from rapidfuzz import fuzz
from scipy.optimize import linear_sum_assignment

from ..excel.transformers import transformer_for_field
from ..models.guest import REQUIRED_FIELDS, CanonicalField, CanonicalRow, field_kind

"""Column mapper: spreadsheet headers -> canonical guest fields.

A (column, field) pair is *eligible* when one of the field's patterns is a
substring of the lower-cased header, or the header is a substring of the
pattern. Two auto-map strategies are available:

- optimal (default): every eligible pair is scored with rapidfuzz ratio against
  its best pattern, and a maximum-weight bipartite assignment
  (scipy linear_sum_assignment) picks at most one column per field.
  Ties go to the earlier field, then the earlier column.
- first_fit: columns in file order each take the first unclaimed eligible field
  in declaration order. Kept for compatibility with rosters prepared against
  the old behaviour.

Invariant for every mapping produced here: a canonical field is the target of
at most one column.
"""

__all__ = [
    "AUTO_MAP_PATTERNS",
    "STRATEGIES",
    "MappingError",
    "MappingIncompleteError",
    "auto_map_columns",
    "set_column_mapping",
    "required_field_status",
    "missing_required_fields",
    "ensure_required_mapped",
    "apply_mapping",
]

logger = logging.getLogger(__name__)

ColumnMapping = dict[str, CanonicalField | None]

# 宣言順 = first_fit の走査順
AUTO_MAP_PATTERNS: tuple[tuple[CanonicalField, tuple[str, ...]], ...] = (
    (CanonicalField.EMAIL, ("email", "e-mail", "email address", "e-mail address")),
    (CanonicalField.SALUTATION, ("salutation", "title", "mr", "mrs", "ms", "dr", "prefix")),
    (CanonicalField.FIRST_NAME, ("first name", "firstname", "given name", "first")),
    (CanonicalField.LAST_NAME, ("last name", "lastname", "family name", "surname", "last")),
    (CanonicalField.AXIS_EMAIL, ("axis email", "work email", "corporate email")),
    (CanonicalField.REPORTING_LEVEL_1, ("reporting level 1", "level 1", "department", "org level 1")),
    (CanonicalField.REPORTING_LEVEL_2, ("reporting level 2", "level 2", "team", "org level 2")),
    (CanonicalField.REPORTING_LEVEL_3, ("reporting level 3", "level 3", "sub-team", "org level 3")),
    (CanonicalField.FUNCTION, ("function", "role", "job function")),
    (CanonicalField.LOCATION, ("location", "office", "city", "country")),
    (CanonicalField.ARRIVAL_DATE, ("arrival date", "arriving", "flight arrival date", "arrival")),
    (CanonicalField.ARRIVAL_TIME, ("arrival time", "arrival flight time", "arriving time")),
    (CanonicalField.ARRIVAL_FLIGHT_NUMBER, ("arrival flight", "flight number", "arrival flight number", "flight in")),
    (CanonicalField.ARRIVAL_AIRPORT, ("arrival airport", "arriving airport")),
    (CanonicalField.DEPARTURE_DATE, ("departure date", "departing", "flight departure date", "departure")),
    (CanonicalField.DEPARTURE_TIME, ("departure time", "departure flight time", "departing time")),
    (CanonicalField.DEPARTURE_FLIGHT_NUMBER, ("departure flight", "departure flight number", "flight out")),
    (CanonicalField.DEPARTURE_AIRPORT, ("departure airport", "departing airport")),
    (CanonicalField.HOTEL_CHECKIN_DATE, ("check-in date", "checkin date", "hotel check-in", "check in")),
    (CanonicalField.HOTEL_CHECKOUT_DATE, ("check-out date", "checkout date", "hotel check-out", "check out")),
    (CanonicalField.HOTEL_CONFIRMATION_NUMBER, (
        "confirmation number", "hotel confirmation", "booking number", "reservation number", "confirmation",
    )),
    (CanonicalField.NEEDS_ARRIVAL_TRANSFER, ("arrival transfer", "airport transfer arrival", "need arrival transfer")),
    (CanonicalField.NEEDS_DEPARTURE_TRANSFER, (
        "departure transfer", "airport transfer departure", "need departure transfer",
    )),
    (CanonicalField.REGISTRATION_STATUS, ("status", "registration status", "reg status")),
    (CanonicalField.TRAVEL_TYPE, ("travel type", "travel", "type")),
)

STRATEGIES = ("optimal", "first_fit")


class MappingError(Exception):
    """Raised for a manual mapping that names an unknown column or field."""


class MappingIncompleteError(Exception):
    """Raised when a required canonical field has no source column."""

    def __init__(self, missing: Sequence[CanonicalField]):
        self.missing = list(missing)
        names = ", ".join(f.value for f in self.missing)
        super().__init__(f"required fields not mapped: {names}")


def _eligible_score(header: str, patterns: Iterable[str]) -> float | None:
    """Best rapidfuzz ratio over eligible patterns, None when no pattern is eligible."""
    best: float | None = None
    for p in patterns:
        if p in header or header in p:
            score = fuzz.ratio(header, p)
            if best is None or score > best:
                best = score
    return best


def _auto_map_first_fit(columns: Sequence[str]) -> ColumnMapping:
    mapping: ColumnMapping = {}
    claimed: set[CanonicalField] = set()
    for col in columns:
        header = col.strip().lower()
        mapping[col] = None
        if not header:
            continue
        for f, patterns in AUTO_MAP_PATTERNS:
            if f in claimed:
                continue
            if any(p in header or header in p for p in patterns):
                mapping[col] = f
                claimed.add(f)
                break
    return mapping


def _auto_map_optimal(columns: Sequence[str]) -> ColumnMapping:
    mapping: ColumnMapping = {c: None for c in columns}
    if not columns:
        return mapping
    n_cols, n_fields = len(columns), len(AUTO_MAP_PATTERNS)
    weights = np.zeros((n_cols, n_fields))
    eligible = np.zeros((n_cols, n_fields), dtype=bool)
    for i, col in enumerate(columns):
        header = col.strip().lower()
        if not header:
            continue
        for j, (_, patterns) in enumerate(AUTO_MAP_PATTERNS):
            score = _eligible_score(header, patterns)
            if score is None:
                continue
            eligible[i, j] = True
            # +1 で不適格 (0) と区別、微小項で前方フィールド/前方列を優先
            weights[i, j] = score + 1.0 - j * 1e-4 - i * 1e-7

    rows, cols = linear_sum_assignment(-weights)
    for i, j in zip(rows, cols, strict=True):
        if eligible[i, j]:
            mapping[columns[i]] = AUTO_MAP_PATTERNS[j][0]
    return mapping


def auto_map_columns(columns: Sequence[str], strategy: str = "optimal") -> ColumnMapping:
    """Propose a mapping for every column (unmatched columns map to None)."""
    if strategy == "optimal":
        mapping = _auto_map_optimal(columns)
    elif strategy == "first_fit":
        mapping = _auto_map_first_fit(columns)
    else:
        raise MappingError(f"unknown auto-map strategy: {strategy!r} (expected one of {STRATEGIES})")
    mapped = sum(1 for v in mapping.values() if v is not None)
    logger.debug("auto-map strategy=%s mapped=%d/%d", strategy, mapped, len(columns))
    return mapping


def _resolve_field(target: str | CanonicalField) -> CanonicalField:
    if isinstance(target, CanonicalField):
        return target
    try:
        return CanonicalField.parse(target)
    except ValueError as e:
        raise MappingError(str(e)) from e


def set_column_mapping(
    mapping: Mapping[str, CanonicalField | str | None],
    column: str,
    target: CanonicalField | str | None,
) -> ColumnMapping:
    """Return a new mapping with `column` -> `target`.

    Any other column previously holding `target` is cleared first, so the
    one-field-one-column invariant survives manual overrides.
    """
    if column not in mapping:
        raise MappingError(f"unknown column: {column!r}")
    new: ColumnMapping = {c: (None if v is None else _resolve_field(v)) for c, v in mapping.items()}
    if target is None:
        new[column] = None
        return new
    f = _resolve_field(target)
    for c, v in new.items():
        if v == f and c != column:
            new[c] = None
    new[column] = f
    return new


def required_field_status(mapping: Mapping[str, Any]) -> tuple[int, list[CanonicalField]]:
    """(number of required fields mapped, required fields still missing)."""
    targets = set()
    for v in mapping.values():
        if v is None:
            continue
        try:
            targets.add(_resolve_field(v))
        except MappingError:
            continue
    missing = [f for f in REQUIRED_FIELDS if f not in targets]
    return len(REQUIRED_FIELDS) - len(missing), missing


def missing_required_fields(mapping: Mapping[str, Any]) -> list[CanonicalField]:
    return required_field_status(mapping)[1]


def ensure_required_mapped(mapping: Mapping[str, Any]) -> None:
    missing = missing_required_fields(mapping)
    if missing:
        raise MappingIncompleteError(missing)


def _is_null_sentinel(value: Any, sentinels: set[str]) -> bool:
    return bool(sentinels) and isinstance(value, str) and value.strip().upper() in sentinels


def _is_blank(value: Any) -> bool:
    if value is None:
        return True
    if isinstance(value, float):
        return math.isnan(value)
    return isinstance(value, str) and not value.strip()


def apply_mapping(
    rows: Sequence[Mapping[str, Any]],
    mapping: Mapping[str, Any],
    date_order: str = "dmy",
    null_sentinels: Iterable[str] | None = None,
) -> list[CanonicalRow]:
    """Project raw rows through the mapping and field transformers.

    Values are normalized but never case-folded. Targets that are not canonical
    fields land in CanonicalRow.extra. A non-blank date/time/boolean cell the
    transformer cannot read is kept in CanonicalRow.unparsed (its value is None).
    Row numbers are spreadsheet rows (first data row = 2).
    """
    sentinels = {s.strip().upper() for s in (null_sentinels or ()) if isinstance(s, str)}
    targets: list[tuple[str, CanonicalField | str]] = []
    for col, target in mapping.items():
        if not target:
            continue
        if isinstance(target, CanonicalField):
            targets.append((col, target))
            continue
        try:
            targets.append((col, CanonicalField.parse(target)))
        except ValueError:
            targets.append((col, str(target)))

    out: list[CanonicalRow] = []
    for idx, row in enumerate(rows):
        values: dict[CanonicalField, Any] = {}
        extra: dict[str, Any] = {}
        unparsed: dict[CanonicalField, Any] = {}
        for col, target in targets:
            if col not in row:
                continue
            raw = row[col]
            if _is_null_sentinel(raw, sentinels):
                raw = None
            if isinstance(target, CanonicalField):
                value = transformer_for_field(target.value, date_order)(raw)
                if value is None and field_kind(target.value) != "text" and not _is_blank(raw):
                    unparsed[target] = raw
                values[target] = value
            else:
                extra[target] = transformer_for_field(target, date_order)(raw)
        out.append(CanonicalRow(row_number=idx + 2, values=values, extra=extra, raw_values=dict(row), unparsed=unparsed))
    return out
