from __future__ import annotations

import logging
from collections.abc import Iterable, Sequence
from datetime import date, datetime
from typing import Any

from ..excel.transformers import format_date_as_canonical, is_valid_email
from ..models.diff import FieldChange, ImportDiff, ModifiedGuest, RowError
from ..models.guest import CanonicalField, CanonicalRow, Guest, field_kind

"""Diff engine: canonical rows vs. the current guest set.

compute_diff() is a pure function. It never touches the store, so a preview
can be recomputed any number of times with identical results.

Partition rules:
- every non-deleted existing guest lands in exactly one of modified / removed /
  unchanged
- every valid row lands in exactly one of added / modified
- every invalid row lands in errors only

Rows are matched to guests by email, trimmed and lower-cased. Only fields
present in the incoming row are compared.
"""

__all__ = [
    "compute_diff",
    "validate_rows",
    "normalize_for_compare",
    "value_type",
    "email_key",
]

logger = logging.getLogger(__name__)


def email_key(email: Any) -> str | None:
    if email is None:
        return None
    key = str(email).strip().lower()
    return key or None


def value_type(f: CanonicalField, value: Any) -> str:
    """Semantic type recorded on a FieldChange."""
    if value is None:
        return "null"
    if isinstance(value, bool):
        return "boolean"
    if isinstance(value, (int, float)):
        return "number"
    kind = field_kind(f.value)
    if kind == "text":
        return "string"
    return kind


def normalize_for_compare(f: CanonicalField, value: Any) -> Any:
    """Normalization applied to both sides before strict comparison.

    None and "" are equal, strings are trimmed, dates compare as ISO strings and
    email fields compare case-insensitively.
    """
    if value is None:
        return None
    if isinstance(value, (datetime, date)):
        return format_date_as_canonical(value)
    if isinstance(value, str):
        s = value.strip()
        if not s:
            return None
        if f in (CanonicalField.EMAIL, CanonicalField.AXIS_EMAIL):
            return s.lower()
        return s
    return value


def _row_errors(row: CanonicalRow) -> list[str]:
    errors: list[str] = []
    email = row.email
    if email is None:
        errors.append("Email is missing")
    elif not is_valid_email(email):
        errors.append(f'Invalid email format: "{email}"')
    if not normalize_for_compare(CanonicalField.FIRST_NAME, row.get(CanonicalField.FIRST_NAME)):
        errors.append("First name is missing")
    if not normalize_for_compare(CanonicalField.LAST_NAME, row.get(CanonicalField.LAST_NAME)):
        errors.append("Last name is missing")
    for f, raw in row.unparsed.items():
        errors.append(f"{f.label}: unparseable {raw!r}")
    return errors


def validate_rows(rows: Sequence[CanonicalRow]) -> tuple[list[CanonicalRow], list[RowError]]:
    """Split rows into (valid, errors).

    Required fields, email format and typed cells that could not be read are
    checked per row; a repeated email within the batch keeps its first
    occurrence and rejects the later ones.
    """
    valid: list[CanonicalRow] = []
    errors: list[RowError] = []
    first_seen: dict[str, int] = {}
    for row in rows:
        problems = _row_errors(row)
        key = email_key(row.email)
        if not problems and key is not None:
            if key in first_seen:
                problems.append(f"Duplicate email in import (first seen in row {first_seen[key]})")
            else:
                first_seen[key] = row.row_number
        if problems:
            errors.append(RowError(row_number=row.row_number, email=row.email, errors=problems))
        else:
            valid.append(row)
    return valid, errors


def _compare(guest: Guest, row: CanonicalRow) -> list[FieldChange]:
    changes: list[FieldChange] = []
    for f in CanonicalField:
        if not row.has(f):
            continue
        old = guest.get(f)
        new = row.get(f)
        if normalize_for_compare(f, old) == normalize_for_compare(f, new):
            continue
        changes.append(
            FieldChange(field=f, old_value=old, new_value=new, field_type=value_type(f, new if new is not None else old))
        )
    return changes


def compute_diff(rows: Sequence[CanonicalRow], guests: Iterable[Guest]) -> ImportDiff:
    """Partition `rows` against `guests` into added/modified/removed/unchanged/errors."""
    current = sorted((g for g in guests if not g.is_deleted), key=lambda g: (email_key(g.email) or "", g.id))
    by_email: dict[str, Guest] = {}
    for g in current:
        key = email_key(g.email)
        if key is not None:
            by_email.setdefault(key, g)

    valid, errors = validate_rows(rows)

    added: list[CanonicalRow] = []
    modified: list[ModifiedGuest] = []
    unchanged: list[Guest] = []
    matched: set[str] = set()

    for row in valid:
        key = email_key(row.email)
        guest = by_email.get(key) if key else None
        if guest is None:
            added.append(row)
            continue
        matched.add(guest.id)
        changes = _compare(guest, row)
        if changes:
            modified.append(ModifiedGuest(existing=guest, changes=changes, row=row))
        else:
            unchanged.append(guest)

    # 不正行でも既存ゲストと一致するなら削除候補にはしない
    for err in errors:
        key = email_key(err.email)
        guest = by_email.get(key) if key else None
        if guest is not None and guest.id not in matched:
            matched.add(guest.id)
            unchanged.append(guest)

    removed = [g for g in current if g.id not in matched]

    diff = ImportDiff(added=added, modified=modified, removed=removed, unchanged=unchanged, errors=errors)
    logger.debug("diff computed: %s", diff.counts())
    return diff
