from __future__ import annotations

import logging
import uuid
from typing import Any

from ..db.store import ConcurrentModificationError, GuestStore
from ..models.audit import ENTITY_GUEST, SOURCE_IMPORT, AuditRecord
from ..models.diff import ApplyResult, FieldChange, ImportDiff, RowError
from ..models.guest import CanonicalField, CanonicalRow, Guest
from .diff_engine import email_key, value_type
from .progress import ProgressTracker

"""Apply step: commit an approved ImportDiff to the store.

The whole batch runs in one store transaction (unit of work). Before any
mutation the diff is re-validated against the live store:

- every touched guest must still carry the version seen at diff time
  (ConcurrentModificationError otherwise)
- every new or changed email must still be free among live guests
  (ValidationError listing the offending rows otherwise)

Any failure rolls back every insert, update, soft delete and audit row.
"""

__all__ = [
    "ApplyError",
    "ConcurrentModificationError",
    "ValidationError",
    "apply_diff",
]

logger = logging.getLogger(__name__)


class ValidationError(Exception):
    """Rows that would violate the unique-email constraint at apply time."""

    def __init__(self, rows: list[RowError]):
        self.rows = list(rows)
        listing = "; ".join(f"row {r.row_number}: {', '.join(r.errors)}" for r in self.rows)
        super().__init__(f"import rows violate constraints: {listing}")


class ApplyError(Exception):
    """Fatal apply failure; the batch was rolled back."""


def _check_versions(store: GuestStore, guests: list[Guest]) -> None:
    stale = []
    for snap in guests:
        cur = store.get_guest(snap.id)
        if cur is None or cur.is_deleted or cur.version != snap.version:
            stale.append(snap.id)
    if stale:
        raise ConcurrentModificationError(stale)


def _check_emails(store: GuestStore, diff: ImportDiff) -> None:
    offending: list[RowError] = []
    seen: dict[str, int] = {}

    def claim(row: CanonicalRow, email: str, owner_id: str | None) -> None:
        key = email_key(email)
        if key is None:
            return
        holder = store.find_guest_by_email(email)
        if holder is not None and holder.id != owner_id:
            offending.append(RowError(row.row_number, email, [f"email already in use: {email}"]))
        elif key in seen:
            offending.append(RowError(row.row_number, email, [f"duplicate email in batch (row {seen[key]})"]))
        else:
            seen[key] = row.row_number

    for row in diff.added:
        claim(row, row.email or "", None)
    for m in diff.modified:
        for c in m.changes:
            if c.field is CanonicalField.EMAIL and c.new_value:
                claim(m.row, str(c.new_value), m.existing.id)
    if offending:
        raise ValidationError(offending)


def _new_guest(row: CanonicalRow) -> tuple[Guest, list[FieldChange]]:
    # 取り込んだ空欄は None のまま保存 (既定値で埋めると再取り込みで差分になる)
    values = {f.value: v for f, v in row.values.items()}
    guest = Guest(id=str(uuid.uuid4()), version=1, **values)
    changes = [
        FieldChange(field=f, old_value=None, new_value=v, field_type=value_type(f, v))
        for f, v in row.values.items()
        if v is not None
    ]
    return guest, changes


def apply_diff(
    store: GuestStore,
    diff: ImportDiff,
    remove_deleted: bool = False,
    import_session_id: str | None = None,
    performed_by: str | None = None,
) -> ApplyResult:
    """Commit added / modified (and optionally removed) guests atomically.

    Removed guests are soft-deleted only when `remove_deleted` is True;
    otherwise they are left untouched and reported as 0.

    Raises:
        ConcurrentModificationError: a touched guest changed since the diff
        ValidationError: an email is no longer free
        ApplyError: any other failure (the batch is rolled back)
    """
    to_remove = list(diff.removed) if remove_deleted else []
    total = len(diff.added) + len(diff.modified) + len(to_remove)
    audits: list[AuditRecord] = []

    def audit(entity_id: str, action: str, changes: list[FieldChange]) -> None:
        audits.append(
            AuditRecord.create(
                entity_type=ENTITY_GUEST,
                entity_id=entity_id,
                action=action,
                changes=changes,
                change_source=SOURCE_IMPORT,
                import_session_id=import_session_id,
                performed_by=performed_by,
            )
        )

    try:
        with store.transaction():
            _check_versions(store, [m.existing for m in diff.modified] + to_remove)
            _check_emails(store, diff)

            with ProgressTracker(total, description="Applying import") as tracker:
                tracker.set_stage("added")
                new_guests = []
                for row in diff.added:
                    guest, changes = _new_guest(row)
                    new_guests.append(guest)
                    audit(guest.id, "create", changes)
                store.insert_guests(new_guests)
                tracker.advance(len(new_guests))

                tracker.set_stage("modified")
                for m in diff.modified:
                    updates: dict[str, Any] = {c.field.value: c.new_value for c in m.changes}
                    store.update_guest(m.existing.id, updates, expected_version=m.existing.version)
                    audit(m.existing.id, "update", m.changes)
                    tracker.advance()

                tracker.set_stage("removed")
                for g in to_remove:
                    store.soft_delete_guest(g.id, expected_version=g.version)
                    audit(g.id, "delete", [
                        FieldChange(field=CanonicalField.EMAIL, old_value=g.email, new_value=None, field_type="string")
                    ])
                    tracker.advance()

            store.append_audits(audits)
    except (ConcurrentModificationError, ValidationError):
        raise
    except Exception as e:
        logger.error(f"apply failed, batch rolled back: {e}")
        raise ApplyError(f"apply failed, batch rolled back: {e}") from e

    result = ApplyResult(added=len(diff.added), modified=len(diff.modified), removed=len(to_remove))
    logger.info(
        f"applied import session={import_session_id} added={result.added} "
        f"modified={result.modified} removed={result.removed}"
    )
    return result
