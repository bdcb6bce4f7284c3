from __future__ import annotations

import json
import logging
from collections.abc import Iterator
from contextlib import contextmanager
from dataclasses import astuple, fields, replace
from datetime import date, time
from typing import Any

import psycopg2
from psycopg2.extras import Json

from ..models.audit import AuditRecord
from ..models.diff import FieldChange
from ..models.guest import CanonicalField, Guest
from ..models.transport import Assignment, Direction, ScheduleStatus, TransportSchedule, Vehicle
from .batch_insert import BatchInsertError, batch_insert
from .store import ConcurrentModificationError, GuestStore, IntegrityError, utc_now

"""PostgreSQL implementation of GuestStore (psycopg2 cursor).

トランザクション境界は cursor.execute("BEGIN"/"COMMIT"/"ROLLBACK") で明示。
楽観ロックは `UPDATE ... WHERE version = %s RETURNING ...` の戻り行有無で判定。
DDL: sql/schema.sql
"""

__all__ = [
    "PostgresStore",
]

logger = logging.getLogger(__name__)

GUEST_COLUMNS = Guest.column_names()
VEHICLE_COLUMNS = [f.name for f in fields(Vehicle)]
SCHEDULE_COLUMNS = [f.name for f in fields(TransportSchedule)]
ASSIGNMENT_COLUMNS = [f.name for f in fields(Assignment)]
AUDIT_COLUMNS = [
    "id", "entity_type", "entity_id", "action", "changes",
    "change_source", "import_session_id", "performed_by", "performed_at",
]

_GUEST_SELECT = f"SELECT {', '.join(GUEST_COLUMNS)} FROM guests"


def _plain(value: Any) -> Any:
    """DB date/time values -> canonical strings used by the domain models."""
    if isinstance(value, time):
        return f"{value.hour:02d}:{value.minute:02d}"
    if isinstance(value, date) and not hasattr(value, "hour"):
        return value.isoformat()
    return value


def _guest_from_row(row: tuple[Any, ...]) -> Guest:
    data = {}
    for col, val in zip(GUEST_COLUMNS, row, strict=True):
        data[col] = val if col in ("created_at", "updated_at", "deleted_at") else _plain(val)
    return Guest(**data)


def _schedule_from_row(row: tuple[Any, ...]) -> TransportSchedule:
    data = {c: _plain(v) for c, v in zip(SCHEDULE_COLUMNS, row, strict=True)}
    data["direction"] = Direction(data["direction"])
    data["status"] = ScheduleStatus(data["status"])
    return TransportSchedule(**data)


def _assignment_from_row(row: tuple[Any, ...]) -> Assignment:
    data = dict(zip(ASSIGNMENT_COLUMNS, row, strict=True))
    data["direction"] = Direction(data["direction"])
    return Assignment(**data)


def _audit_from_row(row: tuple[Any, ...]) -> AuditRecord:
    data = dict(zip(AUDIT_COLUMNS, row, strict=True))
    raw_changes = data["changes"]
    if isinstance(raw_changes, str):
        raw_changes = json.loads(raw_changes)
    data["changes"] = [
        FieldChange(
            field=CanonicalField(c["field"]) if c["field"] in CanonicalField._value2member_map_ else c["field"],
            old_value=c.get("old_value"),
            new_value=c.get("new_value"),
            field_type=c.get("field_type", "string"),
        )
        for c in raw_changes or []
    ]
    performed_at = data["performed_at"]
    if performed_at is not None and not isinstance(performed_at, str):
        data["performed_at"] = performed_at.isoformat().replace("+00:00", "Z")
    return AuditRecord(**data)


def _audit_values(r: AuditRecord) -> tuple[Any, ...]:
    return (
        r.id, r.entity_type, r.entity_id, r.action,
        Json([c.to_dict() for c in r.changes], dumps=lambda o: json.dumps(o, default=str)),
        r.change_source, r.import_session_id, r.performed_by, r.performed_at,
    )


def _db_value(value: Any) -> Any:
    return value.value if isinstance(value, (Direction, ScheduleStatus)) else value


class PostgresStore(GuestStore):
    def __init__(self, cursor: Any) -> None:
        self.cursor = cursor
        self._depth = 0

    @contextmanager
    def transaction(self) -> Iterator[None]:
        if self._depth > 0:
            self._depth += 1
            try:
                yield
            finally:
                self._depth -= 1
            return
        self.cursor.execute("BEGIN")
        self._depth = 1
        try:
            yield
        except BaseException:
            self.cursor.execute("ROLLBACK")
            logger.debug("transaction rolled back")
            raise
        else:
            self.cursor.execute("COMMIT")
        finally:
            self._depth = 0

    def _fetch_guest(self, sql: str, params: tuple[Any, ...]) -> Guest | None:
        self.cursor.execute(sql, params)
        row = self.cursor.fetchone()
        return _guest_from_row(row) if row else None

    # guests ---------------------------------------------------------------
    def list_guests(self, include_deleted: bool = False) -> list[Guest]:
        sql = _GUEST_SELECT if include_deleted else f"{_GUEST_SELECT} WHERE deleted_at IS NULL"
        self.cursor.execute(sql + " ORDER BY email")
        return [_guest_from_row(r) for r in self.cursor.fetchall()]

    def get_guest(self, guest_id: str) -> Guest | None:
        return self._fetch_guest(f"{_GUEST_SELECT} WHERE id = %s", (guest_id,))

    def find_guest_by_email(self, email: str) -> Guest | None:
        return self._fetch_guest(
            f"{_GUEST_SELECT} WHERE lower(email) = lower(%s) AND deleted_at IS NULL",
            (email.strip(),),
        )

    def insert_guests(self, guests: list[Guest]) -> list[Guest]:
        now = utc_now()
        guests = [replace(g, created_at=g.created_at or now, updated_at=g.updated_at or now) for g in guests]
        try:
            res = batch_insert(
                self.cursor, "guests", GUEST_COLUMNS, [astuple(g) for g in guests],
                returning=True, returning_columns=GUEST_COLUMNS,
            )
        except BatchInsertError as e:
            if isinstance(e.__cause__, psycopg2.IntegrityError):
                raise IntegrityError(str(e)) from e
            raise
        return [_guest_from_row(r) for r in res.returned_values or []]

    def insert_guest(self, guest: Guest) -> Guest:
        inserted = self.insert_guests([guest])
        return inserted[0] if inserted else guest

    def update_guest(self, guest_id: str, changes: dict[str, Any], expected_version: int) -> Guest:
        cols = [c for c in changes if c in GUEST_COLUMNS]
        sets = ", ".join(f"{c} = %s" for c in cols)
        if sets:
            sets += ", "
        sql = (
            f"UPDATE guests SET {sets}version = version + 1, updated_at = now() "
            f"WHERE id = %s AND version = %s AND deleted_at IS NULL "
            f"RETURNING {', '.join(GUEST_COLUMNS)}"
        )
        params = tuple(changes[c] for c in cols) + (guest_id, expected_version)
        try:
            self.cursor.execute(sql, params)
        except psycopg2.IntegrityError as e:
            raise IntegrityError(str(e)) from e
        row = self.cursor.fetchone()
        if row is None:
            raise ConcurrentModificationError([guest_id])
        return _guest_from_row(row)

    def soft_delete_guest(self, guest_id: str, expected_version: int) -> Guest:
        self.cursor.execute(
            "UPDATE guests SET deleted_at = now(), updated_at = now(), version = version + 1 "
            f"WHERE id = %s AND version = %s AND deleted_at IS NULL RETURNING {', '.join(GUEST_COLUMNS)}",
            (guest_id, expected_version),
        )
        row = self.cursor.fetchone()
        if row is None:
            raise ConcurrentModificationError([guest_id])
        return _guest_from_row(row)

    # vehicles / schedules -------------------------------------------------
    def add_vehicle(self, vehicle: Vehicle) -> Vehicle:
        batch_insert(self.cursor, "vehicles", VEHICLE_COLUMNS, [astuple(vehicle)])
        return vehicle

    def get_vehicle(self, vehicle_id: str) -> Vehicle | None:
        self.cursor.execute(f"SELECT {', '.join(VEHICLE_COLUMNS)} FROM vehicles WHERE id = %s", (vehicle_id,))
        row = self.cursor.fetchone()
        return Vehicle(**dict(zip(VEHICLE_COLUMNS, row, strict=True))) if row else None

    def add_schedule(self, schedule: TransportSchedule) -> TransportSchedule:
        values = tuple(_db_value(v) for v in astuple(schedule))
        batch_insert(self.cursor, "transport_schedules", SCHEDULE_COLUMNS, [values])
        return schedule

    def get_schedule(self, schedule_id: str) -> TransportSchedule | None:
        self.cursor.execute(
            f"SELECT {', '.join(SCHEDULE_COLUMNS)} FROM transport_schedules WHERE id = %s", (schedule_id,)
        )
        row = self.cursor.fetchone()
        return _schedule_from_row(row) if row else None

    def list_schedules(
        self, schedule_date: str | None = None, direction: Direction | None = None
    ) -> list[TransportSchedule]:
        where, params = [], []
        if schedule_date is not None:
            where.append("schedule_date = %s")
            params.append(schedule_date)
        if direction is not None:
            where.append("direction = %s")
            params.append(direction.value)
        sql = f"SELECT {', '.join(SCHEDULE_COLUMNS)} FROM transport_schedules"
        if where:
            sql += " WHERE " + " AND ".join(where)
        self.cursor.execute(sql + " ORDER BY schedule_date, pickup_time, id", tuple(params))
        return [_schedule_from_row(r) for r in self.cursor.fetchall()]

    # assignments ----------------------------------------------------------
    def get_assignment(self, guest_id: str, direction: Direction) -> Assignment | None:
        self.cursor.execute(
            f"SELECT {', '.join(ASSIGNMENT_COLUMNS)} FROM guest_transport_assignments "
            "WHERE guest_id = %s AND direction = %s",
            (guest_id, direction.value),
        )
        row = self.cursor.fetchone()
        return _assignment_from_row(row) if row else None

    def list_assignments(self, schedule_id: str | None = None) -> list[Assignment]:
        sql = f"SELECT {', '.join(ASSIGNMENT_COLUMNS)} FROM guest_transport_assignments"
        if schedule_id is None:
            self.cursor.execute(sql)
        else:
            self.cursor.execute(sql + " WHERE schedule_id = %s", (schedule_id,))
        return [_assignment_from_row(r) for r in self.cursor.fetchall()]

    def count_assigned(self, schedule_id: str) -> int:
        self.cursor.execute(
            "SELECT count(*) FROM guest_transport_assignments WHERE schedule_id = %s", (schedule_id,)
        )
        return int(self.cursor.fetchone()[0])

    def insert_assignment(self, assignment: Assignment) -> Assignment:
        values = tuple(_db_value(v) for v in astuple(assignment))
        try:
            batch_insert(self.cursor, "guest_transport_assignments", ASSIGNMENT_COLUMNS, [values])
        except BatchInsertError as e:
            if isinstance(e.__cause__, psycopg2.IntegrityError):
                raise IntegrityError(str(e)) from e
            raise
        return assignment

    def delete_assignment(self, assignment_id: str) -> None:
        self.cursor.execute("DELETE FROM guest_transport_assignments WHERE id = %s", (assignment_id,))

    # audit ----------------------------------------------------------------
    def append_audits(self, records: list[AuditRecord]) -> None:
        batch_insert(self.cursor, "audit_logs", AUDIT_COLUMNS, [_audit_values(r) for r in records])

    def append_audit(self, record: AuditRecord) -> None:
        self.append_audits([record])

    def list_audit(self, entity_id: str | None = None) -> list[AuditRecord]:
        sql = f"SELECT {', '.join(AUDIT_COLUMNS)} FROM audit_logs"
        if entity_id is None:
            self.cursor.execute(sql + " ORDER BY performed_at")
        else:
            self.cursor.execute(sql + " WHERE entity_id = %s ORDER BY performed_at", (entity_id,))
        return [_audit_from_row(r) for r in self.cursor.fetchall()]
