from __future__ import annotations

import logging
from abc import ABC, abstractmethod
from collections.abc import Iterator
from contextlib import contextmanager
from dataclasses import replace
from datetime import UTC, datetime
from typing import Any

from ..models.audit import AuditRecord
from ..models.guest import Guest
from ..models.transport import Assignment, Direction, TransportSchedule, Vehicle

"""Guest / schedule repository.

GuestStore is the narrow CRUD surface the import and transport services work
against. Every multi-step mutation runs inside `transaction()`: a unit of work
that commits on normal exit and rolls back everything (guest rows, assignments,
audit rows) when the block raises.

InMemoryStore backs mock mode and tests. PostgresStore (postgres_store.py)
backs live mode.
"""

__all__ = [
    "ConcurrentModificationError",
    "IntegrityError",
    "GuestStore",
    "InMemoryStore",
    "utc_now",
]

logger = logging.getLogger(__name__)


class ConcurrentModificationError(Exception):
    """A guest's version changed (or it was deleted) since it was read."""

    def __init__(self, guest_ids: list[str]):
        self.guest_ids = list(guest_ids)
        super().__init__(
            f"guest(s) modified concurrently, refresh the preview: {', '.join(self.guest_ids)}"
        )


class IntegrityError(Exception):
    """Unique constraint violation (guest email, one assignment per direction)."""


def utc_now() -> datetime:
    return datetime.now(UTC)


class GuestStore(ABC):
    @abstractmethod
    @contextmanager
    def transaction(self) -> Iterator[None]:
        ...

    # guests ---------------------------------------------------------------
    @abstractmethod
    def list_guests(self, include_deleted: bool = False) -> list[Guest]:
        ...

    @abstractmethod
    def get_guest(self, guest_id: str) -> Guest | None:
        ...

    @abstractmethod
    def find_guest_by_email(self, email: str) -> Guest | None:
        """Non-deleted guest with this email (case-insensitive)."""

    @abstractmethod
    def insert_guest(self, guest: Guest) -> Guest:
        ...

    @abstractmethod
    def update_guest(self, guest_id: str, changes: dict[str, Any], expected_version: int) -> Guest:
        """Write `changes`, bump version. ConcurrentModificationError on version mismatch."""

    @abstractmethod
    def soft_delete_guest(self, guest_id: str, expected_version: int) -> Guest:
        ...

    # vehicles / schedules -------------------------------------------------
    @abstractmethod
    def add_vehicle(self, vehicle: Vehicle) -> Vehicle:
        ...

    @abstractmethod
    def get_vehicle(self, vehicle_id: str) -> Vehicle | None:
        ...

    @abstractmethod
    def add_schedule(self, schedule: TransportSchedule) -> TransportSchedule:
        ...

    @abstractmethod
    def get_schedule(self, schedule_id: str) -> TransportSchedule | None:
        ...

    @abstractmethod
    def list_schedules(
        self, schedule_date: str | None = None, direction: Direction | None = None
    ) -> list[TransportSchedule]:
        ...

    # assignments ----------------------------------------------------------
    @abstractmethod
    def get_assignment(self, guest_id: str, direction: Direction) -> Assignment | None:
        ...

    @abstractmethod
    def list_assignments(self, schedule_id: str | None = None) -> list[Assignment]:
        ...

    @abstractmethod
    def insert_assignment(self, assignment: Assignment) -> Assignment:
        ...

    @abstractmethod
    def delete_assignment(self, assignment_id: str) -> None:
        ...

    # audit ----------------------------------------------------------------
    @abstractmethod
    def append_audit(self, record: AuditRecord) -> None:
        ...

    @abstractmethod
    def list_audit(self, entity_id: str | None = None) -> list[AuditRecord]:
        ...

    def count_assigned(self, schedule_id: str) -> int:
        return len(self.list_assignments(schedule_id=schedule_id))

    def insert_guests(self, guests: list[Guest]) -> list[Guest]:
        return [self.insert_guest(g) for g in guests]

    def append_audits(self, records: list[AuditRecord]) -> None:
        for r in records:
            self.append_audit(r)


class InMemoryStore(GuestStore):
    """Dict-backed store. Records are frozen dataclasses, so a shallow copy of
    each table is a complete snapshot for rollback."""

    def __init__(self) -> None:
        self._guests: dict[str, Guest] = {}
        self._vehicles: dict[str, Vehicle] = {}
        self._schedules: dict[str, TransportSchedule] = {}
        self._assignments: dict[str, Assignment] = {}
        self._audit: list[AuditRecord] = []
        self._depth = 0

    def _snapshot(self) -> tuple[Any, ...]:
        return (
            dict(self._guests),
            dict(self._vehicles),
            dict(self._schedules),
            dict(self._assignments),
            list(self._audit),
        )

    def _restore(self, snap: tuple[Any, ...]) -> None:
        self._guests, self._vehicles, self._schedules, self._assignments, self._audit = snap

    @contextmanager
    def transaction(self) -> Iterator[None]:
        if self._depth > 0:
            # 入れ子は外側のトランザクションに合流
            self._depth += 1
            try:
                yield
            finally:
                self._depth -= 1
            return
        snap = self._snapshot()
        self._depth = 1
        try:
            yield
        except BaseException:
            self._restore(snap)
            logger.debug("in-memory transaction rolled back")
            raise
        finally:
            self._depth = 0

    # guests ---------------------------------------------------------------
    def list_guests(self, include_deleted: bool = False) -> list[Guest]:
        return [g for g in self._guests.values() if include_deleted or not g.is_deleted]

    def get_guest(self, guest_id: str) -> Guest | None:
        return self._guests.get(guest_id)

    def find_guest_by_email(self, email: str) -> Guest | None:
        key = email.strip().lower()
        for g in self._guests.values():
            if not g.is_deleted and g.email.strip().lower() == key:
                return g
        return None

    def _check_email_free(self, email: str, exclude_id: str | None = None) -> None:
        other = self.find_guest_by_email(email)
        if other is not None and other.id != exclude_id:
            raise IntegrityError(f"email already in use: {email}")

    def insert_guest(self, guest: Guest) -> Guest:
        if guest.id in self._guests:
            raise IntegrityError(f"duplicate guest id: {guest.id}")
        self._check_email_free(guest.email)
        now = utc_now()
        stored = replace(guest, created_at=guest.created_at or now, updated_at=guest.updated_at or now)
        self._guests[stored.id] = stored
        return stored

    def _current(self, guest_id: str, expected_version: int) -> Guest:
        cur = self._guests.get(guest_id)
        if cur is None or cur.is_deleted or cur.version != expected_version:
            raise ConcurrentModificationError([guest_id])
        return cur

    def update_guest(self, guest_id: str, changes: dict[str, Any], expected_version: int) -> Guest:
        cur = self._current(guest_id, expected_version)
        if "email" in changes and changes["email"]:
            self._check_email_free(changes["email"], exclude_id=guest_id)
        updated = replace(cur, **changes, version=cur.version + 1, updated_at=utc_now())
        self._guests[guest_id] = updated
        return updated

    def soft_delete_guest(self, guest_id: str, expected_version: int) -> Guest:
        cur = self._current(guest_id, expected_version)
        now = utc_now()
        deleted = replace(cur, deleted_at=now, version=cur.version + 1, updated_at=now)
        self._guests[guest_id] = deleted
        return deleted

    # vehicles / schedules -------------------------------------------------
    def add_vehicle(self, vehicle: Vehicle) -> Vehicle:
        self._vehicles[vehicle.id] = vehicle
        return vehicle

    def get_vehicle(self, vehicle_id: str) -> Vehicle | None:
        return self._vehicles.get(vehicle_id)

    def add_schedule(self, schedule: TransportSchedule) -> TransportSchedule:
        self._schedules[schedule.id] = schedule
        return schedule

    def get_schedule(self, schedule_id: str) -> TransportSchedule | None:
        return self._schedules.get(schedule_id)

    def list_schedules(
        self, schedule_date: str | None = None, direction: Direction | None = None
    ) -> list[TransportSchedule]:
        out = [
            s for s in self._schedules.values()
            if (schedule_date is None or s.schedule_date == schedule_date)
            and (direction is None or s.direction == direction)
        ]
        return sorted(out, key=lambda s: (s.schedule_date, s.pickup_time, s.id))

    # assignments ----------------------------------------------------------
    def get_assignment(self, guest_id: str, direction: Direction) -> Assignment | None:
        for a in self._assignments.values():
            if a.guest_id == guest_id and a.direction == direction:
                return a
        return None

    def list_assignments(self, schedule_id: str | None = None) -> list[Assignment]:
        return [a for a in self._assignments.values() if schedule_id is None or a.schedule_id == schedule_id]

    def insert_assignment(self, assignment: Assignment) -> Assignment:
        if self.get_assignment(assignment.guest_id, assignment.direction) is not None:
            raise IntegrityError(
                f"guest {assignment.guest_id} already has a {assignment.direction.value} assignment"
            )
        self._assignments[assignment.id] = assignment
        return assignment

    def delete_assignment(self, assignment_id: str) -> None:
        self._assignments.pop(assignment_id, None)

    # audit ----------------------------------------------------------------
    def append_audit(self, record: AuditRecord) -> None:
        self._audit.append(record)

    def list_audit(self, entity_id: str | None = None) -> list[AuditRecord]:
        return [r for r in self._audit if entity_id is None or r.entity_id == entity_id]
