from __future__ import annotations

import logging
import uuid
from dataclasses import dataclass, replace
from typing import TYPE_CHECKING

from ..db.store import GuestStore
from ..models.audit import ENTITY_ASSIGNMENT, ENTITY_GUEST, SOURCE_MANUAL, SOURCE_SYSTEM, AuditRecord
from ..models.diff import FieldChange
from ..models.guest import Guest
from ..models.transport import (
    Assignment,
    Direction,
    MatchTier,
    RankedCandidate,
    TransportSchedule,
    Vehicle,
)
from .flight_matching import (
    effective_flight_time,
    has_time_mismatch,
    is_midnight_surcharge_time,
    parse_minutes,
)

if TYPE_CHECKING:
    from ..config.reference import ReferenceData

"""Transport assignment and reallocation.

suggest_reallocation ranks the alternative schedules a guest could move to when
their flight time shifts; reassign_guest performs the move atomically. The
assignment invariants (capacity, one assignment per guest per direction) are
checked here and enforced again by the store.
"""

__all__ = [
    "ReallocationError",
    "GuestNotFoundError",
    "ScheduleNotFoundError",
    "AssignmentNotFoundError",
    "CapacityExceededError",
    "DuplicateAssignmentError",
    "ReallocationTiers",
    "ScheduleCapacity",
    "suggest_reallocation",
    "reassign_guest",
    "assign_guest",
    "unassign_guest",
    "record_flight_status",
    "find_delayed_guests",
    "available_capacity",
]

logger = logging.getLogger(__name__)

DISRUPTED_STATUSES = frozenset({"cancelled", "diverted"})


class ReallocationError(Exception):
    pass


class GuestNotFoundError(ReallocationError):
    pass


class ScheduleNotFoundError(ReallocationError):
    pass


class AssignmentNotFoundError(ReallocationError):
    pass


class CapacityExceededError(ReallocationError):
    pass


class DuplicateAssignmentError(ReallocationError):
    pass


@dataclass(frozen=True)
class ReallocationTiers:
    good_minutes: int = 30
    acceptable_minutes: int = 60

    def tier_for(self, diff_minutes: int) -> MatchTier:
        if diff_minutes <= self.good_minutes:
            return MatchTier.GOOD
        if diff_minutes <= self.acceptable_minutes:
            return MatchTier.ACCEPTABLE
        return MatchTier.POOR


@dataclass(frozen=True)
class ScheduleCapacity:
    schedule: TransportSchedule
    vehicle: Vehicle
    assigned_count: int

    @property
    def available_seats(self) -> int:
        return max(self.vehicle.capacity - self.assigned_count, 0)


def _live_guest(store: GuestStore, guest_id: str) -> Guest:
    guest = store.get_guest(guest_id)
    if guest is None or guest.is_deleted:
        raise GuestNotFoundError(f"guest not found: {guest_id}")
    return guest


def _usable_vehicle(store: GuestStore, schedule: TransportSchedule) -> Vehicle | None:
    if schedule.vehicle_id is None:
        return None
    vehicle = store.get_vehicle(schedule.vehicle_id)
    if vehicle is None or not vehicle.is_active:
        return None
    return vehicle


def _check_seat(store: GuestStore, schedule: TransportSchedule, direction: Direction) -> None:
    if schedule.direction != direction:
        raise ReallocationError(
            f"schedule {schedule.id} is a {schedule.direction.value} schedule, not {direction.value}"
        )
    if not schedule.status.is_active:
        raise ReallocationError(f"schedule {schedule.id} is {schedule.status.value}")
    vehicle = _usable_vehicle(store, schedule)
    if vehicle is None:
        raise CapacityExceededError(f"schedule {schedule.id} has no active vehicle")
    if store.count_assigned(schedule.id) >= vehicle.capacity:
        raise CapacityExceededError(
            f"vehicle {vehicle.name} on schedule {schedule.id} is at full capacity ({vehicle.capacity})"
        )


def suggest_reallocation(
    store: GuestStore,
    guest_id: str,
    direction: Direction | str,
    reference: ReferenceData | None = None,
    tiers: ReallocationTiers | None = None,
) -> list[RankedCandidate]:
    """Rank schedules the guest could move to, closest pickup first.

    Candidates are active schedules on the guest's travel date and direction
    whose vehicle is active and not full, excluding the current assignment.
    The first candidate is recommended when it falls within the acceptable
    tier. A guest with no travel date or time yields an empty list.
    """
    direction = Direction(direction)
    tiers = tiers or ReallocationTiers()
    guest = _live_guest(store, guest_id)

    date = guest.flight_date(direction)
    target = parse_minutes(effective_flight_time(guest, direction, reference))
    if not date or target is None:
        return []

    current = store.get_assignment(guest_id, direction)
    current_sid = current.schedule_id if current else None

    candidates: list[RankedCandidate] = []
    for s in store.list_schedules(schedule_date=date, direction=direction):
        if s.id == current_sid or not s.status.is_active:
            continue
        vehicle = _usable_vehicle(store, s)
        if vehicle is None:
            continue
        assigned = store.count_assigned(s.id)
        if assigned >= vehicle.capacity:
            continue
        pickup = parse_minutes(s.pickup_time)
        if pickup is None:
            logger.warning(f"schedule {s.id} has unparseable pickup time {s.pickup_time!r}; skipped")
            continue
        diff = abs(pickup - target)
        candidates.append(
            RankedCandidate(
                schedule=s,
                vehicle=vehicle,
                assigned_count=assigned,
                available_seats=vehicle.capacity - assigned,
                time_diff_minutes=diff,
                tier=tiers.tier_for(diff),
                midnight_surcharge=is_midnight_surcharge_time(s.pickup_time),
            )
        )

    candidates.sort(key=lambda c: (c.time_diff_minutes, -c.available_seats, c.schedule.pickup_time, c.schedule.id))
    if candidates and candidates[0].time_diff_minutes <= tiers.acceptable_minutes:
        candidates[0] = replace(candidates[0], is_recommended=True)
    return candidates


def reassign_guest(
    store: GuestStore,
    guest_id: str,
    from_schedule_id: str,
    to_schedule_id: str,
    direction: Direction | str,
    performed_by: str | None = None,
) -> Assignment:
    """Move the guest's assignment between schedules in one transaction.

    Raises:
        ScheduleNotFoundError: unknown target schedule
        CapacityExceededError: target vehicle full (or missing / inactive)
        AssignmentNotFoundError: no current assignment on `from_schedule_id`
    """
    direction = Direction(direction)
    with store.transaction():
        _live_guest(store, guest_id)
        target = store.get_schedule(to_schedule_id)
        if target is None:
            raise ScheduleNotFoundError(f"target schedule not found: {to_schedule_id}")
        current = store.get_assignment(guest_id, direction)
        if current is None or current.schedule_id != from_schedule_id:
            raise AssignmentNotFoundError(
                f"guest {guest_id} has no {direction.value} assignment on schedule {from_schedule_id}"
            )
        if to_schedule_id == from_schedule_id:
            return current
        _check_seat(store, target, direction)

        store.delete_assignment(current.id)
        moved = store.insert_assignment(
            Assignment(id=str(uuid.uuid4()), guest_id=guest_id, schedule_id=to_schedule_id, direction=direction)
        )
        store.append_audit(
            AuditRecord.create(
                entity_type=ENTITY_ASSIGNMENT,
                entity_id=moved.id,
                action="update",
                changes=[FieldChange("schedule_id", from_schedule_id, to_schedule_id, "string")],
                change_source=SOURCE_MANUAL,
                performed_by=performed_by,
            )
        )
    logger.info(f"reassigned guest {guest_id} ({direction.value}) {from_schedule_id} -> {to_schedule_id}")
    return moved


def assign_guest(
    store: GuestStore,
    guest_id: str,
    schedule_id: str,
    performed_by: str | None = None,
) -> Assignment:
    """Create the guest's assignment for the schedule's direction."""
    with store.transaction():
        _live_guest(store, guest_id)
        schedule = store.get_schedule(schedule_id)
        if schedule is None:
            raise ScheduleNotFoundError(f"schedule not found: {schedule_id}")
        existing = store.get_assignment(guest_id, schedule.direction)
        if existing is not None:
            raise DuplicateAssignmentError(
                f"guest {guest_id} already has a {schedule.direction.value} assignment "
                f"(schedule {existing.schedule_id})"
            )
        _check_seat(store, schedule, schedule.direction)
        assignment = store.insert_assignment(
            Assignment(id=str(uuid.uuid4()), guest_id=guest_id, schedule_id=schedule_id, direction=schedule.direction)
        )
        store.append_audit(
            AuditRecord.create(
                entity_type=ENTITY_ASSIGNMENT,
                entity_id=assignment.id,
                action="create",
                changes=[FieldChange("schedule_id", None, schedule_id, "string")],
                change_source=SOURCE_MANUAL,
                performed_by=performed_by,
            )
        )
    return assignment


def unassign_guest(
    store: GuestStore,
    guest_id: str,
    direction: Direction | str,
    performed_by: str | None = None,
) -> Assignment:
    direction = Direction(direction)
    with store.transaction():
        current = store.get_assignment(guest_id, direction)
        if current is None:
            raise AssignmentNotFoundError(f"guest {guest_id} has no {direction.value} assignment")
        store.delete_assignment(current.id)
        store.append_audit(
            AuditRecord.create(
                entity_type=ENTITY_ASSIGNMENT,
                entity_id=current.id,
                action="delete",
                changes=[FieldChange("schedule_id", current.schedule_id, None, "string")],
                change_source=SOURCE_MANUAL,
                performed_by=performed_by,
            )
        )
    return current


def record_flight_status(
    store: GuestStore,
    guest_id: str,
    direction: Direction | str,
    verified_time: str | None,
    status: str | None,
    threshold_minutes: int = 30,
) -> Guest:
    """Store an externally verified flight time / status on the guest.

    The mismatch flag compares the verified time with the scheduled one.
    """
    direction = Direction(direction)
    prefix = direction.value
    with store.transaction():
        guest = _live_guest(store, guest_id)
        mismatch = has_time_mismatch(guest.flight_time(direction), verified_time, threshold_minutes)
        updates = {
            f"{prefix}_verified_time": verified_time,
            f"{prefix}_flight_status": status.lower() if status else None,
            f"{prefix}_time_mismatch": mismatch,
        }
        changes = [
            FieldChange(name, getattr(guest, name), value, "boolean" if isinstance(value, bool) else "string")
            for name, value in updates.items()
            if getattr(guest, name) != value
        ]
        if not changes:
            return guest
        updated = store.update_guest(guest_id, updates, expected_version=guest.version)
        store.append_audit(
            AuditRecord.create(
                entity_type=ENTITY_GUEST,
                entity_id=guest_id,
                action="update",
                changes=changes,
                change_source=SOURCE_SYSTEM,
            )
        )
    if mismatch:
        logger.warning(
            f"flight time mismatch for guest {guest_id} ({prefix}): "
            f"scheduled={guest.flight_time(direction)} verified={verified_time}"
        )
    return updated


def find_delayed_guests(
    store: GuestStore, date: str, direction: Direction | str | None = None
) -> list[Guest]:
    """Live guests travelling on `date` with a time mismatch or a cancelled/diverted flight."""
    directions = [Direction(direction)] if direction is not None else list(Direction)
    out = []
    for g in store.list_guests():
        for d in directions:
            if g.flight_date(d) != date:
                continue
            if g.time_mismatch(d) or (g.flight_status(d) or "") in DISRUPTED_STATUSES:
                out.append(g)
                break
    return out


def available_capacity(
    store: GuestStore, date: str, direction: Direction | str | None = None
) -> list[ScheduleCapacity]:
    """Active schedules on `date` that still have free seats."""
    d = Direction(direction) if direction is not None else None
    out = []
    for s in store.list_schedules(schedule_date=date, direction=d):
        if not s.status.is_active:
            continue
        vehicle = _usable_vehicle(store, s)
        if vehicle is None:
            continue
        cap = ScheduleCapacity(schedule=s, vehicle=vehicle, assigned_count=store.count_assigned(s.id))
        if cap.available_seats > 0:
            out.append(cap)
    return out
