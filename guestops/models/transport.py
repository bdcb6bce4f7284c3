from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum

"""Transport domain models: vehicles, schedules, assignments and reference groups.

Vehicle / TransportSchedule / Assignment are store-owned rows. TransportGroup,
TransportPlan, TimeCorrection and VehicleType are read-only reference data loaded
per event (see guestops.config.reference).
"""

__all__ = [
    "Direction",
    "ScheduleStatus",
    "Vehicle",
    "TransportSchedule",
    "Assignment",
    "VehicleType",
    "VehicleRecommendation",
    "TransportGroup",
    "TransportGroupMatch",
    "TransportPlan",
    "TimeCorrection",
    "MatchTier",
    "RankedCandidate",
]


class Direction(str, Enum):
    """Assignment direction. A guest holds at most one assignment per direction."""
    ARRIVAL = "arrival"
    DEPARTURE = "departure"


class ScheduleStatus(str, Enum):
    SCHEDULED = "scheduled"
    IN_PROGRESS = "in_progress"
    COMPLETED = "completed"
    CANCELLED = "cancelled"

    @property
    def is_active(self) -> bool:
        return self in (ScheduleStatus.SCHEDULED, ScheduleStatus.IN_PROGRESS)


@dataclass(frozen=True)
class Vehicle:
    id: str
    name: str
    vehicle_type: str  # SEDAN / MPV / STAREX / VAN / BUS
    capacity: int
    is_active: bool = True
    driver_name: str | None = None
    license_plate: str | None = None


@dataclass(frozen=True)
class TransportSchedule:
    id: str
    vehicle_id: str | None
    direction: Direction
    schedule_date: str  # YYYY-MM-DD
    pickup_time: str  # HH:MM
    status: ScheduleStatus = ScheduleStatus.SCHEDULED
    pickup_location: str | None = None
    dropoff_location: str | None = None
    notes: str | None = None


@dataclass(frozen=True)
class Assignment:
    id: str
    guest_id: str
    schedule_id: str
    direction: Direction
    status: str = "assigned"  # assigned / completed / no_show


@dataclass(frozen=True)
class VehicleType:
    code: str
    name: str
    min_pax: int
    max_pax: int


@dataclass(frozen=True)
class VehicleRecommendation:
    vehicle_type: VehicleType
    vehicle_count: int = 1

    @property
    def needs_multiple(self) -> bool:
        return self.vehicle_count > 1


@dataclass(frozen=True)
class TransportGroup:
    """Pre-planned cluster of flights sharing one vehicle and time slot."""
    id: str
    flights: tuple[str, ...]
    gather_time: str  # arrivals: meet point, departures: hotel lobby
    transport_time: str
    vehicle_type: str
    combined_pax: int
    remark: str | None = None
    terminal_2: bool = False


@dataclass(frozen=True)
class TransportPlan:
    date: str
    direction: Direction
    groups: tuple[TransportGroup, ...] = field(default_factory=tuple)


@dataclass(frozen=True)
class TransportGroupMatch:
    group: TransportGroup
    direction: Direction


@dataclass(frozen=True)
class TimeCorrection:
    flight: str
    date: str
    corrected_time: str
    note: str | None = None


class MatchTier(str, Enum):
    """Reviewer-facing signal for how close a pickup is to the flight time."""
    GOOD = "good"
    ACCEPTABLE = "acceptable"
    POOR = "poor"


@dataclass(frozen=True)
class RankedCandidate:
    schedule: TransportSchedule
    vehicle: Vehicle
    assigned_count: int
    available_seats: int
    time_diff_minutes: int
    tier: MatchTier
    is_recommended: bool = False
    midnight_surcharge: bool = False
