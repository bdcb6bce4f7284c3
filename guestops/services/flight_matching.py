from __future__ import annotations

import logging
import math
import re
from collections import Counter
from collections.abc import Iterable
from dataclasses import dataclass, field
from datetime import time as dt_time
from typing import TYPE_CHECKING, Any

from ..models.guest import Guest
from ..models.transport import (
    Direction,
    TimeCorrection,
    TransportGroup,
    TransportGroupMatch,
    TransportPlan,
    VehicleRecommendation,
)

if TYPE_CHECKING:
    from ..config.reference import ReferenceData

"""Flight matching against event reference data.

Flight numbers are compared after normalization (upper case, no whitespace),
and a flight also matches any of its codeshare partners. Times are "HH:MM"
strings (a trailing ":SS" is tolerated); anything unparseable is treated as
absent rather than raising.
"""

__all__ = [
    "PlanSummary",
    "TransportGroupBucket",
    "TimeWindowGroup",
    "normalize_flight_number",
    "parse_minutes",
    "get_codeshare_partners",
    "are_codeshare_flights",
    "get_time_correction",
    "find_transport_group",
    "find_transport_group_with_direction",
    "get_flights_in_same_group",
    "get_transport_plan",
    "summarize_transport_plans",
    "is_midnight_surcharge_time",
    "recommended_vehicle",
    "has_time_mismatch",
    "format_time_difference",
    "effective_flight_time",
    "group_guests_by_transport_group",
    "group_guests_by_time_window",
]

logger = logging.getLogger(__name__)

_TIME_RE = re.compile(r"^(\d{1,2}):(\d{2})")

# 深夜割増: 23:00-23:59 / 00:00-06:59
SURCHARGE_START_HOUR = 23
SURCHARGE_END_HOUR = 7


@dataclass(frozen=True)
class PlanSummary:
    date: str
    direction: Direction
    group_count: int
    total_pax: int
    vehicle_counts: dict[str, int] = field(default_factory=dict)


@dataclass(frozen=True)
class TransportGroupBucket:
    group: TransportGroup
    guests: tuple[Guest, ...]

    @property
    def guest_count(self) -> int:
        return len(self.guests)


@dataclass(frozen=True)
class TimeWindowGroup:
    time_window: str  # window start "HH:MM"
    guests: tuple[Guest, ...]

    @property
    def guest_count(self) -> int:
        return len(self.guests)


def normalize_flight_number(flight: str | None) -> str:
    """Upper-case and strip all whitespace ("mh 128" -> "MH128")."""
    if flight is None:
        return ""
    return "".join(str(flight).split()).upper()


def parse_minutes(value: Any) -> int | None:
    """Minutes since midnight for "HH:MM[:SS]" strings or time objects; None otherwise."""
    if isinstance(value, dt_time):
        return value.hour * 60 + value.minute
    if not isinstance(value, str):
        return None
    m = _TIME_RE.match(value.strip())
    if not m:
        return None
    h, mi = int(m.group(1)), int(m.group(2))
    if h > 23 or mi > 59:
        return None
    return h * 60 + mi


def get_codeshare_partners(flight: str, reference: ReferenceData) -> list[str]:
    return sorted(reference.codeshare_partners(flight))


def are_codeshare_flights(a: str, b: str, reference: ReferenceData) -> bool:
    """True for the same flight or a declared codeshare pair (symmetric)."""
    na, nb = normalize_flight_number(a), normalize_flight_number(b)
    if not na or not nb:
        return False
    if na == nb:
        return True
    return nb in reference.codeshare_partners(na) or na in reference.codeshare_partners(nb)


def get_time_correction(flight: str, date: str, reference: ReferenceData) -> TimeCorrection | None:
    if not flight or not date:
        return None
    return reference.time_correction(flight, date)


def get_transport_plan(date: str, reference: ReferenceData) -> TransportPlan | None:
    return reference.transport_plan(date)


def find_transport_group_with_direction(
    flight: str | None, date: str | None, reference: ReferenceData
) -> TransportGroupMatch | None:
    if not flight or not date:
        return None
    plan = reference.transport_plan(date)
    if plan is None:
        return None
    for group in plan.groups:
        if any(are_codeshare_flights(f, flight, reference) for f in group.flights):
            return TransportGroupMatch(group=group, direction=plan.direction)
    return None


def find_transport_group(
    flight: str | None, date: str | None, reference: ReferenceData
) -> TransportGroup | None:
    """Pre-planned group containing `flight` (or a codeshare partner) on `date`."""
    match = find_transport_group_with_direction(flight, date, reference)
    return match.group if match else None


def get_flights_in_same_group(flight: str, date: str, reference: ReferenceData) -> list[str]:
    group = find_transport_group(flight, date, reference)
    return list(group.flights) if group else [flight]


def summarize_transport_plans(reference: ReferenceData) -> list[PlanSummary]:
    out = []
    for date in reference.scheduled_dates():
        plan = reference.transport_plan(date)
        if plan is None:
            continue
        out.append(
            PlanSummary(
                date=date,
                direction=plan.direction,
                group_count=len(plan.groups),
                total_pax=sum(g.combined_pax for g in plan.groups),
                vehicle_counts=dict(Counter(g.vehicle_type for g in plan.groups)),
            )
        )
    return out


def is_midnight_surcharge_time(value: Any) -> bool:
    """Hour >= 23 or < 7. Non-time input is never surcharged."""
    minutes = parse_minutes(value)
    if minutes is None:
        return False
    hour = minutes // 60
    return hour >= SURCHARGE_START_HOUR or hour < SURCHARGE_END_HOUR


def recommended_vehicle(pax: int, reference: ReferenceData) -> VehicleRecommendation:
    """Smallest vehicle class that seats `pax`; several of the largest otherwise."""
    types = sorted(reference.vehicle_types(), key=lambda v: v.max_pax)
    if not types:
        raise ValueError("no vehicle types configured")
    pax = max(pax, 1)
    for vt in types:
        if pax <= vt.max_pax:
            return VehicleRecommendation(vehicle_type=vt)
    largest = types[-1]
    return VehicleRecommendation(vehicle_type=largest, vehicle_count=math.ceil(pax / largest.max_pax))


def has_time_mismatch(a: Any, b: Any, threshold_minutes: int = 30) -> bool:
    """True when both times parse and differ by more than the threshold."""
    ma, mb = parse_minutes(a), parse_minutes(b)
    if ma is None or mb is None:
        return False
    return abs(ma - mb) > threshold_minutes


def format_time_difference(a: Any, b: Any) -> str:
    """Signed b - a, e.g. "+1h 5m" / "-10m"; "" when either side is missing."""
    ma, mb = parse_minutes(a), parse_minutes(b)
    if ma is None or mb is None:
        return ""
    diff = mb - ma
    hours, mins = divmod(abs(diff), 60)
    sign = "+" if diff > 0 else "-"
    if hours:
        return f"{sign}{hours}h {mins}m"
    return f"{sign}{mins}m"


def effective_flight_time(
    guest: Guest, direction: Direction, reference: ReferenceData | None = None
) -> str | None:
    """Verified time > published correction > scheduled time."""
    verified = guest.verified_time(direction)
    if parse_minutes(verified) is not None:
        return verified
    if reference is not None:
        corr = get_time_correction(
            guest.flight_number(direction) or "", guest.flight_date(direction) or "", reference
        )
        if corr is not None:
            return corr.corrected_time
    scheduled = guest.flight_time(direction)
    return scheduled if parse_minutes(scheduled) is not None else None


def group_guests_by_transport_group(
    guests: Iterable[Guest], date: str, direction: Direction, reference: ReferenceData
) -> tuple[list[TransportGroupBucket], list[Guest]]:
    """Bucket live guests travelling on `date` by pre-planned group.

    Returns (buckets in plan order, guests whose flight is in no group).
    """
    plan = reference.transport_plan(date)
    by_group: dict[str, list[Guest]] = {}
    unmatched: list[Guest] = []
    for g in guests:
        if g.is_deleted or g.flight_date(direction) != date:
            continue
        group = find_transport_group(g.flight_number(direction), date, reference)
        if group is None:
            unmatched.append(g)
        else:
            by_group.setdefault(group.id, []).append(g)
    buckets = []
    if plan is not None:
        for group in plan.groups:
            if group.id in by_group:
                buckets.append(TransportGroupBucket(group=group, guests=tuple(by_group[group.id])))
    logger.debug(f"grouped {sum(len(v) for v in by_group.values())} guests into {len(buckets)} groups on {date}")
    return buckets, unmatched


def group_guests_by_time_window(
    guests: Iterable[Guest],
    direction: Direction,
    date: str,
    window_minutes: int = 60,
    assigned_guest_ids: Iterable[str] = (),
    reference: ReferenceData | None = None,
) -> list[TimeWindowGroup]:
    """Unassigned guests needing a transfer on `date`, bucketed by time window.

    Guests without a usable time are skipped. Windows are sorted by start time.
    """
    if window_minutes <= 0:
        raise ValueError("window_minutes must be positive")
    assigned = set(assigned_guest_ids)
    windows: dict[str, list[Guest]] = {}
    for g in guests:
        if g.is_deleted or g.id in assigned:
            continue
        if not g.needs_transfer(direction) or g.flight_date(direction) != date:
            continue
        minutes = parse_minutes(effective_flight_time(g, direction, reference))
        if minutes is None:
            continue
        start = (minutes // window_minutes) * window_minutes
        key = f"{start // 60:02d}:{start % 60:02d}"
        windows.setdefault(key, []).append(g)
    return [TimeWindowGroup(time_window=k, guests=tuple(v)) for k, v in sorted(windows.items())]
