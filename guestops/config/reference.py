from __future__ import annotations

from collections import defaultdict
from pathlib import Path
from typing import Any, Protocol

import yaml

from ..models.transport import (
    Direction,
    TimeCorrection,
    TransportGroup,
    TransportPlan,
    VehicleType,
)
from ..services.flight_matching import normalize_flight_number
from .loader import ConfigError, validate_against_schema

"""Event reference data: vehicle classes, transport plans, codeshares, corrections.

Flight matching and reallocation read these tables through the ReferenceData
protocol so an event can swap in its own provider (tests use small in-memory
tables). StaticReferenceData is the YAML backed default.
"""

__all__ = [
    "ReferenceData",
    "StaticReferenceData",
    "REFERENCE_SCHEMA_PATH",
    "load_reference_data",
]

REFERENCE_SCHEMA_PATH = Path(__file__).parent / "reference_schema.json"


class ReferenceData(Protocol):
    def codeshare_partners(self, flight: str) -> frozenset[str]: ...

    def time_correction(self, flight: str, date: str) -> TimeCorrection | None: ...

    def transport_plan(self, date: str) -> TransportPlan | None: ...

    def scheduled_dates(self) -> list[str]: ...

    def vehicle_types(self) -> list[VehicleType]: ...


class StaticReferenceData:
    """In-memory reference tables. Codeshare pairs are stored symmetrically."""

    def __init__(
        self,
        vehicle_types: list[VehicleType] | None = None,
        plans: list[TransportPlan] | None = None,
        codeshares: list[tuple[str, ...]] | None = None,
        corrections: list[TimeCorrection] | None = None,
    ) -> None:
        self._vehicle_types = sorted(vehicle_types or [], key=lambda v: (v.max_pax, v.code))
        self._plans = {p.date: p for p in plans or []}
        self._codeshares: dict[str, set[str]] = defaultdict(set)
        # 先頭便と残りの便をペアにする (A-B, A-C)。推移的には結ばない
        for entry in codeshares or []:
            head, *rest = [normalize_flight_number(f) for f in entry]
            for other in rest:
                if other and other != head:
                    self._codeshares[head].add(other)
                    self._codeshares[other].add(head)
        self._corrections = {
            (normalize_flight_number(c.flight), c.date): c for c in corrections or []
        }

    def codeshare_partners(self, flight: str) -> frozenset[str]:
        return frozenset(self._codeshares.get(normalize_flight_number(flight), ()))

    def time_correction(self, flight: str, date: str) -> TimeCorrection | None:
        return self._corrections.get((normalize_flight_number(flight), date))

    def transport_plan(self, date: str) -> TransportPlan | None:
        return self._plans.get(date)

    def scheduled_dates(self) -> list[str]:
        return sorted(self._plans)

    def vehicle_types(self) -> list[VehicleType]:
        return list(self._vehicle_types)


def _group_from_raw(raw: dict[str, Any]) -> TransportGroup:
    return TransportGroup(
        id=raw["id"],
        flights=tuple(raw["flights"]),
        gather_time=raw["gather_time"],
        transport_time=raw["transport_time"],
        vehicle_type=raw["vehicle_type"],
        combined_pax=raw["combined_pax"],
        remark=raw.get("remark"),
        terminal_2=bool(raw.get("terminal_2", False)),
    )


def load_reference_data(path: Path) -> StaticReferenceData:
    """Load and validate a reference YAML file (see config/reference_data.yml)."""
    path = Path(path)
    if not path.exists():
        raise ConfigError(f"reference data file not found: {path}")
    try:
        data = yaml.safe_load(path.read_text(encoding="utf-8")) or {}
    except yaml.YAMLError as e:
        raise ConfigError(f"invalid yaml: {e}") from e

    validate_against_schema(data, REFERENCE_SCHEMA_PATH, "reference data")

    plans = [
        TransportPlan(
            date=date,
            direction=Direction(raw["direction"]),
            groups=tuple(_group_from_raw(g) for g in raw["groups"]),
        )
        for date, raw in (data.get("transport_plans") or {}).items()
    ]
    known_types = {v["code"] for v in data.get("vehicle_types") or []}
    for plan in plans:
        for g in plan.groups:
            if known_types and g.vehicle_type not in known_types:
                raise ConfigError(
                    f"reference data validation failed: group {g.id} on {plan.date} "
                    f"uses unknown vehicle type {g.vehicle_type}"
                )
    return StaticReferenceData(
        vehicle_types=[VehicleType(**v) for v in data.get("vehicle_types") or []],
        plans=plans,
        codeshares=[tuple(pair) for pair in data.get("codeshares") or []],
        corrections=[TimeCorrection(**c) for c in data.get("time_corrections") or []],
    )
