# Shared pytest fixtures
from __future__ import annotations

import io
from collections.abc import Callable
from pathlib import Path
from typing import Any

import pandas as pd
import pytest

from guestops.config.reference import StaticReferenceData
from guestops.db.store import InMemoryStore
from guestops.logging.init import reset_logging
from guestops.models.guest import Guest
from guestops.models.transport import (
    Direction,
    TimeCorrection,
    TransportGroup,
    TransportPlan,
    TransportSchedule,
    Vehicle,
    VehicleType,
)

PROJECT_ROOT = Path(__file__).resolve().parents[1]


@pytest.fixture()
def temp_workdir(tmp_path: Path, monkeypatch) -> Path:
    (tmp_path / "config").mkdir()
    (tmp_path / "data").mkdir()
    (tmp_path / "logs").mkdir()
    monkeypatch.chdir(tmp_path)
    monkeypatch.setenv("DISABLE_DB_CONNECT", "1")
    yield tmp_path


@pytest.fixture(autouse=True)
def _clean_logging():
    reset_logging()
    yield
    reset_logging()


@pytest.fixture()
def sample_config_yaml() -> str:
    return """timezone: UTC
database:
  host: localhost
  port: 5432
  user: appuser
  password: secret
  database: appdb
null_sentinels: ["N/A", "TBC"]
date_order: dmy
auto_map_strategy: optimal
reference_data: reference_data.yml
logs_directory: logs
analyzer:
  large_batch_threshold: 50
  removal_threshold: 10
  max_example_items: 5
reallocation:
  good_minutes: 30
  acceptable_minutes: 60
time_mismatch_threshold_minutes: 30
"""


@pytest.fixture()
def sample_reference_yaml() -> str:
    return """vehicle_types:
  - {code: SEDAN, name: Sedan, min_pax: 1, max_pax: 2}
  - {code: MPV, name: MPV, min_pax: 3, max_pax: 4}
  - {code: VAN, name: Van, min_pax: 5, max_pax: 10}
  - {code: BUS, name: Bus, min_pax: 11, max_pax: 35}
transport_plans:
  "2026-01-18":
    direction: arrival
    groups:
      - {id: G1, flights: [MH128, FM863], gather_time: "06:45", transport_time: "07:00", vehicle_type: BUS, combined_pax: 24}
      - {id: G2, flights: [NH885], gather_time: "07:50", transport_time: "08:00", vehicle_type: VAN, combined_pax: 6, remark: "Meet at pillar 5"}
  "2026-01-21":
    direction: departure
    groups:
      - {id: G1, flights: [FM864], gather_time: "09:00", transport_time: "09:15", vehicle_type: MPV, combined_pax: 3}
codeshares:
  - [ANA885, NH885]
  - [JL7091, MH089]
  - [JL7091, MH89]
time_corrections:
  - {flight: MH132, date: "2026-01-18", corrected_time: "07:50", note: "Not 07:25"}
"""


@pytest.fixture()
def write_config(temp_workdir: Path, sample_config_yaml: str, sample_reference_yaml: str) -> Path:
    cfg = temp_workdir / "config" / "import.yml"
    cfg.write_text(sample_config_yaml, encoding="utf-8")
    (temp_workdir / "config" / "reference_data.yml").write_text(sample_reference_yaml, encoding="utf-8")
    return cfg


@pytest.fixture()
def reference() -> StaticReferenceData:
    return StaticReferenceData(
        vehicle_types=[
            VehicleType("SEDAN", "Sedan", 1, 2),
            VehicleType("MPV", "MPV", 3, 4),
            VehicleType("STAREX", "Starex", 5, 7),
            VehicleType("VAN", "Van", 8, 10),
            VehicleType("BUS", "Bus", 11, 35),
        ],
        plans=[
            TransportPlan(
                date="2026-01-18",
                direction=Direction.ARRIVAL,
                groups=(
                    TransportGroup("G1", ("MU8591", "FM863", "MH128"), "06:45", "07:00", "BUS", 24),
                    TransportGroup("G2", ("NH885", "ANA885", "MH181"), "07:50", "08:00", "BUS", 25),
                    TransportGroup("G9", ("JL7091",), "15:00", "15:00", "STAREX", 5),
                ),
            ),
            TransportPlan(
                date="2026-01-21",
                direction=Direction.DEPARTURE,
                groups=(TransportGroup("G1", ("FM864",), "09:00", "09:15", "MPV", 3),),
            ),
        ],
        codeshares=[("GA9282", "MH712"), ("JL7091", "MH089"), ("JL7091", "MH89"), ("FM864", "MU8592")],
        corrections=[TimeCorrection("MH132", "2026-01-18", "07:50", "Not 07:25")],
    )


@pytest.fixture()
def make_guest() -> Callable[..., Guest]:
    counter = {"n": 0}

    def _make(**kwargs: Any) -> Guest:
        counter["n"] += 1
        n = counter["n"]
        data: dict[str, Any] = {
            "id": f"g{n}",
            "email": f"guest{n}@example.com",
            "first_name": f"First{n}",
            "last_name": f"Last{n}",
        }
        data.update(kwargs)
        return Guest(**data)

    return _make


@pytest.fixture()
def store() -> InMemoryStore:
    return InMemoryStore()


@pytest.fixture()
def transport_store(store: InMemoryStore, make_guest) -> InMemoryStore:
    """Guest g-delayed (arrival 2026-01-18 10:00) assigned to S-0700, plus four other schedules."""
    store.insert_guest(make_guest(
        id="g-delayed", email="delayed@example.com", first_name="Dee", last_name="Layed",
        arrival_date="2026-01-18", arrival_time="10:00", arrival_flight_number="MH128",
        needs_arrival_transfer=True,
    ))
    store.add_vehicle(Vehicle(id="v-bus", name="Bus 1", vehicle_type="BUS", capacity=35))
    store.add_vehicle(Vehicle(id="v-van", name="Van 1", vehicle_type="VAN", capacity=10))
    store.add_vehicle(Vehicle(id="v-mpv", name="MPV 1", vehicle_type="MPV", capacity=1))
    store.add_vehicle(Vehicle(id="v-old", name="Retired", vehicle_type="VAN", capacity=10, is_active=False))
    for sid, vid, pickup in (
        ("S-0700", "v-bus", "07:00"),
        ("S-1000", "v-van", "10:00"),
        ("S-1130", "v-bus", "11:30"),
        ("S-1015", "v-mpv", "10:15"),
        ("S-0945", "v-old", "09:45"),
    ):
        store.add_schedule(TransportSchedule(
            id=sid, vehicle_id=vid, direction=Direction.ARRIVAL, schedule_date="2026-01-18", pickup_time=pickup,
        ))
    from guestops.models.transport import Assignment
    store.insert_assignment(Assignment(id="a-1", guest_id="g-delayed", schedule_id="S-0700", direction=Direction.ARRIVAL))
    # MPV (capacity 1) は満席
    store.insert_guest(make_guest(id="g-other", email="other@example.com", arrival_date="2026-01-18"))
    store.insert_assignment(Assignment(id="a-2", guest_id="g-other", schedule_id="S-1015", direction=Direction.ARRIVAL))
    return store


def build_xlsx(rows: list[dict[str, Any]], columns: list[str] | None = None, sheet_name: str = "Guests") -> bytes:
    """Build an .xlsx payload with pandas + openpyxl."""
    df = pd.DataFrame(rows, columns=columns)
    buf = io.BytesIO()
    with pd.ExcelWriter(buf, engine="openpyxl") as writer:
        df.to_excel(writer, sheet_name=sheet_name, index=False)
    return buf.getvalue()


@pytest.fixture()
def xlsx_builder() -> Callable[..., bytes]:
    return build_xlsx


@pytest.fixture()
def roster_rows() -> list[dict[str, Any]]:
    return [
        {"Email": "ann@example.com", "First Name": "Anne", "Last Name": "Lee",
         "Arrival Date": "18/01/2026", "Arrival Flight": "MH128"},
        {"Email": "bob@example.com", "First Name": "Bob", "Last Name": "Tan",
         "Arrival Date": "18/01/2026", "Arrival Flight": "SQ106"},
        {"Email": "cat@example.com", "First Name": "Cat", "Last Name": "Ng",
         "Arrival Date": "2026-01-19", "Arrival Flight": "N/A"},
    ]
