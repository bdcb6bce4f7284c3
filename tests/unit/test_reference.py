from __future__ import annotations

from pathlib import Path

import pytest

from guestops.config.loader import ConfigError
from guestops.config.reference import StaticReferenceData, load_reference_data
from guestops.models.transport import Direction, TimeCorrection, VehicleType

PROJECT_ROOT = Path(__file__).resolve().parents[2]


def test_load_reference_data(write_config: Path):
    ref = load_reference_data(write_config.parent / "reference_data.yml")
    assert [v.code for v in ref.vehicle_types()] == ["SEDAN", "MPV", "VAN", "BUS"]
    assert ref.scheduled_dates() == ["2026-01-18", "2026-01-21"]

    plan = ref.transport_plan("2026-01-18")
    assert plan.direction is Direction.ARRIVAL
    g1, g2 = plan.groups
    assert g1.flights == ("MH128", "FM863")
    assert g2.remark == "Meet at pillar 5"
    assert g2.terminal_2 is False
    assert ref.transport_plan("2026-01-19") is None

    assert ref.codeshare_partners("nh885") == frozenset({"ANA885"})
    assert ref.codeshare_partners("JL7091") == frozenset({"MH089", "MH89"})
    corr = ref.time_correction(" mh132 ", "2026-01-18")
    assert corr.corrected_time == "07:50"
    assert corr.note == "Not 07:25"


def test_repository_reference_data_loads():
    ref = load_reference_data(PROJECT_ROOT / "config" / "reference_data.yml")
    assert ref.scheduled_dates()
    assert {v.code for v in ref.vehicle_types()} >= {"SEDAN", "MPV", "VAN", "BUS"}


def test_codeshares_are_symmetric_but_not_transitive():
    ref = StaticReferenceData(codeshares=[("JL7091", "MH089", "MH89")])
    assert ref.codeshare_partners("MH089") == frozenset({"JL7091"})
    assert ref.codeshare_partners("MH89") == frozenset({"JL7091"})
    assert ref.codeshare_partners("JL7091") == frozenset({"MH089", "MH89"})
    assert ref.codeshare_partners("XX1") == frozenset()


def test_vehicle_types_sorted_by_capacity():
    ref = StaticReferenceData(vehicle_types=[VehicleType("BUS", "Bus", 11, 35), VehicleType("SEDAN", "Sedan", 1, 2)])
    assert [v.code for v in ref.vehicle_types()] == ["SEDAN", "BUS"]


def test_corrections_are_keyed_by_normalized_flight():
    ref = StaticReferenceData(corrections=[TimeCorrection("mh132", "2026-01-18", "07:50")])
    assert ref.time_correction("MH132", "2026-01-18") is not None
    assert ref.time_correction("MH132", "2026-01-19") is None


def test_unknown_group_vehicle_type(temp_workdir: Path):
    p = temp_workdir / "config" / "ref.yml"
    p.write_text(
        """vehicle_types:
  - {code: VAN, name: Van, min_pax: 1, max_pax: 10}
transport_plans:
  "2026-01-18":
    direction: arrival
    groups:
      - {id: G1, flights: [MH128], gather_time: "06:45", transport_time: "07:00", vehicle_type: LIMO, combined_pax: 2}
""",
        encoding="utf-8",
    )
    with pytest.raises(ConfigError, match="unknown vehicle type LIMO"):
        load_reference_data(p)


@pytest.mark.parametrize(
    "body",
    [
        "transport_plans:\n  '18/01/2026': {direction: arrival, groups: []}\n",
        "codeshares:\n  - [JL7091]\n",
        "time_corrections:\n  - {flight: MH132, date: '2026-01-18', corrected_time: '25:00'}\n",
        "extra_table: []\n",
    ],
)
def test_reference_schema_violations(temp_workdir: Path, body: str):
    p = temp_workdir / "config" / "ref.yml"
    p.write_text(body, encoding="utf-8")
    with pytest.raises(ConfigError, match="reference data validation failed"):
        load_reference_data(p)


def test_missing_reference_file(tmp_path: Path):
    with pytest.raises(ConfigError, match="reference data file not found"):
        load_reference_data(tmp_path / "none.yml")
