from __future__ import annotations

import pytest

from guestops.models.audit import ENTITY_ASSIGNMENT, ENTITY_GUEST, SOURCE_MANUAL, SOURCE_SYSTEM
from guestops.models.transport import Assignment, Direction, MatchTier, ScheduleStatus, TransportSchedule
from guestops.services.reallocation import (
    AssignmentNotFoundError,
    CapacityExceededError,
    DuplicateAssignmentError,
    GuestNotFoundError,
    ReallocationError,
    ReallocationTiers,
    ScheduleNotFoundError,
    assign_guest,
    available_capacity,
    find_delayed_guests,
    reassign_guest,
    record_flight_status,
    suggest_reallocation,
    unassign_guest,
)


def _add_schedule(store, sid, pickup, vehicle_id="v-van", direction=Direction.ARRIVAL, **kw):
    store.add_schedule(TransportSchedule(
        id=sid, vehicle_id=vehicle_id, direction=direction, schedule_date="2026-01-18", pickup_time=pickup, **kw
    ))


class TestSuggestReallocation:
    def test_ranks_and_filters(self, transport_store):
        candidates = suggest_reallocation(transport_store, "g-delayed", "arrival")

        assert [c.schedule.id for c in candidates] == ["S-1000", "S-1130"]
        best, fallback = candidates
        assert best.time_diff_minutes == 0
        assert best.tier is MatchTier.GOOD
        assert best.is_recommended
        assert best.available_seats == 10
        assert fallback.time_diff_minutes == 90
        assert fallback.tier is MatchTier.POOR
        assert not fallback.is_recommended

    def test_tie_prefers_more_free_seats(self, transport_store):
        _add_schedule(transport_store, "S-1000b", "10:00", vehicle_id="v-bus")
        ids = [c.schedule.id for c in suggest_reallocation(transport_store, "g-delayed", Direction.ARRIVAL)]
        assert ids[:2] == ["S-1000b", "S-1000"]

    def test_skips_cancelled_and_bad_pickup(self, transport_store):
        _add_schedule(transport_store, "S-0955", "09:55", status=ScheduleStatus.CANCELLED)
        _add_schedule(transport_store, "S-bad", "soon")
        ids = [c.schedule.id for c in suggest_reallocation(transport_store, "g-delayed", "arrival")]
        assert "S-0955" not in ids
        assert "S-bad" not in ids

    def test_acceptable_tier_and_custom_tiers(self, transport_store):
        transport_store.delete_assignment("a-1")
        transport_store.insert_assignment(Assignment("a-9", "g-delayed", "S-1000", Direction.ARRIVAL))
        candidates = suggest_reallocation(transport_store, "g-delayed", "arrival")
        # S-1000 は現在の割当なので除外、次点は S-1130 (90 分)
        assert candidates[0].schedule.id == "S-1130"
        assert not candidates[0].is_recommended

        loose = suggest_reallocation(transport_store, "g-delayed", "arrival", tiers=ReallocationTiers(60, 120))
        assert loose[0].tier is MatchTier.ACCEPTABLE
        assert loose[0].is_recommended

    def test_midnight_surcharge_flag(self, transport_store, make_guest):
        transport_store.insert_guest(make_guest(
            id="g-late", email="late@example.com", arrival_date="2026-01-18", arrival_time="23:10",
        ))
        _add_schedule(transport_store, "S-2330", "23:30")
        (first, *_rest) = suggest_reallocation(transport_store, "g-late", "arrival")
        assert first.schedule.id == "S-2330"
        assert first.midnight_surcharge
        assert first.is_recommended

    def test_uses_verified_time(self, transport_store):
        transport_store.update_guest("g-delayed", {"arrival_verified_time": "11:20"}, expected_version=1)
        candidates = suggest_reallocation(transport_store, "g-delayed", "arrival")
        assert candidates[0].schedule.id == "S-1130"
        assert candidates[0].time_diff_minutes == 10

    def test_guest_without_time_or_unknown(self, transport_store):
        assert suggest_reallocation(transport_store, "g-other", "arrival") == []
        with pytest.raises(GuestNotFoundError):
            suggest_reallocation(transport_store, "nobody", "arrival")


class TestReassignGuest:
    def test_moves_assignment_and_audits(self, transport_store):
        moved = reassign_guest(transport_store, "g-delayed", "S-0700", "S-1000", "arrival", performed_by="desk")

        assert moved.schedule_id == "S-1000"
        assert moved.id != "a-1"
        assert transport_store.get_assignment("g-delayed", Direction.ARRIVAL) == moved
        assert transport_store.count_assigned("S-0700") == 0
        (audit,) = transport_store.list_audit(moved.id)
        assert audit.entity_type == ENTITY_ASSIGNMENT
        assert audit.action == "update"
        assert audit.change_source == SOURCE_MANUAL
        assert audit.performed_by == "desk"
        assert audit.changes[0].to_dict() == {
            "field": "schedule_id", "old_value": "S-0700", "new_value": "S-1000", "field_type": "string",
        }

    def test_full_vehicle_leaves_store_unchanged(self, transport_store):
        with pytest.raises(CapacityExceededError, match="full capacity"):
            reassign_guest(transport_store, "g-delayed", "S-0700", "S-1015", "arrival")
        assert transport_store.get_assignment("g-delayed", Direction.ARRIVAL).id == "a-1"
        assert transport_store.list_audit() == []

    def test_inactive_vehicle(self, transport_store):
        with pytest.raises(CapacityExceededError, match="no active vehicle"):
            reassign_guest(transport_store, "g-delayed", "S-0700", "S-0945", "arrival")

    def test_direction_and_status_checks(self, transport_store):
        _add_schedule(transport_store, "S-DEP", "12:00", direction=Direction.DEPARTURE)
        _add_schedule(transport_store, "S-OFF", "10:30", status=ScheduleStatus.COMPLETED)
        with pytest.raises(ReallocationError, match="departure schedule"):
            reassign_guest(transport_store, "g-delayed", "S-0700", "S-DEP", "arrival")
        with pytest.raises(ReallocationError, match="completed"):
            reassign_guest(transport_store, "g-delayed", "S-0700", "S-OFF", "arrival")

    def test_lookup_errors(self, transport_store):
        with pytest.raises(ScheduleNotFoundError):
            reassign_guest(transport_store, "g-delayed", "S-0700", "S-none", "arrival")
        with pytest.raises(AssignmentNotFoundError):
            reassign_guest(transport_store, "g-delayed", "S-1130", "S-1000", "arrival")
        with pytest.raises(AssignmentNotFoundError):
            reassign_guest(transport_store, "g-delayed", "S-0700", "S-1000", "departure")
        with pytest.raises(GuestNotFoundError):
            reassign_guest(transport_store, "nobody", "S-0700", "S-1000", "arrival")

    def test_same_schedule_is_a_no_op(self, transport_store):
        current = reassign_guest(transport_store, "g-delayed", "S-0700", "S-0700", "arrival")
        assert current.id == "a-1"
        assert transport_store.list_audit() == []


def test_assign_and_unassign(transport_store, make_guest):
    transport_store.insert_guest(make_guest(id="g-new", email="new@example.com", arrival_date="2026-01-18"))
    created = assign_guest(transport_store, "g-new", "S-1130", performed_by="desk")
    assert created.direction is Direction.ARRIVAL
    assert transport_store.list_audit(created.id)[0].action == "create"

    with pytest.raises(DuplicateAssignmentError):
        assign_guest(transport_store, "g-new", "S-1000")

    removed = unassign_guest(transport_store, "g-new", "arrival")
    assert removed.id == created.id
    assert transport_store.get_assignment("g-new", Direction.ARRIVAL) is None
    assert [a.action for a in transport_store.list_audit(created.id)] == ["create", "delete"]
    with pytest.raises(AssignmentNotFoundError):
        unassign_guest(transport_store, "g-new", "arrival")


def test_assign_guest_to_full_schedule(transport_store, make_guest):
    transport_store.insert_guest(make_guest(id="g-new", email="new@example.com"))
    with pytest.raises(CapacityExceededError):
        assign_guest(transport_store, "g-new", "S-1015")
    with pytest.raises(ScheduleNotFoundError):
        assign_guest(transport_store, "g-new", "S-none")


def test_record_flight_status_sets_mismatch_and_audits(transport_store, caplog):
    guest = record_flight_status(transport_store, "g-delayed", "arrival", "11:15", "Delayed")

    assert guest.arrival_verified_time == "11:15"
    assert guest.arrival_flight_status == "delayed"
    assert guest.arrival_time_mismatch is True
    assert guest.version == 2
    (audit,) = transport_store.list_audit("g-delayed")
    assert audit.entity_type == ENTITY_GUEST
    assert audit.change_source == SOURCE_SYSTEM
    assert {c.field for c in audit.changes} == {
        "arrival_verified_time", "arrival_flight_status", "arrival_time_mismatch",
    }
    assert any("flight time mismatch" in r.getMessage() for r in caplog.records)

    # 同じ値の再記録は何もしない
    again = record_flight_status(transport_store, "g-delayed", "arrival", "11:15", "delayed")
    assert again.version == 2
    assert len(transport_store.list_audit("g-delayed")) == 1


def test_record_flight_status_within_threshold(transport_store):
    guest = record_flight_status(transport_store, "g-delayed", "arrival", "10:20", "landed")
    assert guest.arrival_time_mismatch is False
    (audit,) = transport_store.list_audit("g-delayed")
    assert {c.field for c in audit.changes} == {"arrival_verified_time", "arrival_flight_status"}


def test_find_delayed_guests(transport_store, make_guest):
    transport_store.insert_guest(make_guest(
        id="g-cx", email="cx@example.com", departure_date="2026-01-18", departure_flight_status="cancelled",
    ))
    transport_store.insert_guest(make_guest(id="g-ok", email="ok@example.com", arrival_date="2026-01-18"))
    record_flight_status(transport_store, "g-delayed", "arrival", "12:00", "delayed")

    assert [g.id for g in find_delayed_guests(transport_store, "2026-01-18")] == ["g-delayed", "g-cx"]
    assert [g.id for g in find_delayed_guests(transport_store, "2026-01-18", "departure")] == ["g-cx"]
    assert find_delayed_guests(transport_store, "2026-01-19") == []


def test_available_capacity(transport_store):
    caps = available_capacity(transport_store, "2026-01-18", "arrival")
    assert [(c.schedule.id, c.available_seats) for c in caps] == [("S-0700", 34), ("S-1000", 10), ("S-1130", 35)]
    assert available_capacity(transport_store, "2026-01-18", Direction.DEPARTURE) == []
