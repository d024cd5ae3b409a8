#!/usr/bin/env python3
"""Tests for AssignmentScheduler."""

import random
import threading
from concurrent.futures import ThreadPoolExecutor
from datetime import timedelta

import pytest

from models import (
    AssignmentStatus,
    BlockStatus,
    ConflictError,
    Driver,
    InvalidStateError,
    NotFoundError,
    PersistenceError,
    ValidationError,
    Vehicle,
    VehicleStatus,
    as_utc,
    windows_overlap,
)
from scheduling import AssignmentScheduler, EventType, ResourceRepository


def t(day, hour=0):
    return f"2024-01-{day:02d}T{hour:02d}:00:00Z"


def vehicle_status(repository, vehicle_id="V1"):
    return repository.get_vehicle(vehicle_id).status


class BrokenSink:
    def emit(self, event):
        raise RuntimeError("sink offline")


class FlakyRepository(ResourceRepository):
    failing = False

    def _persist(self):
        if self.failing:
            raise PersistenceError("disk full")


# =============================================================================
# Creating assignments
# =============================================================================


class TestCreateAssignment:
    """Tests for create_assignment."""

    def test_end_to_end(self, scheduler, repository):
        first = scheduler.create_assignment("V1", "D1", t(1), t(5))
        assert first.status == AssignmentStatus.ACTIVE
        assert vehicle_status(repository) == VehicleStatus.ASSIGNED

        with pytest.raises(ConflictError):
            scheduler.create_assignment("V1", "D2", t(3), t(6))

        scheduler.complete_assignment(first.id)
        assert vehicle_status(repository) == VehicleStatus.AVAILABLE

        second = scheduler.create_assignment("V1", "D2", t(3), t(6))
        assert second.status == AssignmentStatus.ACTIVE
        assert vehicle_status(repository) == VehicleStatus.ASSIGNED

    def test_conflict_names_the_conflicting_record(self, scheduler):
        first = scheduler.create_assignment("V1", "D1", t(1), t(5))
        with pytest.raises(ConflictError) as exc_info:
            scheduler.create_assignment("V1", "D2", t(3), t(6))
        error = exc_info.value
        assert error.resource_kind == "vehicle"
        assert error.conflicting_kind == "assignment"
        assert error.conflicting_id == first.id
        assert error.conflicting_start == as_utc(t(1))
        assert error.conflicting_end == as_utc(t(5))
        assert not error.retryable

    def test_driver_cannot_hold_two_vehicles(self, scheduler, repository):
        scheduler.create_assignment("V1", "D1", t(1), t(5))
        with pytest.raises(ConflictError) as exc_info:
            scheduler.create_assignment("V2", "D1", t(4), t(8))
        assert exc_info.value.resource_kind == "driver"
        assert vehicle_status(repository, "V2") == VehicleStatus.AVAILABLE
        assert repository.list_assignments(vehicle_id="V2") == []

    def test_adjacent_windows_both_succeed(self, scheduler, repository):
        scheduler.create_assignment("V1", "D1", t(1), t(5))
        scheduler.create_assignment("V1", "D2", t(5), t(8))
        scheduler.create_assignment("V2", "D1", t(5), t(6))
        assert len(repository.list_assignments(status=AssignmentStatus.ACTIVE)) == 3

    def test_end_before_start_raises(self, scheduler, repository):
        with pytest.raises(ValidationError):
            scheduler.create_assignment("V1", "D1", t(5), t(1))
        assert repository.list_assignments() == []

    def test_zero_length_raises(self, scheduler):
        with pytest.raises(ValidationError):
            scheduler.create_assignment("V1", "D1", t(5), t(5))

    def test_unknown_vehicle_raises(self, scheduler):
        with pytest.raises(NotFoundError, match="Vehicle 'V9'"):
            scheduler.create_assignment("V9", "D1", t(1), t(2))

    def test_unknown_driver_raises(self, scheduler):
        with pytest.raises(NotFoundError, match="Driver 'D9'"):
            scheduler.create_assignment("V1", "D9", t(1), t(2))

    def test_blocked_window_conflicts(self, scheduler):
        block = scheduler.create_block("V1", t(10), t(12), "NCT")
        with pytest.raises(ConflictError) as exc_info:
            scheduler.create_assignment("V1", "D1", t(11), t(13))
        assert exc_info.value.conflicting_kind == "block"
        assert exc_info.value.conflicting_id == block.id

    def test_future_assignment_marks_vehicle_assigned(self, scheduler, repository):
        scheduler.create_assignment("V1", "D1", t(20), t(21))
        assert vehicle_status(repository) == VehicleStatus.ASSIGNED

    def test_audit_fields(self, scheduler, clock):
        a = scheduler.create_assignment("V1", "D1", t(1), t(5), "site visit", actor="dispatcher")
        assert a.assigned_by == "dispatcher"
        assert a.created_at == clock.now()
        assert a.reason == "site visit"

    def test_failed_persist_leaves_no_trace(self, clock, sink):
        repo = FlakyRepository()
        repo.add_vehicle(Vehicle("V1", "12-D-1234", "Corolla"))
        repo.add_driver(Driver("D1", "Aoife Byrne"))
        repo.failing = True
        scheduler = AssignmentScheduler(repo, clock=clock, sink=sink)

        with pytest.raises(PersistenceError) as exc_info:
            scheduler.create_assignment("V1", "D1", t(1), t(5))

        assert exc_info.value.retryable
        assert repo.list_assignments() == []
        assert vehicle_status(repo) == VehicleStatus.AVAILABLE
        assert sink.events == []


# =============================================================================
# Completing and cancelling
# =============================================================================


class TestCompleteAssignment:
    """Tests for complete_assignment."""

    def test_complete_keeps_schedule(self, scheduler, repository, clock):
        a = scheduler.create_assignment("V1", "D1", t(1), t(5))
        done = scheduler.complete_assignment(a.id, actor="yard")
        assert done.status == AssignmentStatus.COMPLETED
        assert done.end_time == as_utc(t(5))
        assert done.closed_by == "yard"
        assert done.closed_at == clock.now()
        assert vehicle_status(repository) == VehicleStatus.AVAILABLE

    def test_early_return_shortens_window(self, scheduler, repository):
        a = scheduler.create_assignment("V1", "D1", t(1), t(5))
        done = scheduler.complete_assignment(a.id, completion_time=t(3, 12))
        assert done.end_time == as_utc(t(3, 12))
        assert repository.get_assignment(a.id).end_time == as_utc(t(3, 12))

    def test_late_return_keeps_window(self, scheduler):
        a = scheduler.create_assignment("V1", "D1", t(1), t(5))
        done = scheduler.complete_assignment(a.id, completion_time=t(6))
        assert done.end_time == as_utc(t(5))

    def test_completion_before_start_raises(self, scheduler, repository):
        a = scheduler.create_assignment("V1", "D1", t(2), t(5))
        with pytest.raises(ValidationError):
            scheduler.complete_assignment(a.id, completion_time=t(1))
        assert repository.get_assignment(a.id).status == AssignmentStatus.ACTIVE

    def test_complete_twice_raises_invalid_state(self, scheduler):
        a = scheduler.create_assignment("V1", "D1", t(1), t(5))
        scheduler.complete_assignment(a.id)
        with pytest.raises(InvalidStateError) as exc_info:
            scheduler.complete_assignment(a.id)
        assert exc_info.value.status == "completed"
        assert exc_info.value.action == "complete"

    def test_unknown_assignment_raises(self, scheduler):
        with pytest.raises(NotFoundError):
            scheduler.complete_assignment("nope")

    def test_other_active_assignment_keeps_vehicle_assigned(self, scheduler, repository):
        first = scheduler.create_assignment("V1", "D1", t(1), t(5))
        scheduler.create_assignment("V1", "D2", t(6), t(8))
        scheduler.complete_assignment(first.id)
        assert vehicle_status(repository) == VehicleStatus.ASSIGNED

    def test_falls_back_to_blocked(self, scheduler, repository, clock):
        clock.set(t(10, 12))
        a = scheduler.create_assignment("V1", "D1", t(1), t(5))
        scheduler.create_block("V1", t(10), t(12))
        scheduler.complete_assignment(a.id)
        assert vehicle_status(repository) == VehicleStatus.BLOCKED

    def test_completed_window_frees_vehicle_and_driver(self, scheduler):
        a = scheduler.create_assignment("V1", "D1", t(1), t(5))
        scheduler.complete_assignment(a.id, completion_time=t(3))
        scheduler.create_assignment("V1", "D2", t(3), t(5))
        scheduler.create_assignment("V2", "D1", t(3), t(5))


class TestCancelAssignment:
    """Tests for cancel_assignment."""

    def test_cancel(self, scheduler, repository):
        a = scheduler.create_assignment("V1", "D1", t(1), t(5))
        cancelled = scheduler.cancel_assignment(a.id, reason="trip off", actor="dispatcher")
        assert cancelled.status == AssignmentStatus.CANCELLED
        assert cancelled.cancel_reason == "trip off"
        assert cancelled.closed_by == "dispatcher"
        assert cancelled.end_time == as_utc(t(5))
        assert vehicle_status(repository) == VehicleStatus.AVAILABLE

    def test_cancel_completed_raises(self, scheduler):
        a = scheduler.create_assignment("V1", "D1", t(1), t(5))
        scheduler.complete_assignment(a.id)
        with pytest.raises(InvalidStateError):
            scheduler.cancel_assignment(a.id)

    def test_cancel_twice_raises(self, scheduler):
        a = scheduler.create_assignment("V1", "D1", t(1), t(5))
        scheduler.cancel_assignment(a.id)
        with pytest.raises(InvalidStateError, match="Cannot cancel assignment"):
            scheduler.cancel_assignment(a.id)

    def test_records_are_retained(self, scheduler, repository):
        a = scheduler.create_assignment("V1", "D1", t(1), t(5))
        scheduler.cancel_assignment(a.id)
        assert repository.get_assignment(a.id) is not None


# =============================================================================
# Notifications
# =============================================================================


class TestNotifications:
    """Lifecycle events are delivered after commit."""

    def test_events_in_order(self, scheduler, sink):
        a = scheduler.create_assignment("V1", "D1", t(1), t(5))
        b = scheduler.create_assignment("V2", "D2", t(1), t(5))
        scheduler.complete_assignment(a.id)
        scheduler.cancel_assignment(b.id)

        assert [e.type for e in sink.events] == [
            EventType.ASSIGNMENT_CREATED,
            EventType.ASSIGNMENT_CREATED,
            EventType.ASSIGNMENT_COMPLETED,
            EventType.ASSIGNMENT_CANCELLED,
        ]

    def test_event_carries_full_record(self, scheduler, sink):
        a = scheduler.create_assignment("V1", "D1", t(1), t(5), "site visit")
        scheduler.complete_assignment(a.id)
        created, completed = sink.events
        assert created.assignment.id == a.id
        assert created.assignment.status == AssignmentStatus.ACTIVE
        assert created.assignment.reason == "site visit"
        assert completed.assignment.status == AssignmentStatus.COMPLETED

    def test_failed_operation_emits_nothing(self, scheduler, sink):
        scheduler.create_assignment("V1", "D1", t(1), t(5))
        with pytest.raises(ConflictError):
            scheduler.create_assignment("V1", "D2", t(2), t(3))
        assert len(sink.events) == 1

    def test_failing_sink_does_not_roll_back(self, repository, clock, caplog):
        scheduler = AssignmentScheduler(repository, clock=clock, sink=BrokenSink())

        a = scheduler.create_assignment("V1", "D1", t(1), t(5))
        scheduler.cancel_assignment(a.id)

        assert repository.get_assignment(a.id).status == AssignmentStatus.CANCELLED
        assert "Notification sink failed" in caplog.text

    def test_blocks_emit_nothing(self, scheduler, sink):
        block = scheduler.create_block("V1", t(1), t(2))
        scheduler.complete_block(block.id)
        assert sink.events == []


# =============================================================================
# Blocks
# =============================================================================


class TestBlocks:
    """Tests for create_block / complete_block."""

    def test_block_covering_now(self, scheduler, repository):
        block = scheduler.create_block("V1", t(1), t(3), "NCT", actor="fleet manager")
        assert block.status == BlockStatus.ACTIVE
        assert block.blocked_by == "fleet manager"
        assert vehicle_status(repository) == VehicleStatus.BLOCKED

    def test_future_block_leaves_vehicle_available(self, scheduler, repository):
        scheduler.create_block("V1", t(10), t(12))
        assert vehicle_status(repository) == VehicleStatus.AVAILABLE

    def test_block_overlapping_assignment_conflicts(self, scheduler):
        scheduler.create_assignment("V1", "D1", t(1), t(5))
        with pytest.raises(ConflictError):
            scheduler.create_block("V1", t(4), t(6))

    def test_blocks_do_not_overlap(self, scheduler):
        scheduler.create_block("V1", t(1), t(5))
        with pytest.raises(ConflictError):
            scheduler.create_block("V1", t(2), t(3))

    def test_blocked_takes_precedence_over_assigned(self, scheduler, repository):
        scheduler.create_block("V1", t(1), t(3))
        scheduler.create_assignment("V1", "D1", t(4), t(6))
        assert vehicle_status(repository) == VehicleStatus.BLOCKED

    def test_complete_block_ends_it_now(self, scheduler, repository, clock):
        clock.set(t(1))
        block = scheduler.create_block("V1", t(1), t(5))
        scheduler.create_assignment("V1", "D1", t(6), t(8))
        clock.set(t(2, 9))

        done = scheduler.complete_block(block.id, actor="yard")

        assert done.status == BlockStatus.COMPLETED
        assert done.end_time == as_utc(t(2, 9))
        assert done.closed_by == "yard"
        assert vehicle_status(repository) == VehicleStatus.ASSIGNED

    def test_complete_future_block_keeps_window(self, scheduler, repository):
        block = scheduler.create_block("V1", t(10), t(12))
        done = scheduler.complete_block(block.id)
        assert done.end_time == as_utc(t(12))
        assert vehicle_status(repository) == VehicleStatus.AVAILABLE

    def test_complete_block_at_explicit_time(self, scheduler):
        block = scheduler.create_block("V1", t(1), t(5))
        done = scheduler.complete_block(block.id, completion_time=t(3))
        assert done.end_time == as_utc(t(3))

    def test_complete_block_twice_raises(self, scheduler):
        block = scheduler.create_block("V1", t(1), t(5))
        scheduler.complete_block(block.id)
        with pytest.raises(InvalidStateError):
            scheduler.complete_block(block.id)

    def test_unknown_block_raises(self, scheduler):
        with pytest.raises(NotFoundError):
            scheduler.complete_block("nope")

    def test_unknown_vehicle_raises(self, scheduler):
        with pytest.raises(NotFoundError):
            scheduler.create_block("V9", t(1), t(5))


# =============================================================================
# Queries and refresh
# =============================================================================


class TestQueries:

    def test_assignments_newest_first(self, scheduler):
        scheduler.create_assignment("V1", "D1", t(1), t(2))
        scheduler.create_assignment("V1", "D1", t(5), t(6))
        scheduler.create_assignment("V1", "D2", t(3), t(4))
        starts = [a.start_time for a in scheduler.assignments_for_vehicle("V1")]
        assert starts == sorted(starts, reverse=True)

    def test_filter_by_status(self, scheduler):
        a = scheduler.create_assignment("V1", "D1", t(1), t(2))
        scheduler.create_assignment("V1", "D1", t(5), t(6))
        scheduler.cancel_assignment(a.id)
        cancelled = scheduler.assignments_for_driver("D1", AssignmentStatus.CANCELLED)
        assert [x.id for x in cancelled] == [a.id]

    def test_unknown_vehicle_raises(self, scheduler):
        with pytest.raises(NotFoundError):
            scheduler.assignments_for_vehicle("V9")

    def test_get_assignment(self, scheduler):
        a = scheduler.create_assignment("V1", "D1", t(1), t(2))
        assert scheduler.get_assignment(a.id).driver_id == "D1"
        with pytest.raises(NotFoundError):
            scheduler.get_assignment("nope")

    def test_blocks_for_vehicle(self, scheduler):
        block = scheduler.create_block("V1", t(1), t(2))
        assert [b.id for b in scheduler.blocks_for_vehicle("V1")] == [block.id]
        assert scheduler.blocks_for_vehicle("V2") == []


class TestRefresh:
    """Block coverage changes with the clock alone."""

    def test_block_starts_and_ends(self, scheduler, repository, clock):
        scheduler.create_block("V1", t(10), t(12))
        assert vehicle_status(repository) == VehicleStatus.AVAILABLE

        clock.set(t(11))
        assert scheduler.refresh_vehicle_status("V1") == VehicleStatus.BLOCKED
        assert vehicle_status(repository) == VehicleStatus.BLOCKED

        clock.set(t(12))
        assert scheduler.refresh_vehicle_status("V1") == VehicleStatus.AVAILABLE

    def test_refresh_all(self, scheduler, repository, clock):
        scheduler.create_block("V2", t(10), t(12))
        scheduler.create_assignment("V1", "D1", t(1), t(5))
        clock.set(t(10))
        vehicles = {v.id: v.status for v in scheduler.refresh_all()}
        assert vehicles == {"V1": VehicleStatus.ASSIGNED, "V2": VehicleStatus.BLOCKED}

    def test_unknown_vehicle_raises(self, scheduler):
        with pytest.raises(NotFoundError):
            scheduler.refresh_vehicle_status("V9")


# =============================================================================
# Concurrency
# =============================================================================


class TestConcurrency:
    """Conflict check and insert happen under the same locks."""

    N = 8

    @pytest.fixture
    def crowded(self, repository):
        for i in range(self.N):
            repository.add_driver(Driver(f"X{i}", f"Driver {i}"))
        return repository

    def _race(self, calls):
        barrier = threading.Barrier(len(calls))

        def run(call):
            barrier.wait()
            try:
                return call()
            except ConflictError as e:
                return e

        with ThreadPoolExecutor(max_workers=len(calls)) as pool:
            return list(pool.map(run, calls))

    def test_one_winner_per_vehicle(self, crowded, clock):
        scheduler = AssignmentScheduler(crowded, clock=clock)
        calls = [
            (lambda i=i: scheduler.create_assignment("V1", f"X{i}", t(1, i), t(5, i)))
            for i in range(self.N)
        ]

        results = self._race(calls)

        conflicts = [r for r in results if isinstance(r, ConflictError)]
        assert len(conflicts) == self.N - 1
        assert len(crowded.list_assignments(vehicle_id="V1")) == 1

    def test_one_winner_per_driver(self, repository, clock):
        for i in range(self.N):
            repository.add_vehicle(Vehicle(f"W{i}", f"00-W-{i}", "Van"))
        scheduler = AssignmentScheduler(repository, clock=clock)
        calls = [
            (lambda i=i: scheduler.create_assignment(f"W{i}", "D1", t(1), t(5)))
            for i in range(self.N)
        ]

        results = self._race(calls)

        assert sum(isinstance(r, ConflictError) for r in results) == self.N - 1
        assert len(repository.list_assignments(driver_id="D1")) == 1

    def test_no_overlaps_under_mixed_load(self, crowded, clock):
        scheduler = AssignmentScheduler(crowded, clock=clock)
        rng = random.Random(7)
        vehicles = ["V1", "V2"]
        drivers = ["D1", "D2"] + [f"X{i}" for i in range(self.N)]
        base = as_utc(t(1))
        calls = []
        for _ in range(60):
            start = base + timedelta(hours=rng.randrange(0, 72))
            end = start + timedelta(hours=rng.randrange(1, 12))
            calls.append(
                lambda v=rng.choice(vehicles), d=rng.choice(drivers), s=start, e=end: (
                    scheduler.create_assignment(v, d, s, e)
                )
            )

        with ThreadPoolExecutor(max_workers=8) as pool:
            list(pool.map(_ignore_conflict, calls))

        active = crowded.list_assignments(status=AssignmentStatus.ACTIVE)
        for i, a in enumerate(active):
            for b in active[i + 1:]:
                if a.vehicle_id == b.vehicle_id or a.driver_id == b.driver_id:
                    assert not windows_overlap(a.start_time, a.end_time, b.start_time, b.end_time)


def _ignore_conflict(call):
    try:
        return call()
    except ConflictError:
        return None
