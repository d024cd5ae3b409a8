"""
AssignmentScheduler - the single writer of assignments, blocks and Vehicle.status.

Every mutating call follows the same discipline:

1. validate input that needs no shared state (window shape);
2. acquire the vehicle lock (and the driver lock) in global key order;
3. resolve entities and run the conflict checks through that lock scope;
4. write the record and the recomputed vehicle status in one atomic
   repository call;
5. release the locks, then notify.

No call retries internally. Lock timeouts and storage failures surface as
TransactionError for the caller to retry.
"""

import logging
import uuid
from datetime import datetime
from typing import Callable, List, Optional, Union

from models.assignment import Assignment, VehicleBlock, validate_window
from models.calculations import as_utc
from models.driver import Driver
from models.errors import ConflictError, InvalidStateError, NotFoundError, ValidationError
from models.status import AssignmentStatus, BlockStatus, ResourceKind, VehicleStatus
from models.vehicle import Vehicle

from .clock import SystemClock
from .conflicts import ConflictDetector
from .locks import LockScope, resource_key
from .notifications import AssignmentEvent, EventType, NullSink, deliver

logger = logging.getLogger(__name__)

Timestamp = Union[str, datetime]


def _new_id() -> str:
    return str(uuid.uuid4())


class AssignmentScheduler:
    """Creates, completes and cancels assignments and vehicle blocks."""

    def __init__(
        self,
        repository,
        clock=None,
        sink=None,
        id_factory: Optional[Callable[[], str]] = None,
    ):
        self.repository = repository
        self.clock = clock or SystemClock()
        self.sink = sink or NullSink()
        self.conflicts = ConflictDetector(repository)
        self._new_id = id_factory or _new_id

    # -------------------------------------------------------------------------
    # Helpers
    # -------------------------------------------------------------------------

    def _require_vehicle(self, vehicle_id: str) -> Vehicle:
        vehicle = self.repository.get_vehicle(vehicle_id)
        if vehicle is None:
            raise NotFoundError("Vehicle", vehicle_id)
        return vehicle

    def _require_driver(self, driver_id: str) -> Driver:
        driver = self.repository.get_driver(driver_id)
        if driver is None:
            raise NotFoundError("Driver", driver_id)
        return driver

    def _window(self, start: Timestamp, end: Timestamp):
        start_time, end_time = as_utc(start), as_utc(end)
        validate_window(start_time, end_time)
        return start_time, end_time

    def _ensure_free(
        self,
        scope: LockScope,
        resource_id: str,
        kind: ResourceKind,
        start: datetime,
        end: datetime,
    ) -> None:
        conflict = self.conflicts.find_conflict(scope, resource_id, kind, start, end)
        if conflict is not None:
            logger.warning(
                "Rejected window %s..%s for %s %s: overlaps %s %s",
                start.isoformat(),
                end.isoformat(),
                kind.value,
                resource_id,
                conflict.record_kind,
                conflict.id,
            )
            raise ConflictError(
                kind.value,
                resource_id,
                conflict.record_kind,
                conflict.id,
                conflict.start_time,
                conflict.end_time,
            )

    def _derive_vehicle_status(
        self,
        scope: LockScope,
        vehicle_id: str,
        now: datetime,
        added: Optional[Union[Assignment, VehicleBlock]] = None,
        removed_id: Optional[str] = None,
    ) -> VehicleStatus:
        """
        Blocked if an Active block covers now, else Assigned if any Active
        assignment exists, else Available.

        ``added`` and ``removed_id`` describe the pending write so the status
        reflects the state after it commits.
        """
        blocks = [
            b for b in self.repository.get_active_blocks(scope, vehicle_id) if b.id != removed_id
        ]
        assignments = [
            a
            for a in self.repository.get_active_assignments(scope, ResourceKind.VEHICLE, vehicle_id)
            if a.id != removed_id
        ]
        if isinstance(added, VehicleBlock):
            blocks.append(added)
        elif isinstance(added, Assignment):
            assignments.append(added)

        if any(b.covers(now) for b in blocks):
            return VehicleStatus.BLOCKED
        if assignments:
            return VehicleStatus.ASSIGNED
        return VehicleStatus.AVAILABLE

    def _completion_end(
        self, start: datetime, end: datetime, completion_time: Optional[Timestamp]
    ) -> Optional[datetime]:
        """New end time for an early return, or None to keep the schedule."""
        if completion_time is None:
            return None
        completed = as_utc(completion_time)
        if completed <= start:
            raise ValidationError(
                f"Completion time {completed.isoformat()} must be after the start {start.isoformat()}"
            )
        return completed if completed < end else None

    # -------------------------------------------------------------------------
    # Assignments
    # -------------------------------------------------------------------------

    def create_assignment(
        self,
        vehicle_id: str,
        driver_id: str,
        start: Timestamp,
        end: Timestamp,
        reason: str = "",
        actor: Optional[str] = None,
    ) -> Assignment:
        """
        Give a driver a vehicle for [start, end).

        Raises:
            ValidationError: end is not after start
            NotFoundError: unknown vehicle or driver
            ConflictError: the vehicle (assignment or block) or the driver
                already has an overlapping Active window
        """
        start_time, end_time = self._window(start, end)
        keys = (
            resource_key(ResourceKind.VEHICLE, vehicle_id),
            resource_key(ResourceKind.DRIVER, driver_id),
        )
        with self.repository.lock(*keys) as scope:
            self._require_vehicle(vehicle_id)
            self._require_driver(driver_id)
            self._ensure_free(scope, vehicle_id, ResourceKind.VEHICLE, start_time, end_time)
            self._ensure_free(scope, driver_id, ResourceKind.DRIVER, start_time, end_time)

            now = self.clock.now()
            assignment = Assignment(
                id=self._new_id(),
                vehicle_id=vehicle_id,
                driver_id=driver_id,
                start_time=start_time,
                end_time=end_time,
                reason=reason or "",
                assigned_by=actor,
                created_at=now,
            )
            status = self._derive_vehicle_status(scope, vehicle_id, now, added=assignment)
            stored = self.repository.insert_assignment_and_update_vehicle(scope, assignment, status)

        logger.info(
            "Assigned vehicle %s to driver %s from %s to %s (assignment %s, by %s)",
            vehicle_id,
            driver_id,
            start_time.isoformat(),
            end_time.isoformat(),
            stored.id,
            actor or "-",
        )
        deliver(self.sink, AssignmentEvent.of(EventType.ASSIGNMENT_CREATED, stored))
        return stored

    def _close_assignment(
        self,
        assignment_id: str,
        new_status: AssignmentStatus,
        action: str,
        completion_time: Optional[Timestamp] = None,
        cancel_reason: Optional[str] = None,
        actor: Optional[str] = None,
    ) -> Assignment:
        # vehicle_id and driver_id never change, so the unlocked read is
        # enough to know which locks to take.
        current = self.repository.get_assignment(assignment_id)
        if current is None:
            raise NotFoundError("Assignment", assignment_id)
        keys = (
            resource_key(ResourceKind.VEHICLE, current.vehicle_id),
            resource_key(ResourceKind.DRIVER, current.driver_id),
        )
        with self.repository.lock(*keys) as scope:
            assignment = self.repository.get_assignment(assignment_id)
            if not assignment.is_active:
                logger.warning(
                    "Refused to %s assignment %s in status %s",
                    action,
                    assignment_id,
                    assignment.status.value,
                )
                raise InvalidStateError("assignment", assignment_id, assignment.status.value, action)
            new_end = self._completion_end(
                assignment.start_time, assignment.end_time, completion_time
            )
            now = self.clock.now()
            status = self._derive_vehicle_status(
                scope, assignment.vehicle_id, now, removed_id=assignment_id
            )
            updated = self.repository.update_assignment_status(
                scope,
                assignment_id,
                new_status,
                new_end_time=new_end,
                new_vehicle_status=status,
                closed_by=actor,
                closed_at=now,
                cancel_reason=cancel_reason,
            )

        logger.info(
            "Assignment %s %s (vehicle %s now %s, by %s)",
            assignment_id,
            new_status.value,
            updated.vehicle_id,
            status.value,
            actor or "-",
        )
        return updated

    def complete_assignment(
        self,
        assignment_id: str,
        completion_time: Optional[Timestamp] = None,
        actor: Optional[str] = None,
    ) -> Assignment:
        """
        Mark an Active assignment Completed.

        A completion_time before the scheduled end shortens the window
        (early return of the vehicle). A later one leaves the window as is.
        """
        updated = self._close_assignment(
            assignment_id,
            AssignmentStatus.COMPLETED,
            "complete",
            completion_time=completion_time,
            actor=actor,
        )
        deliver(self.sink, AssignmentEvent.of(EventType.ASSIGNMENT_COMPLETED, updated))
        return updated

    def cancel_assignment(
        self,
        assignment_id: str,
        reason: Optional[str] = None,
        actor: Optional[str] = None,
    ) -> Assignment:
        """Mark an Active assignment Cancelled."""
        updated = self._close_assignment(
            assignment_id,
            AssignmentStatus.CANCELLED,
            "cancel",
            cancel_reason=reason,
            actor=actor,
        )
        deliver(self.sink, AssignmentEvent.of(EventType.ASSIGNMENT_CANCELLED, updated))
        return updated

    def get_assignment(self, assignment_id: str) -> Assignment:
        assignment = self.repository.get_assignment(assignment_id)
        if assignment is None:
            raise NotFoundError("Assignment", assignment_id)
        return assignment

    def assignments_for_vehicle(
        self, vehicle_id: str, status: Optional[AssignmentStatus] = None
    ) -> List[Assignment]:
        """Assignments of a vehicle, newest start first."""
        self._require_vehicle(vehicle_id)
        assignments = self.repository.list_assignments(vehicle_id=vehicle_id, status=status)
        return sorted(assignments, key=lambda a: a.start_time, reverse=True)

    def assignments_for_driver(
        self, driver_id: str, status: Optional[AssignmentStatus] = None
    ) -> List[Assignment]:
        """Assignments of a driver, newest start first."""
        self._require_driver(driver_id)
        assignments = self.repository.list_assignments(driver_id=driver_id, status=status)
        return sorted(assignments, key=lambda a: a.start_time, reverse=True)

    # -------------------------------------------------------------------------
    # Blocks
    # -------------------------------------------------------------------------

    def create_block(
        self,
        vehicle_id: str,
        start: Timestamp,
        end: Timestamp,
        reason: str = "",
        actor: Optional[str] = None,
    ) -> VehicleBlock:
        """Withdraw a vehicle from service for [start, end)."""
        start_time, end_time = self._window(start, end)
        with self.repository.lock(resource_key(ResourceKind.VEHICLE, vehicle_id)) as scope:
            self._require_vehicle(vehicle_id)
            self._ensure_free(scope, vehicle_id, ResourceKind.VEHICLE, start_time, end_time)

            now = self.clock.now()
            block = VehicleBlock(
                id=self._new_id(),
                vehicle_id=vehicle_id,
                start_time=start_time,
                end_time=end_time,
                reason=reason or "",
                blocked_by=actor,
                created_at=now,
            )
            status = self._derive_vehicle_status(scope, vehicle_id, now, added=block)
            stored = self.repository.insert_block_and_update_vehicle(scope, block, status)

        logger.info(
            "Blocked vehicle %s from %s to %s (block %s, by %s)",
            vehicle_id,
            start_time.isoformat(),
            end_time.isoformat(),
            stored.id,
            actor or "-",
        )
        return stored

    def complete_block(
        self,
        block_id: str,
        completion_time: Optional[Timestamp] = None,
        actor: Optional[str] = None,
    ) -> VehicleBlock:
        """
        End an Active block.

        The block ends at completion_time, or now when none is given, if
        that is earlier than its scheduled end. A block completed before it
        starts keeps its window.
        """
        current = self.repository.get_block(block_id)
        if current is None:
            raise NotFoundError("Block", block_id)
        with self.repository.lock(resource_key(ResourceKind.VEHICLE, current.vehicle_id)) as scope:
            block = self.repository.get_block(block_id)
            if not block.is_active:
                logger.warning("Refused to complete block %s in status %s", block_id, block.status.value)
                raise InvalidStateError("block", block_id, block.status.value, "complete")
            now = self.clock.now()
            if completion_time is not None:
                new_end = self._completion_end(block.start_time, block.end_time, completion_time)
            elif block.start_time < now < block.end_time:
                new_end = now
            else:
                new_end = None
            status = self._derive_vehicle_status(scope, block.vehicle_id, now, removed_id=block_id)
            updated = self.repository.update_block_status(
                scope,
                block_id,
                BlockStatus.COMPLETED,
                new_end_time=new_end,
                new_vehicle_status=status,
                closed_by=actor,
                closed_at=now,
            )

        logger.info(
            "Block %s completed (vehicle %s now %s, by %s)",
            block_id,
            updated.vehicle_id,
            status.value,
            actor or "-",
        )
        return updated

    def get_block(self, block_id: str) -> VehicleBlock:
        block = self.repository.get_block(block_id)
        if block is None:
            raise NotFoundError("Block", block_id)
        return block

    def blocks_for_vehicle(
        self, vehicle_id: str, status: Optional[BlockStatus] = None
    ) -> List[VehicleBlock]:
        self._require_vehicle(vehicle_id)
        blocks = self.repository.list_blocks(vehicle_id=vehicle_id, status=status)
        return sorted(blocks, key=lambda b: b.start_time, reverse=True)

    # -------------------------------------------------------------------------
    # Vehicle status
    # -------------------------------------------------------------------------

    def refresh_vehicle_status(self, vehicle_id: str) -> VehicleStatus:
        """
        Recompute the cached status against the current clock.

        Needed because "a block covers now" changes with time alone, with no
        write to trigger it.
        """
        with self.repository.lock(resource_key(ResourceKind.VEHICLE, vehicle_id)) as scope:
            vehicle = self._require_vehicle(vehicle_id)
            status = self._derive_vehicle_status(scope, vehicle_id, self.clock.now())
            if status != vehicle.status:
                self.repository.set_vehicle_status(scope, vehicle_id, status)
                logger.info(
                    "Vehicle %s status %s -> %s", vehicle_id, vehicle.status.value, status.value
                )
        return status

    def refresh_all(self) -> List[Vehicle]:
        """Refresh every vehicle, one lock at a time."""
        for vehicle in self.repository.list_vehicles():
            self.refresh_vehicle_status(vehicle.id)
        return self.repository.list_vehicles()
