"""
Storage for vehicles, drivers, scheduling windows and compliance records.

``ResourceRepository`` keeps everything in memory; ``YamlRepository`` adds a
fleet file that is rewritten atomically after every committed change.

Scheduling reads and writes take an explicit ``LockScope``. A method refuses
to run unless the scope holds the vehicle (and driver) it touches, so every
conflict check and the write that follows it happen under the same locks.
"""

import copy
import fcntl
import logging
import threading
import time
import uuid
from contextlib import contextmanager
from datetime import date, datetime
from pathlib import Path
from typing import Callable, Dict, Iterator, List, Optional, Union

from models.assignment import Assignment, VehicleBlock, validate_window
from models.document import Document
from models.driver import Driver
from models.errors import LockTimeoutError, NotFoundError, PersistenceError, ValidationError
from models.loader import FleetData, check_windows, create_fleet_file, load_fleet, save_fleet
from models.service_record import ServiceRecord
from models.settings import Settings
from models.status import AssignmentStatus, BlockStatus, ResourceKind, VehicleStatus
from models.vehicle import Vehicle

from .locks import LockKey, LockManager, LockScope

logger = logging.getLogger(__name__)


class ResourceRepository:
    """Thread-safe in-memory store."""

    def __init__(self, settings: Optional[Settings] = None):
        self.settings = settings or Settings()
        self._stored_settings = self.settings
        self.locks = LockManager(timeout=self.settings.lock_timeout_seconds)
        self._data_lock = threading.RLock()
        self._vehicles: Dict[str, Vehicle] = {}
        self._drivers: Dict[str, Driver] = {}
        self._assignments: Dict[str, Assignment] = {}
        self._blocks: Dict[str, VehicleBlock] = {}
        self._documents: Dict[str, Document] = {}
        self._service_records: Dict[str, ServiceRecord] = {}

    # -------------------------------------------------------------------------
    # Transactions
    # -------------------------------------------------------------------------

    def lock(self, *keys: LockKey):
        """Acquire per-resource locks; see LockManager.hold."""
        return self.locks.hold(*keys)

    @contextmanager
    def _write(self) -> Iterator[List[Callable[[], None]]]:
        """
        Apply a group of changes as one unit.

        Callers append an undo action for every change they make. If
        persisting fails, the undo actions run in reverse and the error
        propagates.
        """
        with self._data_lock:
            undo: List[Callable[[], None]] = []
            try:
                yield undo
                self._persist()
            except Exception:
                for action in reversed(undo):
                    action()
                raise

    def _persist(self) -> None:
        """Hook for durable backends. The in-memory store has nothing to do."""

    @contextmanager
    def _read(self) -> Iterator[None]:
        with self._data_lock:
            self._sync()
            yield

    def _sync(self) -> None:
        """Hook for backends shared with other processes. Nothing to pick up in memory."""

    # -------------------------------------------------------------------------
    # Entry points for vehicles, drivers, documents and service records
    # -------------------------------------------------------------------------

    def add_vehicle(self, vehicle: Vehicle) -> Vehicle:
        """Register a vehicle. A new vehicle holds no windows, so it starts Available."""
        stored = copy.copy(vehicle)
        stored._status = VehicleStatus.AVAILABLE
        with self._write() as undo:
            if stored.id in self._vehicles:
                raise ValidationError(f"Vehicle '{stored.id}' already exists")
            self._vehicles[stored.id] = stored
            undo.append(lambda: self._vehicles.pop(stored.id))
        return copy.copy(stored)

    def add_driver(self, driver: Driver) -> Driver:
        stored = copy.copy(driver)
        with self._write() as undo:
            if stored.id in self._drivers:
                raise ValidationError(f"Driver '{stored.id}' already exists")
            self._drivers[stored.id] = stored
            undo.append(lambda: self._drivers.pop(stored.id))
        return copy.copy(stored)

    def add_document(self, document: Document) -> Document:
        stored = copy.copy(document)
        with self._write() as undo:
            owners = self._vehicles if stored.owner_type == "vehicle" else self._drivers
            if stored.owner_id not in owners:
                raise NotFoundError(stored.owner_type.capitalize(), stored.owner_id)
            if stored.id in self._documents:
                raise ValidationError(f"Document '{stored.id}' already exists")
            self._documents[stored.id] = stored
            undo.append(lambda: self._documents.pop(stored.id))
        return copy.copy(stored)

    def add_service_record(self, record: ServiceRecord) -> ServiceRecord:
        stored = copy.copy(record)
        with self._write() as undo:
            if stored.vehicle_id not in self._vehicles:
                raise NotFoundError("Vehicle", stored.vehicle_id)
            if stored.id in self._service_records:
                raise ValidationError(f"Service record '{stored.id}' already exists")
            self._service_records[stored.id] = stored
            undo.append(lambda: self._service_records.pop(stored.id))
        return copy.copy(stored)

    def update_odometer(self, vehicle_id: str, odometer_km: float) -> Vehicle:
        """Record a new odometer reading. Readings never go backwards."""
        with self._write() as undo:
            vehicle = self._vehicles.get(vehicle_id)
            if vehicle is None:
                raise NotFoundError("Vehicle", vehicle_id)
            if odometer_km < vehicle.odometer_km:
                raise ValidationError(
                    f"Odometer for vehicle '{vehicle_id}' cannot go from "
                    f"{vehicle.odometer_km} down to {odometer_km}"
                )
            previous = vehicle.odometer_km
            vehicle.odometer_km = odometer_km
            undo.append(lambda: setattr(vehicle, "odometer_km", previous))
            return copy.copy(vehicle)

    def record_service(
        self,
        vehicle_id: str,
        service_km: float,
        service_date: Union[str, date],
        next_service_km: Optional[float] = None,
        record_id: Optional[str] = None,
    ) -> ServiceRecord:
        """
        Log a service and carry the vehicle's odometer forward to it.

        Without next_service_km the next service falls one
        ``settings.service_interval_km`` after this one.
        """
        with self._write() as undo:
            vehicle = self._vehicles.get(vehicle_id)
            if vehicle is None:
                raise NotFoundError("Vehicle", vehicle_id)
            record = ServiceRecord.create(
                record_id or str(uuid.uuid4()),
                vehicle_id,
                last_service_km=service_km,
                current_km=max(service_km, vehicle.odometer_km),
                service_date=service_date,
                next_service_km=next_service_km,
                interval_km=self.settings.service_interval_km,
            )
            if record.id in self._service_records:
                raise ValidationError(f"Service record '{record.id}' already exists")
            self._service_records[record.id] = record
            undo.append(lambda: self._service_records.pop(record.id))
            if service_km > vehicle.odometer_km:
                previous = vehicle.odometer_km
                vehicle.odometer_km = service_km
                undo.append(lambda: setattr(vehicle, "odometer_km", previous))
        return copy.copy(record)

    # -------------------------------------------------------------------------
    # Unscoped reads (committed state)
    # -------------------------------------------------------------------------

    def get_vehicle(self, vehicle_id: str) -> Optional[Vehicle]:
        with self._read():
            vehicle = self._vehicles.get(vehicle_id)
            return copy.copy(vehicle) if vehicle else None

    def get_driver(self, driver_id: str) -> Optional[Driver]:
        with self._read():
            driver = self._drivers.get(driver_id)
            return copy.copy(driver) if driver else None

    def get_assignment(self, assignment_id: str) -> Optional[Assignment]:
        with self._read():
            assignment = self._assignments.get(assignment_id)
            return copy.copy(assignment) if assignment else None

    def get_block(self, block_id: str) -> Optional[VehicleBlock]:
        with self._read():
            block = self._blocks.get(block_id)
            return copy.copy(block) if block else None

    def get_document(self, document_id: str) -> Optional[Document]:
        with self._read():
            document = self._documents.get(document_id)
            return copy.copy(document) if document else None

    def get_service_record(self, record_id: str) -> Optional[ServiceRecord]:
        with self._read():
            record = self._service_records.get(record_id)
            return copy.copy(record) if record else None

    def list_vehicles(self) -> List[Vehicle]:
        with self._read():
            return [copy.copy(v) for v in self._vehicles.values()]

    def list_drivers(self) -> List[Driver]:
        with self._read():
            return [copy.copy(d) for d in self._drivers.values()]

    def list_assignments(
        self,
        vehicle_id: Optional[str] = None,
        driver_id: Optional[str] = None,
        status: Optional[AssignmentStatus] = None,
    ) -> List[Assignment]:
        with self._read():
            return [
                copy.copy(a)
                for a in self._assignments.values()
                if (vehicle_id is None or a.vehicle_id == vehicle_id)
                and (driver_id is None or a.driver_id == driver_id)
                and (status is None or a.status == status)
            ]

    def list_blocks(
        self, vehicle_id: Optional[str] = None, status: Optional[BlockStatus] = None
    ) -> List[VehicleBlock]:
        with self._read():
            return [
                copy.copy(b)
                for b in self._blocks.values()
                if (vehicle_id is None or b.vehicle_id == vehicle_id)
                and (status is None or b.status == status)
            ]

    def list_documents(
        self, owner_type: Optional[str] = None, owner_id: Optional[str] = None
    ) -> List[Document]:
        with self._read():
            return [
                copy.copy(d)
                for d in self._documents.values()
                if (owner_type is None or d.owner_type == owner_type)
                and (owner_id is None or d.owner_id == owner_id)
            ]

    def list_service_records(self, vehicle_id: Optional[str] = None) -> List[ServiceRecord]:
        with self._read():
            return [
                copy.copy(r)
                for r in self._service_records.values()
                if vehicle_id is None or r.vehicle_id == vehicle_id
            ]

    # -------------------------------------------------------------------------
    # Scoped scheduling reads
    # -------------------------------------------------------------------------

    def get_active_assignments(
        self, scope: LockScope, kind: ResourceKind, resource_id: str
    ) -> List[Assignment]:
        """Active assignments held by a vehicle or a driver."""
        scope.require(kind, resource_id)
        if kind == ResourceKind.VEHICLE:
            return self.list_assignments(vehicle_id=resource_id, status=AssignmentStatus.ACTIVE)
        return self.list_assignments(driver_id=resource_id, status=AssignmentStatus.ACTIVE)

    def get_active_blocks(self, scope: LockScope, vehicle_id: str) -> List[VehicleBlock]:
        scope.require(ResourceKind.VEHICLE, vehicle_id)
        return self.list_blocks(vehicle_id=vehicle_id, status=BlockStatus.ACTIVE)

    # -------------------------------------------------------------------------
    # Scoped scheduling writes
    # -------------------------------------------------------------------------

    def _set_status(self, undo, vehicle_id: str, status: Optional[VehicleStatus]) -> None:
        if status is None:
            return
        vehicle = self._vehicles.get(vehicle_id)
        if vehicle is None:
            raise NotFoundError("Vehicle", vehicle_id)
        previous = vehicle._status
        vehicle._status = status
        undo.append(lambda: setattr(vehicle, "_status", previous))

    def set_vehicle_status(
        self, scope: LockScope, vehicle_id: str, status: VehicleStatus
    ) -> None:
        scope.require(ResourceKind.VEHICLE, vehicle_id)
        with self._write() as undo:
            self._set_status(undo, vehicle_id, status)

    def insert_assignment_and_update_vehicle(
        self, scope: LockScope, assignment: Assignment, new_vehicle_status: VehicleStatus
    ) -> Assignment:
        """Insert an assignment and set its vehicle's status in one atomic write."""
        scope.require(ResourceKind.VEHICLE, assignment.vehicle_id)
        scope.require(ResourceKind.DRIVER, assignment.driver_id)
        stored = copy.copy(assignment)
        with self._write() as undo:
            if stored.id in self._assignments:
                raise ValidationError(f"Assignment '{stored.id}' already exists")
            self._assignments[stored.id] = stored
            undo.append(lambda: self._assignments.pop(stored.id))
            self._set_status(undo, stored.vehicle_id, new_vehicle_status)
        return copy.copy(stored)

    def update_assignment_status(
        self,
        scope: LockScope,
        assignment_id: str,
        new_status: AssignmentStatus,
        new_end_time: Optional[datetime] = None,
        new_vehicle_status: Optional[VehicleStatus] = None,
        closed_by: Optional[str] = None,
        closed_at: Optional[datetime] = None,
        cancel_reason: Optional[str] = None,
    ) -> Assignment:
        """
        Move an assignment to a new status, optionally shortening its window.

        When new_vehicle_status is given, the vehicle's status changes in the
        same atomic write.
        """
        with self._write() as undo:
            assignment = self._assignments.get(assignment_id)
            if assignment is None:
                raise NotFoundError("Assignment", assignment_id)
            scope.require(ResourceKind.VEHICLE, assignment.vehicle_id)
            scope.require(ResourceKind.DRIVER, assignment.driver_id)
            if new_end_time is not None:
                validate_window(assignment.start_time, new_end_time)
            updated = copy.copy(assignment)
            updated.status = new_status
            updated.end_time = new_end_time or assignment.end_time
            updated.closed_by = closed_by
            updated.closed_at = closed_at
            updated.cancel_reason = cancel_reason
            self._assignments[assignment_id] = updated
            undo.append(lambda: self._assignments.__setitem__(assignment_id, assignment))
            self._set_status(undo, assignment.vehicle_id, new_vehicle_status)
        return copy.copy(updated)

    def insert_block_and_update_vehicle(
        self, scope: LockScope, block: VehicleBlock, new_vehicle_status: VehicleStatus
    ) -> VehicleBlock:
        scope.require(ResourceKind.VEHICLE, block.vehicle_id)
        stored = copy.copy(block)
        with self._write() as undo:
            if stored.id in self._blocks:
                raise ValidationError(f"Block '{stored.id}' already exists")
            self._blocks[stored.id] = stored
            undo.append(lambda: self._blocks.pop(stored.id))
            self._set_status(undo, stored.vehicle_id, new_vehicle_status)
        return copy.copy(stored)

    def update_block_status(
        self,
        scope: LockScope,
        block_id: str,
        new_status: BlockStatus,
        new_end_time: Optional[datetime] = None,
        new_vehicle_status: Optional[VehicleStatus] = None,
        closed_by: Optional[str] = None,
        closed_at: Optional[datetime] = None,
    ) -> VehicleBlock:
        with self._write() as undo:
            block = self._blocks.get(block_id)
            if block is None:
                raise NotFoundError("Block", block_id)
            scope.require(ResourceKind.VEHICLE, block.vehicle_id)
            if new_end_time is not None:
                validate_window(block.start_time, new_end_time)
            updated = copy.copy(block)
            updated.status = new_status
            updated.end_time = new_end_time or block.end_time
            updated.closed_by = closed_by
            updated.closed_at = closed_at
            self._blocks[block_id] = updated
            undo.append(lambda: self._blocks.__setitem__(block_id, block))
            self._set_status(undo, block.vehicle_id, new_vehicle_status)
        return copy.copy(updated)

    # -------------------------------------------------------------------------
    # Bulk state
    # -------------------------------------------------------------------------

    def snapshot(self) -> FleetData:
        """Copy of everything in the store, in insertion order."""
        with self._data_lock:
            return FleetData(
                settings=self._stored_settings,
                vehicles=[copy.copy(v) for v in self._vehicles.values()],
                drivers=[copy.copy(d) for d in self._drivers.values()],
                assignments=[copy.copy(a) for a in self._assignments.values()],
                blocks=[copy.copy(b) for b in self._blocks.values()],
                documents=[copy.copy(d) for d in self._documents.values()],
                service_records=[copy.copy(r) for r in self._service_records.values()],
            )

    def _restore(self, fleet: FleetData) -> None:
        """Replace the whole store with previously saved data, statuses included."""
        with self._data_lock:
            self._vehicles = {v.id: copy.copy(v) for v in fleet.vehicles}
            self._drivers = {d.id: copy.copy(d) for d in fleet.drivers}
            self._assignments = {a.id: copy.copy(a) for a in fleet.assignments}
            self._blocks = {b.id: copy.copy(b) for b in fleet.blocks}
            self._documents = {d.id: copy.copy(d) for d in fleet.documents}
            self._service_records = {r.id: copy.copy(r) for r in fleet.service_records}


class YamlRepository(ResourceRepository):
    """
    Repository backed by a YAML fleet file.

    Every write, and every lock scope, runs under an exclusive ``flock`` on
    a ``<fleet file>.lock`` sidecar. The file is re-read whenever another
    process has replaced it, so conflict checks always see the latest
    committed windows. Each committed change rewrites the file atomically;
    a failed write rolls the in-memory change back and raises
    PersistenceError.

    A file holding overlapping Active windows is refused with
    ValidationError.
    """

    def __init__(
        self,
        path: Union[str, Path],
        settings: Optional[Settings] = None,
        apply_env: bool = False,
    ):
        self.path = Path(path)
        self._lock_path = self.path.with_name(self.path.name + ".lock")
        self._file_guard = threading.Lock()
        self._file_depth = 0
        self._lock_file = None
        self._signature = None
        if not self.path.exists():
            create_fleet_file(self.path, settings)
        fleet = load_fleet(self.path)
        check_windows(fleet)
        effective = settings or fleet.settings
        # Environment overrides apply to this process only, never to the file.
        super().__init__(effective.with_env() if apply_env else effective)
        self._stored_settings = fleet.settings
        self._restore(fleet)
        self._signature = self._file_signature()
        logger.debug(
            "Loaded fleet file %s: %d vehicles, %d drivers, %d assignments",
            self.path,
            len(fleet.vehicles),
            len(fleet.drivers),
            len(fleet.assignments),
        )

    def _file_signature(self):
        try:
            st = self.path.stat()
        except FileNotFoundError:
            return None
        return (st.st_ino, st.st_mtime_ns, st.st_size)

    def _sync(self) -> None:
        """Reload the fleet file if another process has replaced it."""
        with self._data_lock:
            signature = self._file_signature()
            if signature is None or signature == self._signature:
                return
            fleet = load_fleet(self.path)
            check_windows(fleet)
            self._stored_settings = fleet.settings
            self._restore(fleet)
            self._signature = signature
            logger.info("Reloaded fleet file %s after an external change", self.path)

    # -------------------------------------------------------------------------
    # Cross-process exclusion
    # -------------------------------------------------------------------------

    def _acquire_file(self) -> None:
        with self._file_guard:
            if self._file_depth == 0:
                fp = open(self._lock_path, "a+")
                deadline = time.monotonic() + self.settings.lock_timeout_seconds
                while True:
                    try:
                        fcntl.flock(fp.fileno(), fcntl.LOCK_EX | fcntl.LOCK_NB)
                        break
                    except BlockingIOError:
                        if time.monotonic() >= deadline:
                            fp.close()
                            logger.warning(
                                "Lock timeout on fleet file %s after %ss",
                                self.path,
                                self.settings.lock_timeout_seconds,
                            )
                            raise LockTimeoutError(
                                ("fleet file", str(self.path)), self.settings.lock_timeout_seconds
                            )
                        time.sleep(0.01)
                self._lock_file = fp
                try:
                    self._sync()
                except Exception:
                    self._lock_file = None
                    fcntl.flock(fp.fileno(), fcntl.LOCK_UN)
                    fp.close()
                    raise
            self._file_depth += 1

    def _release_file(self) -> None:
        with self._file_guard:
            self._file_depth -= 1
            if self._file_depth == 0:
                fp, self._lock_file = self._lock_file, None
                fcntl.flock(fp.fileno(), fcntl.LOCK_UN)
                fp.close()

    @contextmanager
    def _file_held(self) -> Iterator[None]:
        """
        Hold the fleet file against other processes.

        Threads of this process share one hold; the per-resource locks
        already keep them apart.
        """
        self._acquire_file()
        try:
            yield
        finally:
            self._release_file()

    @contextmanager
    def lock(self, *keys: LockKey) -> Iterator[LockScope]:
        with super().lock(*keys) as scope:
            with self._file_held():
                yield scope

    @contextmanager
    def _write(self) -> Iterator[List[Callable[[], None]]]:
        with self._file_held():
            with super()._write() as undo:
                yield undo

    def _persist(self) -> None:
        try:
            save_fleet(self.path, self.snapshot())
        except PersistenceError:
            logger.exception("Failed to persist fleet file %s", self.path)
            raise
        self._signature = self._file_signature()
