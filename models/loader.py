"""YAML loading and saving utilities for fleet data."""

import os
import tempfile
from dataclasses import dataclass, field
from datetime import datetime
from itertools import combinations
from pathlib import Path
from typing import Any, Dict, List, Optional, Union

import yaml

from .assignment import Assignment, VehicleBlock
from .calculations import as_utc, windows_overlap
from .document import Document
from .driver import Driver
from .errors import PersistenceError, ValidationError
from .service_record import ServiceRecord
from .settings import Settings
from .status import AssignmentStatus, BlockStatus, VehicleStatus
from .vehicle import Vehicle


@dataclass
class FleetData:
    """Everything stored in one fleet file."""

    settings: Settings = field(default_factory=Settings)
    vehicles: List[Vehicle] = field(default_factory=list)
    drivers: List[Driver] = field(default_factory=list)
    assignments: List[Assignment] = field(default_factory=list)
    blocks: List[VehicleBlock] = field(default_factory=list)
    documents: List[Document] = field(default_factory=list)
    service_records: List[ServiceRecord] = field(default_factory=list)


def _optional_time(value: Any) -> Optional[datetime]:
    return as_utc(value) if value is not None else None


def _format_time(value: Optional[datetime]) -> Optional[str]:
    return value.isoformat() if value is not None else None


def _parse_vehicle(dct: Dict[str, Any]) -> Vehicle:
    return Vehicle(
        str(dct["id"]),
        dct["plateNumber"],
        dct["model"],
        dct.get("year"),
        dct.get("odometerKm", 0),
        VehicleStatus(dct.get("status", VehicleStatus.AVAILABLE.value)),
    )


def _parse_driver(dct: Dict[str, Any]) -> Driver:
    return Driver(str(dct["id"]), dct["name"], dct.get("email"), dct.get("phone"))


def _parse_assignment(dct: Dict[str, Any]) -> Assignment:
    return Assignment(
        id=str(dct["id"]),
        vehicle_id=str(dct["vehicleId"]),
        driver_id=str(dct["driverId"]),
        start_time=dct["startTime"],
        end_time=dct["endTime"],
        reason=dct.get("reason") or "",
        status=AssignmentStatus(dct.get("status", AssignmentStatus.ACTIVE.value)),
        assigned_by=dct.get("assignedBy"),
        created_at=_optional_time(dct.get("createdAt")),
        closed_by=dct.get("closedBy"),
        closed_at=_optional_time(dct.get("closedAt")),
        cancel_reason=dct.get("cancelReason"),
    )


def _parse_block(dct: Dict[str, Any]) -> VehicleBlock:
    return VehicleBlock(
        id=str(dct["id"]),
        vehicle_id=str(dct["vehicleId"]),
        start_time=dct["startTime"],
        end_time=dct["endTime"],
        reason=dct.get("reason") or "",
        status=BlockStatus(dct.get("status", BlockStatus.ACTIVE.value)),
        blocked_by=dct.get("blockedBy"),
        created_at=_optional_time(dct.get("createdAt")),
        closed_by=dct.get("closedBy"),
        closed_at=_optional_time(dct.get("closedAt")),
    )


def _parse_document(dct: Dict[str, Any]) -> Document:
    owner = dct["owner"]
    return Document(
        str(dct["id"]),
        owner["type"],
        str(owner["id"]),
        dct["type"],
        dct["issueDate"],
        dct["expiryDate"],
        dct.get("name"),
    )


def _parse_service_record(dct: Dict[str, Any]) -> ServiceRecord:
    return ServiceRecord(
        str(dct["id"]),
        str(dct["vehicleId"]),
        dct["lastServiceKm"],
        dct["currentKm"],
        dct["nextServiceKm"],
        dct["serviceDate"],
    )


def parse_fleet(data: Optional[Dict[str, Any]]) -> FleetData:
    """Parse the raw YAML mapping into model objects."""
    data = data or {}
    try:
        return FleetData(
            settings=Settings.from_dict(data.get("settings")),
            vehicles=[_parse_vehicle(d) for d in data.get("vehicles") or []],
            drivers=[_parse_driver(d) for d in data.get("drivers") or []],
            assignments=[_parse_assignment(d) for d in data.get("assignments") or []],
            blocks=[_parse_block(d) for d in data.get("blocks") or []],
            documents=[_parse_document(d) for d in data.get("documents") or []],
            service_records=[
                _parse_service_record(d) for d in data.get("serviceRecords") or []
            ],
        )
    except KeyError as e:
        raise ValidationError(f"Fleet data is missing required key {e}") from e


def find_overlaps(fleet: FleetData) -> List[str]:
    """
    Describe every pair of Active windows that share a vehicle or a driver.

    A vehicle's assignments and blocks share one domain; a driver's domain
    holds assignments only. Adjacent windows do not overlap.
    """
    by_vehicle: Dict[str, list] = {}
    by_driver: Dict[str, list] = {}
    for a in fleet.assignments:
        if a.status == AssignmentStatus.ACTIVE:
            by_vehicle.setdefault(a.vehicle_id, []).append(("assignment", a))
            by_driver.setdefault(a.driver_id, []).append(("assignment", a))
    for b in fleet.blocks:
        if b.status == BlockStatus.ACTIVE:
            by_vehicle.setdefault(b.vehicle_id, []).append(("block", b))

    problems = []
    for owner, groups in (("vehicle", by_vehicle), ("driver", by_driver)):
        for owner_id, windows in groups.items():
            for (kind1, w1), (kind2, w2) in combinations(windows, 2):
                if windows_overlap(w1.start_time, w1.end_time, w2.start_time, w2.end_time):
                    problems.append(
                        f"{owner} '{owner_id}': active {kind1} '{w1.id}' overlaps "
                        f"active {kind2} '{w2.id}'"
                    )
    return problems


def check_windows(fleet: FleetData) -> None:
    """Refuse fleet data holding overlapping Active windows."""
    problems = find_overlaps(fleet)
    if problems:
        raise ValidationError("; ".join(problems))


def load_fleet(filename: Union[str, Path]) -> FleetData:
    """Load fleet data from a YAML file."""
    with open(filename, "r") as fp:
        return parse_fleet(yaml.load(fp, Loader=yaml.SafeLoader))


def _vehicle_to_dict(vehicle: Vehicle) -> Dict[str, Any]:
    d: Dict[str, Any] = {
        "id": vehicle.id,
        "plateNumber": vehicle.plate_number,
        "model": vehicle.model,
    }
    if vehicle.year is not None:
        d["year"] = vehicle.year
    d["odometerKm"] = vehicle.odometer_km
    d["status"] = vehicle.status.value
    return d


def _driver_to_dict(driver: Driver) -> Dict[str, Any]:
    d: Dict[str, Any] = {"id": driver.id, "name": driver.name}
    if driver.email is not None:
        d["email"] = driver.email
    if driver.phone is not None:
        d["phone"] = driver.phone
    return d


def _assignment_to_dict(assignment: Assignment) -> Dict[str, Any]:
    d: Dict[str, Any] = {
        "id": assignment.id,
        "vehicleId": assignment.vehicle_id,
        "driverId": assignment.driver_id,
        "startTime": _format_time(assignment.start_time),
        "endTime": _format_time(assignment.end_time),
        "reason": assignment.reason,
        "status": assignment.status.value,
    }
    # Omit None values for cleaner YAML
    optional = {
        "assignedBy": assignment.assigned_by,
        "createdAt": _format_time(assignment.created_at),
        "closedBy": assignment.closed_by,
        "closedAt": _format_time(assignment.closed_at),
        "cancelReason": assignment.cancel_reason,
    }
    d.update({k: v for k, v in optional.items() if v is not None})
    return d


def _block_to_dict(block: VehicleBlock) -> Dict[str, Any]:
    d: Dict[str, Any] = {
        "id": block.id,
        "vehicleId": block.vehicle_id,
        "startTime": _format_time(block.start_time),
        "endTime": _format_time(block.end_time),
        "reason": block.reason,
        "status": block.status.value,
    }
    optional = {
        "blockedBy": block.blocked_by,
        "createdAt": _format_time(block.created_at),
        "closedBy": block.closed_by,
        "closedAt": _format_time(block.closed_at),
    }
    d.update({k: v for k, v in optional.items() if v is not None})
    return d


def _document_to_dict(document: Document) -> Dict[str, Any]:
    d: Dict[str, Any] = {
        "id": document.id,
        "owner": {"type": document.owner_type, "id": document.owner_id},
        "type": document.type,
        "issueDate": document.issue_date.isoformat(),
        "expiryDate": document.expiry_date.isoformat(),
    }
    if document.name is not None:
        d["name"] = document.name
    return d


def _service_record_to_dict(record: ServiceRecord) -> Dict[str, Any]:
    return {
        "id": record.id,
        "vehicleId": record.vehicle_id,
        "lastServiceKm": record.last_service_km,
        "currentKm": record.current_km,
        "nextServiceKm": record.next_service_km,
        "serviceDate": record.service_date.isoformat(),
    }


def fleet_to_dict(fleet: FleetData) -> Dict[str, Any]:
    """Serialize fleet data to the YAML dict format (camelCase keys)."""
    return {
        "settings": fleet.settings.to_dict(),
        "vehicles": [_vehicle_to_dict(v) for v in fleet.vehicles],
        "drivers": [_driver_to_dict(d) for d in fleet.drivers],
        "assignments": [_assignment_to_dict(a) for a in fleet.assignments],
        "blocks": [_block_to_dict(b) for b in fleet.blocks],
        "documents": [_document_to_dict(d) for d in fleet.documents],
        "serviceRecords": [_service_record_to_dict(r) for r in fleet.service_records],
    }


def save_fleet(filename: Union[str, Path], fleet: FleetData) -> None:
    """
    Write fleet data to a YAML file.

    The file is replaced atomically: data goes to a temporary file in the
    same directory, which is then renamed over the target. Readers never
    observe a half-written file.
    """
    target = Path(filename)
    tmp_path: Optional[Path] = None
    try:
        fd, tmp_name = tempfile.mkstemp(prefix=target.name, suffix=".tmp", dir=str(target.parent))
        tmp_path = Path(tmp_name)
        with os.fdopen(fd, "w") as fp:
            yaml.dump(
                fleet_to_dict(fleet),
                fp,
                default_flow_style=False,
                allow_unicode=True,
                sort_keys=False,
                width=120,
            )
            fp.flush()
            os.fsync(fp.fileno())
        os.replace(str(tmp_path), str(target))
    except (OSError, yaml.YAMLError) as e:
        if tmp_path is not None and tmp_path.exists():
            tmp_path.unlink()
        raise PersistenceError(f"Could not write fleet file {target}: {e}") from e


def create_fleet_file(filename: Union[str, Path], settings: Optional[Settings] = None) -> None:
    """Create a new, empty fleet file."""
    save_fleet(filename, FleetData(settings=settings or Settings()))
