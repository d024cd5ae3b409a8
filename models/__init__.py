"""
Fleet data models.

This package provides the data models for fleet scheduling and compliance:
- Status enums: vehicle, assignment, block, document and service states
- Vehicle / Driver: the scheduled resources
- Assignment / VehicleBlock: time-bounded custody windows
- Document / ServiceRecord: records whose status is derived on read
- calculations: pure overlap and status derivation functions
- errors: the error taxonomy shared by every layer
"""

from .status import (
    VehicleStatus,
    AssignmentStatus,
    BlockStatus,
    ResourceKind,
    DocumentStatus,
    ServiceStatus,
)
from .errors import (
    FleetError,
    ValidationError,
    NotFoundError,
    ConflictError,
    InvalidStateError,
    TransactionError,
    LockTimeoutError,
    PersistenceError,
)
from .vehicle import Vehicle
from .driver import Driver
from .assignment import Assignment, VehicleBlock
from .document import Document
from .service_record import ServiceRecord
from .settings import Settings
from .calculations import (
    as_utc,
    as_date,
    windows_overlap,
    days_remaining,
    document_status,
    service_status,
    calc_next_service_km,
)
from .loader import (
    FleetData,
    load_fleet,
    save_fleet,
    create_fleet_file,
    find_overlaps,
    check_windows,
)

__all__ = [
    "VehicleStatus",
    "AssignmentStatus",
    "BlockStatus",
    "ResourceKind",
    "DocumentStatus",
    "ServiceStatus",
    "FleetError",
    "ValidationError",
    "NotFoundError",
    "ConflictError",
    "InvalidStateError",
    "TransactionError",
    "LockTimeoutError",
    "PersistenceError",
    "Vehicle",
    "Driver",
    "Assignment",
    "VehicleBlock",
    "Document",
    "ServiceRecord",
    "Settings",
    "as_utc",
    "as_date",
    "windows_overlap",
    "days_remaining",
    "document_status",
    "service_status",
    "calc_next_service_km",
    "FleetData",
    "load_fleet",
    "save_fleet",
    "create_fleet_file",
    "find_overlaps",
    "check_windows",
]
