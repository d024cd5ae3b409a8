"""Status enums for vehicles, scheduling windows, documents and service records."""

from enum import Enum


class VehicleStatus(Enum):
    """Derived operational state of a vehicle."""

    AVAILABLE = "available"
    ASSIGNED = "assigned"
    BLOCKED = "blocked"


class AssignmentStatus(Enum):
    """Lifecycle of an assignment. COMPLETED and CANCELLED are terminal."""

    ACTIVE = "active"
    COMPLETED = "completed"
    CANCELLED = "cancelled"


class BlockStatus(Enum):
    """Lifecycle of a vehicle block. COMPLETED is terminal."""

    ACTIVE = "active"
    COMPLETED = "completed"


class ResourceKind(Enum):
    """Which non-overlap domain a conflict check applies to."""

    VEHICLE = "vehicle"
    DRIVER = "driver"


class DocumentStatus(Enum):
    """Document compliance categories. Lower value = more urgent."""

    EXPIRED = 1
    EXPIRING_SOON = 2
    VALID = 3


class ServiceStatus(Enum):
    """Service urgency categories. Lower value = more urgent."""

    OVERDUE = 1
    DUE_SOON = 2
    OK = 3
