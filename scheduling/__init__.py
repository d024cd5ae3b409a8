"""
Vehicle scheduling core.

- Clock: SystemClock / FixedClock
- LockManager / LockScope: per-resource locks taken in global order
- ResourceRepository / YamlRepository: storage with scoped atomic writes
- ConflictDetector: half-open window overlap against Active windows
- AssignmentScheduler: the single writer of assignments, blocks and Vehicle.status
- FleetStatusReader: read-side document, service and calendar status
"""

from .clock import SystemClock, FixedClock
from .locks import LockManager, LockScope, resource_key
from .repository import ResourceRepository, YamlRepository
from .conflicts import ConflictDetector
from .notifications import AssignmentEvent, EventType, NullSink, LoggingSink, deliver
from .scheduler import AssignmentScheduler
from .status_reader import FleetStatusReader, DocumentView, ServiceView, CalendarEvent
from .retry import retry_transient

__all__ = [
    "SystemClock",
    "FixedClock",
    "LockManager",
    "LockScope",
    "resource_key",
    "ResourceRepository",
    "YamlRepository",
    "ConflictDetector",
    "AssignmentEvent",
    "EventType",
    "NullSink",
    "LoggingSink",
    "deliver",
    "AssignmentScheduler",
    "FleetStatusReader",
    "DocumentView",
    "ServiceView",
    "CalendarEvent",
    "retry_transient",
]
