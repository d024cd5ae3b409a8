"""Assignment lifecycle events and the sinks that receive them."""

import copy
import logging
from dataclasses import dataclass
from enum import Enum

from models.assignment import Assignment

logger = logging.getLogger(__name__)


class EventType(Enum):
    ASSIGNMENT_CREATED = "AssignmentCreated"
    ASSIGNMENT_COMPLETED = "AssignmentCompleted"
    ASSIGNMENT_CANCELLED = "AssignmentCancelled"


@dataclass(frozen=True)
class AssignmentEvent:
    """A committed assignment transition, carrying the full record."""

    type: EventType
    assignment: Assignment

    @classmethod
    def of(cls, type: EventType, assignment: Assignment) -> "AssignmentEvent":
        return cls(type, copy.copy(assignment))


class NullSink:
    """Drops every event."""

    def emit(self, event: AssignmentEvent) -> None:
        pass


class LoggingSink:
    """Writes every event to the log."""

    def __init__(self, logger_name: str = "fleet.events"):
        self._logger = logging.getLogger(logger_name)

    def emit(self, event: AssignmentEvent) -> None:
        a = event.assignment
        self._logger.info(
            "%s assignment=%s vehicle=%s driver=%s window=%s..%s status=%s",
            event.type.value,
            a.id,
            a.vehicle_id,
            a.driver_id,
            a.start_time.isoformat(),
            a.end_time.isoformat(),
            a.status.value,
        )


def deliver(sink, event: AssignmentEvent) -> bool:
    """
    Hand an event to a sink, fire-and-forget.

    The transition is already committed; a failing sink is logged and
    reported as False, never raised.
    """
    try:
        sink.emit(event)
        return True
    except Exception:
        logger.exception(
            "Notification sink failed for %s on assignment %s",
            event.type.value,
            event.assignment.id,
        )
        return False
