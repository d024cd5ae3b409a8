"""Assignment and VehicleBlock records - time-bounded custody windows."""

from dataclasses import dataclass
from datetime import datetime
from typing import Optional

from .calculations import as_utc, windows_overlap
from .errors import ValidationError
from .status import AssignmentStatus, BlockStatus


def validate_window(start: datetime, end: datetime) -> None:
    """Both ends are required and the window must have positive length."""
    if start is None or end is None:
        raise ValidationError("Both start and end times are required")
    if end <= start:
        raise ValidationError(
            f"End time {end.isoformat()} must be after start time {start.isoformat()}"
        )


@dataclass
class Assignment:
    """A driver's exclusive custody of a vehicle for [start_time, end_time)."""

    id: str
    vehicle_id: str
    driver_id: str
    start_time: datetime
    end_time: datetime
    reason: str = ""
    status: AssignmentStatus = AssignmentStatus.ACTIVE
    assigned_by: Optional[str] = None
    created_at: Optional[datetime] = None
    closed_by: Optional[str] = None
    closed_at: Optional[datetime] = None
    cancel_reason: Optional[str] = None

    record_kind = "assignment"

    def __post_init__(self):
        self.start_time = as_utc(self.start_time)
        self.end_time = as_utc(self.end_time)
        validate_window(self.start_time, self.end_time)
        self.status = AssignmentStatus(self.status)

    @property
    def is_active(self) -> bool:
        return self.status == AssignmentStatus.ACTIVE

    def overlaps(self, start: datetime, end: datetime) -> bool:
        return windows_overlap(self.start_time, self.end_time, start, end)

    def covers(self, instant: datetime) -> bool:
        return self.start_time <= instant < self.end_time


@dataclass
class VehicleBlock:
    """A period during which a vehicle is withdrawn from service."""

    id: str
    vehicle_id: str
    start_time: datetime
    end_time: datetime
    reason: str = ""
    status: BlockStatus = BlockStatus.ACTIVE
    blocked_by: Optional[str] = None
    created_at: Optional[datetime] = None
    closed_by: Optional[str] = None
    closed_at: Optional[datetime] = None

    record_kind = "block"

    def __post_init__(self):
        self.start_time = as_utc(self.start_time)
        self.end_time = as_utc(self.end_time)
        validate_window(self.start_time, self.end_time)
        self.status = BlockStatus(self.status)

    @property
    def is_active(self) -> bool:
        return self.status == BlockStatus.ACTIVE

    def overlaps(self, start: datetime, end: datetime) -> bool:
        return windows_overlap(self.start_time, self.end_time, start, end)

    def covers(self, instant: datetime) -> bool:
        return self.start_time <= instant < self.end_time
