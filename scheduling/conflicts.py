"""Overlap checks against a resource's Active windows."""

from datetime import datetime
from typing import List, Optional, Union

from models.assignment import Assignment, VehicleBlock, validate_window
from models.status import ResourceKind

from .locks import LockScope

Window = Union[Assignment, VehicleBlock]


class ConflictDetector:
    """
    Finds Active windows that intersect a candidate window.

    Windows are half-open, [start, end): a window ending at T and another
    starting at T do not conflict. Completed and Cancelled records never
    conflict. A vehicle's assignments and blocks share one domain; a driver's
    domain holds only assignments.

    Reads go through the caller's lock scope, so the answer stays true until
    the caller releases it.
    """

    def __init__(self, repository):
        self.repository = repository

    def active_windows(
        self, scope: LockScope, resource_id: str, kind: ResourceKind
    ) -> List[Window]:
        windows: List[Window] = list(
            self.repository.get_active_assignments(scope, kind, resource_id)
        )
        if kind == ResourceKind.VEHICLE:
            windows.extend(self.repository.get_active_blocks(scope, resource_id))
        return sorted(windows, key=lambda w: (w.start_time, w.id))

    def find_conflict(
        self,
        scope: LockScope,
        resource_id: str,
        kind: ResourceKind,
        candidate_start: datetime,
        candidate_end: datetime,
        exclude_id: Optional[str] = None,
    ) -> Optional[Window]:
        """Return the earliest Active window overlapping the candidate, if any."""
        validate_window(candidate_start, candidate_end)
        for window in self.active_windows(scope, resource_id, kind):
            if exclude_id is not None and window.id == exclude_id:
                continue
            if window.overlaps(candidate_start, candidate_end):
                return window
        return None

    def has_conflict(
        self,
        scope: LockScope,
        resource_id: str,
        kind: ResourceKind,
        candidate_start: datetime,
        candidate_end: datetime,
        exclude_id: Optional[str] = None,
    ) -> bool:
        return (
            self.find_conflict(
                scope, resource_id, kind, candidate_start, candidate_end, exclude_id
            )
            is not None
        )
