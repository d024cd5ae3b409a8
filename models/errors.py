"""Error taxonomy for the scheduling core.

Client errors (validation, not found, conflict, invalid state) are never
retryable. Transaction errors (lock timeouts, storage failures) are the only
retryable category, and retrying them is the caller's job.
"""

from datetime import datetime
from typing import Optional


class FleetError(Exception):
    """Base class for every error raised by the fleet core."""

    kind = "error"
    retryable = False


class ValidationError(FleetError):
    """Malformed input (end <= start, negative thresholds, bad odometer)."""

    kind = "validation"


class NotFoundError(FleetError):
    """Unknown vehicle, driver, assignment, block, document or record."""

    kind = "not_found"

    def __init__(self, entity: str, entity_id: str):
        self.entity = entity
        self.entity_id = entity_id
        super().__init__(f"{entity} '{entity_id}' not found")


class ConflictError(FleetError):
    """A candidate window overlaps an Active window on the same resource."""

    kind = "conflict"

    def __init__(
        self,
        resource_kind: str,
        resource_id: str,
        conflicting_kind: str,
        conflicting_id: str,
        conflicting_start: datetime,
        conflicting_end: datetime,
    ):
        self.resource_kind = resource_kind
        self.resource_id = resource_id
        self.conflicting_kind = conflicting_kind
        self.conflicting_id = conflicting_id
        self.conflicting_start = conflicting_start
        self.conflicting_end = conflicting_end
        super().__init__(
            f"{resource_kind} '{resource_id}' is already held by "
            f"{conflicting_kind} '{conflicting_id}' "
            f"from {conflicting_start.isoformat()} to {conflicting_end.isoformat()}"
        )


class InvalidStateError(FleetError):
    """A lifecycle transition was requested from a non-Active record."""

    kind = "invalid_state"

    def __init__(self, entity: str, entity_id: str, status: str, action: str):
        self.entity = entity
        self.entity_id = entity_id
        self.status = status
        self.action = action
        super().__init__(f"Cannot {action} {entity} '{entity_id}': status is {status}")


class TransactionError(FleetError):
    """Lock acquisition or storage failure. Safe for the caller to retry."""

    kind = "transaction"
    retryable = True


class LockTimeoutError(TransactionError):
    """A per-resource lock could not be acquired in time."""

    def __init__(self, key, timeout: Optional[float]):
        self.key = key
        self.timeout = timeout
        super().__init__(f"Timed out after {timeout}s waiting for lock on {key[0]} '{key[1]}'")


class PersistenceError(TransactionError):
    """The backing store rejected a write; the in-memory change was rolled back."""

    kind = "persistence"
