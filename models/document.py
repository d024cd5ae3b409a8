"""Document class for vehicle and driver compliance paperwork."""

from datetime import date
from typing import Optional, Union

from .calculations import as_date
from .errors import ValidationError

OWNER_TYPES = ("vehicle", "driver")

VEHICLE_DOCUMENT_TYPES = ("insurance", "vrt_tag", "logbook")
DRIVER_DOCUMENT_TYPES = ("id", "license")


class Document:
    """
    A dated compliance document owned by a vehicle or a driver.

    Status is never stored; it is derived on every read from the expiry date
    and the current instant.
    """

    def __init__(
        self,
        id: str,
        owner_type: str,
        owner_id: str,
        type: str,
        issue_date: Union[str, date],
        expiry_date: Union[str, date],
        name: Optional[str] = None,
    ):
        if owner_type not in OWNER_TYPES:
            raise ValidationError(f"Document '{id}': invalid owner type '{owner_type}'")
        allowed = VEHICLE_DOCUMENT_TYPES if owner_type == "vehicle" else DRIVER_DOCUMENT_TYPES
        if type not in allowed:
            raise ValidationError(
                f"Document '{id}': type '{type}' is not valid for a {owner_type} "
                f"(expected one of {', '.join(allowed)})"
            )
        issue = as_date(issue_date)
        expiry = as_date(expiry_date)
        if expiry <= issue:
            raise ValidationError(
                f"Document '{id}': expiry {expiry.isoformat()} must be after issue {issue.isoformat()}"
            )
        self.id = id
        self.owner_type = owner_type
        self.owner_id = owner_id
        self.type = type
        self.issue_date = issue
        self.expiry_date = expiry
        self.name = name

    @property
    def display_name(self) -> str:
        return self.name or self.type.replace("_", " ").title()
