"""Vehicle class - a schedulable physical resource."""

from typing import Optional

from .errors import ValidationError
from .status import VehicleStatus


class Vehicle:
    """
    A fleet vehicle.

    ``status`` is a derived cache of the vehicle's assignments and blocks.
    It has no public setter: only the repository's scoped write methods,
    driven by the scheduler, change it.
    """

    def __init__(
        self,
        id: str,
        plate_number: str,
        model: str,
        year: Optional[int] = None,
        odometer_km: float = 0,
        status: VehicleStatus = VehicleStatus.AVAILABLE,
    ):
        if odometer_km is None or odometer_km < 0:
            raise ValidationError(f"Vehicle '{id}': odometer_km must be >= 0")
        self.id = id
        self.plate_number = plate_number
        self.model = model
        self.year = year
        self.odometer_km = odometer_km
        self._status = VehicleStatus(status)

    @property
    def status(self) -> VehicleStatus:
        return self._status

    @property
    def name(self) -> str:
        """Human-readable vehicle name."""
        base = f"{self.plate_number} {self.model}"
        return f"{base} ({self.year})" if self.year else base

    def __repr__(self) -> str:
        return f"<Vehicle {self.id} {self.plate_number} {self._status.value}>"
