"""ServiceRecord class for odometer-driven service tracking."""

from datetime import date
from typing import Optional, Union

from .calculations import DEFAULT_SERVICE_INTERVAL_KM, as_date, calc_next_service_km
from .errors import ValidationError


class ServiceRecord:
    """The last service of a vehicle and the odometer reading it is due at next."""

    def __init__(
        self,
        id: str,
        vehicle_id: str,
        last_service_km: float,
        current_km: float,
        next_service_km: float,
        service_date: Union[str, date],
    ):
        if last_service_km is None or last_service_km < 0:
            raise ValidationError(f"Service record '{id}': last_service_km must be >= 0")
        if current_km < last_service_km:
            raise ValidationError(
                f"Service record '{id}': current_km {current_km} is below "
                f"last_service_km {last_service_km}"
            )
        if next_service_km <= last_service_km:
            raise ValidationError(
                f"Service record '{id}': next_service_km {next_service_km} must be "
                f"greater than last_service_km {last_service_km}"
            )
        self.id = id
        self.vehicle_id = vehicle_id
        self.last_service_km = last_service_km
        self.current_km = current_km
        self.next_service_km = next_service_km
        self.service_date = as_date(service_date)

    @classmethod
    def create(
        cls,
        id: str,
        vehicle_id: str,
        last_service_km: float,
        current_km: float,
        service_date: Union[str, date],
        next_service_km: Optional[float] = None,
        interval_km: float = DEFAULT_SERVICE_INTERVAL_KM,
    ) -> "ServiceRecord":
        """
        Build a new record from a fresh service entry.

        Without an explicit next_service_km, the next service is due one
        interval after the last one. A new record may not already be due:
        next_service_km must lie beyond current_km.
        """
        if next_service_km is None:
            next_service_km = calc_next_service_km(last_service_km, interval_km)
        if next_service_km <= current_km:
            raise ValidationError(
                f"Service record '{id}': next_service_km {next_service_km} must be "
                f"greater than current_km {current_km}"
            )
        return cls(id, vehicle_id, last_service_km, current_km, next_service_km, service_date)

    @property
    def km_remaining(self) -> float:
        return self.next_service_km - self.current_km
