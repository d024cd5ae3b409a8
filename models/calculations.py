"""Helper functions for window overlap and status derivation."""

from datetime import date, datetime, timedelta, timezone
from typing import Union

from dateutil.parser import isoparse

from .errors import ValidationError
from .status import DocumentStatus, ServiceStatus

DEFAULT_WARN_THRESHOLD_DAYS = 30
DEFAULT_DUE_SOON_THRESHOLD_KM = 500
DEFAULT_SERVICE_INTERVAL_KM = 6000


def as_utc(value: Union[str, datetime]) -> datetime:
    """
    Normalize a timestamp to an aware UTC datetime.

    Strings are parsed as ISO 8601. Naive datetimes are taken to be UTC.
    """
    if isinstance(value, str):
        try:
            value = isoparse(value)
        except ValueError as e:
            raise ValidationError(f"Invalid timestamp '{value}': {e}") from e
    if not isinstance(value, datetime):
        raise ValidationError(f"Expected a timestamp, got {type(value).__name__}")
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def as_date(value: Union[str, date]) -> date:
    """Normalize a calendar date given as a date, datetime or ISO string."""
    if isinstance(value, str):
        try:
            value = isoparse(value)
        except ValueError as e:
            raise ValidationError(f"Invalid date '{value}': {e}") from e
    if isinstance(value, datetime):
        return as_utc(value).date()
    if isinstance(value, date):
        return value
    raise ValidationError(f"Expected a date, got {type(value).__name__}")


def windows_overlap(
    start_a: datetime, end_a: datetime, start_b: datetime, end_b: datetime
) -> bool:
    """
    Check whether two half-open windows [start, end) intersect.

    Windows that only touch (one ends exactly when the other starts) do not
    overlap.
    """
    return start_a < end_b and start_b < end_a


def _check_threshold(name: str, value: float) -> None:
    if value is None or value < 0:
        raise ValidationError(f"{name} must be a non-negative number, got {value!r}")


def _expiry_delta(
    expiry: Union[date, datetime], now: Union[date, datetime]
) -> timedelta:
    # Date-only expiries are compared on calendar days.
    if not isinstance(expiry, datetime) or not isinstance(now, datetime):
        return as_date(expiry) - as_date(now)
    return as_utc(expiry) - as_utc(now)


def days_remaining(expiry: Union[date, datetime], now: Union[date, datetime]) -> int:
    """Whole days until expiry (negative once the date has passed)."""
    return _expiry_delta(expiry, now).days


def document_status(
    expiry: Union[date, datetime],
    now: Union[date, datetime],
    warn_threshold_days: float = DEFAULT_WARN_THRESHOLD_DAYS,
) -> DocumentStatus:
    """
    Determine document status from its expiry and the current instant.

    - EXPIRED: now is past the expiry
    - EXPIRING_SOON: expiry is within warn_threshold_days of now (inclusive)
    - VALID: otherwise
    """
    _check_threshold("warn_threshold_days", warn_threshold_days)
    remaining = _expiry_delta(expiry, now)
    if remaining < timedelta(0):
        return DocumentStatus.EXPIRED
    if remaining <= timedelta(days=warn_threshold_days):
        return DocumentStatus.EXPIRING_SOON
    return DocumentStatus.VALID


def service_status(
    current_km: float,
    next_service_km: float,
    due_soon_threshold_km: float = DEFAULT_DUE_SOON_THRESHOLD_KM,
) -> ServiceStatus:
    """Determine service status from the kilometres left until the next service."""
    _check_threshold("due_soon_threshold_km", due_soon_threshold_km)
    remaining = next_service_km - current_km
    if remaining <= 0:
        return ServiceStatus.OVERDUE
    if remaining <= due_soon_threshold_km:
        return ServiceStatus.DUE_SOON
    return ServiceStatus.OK


def calc_next_service_km(
    last_service_km: float, interval_km: float = DEFAULT_SERVICE_INTERVAL_KM
) -> float:
    """Next service is due one interval after the last one."""
    if interval_km is None or interval_km <= 0:
        raise ValidationError(f"interval_km must be positive, got {interval_km!r}")
    return last_service_km + interval_km
