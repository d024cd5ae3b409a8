"""Clock sources for the scheduler and the status reader."""

from datetime import datetime, timedelta, timezone
from typing import Union

from models.calculations import as_utc


class SystemClock:
    """Server-authoritative wall clock (UTC)."""

    def now(self) -> datetime:
        return datetime.now(timezone.utc)


class FixedClock:
    """A clock that only moves when told to. Used by tests and the CLI's --now."""

    def __init__(self, instant: Union[str, datetime]):
        self._now = as_utc(instant)

    def now(self) -> datetime:
        return self._now

    def set(self, instant: Union[str, datetime]) -> None:
        self._now = as_utc(instant)

    def advance(self, **kwargs) -> datetime:
        """Move forward by a timedelta given as keyword args (days=1, hours=2)."""
        self._now = self._now + timedelta(**kwargs)
        return self._now
