"""Tunable thresholds, read from the fleet file and the environment."""

import os
from dataclasses import dataclass, fields, replace
from typing import Any, Dict, Mapping, Optional

from .calculations import (
    DEFAULT_DUE_SOON_THRESHOLD_KM,
    DEFAULT_SERVICE_INTERVAL_KM,
    DEFAULT_WARN_THRESHOLD_DAYS,
)
from .errors import ValidationError

# YAML key -> field name
_YAML_KEYS = {
    "warnThresholdDays": "warn_threshold_days",
    "dueSoonThresholdKm": "due_soon_threshold_km",
    "serviceIntervalKm": "service_interval_km",
    "lockTimeoutSeconds": "lock_timeout_seconds",
}

_ENV_PREFIX = "FLEET_"


@dataclass(frozen=True)
class Settings:
    warn_threshold_days: float = DEFAULT_WARN_THRESHOLD_DAYS
    due_soon_threshold_km: float = DEFAULT_DUE_SOON_THRESHOLD_KM
    service_interval_km: float = DEFAULT_SERVICE_INTERVAL_KM
    lock_timeout_seconds: float = 5.0

    def __post_init__(self):
        for f in fields(self):
            value = getattr(self, f.name)
            if not isinstance(value, (int, float)) or value < 0:
                raise ValidationError(f"Setting {f.name} must be a non-negative number, got {value!r}")
        if self.service_interval_km == 0:
            raise ValidationError("Setting service_interval_km must be positive")

    @classmethod
    def from_dict(cls, data: Optional[Mapping[str, Any]]) -> "Settings":
        """Build settings from a fleet file ``settings:`` block (camelCase keys)."""
        values: Dict[str, Any] = {}
        for key, value in (data or {}).items():
            if key not in _YAML_KEYS:
                raise ValidationError(f"Unknown setting '{key}'")
            values[_YAML_KEYS[key]] = value
        return cls(**values)

    def with_env(self, environ: Optional[Mapping[str, str]] = None) -> "Settings":
        """
        Apply FLEET_* environment overrides on top of these settings.

        e.g. FLEET_WARN_THRESHOLD_DAYS=14
        """
        environ = os.environ if environ is None else environ
        overrides: Dict[str, float] = {}
        for f in fields(self):
            raw = environ.get(_ENV_PREFIX + f.name.upper())
            if raw is None:
                continue
            try:
                overrides[f.name] = float(raw)
            except ValueError as e:
                raise ValidationError(f"{_ENV_PREFIX + f.name.upper()}={raw!r} is not a number") from e
        return replace(self, **overrides) if overrides else self

    def to_dict(self) -> Dict[str, float]:
        """Serialize to the fleet file format (camelCase keys)."""
        return {key: getattr(self, name) for key, name in _YAML_KEYS.items()}
