"""Controller settings (persisted, user-editable) and static controller config."""

from typing import Any, List, Optional

from loguru import logger
from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator

DEFAULT_TARGETS = ["1469136426250801152", "1459856756816613548"]
DEFAULT_INTERVAL_MS = 7000
MIN_INTERVAL_MS = 3000


class ConfigInvalid(ValueError):
    """Raised when a settings change or lock transition is rejected."""
    pass


def validate_targets(targets: List[str]) -> List[str]:
    """Strip entries and reject an empty or blank target list."""
    cleaned = [str(t).strip() for t in targets]
    if not cleaned:
        raise ConfigInvalid("Target list is empty: at least one target is required")
    if any(not t for t in cleaned):
        raise ConfigInvalid("Target list contains a blank entry")
    return cleaned


def normalize_interval(interval_ms: int) -> int:
    """Reject non-positive intervals, clamp short ones to the minimum."""
    if isinstance(interval_ms, bool) or not isinstance(interval_ms, int):
        raise ConfigInvalid(f"Interval must be an integer number of ms, got {interval_ms!r}")
    if interval_ms <= 0:
        raise ConfigInvalid(f"Interval must be positive, got {interval_ms}")
    if interval_ms < MIN_INTERVAL_MS:
        logger.warning(
            f"[SETTINGS] Interval {interval_ms}ms below minimum, clamped to {MIN_INTERVAL_MS}ms"
        )
        return MIN_INTERVAL_MS
    return interval_ms


class ControllerSettings(BaseModel):
    """
    Persisted state layout: {locked, targets, intervalMs}.

    `targets` may be empty here so that a corrupt persisted list can be
    loaded and then auto-reset; the lock transition enforces non-emptiness.
    """

    model_config = ConfigDict(populate_by_name=True)

    locked: bool = False
    targets: List[str] = Field(default_factory=lambda: list(DEFAULT_TARGETS))
    interval_ms: int = Field(default=DEFAULT_INTERVAL_MS, alias="intervalMs")

    @field_validator("interval_ms")
    @classmethod
    def _clamp_interval(cls, value: int) -> int:
        return normalize_interval(value)

    @field_validator("targets")
    @classmethod
    def _strip_targets(cls, value: List[str]) -> List[str]:
        return [t.strip() for t in value]

    def to_persisted(self) -> dict:
        return self.model_dump(mode="json", by_alias=True)

    @classmethod
    def load_lenient(cls, raw: Any) -> "ControllerSettings":
        """
        Build settings from an untrusted persisted blob.
        Each missing or invalid field falls back to its default on its own.
        """
        if not isinstance(raw, dict):
            if raw is not None:
                logger.warning("[SETTINGS] Persisted settings are not an object, using defaults")
            return cls()

        accepted = {}
        for name, field in cls.model_fields.items():
            key = field.alias if field.alias in raw else name
            if key not in raw:
                continue
            value = raw[key]
            # bool is an int subclass; "locked": 1 would silently coerce otherwise
            if name == "locked" and not isinstance(value, bool):
                logger.warning(f"[SETTINGS] Ignoring invalid persisted {key}={value!r}")
                continue
            try:
                cls.model_validate({name: value})
            except (ValidationError, ConfigInvalid) as e:
                logger.warning(f"[SETTINGS] Ignoring invalid persisted {key}={value!r}: {e}")
                continue
            accepted[name] = value
        return cls.model_validate(accepted)


class ControllerConfig(BaseModel):
    """Static configuration for a controller instance."""

    controller_id: str = "presence-kernel"
    hotkey: str = "l"
    hotkey_debounce_ms: int = Field(default=300, ge=0)
    attach_timeout_ms: int = Field(default=10_000, gt=0)
    report_history: int = Field(default=50, ge=1)
    source_markers: List[str] = Field(default_factory=lambda: ["channelId", "voice"])
    defaults: Optional[ControllerSettings] = None
