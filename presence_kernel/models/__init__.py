"""Presence Kernel data models."""

from presence_kernel.models.report import TargetFailure, TickOutcome, TickReport
from presence_kernel.models.settings import (
    DEFAULT_INTERVAL_MS,
    DEFAULT_TARGETS,
    MIN_INTERVAL_MS,
    ConfigInvalid,
    ControllerConfig,
    ControllerSettings,
)
from presence_kernel.models.state import (
    AttachmentState,
    LockState,
    LockStatus,
    ReconcileCounters,
)

__all__ = [
    "AttachmentState",
    "ConfigInvalid",
    "ControllerConfig",
    "ControllerSettings",
    "DEFAULT_INTERVAL_MS",
    "DEFAULT_TARGETS",
    "LockState",
    "LockStatus",
    "MIN_INTERVAL_MS",
    "ReconcileCounters",
    "TargetFailure",
    "TickOutcome",
    "TickReport",
]
