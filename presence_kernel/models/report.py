"""Tick Report: the per-tick observability record."""

from datetime import datetime
from enum import Enum
from typing import List, Optional

from pydantic import BaseModel, ConfigDict, Field

from presence_kernel.models.state import ReconcileCounters


class TickOutcome(str, Enum):
    UNLOCKED = "unlocked"                       # Loop disabled, nothing checked
    STOPPED = "stopped"                         # Controller stopped, result discarded
    OBSERVER_UNAVAILABLE = "observer_unavailable"
    ALREADY_ATTACHED = "already_attached"
    DISCOVERY_FAILURE = "discovery_failure"     # No actuator, degraded capability
    ATTACHED = "attached"
    ALL_TARGETS_FAILED = "all_targets_failed"


class TargetFailure(BaseModel):
    """One failed attach call within a tick."""

    target: str
    reason: str


class TickReport(BaseModel):
    """What one tick decided and did."""

    model_config = ConfigDict(populate_by_name=True)

    tick_id: str
    outcome: TickOutcome
    attempted: bool = False
    succeeded: bool = False
    chosen_target: Optional[str] = Field(default=None, alias="chosenTarget")
    reason: Optional[str] = None
    failures: List[TargetFailure] = []
    counters: ReconcileCounters
    started_at: datetime
    finished_at: Optional[datetime] = None

    @property
    def invocations(self) -> int:
        """Number of actuator calls made during the tick."""
        return len(self.failures) + (1 if self.succeeded else 0)
