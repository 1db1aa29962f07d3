"""Lock state, observed attachment state and reconcile counters."""

from enum import Enum
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field


class LockStatus(str, Enum):
    UNLOCKED = "unlocked"
    LOCKED = "locked"


class LockState(BaseModel):
    """Whether the reconciliation loop is enabled."""

    locked: bool = False

    @property
    def status(self) -> LockStatus:
        return LockStatus.LOCKED if self.locked else LockStatus.UNLOCKED


class AttachmentState(BaseModel):
    """Read-only snapshot from the State Observer. None = not attached."""

    model_config = ConfigDict(frozen=True, populate_by_name=True)

    attached_to: Optional[str] = Field(default=None, alias="attachedTo")

    @property
    def is_attached(self) -> bool:
        return self.attached_to is not None


class ReconcileCounters(BaseModel):
    """
    Monotonic for the controller lifetime, reset only on restart.
    Observability only, never an input to control decisions.
    Python ints widen instead of wrapping.
    """

    attempts: int = Field(default=0, ge=0)
    successes: int = Field(default=0, ge=0)
