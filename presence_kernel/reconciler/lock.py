"""
Lock State Machine: gates the reconciliation loop.

States:
  UNLOCKED ⇄ LOCKED

Every transition is persisted before it takes effect. The machine also owns
the rest of the persisted settings (targets, interval) because lock
transitions are validated against them.
"""

from typing import List, Optional, Set

from loguru import logger

from presence_kernel.models.settings import (
    ConfigInvalid,
    ControllerSettings,
    normalize_interval,
    validate_targets,
)
from presence_kernel.models.state import LockState
from presence_kernel.store.settings import SettingsStore


class LockStateMachine:
    """Owns the persisted {locked, targets, intervalMs} record for one controller."""

    def __init__(
        self,
        store: SettingsStore,
        controller_id: str,
        defaults: Optional[ControllerSettings] = None,
    ):
        self.store = store
        self.controller_id = controller_id
        self.defaults = defaults
        self.settings = (defaults or ControllerSettings()).model_copy(deep=True)

    @property
    def locked(self) -> bool:
        return self.settings.locked

    @property
    def state(self) -> LockState:
        return LockState(locked=self.settings.locked)

    def load(self) -> ControllerSettings:
        """
        Reload persisted settings verbatim.
        A persisted lock whose precondition no longer holds is reset to unlocked.
        """
        self.settings = self.store.load(self.controller_id, default=self.defaults)
        if self.settings.locked:
            try:
                validate_targets(self.settings.targets)
            except ConfigInvalid as e:
                logger.warning(f"[LOCK] Persisted lock reset to unlocked: {e}")
                self.settings.locked = False
                self._save()
        return self.settings

    def lock(self) -> bool:
        """Enter LOCKED. Returns False if already locked. Raises ConfigInvalid."""
        if self.settings.locked:
            return False
        self.settings.targets = validate_targets(self.settings.targets)
        self.settings.locked = True
        self._save()
        logger.info(f"[LOCK] {self.controller_id} locked, targets={self.settings.targets}")
        return True

    def unlock(self) -> bool:
        """Enter UNLOCKED. Returns False if already unlocked."""
        if not self.settings.locked:
            return False
        self.settings.locked = False
        self._save()
        logger.info(f"[LOCK] {self.controller_id} unlocked")
        return True

    def toggle(self) -> LockState:
        if self.settings.locked:
            self.unlock()
        else:
            self.lock()
        return self.state

    def update_settings(
        self,
        targets: Optional[List[str]] = None,
        interval_ms: Optional[int] = None,
    ) -> Set[str]:
        """
        Validate and persist a settings change. Returns the names of changed fields.
        Nothing is applied if any value is rejected.
        """
        new_targets = validate_targets(targets) if targets is not None else None
        new_interval = normalize_interval(interval_ms) if interval_ms is not None else None

        changed = set()
        if new_targets is not None and new_targets != self.settings.targets:
            self.settings.targets = new_targets
            changed.add("targets")
        if new_interval is not None and new_interval != self.settings.interval_ms:
            self.settings.interval_ms = new_interval
            changed.add("interval_ms")
        if changed:
            self._save()
            logger.info(f"[LOCK] Settings updated: {sorted(changed)}")
        return changed

    def _save(self) -> None:
        self.store.save(self.controller_id, self.settings)
