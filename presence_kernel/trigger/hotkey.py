"""Keyboard toggle: turns host key events into controller toggles."""

import time
from typing import Callable, Optional

from loguru import logger

from presence_kernel.models.settings import ConfigInvalid
from presence_kernel.models.state import LockState
from presence_kernel.reconciler.loop import ReconciliationController


class HotkeyTrigger:
    """
    Calls toggle() when the configured key is pressed.
    Auto-repeat events from a held key and presses inside the debounce
    window are ignored.
    """

    def __init__(
        self,
        controller: ReconciliationController,
        key: Optional[str] = None,
        debounce_ms: Optional[int] = None,
        time_source: Callable[[], float] = time.monotonic,
    ):
        self.controller = controller
        self.key = (key or controller.config.hotkey).lower()
        self.debounce_ms = (
            debounce_ms if debounce_ms is not None else controller.config.hotkey_debounce_ms
        )
        self._time = time_source
        self._last_fired: Optional[float] = None

    def _debounced(self, now: float) -> bool:
        if self._last_fired is None:
            return False
        return (now - self._last_fired) * 1000.0 < self.debounce_ms

    async def handle_key(self, key: Optional[str], repeat: bool = False) -> Optional[LockState]:
        """
        Returns the new lock state, or None if the event was ignored.
        ConfigInvalid from the toggle propagates to the caller.
        """
        if (key or "").lower() != self.key:
            return None
        if repeat:
            logger.debug(f"[HOTKEY] Ignoring auto-repeat of {self.key!r}")
            return None
        now = self._time()
        if self._debounced(now):
            logger.debug(f"[HOTKEY] Ignoring {self.key!r} inside {self.debounce_ms}ms debounce")
            return None

        try:
            state = await self.controller.toggle()
        except ConfigInvalid as e:
            logger.warning(f"[HOTKEY] Toggle rejected: {e}")
            raise
        # A rejected press does not open the debounce window
        self._last_fired = now
        logger.info(f"[HOTKEY] {'Locked' if state.locked else 'Unlocked'} via {self.key!r}")
        return state
