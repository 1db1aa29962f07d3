"""
Reconciliation Loop: keeps the client attached to its target channel.

While locked, a tick runs immediately and then on every interval:

  CHECK_LOCK → OBSERVE → (ATTACHED → done)
                       → (NOT ATTACHED → ATTACH primary → fallback... → done)

Behavioral Contract:
- The actuator is never called while the client is attached somewhere
- At most one tick executes at a time; a slow tick defers the next one
- Targets are tried in configured order; the first success ends the tick
- A per-target failure moves on to the next fallback, never aborts the tick
- No failure is fatal: every tick ends in exactly one TickReport
"""

import asyncio
from collections import deque
from datetime import datetime
from typing import Any, Deque, List, Optional, Set
from uuid import uuid4

from loguru import logger

from presence_kernel.capability.probe import Actuator, ActuatorError, CapabilityProbe
from presence_kernel.events.bus import (
    LOCK_CHANGED,
    PROBE_COMPLETED,
    SETTINGS_UPDATED,
    TICK_REPORT,
    EventBus,
)
from presence_kernel.models.report import TargetFailure, TickOutcome, TickReport
from presence_kernel.models.settings import ControllerConfig, ControllerSettings
from presence_kernel.models.state import LockState, ReconcileCounters
from presence_kernel.observer.state import ObserverUnavailable, StateObserver
from presence_kernel.reconciler.lock import LockStateMachine
from presence_kernel.reconciler.scheduler import AsyncioScheduler, TickScheduler
from presence_kernel.store.settings import SettingsStore


class ReconciliationController:
    """
    Owns the lock state, the cached actuator, the timer handle and the counters.

    Lifecycle is explicit: start() loads settings and probes the registry,
    stop() cancels the timer. Use it as an async context manager to get both.
    """

    def __init__(
        self,
        registry: Any,
        store: Optional[SettingsStore] = None,
        config: Optional[ControllerConfig] = None,
        probe: Optional[CapabilityProbe] = None,
        observer: Optional[StateObserver] = None,
        scheduler: Optional[TickScheduler] = None,
        bus: Optional[EventBus] = None,
    ):
        self.registry = registry
        self.config = config or ControllerConfig()
        self.store = store or SettingsStore()
        self.probe = probe or CapabilityProbe(
            source_markers=self.config.source_markers,
            attach_timeout_ms=self.config.attach_timeout_ms,
        )
        self.observer = observer or StateObserver(registry)
        self.scheduler = scheduler or AsyncioScheduler()
        self.bus = bus or EventBus()

        self._lock_machine = LockStateMachine(
            self.store, self.config.controller_id, self.config.defaults
        )
        self._actuator: Optional[Actuator] = None
        self.counters = ReconcileCounters()
        self._reports: Deque[TickReport] = deque(maxlen=self.config.report_history)

        self._running = False
        # Bumped by every start(); a tick belongs to the run it started in
        self._generation = 0
        self._timer_handle: Optional[object] = None
        self._tick_lock = asyncio.Lock()
        self._state_lock = asyncio.Lock()
        self._tasks: Set[asyncio.Task] = set()

    # --- State ---

    @property
    def controller_id(self) -> str:
        return self.config.controller_id

    @property
    def running(self) -> bool:
        return self._running

    @property
    def locked(self) -> bool:
        return self._lock_machine.locked

    @property
    def lock_state(self) -> LockState:
        return self._lock_machine.state

    @property
    def settings(self) -> ControllerSettings:
        return self._lock_machine.settings

    @property
    def actuator(self) -> Optional[Actuator]:
        return self._actuator

    @property
    def timer_armed(self) -> bool:
        return self._timer_handle is not None

    @property
    def tick_in_progress(self) -> bool:
        return self._tick_lock.locked()

    def recent_reports(self, limit: int = 50) -> List[TickReport]:
        """Most recent tick reports, oldest first."""
        if limit <= 0:
            return []
        return list(self._reports)[-limit:]

    def status(self) -> dict:
        """Serializable snapshot for the control surface."""
        return {
            "controller_id": self.controller_id,
            "running": self._running,
            "locked": self.locked,
            "targets": list(self.settings.targets),
            "interval_ms": self.settings.interval_ms,
            "actuator": (
                {
                    "name": self._actuator.name,
                    "shape": self._actuator.shape,
                    "module_id": self._actuator.module_id,
                }
                if self._actuator
                else None
            ),
            "counters": self.counters.model_dump(),
            "timer_armed": self.timer_armed,
            "tick_in_progress": self.tick_in_progress,
        }

    # --- Lifecycle ---

    async def start(self) -> None:
        """Load persisted settings, probe for the actuator, resume if locked."""
        if self._running:
            return
        self.counters = ReconcileCounters()
        self._lock_machine.load()
        self._actuator = self.probe.discover(self.registry)
        self._emit(PROBE_COMPLETED, {
            "found": self._actuator is not None,
            "shape": self._actuator.shape if self._actuator else None,
        })
        self._generation += 1
        self._running = True
        logger.info(
            f"[RECONCILE] {self.controller_id} started | locked={self.locked} "
            f"| actuator={'yes' if self._actuator else 'no'}"
        )
        if self.locked:
            self._spawn_tick()

    async def stop(self, wait: bool = False) -> None:
        """
        Cancel the timer. A tick already running is left to finish but its
        actuator result is discarded. With wait=True, block until it has.
        """
        if self._running:
            self._running = False
            self._disarm()
            logger.info(f"[RECONCILE] {self.controller_id} stopped")
        if wait:
            await self.drain()

    async def restart(self) -> None:
        """Stop, then start again: re-probes the actuator and resets counters."""
        await self.stop(wait=True)
        await self.start()

    async def drain(self) -> None:
        """Wait for every spawned tick task to finish."""
        while self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)

    async def __aenter__(self) -> "ReconciliationController":
        await self.start()
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        await self.stop(wait=True)

    # --- Lock transitions ---

    async def toggle(self) -> LockState:
        """Flip the lock. Raises ConfigInvalid when locking with no targets."""
        async with self._state_lock:
            self._lock_machine.toggle()
            self._after_lock_change()
            return self.lock_state

    async def lock(self) -> LockState:
        async with self._state_lock:
            if self._lock_machine.lock():
                self._after_lock_change()
            return self.lock_state

    async def unlock(self) -> LockState:
        async with self._state_lock:
            if self._lock_machine.unlock():
                self._after_lock_change()
            return self.lock_state

    def _after_lock_change(self) -> None:
        self._emit(LOCK_CHANGED, {"locked": self.locked})
        if not self.locked:
            self._disarm()
        elif self._running:
            self._spawn_tick()

    async def update_settings(
        self,
        targets: Optional[List[str]] = None,
        interval_ms: Optional[int] = None,
    ) -> ControllerSettings:
        """
        Change targets and/or interval. Raises ConfigInvalid without applying anything.
        An interval change while locked re-arms the pending timer with the new period.
        """
        async with self._state_lock:
            changed = self._lock_machine.update_settings(targets=targets, interval_ms=interval_ms)
            if changed:
                self._emit(SETTINGS_UPDATED, {
                    "changed": sorted(changed),
                    "settings": self.settings.to_persisted(),
                })
            if "interval_ms" in changed and self.timer_armed:
                self._arm()
            return self.settings

    # --- Scheduling ---

    def _arm(self) -> None:
        """(Re)arm the one-shot timer for the next periodic tick."""
        self._disarm()
        self._timer_handle = self.scheduler.call_later(self.settings.interval_ms, self._on_timer)

    def _disarm(self) -> None:
        if self._timer_handle is not None:
            self.scheduler.cancel(self._timer_handle)
            self._timer_handle = None

    def _on_timer(self) -> None:
        self._timer_handle = None
        if self._running and self.locked:
            self._spawn_tick()

    def _spawn_tick(self) -> None:
        task = asyncio.get_running_loop().create_task(self._tick_and_rearm(self._generation))
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)

    def _is_current(self, generation: int) -> bool:
        return self._running and self._generation == generation

    async def _tick_and_rearm(self, generation: int) -> None:
        try:
            await self.tick()
        except Exception:
            logger.exception(f"[RECONCILE] Tick crashed for {self.controller_id}")
        # The next period starts only once this tick is done, so ticks never overlap
        if self._is_current(generation) and self.locked and not self.timer_armed:
            self._arm()

    # --- Tick ---

    async def tick(self) -> TickReport:
        """Run one reconciliation decision. Ticks are serialized."""
        async with self._tick_lock:
            report = await self._reconcile()
        report.finished_at = datetime.utcnow()
        self._reports.append(report)
        self._emit(TICK_REPORT, report.model_dump(mode="json", by_alias=True))
        return report

    async def _reconcile(self) -> TickReport:
        tick_id = f"tick_{uuid4().hex[:12]}"
        started_at = datetime.utcnow()

        def _report(outcome: TickOutcome, **kwargs) -> TickReport:
            return TickReport(
                tick_id=tick_id,
                outcome=outcome,
                counters=self.counters.model_copy(),
                started_at=started_at,
                **kwargs,
            )

        # Snapshot: a toggle or settings change mid-tick does not alter this decision
        generation = self._generation
        locked = self.locked
        actuator = self._actuator
        targets = tuple(self.settings.targets)

        if not self._running:
            return _report(TickOutcome.STOPPED, reason="controller not running")
        if not locked:
            return _report(TickOutcome.UNLOCKED, reason="unlocked")

        try:
            state = await self.observer.current_attachment()
        except ObserverUnavailable as e:
            logger.debug(f"[RECONCILE] Skipping tick, observer unavailable: {e}")
            return _report(TickOutcome.OBSERVER_UNAVAILABLE, reason=str(e))

        if not self._is_current(generation):
            return _report(TickOutcome.STOPPED, reason="controller stopped during observation")
        if state.is_attached:
            return _report(
                TickOutcome.ALREADY_ATTACHED,
                reason=f"already attached to {state.attached_to}",
            )
        if actuator is None:
            logger.warning("[RECONCILE] Not attached but no actuator available; skipping")
            return _report(TickOutcome.DISCOVERY_FAILURE, reason="no attach actuator discovered")

        failures: List[TargetFailure] = []
        for index, target in enumerate(targets):
            try:
                await actuator.attach(target)
            except ActuatorError as e:
                logger.warning(f"[RECONCILE] Attach to {target} failed: {e.reason}")
                failures.append(TargetFailure(target=target, reason=e.reason))
                continue

            if not self._is_current(generation):
                return _report(
                    TickOutcome.STOPPED,
                    reason=f"attached to {target} after stop; result discarded",
                    failures=failures,
                )
            self.counters.successes += 1
            self.counters.attempts += 1
            kind = "primary" if index == 0 else f"fallback #{index}"
            logger.info(
                f"[RECONCILE] Attached to {kind} target {target} "
                f"(successes={self.counters.successes})"
            )
            return _report(
                TickOutcome.ATTACHED,
                attempted=True,
                succeeded=True,
                chosen_target=target,
                reason=None if index == 0 else f"{index} target(s) failed before {target}",
                failures=failures,
            )

        if not self._is_current(generation):
            return _report(
                TickOutcome.STOPPED,
                reason="all targets failed after stop; result discarded",
                failures=failures,
            )
        self.counters.attempts += 1
        logger.warning(
            f"[RECONCILE] All {len(targets)} targets failed (attempts={self.counters.attempts})"
        )
        return _report(
            TickOutcome.ALL_TARGETS_FAILED,
            attempted=True,
            reason="; ".join(f"{f.target}: {f.reason}" for f in failures) or "no targets",
            failures=failures,
        )

    def _emit(self, event_type: str, payload: dict) -> None:
        self.bus.emit(event_type, self.controller_id, payload)
