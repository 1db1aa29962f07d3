"""
Presence Kernel API: FastAPI control surface.

The button-style toggle, the settings panel and status displays of a host
talk to the controller through these endpoints:
- Lock state (status, toggle)
- Settings (targets, interval)
- Reconciler control (manual tick, restart)
- Tick reports
"""

from contextlib import asynccontextmanager
from typing import Any, List, Optional

from fastapi import FastAPI, HTTPException
from pydantic import BaseModel

from presence_kernel.events.bus import EventBus
from presence_kernel.log_setup import configure_logging
from presence_kernel.models.settings import ConfigInvalid, ControllerConfig
from presence_kernel.reconciler.loop import ReconciliationController
from presence_kernel.reconciler.scheduler import TickScheduler
from presence_kernel.store.settings import SettingsStore


# --- Request/Response Models ---

class SettingsUpdateRequest(BaseModel):
    targets: Optional[List[str]] = None
    interval_ms: Optional[int] = None


class LockResponse(BaseModel):
    locked: bool


# --- Application Factory ---

def create_app(
    registry: Any = None,
    settings_store: Optional[SettingsStore] = None,
    controller_config: Optional[ControllerConfig] = None,
    scheduler: Optional[TickScheduler] = None,
    event_bus: Optional[EventBus] = None,
    verbose: Optional[bool] = None,
) -> FastAPI:
    """Create and configure the FastAPI application."""

    if verbose is not None:
        configure_logging(verbose)

    controller = ReconciliationController(
        registry if registry is not None else {},
        store=settings_store or SettingsStore(),
        config=controller_config or ControllerConfig(),
        scheduler=scheduler,
        bus=event_bus,
    )

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        async with controller:
            yield

    app = FastAPI(
        title="Presence Kernel API",
        description="Presence reconciliation controller",
        version="0.1.0",
        lifespan=lifespan,
    )
    app.state.controller = controller

    # === STATUS ===

    @app.get("/status")
    def get_status():
        """Lock state, actuator, counters and timer state."""
        return controller.status()

    # === LOCK ===

    @app.post("/lock/toggle", response_model=LockResponse)
    async def toggle_lock():
        """Button equivalent of the hotkey."""
        try:
            state = await controller.toggle()
        except ConfigInvalid as e:
            raise HTTPException(400, str(e))
        return LockResponse(locked=state.locked)

    # === SETTINGS ===

    @app.get("/settings")
    def get_settings():
        """Persisted settings in their stored layout."""
        return controller.settings.to_persisted()

    @app.put("/settings")
    async def update_settings(req: SettingsUpdateRequest):
        """Change targets and/or interval."""
        try:
            settings = await controller.update_settings(
                targets=req.targets, interval_ms=req.interval_ms
            )
        except ConfigInvalid as e:
            raise HTTPException(400, str(e))
        return settings.to_persisted()

    # === RECONCILER ===

    @app.post("/reconciler/trigger")
    async def trigger_tick():
        """Run one tick now (does not re-arm the timer)."""
        report = await controller.tick()
        return report.model_dump(mode="json", by_alias=True)

    @app.get("/reports")
    def get_reports(limit: int = 50):
        """Recent tick reports, oldest first."""
        return [
            r.model_dump(mode="json", by_alias=True)
            for r in controller.recent_reports(limit=limit)
        ]

    @app.post("/controller/restart")
    async def restart_controller():
        """Re-probe the registry and reset counters."""
        await controller.restart()
        return controller.status()

    return app


# Default application instance
app = create_app()
