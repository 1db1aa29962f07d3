"""One-shot timer seam for the reconciliation loop."""

import asyncio
from typing import Callable, Optional, Protocol


class TickScheduler(Protocol):
    """Schedules a callback once after `delay_ms`; handles are opaque."""

    def call_later(self, delay_ms: int, callback: Callable[[], None]) -> object: ...

    def cancel(self, handle: object) -> None: ...


class AsyncioScheduler:
    """TickScheduler backed by the running asyncio event loop."""

    def __init__(self, loop: Optional[asyncio.AbstractEventLoop] = None):
        self._loop = loop

    def call_later(self, delay_ms: int, callback: Callable[[], None]) -> asyncio.TimerHandle:
        loop = self._loop or asyncio.get_running_loop()
        return loop.call_later(delay_ms / 1000.0, callback)

    def cancel(self, handle: object) -> None:
        if isinstance(handle, asyncio.TimerHandle):
            handle.cancel()
