"""Fake host services and a manual timer harness shared by the tests."""

import asyncio
from typing import Callable, Dict, Iterable, List, Optional, Tuple

PRIMARY = "1469136426250801152"
FALLBACK = "1459856756816613548"


class FakeUserStore:
    def __init__(self, user_id: Optional[str] = "self_user"):
        self.user_id = user_id

    def getCurrentUser(self):
        return {"id": self.user_id} if self.user_id else None


class FakeVoiceStateStore:
    def __init__(self, channel: Optional[str] = None):
        self.channel = channel
        self.lookups: List[str] = []

    def getVoiceStateForUser(self, user_id):
        self.lookups.append(user_id)
        return {"channelId": self.channel} if self.channel else None


class RecordingJoin:
    """Sync host join call. Failing targets raise; success updates the voice store."""

    def __init__(self, voice: FakeVoiceStateStore, fail_on: Iterable[str] = ()):
        self.voice = voice
        self.fail_on = set(fail_on)
        self.calls: List[str] = []

    def __call__(self, target: str):
        self.calls.append(target)
        if target in self.fail_on:
            raise RuntimeError(f"host rejected {target}")
        self.voice.channel = target


class BlockingJoin:
    """Async host join call that waits until released; tracks concurrency."""

    def __init__(self, voice: FakeVoiceStateStore):
        self.voice = voice
        self.release = asyncio.Event()
        self.calls: List[str] = []
        self.active = 0
        self.max_active = 0

    async def __call__(self, target: str):
        self.calls.append(target)
        self.active += 1
        self.max_active = max(self.max_active, self.active)
        try:
            await self.release.wait()
        finally:
            self.active -= 1
        self.voice.channel = target


def make_registry(
    join: Optional[Callable] = None,
    voice: Optional[FakeVoiceStateStore] = None,
    users: Optional[FakeUserStore] = None,
) -> Dict[str, object]:
    registry: Dict[str, object] = {
        "user_store": users if users is not None else FakeUserStore(),
        "voice_state_store": voice if voice is not None else FakeVoiceStateStore(),
    }
    if join is not None:
        registry["voice_actions"] = {"selectVoiceChannel": join}
    return registry


class AfterHarness:
    """TickScheduler that only fires when the test says so."""

    def __init__(self) -> None:
        self.scheduled: List[Tuple[str, int, Callable[[], None]]] = []
        self.cancelled: List[str] = []
        self.fired: List[str] = []

    def call_later(self, delay_ms: int, callback: Callable[[], None]) -> str:
        handle = f"h{len(self.scheduled) + 1}"
        self.scheduled.append((handle, delay_ms, callback))
        return handle

    def cancel(self, handle: object) -> None:
        self.cancelled.append(handle)

    @property
    def pending(self) -> List[Tuple[str, int, Callable[[], None]]]:
        done = set(self.cancelled) | set(self.fired)
        return [s for s in self.scheduled if s[0] not in done]

    def fire(self, handle: str) -> None:
        for h, _ms, cb in self.scheduled:
            if h == handle:
                self.fired.append(h)
                cb()
                return
        raise AssertionError(f"Handle {handle} not found")


async def settle(rounds: int = 10) -> None:
    """Let spawned tasks run up to their next real suspension point."""
    for _ in range(rounds):
        await asyncio.sleep(0)
