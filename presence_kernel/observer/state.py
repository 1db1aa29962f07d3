"""
State Observer: reads the client's actual attachment from the host.

Two host services are involved: an identity lookup (who am I) and an
attachment lookup (which channel is that identity in). Both are resolved
from the registry on every call because the host may initialize them
after the controller starts.
"""

import inspect
from typing import Any, Optional, Sequence

from loguru import logger

from presence_kernel.capability.registry import find_module, has_callable, read_field
from presence_kernel.models.state import AttachmentState

IDENTITY_METHOD = "getCurrentUser"
ATTACHMENT_METHOD = "getVoiceStateForUser"
SELF_ATTACHMENT_METHOD = "getSelfVoiceState"
CHANNEL_FIELDS = ("channelId", "channel_id")


class ObserverUnavailable(Exception):
    """Raised when identity or attachment state cannot be determined."""
    pass


async def _resolve(value: Any) -> Any:
    if inspect.isawaitable(value):
        return await value
    return value


class StateObserver:
    """Determines whether the client is currently attached to any target."""

    def __init__(
        self,
        registry: Any,
        identity_method: str = IDENTITY_METHOD,
        attachment_methods: Sequence[str] = (ATTACHMENT_METHOD, SELF_ATTACHMENT_METHOD),
    ):
        self.registry = registry
        self.identity_method = identity_method
        self.attachment_methods = tuple(attachment_methods)

    def _find_service(self, *methods: str) -> Optional[Any]:
        found = find_module(self.registry, has_callable(*methods))
        return found[1] if found else None

    async def current_attachment(self) -> AttachmentState:
        """Snapshot the current attachment. Raises ObserverUnavailable."""
        identity_service = self._find_service(self.identity_method)
        if identity_service is None:
            raise ObserverUnavailable(f"identity lookup ({self.identity_method}) not resolvable")

        attachment_service = self._find_service(*self.attachment_methods)
        if attachment_service is None:
            raise ObserverUnavailable(
                f"attachment lookup ({' or '.join(self.attachment_methods)}) not resolvable"
            )

        try:
            identity = await _resolve(read_field(identity_service, self.identity_method)())
        except Exception as e:
            raise ObserverUnavailable(f"identity lookup failed: {e}") from e
        if identity is None:
            raise ObserverUnavailable("no current identity")

        record = await self._lookup_record(attachment_service, identity)
        channel = None
        for name in CHANNEL_FIELDS:
            channel = read_field(record, name)
            if channel:
                break

        state = AttachmentState(attached_to=str(channel) if channel else None)
        logger.debug(f"[OBSERVER] attached_to={state.attached_to}")
        return state

    async def _lookup_record(self, service: Any, identity: Any) -> Any:
        identity_id = read_field(identity, "id")
        record = None
        try:
            # Per-identity lookup first, self lookup as the fallback shape
            for method in self.attachment_methods:
                lookup = read_field(service, method)
                if not callable(lookup):
                    continue
                args = () if method == SELF_ATTACHMENT_METHOD else (identity_id,)
                record = await _resolve(lookup(*args))
                if record:
                    break
        except Exception as e:
            raise ObserverUnavailable(f"attachment lookup failed: {e}") from e
        return record
