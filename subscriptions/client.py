"""
Interface of the external real-time session client.

The engine only needs lifecycle notifications, a snapshot of the remote
participants, and subscribe/unsubscribe commands. `EventEmitter` is the
shared notification plumbing for client adapters.
"""
import logging
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Dict, List, Protocol, Sequence

logger = logging.getLogger("stream_subscriptions")

PARTICIPANT_JOINED = "participant_joined"
MEDIA_PUBLISHED = "media_published"
MEDIA_UNPUBLISHED = "media_unpublished"
PARTICIPANT_LEFT = "participant_left"

EVENTS = (PARTICIPANT_JOINED, MEDIA_PUBLISHED, MEDIA_UNPUBLISHED, PARTICIPANT_LEFT)

Handler = Callable[..., Awaitable[Any]]


@dataclass
class RemoteParticipant:
    uid: Any
    has_audio: bool = False
    has_video: bool = False


class SessionClient(Protocol):
    remote_participants: Sequence[Any]

    def on(self, event: str, handler: Handler) -> None: ...

    def off(self, event: str, handler: Handler) -> None: ...

    async def subscribe(self, participant: Any, media_kind: str) -> Any: ...

    async def unsubscribe(self, participant: Any, media_kind: str) -> None: ...


class EventEmitter:
    """Coroutine handlers per event name, awaited in registration order"""

    def __init__(self):
        self._handlers: Dict[str, List[Handler]] = {}

    def on(self, event: str, handler: Handler) -> None:
        self._handlers.setdefault(event, []).append(handler)

    def off(self, event: str, handler: Handler) -> None:
        handlers = self._handlers.get(event, [])
        if handler in handlers:
            handlers.remove(handler)
        if not handlers:
            self._handlers.pop(event, None)

    def listener_count(self, event: str) -> int:
        return len(self._handlers.get(event, []))

    async def emit(self, event: str, *args) -> None:
        for handler in list(self._handlers.get(event, [])):
            try:
                await handler(*args)
            except Exception as e:
                logger.error(f"Handler for {event} failed: {e}", exc_info=True)
