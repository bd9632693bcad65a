"""
In-memory subscription state: media kinds, states, records and listeners
"""
import logging
import time
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Callable, Optional

logger = logging.getLogger("stream_subscriptions")


class MediaKind(str, Enum):
    AUDIO = "audio"
    VIDEO = "video"


class SubscriptionState(str, Enum):
    NOT_SUBSCRIBED = "not_subscribed"
    SUBSCRIBING = "subscribing"
    SUBSCRIBED = "subscribed"
    SUBSCRIPTION_FAILED = "subscription_failed"
    UNSUBSCRIBING = "unsubscribing"


@dataclass
class SubscriptionRecord:
    """
    Subscription state of one remote participant.

    `participant` is the external client's object, refreshed on every event.
    The subscribed flags are derived from the per-kind state.
    """
    uid: str
    participant: Any = None
    has_audio: bool = False
    has_video: bool = False
    audio_state: SubscriptionState = SubscriptionState.NOT_SUBSCRIBED
    video_state: SubscriptionState = SubscriptionState.NOT_SUBSCRIBED
    joined_at: float = field(default_factory=time.time)
    updated_at: float = field(default_factory=time.time)

    @property
    def audio_subscribed(self) -> bool:
        return self.audio_state == SubscriptionState.SUBSCRIBED

    @property
    def video_subscribed(self) -> bool:
        return self.video_state == SubscriptionState.SUBSCRIBED

    def state_for(self, kind: MediaKind) -> SubscriptionState:
        if kind == MediaKind.AUDIO:
            return self.audio_state
        return self.video_state

    def is_subscribed(self, kind: MediaKind) -> bool:
        return self.state_for(kind) == SubscriptionState.SUBSCRIBED

    def has_media(self, kind: MediaKind) -> bool:
        if kind == MediaKind.AUDIO:
            return self.has_audio
        return self.has_video


@dataclass
class HistoryEntry:
    uid: str
    media_kind: MediaKind
    success: bool
    attempt: int
    timestamp: float = field(default_factory=time.time)
    error_message: Optional[str] = None

    def to_dict(self) -> dict:
        return {
            "uid": self.uid,
            "media_kind": self.media_kind.value,
            "success": self.success,
            "attempt": self.attempt,
            "timestamp": self.timestamp,
            "error_message": self.error_message,
        }


@dataclass
class SubscriptionListeners:
    """At most one callback of each kind; failures are logged, never raised"""
    on_subscription_success: Optional[Callable[[str, MediaKind, Any], Any]] = None
    on_subscription_failed: Optional[Callable[[str, MediaKind, BaseException], Any]] = None
    on_subscription_state_changed: Optional[Callable[[str, MediaKind, SubscriptionState], Any]] = None
    log: logging.Logger = field(default=logger, repr=False, compare=False)

    def success(self, uid: str, kind: MediaKind, result: Any) -> None:
        self._call("on_subscription_success", uid, kind, result)

    def failed(self, uid: str, kind: MediaKind, error: BaseException) -> None:
        self._call("on_subscription_failed", uid, kind, error)

    def state_changed(self, uid: str, kind: MediaKind, state: SubscriptionState) -> None:
        self._call("on_subscription_state_changed", uid, kind, state)

    def _call(self, name: str, *args) -> None:
        callback = getattr(self, name)
        if callback is None:
            return
        try:
            callback(*args)
        except Exception as e:
            self.log.error(f"Listener {name} raised: {e}", exc_info=True)


def reports_media(participant: Any, kind: MediaKind) -> bool:
    """Media availability as currently reported by the client's participant object"""
    attr = "has_audio" if kind == MediaKind.AUDIO else "has_video"
    return bool(getattr(participant, attr, False))


def parse_media_kind(value: Any) -> MediaKind:
    """Accept a MediaKind or its string value; raise ValueError otherwise"""
    if isinstance(value, MediaKind):
        return value
    return MediaKind(str(value).lower())
