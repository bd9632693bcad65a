"""
Subscription manager for remote participants in a real-time session.

Binds to the session client's participant/media notifications, keeps one
SubscriptionRecord per participant, subscribes (audio automatically when
enabled) with bounded retry, and polls automated participants whose audio
flag is not yet ready when their publish notification arrives.
"""
import asyncio
import logging
from typing import Any, Callable, Dict, List, Optional

from .client import MEDIA_PUBLISHED, MEDIA_UNPUBLISHED, PARTICIPANT_JOINED, PARTICIPANT_LEFT
from .config import SubscriptionOptions
from .registry import SubscriptionRegistry
from .retry import RetryEngine, Sleep
from .state import (
    MediaKind,
    SubscriptionListeners,
    SubscriptionRecord,
    SubscriptionState,
    parse_media_kind,
    reports_media,
)
from .stats import SubscriptionHistory, build_stats
from .utils import find_participant, normalize_uid


class SubscriptionManager:
    def __init__(self, client, options: Optional[SubscriptionOptions] = None,
                 is_automated: Optional[Callable[[str], bool]] = None,
                 logger: Optional[logging.Logger] = None,
                 sleep: Sleep = asyncio.sleep):
        """
        Args:
            client: session client (see subscriptions.client.SessionClient)
            options: retry/timeout/auto-subscribe settings
            is_automated: predicate classifying a canonical uid as a bot
            logger: log sink; its level is set from options.log_level
            sleep: coroutine used for backoff and polling waits
        """
        self.client = client
        self.options = options or SubscriptionOptions()
        self.is_automated = is_automated or (lambda uid: False)
        self.log = logger or logging.getLogger("stream_subscriptions")
        self.log.setLevel(self.options.log_level.logging_level)

        self.listeners = SubscriptionListeners(log=self.log)
        self.registry = SubscriptionRegistry(self.listeners, log=self.log)
        self.history = SubscriptionHistory()
        self.retry = RetryEngine(client, self.registry, self.history, self.options,
                                 sleep=sleep, log=self.log)
        self._destroyed = False

        self._handlers = {
            PARTICIPANT_JOINED: self._handle_participant_joined,
            MEDIA_PUBLISHED: self._handle_media_published,
            MEDIA_UNPUBLISHED: self._handle_media_unpublished,
            PARTICIPANT_LEFT: self._handle_participant_left,
        }
        for event, handler in self._handlers.items():
            self.client.on(event, handler)

        self._reconcile_existing_participants()
        self.log.info("🎧 Subscription manager ready: %s", self.options)

    # ============================================================
    # EVENT HANDLERS
    # ============================================================

    async def _handle_participant_joined(self, participant) -> None:
        uid = normalize_uid(participant.uid)
        has_audio = reports_media(participant, MediaKind.AUDIO)
        has_video = reports_media(participant, MediaKind.VIDEO)
        self.log.info(f"👤 Participant joined: {uid} (audio={has_audio}, video={has_video})")

        record = self.registry.upsert(uid, participant=participant, has_audio=has_audio, has_video=has_video)
        # A rejoin starts from scratch; route the reset through listeners
        for kind in MediaKind:
            if record.state_for(kind) != SubscriptionState.NOT_SUBSCRIBED:
                self.registry.set_media_state(uid, kind, SubscriptionState.NOT_SUBSCRIBED)

        if self.options.enable_auto_subscribe:
            if has_audio or has_video:
                await self._attempt_auto_subscription(participant)
            else:
                self.log.debug(f"{uid} has no media yet, waiting for publish")

        # Safety net for bots whose publish may have been handled before we saw them
        if has_audio and self._is_automated(uid):
            try:
                if await self.subscribe_to_user(uid, MediaKind.AUDIO):
                    self.log.info(f"🔄 Safety-net subscription for bot {uid} succeeded")
            except Exception as e:
                self.log.error(f"Safety-net subscription for bot {uid} failed: {e}")

    async def _handle_media_published(self, participant, media_kind) -> None:
        try:
            kind = parse_media_kind(media_kind)
        except ValueError:
            self.log.warning(f"Ignoring publish of unknown media kind {media_kind!r}")
            return

        uid = normalize_uid(participant.uid)
        self.log.info(
            "📡 %s published %s (audio=%s, video=%s)",
            uid, kind.value,
            reports_media(participant, MediaKind.AUDIO),
            reports_media(participant, MediaKind.VIDEO),
        )
        self._track(participant)

        if self.options.enable_auto_subscribe and kind == MediaKind.AUDIO:
            await self.subscribe_to_user(uid, kind)

        if kind != MediaKind.AUDIO or not self._is_automated(uid):
            return

        record = self.registry.get(uid)
        if record is None or record.audio_subscribed:
            return

        if not reports_media(participant, kind):
            # Publish arrived before the client's own audio flag flipped
            self.log.info(f"🤖 Bot {uid} published audio but flag not ready, polling")
            self.retry.schedule_automated_retry(uid, kind)
            return

        if not await self.subscribe_to_user(uid, kind, max_retry_attempts=1):
            self.retry.schedule_automated_retry(uid, kind)

    async def _handle_media_unpublished(self, participant, media_kind) -> None:
        try:
            kind = parse_media_kind(media_kind)
        except ValueError:
            self.log.warning(f"Ignoring unpublish of unknown media kind {media_kind!r}")
            return

        uid = normalize_uid(participant.uid)
        self.log.info(f"🔇 {uid} unpublished {kind.value}")

        record = self.registry.get(uid)
        if record is None:
            return

        if kind == MediaKind.AUDIO:
            self.registry.upsert(uid, participant=participant, has_audio=False)
        else:
            self.registry.upsert(uid, participant=participant, has_video=False)

        if record.state_for(kind) != SubscriptionState.NOT_SUBSCRIBED:
            self.registry.set_media_state(uid, kind, SubscriptionState.NOT_SUBSCRIBED)

    async def _handle_participant_left(self, participant) -> None:
        uid = normalize_uid(participant.uid)
        self.log.info(f"👋 Participant left: {uid}")
        self.registry.remove(uid)

    async def _attempt_auto_subscription(self, participant) -> None:
        uid = normalize_uid(participant.uid)
        if reports_media(participant, MediaKind.VIDEO):
            # Video is never auto-subscribed
            self.log.debug(f"Skipping video auto-subscription for {uid}")
        if reports_media(participant, MediaKind.AUDIO):
            self.log.info(f"Auto-subscribing {uid} audio")
            await self.subscribe_to_user(uid, MediaKind.AUDIO)

    def _reconcile_existing_participants(self) -> None:
        added = 0
        for participant in list(self.client.remote_participants or ()):
            if self.registry.has(participant.uid):
                continue
            self._track(participant)
            added += 1
        if added:
            self.log.info(f"Tracked {added} participant(s) already in the session")

    def _track(self, participant) -> SubscriptionRecord:
        return self.registry.upsert(
            participant.uid,
            participant=participant,
            has_audio=reports_media(participant, MediaKind.AUDIO),
            has_video=reports_media(participant, MediaKind.VIDEO),
        )

    def _is_automated(self, uid: str) -> bool:
        try:
            return bool(self.is_automated(uid))
        except Exception as e:
            self.log.error(f"Bot classification for {uid} failed: {e}")
            return False

    # ============================================================
    # SUBSCRIBE / UNSUBSCRIBE
    # ============================================================

    async def subscribe_to_user(self, uid: Any, media_kind: Any = MediaKind.AUDIO,
                                max_retry_attempts: Optional[int] = None,
                                retry_delay: Optional[float] = None) -> bool:
        """
        Subscribe to one media kind of a participant.

        Returns True when subscribed (including when it already was) and
        False when the participant is unknown, the media is not published,
        or every attempt failed.
        """
        try:
            kind = parse_media_kind(media_kind)
        except ValueError:
            self.log.error(f"Unsupported media kind {media_kind!r}")
            return False

        key = normalize_uid(uid)
        record = self.registry.get(key)
        if record is None:
            participant = find_participant(self.client.remote_participants, key)
            if participant is None:
                self.log.error(f"Participant {key} not found, cannot subscribe")
                return False
            record = self._track(participant)

        participant = record.participant
        if participant is None:
            self.log.error(f"Participant {key} has no client object, cannot subscribe")
            return False

        if not reports_media(participant, kind):
            self.log.warning(f"{key} is not publishing {kind.value}, skipping")
            return False

        if record.is_subscribed(kind):
            self.log.debug(f"{key} {kind.value} already subscribed")
            return True

        return await self.retry.subscribe_with_retry(
            key, participant, kind,
            max_attempts=max_retry_attempts,
            retry_delay=retry_delay,
        )

    async def unsubscribe_from_user(self, uid: Any, media_kind: Any = MediaKind.AUDIO) -> bool:
        try:
            kind = parse_media_kind(media_kind)
        except ValueError:
            self.log.error(f"Unsupported media kind {media_kind!r}")
            return False

        key = normalize_uid(uid)
        record = self.registry.get(key)
        if record is None:
            self.log.warning(f"Participant {key} not found, cannot unsubscribe")
            return False

        participant = record.participant
        if participant is None:
            self.log.warning(f"Participant {key} has no client object, cannot unsubscribe")
            return False

        self.log.info(f"Unsubscribing {key} {kind.value}")
        self.registry.set_media_state(key, kind, SubscriptionState.UNSUBSCRIBING)
        try:
            await asyncio.wait_for(
                self.client.unsubscribe(participant, kind.value),
                self.options.subscription_timeout,
            )
        except Exception as e:
            self.log.error(f"❌ Unsubscribe {key} {kind.value} failed: {str(e) or e.__class__.__name__}")
            self.registry.set_media_state(key, kind, SubscriptionState.SUBSCRIPTION_FAILED)
            return False

        self.registry.set_media_state(key, kind, SubscriptionState.NOT_SUBSCRIBED)
        self.log.info(f"✅ {key} {kind.value} unsubscribed")
        return True

    def cleanup_participant(self, uid: Any) -> bool:
        """Forget a participant and cancel its pending poll"""
        return self.registry.remove(uid)

    # ============================================================
    # INTROSPECTION
    # ============================================================

    def get_subscription_stats(self) -> dict:
        return build_stats(self.registry, self.history, self.options.enable_auto_subscribe)

    def get_user_subscription_info(self, uid: Any) -> Optional[dict]:
        record = self.registry.get(uid)
        if record is None:
            return None
        return self._project(record)

    def get_all_subscription_info(self) -> List[dict]:
        return [self._project(record) for record in self.registry]

    def get_subscription_history(self, uid: Any = None) -> List[dict]:
        return [entry.to_dict() for entry in self.history.entries(uid)]

    def _project(self, record: SubscriptionRecord) -> Dict[str, Any]:
        audio_state = record.audio_state or SubscriptionState.NOT_SUBSCRIBED
        video_state = record.video_state or SubscriptionState.NOT_SUBSCRIBED
        return {
            "uid": record.uid,
            "has_audio": record.has_audio,
            "has_video": record.has_video,
            "audio_subscribed": record.audio_subscribed,
            "video_subscribed": record.video_subscribed,
            "audio_state": audio_state.value,
            "video_state": video_state.value,
            "joined_at": record.joined_at,
            "updated_at": record.updated_at,
            "retry_pending": self.registry.has_timer(record.uid),
        }

    def set_auto_subscribe(self, enabled: bool) -> None:
        self.options.enable_auto_subscribe = bool(enabled)
        self.log.info(f"Auto-subscribe {'enabled' if enabled else 'disabled'}")

    # ============================================================
    # TEARDOWN
    # ============================================================

    @property
    def destroyed(self) -> bool:
        return self._destroyed

    def destroy(self) -> None:
        if self._destroyed:
            self.log.warning("Subscription manager already destroyed")
            return

        self.retry.close()
        self.registry.clear()
        self.history.clear()
        for event, handler in self._handlers.items():
            self.client.off(event, handler)
        self._destroyed = True
        self.log.info("🛑 Subscription manager destroyed")
