"""
Retry engine: the bounded backoff subscribe loop and the polling retry
used for automated participants whose media flag lags their publish event
"""
import asyncio
import logging
from typing import Any, Awaitable, Callable, Optional

from .config import SubscriptionOptions
from .registry import SubscriptionRegistry
from .state import MediaKind, SubscriptionState, reports_media
from .stats import SubscriptionHistory
from .utils import find_participant, normalize_uid

logger = logging.getLogger("stream_subscriptions")

Sleep = Callable[[float], Awaitable[Any]]


class SubscriptionTimeout(Exception):
    pass


class RetryEngine:
    def __init__(self, client, registry: SubscriptionRegistry, history: SubscriptionHistory,
                 options: SubscriptionOptions, sleep: Sleep = asyncio.sleep,
                 log: logging.Logger = logger):
        self.client = client
        self.registry = registry
        self.history = history
        self.options = options
        self.listeners = registry.listeners
        self._sleep = sleep
        self.log = log
        self.closed = False

    async def subscribe_with_retry(self, uid: Any, participant: Any, kind: MediaKind,
                                   max_attempts: Optional[int] = None,
                                   retry_delay: Optional[float] = None) -> bool:
        """
        Try to subscribe up to max_attempts times.

        Failed attempts wait retry_delay * attempt before the next one. The
        final failure leaves the state SUBSCRIPTION_FAILED and notifies the
        failure listener.
        """
        key = normalize_uid(uid)
        max_attempts = max_attempts or self.options.max_retry_attempts
        if retry_delay is None:
            retry_delay = self.options.retry_delay

        for attempt in range(1, max_attempts + 1):
            if self.closed:
                return False
            record = self.registry.get(key)
            if record is not None and record.is_subscribed(kind):
                # Another caller finished the subscription while we were waiting
                self.log.debug(f"{key} {kind.value} already subscribed, stopping retries")
                return True

            self.log.info("Subscribing %s %s - attempt %d/%d", key, kind.value, attempt, max_attempts)
            self.registry.set_media_state(key, kind, SubscriptionState.SUBSCRIBING)

            try:
                result = await self._perform_subscription(participant, kind)
            except Exception as e:
                if self.closed:
                    return False
                message = str(e) or e.__class__.__name__
                self.log.error(
                    "❌ %s %s subscription failed (attempt %d/%d): %s",
                    key, kind.value, attempt, max_attempts, message
                )
                self.history.record(key, kind, False, attempt, message)

                if attempt < max_attempts:
                    wait = retry_delay * attempt
                    self.log.info(f"⏳ Retrying {key} {kind.value} in {wait:g}s")
                    await self._sleep(wait)
                    continue

                self.registry.set_media_state(key, kind, SubscriptionState.SUBSCRIPTION_FAILED)
                self.listeners.failed(key, kind, e)
                self.log.error(f"❌ {key} {kind.value} subscription gave up after {max_attempts} attempts")
                return False

            if self.closed:
                return False
            self.registry.set_media_state(key, kind, SubscriptionState.SUBSCRIBED)
            self.history.record(key, kind, True, attempt)
            self.log.info(f"✅ {key} {kind.value} subscribed")
            self.listeners.success(key, kind, result)
            return True

        return False

    def close(self) -> None:
        """Stop in-flight loops from touching state, history or listeners"""
        self.closed = True

    async def _perform_subscription(self, participant: Any, kind: MediaKind) -> Any:
        timeout = self.options.subscription_timeout
        try:
            return await asyncio.wait_for(self.client.subscribe(participant, kind.value), timeout)
        except asyncio.TimeoutError:
            raise SubscriptionTimeout(f"subscription timed out after {timeout:g}s")

    def schedule_automated_retry(self, uid: Any, kind: MediaKind = MediaKind.AUDIO,
                                 max_attempts: Optional[int] = None,
                                 interval: Optional[float] = None) -> asyncio.Task:
        """Replace any pending poll for uid with a fresh one"""
        key = normalize_uid(uid)
        max_attempts = max_attempts or self.options.bot_max_attempts
        if interval is None:
            interval = self.options.bot_retry_interval

        self.registry.cancel_timer(key)
        task = asyncio.ensure_future(self._poll_automated(key, kind, max_attempts, interval))
        self.registry.set_timer(key, task)
        self.log.info(
            "🤖 Polling %s %s readiness every %gs (max %d attempts)",
            key, kind.value, interval, max_attempts
        )
        return task

    async def _poll_automated(self, key: str, kind: MediaKind, max_attempts: int,
                              interval: float) -> bool:
        task = asyncio.current_task()
        try:
            for attempt in range(1, max_attempts + 1):
                await self._sleep(interval)
                if self.closed:
                    return False

                participant = find_participant(self.client.remote_participants, key)
                if participant is None:
                    self.log.info(f"🤖 {key} left the session, polling stopped")
                    return False

                record = self.registry.get(key)
                if record is not None and record.is_subscribed(kind):
                    self.log.debug(f"🤖 {key} {kind.value} already subscribed, polling stopped")
                    return True

                if not reports_media(participant, kind):
                    self.log.debug(
                        "🤖 %s %s not ready yet (poll %d/%d)", key, kind.value, attempt, max_attempts
                    )
                    continue

                self.registry.upsert(
                    key,
                    participant=participant,
                    has_audio=reports_media(participant, MediaKind.AUDIO),
                    has_video=reports_media(participant, MediaKind.VIDEO),
                )
                try:
                    if await self.subscribe_with_retry(key, participant, kind, max_attempts=1):
                        self.log.info(f"🤖 {key} {kind.value} subscribed on poll {attempt}")
                        return True
                except Exception as e:
                    self.log.error(f"🤖 Poll {attempt} for {key} {kind.value} raised: {e}")

            self.log.warning(
                "🤖 %s %s still not subscribed after %d polls, giving up", key, kind.value, max_attempts
            )
            return False
        finally:
            self.registry.discard_timer(key, task)
