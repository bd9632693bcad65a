"""
Subscription registry: canonical uid -> SubscriptionRecord, plus the
polling retry timers owned per participant
"""
import asyncio
import dataclasses
import logging
import time
from typing import Any, Dict, Iterator, List, Optional

from .state import MediaKind, SubscriptionListeners, SubscriptionRecord, SubscriptionState
from .utils import normalize_uid

logger = logging.getLogger("stream_subscriptions")

_RECORD_FIELDS = {f.name for f in dataclasses.fields(SubscriptionRecord)} - {"uid"}


class SubscriptionRegistry:
    def __init__(self, listeners: Optional[SubscriptionListeners] = None,
                 log: logging.Logger = logger):
        self._records: Dict[str, SubscriptionRecord] = {}
        self._timers: Dict[str, asyncio.Task] = {}
        self.listeners = listeners or SubscriptionListeners()
        self.log = log

    def __len__(self) -> int:
        return len(self._records)

    def __iter__(self) -> Iterator[SubscriptionRecord]:
        return iter(list(self._records.values()))

    def __contains__(self, uid: Any) -> bool:
        return self.has(uid)

    def records(self) -> List[SubscriptionRecord]:
        return list(self._records.values())

    def get(self, uid: Any) -> Optional[SubscriptionRecord]:
        return self._records.get(normalize_uid(uid))

    def has(self, uid: Any) -> bool:
        return normalize_uid(uid) in self._records

    def upsert(self, uid: Any, **fields) -> SubscriptionRecord:
        """
        Merge fields into the record for uid, creating it if needed.

        updated_at is always refreshed; joined_at is only set on creation
        unless passed explicitly.
        """
        unknown = set(fields) - _RECORD_FIELDS
        if unknown:
            raise TypeError(f"unknown subscription fields: {sorted(unknown)}")

        key = normalize_uid(uid)
        now = time.time()
        record = self._records.get(key)
        if record is None:
            fields.setdefault("joined_at", now)
            record = SubscriptionRecord(uid=key, **fields)
            self._records[key] = record
        else:
            for name, value in fields.items():
                setattr(record, name, value)
        record.updated_at = now
        return record

    def set_media_state(self, uid: Any, kind: MediaKind, state: SubscriptionState) -> bool:
        """Transition one media kind; never creates a record"""
        record = self.get(uid)
        if record is None:
            return False

        if kind == MediaKind.AUDIO:
            record.audio_state = state
        else:
            record.video_state = state
        record.updated_at = time.time()

        self.listeners.state_changed(record.uid, kind, state)
        return True

    def remove(self, uid: Any) -> bool:
        key = normalize_uid(uid)
        self.cancel_timer(key)
        removed = self._records.pop(key, None) is not None
        if removed:
            self.log.debug(f"Subscription record for {key} cleaned up")
        return removed

    def clear(self) -> None:
        for key in list(self._timers):
            self.cancel_timer(key)
        self._records.clear()

    # ---- polling timers ----

    def set_timer(self, uid: Any, task: asyncio.Task) -> None:
        key = normalize_uid(uid)
        self.cancel_timer(key)
        self._timers[key] = task

    def cancel_timer(self, uid: Any) -> bool:
        task = self._timers.pop(normalize_uid(uid), None)
        if task is None:
            return False
        if not task.done():
            task.cancel()
        return True

    def discard_timer(self, uid: Any, task: asyncio.Task) -> None:
        """Drop the timer entry only if it still refers to task"""
        key = normalize_uid(uid)
        if self._timers.get(key) is task:
            del self._timers[key]

    def get_timer(self, uid: Any) -> Optional[asyncio.Task]:
        return self._timers.get(normalize_uid(uid))

    def has_timer(self, uid: Any) -> bool:
        return normalize_uid(uid) in self._timers

    @property
    def timer_count(self) -> int:
        return len(self._timers)
