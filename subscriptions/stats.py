"""
Subscription attempt history and aggregate statistics
"""
from typing import Any, List, Optional

from .registry import SubscriptionRegistry
from .state import HistoryEntry, MediaKind
from .utils import normalize_uid

HISTORY_LIMIT = 100
HISTORY_KEEP = 50


class SubscriptionHistory:
    """Append-only attempt log; past HISTORY_LIMIT it is cut back to the newest HISTORY_KEEP"""

    def __init__(self, limit: int = HISTORY_LIMIT, keep: int = HISTORY_KEEP):
        self.limit = limit
        self.keep = keep
        self._entries: List[HistoryEntry] = []

    def __len__(self) -> int:
        return len(self._entries)

    def record(self, uid: Any, kind: MediaKind, success: bool, attempt: int,
               error_message: Optional[str] = None) -> HistoryEntry:
        entry = HistoryEntry(
            uid=normalize_uid(uid),
            media_kind=kind,
            success=success,
            attempt=attempt,
            error_message=error_message,
        )
        self._entries.append(entry)
        if len(self._entries) > self.limit:
            self._entries = self._entries[-self.keep:]
        return entry

    def entries(self, uid: Any = None) -> List[HistoryEntry]:
        if uid is None:
            return list(self._entries)
        key = normalize_uid(uid)
        return [e for e in self._entries if e.uid == key]

    @property
    def successful(self) -> int:
        return sum(1 for e in self._entries if e.success)

    def clear(self) -> None:
        self._entries = []


def build_stats(registry: SubscriptionRegistry, history: SubscriptionHistory,
                auto_subscribe_enabled: bool) -> dict:
    audio_subscribed = 0
    video_subscribed = 0
    for record in registry:
        if record.audio_subscribed:
            audio_subscribed += 1
        if record.video_subscribed:
            video_subscribed += 1

    total_attempts = len(history)
    successful_attempts = history.successful
    success_rate = (successful_attempts / total_attempts) * 100 if total_attempts else 0.0

    return {
        "total_users": len(registry),
        "audio_subscribed": audio_subscribed,
        "video_subscribed": video_subscribed,
        "total_attempts": total_attempts,
        "successful_attempts": successful_attempts,
        "success_rate": round(success_rate, 1),
        "auto_subscribe_enabled": auto_subscribe_enabled,
    }
